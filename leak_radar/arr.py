"""
Annual recurring revenue and the plan price derived from it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict

from .billing_client import BillingClient
from .errors import ArrCalculationError
from .fields import get_field
from .normalizer import MONTHS_PER_YEAR, subscription_mrr
from .pagination import DEFAULT_MAX_PAGES, DEFAULT_PAGE_SIZE, BoundedPager

LOG = logging.getLogger("leak_radar.arr")

PRO_TIER_ARR_THRESHOLD = 10_000_000
STARTER_PRICE_PER_MONTH = 499
PRO_PRICE_PER_MONTH = 999


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ArrResult:
    arr: float
    mrr: float
    active_subscriptions: int
    calculated_at: datetime = field(default_factory=_utcnow)
    truncated: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "arr": self.arr,
            "mrr": self.mrr,
            "activeSubscriptions": self.active_subscriptions,
            "calculatedAt": self.calculated_at.isoformat(),
            "truncated": self.truncated,
        }


def calculate_arr(
    client: BillingClient,
    *,
    max_pages: int = DEFAULT_MAX_PAGES,
    page_size: int = DEFAULT_PAGE_SIZE,
) -> ArrResult:
    """Sum the monthly value of every active subscription and annualize it.

    Raises ``ArrCalculationError`` when the subscriptions cannot be listed.
    """
    pager = BoundedPager(
        client.list_subscriptions,
        max_pages=max_pages,
        page_size=page_size,
        label="active subscriptions",
        status="active",
    )
    mrr = 0.0
    count = 0
    try:
        for subscription in pager:
            if get_field(subscription, "status", "active") != "active":
                continue
            mrr += subscription_mrr(subscription)
            count += 1
    except Exception as exc:
        LOG.error("Error calculating ARR: %s", exc)
        raise ArrCalculationError("Failed to calculate ARR from Stripe data") from exc

    return ArrResult(
        arr=mrr * MONTHS_PER_YEAR,
        mrr=mrr,
        active_subscriptions=count,
        truncated=pager.truncated,
    )


def determine_pricing_tier(arr: float) -> Dict[str, Any]:
    if arr <= PRO_TIER_ARR_THRESHOLD:
        return {
            "tier": "starter",
            "pricePerMonth": STARTER_PRICE_PER_MONTH,
            "description": "Up to $10M ARR",
        }
    return {
        "tier": "pro",
        "pricePerMonth": PRO_PRICE_PER_MONTH,
        "description": "Above $10M ARR",
    }
