"""
Recurring price normalization.

Every recurring price is converted to a monthly dollar figure so subscriptions
billed daily, weekly, monthly or yearly can be summed into one MRR value.
"""

from __future__ import annotations

import math
from typing import Any, Iterable

from .fields import get_field, get_path

WEEKS_PER_MONTH = 4.33
# 365 / 12, rounded; used for every daily price
DAYS_PER_MONTH = 30.42
MONTHS_PER_YEAR = 12

_INTERVAL_FACTORS = {
    "day": DAYS_PER_MONTH,
    "week": WEEKS_PER_MONTH,
    "month": 1.0,
    "year": 1.0 / MONTHS_PER_YEAR,
}


def _as_number(value: Any) -> float:
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(number) or math.isinf(number):
        return 0.0
    return number


def monthly_amount(unit_amount_cents: Any, quantity: Any, interval: Any) -> float:
    """Return the monthly dollar value of ``quantity`` units billed per ``interval``.

    Unknown intervals, one-off prices and malformed numbers contribute 0.
    """
    factor = _INTERVAL_FACTORS.get(interval) if isinstance(interval, str) else None
    if factor is None:
        return 0.0
    return _as_number(unit_amount_cents) / 100.0 * _as_number(quantity) * factor


def price_monthly_amount(price: Any, quantity: Any = 1) -> float:
    interval = get_path(price, "recurring", "interval")
    if interval is None:
        return 0.0
    return monthly_amount(get_field(price, "unit_amount", 0), quantity, interval)


def item_monthly_amount(item: Any) -> float:
    """Monthly value of one subscription item; a missing quantity counts as 1."""
    quantity = get_field(item, "quantity", 1)
    return price_monthly_amount(get_field(item, "price"), quantity)


def subscription_items(subscription: Any) -> list:
    return list(get_path(subscription, "items", "data", default=[]) or [])


def subscription_mrr(subscription: Any) -> float:
    return sum(item_monthly_amount(item) for item in subscription_items(subscription))


def total_mrr(subscriptions: Iterable[Any]) -> float:
    return sum(subscription_mrr(sub) for sub in subscriptions)
