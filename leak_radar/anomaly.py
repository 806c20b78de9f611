"""
MRR drop detection against stored daily snapshots.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, List, Optional

from .fields import get_field
from .issues import (
    NOT_AVAILABLE,
    ORGANIZATION_WIDE,
    IssueType,
    MrrAnomalyMetadata,
    Priority,
    RevenueIssue,
)

LOG = logging.getLogger("leak_radar.anomaly")

DEFAULT_DROP_THRESHOLD_PCT = 10.0
TRIGGER_DAY_OVER_DAY = "day_over_day"
TRIGGER_7DAY_AVERAGE = "7day_average"


def _percent_change(current: float, baseline: float) -> float:
    return (current - baseline) / baseline * 100


def detect_mrr_anomaly(
    current_mrr: float,
    yesterday: Optional[Any],
    recent: Iterable[Any] = (),
    *,
    threshold_pct: float = DEFAULT_DROP_THRESHOLD_PCT,
) -> Optional[RevenueIssue]:
    """Return one ``mrr_anomaly`` issue when MRR dropped by more than ``threshold_pct``.

    ``yesterday`` and ``recent`` are stored snapshots exposing ``current_mrr``
    and ``is_partial``; ``recent`` covers the seven days before today. Nothing
    is reported without a complete, non-zero baseline for yesterday or when
    today's MRR is 0, since both usually mean a failed fetch rather than a
    real drop.
    """
    if yesterday is None or get_field(yesterday, "is_partial", False):
        return None
    yesterday_mrr = float(get_field(yesterday, "current_mrr", 0.0))
    if current_mrr <= 0 or yesterday_mrr <= 0:
        return None

    day_over_day = _percent_change(current_mrr, yesterday_mrr)

    baseline: List[float] = [
        float(get_field(snap, "current_mrr", 0.0))
        for snap in recent
        if not get_field(snap, "is_partial", False)
    ]
    avg_7day_mrr = 0.0
    avg_7day_change = 0.0
    if baseline:
        avg_7day_mrr = sum(baseline) / len(baseline)
        if avg_7day_mrr > 0:
            avg_7day_change = _percent_change(current_mrr, avg_7day_mrr)

    triggers: List[str] = []
    if day_over_day < -threshold_pct:
        triggers.append(TRIGGER_DAY_OVER_DAY)
    if avg_7day_mrr > 0 and avg_7day_change < -threshold_pct:
        triggers.append(TRIGGER_7DAY_AVERAGE)

    if not triggers:
        return None

    LOG.info(
        "MRR anomaly: %.2f -> %.2f (%s)", yesterday_mrr, current_mrr, ", ".join(triggers)
    )
    return RevenueIssue(
        type=IssueType.MRR_ANOMALY,
        customer_email=NOT_AVAILABLE,
        customer_name=ORGANIZATION_WIDE,
        amount=abs(current_mrr - yesterday_mrr),
        priority=Priority.CRITICAL,
        metadata=MrrAnomalyMetadata(
            current_mrr=current_mrr,
            previous_mrr=yesterday_mrr,
            avg_7day_mrr=avg_7day_mrr,
            day_over_day_change=round(day_over_day, 2),
            avg_7day_change=round(avg_7day_change, 2),
            trigger_method=", ".join(triggers),
        ),
    )
