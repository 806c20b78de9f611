"""
Revenue issue records produced by a scan.

Each issue type carries its own metadata dataclass; ``RevenueIssue`` refuses a
metadata object that does not belong to its type. Metadata is serialized with
camelCase keys because that is the shape stored and served to the dashboard.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, Optional, Tuple, Union

NOT_AVAILABLE = "N/A"
ORGANIZATION_WIDE = "Organization-wide"


class IssueType(str, Enum):
    FAILED_PAYMENT = "failed_payment"
    FAILED_SUBSCRIPTION = "failed_subscription"
    EXPIRING_CARD = "expiring_card"
    CHARGEBACK = "chargeback"
    MRR_ANOMALY = "mrr_anomaly"


class Priority(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"


@dataclass(frozen=True)
class FailedPaymentMetadata:
    invoice_id: str
    days_overdue: int
    invoice_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "invoiceId": self.invoice_id,
            "daysOverdue": self.days_overdue,
            "invoiceUrl": self.invoice_url,
        }


@dataclass(frozen=True)
class FailedSubscriptionMetadata:
    subscription_id: str
    invoice_id: str
    plan_name: str
    mrr_impact: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "subscriptionId": self.subscription_id,
            "invoiceId": self.invoice_id,
            "planName": self.plan_name,
            "mrrImpact": self.mrr_impact,
        }


@dataclass(frozen=True)
class ExpiringCardMetadata:
    card_last4: str
    expiration_date: str
    days_until_expiry: int
    subscription_ids: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cardLast4": self.card_last4,
            "expirationDate": self.expiration_date,
            "daysUntilExpiry": self.days_until_expiry,
            "subscriptionIds": list(self.subscription_ids),
        }


@dataclass(frozen=True)
class ChargebackMetadata:
    dispute_id: str
    reason: Optional[str]
    due_by: Optional[str]
    status: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "disputeId": self.dispute_id,
            "reason": self.reason,
            "dueBy": self.due_by,
            "status": self.status,
        }


@dataclass(frozen=True)
class MrrAnomalyMetadata:
    current_mrr: float
    previous_mrr: float
    avg_7day_mrr: float
    day_over_day_change: float
    avg_7day_change: float
    trigger_method: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "currentMRR": self.current_mrr,
            "previousMRR": self.previous_mrr,
            "avg7dayMRR": self.avg_7day_mrr,
            "dayOverDayChange": self.day_over_day_change,
            "avg7dayChange": self.avg_7day_change,
            "triggerMethod": self.trigger_method,
        }


IssueMetadata = Union[
    FailedPaymentMetadata,
    FailedSubscriptionMetadata,
    ExpiringCardMetadata,
    ChargebackMetadata,
    MrrAnomalyMetadata,
]

METADATA_TYPES = {
    IssueType.FAILED_PAYMENT: FailedPaymentMetadata,
    IssueType.FAILED_SUBSCRIPTION: FailedSubscriptionMetadata,
    IssueType.EXPIRING_CARD: ExpiringCardMetadata,
    IssueType.CHARGEBACK: ChargebackMetadata,
    IssueType.MRR_ANOMALY: MrrAnomalyMetadata,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class RevenueIssue:
    type: IssueType
    customer_email: str
    customer_name: str
    amount: float
    priority: Priority
    metadata: IssueMetadata
    detected_at: datetime = field(default_factory=_utcnow)

    def __post_init__(self) -> None:
        object.__setattr__(self, "type", IssueType(self.type))
        object.__setattr__(self, "priority", Priority(self.priority))
        expected = METADATA_TYPES[self.type]
        if not isinstance(self.metadata, expected):
            raise TypeError(
                f"{self.type.value} issues need {expected.__name__}, "
                f"got {type(self.metadata).__name__}"
            )
        if self.amount < 0:
            raise ValueError(f"issue amount must not be negative, got {self.amount}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "customerEmail": self.customer_email,
            "customerName": self.customer_name,
            "amount": self.amount,
            "priority": self.priority.value,
            "metadata": self.metadata.to_dict(),
            "detectedAt": self.detected_at.isoformat(),
        }


@dataclass(frozen=True)
class IssueSummary:
    total_revenue_at_risk: float
    mrr_affected_percentage: float
    issue_count_by_type: Dict[str, int]


def summarize_issues(issues: Iterable[RevenueIssue], current_mrr: float) -> IssueSummary:
    """Roll issues up into the totals stored on a daily snapshot."""
    issues = list(issues)
    total = sum(issue.amount for issue in issues)
    pct = (total / current_mrr) * 100 if current_mrr > 0 else 0.0
    counts = Counter(issue.type.value for issue in issues)
    return IssueSummary(
        total_revenue_at_risk=total,
        mrr_affected_percentage=pct,
        issue_count_by_type=dict(counts),
    )

