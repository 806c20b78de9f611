"""
Billing data aggregation for one organization.

Five independent passes read the organization's billing account and turn what
they find into ``RevenueIssue`` records plus the current MRR. A pass that
raises is logged and recorded as failed; the other passes still run. A pass
that hits the pagination ceiling is recorded as truncated.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional, Tuple

from .billing_client import BillingClient
from .fields import get_field, get_path, object_id
from .issues import (
    NOT_AVAILABLE,
    ChargebackMetadata,
    ExpiringCardMetadata,
    FailedPaymentMetadata,
    FailedSubscriptionMetadata,
    IssueType,
    Priority,
    RevenueIssue,
)
from .normalizer import subscription_items, subscription_mrr, total_mrr
from .pagination import DEFAULT_MAX_PAGES, DEFAULT_PAGE_SIZE, BoundedPager, collect_all
from .stripe_errors import classify_stripe_error

LOG = logging.getLogger("leak_radar.aggregator")

SECONDS_PER_DAY = 86400
OVERDUE_CRITICAL_DAYS = 30
CARD_EXPIRY_WINDOW_DAYS = 30
CARD_EXPIRY_CRITICAL_DAYS = 7
OPEN_DISPUTE_STATUSES = ("needs_response", "under_review")

PASS_FAILED_PAYMENTS = "failed_payments"
PASS_FAILED_SUBSCRIPTIONS = "failed_subscriptions"
PASS_EXPIRING_CARDS = "expiring_cards"
PASS_CHARGEBACKS = "chargebacks"
PASS_CURRENT_MRR = "current_mrr"


@dataclass
class AggregationResult:
    issues: List[RevenueIssue] = field(default_factory=list)
    current_mrr: float = 0.0
    failed_sources: List[str] = field(default_factory=list)
    truncated_sources: List[str] = field(default_factory=list)

    @property
    def is_partial(self) -> bool:
        return bool(self.failed_sources or self.truncated_sources)


def _customer_contact(customer: Any) -> Tuple[str, str]:
    return (
        get_field(customer, "email") or NOT_AVAILABLE,
        get_field(customer, "name") or NOT_AVAILABLE,
    )


def _invoice_subscription_id(invoice: Any) -> Optional[str]:
    """Subscription id of an invoice across Stripe API versions."""
    legacy = object_id(get_field(invoice, "subscription"))
    if legacy:
        return legacy
    return object_id(get_path(invoice, "parent", "subscription_details", "subscription"))


def _iso_timestamp(unix_seconds: Any) -> Optional[str]:
    if not unix_seconds:
        return None
    moment = datetime.fromtimestamp(int(unix_seconds), tz=timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def days_until_card_expiry(exp_month: int, exp_year: int, now: float) -> int:
    """Whole days from ``now`` until midnight UTC on the first of the expiry month, rounded down."""
    expiry = datetime(int(exp_year), int(exp_month), 1, tzinfo=timezone.utc).timestamp()
    return math.floor((expiry - now) / SECONDS_PER_DAY)


class BillingDataAggregator:
    """Run the detection passes against one organization's billing client."""

    def __init__(
        self,
        client: BillingClient,
        *,
        max_pages: int = DEFAULT_MAX_PAGES,
        page_size: int = DEFAULT_PAGE_SIZE,
        clock: Callable[[], float] = time.time,
    ):
        self.client = client
        self.max_pages = max_pages
        self.page_size = page_size
        self.clock = clock
        self._truncated: List[str] = []

    # ------------------------------------------------------------------
    # orchestration
    # ------------------------------------------------------------------

    def collect(self) -> AggregationResult:
        result = AggregationResult()
        self._truncated = []

        for name, run in (
            (PASS_FAILED_PAYMENTS, self.find_failed_payments),
            (PASS_FAILED_SUBSCRIPTIONS, self.find_failing_subscriptions),
            (PASS_EXPIRING_CARDS, self.find_expiring_cards),
            (PASS_CHARGEBACKS, self.find_chargebacks),
        ):
            issues = self._run_pass(name, run, result)
            if issues:
                result.issues.extend(issues)

        mrr = self._run_pass(PASS_CURRENT_MRR, self.compute_current_mrr, result)
        result.current_mrr = mrr if mrr is not None else 0.0

        result.truncated_sources = list(dict.fromkeys(self._truncated))
        return result

    def _run_pass(self, name: str, run: Callable[[], Any], result: AggregationResult) -> Any:
        try:
            return run()
        except Exception as exc:
            info = classify_stripe_error(exc)
            LOG.error("Scan pass %s failed: %s (%s)", name, info.log_message, exc)
            result.failed_sources.append(name)
            return None

    def _pages(self, fetch: Callable[..., Any], label: str, **params: Any) -> BoundedPager:
        return BoundedPager(
            fetch, max_pages=self.max_pages, page_size=self.page_size, label=label, **params
        )

    def _drain(self, pager: BoundedPager, pass_name: str):
        yield from pager
        if pager.truncated:
            self._truncated.append(pass_name)

    def _now(self) -> float:
        return self.clock()

    # ------------------------------------------------------------------
    # passes
    # ------------------------------------------------------------------

    def find_failed_payments(self) -> List[RevenueIssue]:
        now = self._now()
        issues: List[RevenueIssue] = []
        pager = self._pages(self.client.list_invoices, "open invoices", status="open")

        for invoice in self._drain(pager, PASS_FAILED_PAYMENTS):
            due_date = get_field(invoice, "due_date")
            if not due_date or due_date >= now:
                continue
            customer_id = object_id(get_field(invoice, "customer"))
            if not customer_id:
                continue
            try:
                customer = self.client.retrieve_customer(customer_id)
            except Exception as exc:
                LOG.warning("Skipping invoice %s: customer lookup failed (%s)", get_field(invoice, "id"), exc)
                continue

            email, name = _customer_contact(customer)
            days_overdue = int((now - due_date) // SECONDS_PER_DAY)
            issues.append(
                RevenueIssue(
                    type=IssueType.FAILED_PAYMENT,
                    customer_email=email,
                    customer_name=name,
                    amount=get_field(invoice, "amount_due", 0) / 100,
                    priority=Priority.CRITICAL if days_overdue > OVERDUE_CRITICAL_DAYS else Priority.HIGH,
                    metadata=FailedPaymentMetadata(
                        invoice_id=get_field(invoice, "id"),
                        days_overdue=days_overdue,
                        invoice_url=get_field(invoice, "hosted_invoice_url"),
                    ),
                )
            )
        return issues

    def find_failing_subscriptions(self) -> List[RevenueIssue]:
        issues: List[RevenueIssue] = []
        pager = self._pages(self.client.list_invoices, "open subscription invoices", status="open")

        for invoice in self._drain(pager, PASS_FAILED_SUBSCRIPTIONS):
            subscription_id = _invoice_subscription_id(invoice)
            customer_id = object_id(get_field(invoice, "customer"))
            if not subscription_id or not customer_id:
                continue
            try:
                subscription = self.client.retrieve_subscription(subscription_id)
                customer = self.client.retrieve_customer(customer_id)
            except Exception as exc:
                LOG.warning(
                    "Skipping subscription invoice %s: lookup failed (%s)", get_field(invoice, "id"), exc
                )
                continue

            items = subscription_items(subscription)
            plan_name = get_path(items[0], "price", "nickname") if items else None
            email, name = _customer_contact(customer)
            issues.append(
                RevenueIssue(
                    type=IssueType.FAILED_SUBSCRIPTION,
                    customer_email=email,
                    customer_name=name,
                    amount=get_field(invoice, "amount_due", 0) / 100,
                    priority=Priority.CRITICAL,
                    metadata=FailedSubscriptionMetadata(
                        subscription_id=get_field(subscription, "id") or subscription_id,
                        invoice_id=get_field(invoice, "id"),
                        plan_name=plan_name or NOT_AVAILABLE,
                        mrr_impact=subscription_mrr(subscription),
                    ),
                )
            )
        return issues

    def find_expiring_cards(self) -> List[RevenueIssue]:
        now = self._now()
        issues: List[RevenueIssue] = []
        pager = self._pages(self.client.list_customers, "customers")

        for customer in self._drain(pager, PASS_EXPIRING_CARDS):
            pm_id = object_id(get_path(customer, "invoice_settings", "default_payment_method"))
            if not pm_id:
                continue
            try:
                issue = self._expiring_card_issue(customer, pm_id, now)
            except Exception as exc:
                LOG.warning("Skipping customer %s: payment method check failed (%s)", get_field(customer, "id"), exc)
                continue
            if issue is not None:
                issues.append(issue)
        return issues

    def _expiring_card_issue(self, customer: Any, pm_id: str, now: float) -> Optional[RevenueIssue]:
        payment_method = self.client.retrieve_payment_method(pm_id)
        card = get_field(payment_method, "card")
        if get_field(payment_method, "type") != "card" or card is None:
            return None

        exp_month = int(get_field(card, "exp_month"))
        exp_year = int(get_field(card, "exp_year"))
        days_left = days_until_card_expiry(exp_month, exp_year, now)
        if not 0 <= days_left <= CARD_EXPIRY_WINDOW_DAYS:
            return None

        result = collect_all(
            self.client.list_subscriptions,
            max_pages=self.max_pages,
            page_size=self.page_size,
            label="customer subscriptions",
            status="active",
            customer=get_field(customer, "id"),
        )
        if result.truncated:
            self._truncated.append(PASS_EXPIRING_CARDS)
        subscriptions = result.items
        mrr_impact = total_mrr(subscriptions)
        if mrr_impact <= 0:
            return None

        email, name = _customer_contact(customer)
        return RevenueIssue(
            type=IssueType.EXPIRING_CARD,
            customer_email=email,
            customer_name=name,
            amount=mrr_impact,
            priority=Priority.CRITICAL if days_left < CARD_EXPIRY_CRITICAL_DAYS else Priority.HIGH,
            metadata=ExpiringCardMetadata(
                card_last4=get_field(card, "last4") or NOT_AVAILABLE,
                expiration_date=f"{exp_month:02d}/{exp_year}",
                days_until_expiry=days_left,
                subscription_ids=tuple(get_field(sub, "id") for sub in subscriptions),
            ),
        )

    def find_chargebacks(self) -> List[RevenueIssue]:
        issues: List[RevenueIssue] = []
        disputes: List[Any] = []
        for status in OPEN_DISPUTE_STATUSES:
            pager = self._pages(self.client.list_disputes, f"{status} disputes", status=status)
            disputes.extend(self._drain(pager, PASS_CHARGEBACKS))

        for dispute in disputes:
            try:
                email, name = self._dispute_contact(dispute)
            except Exception as exc:
                LOG.warning("Skipping dispute %s: charge lookup failed (%s)", get_field(dispute, "id"), exc)
                continue

            status = get_field(dispute, "status")
            issues.append(
                RevenueIssue(
                    type=IssueType.CHARGEBACK,
                    customer_email=email,
                    customer_name=name,
                    amount=get_field(dispute, "amount", 0) / 100,
                    priority=Priority.CRITICAL if status == "needs_response" else Priority.HIGH,
                    metadata=ChargebackMetadata(
                        dispute_id=get_field(dispute, "id"),
                        reason=get_field(dispute, "reason"),
                        due_by=_iso_timestamp(get_path(dispute, "evidence_details", "due_by")),
                        status=status,
                    ),
                )
            )
        return issues

    def _dispute_contact(self, dispute: Any) -> Tuple[str, str]:
        charge = self.client.retrieve_charge(object_id(get_field(dispute, "charge")))
        customer_id = object_id(get_field(charge, "customer"))
        if not customer_id:
            return NOT_AVAILABLE, NOT_AVAILABLE
        return _customer_contact(self.client.retrieve_customer(customer_id))

    def compute_current_mrr(self) -> float:
        pager = self._pages(self.client.list_subscriptions, "active subscriptions", status="active")
        return total_mrr(self._drain(pager, PASS_CURRENT_MRR))
