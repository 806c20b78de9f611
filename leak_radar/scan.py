"""
Daily revenue scan.

For every organization with a linked billing account the scan collects
candidate issues, checks MRR against stored history, and persists one snapshot
with its issues. Failures are contained per pass and per organization; a run
never fails as a whole because one tenant's integration is broken.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Optional

from .aggregator import AggregationResult, BillingDataAggregator
from .anomaly import DEFAULT_DROP_THRESHOLD_PCT, detect_mrr_anomaly
from .billing_client import BillingClient, StripeClientFactory, configure_stripe
from .config import Settings
from .credentials import CredentialCipher
from .db import create_db_engine, init_db, make_session_factory
from .issues import summarize_issues
from .pagination import DEFAULT_MAX_PAGES, DEFAULT_PAGE_SIZE
from .store import RevenueStore

LOG = logging.getLogger("leak_radar.scan")

BASELINE_WINDOW_DAYS = 7


class ScanState(str, Enum):
    PENDING = "pending"
    SCANNING = "scanning"
    PARTIAL = "partial"
    COMPLETE = "complete"
    PERSISTED = "persisted"


@dataclass(frozen=True)
class OrganizationScanResult:
    organization_id: str
    snapshot_id: int
    issues_found: int
    current_mrr: float
    total_revenue_at_risk: float
    state: ScanState
    is_partial: bool


@dataclass(frozen=True)
class ScanRunResult:
    organizations_processed: int
    issues_found: int
    duration_ms: int

    def to_dict(self) -> dict:
        return {
            "organizationsProcessed": self.organizations_processed,
            "issuesFound": self.issues_found,
            "durationMs": self.duration_ms,
        }


def _utc_today() -> date:
    return datetime.now(timezone.utc).date()


class ScanOrchestrator:
    def __init__(
        self,
        store: RevenueStore,
        client_factory: Callable[[str], BillingClient],
        *,
        max_pages: int = DEFAULT_MAX_PAGES,
        page_size: int = DEFAULT_PAGE_SIZE,
        drop_threshold_pct: float = DEFAULT_DROP_THRESHOLD_PCT,
        today: Callable[[], date] = _utc_today,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.client_factory = client_factory
        self.max_pages = max_pages
        self.page_size = page_size
        self.drop_threshold_pct = drop_threshold_pct
        self.today = today
        self.clock = clock

    def run_daily_scan(self) -> ScanRunResult:
        started = time.monotonic()
        processed = 0
        issues_found = 0
        day = self.today()

        organizations = self.store.list_connected_organizations()
        LOG.info("Starting daily revenue scan for %d organizations (%s)", len(organizations), day)

        for org in organizations:
            try:
                outcome = self.scan_organization(org.id, day)
            except Exception:
                LOG.exception("Revenue scan failed for organization %s", org.id)
                continue
            processed += 1
            issues_found += outcome.issues_found

        duration_ms = int((time.monotonic() - started) * 1000)
        LOG.info(
            "Daily revenue scan finished: %d/%d organizations, %d issues, %d ms",
            processed,
            len(organizations),
            issues_found,
            duration_ms,
        )
        return ScanRunResult(
            organizations_processed=processed,
            issues_found=issues_found,
            duration_ms=duration_ms,
        )

    def scan_organization(self, organization_id: str, day: Optional[date] = None) -> OrganizationScanResult:
        """Scan one organization and persist its snapshot; errors propagate."""
        day = day or self.today()
        self._log_state(organization_id, ScanState.PENDING)
        client = self.client_factory(organization_id)

        self._log_state(organization_id, ScanState.SCANNING)
        aggregation = self._aggregate(client)
        state = ScanState.PARTIAL if aggregation.is_partial else ScanState.COMPLETE
        self._log_state(organization_id, state, aggregation)

        issues = list(aggregation.issues)
        anomaly = self._check_mrr(organization_id, day, aggregation.current_mrr)
        if anomaly is not None:
            issues.append(anomaly)

        summary = summarize_issues(issues, aggregation.current_mrr)
        snapshot = self.store.replace_daily_results(
            organization_id,
            day,
            issues=issues,
            summary=summary,
            current_mrr=aggregation.current_mrr,
            is_partial=aggregation.is_partial,
            failed_sources=aggregation.failed_sources,
            truncated_sources=aggregation.truncated_sources,
        )
        self._log_state(organization_id, ScanState.PERSISTED)
        LOG.info(
            "Organization %s: %d issues, $%.2f at risk, MRR $%.2f%s",
            organization_id,
            len(issues),
            summary.total_revenue_at_risk,
            aggregation.current_mrr,
            " (partial)" if aggregation.is_partial else "",
        )
        return OrganizationScanResult(
            organization_id=organization_id,
            snapshot_id=snapshot.id,
            issues_found=len(issues),
            current_mrr=aggregation.current_mrr,
            total_revenue_at_risk=summary.total_revenue_at_risk,
            state=state,
            is_partial=aggregation.is_partial,
        )

    def _aggregate(self, client: BillingClient) -> AggregationResult:
        aggregator = BillingDataAggregator(
            client, max_pages=self.max_pages, page_size=self.page_size, clock=self.clock
        )
        return aggregator.collect()

    def _check_mrr(self, organization_id: str, day: date, current_mrr: float):
        yesterday = self.store.find_snapshot(organization_id, day - timedelta(days=1))
        recent = self.store.find_snapshots_in_range(
            organization_id, day - timedelta(days=BASELINE_WINDOW_DAYS), day, exclude_partial=True
        )
        return detect_mrr_anomaly(
            current_mrr, yesterday, recent, threshold_pct=self.drop_threshold_pct
        )

    @staticmethod
    def _log_state(organization_id: str, state: ScanState, aggregation: Any = None) -> None:
        if aggregation is not None and aggregation.is_partial:
            LOG.warning(
                "Organization %s is %s (failed: %s, truncated: %s)",
                organization_id,
                state.value,
                ", ".join(aggregation.failed_sources) or "none",
                ", ".join(aggregation.truncated_sources) or "none",
            )
            return
        LOG.debug("Organization %s is %s", organization_id, state.value)


def build_orchestrator(settings: Optional[Settings] = None) -> ScanOrchestrator:
    """Wire the orchestrator from environment settings."""
    settings = settings or Settings.from_env()
    engine = create_db_engine(settings.database_url)
    init_db(engine)
    store = RevenueStore(make_session_factory(engine))
    configure_stripe(settings.stripe_max_retries)
    factory = StripeClientFactory(
        store.get_billing_link,
        CredentialCipher.from_settings(settings),
        api_version=settings.stripe_api_version,
    )
    return ScanOrchestrator(
        store,
        factory,
        max_pages=settings.scan_max_pages,
        page_size=settings.scan_page_size,
        drop_threshold_pct=settings.mrr_drop_threshold_pct,
    )


def run_daily_scan(settings: Optional[Settings] = None) -> ScanRunResult:
    return build_orchestrator(settings).run_daily_scan()
