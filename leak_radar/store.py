"""
Persistence for organizations, billing links, daily snapshots and issues.

``replace_daily_results`` is the write path of the scan: it upserts the
(organization, date) snapshot and swaps its issues in a single transaction, so
readers see either the previous issue set or the new one.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Iterable, List, Optional, Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session, sessionmaker

from .db import session_scope
from .errors import BillingAccountInUseError
from .issues import IssueSummary, RevenueIssue
from .models import BillingAccountLink, DailyRevenueSnapshot, Organization, RevenueIssueRecord

LOG = logging.getLogger("leak_radar.store")


class RevenueStore:
    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def _scope(self):
        return session_scope(self.session_factory)

    # ------------------------------------------------------------------
    # organizations and billing links
    # ------------------------------------------------------------------

    def create_organization(self, organization_id: str, name: str = "") -> Organization:
        with self._scope() as session:
            org = session.get(Organization, organization_id)
            if org is None:
                org = Organization(id=organization_id, name=name)
                session.add(org)
            elif name:
                org.name = name
            session.flush()
            return org

    def get_organization(self, organization_id: str) -> Optional[Organization]:
        with self._scope() as session:
            return session.get(Organization, organization_id)

    def link_billing_account(
        self,
        organization_id: str,
        *,
        encrypted_api_key: str,
        mode: str,
        stripe_account_id: Optional[str] = None,
        stripe_account_name: Optional[str] = None,
    ) -> BillingAccountLink:
        with self._scope() as session:
            if stripe_account_id:
                owner = session.scalar(
                    select(BillingAccountLink.organization_id).where(
                        BillingAccountLink.stripe_account_id == stripe_account_id
                    )
                )
                if owner is not None and owner != organization_id:
                    raise BillingAccountInUseError(
                        "This Stripe account is already connected to another organization"
                    )

            link = session.scalar(
                select(BillingAccountLink).where(BillingAccountLink.organization_id == organization_id)
            )
            if link is None:
                link = BillingAccountLink(organization_id=organization_id)
                session.add(link)
            link.encrypted_api_key = encrypted_api_key
            link.mode = mode
            link.stripe_account_id = stripe_account_id
            link.stripe_account_name = stripe_account_name
            link.connected_at = datetime.now(timezone.utc)
            session.flush()
            return link

    def get_billing_link(self, organization_id: str) -> Optional[BillingAccountLink]:
        with self._scope() as session:
            return session.scalar(
                select(BillingAccountLink).where(BillingAccountLink.organization_id == organization_id)
            )

    def disconnect_billing_account(self, organization_id: str) -> bool:
        """Remove the link and every snapshot and issue of the organization."""
        with self._scope() as session:
            session.execute(
                delete(RevenueIssueRecord).where(RevenueIssueRecord.organization_id == organization_id)
            )
            session.execute(
                delete(DailyRevenueSnapshot).where(DailyRevenueSnapshot.organization_id == organization_id)
            )
            result = session.execute(
                delete(BillingAccountLink).where(BillingAccountLink.organization_id == organization_id)
            )
            removed = bool(result.rowcount)
        LOG.info("Disconnected billing account for %s (link removed: %s)", organization_id, removed)
        return removed

    def list_connected_organizations(self) -> List[Organization]:
        with self._scope() as session:
            rows = session.scalars(
                select(Organization)
                .join(BillingAccountLink, BillingAccountLink.organization_id == Organization.id)
                .order_by(Organization.created_at, Organization.id)
            )
            return list(rows)

    # ------------------------------------------------------------------
    # snapshots
    # ------------------------------------------------------------------

    def find_snapshot(self, organization_id: str, day: date) -> Optional[DailyRevenueSnapshot]:
        with self._scope() as session:
            return self._find_snapshot(session, organization_id, day)

    @staticmethod
    def _find_snapshot(session: Session, organization_id: str, day: date) -> Optional[DailyRevenueSnapshot]:
        return session.scalar(
            select(DailyRevenueSnapshot).where(
                DailyRevenueSnapshot.organization_id == organization_id,
                DailyRevenueSnapshot.snapshot_date == day,
            )
        )

    def find_snapshots_in_range(
        self,
        organization_id: str,
        start: date,
        end: date,
        *,
        exclude_partial: bool = True,
    ) -> List[DailyRevenueSnapshot]:
        """Snapshots with ``start <= date < end``, newest first."""
        query = select(DailyRevenueSnapshot).where(
            DailyRevenueSnapshot.organization_id == organization_id,
            DailyRevenueSnapshot.snapshot_date >= start,
            DailyRevenueSnapshot.snapshot_date < end,
        )
        if exclude_partial:
            query = query.where(DailyRevenueSnapshot.is_partial.is_(False))
        with self._scope() as session:
            return list(session.scalars(query.order_by(DailyRevenueSnapshot.snapshot_date.desc())))

    def latest_snapshot(self, organization_id: str) -> Optional[DailyRevenueSnapshot]:
        with self._scope() as session:
            return session.scalar(
                select(DailyRevenueSnapshot)
                .where(DailyRevenueSnapshot.organization_id == organization_id)
                .order_by(DailyRevenueSnapshot.snapshot_date.desc())
                .limit(1)
            )

    def upsert_snapshot(
        self,
        organization_id: str,
        day: date,
        *,
        summary: IssueSummary,
        current_mrr: float,
        is_partial: bool,
        failed_sources: Sequence[str] = (),
        truncated_sources: Sequence[str] = (),
    ) -> DailyRevenueSnapshot:
        with self._scope() as session:
            return self._upsert_snapshot(
                session,
                organization_id,
                day,
                summary=summary,
                current_mrr=current_mrr,
                is_partial=is_partial,
                failed_sources=failed_sources,
                truncated_sources=truncated_sources,
            )

    def _upsert_snapshot(
        self,
        session: Session,
        organization_id: str,
        day: date,
        *,
        summary: IssueSummary,
        current_mrr: float,
        is_partial: bool,
        failed_sources: Sequence[str],
        truncated_sources: Sequence[str],
    ) -> DailyRevenueSnapshot:
        snapshot = self._find_snapshot(session, organization_id, day)
        if snapshot is None:
            snapshot = DailyRevenueSnapshot(organization_id=organization_id, snapshot_date=day)
            session.add(snapshot)
        snapshot.total_revenue_at_risk = summary.total_revenue_at_risk
        snapshot.mrr_affected_percentage = summary.mrr_affected_percentage
        snapshot.issue_count_by_type = dict(summary.issue_count_by_type)
        snapshot.current_mrr = current_mrr
        snapshot.is_partial = is_partial
        snapshot.failed_sources = list(failed_sources)
        snapshot.truncated_sources = list(truncated_sources)
        session.flush()
        return snapshot

    # ------------------------------------------------------------------
    # issues
    # ------------------------------------------------------------------

    def delete_issues_for_snapshot(self, snapshot_id: int) -> int:
        with self._scope() as session:
            return self._delete_issues(session, snapshot_id)

    @staticmethod
    def _delete_issues(session: Session, snapshot_id: int) -> int:
        result = session.execute(
            delete(RevenueIssueRecord).where(RevenueIssueRecord.snapshot_id == snapshot_id)
        )
        return result.rowcount or 0

    def create_issues(self, snapshot_id: int, organization_id: str, issues: Iterable[RevenueIssue]) -> int:
        with self._scope() as session:
            return self._create_issues(session, snapshot_id, organization_id, issues)

    @staticmethod
    def _create_issues(
        session: Session, snapshot_id: int, organization_id: str, issues: Iterable[RevenueIssue]
    ) -> int:
        records = [
            RevenueIssueRecord(
                snapshot_id=snapshot_id,
                organization_id=organization_id,
                type=issue.type.value,
                customer_email=issue.customer_email,
                customer_name=issue.customer_name,
                amount=issue.amount,
                priority=issue.priority.value,
                issue_metadata=issue.metadata.to_dict(),
                detected_at=issue.detected_at,
            )
            for issue in issues
        ]
        session.add_all(records)
        session.flush()
        return len(records)

    def replace_daily_results(
        self,
        organization_id: str,
        day: date,
        *,
        issues: Sequence[RevenueIssue],
        summary: IssueSummary,
        current_mrr: float,
        is_partial: bool,
        failed_sources: Sequence[str] = (),
        truncated_sources: Sequence[str] = (),
    ) -> DailyRevenueSnapshot:
        """Upsert the day's snapshot and replace its issues atomically."""
        with self._scope() as session:
            snapshot = self._upsert_snapshot(
                session,
                organization_id,
                day,
                summary=summary,
                current_mrr=current_mrr,
                is_partial=is_partial,
                failed_sources=failed_sources,
                truncated_sources=truncated_sources,
            )
            removed = self._delete_issues(session, snapshot.id)
            created = self._create_issues(session, snapshot.id, organization_id, issues)
        LOG.debug(
            "Stored snapshot %s for %s on %s (%d issues replaced by %d)",
            snapshot.id,
            organization_id,
            day,
            removed,
            created,
        )
        return snapshot

    def list_issues(
        self, snapshot_id: int, *, limit: Optional[int] = None, offset: int = 0
    ) -> List[RevenueIssueRecord]:
        query = (
            select(RevenueIssueRecord)
            .where(RevenueIssueRecord.snapshot_id == snapshot_id)
            .order_by(RevenueIssueRecord.amount.desc(), RevenueIssueRecord.id)
            .offset(offset)
        )
        if limit is not None:
            query = query.limit(limit)
        with self._scope() as session:
            return list(session.scalars(query))

    def count_issues(self, snapshot_id: int) -> int:
        with self._scope() as session:
            return session.scalar(
                select(func.count()).select_from(RevenueIssueRecord).where(
                    RevenueIssueRecord.snapshot_id == snapshot_id
                )
            ) or 0
