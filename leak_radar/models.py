"""
Database tables for organizations, billing links, daily snapshots and issues.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Organization(Base):
    __tablename__ = "organizations"

    id = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=False, default="")
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    def __repr__(self) -> str:
        return f"<Organization(id={self.id}, name={self.name})>"


class BillingAccountLink(Base):
    """Stripe account linked to an organization; the API key is stored encrypted."""

    __tablename__ = "billing_account_links"

    id = Column(Integer, primary_key=True, autoincrement=True)
    organization_id = Column(
        String(64), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    encrypted_api_key = Column(Text, nullable=False)
    mode = Column(String(8), nullable=False, default="test")
    stripe_account_id = Column(String(255), nullable=True, unique=True)
    stripe_account_name = Column(String(255), nullable=True)
    connected_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    def __repr__(self) -> str:
        return f"<BillingAccountLink(org={self.organization_id}, mode={self.mode})>"


class DailyRevenueSnapshot(Base):
    """One revenue-risk rollup per organization per calendar day."""

    __tablename__ = "daily_revenue_snapshots"
    __table_args__ = (
        UniqueConstraint("organization_id", "snapshot_date", name="uq_snapshot_org_date"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    organization_id = Column(
        String(64), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    snapshot_date = Column(Date, nullable=False, index=True)
    total_revenue_at_risk = Column(Float, nullable=False, default=0.0)
    mrr_affected_percentage = Column(Float, nullable=False, default=0.0)
    current_mrr = Column(Float, nullable=False, default=0.0)
    issue_count_by_type = Column(JSON, nullable=False, default=dict)
    is_partial = Column(Boolean, nullable=False, default=False)
    failed_sources = Column(JSON, nullable=False, default=list)
    truncated_sources = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    def __repr__(self) -> str:
        return (
            f"<DailyRevenueSnapshot(org={self.organization_id}, "
            f"date={self.snapshot_date}, at_risk={self.total_revenue_at_risk}, "
            f"partial={self.is_partial})>"
        )


class RevenueIssueRecord(Base):
    __tablename__ = "revenue_issues"

    id = Column(Integer, primary_key=True, autoincrement=True)
    snapshot_id = Column(
        Integer, ForeignKey("daily_revenue_snapshots.id", ondelete="CASCADE"), nullable=False, index=True
    )
    organization_id = Column(
        String(64), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    type = Column(String(32), nullable=False)
    customer_email = Column(String(255), nullable=False)
    customer_name = Column(String(255), nullable=False)
    amount = Column(Float, nullable=False)
    priority = Column(String(16), nullable=False)
    # "metadata" is reserved on declarative classes
    issue_metadata = Column("metadata", JSON, nullable=False, default=dict)
    detected_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    def __repr__(self) -> str:
        return f"<RevenueIssueRecord(type={self.type}, amount={self.amount})>"
