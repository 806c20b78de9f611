"""
Revenue Leak Radar.

Daily scan of linked Stripe accounts for failed payments, failing
subscriptions, expiring cards, open chargebacks and sudden MRR drops, with
per-organization snapshots stored for the dashboard.
"""

from .scan import run_daily_scan  # noqa: F401
