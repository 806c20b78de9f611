"""
HTTP endpoints for the revenue scan: the cron trigger, dashboard reads, and
Stripe account linking.
"""

from __future__ import annotations

import hmac
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from flask import Blueprint, jsonify, request

from .billing_client import verify_stripe_key
from .config import DEFAULT_STRIPE_API_VERSION
from .credentials import mask_secret
from .errors import BillingAccountInUseError
from .store import RevenueStore

VALID_MODES = ("test", "live")
KEY_PREFIXES = {"test": "sk_test_", "live": "sk_live_"}


def _iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def cron_request_authorized(auth_header: Optional[str], cron_secret: Optional[str]) -> bool:
    """Constant-time check of ``Authorization: Bearer <secret>``."""
    if not cron_secret or not auth_header:
        return False
    expected = f"Bearer {cron_secret}"
    return hmac.compare_digest(auth_header.encode("utf-8"), expected.encode("utf-8"))


def snapshot_to_dict(snapshot: Any) -> Dict[str, Any]:
    return {
        "date": snapshot.snapshot_date.isoformat(),
        "totalRevenueAtRisk": snapshot.total_revenue_at_risk,
        "mrrAffectedPercentage": snapshot.mrr_affected_percentage,
        "currentMRR": snapshot.current_mrr,
        "issueCountByType": snapshot.issue_count_by_type or {},
        "isPartial": snapshot.is_partial,
        "failedSources": snapshot.failed_sources or [],
        "truncatedSources": snapshot.truncated_sources or [],
        "createdAt": _iso(snapshot.created_at),
    }


def issue_record_to_dict(record: Any) -> Dict[str, Any]:
    return {
        "id": record.id,
        "type": record.type,
        "customerEmail": record.customer_email,
        "customerName": record.customer_name,
        "amount": record.amount,
        "priority": record.priority,
        "metadata": record.issue_metadata or {},
        "detectedAt": _iso(record.detected_at),
    }


def _query_int(name: str, default: Optional[int]) -> Optional[int]:
    raw = request.args.get(name)
    if raw is None or raw == "":
        return default
    value = int(raw)
    if value < 0:
        raise ValueError(f"{name} must not be negative")
    return value


def create_revenue_blueprint(*, store: RevenueStore, scan_runner: Callable[[], Any],
                             organization_provider: Callable[[], Optional[str]],
                             cron_secret: Optional[str], cipher, logger,
                             key_verifier: Callable[..., Dict[str, Any]] = verify_stripe_key,
                             stripe_api_version: str = DEFAULT_STRIPE_API_VERSION,
                             blueprint_name: str = 'revenue_api'):
    """Return a blueprint that exposes the revenue scan endpoints."""

    bp = Blueprint(blueprint_name, __name__)

    def _unauthorized():
        return jsonify({'error': 'Unauthorized'}), 401

    @bp.route('/cron/daily-revenue-check', methods=['GET'])
    def daily_revenue_check():
        started = time.monotonic()
        if not cron_request_authorized(request.headers.get('Authorization'), cron_secret):
            return _unauthorized()

        try:
            result = scan_runner()
        except Exception as exc:
            logger.exception('Daily revenue check failed: %s', exc)
            # the scheduler retries any non-2xx response
            return jsonify({
                'success': False,
                'error': 'Daily revenue check failed',
                'executionTimeMs': int((time.monotonic() - started) * 1000),
            }), 200

        return jsonify({
            'success': True,
            'processed': result.organizations_processed,
            'totalIssuesFound': result.issues_found,
            'executionTimeMs': int((time.monotonic() - started) * 1000),
            'timestamp': datetime.now(timezone.utc).isoformat(),
        })

    @bp.route('/revenue/snapshot/latest', methods=['GET'])
    def latest_snapshot():
        organization_id = organization_provider()
        if not organization_id:
            return _unauthorized()
        try:
            snapshot = store.latest_snapshot(organization_id)
        except Exception as exc:
            logger.error('Get snapshot error: %s', exc)
            return jsonify({'error': 'An error occurred'}), 500
        if snapshot is None:
            return jsonify({'error': 'Not found'}), 404
        return jsonify(snapshot_to_dict(snapshot))

    @bp.route('/revenue/issues/today', methods=['GET'])
    def issues_today():
        organization_id = organization_provider()
        if not organization_id:
            return _unauthorized()
        try:
            limit = _query_int('limit', None)
            offset = _query_int('offset', 0)
        except ValueError:
            return jsonify({'error': 'limit and offset must be non-negative integers'}), 400

        try:
            snapshot = store.latest_snapshot(organization_id)
            if snapshot is None:
                return jsonify({'issues': [], 'total': 0, 'snapshot': None})
            records = store.list_issues(snapshot.id, limit=limit, offset=offset)
            total = store.count_issues(snapshot.id)
        except Exception as exc:
            logger.error('Get issues error: %s', exc)
            return jsonify({'error': 'An error occurred'}), 500

        return jsonify({
            'issues': [issue_record_to_dict(record) for record in records],
            'total': total,
            'snapshot': {
                'date': snapshot.snapshot_date.isoformat(),
                'totalRevenueAtRisk': snapshot.total_revenue_at_risk,
                'isPartial': snapshot.is_partial,
            },
        })

    @bp.route('/stripe/connect', methods=['POST'])
    def connect_stripe():
        organization_id = organization_provider()
        if not organization_id:
            return _unauthorized()

        data = request.get_json(silent=True) or {}
        api_key = (data.get('apiKey') or '').strip()
        mode = (data.get('mode') or '').strip()
        if not api_key or not mode:
            return jsonify({'error': 'API key and mode are required'}), 400
        if mode not in VALID_MODES:
            return jsonify({'error': "Mode must be 'test' or 'live'"}), 400
        if not api_key.startswith(tuple(KEY_PREFIXES.values())):
            return jsonify({'error': 'Please enter a valid Stripe API key'}), 400
        if not api_key.startswith(KEY_PREFIXES[mode]):
            return jsonify({'error': f'Please use a {mode} mode key ({KEY_PREFIXES[mode]}...)'}), 400

        try:
            account = key_verifier(api_key, api_version=stripe_api_version)
        except Exception as exc:
            logger.warning('Stripe key %s rejected for %s: %s', mask_secret(api_key), organization_id, exc)
            return jsonify({'error': 'Invalid API key. Please check and try again'}), 400

        try:
            store.create_organization(organization_id)
            store.link_billing_account(
                organization_id,
                encrypted_api_key=cipher.encrypt(api_key),
                mode=mode,
                stripe_account_id=account.get('account_id'),
                stripe_account_name=account.get('account_name'),
            )
        except BillingAccountInUseError as exc:
            return jsonify({'error': str(exc)}), 400
        except Exception as exc:
            logger.error('Stripe connect error: %s', exc)
            return jsonify({'error': 'An error occurred while connecting to Stripe'}), 500

        logger.info('Linked Stripe account %s to %s', account.get('account_id'), organization_id)
        return jsonify({
            'success': True,
            'stripeAccountId': account.get('account_id'),
            'stripeAccountName': account.get('account_name') or 'N/A',
            'mode': mode,
        })

    @bp.route('/stripe/disconnect', methods=['DELETE'])
    def disconnect_stripe():
        organization_id = organization_provider()
        if not organization_id:
            return _unauthorized()
        try:
            store.disconnect_billing_account(organization_id)
        except Exception as exc:
            logger.error('Stripe disconnect error: %s', exc)
            return jsonify({'error': 'An error occurred while disconnecting'}), 500
        return jsonify({'success': True})

    return bp
