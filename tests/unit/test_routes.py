import json
import logging
from datetime import date, timedelta
from unittest.mock import MagicMock

import pytest
from flask import Flask

from leak_radar.credentials import CredentialCipher
from leak_radar.issues import FailedPaymentMetadata, IssueType, Priority, RevenueIssue, summarize_issues
from leak_radar.routes import create_revenue_blueprint, cron_request_authorized
from leak_radar.scan import ScanRunResult

CRON_SECRET = 'cron-secret-value'
TODAY = date(2026, 3, 10)


@pytest.fixture()
def revenue_api(store):
    app = Flask(__name__)
    app.config.update(TESTING=True)

    current_org = {'id': 'org_1'}
    scan_runner = MagicMock(return_value=ScanRunResult(organizations_processed=3, issues_found=9, duration_ms=42))
    key_verifier = MagicMock(return_value={'account_id': 'acct_1', 'account_name': 'Acme'})
    cipher = CredentialCipher(CredentialCipher.generate_key())

    blueprint = create_revenue_blueprint(
        store=store,
        scan_runner=scan_runner,
        organization_provider=lambda: current_org['id'],
        cron_secret=CRON_SECRET,
        cipher=cipher,
        logger=logging.getLogger('revenue-api-test'),
        key_verifier=key_verifier,
    )
    app.register_blueprint(blueprint, url_prefix='/api')

    with app.test_client() as client:
        yield client, current_org, scan_runner, key_verifier, cipher


def _issue(amount, invoice_id):
    return RevenueIssue(
        type=IssueType.FAILED_PAYMENT,
        customer_email='ada@example.com',
        customer_name='Ada',
        amount=amount,
        priority=Priority.HIGH,
        metadata=FailedPaymentMetadata(invoice_id=invoice_id, days_overdue=2),
    )


def _seed(store, org_id='org_1', day=TODAY, issues=(), current_mrr=1000.0):
    store.create_organization(org_id)
    store.replace_daily_results(
        org_id,
        day,
        issues=list(issues),
        summary=summarize_issues(issues, current_mrr),
        current_mrr=current_mrr,
        is_partial=False,
    )


def _json(response):
    return json.loads(response.data.decode('utf-8'))


def test_cron_authorization_helper():
    assert cron_request_authorized(f'Bearer {CRON_SECRET}', CRON_SECRET) is True
    assert cron_request_authorized('Bearer wrong', CRON_SECRET) is False
    assert cron_request_authorized(None, CRON_SECRET) is False
    assert cron_request_authorized('Bearer ', None) is False


def test_cron_requires_bearer_secret(revenue_api):
    client, _, scan_runner, *_ = revenue_api

    response = client.get('/api/cron/daily-revenue-check', headers={'Authorization': 'Bearer nope'})

    assert response.status_code == 401
    scan_runner.assert_not_called()


def test_cron_runs_scan(revenue_api):
    client, _, scan_runner, *_ = revenue_api

    response = client.get(
        '/api/cron/daily-revenue-check', headers={'Authorization': f'Bearer {CRON_SECRET}'}
    )
    data = _json(response)

    assert response.status_code == 200
    assert data['success'] is True
    assert data['processed'] == 3
    assert data['totalIssuesFound'] == 9
    assert 'executionTimeMs' in data
    assert 'timestamp' in data
    scan_runner.assert_called_once_with()


def test_cron_failure_returns_200_without_success(revenue_api):
    client, _, scan_runner, *_ = revenue_api
    scan_runner.side_effect = RuntimeError('database unavailable')

    response = client.get(
        '/api/cron/daily-revenue-check', headers={'Authorization': f'Bearer {CRON_SECRET}'}
    )

    assert response.status_code == 200
    assert _json(response)['success'] is False


def test_reads_require_organization(revenue_api):
    client, current_org, *_ = revenue_api
    current_org['id'] = None

    assert client.get('/api/revenue/snapshot/latest').status_code == 401
    assert client.get('/api/revenue/issues/today').status_code == 401
    assert client.delete('/api/stripe/disconnect').status_code == 401


def test_latest_snapshot_not_found(revenue_api):
    client, *_ = revenue_api

    assert client.get('/api/revenue/snapshot/latest').status_code == 404


def test_latest_snapshot_payload(revenue_api, store):
    client, *_ = revenue_api
    _seed(store, day=TODAY - timedelta(days=1))
    _seed(store, issues=[_issue(50.0, 'in_1')])

    data = _json(client.get('/api/revenue/snapshot/latest'))

    assert data['date'] == '2026-03-10'
    assert data['totalRevenueAtRisk'] == pytest.approx(50.0)
    assert data['mrrAffectedPercentage'] == pytest.approx(5.0)
    assert data['currentMRR'] == pytest.approx(1000.0)
    assert data['issueCountByType'] == {'failed_payment': 1}
    assert data['isPartial'] is False


def test_issues_today_without_snapshot(revenue_api):
    client, *_ = revenue_api

    data = _json(client.get('/api/revenue/issues/today'))

    assert data == {'issues': [], 'total': 0, 'snapshot': None}


def test_issues_today_paging(revenue_api, store):
    client, *_ = revenue_api
    _seed(store, issues=[_issue(10.0, 'in_a'), _issue(30.0, 'in_b'), _issue(20.0, 'in_c')])

    data = _json(client.get('/api/revenue/issues/today?limit=2&offset=0'))

    assert data['total'] == 3
    assert [issue['amount'] for issue in data['issues']] == [30.0, 20.0]
    assert data['issues'][0]['metadata']['invoiceId'] == 'in_b'
    assert data['issues'][0]['customerEmail'] == 'ada@example.com'
    assert data['snapshot']['date'] == '2026-03-10'
    assert data['snapshot']['totalRevenueAtRisk'] == pytest.approx(60.0)


def test_issues_today_rejects_bad_paging(revenue_api):
    client, *_ = revenue_api

    assert client.get('/api/revenue/issues/today?limit=abc').status_code == 400
    assert client.get('/api/revenue/issues/today?offset=-1').status_code == 400


@pytest.mark.parametrize('payload', [
    {},
    {'apiKey': 'sk_test_123'},
    {'apiKey': 'pk_test_123', 'mode': 'test'},
    {'apiKey': 'sk_test_123', 'mode': 'live'},
    {'apiKey': 'sk_live_123', 'mode': 'test'},
    {'apiKey': 'sk_test_123', 'mode': 'sandbox'},
])
def test_connect_validates_key_and_mode(revenue_api, payload):
    client, _, _, key_verifier, _ = revenue_api

    response = client.post('/api/stripe/connect', data=json.dumps(payload), content_type='application/json')

    assert response.status_code == 400
    key_verifier.assert_not_called()


def test_connect_rejects_key_stripe_refuses(revenue_api):
    client, _, _, key_verifier, _ = revenue_api
    key_verifier.side_effect = RuntimeError('Invalid API Key provided')

    response = client.post(
        '/api/stripe/connect',
        data=json.dumps({'apiKey': 'sk_test_123', 'mode': 'test'}),
        content_type='application/json',
    )

    assert response.status_code == 400
    assert 'Invalid API key' in _json(response)['error']


def test_connect_stores_encrypted_key(revenue_api, store):
    client, _, _, key_verifier, cipher = revenue_api

    response = client.post(
        '/api/stripe/connect',
        data=json.dumps({'apiKey': 'sk_test_123', 'mode': 'test'}),
        content_type='application/json',
    )
    data = _json(response)

    assert response.status_code == 200
    assert data == {'success': True, 'stripeAccountId': 'acct_1', 'stripeAccountName': 'Acme', 'mode': 'test'}
    key_verifier.assert_called_once()
    link = store.get_billing_link('org_1')
    assert link.encrypted_api_key != 'sk_test_123'
    assert cipher.decrypt(link.encrypted_api_key) == 'sk_test_123'
    assert link.stripe_account_id == 'acct_1'


def test_connect_refuses_account_of_other_organization(revenue_api, store):
    client, current_org, *_ = revenue_api
    body = json.dumps({'apiKey': 'sk_test_123', 'mode': 'test'})

    client.post('/api/stripe/connect', data=body, content_type='application/json')
    current_org['id'] = 'org_2'
    response = client.post('/api/stripe/connect', data=body, content_type='application/json')

    assert response.status_code == 400
    assert 'another organization' in _json(response)['error']
    assert store.get_billing_link('org_2') is None


def test_disconnect_clears_history(revenue_api, store):
    client, *_ = revenue_api
    _seed(store, issues=[_issue(10.0, 'in_a')])
    store.link_billing_account('org_1', encrypted_api_key='token', mode='test', stripe_account_id='acct_1')

    response = client.delete('/api/stripe/disconnect')

    assert response.status_code == 200
    assert _json(response) == {'success': True}
    assert store.get_billing_link('org_1') is None
    assert store.latest_snapshot('org_1') is None
