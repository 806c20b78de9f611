import logging
from datetime import date, timedelta
from unittest.mock import MagicMock

import pytest

from leak_radar.errors import BillingNotConnectedError
from leak_radar.issues import IssueSummary
from leak_radar.scan import ScanOrchestrator, ScanRunResult, ScanState
from billing_fakes import NOW, FakeBillingClient, make_subscription

TODAY = date(2026, 3, 10)


def _orchestrator(store, clients, **kwargs):
    def factory(org_id):
        client = clients[org_id]
        if isinstance(client, Exception):
            raise client
        return client

    return ScanOrchestrator(store, factory, today=lambda: TODAY, clock=lambda: NOW, **kwargs)


def _connect(store, *org_ids):
    for org_id in org_ids:
        store.create_organization(org_id)
        store.link_billing_account(
            org_id, encrypted_api_key='token', mode='test', stripe_account_id=f'acct_{org_id}'
        )


def _seed_snapshot(store, org_id, day, current_mrr, is_partial=False):
    store.replace_daily_results(
        org_id,
        day,
        issues=[],
        summary=IssueSummary(0.0, 0.0, {}),
        current_mrr=current_mrr,
        is_partial=is_partial,
    )


def _mrr_client(total, count=1):
    per_sub = int(total * 100 / count)
    return FakeBillingClient(
        subscriptions=[make_subscription(f'sub_{i}', unit_amount=per_sub) for i in range(count)]
    )


def test_scan_persists_snapshot_and_issues(store, billing_account):
    _connect(store, 'org_1')
    orchestrator = _orchestrator(store, {'org_1': FakeBillingClient(**billing_account)})

    outcome = orchestrator.scan_organization('org_1')

    assert outcome.state is ScanState.COMPLETE
    assert outcome.issues_found == 6
    snapshot = store.find_snapshot('org_1', TODAY)
    assert snapshot.current_mrr == pytest.approx(250.0)
    assert snapshot.total_revenue_at_risk == pytest.approx(362.0)
    assert snapshot.mrr_affected_percentage == pytest.approx(144.8)
    assert snapshot.issue_count_by_type == {
        'failed_payment': 2,
        'failed_subscription': 1,
        'expiring_card': 1,
        'chargeback': 2,
    }
    assert snapshot.is_partial is False
    amounts = [r.amount for r in store.list_issues(snapshot.id)]
    assert sum(amounts) == pytest.approx(snapshot.total_revenue_at_risk)


def test_rerun_on_same_day_replaces_issues(store, billing_account):
    _connect(store, 'org_1')
    client = FakeBillingClient(**billing_account)
    orchestrator = _orchestrator(store, {'org_1': client})

    orchestrator.run_daily_scan()
    client.disputes = []
    orchestrator.run_daily_scan()

    snapshots = store.find_snapshots_in_range('org_1', TODAY, TODAY + timedelta(days=1), exclude_partial=False)
    assert len(snapshots) == 1
    records = store.list_issues(snapshots[0].id)
    assert len(records) == 4
    assert 'chargeback' not in {r.type for r in records}


def test_failing_pass_yields_partial_snapshot(store, billing_account):
    _connect(store, 'org_1')
    client = FakeBillingClient(**billing_account, failures={'list_customers': RuntimeError('boom')})

    outcome = _orchestrator(store, {'org_1': client}).scan_organization('org_1')

    assert outcome.state is ScanState.PARTIAL
    snapshot = store.find_snapshot('org_1', TODAY)
    assert snapshot.is_partial is True
    assert snapshot.failed_sources == ['expiring_cards']
    assert snapshot.issue_count_by_type == {
        'failed_payment': 2,
        'failed_subscription': 1,
        'chargeback': 2,
    }


def test_mrr_drop_adds_anomaly_issue(store):
    _connect(store, 'org_1')
    _seed_snapshot(store, 'org_1', TODAY - timedelta(days=1), 100000.0)

    _orchestrator(store, {'org_1': _mrr_client(85000)}).scan_organization('org_1')

    snapshot = store.find_snapshot('org_1', TODAY)
    anomalies = [r for r in store.list_issues(snapshot.id) if r.type == 'mrr_anomaly']
    assert len(anomalies) == 1
    assert anomalies[0].amount == pytest.approx(15000.0)
    assert anomalies[0].priority == 'critical'
    # yesterday also forms the trailing seven-day average
    assert anomalies[0].issue_metadata['triggerMethod'] == 'day_over_day, 7day_average'
    assert anomalies[0].issue_metadata['previousMRR'] == pytest.approx(100000.0)


@pytest.mark.parametrize('yesterday_mrr', [None, 0.0])
def test_no_anomaly_without_yesterday(store, yesterday_mrr):
    _connect(store, 'org_1')
    for offset in range(2, 6):
        _seed_snapshot(store, 'org_1', TODAY - timedelta(days=offset), 500000.0)
    if yesterday_mrr is not None:
        _seed_snapshot(store, 'org_1', TODAY - timedelta(days=1), yesterday_mrr)

    _orchestrator(store, {'org_1': _mrr_client(100000)}).scan_organization('org_1')

    snapshot = store.find_snapshot('org_1', TODAY)
    assert store.count_issues(snapshot.id) == 0


def test_partial_yesterday_is_not_a_baseline(store):
    _connect(store, 'org_1')
    _seed_snapshot(store, 'org_1', TODAY - timedelta(days=1), 100000.0, is_partial=True)

    _orchestrator(store, {'org_1': _mrr_client(50000)}).scan_organization('org_1')

    assert store.count_issues(store.find_snapshot('org_1', TODAY).id) == 0


def test_paginated_mrr_is_exact(store):
    _connect(store, 'org_1')

    outcome = _orchestrator(store, {'org_1': _mrr_client(25000, count=250)}).scan_organization('org_1')

    assert outcome.current_mrr == pytest.approx(25000.0)
    assert outcome.is_partial is False


def test_one_broken_organization_does_not_block_others(store, caplog):
    _connect(store, 'org_1', 'org_2', 'org_3')
    clients = {
        'org_1': _mrr_client(1000),
        'org_2': BillingNotConnectedError('no key'),
        'org_3': _mrr_client(3000),
    }

    with caplog.at_level(logging.ERROR, logger='leak_radar.scan'):
        result = _orchestrator(store, clients).run_daily_scan()

    assert isinstance(result, ScanRunResult)
    assert result.organizations_processed == 2
    assert store.find_snapshot('org_1', TODAY) is not None
    assert store.find_snapshot('org_2', TODAY) is None
    assert store.find_snapshot('org_3', TODAY).current_mrr == pytest.approx(3000.0)
    assert 'org_2' in caplog.text


def test_persistence_failure_skips_organization(billing_account):
    store = MagicMock()
    store.list_connected_organizations.return_value = [MagicMock(id='org_1')]
    store.find_snapshot.return_value = None
    store.find_snapshots_in_range.return_value = []
    store.replace_daily_results.side_effect = RuntimeError('database is locked')

    result = _orchestrator(store, {'org_1': FakeBillingClient(**billing_account)}).run_daily_scan()

    assert result.organizations_processed == 0
    assert result.issues_found == 0
    store.replace_daily_results.assert_called_once()


def test_run_result_serializes_camel_case():
    assert ScanRunResult(2, 7, 150).to_dict() == {
        'organizationsProcessed': 2,
        'issuesFound': 7,
        'durationMs': 150,
    }
