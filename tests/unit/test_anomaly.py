from types import SimpleNamespace

import pytest

from leak_radar.anomaly import detect_mrr_anomaly
from leak_radar.issues import IssueType, Priority


def _snap(mrr, partial=False):
    return SimpleNamespace(current_mrr=mrr, is_partial=partial)


def test_day_over_day_drop_without_history():
    issue = detect_mrr_anomaly(85000, _snap(100000), [])

    assert issue is not None
    assert issue.type is IssueType.MRR_ANOMALY
    assert issue.priority is Priority.CRITICAL
    assert issue.amount == pytest.approx(15000)
    assert issue.customer_email == 'N/A'
    assert issue.customer_name == 'Organization-wide'
    assert issue.metadata.trigger_method == 'day_over_day'
    assert issue.metadata.day_over_day_change == pytest.approx(-15.0)
    assert issue.metadata.avg_7day_mrr == 0.0
    assert issue.metadata.avg_7day_change == 0.0


def test_both_triggers_are_joined():
    history = [_snap(100000), _snap(100000), _snap(98000)]

    issue = detect_mrr_anomaly(85000, _snap(100000), history)

    assert issue.metadata.trigger_method == 'day_over_day, 7day_average'
    assert issue.metadata.avg_7day_mrr == pytest.approx(99333.3333, rel=1e-6)
    assert issue.metadata.avg_7day_change == pytest.approx(-14.43)


def test_seven_day_average_alone_can_trigger():
    # small daily steps that add up to a large slide
    history = [_snap(95000), _snap(100000), _snap(105000), _snap(110000)]

    issue = detect_mrr_anomaly(88000, _snap(95000), history)

    assert issue is not None
    assert issue.metadata.trigger_method == '7day_average'
    assert issue.amount == pytest.approx(7000)


def test_partial_history_is_ignored():
    history = [_snap(200000, partial=True)]

    assert detect_mrr_anomaly(95000, _snap(100000), history) is None


def test_drop_at_threshold_is_not_reported():
    assert detect_mrr_anomaly(90000, _snap(100000), []) is None


def test_growth_is_not_reported():
    assert detect_mrr_anomaly(120000, _snap(100000), [_snap(90000)]) is None


@pytest.mark.parametrize('yesterday', [None, _snap(0), _snap(100000, partial=True)])
def test_no_anomaly_without_usable_baseline(yesterday):
    history = [_snap(500000), _snap(500000)]

    assert detect_mrr_anomaly(100000, yesterday, history) is None


def test_no_anomaly_when_current_mrr_is_zero():
    assert detect_mrr_anomaly(0, _snap(100000), [_snap(100000)]) is None


def test_custom_threshold():
    assert detect_mrr_anomaly(96000, _snap(100000), [], threshold_pct=3) is not None
    assert detect_mrr_anomaly(96000, _snap(100000), [], threshold_pct=5) is None
