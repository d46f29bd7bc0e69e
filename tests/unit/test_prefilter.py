"""
Unit tests for the statistical pre-filter.
"""

from datetime import datetime, timezone
from itertools import product
from math import isclose

import pytest

from stakewatch.anomaly.prefilter import PreFilter
from stakewatch.anomaly.schema import AnomalySeverity, BaselineStatistics, MetricStats
from stakewatch.core.config import GasThresholds, PrefilterConfig
from stakewatch.data.schema import SentimentSummary, Snapshot

T0 = datetime(2025, 2, 7, 12, 0, tzinfo=timezone.utc)


def _baseline(**stats) -> BaselineStatistics:
    metrics = {
        name: MetricStats(mean=mean, std=std, min=mean - std, max=mean + std, median=mean, count=100)
        for name, (mean, std) in stats.items()
    }
    return BaselineStatistics(metrics=metrics, sample_count=100, window_days=30, computed_at=T0)


def _snapshot(**metrics) -> Snapshot:
    return Snapshot(timestamp=T0, metrics=metrics)


def test_peg_depeg_is_critical_and_escalates():
    baseline = _baseline(peg_ratio=(1.0, 0.00005))
    trigger = PreFilter().evaluate(_snapshot(peg_ratio=0.987), baseline)

    assert trigger.is_anomalous
    assert trigger.escalation_recommended
    assert trigger.max_severity == AnomalySeverity.CRITICAL
    assert trigger.metrics == ["peg_ratio"]
    assert isclose(trigger.evidence[0].deviation_pct, 1.3, rel_tol=1e-6)
    assert trigger.summary == "PEG_RATIO anomaly detected"
    assert trigger.baseline_id == baseline.baseline_id


def test_locked_value_zscore_high_escalates():
    baseline = _baseline(locked_value=(1_000_000.0, 50_000.0))
    trigger = PreFilter().evaluate(_snapshot(locked_value=1_140_000.0), baseline)

    assert trigger.escalation_recommended
    assert trigger.max_severity == AnomalySeverity.HIGH
    evidence = trigger.evidence[0]
    assert evidence.metric == "locked_value"
    assert isclose(evidence.z_score, 2.8, rel_tol=1e-9)
    assert evidence.baseline_value == 1_000_000.0


def test_calm_snapshot_produces_clean_trigger():
    baseline = _baseline(locked_value=(1_000_000.0, 50_000.0), peg_ratio=(1.0, 0.0005))
    snapshot = _snapshot(gas_price_gwei=5.0, locked_value=1_020_000.0, peg_ratio=1.0002)
    trigger = PreFilter().evaluate(snapshot, baseline)

    assert not trigger.is_anomalous
    assert not trigger.escalation_recommended
    assert trigger.evidence == []
    assert trigger.max_severity == AnomalySeverity.NONE
    assert trigger.summary == "All metrics within normal range"


def test_two_medium_signals_fire_correlation_bonus():
    baseline = _baseline(queue_size=(100.0, 10.0))
    trigger = PreFilter().evaluate(_snapshot(queue_size=122.0, gas_price_gwei=12.0), baseline)

    severities = {e.metric: e.severity for e in trigger.evidence}
    assert severities["queue_size"] == AnomalySeverity.MEDIUM
    assert severities["gas_price_gwei"] == AnomalySeverity.MEDIUM
    assert severities["correlation"] == AnomalySeverity.HIGH

    correlation = trigger.evidence[-1]
    assert correlation.correlated_metrics == ["queue_size", "gas_price_gwei"]
    assert trigger.max_severity == AnomalySeverity.HIGH
    assert trigger.escalation_recommended
    assert trigger.summary == "Multiple anomalies detected: queue_size, gas_price_gwei"


def test_single_medium_signal_does_not_escalate():
    trigger = PreFilter().evaluate(_snapshot(gas_price_gwei=12.0), _baseline())

    assert trigger.is_anomalous
    assert not trigger.escalation_recommended
    assert trigger.max_severity == AnomalySeverity.MEDIUM


def test_queue_rule_is_upward_only():
    baseline = _baseline(queue_size=(100.0, 10.0), withdrawal_count=(50.0, 5.0))
    trigger = PreFilter().evaluate(_snapshot(queue_size=60.0, withdrawal_count=30.0), baseline)
    assert trigger.evidence == []


def test_queue_top_tier_is_high_and_locked_value_is_two_sided():
    baseline = _baseline(queue_size=(100.0, 10.0), locked_value=(1_000_000.0, 50_000.0))

    queue = PreFilter().evaluate(_snapshot(queue_size=140.0), baseline)
    assert queue.evidence[0].severity == AnomalySeverity.HIGH

    drain = PreFilter().evaluate(_snapshot(locked_value=840_000.0), baseline)
    assert drain.evidence[0].severity == AnomalySeverity.CRITICAL
    assert "lower" in drain.evidence[0].reason


def test_peg_zscore_fallback_when_no_hard_tier():
    baseline = _baseline(peg_ratio=(0.9998, 0.0001))
    trigger = PreFilter().evaluate(_snapshot(peg_ratio=0.9995), baseline)

    assert trigger.metrics == ["peg_ratio_zscore"]
    assert trigger.max_severity == AnomalySeverity.MEDIUM
    assert not trigger.escalation_recommended


def test_zero_std_metric_never_triggers():
    baseline = _baseline(locked_value=(1_000_000.0, 0.0))
    trigger = PreFilter().evaluate(_snapshot(locked_value=2_000_000.0), baseline)
    assert trigger.evidence == []


def test_sentiment_signal_is_included():
    panic = SentimentSummary(avg_score=-0.5, negative_share=0.7, total_samples=40)
    trigger = PreFilter().evaluate(_snapshot(gas_price_gwei=5.0), _baseline(), sentiment=panic)

    assert trigger.metrics == ["sentiment"]
    assert trigger.max_severity == AnomalySeverity.HIGH
    assert trigger.escalation_recommended


def test_thresholds_are_configurable():
    config = PrefilterConfig(gas=GasThresholds(medium=4.0))
    trigger = PreFilter(config=config).evaluate(_snapshot(gas_price_gwei=5.0), _baseline())
    assert trigger.max_severity == AnomalySeverity.MEDIUM


@pytest.mark.parametrize(
    "gas,peg,queue",
    list(product([5.0, 12.0, 25.0, 60.0], [1.0, 0.996, 0.994, 0.98], [100.0, 121.0, 126.0, 140.0])),
)
def test_escalation_implies_anomalous(gas, peg, queue):
    baseline = _baseline(queue_size=(100.0, 10.0), peg_ratio=(1.0, 0.001))
    trigger = PreFilter().evaluate(_snapshot(gas_price_gwei=gas, peg_ratio=peg, queue_size=queue), baseline)

    assert not trigger.escalation_recommended or trigger.is_anomalous
    assert trigger.is_anomalous == bool(trigger.evidence)
