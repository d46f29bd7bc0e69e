"""
Pytest configuration and shared fixtures.

Provides a controllable clock, deterministic snapshot history and a seeded
in-memory store for unit and integration tests.
"""

import json
from datetime import datetime, timedelta, timezone
from typing import Dict, List

import pytest

from stakewatch.core.config import BaselineConfig, DetectionConfig
from stakewatch.data.schema import Snapshot
from stakewatch.data.store import InMemoryDetectionStore

T0 = datetime(2025, 2, 7, 12, 0, tzinfo=timezone.utc)

# Alternating +/- deviation around these means gives population std == spread
BASELINE_CENTRES: Dict[str, float] = {
    "locked_value": 2_700_000.0,
    "peg_ratio": 0.9998,
    "gas_price_gwei": 5.0,
    "queue_size": 100.0,
    "withdrawal_count": 50.0,
    "deposit_count": 40.0,
}
BASELINE_SPREADS: Dict[str, float] = {
    "locked_value": 1_000.0,
    "peg_ratio": 0.0001,
    "gas_price_gwei": 1.0,
    "queue_size": 10.0,
    "withdrawal_count": 5.0,
    "deposit_count": 4.0,
}


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


def make_history(count: int, end: datetime = T0, interval_minutes: int = 5) -> List[Snapshot]:
    """Deterministic history ending one interval before ``end``."""
    snapshots = []
    for i in range(count):
        sign = 1.0 if i % 2 == 0 else -1.0
        metrics = {
            name: BASELINE_CENTRES[name] + sign * BASELINE_SPREADS[name]
            for name in BASELINE_CENTRES
        }
        timestamp = end - timedelta(minutes=interval_minutes * (count - i))
        snapshots.append(Snapshot(timestamp=timestamp, metrics=metrics))
    return snapshots


def normal_metrics(**overrides: float) -> Dict[str, float]:
    metrics = dict(BASELINE_CENTRES)
    metrics.update(overrides)
    return metrics


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(T0 + timedelta(minutes=1))


@pytest.fixture
def history() -> List[Snapshot]:
    """48 snapshots (4 hours of 5-minute sampling) before T0."""
    return make_history(48)


@pytest.fixture
def store(clock, history) -> InMemoryDetectionStore:
    """Store seeded with the baseline history and no current snapshot."""
    return InMemoryDetectionStore(snapshots=history, clock=clock)


@pytest.fixture
def baseline_config() -> BaselineConfig:
    return BaselineConfig(min_samples=12, recommended_samples=24)


@pytest.fixture
def detection_config() -> DetectionConfig:
    return DetectionConfig(
        min_escalation_interval_seconds=300.0,
        analysis_timeout_seconds=5.0,
    )


@pytest.fixture
def valid_response_text() -> str:
    """A well-formed reasoning service response with one finding."""
    return json.dumps(
        {
            "anomalies": [
                {
                    "type": "peg_deviation",
                    "severity": "HIGH",
                    "confidence": 0.82,
                    "title": "eETH trading below peg",
                    "description": "eETH is trading 1.5% below ETH while gas is normal.",
                    "affectedMetrics": ["peg_ratio"],
                    "recommendation": "Monitor secondary market liquidity.",
                    "historicalComparison": "Similar to stETH discount in June 2022",
                    "correlations": ["peg_ratio"],
                    "timeframe": "hours",
                    "riskLevel": "elevated",
                }
            ],
            "overallAssessment": "Peg stress without broader protocol distress.",
            "monitoringPriority": "peg_ratio",
            "falseAlarmProbability": 0.2,
        }
    )


def pytest_configure(config):
    """
    Pytest hook for custom configuration.

    Registers custom markers used throughout tests.
    """
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as an integration test"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running (deferred CI)"
    )
