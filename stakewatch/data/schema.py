"""
Canonical snapshot schema for the anomaly detection pipeline.

A snapshot is one timestamped reading of every tracked protocol metric,
produced by an external collector. The detection core only ever reads
snapshots; they are frozen once created.

Design rationale:
- Metrics are a flat name -> float mapping so collectors can add metrics
  without schema changes
- All timestamps in UTC for consistency
- Provenance (source) and collection status are kept so failed or
  synthetic rows can be excluded from baselines
"""

from datetime import datetime
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from stakewatch.core.clock import ensure_utc


class Metric(str, Enum):
    """
    Names of the tracked metrics.

    Values are the keys used in ``Snapshot.metrics``.
    """
    LOCKED_VALUE = "locked_value"
    PEG_RATIO = "peg_ratio"
    GAS_PRICE = "gas_price_gwei"
    QUEUE_SIZE = "queue_size"
    WITHDRAWAL_COUNT = "withdrawal_count"
    DEPOSIT_COUNT = "deposit_count"


class SnapshotStatus(str, Enum):
    """Collection outcome reported by the collector."""
    SUCCESS = "success"
    FAILED = "failed"


class Snapshot(BaseModel):
    """
    One timestamped reading of all tracked metrics.

    Attributes:
        timestamp: UTC datetime of the reading
        metrics: Metric name -> numeric value (missing metrics are simply absent)
        source: Provenance tag of the collector that produced the reading
        status: Whether the collection succeeded
        error_message: Collector error text for failed readings

    Notes:
        - Frozen: the core never mutates a snapshot
        - Non-finite values are rejected at construction
    """

    model_config = ConfigDict(frozen=True)

    timestamp: datetime = Field(
        ...,
        description="UTC timestamp of the reading"
    )

    metrics: Dict[str, float] = Field(
        default_factory=dict,
        description="Metric name -> value"
    )

    source: str = Field(
        default="blockchain_collector",
        min_length=1,
        max_length=50,
        description="Provenance tag"
    )

    status: SnapshotStatus = Field(
        default=SnapshotStatus.SUCCESS,
        description="Collection status"
    )

    error_message: Optional[str] = Field(
        default=None,
        description="Collector error for failed readings"
    )

    @field_validator("timestamp")
    @classmethod
    def _utc_timestamp(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @field_validator("metrics")
    @classmethod
    def _finite_metrics(cls, value: Dict[str, float]) -> Dict[str, float]:
        for name, number in value.items():
            if number != number or number in (float("inf"), float("-inf")):
                raise ValueError(f"Metric {name} is not a finite number")
        return value

    @property
    def is_success(self) -> bool:
        return self.status == SnapshotStatus.SUCCESS

    def value(self, metric: str) -> Optional[float]:
        """Return a metric value, or None if the collector did not report it."""
        key = metric.value if isinstance(metric, Metric) else metric
        return self.metrics.get(key)


class SentimentLabel(str, Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"


class SentimentSample(BaseModel):
    """
    A single scored social post.

    Attributes:
        collected_at: UTC time the post was collected
        score: Sentiment score in [-1.0, 1.0]
        label: Classified sentiment
    """

    collected_at: datetime
    score: float = Field(ge=-1.0, le=1.0)
    label: SentimentLabel

    @field_validator("collected_at")
    @classmethod
    def _utc_collected_at(cls, value: datetime) -> datetime:
        return ensure_utc(value)


class SentimentSummary(BaseModel):
    """
    Aggregate of recent sentiment samples.

    Attributes:
        avg_score: Mean sentiment score
        negative_share: Fraction of samples labelled negative (0.0-1.0)
        positive_share: Fraction of samples labelled positive (0.0-1.0)
        total_samples: Number of samples aggregated
    """

    avg_score: float = Field(ge=-1.0, le=1.0)
    negative_share: float = Field(ge=0.0, le=1.0)
    positive_share: float = Field(default=0.0, ge=0.0, le=1.0)
    total_samples: int = Field(ge=0)
