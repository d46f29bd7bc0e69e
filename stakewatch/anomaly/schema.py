"""
Schema definitions for anomaly detection.

All detection outputs are deterministic and explainable. Each trigger
references the baseline it was evaluated against, its evidence carries the
observed and reference values, and findings trace back to one trigger.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, model_validator

from stakewatch.data.schema import SentimentSummary


class AnomalySeverity(str, Enum):
    """Severity levels for anomalies. NONE marks a clean read."""

    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class MetricStats(BaseModel):
    """
    Baseline statistics for a single metric.

    Fields:
    - mean: central tendency
    - std: population standard deviation
    - min/max/median: range and robust centre
    - count: number of samples that reported the metric
    """

    mean: float
    std: float = Field(ge=0.0)
    min: float
    max: float
    median: float
    count: int = Field(ge=1)


class BaselineStatistics(BaseModel):
    """
    Rolling summary of historical snapshots used as the "normal" reference.

    Fields:
    - baseline_id: identifier referenced by every trigger evaluated against it
    - metrics: per-metric statistics
    - sample_count: successful snapshots in the window
    - window_days: trailing window length
    - computed_at: when the aggregation ran
    - stale: True when served from cache after a failed recomputation
    - sentiment: optional sentiment summary over the same window
    """

    baseline_id: str = Field(default_factory=lambda: str(uuid4()))
    metrics: Dict[str, MetricStats] = Field(default_factory=dict)
    sample_count: int = Field(ge=0)
    window_days: int = Field(ge=1)
    computed_at: datetime
    stale: bool = False
    sentiment: Optional[SentimentSummary] = None

    def stats(self, metric: str) -> Optional[MetricStats]:
        key = getattr(metric, "value", metric)
        return self.metrics.get(key)


class TriggerEvidence(BaseModel):
    """
    One metric's deviation within a pre-filter evaluation.

    Fields:
    - metric: metric name (or "correlation" for the multi-signal bonus)
    - severity: categorical severity
    - current_value: observed value (None for the correlation bonus)
    - baseline_value: reference value (baseline mean or theoretical target)
    - z_score: standardized deviation, when baseline-relative
    - deviation_pct: relative deviation from the reference in percent
    - reason: human-readable explanation
    - correlated_metrics: metrics moving together (correlation bonus only)
    """

    metric: str
    severity: AnomalySeverity
    current_value: Optional[float] = None
    baseline_value: Optional[float] = None
    z_score: Optional[float] = None
    deviation_pct: Optional[float] = None
    reason: str
    correlated_metrics: List[str] = Field(default_factory=list)


class Trigger(BaseModel):
    """
    The pre-filter's per-cycle output.

    Fields:
    - trigger_id: unique identifier
    - timestamp: timestamp of the evaluated snapshot
    - is_anomalous: True if any evidence was produced
    - escalation_recommended: True if deep analysis is warranted
    - evidence: list of per-metric deviations
    - max_severity: highest severity across all evidence
    - baseline_id / baseline_sample_count: the baseline used (audit trail)
    - summary: short human summary
    - finding_id: first finding produced by escalation (back-reference)
    - escalated_at: when a successful escalation completed
    """

    trigger_id: str = Field(default_factory=lambda: str(uuid4()))
    timestamp: datetime
    is_anomalous: bool
    escalation_recommended: bool
    evidence: List[TriggerEvidence] = Field(default_factory=list)
    max_severity: AnomalySeverity = AnomalySeverity.NONE
    baseline_id: str
    baseline_sample_count: int = Field(ge=0)
    summary: str = ""
    finding_id: Optional[str] = None
    escalated_at: Optional[datetime] = None

    @model_validator(mode="after")
    def _escalation_requires_anomaly(self) -> "Trigger":
        if self.escalation_recommended and not self.is_anomalous:
            raise ValueError("escalation_recommended requires is_anomalous")
        return self

    @property
    def metrics(self) -> List[str]:
        return [e.metric for e in self.evidence]


class FindingStatus(str, Enum):
    ACTIVE = "active"
    RESOLVED = "resolved"
    FALSE_POSITIVE = "false_positive"


class Finding(BaseModel):
    """
    A persisted, validated anomaly description produced by deep analysis.

    Fields:
    - finding_id: store identifier (assigned on creation, replaced by the store's id)
    - trigger_id: the trigger whose escalation produced this finding
    - detected_at: detection timestamp (the trigger's snapshot time)
    - type: anomaly category reported by the reasoning service
    - severity / confidence: validated classification
    - title / description: bounded human text
    - affected_metrics, recommendation, correlation_notes, historical_comparison
    - analysis_notes: batch-level notes (overall assessment, monitoring priority)
    - status: lifecycle state, owned by the surrounding system
    """

    finding_id: str = Field(default_factory=lambda: str(uuid4()))
    trigger_id: str
    detected_at: datetime
    type: str
    severity: AnomalySeverity
    confidence: float = Field(ge=0.0, le=1.0)
    title: str = Field(min_length=1, max_length=200)
    description: str = Field(min_length=1)
    affected_metrics: List[str] = Field(default_factory=list)
    recommendation: Optional[str] = None
    correlation_notes: List[str] = Field(default_factory=list)
    historical_comparison: Optional[str] = None
    analysis_notes: Dict[str, Any] = Field(default_factory=dict)
    status: FindingStatus = FindingStatus.ACTIVE


class RateLimitState(BaseModel):
    """Time of the last successful escalation (None before the first)."""

    last_escalation_at: Optional[datetime] = None


class CycleStatus(str, Enum):
    """What a detection cycle ended up doing."""

    NO_DATA = "no_data"
    NOT_READY = "not_ready"
    CALM = "calm"
    ANOMALOUS = "anomalous"
    RATE_LIMITED = "rate_limited"
    DEFERRED = "deferred"
    ESCALATED = "escalated"
    FAILED = "failed"


class CycleResult(BaseModel):
    """
    Outcome of one detection cycle, including partial successes.

    Fields:
    - status: terminal state of the cycle
    - escalated / rate_limited: escalation outcome flags
    - findings: findings produced by a successful escalation
    - trigger / trigger_id: the evaluated trigger and its store id
    - error: failure description (analysis failure, timeout, unexpected error)
    - persistence_error: set when audit data could not be written
    - baseline_stale: True when the baseline came from a stale cache
    - retry_after_seconds: time left in the rate-limit window
    """

    status: CycleStatus
    started_at: datetime
    duration_ms: float = 0.0
    escalated: bool = False
    rate_limited: bool = False
    findings: List[Finding] = Field(default_factory=list)
    trigger: Optional[Trigger] = None
    trigger_id: Optional[str] = None
    error: Optional[str] = None
    persistence_error: Optional[str] = None
    baseline_stale: bool = False
    retry_after_seconds: Optional[float] = None


class DetectionStats(BaseModel):
    """Operational counters over a trailing window."""

    window_hours: int
    anomalous_cycles: int = 0
    normal_cycles: int = 0
    escalation_count: int = 0
    last_cycle_at: Optional[datetime] = None
    last_escalation_at: Optional[datetime] = None
    min_escalation_interval_seconds: float

