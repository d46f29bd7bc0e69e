"""
Schema for the deep analysis context document.

The context contains only factual data already held by the detector: the
trigger's evidence, the baseline it was evaluated against and a bounded
slice of recent snapshots.
"""

from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from stakewatch.anomaly.schema import AnomalySeverity, MetricStats, TriggerEvidence
from stakewatch.data.schema import SentimentSummary


class BaselineSummary(BaseModel):
    """
    Baseline facts attached to the context.

    Fields:
    - baseline_id: identifier of the baseline the trigger was evaluated against
    - window_days / sample_count: coverage of the baseline
    - stale: True if served from cache after a store failure
    - metrics: per-metric statistics
    - sentiment: baseline sentiment over the same window, when available
    """

    baseline_id: str
    window_days: int
    sample_count: int
    computed_at: datetime
    stale: bool = False
    metrics: Dict[str, MetricStats] = Field(default_factory=dict)
    sentiment: Optional[SentimentSummary] = None


class RecentSample(BaseModel):
    """A recent snapshot reduced to its timestamp and metrics."""

    timestamp: datetime
    metrics: Dict[str, float]


class AnalysisContext(BaseModel):
    """
    Bounded context document sent to the reasoning service.

    Fields:
    - protocol_name / protocol_description: what is being monitored
    - trigger_id / detected_at: the escalated trigger
    - max_severity / summary: pre-filter verdict
    - evidence: the trigger's evidence list
    - baseline: baseline summary
    - recent_samples: most recent snapshots, ascending by time (bounded)
    """

    protocol_name: str
    protocol_description: str
    trigger_id: str
    detected_at: datetime
    max_severity: AnomalySeverity
    summary: str
    evidence: List[TriggerEvidence]
    baseline: BaselineSummary
    recent_samples: List[RecentSample] = Field(default_factory=list, max_length=20)
