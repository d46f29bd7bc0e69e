"""
Analysis context builder.

Reduces a trigger, its baseline and the recent snapshot history into a
deterministic, bounded AnalysisContext.
"""

from __future__ import annotations

from typing import Iterable, List, Optional

from stakewatch.anomaly.schema import BaselineStatistics, Trigger
from stakewatch.data.schema import Snapshot

from .config import AnalysisConfig
from .schema import AnalysisContext, BaselineSummary, RecentSample

HARD_SAMPLE_CAP = 20


class AnalysisContextBuilder:
    """
    Deterministic context builder.

    Rules:
    - Only successful snapshots are attached as recent samples.
    - At most ``max_recent_samples`` (never more than 20), keeping the newest.
    - Samples are ordered ascending by time regardless of input order.
    """

    def __init__(self, config: Optional[AnalysisConfig] = None) -> None:
        self.config = config or AnalysisConfig()

    def build(
        self,
        trigger: Trigger,
        recent_history: Iterable[Snapshot],
        baseline: BaselineStatistics,
        trigger_id: Optional[str] = None,
    ) -> AnalysisContext:
        return AnalysisContext(
            protocol_name=self.config.protocol_name,
            protocol_description=self.config.protocol_description,
            trigger_id=trigger_id or trigger.trigger_id,
            detected_at=trigger.timestamp,
            max_severity=trigger.max_severity,
            summary=trigger.summary,
            evidence=list(trigger.evidence),
            baseline=self._baseline_summary(baseline),
            recent_samples=self._recent_samples(recent_history),
        )

    def _baseline_summary(self, baseline: BaselineStatistics) -> BaselineSummary:
        return BaselineSummary(
            baseline_id=baseline.baseline_id,
            window_days=baseline.window_days,
            sample_count=baseline.sample_count,
            computed_at=baseline.computed_at,
            stale=baseline.stale,
            metrics=dict(sorted(baseline.metrics.items())),
            sentiment=baseline.sentiment,
        )

    def _recent_samples(self, history: Iterable[Snapshot]) -> List[RecentSample]:
        limit = min(self.config.max_recent_samples, HARD_SAMPLE_CAP)
        snapshots = sorted((s for s in history if s.is_success), key=lambda s: s.timestamp)
        return [
            RecentSample(timestamp=s.timestamp, metrics=dict(sorted(s.metrics.items())))
            for s in snapshots[-limit:]
        ]
