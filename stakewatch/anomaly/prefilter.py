"""
Statistical pre-filter.

Turns one snapshot plus the current baseline into a Trigger: which metrics
look abnormal, how severely, and whether an expensive deep analysis is
warranted. Pure: no I/O, deterministic given its inputs.

Evaluation order:
1. Magnitude metrics (locked value, queue, withdrawals) against baseline z-scores
2. Peg ratio against fixed deviation tiers (z-score fallback when no tier fires)
3. Gas price against fixed bands
4. Sentiment summary (optional)
5. Correlation bonus when two or more distinct metrics fired
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

from stakewatch.core.config import PrefilterConfig, ZScoreRule
from stakewatch.data.schema import Metric, SentimentSummary, Snapshot

from .detectors import RelativeDeviationDetector, ZScoreDetector
from .schema import AnomalySeverity, BaselineStatistics, Trigger, TriggerEvidence
from .scoring import ESCALATION_SEVERITIES, SeverityMapper, overall_severity

CORRELATION_METRIC = "correlation"
PEG_ZSCORE_METRIC = "peg_ratio_zscore"
SENTIMENT_METRIC = "sentiment"


@dataclass
class PreFilter:
    """
    Deterministic pre-filter.

    Notes:
    - Peg and gas tiers ignore the baseline: a hard deviation from the
      theoretical target matters even if it is historically "normal".
    - The correlation bonus counts distinct trigger metrics regardless of
      which mechanism produced them.
    """

    config: PrefilterConfig = field(default_factory=PrefilterConfig)

    def __post_init__(self) -> None:
        self._z_detector = ZScoreDetector()
        self._deviation = RelativeDeviationDetector()
        self._severity_mapper = SeverityMapper(self.config)

    def evaluate(
        self,
        snapshot: Snapshot,
        baseline: BaselineStatistics,
        sentiment: Optional[SentimentSummary] = None,
    ) -> Trigger:
        evidence: List[TriggerEvidence] = []

        for rule in self.config.zscore_rules:
            item = self._zscore_evidence(rule, snapshot, baseline)
            if item is not None:
                evidence.append(item)

        peg = self._peg_evidence(snapshot, baseline)
        if peg is not None:
            evidence.append(peg)

        gas = self._gas_evidence(snapshot, baseline)
        if gas is not None:
            evidence.append(gas)

        mood = self._sentiment_evidence(sentiment)
        if mood is not None:
            evidence.append(mood)

        correlation = self._correlation_evidence(evidence)
        if correlation is not None:
            evidence.append(correlation)

        is_anomalous = bool(evidence)
        max_severity = overall_severity(*(e.severity for e in evidence))
        escalation = is_anomalous and (
            max_severity in ESCALATION_SEVERITIES or correlation is not None
        )

        return Trigger(
            timestamp=snapshot.timestamp,
            is_anomalous=is_anomalous,
            escalation_recommended=escalation,
            evidence=evidence,
            max_severity=max_severity,
            baseline_id=baseline.baseline_id,
            baseline_sample_count=baseline.sample_count,
            summary=summarize(evidence),
        )

    def _zscore_evidence(
        self, rule: ZScoreRule, snapshot: Snapshot, baseline: BaselineStatistics
    ) -> Optional[TriggerEvidence]:
        current = snapshot.value(rule.metric)
        stats = baseline.stats(rule.metric)
        if current is None or stats is None:
            return None

        zscore = self._z_detector.compute(current, stats)
        severity = self._severity_mapper.zscore_severity(
            zscore,
            top_severity=AnomalySeverity(rule.top_severity),
            upward_only=rule.upward_only,
        )
        if severity == AnomalySeverity.NONE:
            return None

        change = self._deviation.compute(current, stats.mean)
        direction = "higher" if zscore > 0 else "lower"
        if change is not None:
            reason = f"{rule.label} {direction} than baseline ({change:+.2f}%, z={zscore:.2f})"
        else:
            reason = f"{rule.label} {direction} than baseline (z={zscore:.2f})"

        return TriggerEvidence(
            metric=rule.metric,
            severity=severity,
            current_value=current,
            baseline_value=stats.mean,
            z_score=zscore,
            deviation_pct=change,
            reason=reason,
        )

    def _peg_evidence(
        self, snapshot: Snapshot, baseline: BaselineStatistics
    ) -> Optional[TriggerEvidence]:
        ratio = snapshot.value(Metric.PEG_RATIO)
        if ratio is None:
            return None

        target = self.config.peg.target
        severity = self._severity_mapper.peg_severity(ratio)
        deviation_pct = abs(ratio - target) * 100.0
        if severity != AnomalySeverity.NONE:
            side = "premium" if ratio > target else "discount"
            position = "above" if ratio > target else "below"
            return TriggerEvidence(
                metric=Metric.PEG_RATIO.value,
                severity=severity,
                current_value=ratio,
                baseline_value=target,
                deviation_pct=deviation_pct,
                reason=f"Trading {position} peg ({deviation_pct:.3f}% {side})",
            )

        stats = baseline.stats(Metric.PEG_RATIO)
        if stats is None:
            return None
        zscore = self._z_detector.compute(ratio, stats)
        if abs(zscore) < self.config.peg.zscore_fallback:
            return None
        return TriggerEvidence(
            metric=PEG_ZSCORE_METRIC,
            severity=AnomalySeverity.MEDIUM,
            current_value=ratio,
            baseline_value=stats.mean,
            z_score=zscore,
            deviation_pct=self._deviation.compute(ratio, stats.mean),
            reason=f"Peg ratio deviating from historical pattern (z={zscore:.2f})",
        )

    def _gas_evidence(
        self, snapshot: Snapshot, baseline: BaselineStatistics
    ) -> Optional[TriggerEvidence]:
        gwei = snapshot.value(Metric.GAS_PRICE)
        severity = self._severity_mapper.gas_severity(gwei)
        if severity == AnomalySeverity.NONE:
            return None

        stats = baseline.stats(Metric.GAS_PRICE)
        reference = stats.mean if stats is not None else None
        return TriggerEvidence(
            metric=Metric.GAS_PRICE.value,
            severity=severity,
            current_value=gwei,
            baseline_value=reference,
            deviation_pct=self._deviation.compute(gwei, reference),
            reason=f"Elevated gas price ({gwei:.2f} gwei) indicating network congestion",
        )

    def _sentiment_evidence(self, sentiment: Optional[SentimentSummary]) -> Optional[TriggerEvidence]:
        severity = self._severity_mapper.sentiment_severity(sentiment)
        if severity == AnomalySeverity.NONE:
            return None
        return TriggerEvidence(
            metric=SENTIMENT_METRIC,
            severity=severity,
            current_value=sentiment.avg_score,
            deviation_pct=sentiment.negative_share * 100.0,
            reason=(
                f"Negative sentiment spike ({sentiment.negative_share:.1%} negative, "
                f"mean score {sentiment.avg_score:.3f} over {sentiment.total_samples} posts)"
            ),
        )

    def _correlation_evidence(self, evidence: List[TriggerEvidence]) -> Optional[TriggerEvidence]:
        metrics: List[str] = []
        for item in evidence:
            if item.metric not in metrics:
                metrics.append(item.metric)
        if len(metrics) < self.config.min_correlated_signals:
            return None
        return TriggerEvidence(
            metric=CORRELATION_METRIC,
            severity=AnomalySeverity.HIGH,
            correlated_metrics=metrics,
            reason=f"Multiple metrics showing anomalous behavior simultaneously ({', '.join(metrics)})",
        )


def summarize(evidence: List[TriggerEvidence]) -> str:
    """Human-readable one-line summary of a trigger's evidence."""

    metrics: List[str] = []
    for item in evidence:
        if item.metric != CORRELATION_METRIC and item.metric not in metrics:
            metrics.append(item.metric)

    if not metrics:
        return "All metrics within normal range"
    if len(metrics) == 1:
        return f"{metrics[0].upper()} anomaly detected"
    return f"Multiple anomalies detected: {', '.join(metrics)}"
