"""
Severity mapping for pre-filter evidence.

Maps deviations to severity levels with configurable thresholds and
defines the total order used for "max severity".
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from stakewatch.core.config import PrefilterConfig
from stakewatch.data.schema import SentimentSummary

from .schema import AnomalySeverity

SEVERITY_ORDER = [
    AnomalySeverity.NONE,
    AnomalySeverity.LOW,
    AnomalySeverity.MEDIUM,
    AnomalySeverity.HIGH,
    AnomalySeverity.CRITICAL,
]

ESCALATION_SEVERITIES = {AnomalySeverity.HIGH, AnomalySeverity.CRITICAL}


@dataclass
class SeverityMapper:
    """
    Maps deviation metrics to severity levels.
    """

    thresholds: PrefilterConfig

    def zscore_severity(
        self,
        zscore: Optional[float],
        top_severity: AnomalySeverity = AnomalySeverity.CRITICAL,
        upward_only: bool = False,
    ) -> AnomalySeverity:
        if zscore is None:
            return AnomalySeverity.NONE
        if upward_only and zscore < 0:
            return AnomalySeverity.NONE
        bands = self.thresholds.zscore
        z = abs(zscore)
        if z >= bands.critical:
            return top_severity
        if z >= bands.high:
            return AnomalySeverity.HIGH
        if z >= bands.medium:
            return AnomalySeverity.MEDIUM
        return AnomalySeverity.NONE

    def peg_severity(self, ratio: Optional[float]) -> AnomalySeverity:
        if ratio is None:
            return AnomalySeverity.NONE
        peg = self.thresholds.peg
        deviation = abs(ratio - peg.target)
        if deviation >= peg.critical:
            return AnomalySeverity.CRITICAL
        if deviation >= peg.high:
            return AnomalySeverity.HIGH
        if deviation >= peg.medium:
            return AnomalySeverity.MEDIUM
        return AnomalySeverity.NONE

    def gas_severity(self, gwei: Optional[float]) -> AnomalySeverity:
        if gwei is None:
            return AnomalySeverity.NONE
        gas = self.thresholds.gas
        if gwei >= gas.critical:
            return AnomalySeverity.CRITICAL
        if gwei >= gas.high:
            return AnomalySeverity.HIGH
        if gwei >= gas.medium:
            return AnomalySeverity.MEDIUM
        return AnomalySeverity.NONE

    def sentiment_severity(self, summary: Optional[SentimentSummary]) -> AnomalySeverity:
        if summary is None or summary.total_samples == 0:
            return AnomalySeverity.NONE
        bands = self.thresholds.sentiment
        if summary.negative_share < bands.negative_share and summary.avg_score > bands.score_low:
            return AnomalySeverity.NONE
        if summary.negative_share >= bands.negative_share_high:
            return AnomalySeverity.HIGH
        return AnomalySeverity.MEDIUM


def severity_rank(severity: AnomalySeverity) -> int:
    return SEVERITY_ORDER.index(severity)


def overall_severity(*severities: AnomalySeverity) -> AnomalySeverity:
    """
    Return the highest severity among inputs (NONE for no inputs).
    """

    if not severities:
        return AnomalySeverity.NONE
    highest_index = max(severity_rank(s) for s in severities)
    return SEVERITY_ORDER[highest_index]
