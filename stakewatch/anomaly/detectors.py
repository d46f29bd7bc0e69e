"""
Detectors for statistical deviations.

Implements explainable methods:
- Z-score against a baseline
- Relative deviation from a reference value
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .schema import MetricStats


@dataclass
class ZScoreDetector:
    """
    Z-score detector.

    A baseline with zero (or sub-floor) dispersion yields z = 0: a metric that
    never moved has no scale to measure deviations against.
    """

    min_std: float = 0.0

    def compute(self, observed: float, baseline: MetricStats) -> float:
        if baseline.std <= self.min_std:
            return 0.0
        return (observed - baseline.mean) / baseline.std


@dataclass
class RelativeDeviationDetector:
    """
    Relative deviation in percent: (observed - reference) / |reference| * 100.

    Returns None when the reference is (near) zero.
    """

    epsilon: float = 1e-12

    def compute(self, observed: float, reference: Optional[float]) -> Optional[float]:
        if reference is None or abs(reference) < self.epsilon:
            return None
        return (observed - reference) / abs(reference) * 100.0
