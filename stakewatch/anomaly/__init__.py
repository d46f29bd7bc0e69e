"""
Anomaly module: baselines, the statistical pre-filter and the escalation budget.

Implements deterministic baseline statistics, detectors, severity scoring,
trigger evaluation and rate limiting.
"""

from .baselines import BaselineCalculator, compute_metric_stats
from .detectors import RelativeDeviationDetector, ZScoreDetector
from .prefilter import PreFilter, summarize
from .ratelimit import RateLimitDecision, RateLimiter
from .schema import (
	AnomalySeverity,
	BaselineStatistics,
	CycleResult,
	CycleStatus,
	DetectionStats,
	Finding,
	FindingStatus,
	MetricStats,
	RateLimitState,
	Trigger,
	TriggerEvidence,
)
from .scoring import SeverityMapper, overall_severity, severity_rank

__all__ = [
	"BaselineCalculator",
	"compute_metric_stats",
	"PreFilter",
	"summarize",
	"RateLimiter",
	"RateLimitDecision",
	"AnomalySeverity",
	"BaselineStatistics",
	"CycleResult",
	"CycleStatus",
	"DetectionStats",
	"Finding",
	"FindingStatus",
	"MetricStats",
	"RateLimitState",
	"Trigger",
	"TriggerEvidence",
	"ZScoreDetector",
	"RelativeDeviationDetector",
	"SeverityMapper",
	"overall_severity",
	"severity_rank",
]
