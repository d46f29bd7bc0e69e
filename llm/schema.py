"""
Schema for reasoning service output.

The service output is untrusted. Each candidate is validated on its own:
recoverable defects are repaired (unknown severity, out-of-range
confidence, overlong title) and a missing required field rejects only
that candidate.
"""

from __future__ import annotations

import math
from typing import Any, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from stakewatch.anomaly.schema import AnomalySeverity

MAX_TITLE_LENGTH = 200
DEFAULT_CONFIDENCE = 0.5

FINDING_SEVERITIES = {
    AnomalySeverity.LOW,
    AnomalySeverity.MEDIUM,
    AnomalySeverity.HIGH,
    AnomalySeverity.CRITICAL,
}


def _as_text_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value.strip() else []
    if isinstance(value, (list, tuple)):
        return [str(item).strip() for item in value if item is not None and str(item).strip()]
    return [str(value)]


class FindingCandidate(BaseModel):
    """
    One validated anomaly description from the reasoning service.

    Fields:
    - type: anomaly category (required)
    - severity: LOW..CRITICAL (required; unknown values become MEDIUM)
    - confidence: [0.0, 1.0] (clamped; unparseable becomes 0.5)
    - title: short title (required; truncated to 200 chars)
    - description: explanation (required)
    - affected_metrics, recommendation, historical_comparison,
      correlations, timeframe, risk_level: optional detail
    """

    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore", populate_by_name=True)

    type: str = Field(min_length=1)
    severity: AnomalySeverity
    confidence: float = DEFAULT_CONFIDENCE
    title: str = Field(min_length=1, max_length=MAX_TITLE_LENGTH)
    description: str = Field(min_length=1)
    affected_metrics: List[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("affected_metrics", "affectedMetrics"),
    )
    recommendation: Optional[str] = None
    historical_comparison: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("historical_comparison", "historicalComparison"),
    )
    correlations: List[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("correlations", "correlation_notes"),
    )
    timeframe: Optional[str] = None
    risk_level: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("risk_level", "riskLevel"),
    )

    @field_validator("severity", mode="before")
    @classmethod
    def _coerce_severity(cls, value: Any) -> AnomalySeverity:
        if value is None or not str(value).strip():
            raise ValueError("severity is required")
        try:
            severity = AnomalySeverity(str(value).strip().lower())
        except ValueError:
            return AnomalySeverity.MEDIUM
        if severity not in FINDING_SEVERITIES:
            return AnomalySeverity.MEDIUM
        return severity

    @field_validator("confidence", mode="before")
    @classmethod
    def _coerce_confidence(cls, value: Any) -> float:
        if isinstance(value, bool):
            return DEFAULT_CONFIDENCE
        try:
            number = float(value)
        except (TypeError, ValueError):
            return DEFAULT_CONFIDENCE
        if math.isnan(number):
            return DEFAULT_CONFIDENCE
        return min(1.0, max(0.0, number))

    @field_validator("type", "description", mode="before")
    @classmethod
    def _require_text(cls, value: Any) -> Any:
        if value is None:
            raise ValueError("field is required")
        return str(value) if not isinstance(value, str) else value

    @field_validator("title", mode="before")
    @classmethod
    def _truncate_title(cls, value: Any) -> Any:
        if value is None:
            raise ValueError("title is required")
        return str(value).strip()[:MAX_TITLE_LENGTH]

    @field_validator("affected_metrics", "correlations", mode="before")
    @classmethod
    def _text_list(cls, value: Any) -> List[str]:
        return _as_text_list(value)

    @field_validator("recommendation", "historical_comparison", "timeframe", "risk_level", mode="before")
    @classmethod
    def _optional_text(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        text = str(value).strip()
        return text or None


class RejectedCandidate(BaseModel):
    """A candidate that failed validation, kept for logging and audit."""

    index: int
    reason: str
    raw: Any = None


class AnalysisResponse(BaseModel):
    """
    Parsed reasoning service output.

    Fields:
    - candidates: candidates that passed validation
    - rejected: candidates that failed validation
    - overall_assessment / monitoring_priority / false_alarm_probability:
      batch-level notes copied onto every finding
    """

    candidates: List[FindingCandidate] = Field(default_factory=list)
    rejected: List[RejectedCandidate] = Field(default_factory=list)
    overall_assessment: Optional[str] = None
    monitoring_priority: Optional[str] = None
    false_alarm_probability: Optional[float] = None

    @property
    def total(self) -> int:
        return len(self.candidates) + len(self.rejected)
