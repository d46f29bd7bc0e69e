"""
Application configuration for the stakewatch anomaly detector.

Provides environment-aware settings with conservative defaults. All detection
thresholds are configurable to avoid hard-coded "magic numbers".
"""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ZScoreRule(BaseModel):
	"""
	Baseline-relative rule for a single magnitude metric.

	Notes:
	- top_severity is assigned when |z| reaches the critical band.
	- upward_only ignores deviations below the mean (a shrinking queue is not a risk).
	"""

	metric: str
	label: str
	top_severity: str = Field("critical", description="Severity at the critical z band")
	upward_only: bool = False


class ZScoreBands(BaseModel):
	"""
	Z-score bands shared by all magnitude metrics.

	Rationale:
	- 2.0 standard deviations is the lowest band worth recording.
	- 3.0 standard deviations maps to the metric's top tier.
	"""

	critical: float = Field(3.0, ge=0.0)
	high: float = Field(2.5, ge=0.0)
	medium: float = Field(2.0, ge=0.0)


class PegThresholds(BaseModel):
	"""
	Absolute deviation tiers for the bounded peg ratio (expected ~1.0).

	The z-score fallback only applies when no absolute tier fired.
	"""

	target: float = 1.0
	critical: float = Field(0.01, ge=0.0, description="1% depeg")
	high: float = Field(0.005, ge=0.0, description="0.5% depeg")
	medium: float = Field(0.003, ge=0.0, description="0.3% depeg")
	zscore_fallback: float = Field(2.5, ge=0.0)


class GasThresholds(BaseModel):
	"""
	Fixed gas price bands in gwei. Congestion is congestion regardless of history.
	"""

	critical: float = Field(50.0, ge=0.0)
	high: float = Field(20.0, ge=0.0)
	medium: float = Field(10.0, ge=0.0)


class SentimentThresholds(BaseModel):
	"""
	Social sentiment bands applied to the recent sentiment summary.
	"""

	negative_share: float = Field(0.4, ge=0.0, le=1.0)
	negative_share_high: float = Field(0.6, ge=0.0, le=1.0)
	score_low: float = Field(-0.3, ge=-1.0, le=1.0)


class PrefilterConfig(BaseModel):
	"""
	Statistical pre-filter configuration.
	"""

	zscore: ZScoreBands = ZScoreBands()
	peg: PegThresholds = PegThresholds()
	gas: GasThresholds = GasThresholds()
	sentiment: SentimentThresholds = SentimentThresholds()
	min_correlated_signals: int = Field(2, ge=2)

	zscore_rules: List[ZScoreRule] = Field(
		default_factory=lambda: [
			ZScoreRule(metric="locked_value", label="Locked value", top_severity="critical"),
			ZScoreRule(
				metric="queue_size",
				label="Withdrawal queue",
				top_severity="high",
				upward_only=True,
			),
			ZScoreRule(
				metric="withdrawal_count",
				label="Withdrawal volume",
				top_severity="high",
				upward_only=True,
			),
		]
	)


class BaselineConfig(BaseModel):
	"""
	Configuration for baseline estimation.

	Notes:
	- window_days: trailing window aggregated into the baseline.
	- cache_ttl_seconds: how long a computed baseline is reused.
	- min_samples: reliability floor (12 = one hour of 5-minute sampling).
	- recommended_samples: below this a warning is logged (144 = 12 hours).
	- accepted_sources: provenance tags included; None accepts every source.
	"""

	window_days: int = Field(30, ge=1, le=90)
	cache_ttl_seconds: float = Field(300.0, ge=0.0)
	min_samples: int = Field(12, ge=1)
	recommended_samples: int = Field(144, ge=1)
	accepted_sources: Optional[List[str]] = Field(
		default_factory=lambda: ["blockchain_collector", "historical_loader"]
	)


class DetectionConfig(BaseModel):
	"""
	Orchestrator configuration.

	Notes:
	- min_escalation_interval_seconds is measured from the last successful escalation.
	- analysis_timeout_seconds bounds the whole deep analysis call, retries included.
	"""

	min_escalation_interval_seconds: float = Field(300.0, ge=0.0)
	analysis_timeout_seconds: float = Field(120.0, gt=0.0)
	recent_history_hours: float = Field(2.0, gt=0.0)
	recent_history_limit: int = Field(20, ge=1, le=20)
	sentiment_window_hours: int = Field(24, ge=1)
	cycle_interval_seconds: float = Field(300.0, gt=0.0)
	stats_window_hours: int = Field(24, ge=1)


class AnomalyConfig(BaseModel):
	"""
	Anomaly detection configuration.
	"""

	baselines: BaselineConfig = BaselineConfig()
	prefilter: PrefilterConfig = PrefilterConfig()
	detection: DetectionConfig = DetectionConfig()


class Config(BaseSettings):
	"""
	Global configuration with environment overrides.
	"""

	model_config = SettingsConfigDict(
		env_prefix="STAKEWATCH_",
		env_file=".env",
		env_nested_delimiter="__",
		extra="ignore",
	)

	log_level: str = Field("INFO", description="Default logging level")
	logs_dir: Path = Field(Path("logs"), description="Directory for log files")
	protocol_name: str = Field("EtherFi", description="Monitored protocol")
	anomaly: AnomalyConfig = AnomalyConfig()

	def model_post_init(self, __context: object) -> None:
		self.logs_dir.mkdir(parents=True, exist_ok=True)


config = Config()
