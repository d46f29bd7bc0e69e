"""
Deep analysis service.

Converts an escalated Trigger into persisted, validated Findings using an
external reasoning service.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence

from backend.analysis import AnalysisConfig, AnalysisContextBuilder
from llm.base import ReasoningModel
from llm.config import LLMConfig, ReasoningServiceConfig
from llm.parsing import parse_analysis_response
from llm.prompt import build_prompt
from llm.schema import AnalysisResponse, FindingCandidate
from stakewatch.anomaly.schema import BaselineStatistics, Finding, Trigger
from stakewatch.core.exceptions import (
    AnalysisError,
    ConfigurationError,
    DataValidationError,
    ModelInferenceError,
    StoreError,
)
from stakewatch.data.schema import Snapshot
from stakewatch.data.store import DetectionStore

logger = logging.getLogger("backend.analysis")


@dataclass
class ServiceCallResult:
    """
    Outcome of the bounded retry loop around one reasoning call.

    Fields:
    - output: raw service output when ``ok``
    - attempts: calls made (including the successful one)
    - error: last failure description
    - cancelled: the loop stopped because cancellation was requested
    """

    ok: bool
    output: Any = None
    attempts: int = 0
    error: Optional[str] = None
    cancelled: bool = False


@dataclass
class DeepAnalysisEngine:
    """
    Deep analysis engine.

    - Builds a bounded context document.
    - Calls the reasoning service with bounded, backed-off retries.
    - Validates output per candidate (partial validity is accepted).
    - Persists findings and links the first one back to the trigger.
    """

    model: ReasoningModel
    store: DetectionStore
    config: AnalysisConfig = field(default_factory=AnalysisConfig)

    def __post_init__(self) -> None:
        self._builder = AnalysisContextBuilder(self.config)

    def analyze(
        self,
        trigger: Trigger,
        recent_history: Sequence[Snapshot],
        baseline: BaselineStatistics,
        trigger_id: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[Finding]:
        trigger_id = trigger_id or trigger.trigger_id
        cancel_event = cancel_event or threading.Event()

        logger.info(
            "Starting deep analysis (trigger=%s, evidence=%d, max_severity=%s)",
            trigger_id,
            len(trigger.evidence),
            trigger.max_severity.value,
        )

        context = self._builder.build(trigger, recent_history, baseline, trigger_id=trigger_id)
        prompt = build_prompt(context)

        result = self.call_with_retries(prompt, cancel_event)
        if result.cancelled:
            raise AnalysisError("Deep analysis cancelled", trigger_id=trigger_id, attempts=result.attempts)
        if not result.ok:
            raise AnalysisError(
                f"Reasoning service failed after {result.attempts} attempt(s): {result.error}",
                trigger_id=trigger_id,
                attempts=result.attempts,
            )

        try:
            response = parse_analysis_response(result.output)
        except DataValidationError as exc:
            raise AnalysisError(
                f"Unusable reasoning service output: {exc}",
                trigger_id=trigger_id,
                attempts=result.attempts,
            ) from exc

        if response.rejected:
            logger.warning(
                "Rejected %d of %d candidate finding(s) for trigger %s",
                len(response.rejected),
                response.total,
                trigger_id,
            )
        if not response.candidates:
            if response.rejected:
                raise AnalysisError(
                    "All candidate findings failed validation",
                    trigger_id=trigger_id,
                    attempts=result.attempts,
                )
            logger.info("Reasoning service reported no anomalies for trigger %s", trigger_id)
            return []

        findings = self._persist(trigger, trigger_id, response, result.attempts, cancel_event)

        logger.info(
            "Deep analysis completed (trigger=%s, findings=%d, assessment=%s)",
            trigger_id,
            len(findings),
            response.overall_assessment,
        )
        return findings

    def call_with_retries(self, prompt: str, cancel_event: Optional[threading.Event] = None) -> ServiceCallResult:
        """
        Call the reasoning service at most ``max_retries`` times.

        Backoff before attempt n+1 is ``retry_base_delay_seconds * 2^(n-1)``.
        Non-transient errors stop the loop immediately.
        """
        cancel_event = cancel_event or threading.Event()
        last_error: Optional[str] = None

        for attempt in range(1, self.config.max_retries + 1):
            if cancel_event.is_set():
                return ServiceCallResult(ok=False, attempts=attempt - 1, error=last_error, cancelled=True)

            try:
                logger.debug("Calling reasoning service (attempt=%d, provider=%s)", attempt, self.model.name)
                output = self.model.generate(prompt)
                return ServiceCallResult(ok=True, output=output, attempts=attempt)
            except ModelInferenceError as exc:
                last_error = str(exc)
                logger.error(
                    "Reasoning service call failed (attempt=%d, transient=%s): %s",
                    attempt,
                    exc.transient,
                    exc,
                )
                if not exc.transient:
                    return ServiceCallResult(ok=False, attempts=attempt, error=last_error)

            if attempt < self.config.max_retries:
                delay = self.config.retry_base_delay_seconds * (2 ** (attempt - 1))
                logger.info("Retrying in %.1fs (next attempt=%d)", delay, attempt + 1)
                if cancel_event.wait(delay):
                    return ServiceCallResult(ok=False, attempts=attempt, error=last_error, cancelled=True)

        return ServiceCallResult(ok=False, attempts=self.config.max_retries, error=last_error)

    def _persist(
        self,
        trigger: Trigger,
        trigger_id: str,
        response: AnalysisResponse,
        attempts: int,
        cancel_event: threading.Event,
    ) -> List[Finding]:
        persisted: List[Finding] = []

        for candidate in response.candidates:
            if cancel_event.is_set():
                raise AnalysisError(
                    "Deep analysis cancelled before findings were persisted",
                    trigger_id=trigger_id,
                    attempts=attempts,
                )
            finding = self._to_finding(candidate, trigger, trigger_id, response)
            try:
                finding_id = self.store.persist_finding(finding)
            except StoreError as exc:
                logger.error("Failed to persist finding '%s': %s", finding.title, exc)
                continue
            persisted.append(finding.model_copy(update={"finding_id": finding_id}))
            logger.info(
                "Finding stored (id=%s, type=%s, severity=%s)",
                finding_id,
                finding.type,
                finding.severity.value,
            )

        if not persisted:
            raise AnalysisError(
                "No findings could be persisted",
                trigger_id=trigger_id,
                attempts=attempts,
            )

        try:
            self.store.link_finding_to_trigger(trigger_id, persisted[0].finding_id)
        except StoreError as exc:
            logger.error("Failed to link finding %s to trigger %s: %s", persisted[0].finding_id, trigger_id, exc)

        return persisted

    def _to_finding(
        self,
        candidate: FindingCandidate,
        trigger: Trigger,
        trigger_id: str,
        response: AnalysisResponse,
    ) -> Finding:
        notes = {
            "overall_assessment": response.overall_assessment,
            "monitoring_priority": response.monitoring_priority,
            "false_alarm_probability": response.false_alarm_probability,
            "timeframe": candidate.timeframe,
            "risk_level": candidate.risk_level,
            "provider": self.model.name,
            "trigger_summary": trigger.summary,
            "trigger_max_severity": trigger.max_severity.value,
        }
        return Finding(
            trigger_id=trigger_id,
            detected_at=trigger.timestamp,
            type=candidate.type,
            severity=candidate.severity,
            confidence=candidate.confidence,
            title=candidate.title[: self.config.max_title_length],
            description=candidate.description,
            affected_metrics=candidate.affected_metrics,
            recommendation=candidate.recommendation,
            correlation_notes=candidate.correlations,
            historical_comparison=candidate.historical_comparison,
            analysis_notes={key: value for key, value in notes.items() if value is not None},
        )


def create_reasoning_model(service_config: ReasoningServiceConfig) -> ReasoningModel:
    """
    Factory for the configured reasoning provider.
    """

    if service_config.provider == "http":
        from llm.ollama import HttpReasoningClient

        return HttpReasoningClient(config=service_config)

    if service_config.provider == "local":
        if not service_config.model_path:
            raise ConfigurationError("MODEL_PATH is required for the local reasoning provider")
        from llm.local import LocalReasoningModel

        return LocalReasoningModel(config=LLMConfig(model_path=service_config.model_path))

    raise ConfigurationError(f"Unknown reasoning provider: {service_config.provider}")


def create_analysis_engine(
    store: DetectionStore,
    service_config: Optional[ReasoningServiceConfig] = None,
    analysis_config: Optional[AnalysisConfig] = None,
) -> DeepAnalysisEngine:
    """
    Factory for the deep analysis engine with the configured provider.
    """

    service_config = service_config or ReasoningServiceConfig()
    model = create_reasoning_model(service_config)
    logger.info("Deep analysis provider: %s", model.name)
    return DeepAnalysisEngine(model=model, store=store, config=analysis_config or AnalysisConfig())
