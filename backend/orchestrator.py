"""
Rate-limited detection orchestrator.

One detection cycle:

    latest snapshot
        ↓
    baseline (cached)           → not_ready while warming up
        ↓
    pre-filter → Trigger        → persisted unconditionally
        ↓
    escalation recommended?     → calm / anomalous
        ↓
    rate-limit budget           → rate_limited
        ↓
    previous analysis exited?   → deferred
        ↓
    deep analysis (timeout)     → failed
        ↓
    findings linked, budget restarted, notify()  → escalated

Cycles are serialised; ``run_cycle`` never raises.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Tuple

from backend.analysis_service import DeepAnalysisEngine
from stakewatch.anomaly.baselines import BaselineCalculator
from stakewatch.anomaly.prefilter import PreFilter
from stakewatch.anomaly.ratelimit import RateLimiter
from stakewatch.anomaly.schema import (
    BaselineStatistics,
    CycleResult,
    CycleStatus,
    DetectionStats,
    Finding,
    Trigger,
)
from stakewatch.core.clock import Clock, utc_now
from stakewatch.core.config import DetectionConfig
from stakewatch.core.exceptions import (
    AnalysisError,
    InsufficientDataError,
    NoSnapshotError,
    StoreError,
)
from stakewatch.data.schema import SentimentSummary, Snapshot
from stakewatch.data.store import DetectionStore

logger = logging.getLogger("backend.orchestrator")

NotifyCallback = Callable[[Finding], None]

_CANCEL_POLL_SECONDS = 0.25


class DetectionOrchestrator:
    """
    Stateful coordinator of baseline, pre-filter, rate limit and deep analysis.

    Guarantees:
    - Trigger persistence happens before any escalation.
    - At most one deep analysis per rate-limit interval, measured from the
      last successful escalation; failures never consume the budget.
    - At most one deep analysis worker runs at a time. A timed-out worker
      that is still running defers later escalations until it exits.
    - ``run_cycle`` and ``run_manual_analysis`` never overlap.
    """

    def __init__(
        self,
        store: DetectionStore,
        analysis_engine: DeepAnalysisEngine,
        baselines: Optional[BaselineCalculator] = None,
        prefilter: Optional[PreFilter] = None,
        config: Optional[DetectionConfig] = None,
        notify: Optional[NotifyCallback] = None,
        clock: Clock = utc_now,
    ) -> None:
        self.store = store
        self.analysis_engine = analysis_engine
        self.config = config or DetectionConfig()
        self.clock = clock
        self.baselines = baselines or BaselineCalculator(store, clock=clock)
        self.prefilter = prefilter or PreFilter()
        self.notify = notify
        self.rate_limiter = RateLimiter(
            self.config.min_escalation_interval_seconds,
            restore=store.get_last_escalation_at,
        )

        self._cycle_lock = threading.Lock()
        self._shutdown = threading.Event()
        self._active_cancel: Optional[threading.Event] = None
        self._inflight: Optional[Future] = None
        self._last_cycle_at: Optional[datetime] = None

    # Public API

    def run_cycle(self) -> CycleResult:
        started_at = self.clock()
        started = time.monotonic()

        with self._cycle_lock:
            try:
                result = self._run_cycle(started_at)
            except Exception as exc:
                logger.exception("Detection cycle failed unexpectedly: %s", exc)
                result = CycleResult(
                    status=CycleStatus.FAILED,
                    started_at=started_at,
                    error=f"Unexpected error: {exc}",
                )
            self._last_cycle_at = started_at

        result.duration_ms = (time.monotonic() - started) * 1000.0
        return result

    def run_manual_analysis(self) -> CycleResult:
        """
        Analyze the latest snapshot on demand.

        Uses a freshly computed baseline and runs deep analysis regardless of
        the pre-filter's recommendation. The rate-limit budget is neither
        checked nor consumed.

        Raises:
            NoSnapshotError: If there is no snapshot to analyze
            InsufficientDataError: If the baseline is still warming up
            AnalysisError: If deep analysis fails, times out, or a timed-out
                analysis is still running
            StoreError: If the snapshot store is unavailable
        """
        started_at = self.clock()
        started = time.monotonic()

        with self._cycle_lock:
            if self._shutdown.is_set():
                raise AnalysisError("Orchestrator is shut down")
            if self._analysis_in_flight():
                raise AnalysisError("A previous deep analysis is still running")

            snapshot = self.store.get_latest_snapshot()
            if snapshot is None:
                raise NoSnapshotError("No snapshot available for analysis")

            baseline = self.baselines.get_baseline(force_refresh=True)
            trigger = self.prefilter.evaluate(snapshot, baseline, self._recent_sentiment())
            trigger_id, persistence_error = self._persist_trigger(trigger)

            logger.info("Manual analysis requested (trigger=%s, summary=%s)", trigger_id or trigger.trigger_id, trigger.summary)
            findings = self._escalate(trigger, baseline, trigger_id)
            self._notify_all(findings)

        return CycleResult(
            status=CycleStatus.ESCALATED,
            started_at=started_at,
            duration_ms=(time.monotonic() - started) * 1000.0,
            escalated=True,
            findings=findings,
            trigger=trigger,
            trigger_id=trigger_id,
            persistence_error=persistence_error,
            baseline_stale=baseline.stale,
        )

    def get_detection_stats(self, window_hours: Optional[int] = None) -> DetectionStats:
        """
        Counts of anomalous/normal cycles and escalations over a trailing window.

        Raises:
            StoreError: If persisted triggers cannot be read
        """
        window_hours = window_hours or self.config.stats_window_hours
        since = self.clock() - timedelta(hours=window_hours)
        triggers = self.store.list_triggers(since=since)

        anomalous = sum(1 for t in triggers if t.is_anomalous)
        escalations = [t.escalated_at for t in triggers if t.escalated_at is not None]

        return DetectionStats(
            window_hours=window_hours,
            anomalous_cycles=anomalous,
            normal_cycles=len(triggers) - anomalous,
            escalation_count=len(escalations),
            last_cycle_at=self._last_cycle_at,
            last_escalation_at=self.rate_limiter.last_escalation_at,
            min_escalation_interval_seconds=self.config.min_escalation_interval_seconds,
        )

    def shutdown(self) -> None:
        """
        Refuse new work and cancel an in-flight escalation.

        A cancelled escalation persists no further findings and does not
        restart the rate-limit window.
        """
        self._shutdown.set()
        cancel = self._active_cancel
        if cancel is not None:
            logger.info("Cancelling in-flight deep analysis")
            cancel.set()

    @property
    def is_shut_down(self) -> bool:
        return self._shutdown.is_set()

    # Cycle steps

    def _run_cycle(self, started_at: datetime) -> CycleResult:
        if self._shutdown.is_set():
            return CycleResult(status=CycleStatus.FAILED, started_at=started_at, error="Orchestrator is shut down")

        try:
            snapshot = self.store.get_latest_snapshot()
        except StoreError as exc:
            logger.error("Could not read latest snapshot: %s", exc)
            return CycleResult(status=CycleStatus.FAILED, started_at=started_at, error=f"Store unavailable: {exc}")

        if snapshot is None:
            logger.info("No snapshot available yet; skipping cycle")
            return CycleResult(status=CycleStatus.NO_DATA, started_at=started_at)

        try:
            baseline = self.baselines.get_baseline()
        except InsufficientDataError as exc:
            logger.info("Baseline not ready: %s", exc)
            return CycleResult(status=CycleStatus.NOT_READY, started_at=started_at, error=str(exc))
        except StoreError as exc:
            logger.error("Baseline unavailable: %s", exc)
            return CycleResult(status=CycleStatus.FAILED, started_at=started_at, error=f"Baseline unavailable: {exc}")

        trigger = self.prefilter.evaluate(snapshot, baseline, self._recent_sentiment())
        trigger_id, persistence_error = self._persist_trigger(trigger)

        result = CycleResult(
            status=CycleStatus.CALM,
            started_at=started_at,
            trigger=trigger,
            trigger_id=trigger_id,
            persistence_error=persistence_error,
            baseline_stale=baseline.stale,
        )

        if not trigger.escalation_recommended:
            if trigger.is_anomalous:
                logger.info("Anomaly below escalation threshold: %s (max=%s)", trigger.summary, trigger.max_severity.value)
                result.status = CycleStatus.ANOMALOUS
            else:
                logger.debug("All metrics within normal range")
            return result

        decision = self.rate_limiter.check(self.clock())
        if not decision.allowed:
            logger.info(
                "Escalation rate-limited (last=%s, retry_after=%.0fs): %s",
                decision.last_escalation_at.isoformat() if decision.last_escalation_at else None,
                decision.retry_after_seconds,
                trigger.summary,
            )
            result.status = CycleStatus.RATE_LIMITED
            result.rate_limited = True
            result.retry_after_seconds = decision.retry_after_seconds
            return result

        if self._analysis_in_flight():
            logger.warning("Escalation deferred: a timed-out deep analysis is still running (%s)", trigger.summary)
            result.status = CycleStatus.DEFERRED
            return result

        logger.warning("Escalating trigger %s: %s (max=%s)", trigger_id or trigger.trigger_id, trigger.summary, trigger.max_severity.value)
        try:
            findings = self._escalate(trigger, baseline, trigger_id)
        except AnalysisError as exc:
            logger.error("Deep analysis failed: %s", exc)
            result.status = CycleStatus.FAILED
            result.error = str(exc)
            return result

        completed_at = self.clock()
        self.rate_limiter.record_success(completed_at)
        if trigger_id is not None:
            try:
                self.store.mark_trigger_escalated(trigger_id, completed_at)
            except StoreError as exc:
                logger.error("Failed to record escalation for trigger %s: %s", trigger_id, exc)
                result.persistence_error = result.persistence_error or f"Escalation record failed: {exc}"

        self._notify_all(findings)

        result.status = CycleStatus.ESCALATED
        result.escalated = True
        result.findings = findings
        return result

    def _persist_trigger(self, trigger: Trigger) -> Tuple[Optional[str], Optional[str]]:
        try:
            return self.store.persist_trigger(trigger), None
        except StoreError as exc:
            logger.error("Failed to persist trigger %s: %s", trigger.trigger_id, exc)
            return None, f"Trigger persistence failed: {exc}"

    def _recent_sentiment(self) -> Optional[SentimentSummary]:
        try:
            return self.store.get_recent_sentiment_summary(hours=self.config.sentiment_window_hours)
        except StoreError as exc:
            logger.warning("Recent sentiment unavailable: %s", exc)
            return None

    def _recent_history(self) -> List[Snapshot]:
        since = self.clock() - timedelta(hours=self.config.recent_history_hours)
        try:
            return self.store.get_historical_snapshots(since=since, limit=self.config.recent_history_limit)
        except StoreError as exc:
            logger.warning("Recent history unavailable: %s", exc)
            return []

    def _escalate(
        self,
        trigger: Trigger,
        baseline: BaselineStatistics,
        trigger_id: Optional[str],
    ) -> List[Finding]:
        """
        Run deep analysis on a worker thread under the overall timeout.

        On timeout or shutdown the worker's cancel event is set; it stops
        before the next retry and before persisting findings.
        """
        history = self._recent_history()
        cancel_event = threading.Event()
        self._active_cancel = cancel_event
        if self._shutdown.is_set():
            cancel_event.set()

        timeout = self.config.analysis_timeout_seconds
        deadline = time.monotonic() + timeout
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="deep-analysis")
        future = executor.submit(
            self.analysis_engine.analyze,
            trigger,
            history,
            baseline,
            trigger_id=trigger_id,
            cancel_event=cancel_event,
        )
        try:
            while True:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    cancel_event.set()
                    raise AnalysisError(
                        f"Deep analysis timed out after {timeout:g}s",
                        trigger_id=trigger_id,
                    )
                done, _ = wait([future], timeout=min(remaining, _CANCEL_POLL_SECONDS))
                if done:
                    return future.result()
                if cancel_event.is_set():
                    raise AnalysisError("Deep analysis cancelled by shutdown", trigger_id=trigger_id)
        finally:
            executor.shutdown(wait=False, cancel_futures=True)
            self._active_cancel = None
            if not future.done():
                logger.warning("Deep analysis worker still running after cancellation; escalations deferred until it exits")
                self._inflight = future

    def _analysis_in_flight(self) -> bool:
        """True while an abandoned deep analysis worker has not exited."""
        future = self._inflight
        if future is None:
            return False
        if future.done():
            self._inflight = None
            return False
        return True

    def _notify_all(self, findings: List[Finding]) -> None:
        if self.notify is None:
            return
        for finding in findings:
            try:
                self.notify(finding)
            except Exception as exc:
                logger.error("Notification failed for finding %s: %s", finding.finding_id, exc)
