"""
Periodic driver for detection cycles.

Runs one cycle per tick, waits for it to finish before sleeping, and stops
cleanly on SIGINT/SIGTERM.
"""

from __future__ import annotations

import logging
import signal
import threading
from typing import Callable, Optional

from stakewatch.anomaly.schema import CycleResult, CycleStatus

from .orchestrator import DetectionOrchestrator

logger = logging.getLogger("backend.scheduler")


def log_cycle_result(result: CycleResult) -> None:
    """Log one line per cycle at a level matching its outcome."""

    summary = result.trigger.summary if result.trigger else "-"
    if result.status == CycleStatus.FAILED:
        logger.error("Cycle failed in %.0fms: %s", result.duration_ms, result.error)
    elif result.status == CycleStatus.ESCALATED:
        logger.warning(
            "Cycle escalated in %.0fms: %d finding(s) for '%s'",
            result.duration_ms,
            len(result.findings),
            summary,
        )
    elif result.status == CycleStatus.RATE_LIMITED:
        logger.info("Cycle rate-limited (retry in %.0fs): %s", result.retry_after_seconds or 0.0, summary)
    elif result.status == CycleStatus.DEFERRED:
        logger.warning("Cycle deferred, previous deep analysis still running: %s", summary)
    else:
        logger.info("Cycle %s in %.0fms: %s", result.status.value, result.duration_ms, summary)

    if result.persistence_error:
        logger.error("Cycle persistence error: %s", result.persistence_error)
    if result.baseline_stale:
        logger.warning("Cycle used a stale baseline")


class DetectionScheduler:
    """
    Serialised periodic scheduler.

    Notes:
    - A cycle is never started while the previous one is running.
    - ``max_cycles`` bounds the run (None runs until stopped).
    - On exit the orchestrator is shut down, cancelling any in-flight analysis.
    """

    def __init__(
        self,
        orchestrator: DetectionOrchestrator,
        interval_seconds: Optional[float] = None,
        max_cycles: Optional[int] = None,
        on_result: Optional[Callable[[CycleResult], None]] = log_cycle_result,
    ) -> None:
        self.orchestrator = orchestrator
        self.interval_seconds = interval_seconds or orchestrator.config.cycle_interval_seconds
        self.max_cycles = max_cycles
        self.on_result = on_result
        self.stop_event = threading.Event()
        self.cycles_run = 0

    def run(self) -> int:
        logger.info(
            "Detection scheduler started (interval=%.0fs, max_cycles=%s)",
            self.interval_seconds,
            self.max_cycles,
        )
        try:
            while not self.stop_event.is_set():
                result = self.orchestrator.run_cycle()
                self.cycles_run += 1
                if self.on_result is not None:
                    self.on_result(result)

                if self.max_cycles is not None and self.cycles_run >= self.max_cycles:
                    break
                self.stop_event.wait(self.interval_seconds)
        finally:
            self.orchestrator.shutdown()
            logger.info("Detection scheduler stopped after %d cycle(s)", self.cycles_run)
        return self.cycles_run

    def stop(self) -> None:
        self.stop_event.set()
        self.orchestrator.shutdown()

    def install_signal_handlers(self) -> None:
        def _handle(signum, frame) -> None:
            logger.info("Received signal %s; stopping", signal.Signals(signum).name)
            self.stop()

        signal.signal(signal.SIGINT, _handle)
        signal.signal(signal.SIGTERM, _handle)
