"""
Unit tests for the rate-limited detection orchestrator.
"""

import threading
import time
from datetime import timedelta

import pytest

from conftest import T0, make_history, normal_metrics
from backend.analysis import AnalysisConfig
from backend.analysis_service import DeepAnalysisEngine
from backend.orchestrator import DetectionOrchestrator
from llm.base import ReasoningModel
from stakewatch.anomaly.baselines import BaselineCalculator
from stakewatch.anomaly.schema import CycleStatus, Trigger
from stakewatch.core.config import DetectionConfig
from stakewatch.core.exceptions import (
    AnalysisError,
    InsufficientDataError,
    ModelInferenceError,
    NoSnapshotError,
    PersistenceError,
)
from stakewatch.data.schema import Snapshot
from stakewatch.data.store import InMemoryDetectionStore


class _FakeModel(ReasoningModel):
    name = "fake"

    def __init__(self, output):
        self.output = output
        self.calls = 0

    def generate(self, prompt: str):
        self.calls += 1
        if isinstance(self.output, Exception):
            raise self.output
        return self.output


class _BlockingModel(ReasoningModel):
    name = "blocking"

    def __init__(self, output):
        self.output = output
        self.started = threading.Event()
        self.release = threading.Event()

    def generate(self, prompt: str):
        self.started.set()
        self.release.wait(5)
        return self.output


class _HungModel(ReasoningModel):
    """Blocks until released and records how many calls overlap."""

    name = "hung"

    def __init__(self, output):
        self.output = output
        self.release = threading.Event()
        self.calls = 0
        self.in_flight = 0
        self.max_in_flight = 0
        self._lock = threading.Lock()

    def generate(self, prompt: str):
        with self._lock:
            self.calls += 1
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            self.release.wait(5)
            return self.output
        finally:
            with self._lock:
                self.in_flight -= 1


class _TriggerWriteFailsStore(InMemoryDetectionStore):
    def persist_trigger(self, trigger):
        raise PersistenceError("triggers table locked")


def _orchestrator(store, clock, model, baseline_config, detection_config=None, notify=None):
    engine = DeepAnalysisEngine(
        model=model,
        store=store,
        config=AnalysisConfig(retry_base_delay_seconds=0.0),
    )
    return DetectionOrchestrator(
        store=store,
        analysis_engine=engine,
        baselines=BaselineCalculator(store, config=baseline_config, clock=clock),
        config=detection_config or DetectionConfig(),
        notify=notify,
        clock=clock,
    )


def _add_current(store, offset_seconds: int = 0, **overrides):
    store.add_snapshot(
        Snapshot(timestamp=T0 + timedelta(seconds=offset_seconds), metrics=normal_metrics(**overrides))
    )


def test_no_snapshot_is_no_data(clock, baseline_config, valid_response_text):
    store = InMemoryDetectionStore(clock=clock)
    result = _orchestrator(store, clock, _FakeModel(valid_response_text), baseline_config).run_cycle()

    assert result.status == CycleStatus.NO_DATA
    assert result.error is None


def test_warm_up_is_not_ready_not_calm(clock, baseline_config, valid_response_text):
    store = InMemoryDetectionStore(snapshots=make_history(7), clock=clock)
    _add_current(store)

    result = _orchestrator(store, clock, _FakeModel(valid_response_text), baseline_config).run_cycle()

    assert result.status == CycleStatus.NOT_READY
    assert "Insufficient" in result.error
    assert store.list_triggers() == []


def test_calm_cycle_persists_clean_trigger(store, clock, baseline_config, valid_response_text):
    _add_current(store)
    model = _FakeModel(valid_response_text)

    result = _orchestrator(store, clock, model, baseline_config).run_cycle()

    assert result.status == CycleStatus.CALM
    assert not result.escalated
    stored = store.get_trigger(result.trigger_id)
    assert stored is not None
    assert not stored.is_anomalous
    assert model.calls == 0


def test_minor_anomaly_is_recorded_without_escalation(store, clock, baseline_config, valid_response_text):
    _add_current(store, gas_price_gwei=12.0)
    model = _FakeModel(valid_response_text)

    result = _orchestrator(store, clock, model, baseline_config).run_cycle()

    assert result.status == CycleStatus.ANOMALOUS
    assert result.trigger.is_anomalous
    assert not result.trigger.escalation_recommended
    assert model.calls == 0


def test_escalation_persists_links_and_notifies(store, clock, baseline_config, valid_response_text):
    _add_current(store, peg_ratio=0.985)
    notified = []
    orchestrator = _orchestrator(
        store, clock, _FakeModel(valid_response_text), baseline_config, notify=notified.append
    )

    result = orchestrator.run_cycle()

    assert result.status == CycleStatus.ESCALATED
    assert result.escalated
    assert len(result.findings) == 1
    assert notified == result.findings

    trigger = store.get_trigger(result.trigger_id)
    assert trigger.finding_id == result.findings[0].finding_id
    assert trigger.escalated_at == clock()
    assert orchestrator.rate_limiter.last_escalation_at == clock()


def test_second_escalation_within_interval_is_rate_limited(store, clock, baseline_config, valid_response_text):
    model = _FakeModel(valid_response_text)
    orchestrator = _orchestrator(store, clock, model, baseline_config)

    _add_current(store, peg_ratio=0.985)
    first = orchestrator.run_cycle()

    clock.advance(60)
    _add_current(store, offset_seconds=60, peg_ratio=0.984)
    second = orchestrator.run_cycle()

    assert first.status == CycleStatus.ESCALATED
    assert second.status == CycleStatus.RATE_LIMITED
    assert second.rate_limited
    assert not second.escalated
    assert second.retry_after_seconds == pytest.approx(240.0)
    assert second.error is None
    assert store.get_trigger(second.trigger_id) is not None
    assert model.calls == 1

    clock.advance(240)
    third = orchestrator.run_cycle()
    assert third.status == CycleStatus.ESCALATED
    assert model.calls == 2


def test_failed_analysis_does_not_consume_budget(store, clock, baseline_config, valid_response_text):
    model = _FakeModel(ModelInferenceError("HTTP 503", transient=True))
    orchestrator = _orchestrator(store, clock, model, baseline_config)
    _add_current(store, peg_ratio=0.985)

    failed = orchestrator.run_cycle()

    assert failed.status == CycleStatus.FAILED
    assert "3 attempt" in failed.error
    assert orchestrator.rate_limiter.last_escalation_at is None
    assert store.get_trigger(failed.trigger_id).escalated_at is None

    model.output = valid_response_text
    retry = orchestrator.run_cycle()
    assert retry.status == CycleStatus.ESCALATED


def test_notify_failure_does_not_fail_cycle(store, clock, baseline_config, valid_response_text):
    def notify(finding):
        raise RuntimeError("websocket closed")

    _add_current(store, peg_ratio=0.985)
    result = _orchestrator(
        store, clock, _FakeModel(valid_response_text), baseline_config, notify=notify
    ).run_cycle()

    assert result.status == CycleStatus.ESCALATED
    assert len(result.findings) == 1


def test_trigger_write_failure_does_not_block_escalation(clock, history, baseline_config, valid_response_text):
    store = _TriggerWriteFailsStore(snapshots=history, clock=clock)
    _add_current(store, peg_ratio=0.985)

    result = _orchestrator(store, clock, _FakeModel(valid_response_text), baseline_config).run_cycle()

    assert result.status == CycleStatus.ESCALATED
    assert result.trigger_id is None
    assert "Trigger persistence failed" in result.persistence_error
    assert result.findings[0].trigger_id == result.trigger.trigger_id


def test_analysis_timeout_fails_cycle(store, clock, baseline_config, valid_response_text):
    model = _BlockingModel(valid_response_text)
    config = DetectionConfig(analysis_timeout_seconds=0.3)
    orchestrator = _orchestrator(store, clock, model, baseline_config, detection_config=config)
    _add_current(store, peg_ratio=0.985)

    try:
        result = orchestrator.run_cycle()
    finally:
        model.release.set()

    assert result.status == CycleStatus.FAILED
    assert "timed out after 0.3s" in result.error
    assert orchestrator.rate_limiter.last_escalation_at is None


def test_shutdown_cancels_in_flight_analysis(store, clock, baseline_config, valid_response_text):
    model = _BlockingModel(valid_response_text)
    orchestrator = _orchestrator(store, clock, model, baseline_config)
    _add_current(store, peg_ratio=0.985)

    results = []
    worker = threading.Thread(target=lambda: results.append(orchestrator.run_cycle()))
    worker.start()
    assert model.started.wait(5)

    orchestrator.shutdown()
    worker.join(5)
    model.release.set()

    assert results[0].status == CycleStatus.FAILED
    assert "cancelled" in results[0].error
    assert orchestrator.rate_limiter.last_escalation_at is None
    assert orchestrator.run_cycle().error == "Orchestrator is shut down"


def test_unexpected_errors_never_escape(store, clock, baseline_config, valid_response_text):
    orchestrator = _orchestrator(store, clock, _FakeModel(valid_response_text), baseline_config)

    def explode():
        raise RuntimeError("boom")

    store.get_latest_snapshot = explode
    result = orchestrator.run_cycle()

    assert result.status == CycleStatus.FAILED
    assert "boom" in result.error


def test_store_outage_uses_stale_baseline(store, clock, baseline_config, valid_response_text):
    _add_current(store)
    orchestrator = _orchestrator(store, clock, _FakeModel(valid_response_text), baseline_config)
    orchestrator.run_cycle()

    clock.advance(600)

    def unavailable(*args, **kwargs):
        raise PersistenceError("replica lag")

    store.get_historical_snapshots = unavailable
    result = orchestrator.run_cycle()

    assert result.status == CycleStatus.CALM
    assert result.baseline_stale


def test_rate_limit_restored_from_store(store, clock, baseline_config, valid_response_text):
    earlier = Trigger(
        timestamp=T0 - timedelta(minutes=5),
        is_anomalous=True,
        escalation_recommended=True,
        baseline_id="baseline-0",
        baseline_sample_count=48,
    )
    store.persist_trigger(earlier)
    store.mark_trigger_escalated(earlier.trigger_id, clock() - timedelta(seconds=30))
    _add_current(store, peg_ratio=0.985)

    result = _orchestrator(store, clock, _FakeModel(valid_response_text), baseline_config).run_cycle()

    assert result.status == CycleStatus.RATE_LIMITED
    assert result.retry_after_seconds == pytest.approx(270.0)


def test_detection_stats(store, clock, baseline_config, valid_response_text):
    orchestrator = _orchestrator(store, clock, _FakeModel(valid_response_text), baseline_config)

    _add_current(store)
    orchestrator.run_cycle()
    _add_current(store, offset_seconds=30, peg_ratio=0.985)
    orchestrator.run_cycle()

    stats = orchestrator.get_detection_stats(window_hours=24)

    assert stats.window_hours == 24
    assert stats.normal_cycles == 1
    assert stats.anomalous_cycles == 1
    assert stats.escalation_count == 1
    assert stats.last_cycle_at == clock()
    assert stats.last_escalation_at == clock()
    assert stats.min_escalation_interval_seconds == 300.0


class TestManualAnalysis:
    def test_runs_on_calm_snapshot_without_consuming_budget(self, store, clock, baseline_config, valid_response_text):
        model = _FakeModel(valid_response_text)
        orchestrator = _orchestrator(store, clock, model, baseline_config)
        _add_current(store)

        result = orchestrator.run_manual_analysis()

        assert result.status == CycleStatus.ESCALATED
        assert len(result.findings) == 1
        assert model.calls == 1
        assert orchestrator.rate_limiter.last_escalation_at is None

    def test_errors_reach_the_caller(self, clock, baseline_config, valid_response_text):
        empty = InMemoryDetectionStore(clock=clock)
        with pytest.raises(NoSnapshotError):
            _orchestrator(empty, clock, _FakeModel(valid_response_text), baseline_config).run_manual_analysis()

        warming = InMemoryDetectionStore(snapshots=make_history(5), clock=clock)
        with pytest.raises(InsufficientDataError):
            _orchestrator(warming, clock, _FakeModel(valid_response_text), baseline_config).run_manual_analysis()

    def test_analysis_failure_raises(self, store, clock, baseline_config):
        _add_current(store)
        model = _FakeModel(ModelInferenceError("HTTP 401", transient=False))

        with pytest.raises(AnalysisError):
            _orchestrator(store, clock, model, baseline_config).run_manual_analysis()


def _wait_for_worker_exit(orchestrator, timeout: float = 5.0) -> None:
    deadline = time.monotonic() + timeout
    while orchestrator._analysis_in_flight() and time.monotonic() < deadline:
        time.sleep(0.02)


def test_timed_out_worker_defers_next_escalation(store, clock, baseline_config, valid_response_text):
    model = _HungModel(valid_response_text)
    config = DetectionConfig(analysis_timeout_seconds=0.3)
    orchestrator = _orchestrator(store, clock, model, baseline_config, detection_config=config)
    _add_current(store, peg_ratio=0.985)

    try:
        timed_out = orchestrator.run_cycle()
        clock.advance(300)
        deferred = orchestrator.run_cycle()
        with pytest.raises(AnalysisError, match="still running"):
            orchestrator.run_manual_analysis()
    finally:
        model.release.set()

    assert timed_out.status == CycleStatus.FAILED
    assert deferred.status == CycleStatus.DEFERRED
    assert not deferred.escalated
    assert store.get_trigger(deferred.trigger_id) is not None
    assert model.calls == 1
    assert orchestrator.rate_limiter.last_escalation_at is None

    _wait_for_worker_exit(orchestrator)
    # The abandoned worker was cancelled, so it left no findings behind
    assert store.get_trigger(timed_out.trigger_id).finding_id is None

    resumed = orchestrator.run_cycle()
    assert resumed.status == CycleStatus.ESCALATED
    assert model.calls == 2
    assert model.max_in_flight == 1
