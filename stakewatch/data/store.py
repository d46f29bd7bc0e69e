"""
Store interface consumed by the detection core.

The persistent store (snapshots, sentiment, triggers, findings) is an
external collaborator. ``DetectionStore`` is the contract the core relies
on; ``InMemoryDetectionStore`` is a thread-safe implementation used by the
local driver and the tests.

Design:
- Reads raise StoreError when the backing store is unavailable
- Writes raise PersistenceError
- Triggers and findings are stored serialized, so a read returns an
  independent copy (never the caller's object)
"""

import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional

from stakewatch.anomaly.schema import Finding, Trigger
from stakewatch.core.clock import Clock, ensure_utc, utc_now
from stakewatch.core.exceptions import PersistenceError, StoreError
from stakewatch.data.schema import (
    SentimentLabel,
    SentimentSample,
    SentimentSummary,
    Snapshot,
)

logger = logging.getLogger(__name__)


class DetectionStore(ABC):
    """
    Abstract store used by the baseline calculator, orchestrator and
    deep analysis engine.
    """

    @abstractmethod
    def get_latest_snapshot(self) -> Optional[Snapshot]:
        """Return the most recent snapshot, or None if none exist."""

    @abstractmethod
    def get_historical_snapshots(
        self,
        since: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[Snapshot]:
        """
        Return snapshots in ascending time order.

        Args:
            since: Only snapshots strictly after this time
            limit: Keep only the most recent ``limit`` snapshots
        """

    @abstractmethod
    def get_recent_sentiment_summary(self, hours: float) -> Optional[SentimentSummary]:
        """Summarize sentiment samples from the last ``hours``; None if there are none."""

    @abstractmethod
    def persist_trigger(self, trigger: Trigger) -> str:
        """Persist a trigger and return its id."""

    @abstractmethod
    def get_trigger(self, trigger_id: str) -> Optional[Trigger]:
        """Re-read a persisted trigger."""

    @abstractmethod
    def list_triggers(self, since: Optional[datetime] = None) -> List[Trigger]:
        """Return persisted triggers (ascending by timestamp)."""

    @abstractmethod
    def persist_finding(self, finding: Finding) -> str:
        """Persist a finding and return its id."""

    @abstractmethod
    def get_finding(self, finding_id: str) -> Optional[Finding]:
        """Re-read a persisted finding."""

    @abstractmethod
    def link_finding_to_trigger(self, trigger_id: str, finding_id: str) -> None:
        """Attach a finding back-reference to a trigger."""

    @abstractmethod
    def mark_trigger_escalated(self, trigger_id: str, escalated_at: datetime) -> None:
        """Record that a trigger's escalation completed successfully."""

    @abstractmethod
    def get_last_escalation_at(self) -> Optional[datetime]:
        """Return the most recent successful escalation time across all triggers."""


class InMemoryDetectionStore(DetectionStore):
    """
    Thread-safe in-memory store.

    ``available`` can be toggled to simulate an outage: every call then
    raises StoreError (reads) or PersistenceError (writes).
    """

    def __init__(
        self,
        snapshots: Optional[Iterable[Snapshot]] = None,
        sentiment: Optional[Iterable[SentimentSample]] = None,
        clock: Clock = utc_now,
    ):
        self._lock = threading.RLock()
        self._clock = clock
        self._snapshots: List[Snapshot] = []
        self._sentiment: List[SentimentSample] = []
        self._triggers: Dict[str, str] = {}
        self._findings: Dict[str, str] = {}
        self.available = True

        for snapshot in snapshots or []:
            self.add_snapshot(snapshot)
        for sample in sentiment or []:
            self.add_sentiment_sample(sample)

    # Collector side

    def add_snapshot(self, snapshot: Snapshot) -> None:
        with self._lock:
            self._snapshots.append(snapshot)
            self._snapshots.sort(key=lambda s: s.timestamp)

    def add_sentiment_sample(self, sample: SentimentSample) -> None:
        with self._lock:
            self._sentiment.append(sample)

    # Reads

    def get_latest_snapshot(self) -> Optional[Snapshot]:
        with self._lock:
            self._check_available()
            return self._snapshots[-1] if self._snapshots else None

    def get_historical_snapshots(
        self,
        since: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[Snapshot]:
        with self._lock:
            self._check_available()
            rows = list(self._snapshots)

        if since is not None:
            since = ensure_utc(since)
            rows = [s for s in rows if s.timestamp > since]
        if limit is not None:
            rows = rows[-limit:] if limit > 0 else []
        return rows

    def get_recent_sentiment_summary(self, hours: float) -> Optional[SentimentSummary]:
        with self._lock:
            self._check_available()
            cutoff = self._clock() - timedelta(hours=hours)
            samples = [s for s in self._sentiment if s.collected_at > cutoff]

        if not samples:
            return None

        total = len(samples)
        negative = sum(1 for s in samples if s.label == SentimentLabel.NEGATIVE)
        positive = sum(1 for s in samples if s.label == SentimentLabel.POSITIVE)
        return SentimentSummary(
            avg_score=sum(s.score for s in samples) / total,
            negative_share=negative / total,
            positive_share=positive / total,
            total_samples=total,
        )

    def get_trigger(self, trigger_id: str) -> Optional[Trigger]:
        with self._lock:
            self._check_available()
            raw = self._triggers.get(trigger_id)
        return Trigger.model_validate_json(raw) if raw is not None else None

    def list_triggers(self, since: Optional[datetime] = None) -> List[Trigger]:
        with self._lock:
            self._check_available()
            rows = [Trigger.model_validate_json(raw) for raw in self._triggers.values()]

        if since is not None:
            since = ensure_utc(since)
            rows = [t for t in rows if t.timestamp > since]
        rows.sort(key=lambda t: t.timestamp)
        return rows

    def get_finding(self, finding_id: str) -> Optional[Finding]:
        with self._lock:
            self._check_available()
            raw = self._findings.get(finding_id)
        return Finding.model_validate_json(raw) if raw is not None else None

    def get_last_escalation_at(self) -> Optional[datetime]:
        escalations = [t.escalated_at for t in self.list_triggers() if t.escalated_at is not None]
        return max(escalations) if escalations else None

    # Writes

    def persist_trigger(self, trigger: Trigger) -> str:
        with self._lock:
            self._check_writable()
            self._triggers[trigger.trigger_id] = trigger.model_dump_json()
            return trigger.trigger_id

    def persist_finding(self, finding: Finding) -> str:
        with self._lock:
            self._check_writable()
            self._findings[finding.finding_id] = finding.model_dump_json()
            return finding.finding_id

    def link_finding_to_trigger(self, trigger_id: str, finding_id: str) -> None:
        self._update_trigger(trigger_id, finding_id=finding_id)

    def mark_trigger_escalated(self, trigger_id: str, escalated_at: datetime) -> None:
        self._update_trigger(trigger_id, escalated_at=ensure_utc(escalated_at))

    def _update_trigger(self, trigger_id: str, **changes) -> None:
        with self._lock:
            self._check_writable()
            raw = self._triggers.get(trigger_id)
            if raw is None:
                raise PersistenceError(f"Unknown trigger: {trigger_id}")
            trigger = Trigger.model_validate_json(raw).model_copy(update=changes)
            self._triggers[trigger_id] = trigger.model_dump_json()

    def _check_available(self) -> None:
        if not self.available:
            raise StoreError("Detection store unavailable")

    def _check_writable(self) -> None:
        if not self.available:
            raise PersistenceError("Detection store unavailable")
