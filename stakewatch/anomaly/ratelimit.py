"""
Escalation budget.

At most one deep analysis per ``min_interval_seconds``, measured from the
last *successful* escalation. Failed or cancelled analyses never consume
the budget.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from stakewatch.core.clock import ensure_utc
from stakewatch.core.exceptions import StoreError

from .schema import RateLimitState

logger = logging.getLogger(__name__)


@dataclass
class RateLimitDecision:
    """Result of a budget check."""

    allowed: bool
    retry_after_seconds: Optional[float] = None
    last_escalation_at: Optional[datetime] = None


class RateLimiter:
    """
    Lock-guarded RateLimitState.

    The state is restored lazily on first use from ``restore`` (typically
    ``store.get_last_escalation_at``) so the budget survives restarts when
    the store is durable. A failed restore is retried on the next check.
    """

    def __init__(
        self,
        min_interval_seconds: float,
        restore: Optional[Callable[[], Optional[datetime]]] = None,
    ) -> None:
        self.min_interval_seconds = min_interval_seconds
        self._restore = restore
        self._restored = restore is None
        self._state = RateLimitState()
        self._lock = threading.Lock()

    @property
    def last_escalation_at(self) -> Optional[datetime]:
        with self._lock:
            self._ensure_restored()
            return self._state.last_escalation_at

    def check(self, now: datetime) -> RateLimitDecision:
        with self._lock:
            self._ensure_restored()
            last = self._state.last_escalation_at
            if last is None:
                return RateLimitDecision(allowed=True)

            elapsed = (ensure_utc(now) - last).total_seconds()
            if elapsed >= self.min_interval_seconds:
                return RateLimitDecision(allowed=True, last_escalation_at=last)
            return RateLimitDecision(
                allowed=False,
                retry_after_seconds=self.min_interval_seconds - elapsed,
                last_escalation_at=last,
            )

    def record_success(self, at: datetime) -> None:
        with self._lock:
            self._restored = True
            self._state = RateLimitState(last_escalation_at=ensure_utc(at))
        logger.debug("Rate limit window restarted at %s", at.isoformat())

    def _ensure_restored(self) -> None:
        if self._restored:
            return
        try:
            last = self._restore()
        except StoreError as exc:
            logger.warning("Could not restore last escalation time: %s", exc)
            return
        self._restored = True
        if last is not None:
            self._state = RateLimitState(last_escalation_at=ensure_utc(last))
            logger.info("Restored last escalation time: %s", last.isoformat())
