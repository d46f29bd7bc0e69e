"""
Baseline estimation over historical snapshots.

Aggregates every successful snapshot in a trailing window into per-metric
statistics and caches the result for a short TTL, so one detection cycle
(and ad-hoc analysis requests) reuse a single aggregation pass.
"""

from __future__ import annotations

import logging
import statistics
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Dict, List, Optional

from stakewatch.core.clock import Clock, utc_now
from stakewatch.core.config import BaselineConfig
from stakewatch.core.exceptions import InsufficientDataError, StoreError
from stakewatch.data.schema import Snapshot

from .schema import BaselineStatistics, MetricStats

if TYPE_CHECKING:
    from stakewatch.data.store import DetectionStore

logger = logging.getLogger(__name__)


def compute_metric_stats(values: List[float]) -> Optional[MetricStats]:
    """
    Mean, population standard deviation, min, max, median and count.

    Returns None for an empty series.
    """

    if not values:
        return None
    return MetricStats(
        mean=statistics.fmean(values),
        std=statistics.pstdev(values),
        min=min(values),
        max=max(values),
        median=statistics.median(values),
        count=len(values),
    )


@dataclass
class CachedBaseline:
    """A computed baseline and the clock time it was computed at."""

    value: BaselineStatistics
    computed_at: datetime


@dataclass
class BaselineCalculator:
    """
    Baseline store accessor with a time-bounded cache.

    Warm-up: raises InsufficientDataError while the window holds fewer than
    ``config.min_samples`` successful snapshots.

    Failure handling: if recomputation fails because the store is unavailable,
    the last good cached value for the window is returned flagged ``stale``.
    """

    store: "DetectionStore"
    config: BaselineConfig = field(default_factory=BaselineConfig)
    clock: Clock = utc_now
    sentiment_enabled: bool = True

    def __post_init__(self) -> None:
        self._cache: Dict[int, CachedBaseline] = {}
        self._lock = threading.Lock()
        self.aggregation_count = 0

    def get_baseline(
        self, window_days: Optional[int] = None, force_refresh: bool = False
    ) -> BaselineStatistics:
        window_days = window_days or self.config.window_days

        with self._lock:
            cached = self._cache.get(window_days)
            if not force_refresh and cached is not None and self._is_fresh(cached):
                logger.debug("Using cached baseline for %d-day window", window_days)
                baseline = cached.value
            else:
                baseline = self._refresh(window_days, cached, force_refresh)

        self._check_reliable(baseline)
        return baseline

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()
        logger.info("Baseline cache cleared")

    def cache_status(self) -> Dict[int, Dict[str, object]]:
        now = self.clock()
        with self._lock:
            return {
                days: {
                    "computed_at": entry.computed_at,
                    "age_seconds": (now - entry.computed_at).total_seconds(),
                    "is_valid": self._is_fresh(entry),
                    "sample_count": entry.value.sample_count,
                }
                for days, entry in self._cache.items()
            }

    def _is_fresh(self, cached: CachedBaseline) -> bool:
        age = (self.clock() - cached.computed_at).total_seconds()
        return age < self.config.cache_ttl_seconds

    def _refresh(
        self, window_days: int, cached: Optional[CachedBaseline], force_refresh: bool
    ) -> BaselineStatistics:
        logger.info("Recalculating baseline statistics (window_days=%d, force_refresh=%s)", window_days, force_refresh)
        try:
            baseline = self._compute(window_days)
        except StoreError as exc:
            if cached is None:
                logger.error("Baseline recomputation failed and no cache exists: %s", exc)
                raise
            logger.warning("Using stale cached baseline due to store error: %s", exc)
            return cached.value.model_copy(update={"stale": True})

        self._cache[window_days] = CachedBaseline(value=baseline, computed_at=self.clock())
        return baseline

    def _compute(self, window_days: int) -> BaselineStatistics:
        now = self.clock()
        since = now - timedelta(days=window_days)
        snapshots = [s for s in self.store.get_historical_snapshots(since=since) if self._accepted(s)]
        self.aggregation_count += 1

        series: Dict[str, List[float]] = {}
        for snapshot in snapshots:
            for name, value in snapshot.metrics.items():
                series.setdefault(name, []).append(float(value))

        metrics = {}
        for name, values in series.items():
            stats = compute_metric_stats(values)
            if stats is not None:
                metrics[name] = stats

        sentiment = None
        if self.sentiment_enabled:
            try:
                sentiment = self.store.get_recent_sentiment_summary(hours=window_days * 24)
            except StoreError as exc:
                logger.warning("Sentiment baseline unavailable: %s", exc)

        baseline = BaselineStatistics(
            metrics=metrics,
            sample_count=len(snapshots),
            window_days=window_days,
            computed_at=now,
            sentiment=sentiment,
        )

        logger.info(
            "Baseline statistics calculated: %d samples, %d metrics over %d days",
            baseline.sample_count,
            len(metrics),
            window_days,
        )
        if self.config.min_samples <= baseline.sample_count < self.config.recommended_samples:
            logger.warning(
                "Limited baseline data (%d samples, %d recommended); detection may be less accurate",
                baseline.sample_count,
                self.config.recommended_samples,
            )
        return baseline

    def _accepted(self, snapshot: Snapshot) -> bool:
        if not snapshot.is_success:
            return False
        sources = self.config.accepted_sources
        return sources is None or snapshot.source in sources

    def _check_reliable(self, baseline: BaselineStatistics) -> None:
        if baseline.sample_count < self.config.min_samples:
            logger.warning(
                "Insufficient baseline data: %d samples (minimum %d, ~%d minutes of 5-minute sampling)",
                baseline.sample_count,
                self.config.min_samples,
                baseline.sample_count * 5,
            )
            raise InsufficientDataError(baseline.sample_count, self.config.min_samples)
