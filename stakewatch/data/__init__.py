"""
Data module: Snapshot schema, loading, and the store contract.

    Collectors (external)
        ↓
    Snapshot / SentimentSample (stakewatch/data/schema.py)
        ↓
    DetectionStore (stakewatch/data/store.py)
        ↓
    Baselines, pre-filter, orchestrator

The store module is imported directly (``stakewatch.data.store``) because
it depends on the anomaly schema.
"""

from stakewatch.data.ingestion import (
    iter_json_records,
    load_sentiment_samples,
    load_snapshots,
    snapshot_from_record,
)
from stakewatch.data.schema import (
    Metric,
    SentimentLabel,
    SentimentSample,
    SentimentSummary,
    Snapshot,
    SnapshotStatus,
)

__all__ = [
    # Schema
    "Metric",
    "Snapshot",
    "SnapshotStatus",
    "SentimentLabel",
    "SentimentSample",
    "SentimentSummary",

    # Loading
    "iter_json_records",
    "load_snapshots",
    "load_sentiment_samples",
    "snapshot_from_record",
]
