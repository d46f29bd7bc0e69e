"""
Snapshot and sentiment loading from JSON files.

Seeds the in-memory store for local runs and replays. Supports a JSON
array or NDJSON (one object per line). Malformed rows are logged and
skipped; a missing or unreadable file is fatal.

Example NDJSON snapshot row:
    {"timestamp": "2025-02-07T10:30:00Z", "source": "blockchain_collector",
     "metrics": {"locked_value": 2710000.5, "peg_ratio": 0.9998, "gas_price_gwei": 4.2}}

Rows without a ``metrics`` object are accepted in flat form: every numeric
field other than the reserved ones becomes a metric.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterator, List, Union

from pydantic import ValidationError

from stakewatch.core.exceptions import DataValidationError
from stakewatch.data.schema import SentimentSample, Snapshot

logger = logging.getLogger(__name__)

_RESERVED_FIELDS = {"timestamp", "source", "status", "error_message", "metrics"}


def iter_json_records(filepath: Union[str, Path], encoding: str = "utf-8") -> Iterator[Dict[str, Any]]:
    """
    Yield dict records from a JSON array or NDJSON file.

    Raises:
        DataValidationError: If the file is missing, unreadable, or not a JSON array/NDJSON
    """
    path = Path(filepath)
    if not path.exists():
        raise DataValidationError(f"Input file not found: {path}")

    try:
        content = path.read_text(encoding=encoding).lstrip("\ufeff").strip()
    except OSError as e:
        raise DataValidationError(f"Failed to read {path}: {e}") from e

    if content.startswith("["):
        try:
            records = json.loads(content)
        except json.JSONDecodeError as e:
            raise DataValidationError(f"Invalid JSON array in {path}: {e}") from e
        for idx, record in enumerate(records):
            if isinstance(record, dict):
                yield record
            else:
                logger.warning("Non-object entry at index %d in %s", idx, path)
        return

    for line_num, line in enumerate(content.split("\n"), start=1):
        line = line.strip()
        if not line:
            continue
        try:
            record = json.loads(line)
        except json.JSONDecodeError:
            logger.warning("Malformed JSON at %s:%d: %s", path, line_num, line[:100])
            continue
        if isinstance(record, dict):
            yield record
        else:
            logger.warning("NDJSON line %d in %s is not an object", line_num, path)


def snapshot_from_record(record: Dict[str, Any]) -> Snapshot:
    """
    Build a Snapshot from a raw record (nested or flat metrics).

    Raises:
        DataValidationError: If the record does not describe a valid snapshot
    """
    metrics = record.get("metrics")
    if metrics is None:
        metrics = {
            key: value
            for key, value in record.items()
            if key not in _RESERVED_FIELDS
            and isinstance(value, (int, float))
            and not isinstance(value, bool)
        }

    payload = {key: record[key] for key in ("timestamp", "source", "status", "error_message") if key in record}
    payload["metrics"] = metrics
    try:
        return Snapshot(**payload)
    except ValidationError as e:
        raise DataValidationError(f"Invalid snapshot record: {e}") from e


def load_snapshots(filepath: Union[str, Path]) -> List[Snapshot]:
    """
    Load snapshots from a JSON/NDJSON file, skipping invalid rows.

    Returns:
        Snapshots in ascending time order
    """
    snapshots: List[Snapshot] = []
    skipped = 0
    for record in iter_json_records(filepath):
        try:
            snapshots.append(snapshot_from_record(record))
        except DataValidationError as e:
            skipped += 1
            logger.warning("Skipping snapshot record: %s", e)

    snapshots.sort(key=lambda s: s.timestamp)
    logger.info("Loaded %d snapshots from %s (%d skipped)", len(snapshots), filepath, skipped)
    return snapshots


def load_sentiment_samples(filepath: Union[str, Path]) -> List[SentimentSample]:
    """
    Load scored sentiment samples from a JSON/NDJSON file, skipping invalid rows.
    """
    samples: List[SentimentSample] = []
    for record in iter_json_records(filepath):
        try:
            samples.append(SentimentSample(**record))
        except (ValidationError, TypeError) as e:
            logger.warning("Skipping sentiment record: %s", e)
    return samples
