"""
Command-line driver for the stakewatch detector.

Seeds an in-memory store from snapshot/sentiment files and runs detection
cycles on a fixed interval (or once, or a manual analysis).
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import List, Optional

from dotenv import load_dotenv

from backend.analysis import AnalysisConfig
from backend.analysis_service import create_analysis_engine
from backend.orchestrator import DetectionOrchestrator
from backend.scheduler import DetectionScheduler, log_cycle_result
from llm.config import ReasoningServiceConfig
from stakewatch.anomaly.baselines import BaselineCalculator
from stakewatch.anomaly.prefilter import PreFilter
from stakewatch.anomaly.schema import Finding
from stakewatch.core.config import config
from stakewatch.core.exceptions import (
    AnalysisError,
    ConfigurationError,
    DataValidationError,
    InsufficientDataError,
    NoSnapshotError,
    StoreError,
)
from stakewatch.core.logging_config import setup_logging
from stakewatch.data.ingestion import load_sentiment_samples, load_snapshots
from stakewatch.data.store import InMemoryDetectionStore

load_dotenv()

logger = logging.getLogger("backend")


def _print_finding(finding: Finding) -> None:
    logger.warning(
        "FINDING [%s] %s (confidence=%.2f, type=%s)",
        finding.severity.value.upper(),
        finding.title,
        finding.confidence,
        finding.type,
    )


def build_store(snapshots_path: Optional[str], sentiment_path: Optional[str]) -> InMemoryDetectionStore:
    store = InMemoryDetectionStore()
    if snapshots_path:
        for snapshot in load_snapshots(snapshots_path):
            store.add_snapshot(snapshot)
    if sentiment_path:
        for sample in load_sentiment_samples(sentiment_path):
            store.add_sentiment_sample(sample)
    return store


def build_orchestrator(args: argparse.Namespace, store: InMemoryDetectionStore) -> DetectionOrchestrator:
    service_config = ReasoningServiceConfig(provider=args.provider)
    if args.reasoning_url:
        service_config.base_url = args.reasoning_url
    if args.model:
        service_config.model = args.model
    if args.model_path:
        service_config.model_path = args.model_path

    anomaly = config.anomaly
    engine = create_analysis_engine(
        store,
        service_config=service_config,
        analysis_config=AnalysisConfig(protocol_name=config.protocol_name),
    )
    return DetectionOrchestrator(
        store=store,
        analysis_engine=engine,
        baselines=BaselineCalculator(store, config=anomaly.baselines),
        prefilter=PreFilter(config=anomaly.prefilter),
        config=anomaly.detection,
        notify=_print_finding,
    )


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="stakewatch anomaly detector")
    parser.add_argument("--snapshots", help="JSON/NDJSON file of metric snapshots")
    parser.add_argument("--sentiment", help="JSON/NDJSON file of scored sentiment samples")
    parser.add_argument("--interval", type=float, default=None, help="Seconds between cycles")
    parser.add_argument("--cycles", type=int, default=None, help="Stop after N cycles")
    parser.add_argument("--once", action="store_true", help="Run a single cycle and exit")
    parser.add_argument("--manual", action="store_true", help="Run one manual analysis and exit")
    parser.add_argument("--stats", action="store_true", help="Print detection stats after the run")
    parser.add_argument("--provider", choices=["http", "local"], default="http")
    parser.add_argument("--reasoning-url", default=None, help="Base URL of the reasoning server")
    parser.add_argument("--model", default=None, help="Model name for the HTTP provider")
    parser.add_argument("--model-path", default=None, help="Local model path for the local provider")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging("stakewatch")
    setup_logging("backend")
    setup_logging("llm")

    try:
        store = build_store(args.snapshots, args.sentiment)
        orchestrator = build_orchestrator(args, store)
    except (DataValidationError, ConfigurationError) as exc:
        logger.error("Startup failed: %s", exc)
        return 2

    if args.manual:
        try:
            result = orchestrator.run_manual_analysis()
        except (NoSnapshotError, InsufficientDataError, AnalysisError, StoreError) as exc:
            logger.error("Manual analysis failed: %s", exc)
            return 1
        finally:
            orchestrator.shutdown()
        log_cycle_result(result)
        return 0

    scheduler = DetectionScheduler(
        orchestrator,
        interval_seconds=args.interval,
        max_cycles=1 if args.once else args.cycles,
    )
    scheduler.install_signal_handlers()
    logger.info("Monitoring %s", config.protocol_name)
    scheduler.run()

    if args.stats:
        stats = orchestrator.get_detection_stats()
        print(json.dumps(stats.model_dump(mode="json"), indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
