"""
Core module: Configuration, logging, clock, and exception handling.
"""

from .clock import Clock, ensure_utc, utc_now
from .config import Config, config
from .exceptions import (
    AnalysisError,
    AnomalyDetectionError,
    ConfigurationError,
    DataValidationError,
    InsufficientDataError,
    ModelInferenceError,
    NoSnapshotError,
    PersistenceError,
    StoreError,
)

__all__ = [
    "Clock",
    "Config",
    "config",
    "ensure_utc",
    "utc_now",
    "AnalysisError",
    "AnomalyDetectionError",
    "ConfigurationError",
    "DataValidationError",
    "InsufficientDataError",
    "ModelInferenceError",
    "NoSnapshotError",
    "PersistenceError",
    "StoreError",
]
