"""
Custom exceptions for the stakewatch anomaly detector.

These exceptions provide clear error semantics across the system.
Use them to distinguish warm-up, missing data, store failures and
failures of the external reasoning service.
"""

from typing import Optional


class AnomalyDetectionError(Exception):
    """Base exception for anomaly detection failures."""
    pass


class InsufficientDataError(AnomalyDetectionError):
    """Raised when the baseline has too few samples to be trusted."""

    def __init__(self, sample_count: int, required: int):
        self.sample_count = sample_count
        self.required = required
        super().__init__(
            f"Insufficient baseline data: {sample_count} samples, need at least {required}"
        )


class NoSnapshotError(AnomalyDetectionError):
    """Raised when there is no snapshot to evaluate."""
    pass


class AnalysisError(AnomalyDetectionError):
    """Raised when deep analysis fails (retries exhausted, unusable output, timeout)."""

    def __init__(self, message: str, trigger_id: Optional[str] = None, attempts: int = 0):
        self.trigger_id = trigger_id
        self.attempts = attempts
        super().__init__(message)


class StoreError(AnomalyDetectionError):
    """Raised when the snapshot/trigger/finding store is unavailable."""
    pass


class PersistenceError(StoreError):
    """Raised when a write to the store fails."""
    pass


class ModelInferenceError(Exception):
    """Raised when a reasoning service call fails (transport, HTTP status, generation)."""

    def __init__(self, message: str, transient: bool = True):
        self.transient = transient
        super().__init__(message)


class DataValidationError(Exception):
    """Raised when input data or service output fails validation."""
    pass


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing."""
    pass
