"""
taskledger Error Hierarchy

Base error and specific error types for the fact log, projections and
reconciliation. Errors carry metadata for structured logging.
"""

from typing import Any, Dict, Optional


class TaskLedgerError(RuntimeError):
    """
    Base error for taskledger components. Carries metadata for structured logging.

    Attributes:
        category: Error category for classification (e.g., "storage", "validation")
        retryable: Whether the operation can be retried
        metadata: Additional context for logging and debugging
    """

    category: str = "runtime"
    retryable: bool = True

    def __init__(
        self,
        message: str,
        *,
        metadata: Optional[Dict[str, Any]] = None,
        retryable: Optional[bool] = None,
    ) -> None:
        super().__init__(message)
        self.metadata = metadata or {}
        if retryable is not None:
            self.retryable = retryable


# Validation Errors
class ValidationError(TaskLedgerError, ValueError):
    """Raised when a fact payload or command argument is malformed."""

    category = "validation"
    retryable = False

    def __init__(
        self,
        message: str,
        *,
        errors: Optional[list] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, metadata=metadata)
        self.errors = errors or []


class SprintStateError(ValidationError):
    """Raised when a sprint transition is not allowed from its current status."""

    category = "validation"


# Configuration Errors
class ConfigError(TaskLedgerError):
    """Raised when configuration is invalid or missing."""

    category = "config"
    retryable = False


# Storage Errors
class StorageError(TaskLedgerError):
    """Raised when database operations fail."""

    category = "storage"


class VersionConflictError(StorageError):
    """
    Raised when an append would reuse or skip an aggregate version.

    Never retried automatically: a silent retry could reorder causally
    related facts.
    """

    category = "storage"
    retryable = False

    def __init__(
        self,
        message: str,
        *,
        aggregate_type: str,
        aggregate_id: str,
        expected_version: Optional[int] = None,
        actual_version: Optional[int] = None,
    ) -> None:
        super().__init__(
            message,
            metadata={
                "aggregate_type": aggregate_type,
                "aggregate_id": aggregate_id,
                "expected_version": expected_version,
                "actual_version": actual_version,
            },
        )
        self.aggregate_type = aggregate_type
        self.aggregate_id = aggregate_id
        self.expected_version = expected_version
        self.actual_version = actual_version


class EntityNotFoundError(StorageError, KeyError):
    """Raised when a command targets an aggregate with no facts."""

    category = "storage"
    retryable = False

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else ""


# External Tracker Errors
class ExternalTrackerError(TaskLedgerError):
    """Raised when a call to the external issue tracker fails."""

    category = "tracker"


class TrackerAuthError(ExternalTrackerError):
    """Raised when the tracker cannot be called because no credentials are configured."""

    category = "tracker"
    retryable = False
