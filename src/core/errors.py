"""StreamTask exception hierarchy.

This module defines traceable domain errors with clear boundaries.
Each subsystem raises a specific error type for debuggability.
"""

from __future__ import annotations


class StreamTaskError(Exception):
    """Base exception for all StreamTask failures."""


class StreamTaskConfigError(StreamTaskError):
    """Raised for invalid runtime configuration."""


class StreamTaskSpecError(StreamTaskError):
    """Raised for invalid or unsupported pipeline-spec configuration."""


class StreamTaskIngestError(StreamTaskError):
    """Raised for log file parsing and raw append failures."""


class StreamTaskStoreError(StreamTaskError):
    """Raised for offset, table, and run-history persistence failures."""


class StorageUnavailableError(StreamTaskStoreError):
    """Raised when underlying storage cannot be read or written."""


class DuplicateSourceSequenceError(StreamTaskStoreError):
    """Raised when a batch would write a source sequence id twice."""


class StreamTaskDependencyError(StreamTaskError):
    """Raised when an optional runtime dependency is missing."""


class StreamTaskAdminError(StreamTaskError):
    """Raised for administrative operations attempted in the wrong state."""


class ConcurrentCommitConflictError(StreamTaskError):
    """Raised when a commit for the same consumer is already in flight."""


class StaleOffsetError(StreamTaskError):
    """Raised when a commit offset is inconsistent with the current offset."""


class RunTimeoutError(StreamTaskError):
    """Raised when a task run exceeded its wall-clock budget."""


class MalformedRecordError(StreamTaskError):
    """Raised when one raw record cannot be projected.

    Attributes:
        field_name: Field that failed projection.
        reason: Short machine-friendly reason code.
    """

    def __init__(self, field_name: str, reason: str, detail: str) -> None:
        super().__init__(f"Field '{field_name}' is {reason}: {detail}")
        self.field_name = field_name
        self.reason = reason
