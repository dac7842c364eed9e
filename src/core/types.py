"""Shared typed models.

This module defines immutable data models used by the raw log,
change log, transform task, and table layers to keep interfaces explicit.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping


@dataclass(frozen=True)
class SourceLogRow:
    """One parsed log row handed over by the ingestion collaborator.

    Attributes:
        source_file_id: Identifier of the file the row was parsed from.
        source_row_ordinal: Zero-based row position inside the file.
        field_map: Parsed key to value mapping.
    """

    source_file_id: str
    source_row_ordinal: int
    field_map: Mapping[str, object]


@dataclass(frozen=True)
class RawRecord:
    """Immutable row stored in the raw append log.

    Attributes:
        sequence_id: Monotonic id assigned at append time.
        source_file_id: Identifier of the source file.
        source_row_ordinal: Zero-based row position inside the file.
        load_timestamp: UTC ISO-8601 append time.
        field_map: Parsed key to value mapping.
    """

    sequence_id: int
    source_file_id: str
    source_row_ordinal: int
    load_timestamp: str
    field_map: Mapping[str, object] = field(default_factory=dict)


@dataclass(frozen=True)
class EnhancedRecord:
    """Transformed output row.

    Attributes:
        source_sequence_id: Raw sequence id this row was derived from.
        fields: Projected and typed output fields.
        transform_timestamp: UTC ISO-8601 transform time.
    """

    source_sequence_id: int
    fields: Mapping[str, object]
    transform_timestamp: str


@dataclass(frozen=True)
class DeadLetterRecord:
    """Raw record that failed projection, preserved for inspection.

    Attributes:
        source_sequence_id: Raw sequence id of the rejected record.
        source_file_id: Identifier of the source file.
        source_row_ordinal: Zero-based row position inside the file.
        field_map: Original parsed fields.
        reason: Human-readable failure description.
        run_id: Task run that rejected the record.
        recorded_at: UTC ISO-8601 rejection time.
    """

    source_sequence_id: int
    source_file_id: str
    source_row_ordinal: int
    field_map: Mapping[str, object]
    reason: str
    run_id: str
    recorded_at: str


@dataclass(frozen=True)
class ConsumerOffset:
    """Durable consumption checkpoint of one consumer.

    Attributes:
        consumer_id: Consumer identifier.
        last_committed_sequence_id: Highest committed raw sequence id.
        paused: Whether scheduling is suspended for the consumer.
        updated_at: UTC ISO-8601 time of the last change.
        last_run_id: Task run that committed the current offset, if any.
    """

    consumer_id: str
    last_committed_sequence_id: int
    paused: bool
    updated_at: str
    last_run_id: str | None = None


@dataclass(frozen=True)
class CommitWindow:
    """Sequence range being committed by one change-log commit.

    Attributes:
        consumer_id: Consumer identifier.
        start_sequence_id: First sequence id covered (inclusive).
        end_sequence_id: Last sequence id covered (inclusive).
    """

    consumer_id: str
    start_sequence_id: int
    end_sequence_id: int

    def covers(self, sequence_id: int) -> bool:
        """Return whether a sequence id falls inside the window."""
        return self.start_sequence_id <= sequence_id <= self.end_sequence_id


@dataclass(frozen=True)
class IngestResult:
    """Summary of one ingestion call.

    Attributes:
        files_loaded: Source file ids appended in this call.
        files_skipped: Source file ids already present in the raw log.
        rows_appended: Number of raw records appended.
        high_watermark: Raw log high-watermark after the append.
    """

    files_loaded: tuple[str, ...]
    files_skipped: tuple[str, ...]
    rows_appended: int
    high_watermark: int
