"""Enhanced table writer and reader.

This module persists transformed records of one consumer as part of the
change-log commit and guards the one-row-per-sequence-id invariant.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Sequence

from core.constants import DEAD_LETTER_DIR_NAME, ENHANCED_DIR_NAME
from core.types import CommitWindow, DeadLetterRecord, EnhancedRecord
from store.batch_table import SEQUENCE_KEY, BatchTable


class EnhancedTable:
    """Durable output table of one transform consumer."""

    def __init__(self, data_root: Path, consumer_id: str) -> None:
        self._table = BatchTable(data_root / ENHANCED_DIR_NAME / consumer_id, consumer_id)

    def stage_batch(self, window: CommitWindow, records: Sequence[EnhancedRecord]) -> None:
        """Stage one batch inside an open commit.

        Raises:
            DuplicateSourceSequenceError: If a source sequence id would repeat.
        """
        self._table.stage_batch(window, [enhanced_record_to_payload(item) for item in records])

    def publish(self, committed_offset: int) -> None:
        self._table.publish(committed_offset)

    def read_records(self, committed_offset: int) -> list[EnhancedRecord]:
        """Return committed records ordered by source sequence id."""
        return [
            enhanced_record_from_payload(row) for row in self._table.read_rows(committed_offset)
        ]

    def purge_beyond(self, sequence_id: int) -> int:
        return self._table.purge_beyond(sequence_id)


class DeadLetterSink:
    """Side table of records rejected by the projection."""

    def __init__(self, data_root: Path, consumer_id: str) -> None:
        self._table = BatchTable(data_root / DEAD_LETTER_DIR_NAME / consumer_id, consumer_id)

    def stage_batch(self, window: CommitWindow, records: Sequence[DeadLetterRecord]) -> None:
        self._table.stage_batch(window, [dead_letter_to_payload(item) for item in records])

    def publish(self, committed_offset: int) -> None:
        self._table.publish(committed_offset)

    def read_records(self, committed_offset: int) -> list[DeadLetterRecord]:
        return [dead_letter_from_payload(row) for row in self._table.read_rows(committed_offset)]

    def purge_beyond(self, sequence_id: int) -> int:
        return self._table.purge_beyond(sequence_id)


def enhanced_record_to_payload(record: EnhancedRecord) -> dict[str, Any]:
    """Serialize EnhancedRecord into a JSON-safe payload."""
    return {
        SEQUENCE_KEY: record.source_sequence_id,
        "fields": dict(record.fields),
        "transform_timestamp": record.transform_timestamp,
    }


def enhanced_record_from_payload(payload: dict[str, Any]) -> EnhancedRecord:
    """Deserialize a JSON payload into EnhancedRecord."""
    fields_payload = payload.get("fields")
    return EnhancedRecord(
        source_sequence_id=int(payload[SEQUENCE_KEY]),
        fields=dict(fields_payload) if isinstance(fields_payload, dict) else {},
        transform_timestamp=str(payload.get("transform_timestamp", "")),
    )


def dead_letter_to_payload(record: DeadLetterRecord) -> dict[str, Any]:
    """Serialize DeadLetterRecord into a JSON-safe payload."""
    return {
        SEQUENCE_KEY: record.source_sequence_id,
        "source_file_id": record.source_file_id,
        "source_row_ordinal": record.source_row_ordinal,
        "field_map": dict(record.field_map),
        "reason": record.reason,
        "run_id": record.run_id,
        "recorded_at": record.recorded_at,
    }


def dead_letter_from_payload(payload: dict[str, Any]) -> DeadLetterRecord:
    """Deserialize a JSON payload into DeadLetterRecord."""
    field_map = payload.get("field_map")
    return DeadLetterRecord(
        source_sequence_id=int(payload[SEQUENCE_KEY]),
        source_file_id=str(payload.get("source_file_id", "")),
        source_row_ordinal=int(payload.get("source_row_ordinal", 0)),
        field_map=dict(field_map) if isinstance(field_map, dict) else {},
        reason=str(payload.get("reason", "")),
        run_id=str(payload.get("run_id", "")),
        recorded_at=str(payload.get("recorded_at", "")),
    )
