"""Append-only raw record log.

This module persists parsed log rows as JSONL with monotonic sequence ids.
Appends are serialized per table; readers never block on the writer and
ignore a trailing line that is still being written.
"""

from __future__ import annotations

import json
import os
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator, Mapping, Sequence

from core.constants import RAW_DIR_NAME, RAW_RECORDS_FILE_NAME
from core.errors import StorageUnavailableError, StreamTaskIngestError, StreamTaskStoreError
from core.logging_config import get_logger
from core.types import RawRecord, SourceLogRow

_LOGGER = get_logger(__name__)
_TAIL_CHUNK_BYTES = 64 * 1024
_APPEND_LOCKS: dict[Path, threading.Lock] = {}
_APPEND_LOCKS_GUARD = threading.Lock()


class RawAppendLog:
    """Filesystem-backed append-only log of raw records.

    Sequence ids are assigned densely (1, 2, 3, ...) at append time, so
    any id between 1 and the high-watermark names a real record.
    """

    def __init__(self, data_root: Path, table_name: str) -> None:
        self._table_name = table_name
        self._table_dir = data_root / RAW_DIR_NAME / table_name
        self._table_dir.mkdir(parents=True, exist_ok=True)
        self._records_path = self._table_dir / RAW_RECORDS_FILE_NAME
        self._append_lock = _append_lock_for(self._records_path)

    @property
    def table_name(self) -> str:
        return self._table_name

    def append_rows(self, rows: Sequence[SourceLogRow]) -> tuple[RawRecord, ...]:
        """Append parsed rows and assign their sequence ids.

        Args:
            rows: Parsed rows from the ingestion collaborator.

        Returns:
            Appended raw records in sequence order.

        Raises:
            StreamTaskIngestError: If a row violates the input contract.
            StorageUnavailableError: If the log file cannot be written.
        """
        for row in rows:
            _validate_source_row(row)
        if not rows:
            return ()
        with self._append_lock:
            self._repair_partial_tail()
            next_sequence_id = self.high_watermark() + 1
            load_timestamp = datetime.now(timezone.utc).isoformat()
            records = tuple(
                RawRecord(
                    sequence_id=next_sequence_id + index,
                    source_file_id=row.source_file_id,
                    source_row_ordinal=row.source_row_ordinal,
                    load_timestamp=load_timestamp,
                    field_map=dict(row.field_map),
                )
                for index, row in enumerate(rows)
            )
            self._write_lines([_encode_record(record) for record in records])
        _LOGGER.info(
            "raw_rows_appended",
            table_name=self._table_name,
            row_count=len(records),
            first_sequence_id=records[0].sequence_id,
            last_sequence_id=records[-1].sequence_id,
        )
        return records

    def high_watermark(self) -> int:
        """Return the sequence id of the last fully written record, or 0."""
        last_line = self._read_last_complete_line()
        if last_line is None:
            return 0
        return _decode_record(last_line, self._records_path).sequence_id

    def contains(self, sequence_id: int) -> bool:
        """Return whether a sequence id names an appended record."""
        return 1 <= sequence_id <= self.high_watermark()

    def iter_range(self, after_sequence_id: int, up_to_sequence_id: int) -> Iterator[RawRecord]:
        """Yield records with ``after < sequence_id <= up_to`` in order.

        Raises:
            StorageUnavailableError: If the log file cannot be read.
        """
        if up_to_sequence_id <= after_sequence_id or not self._records_path.exists():
            return
        try:
            with self._records_path.open("r", encoding="utf-8") as handle:
                for line in handle:
                    if not line.endswith("\n"):
                        return
                    record = _decode_record(line, self._records_path)
                    if record.sequence_id <= after_sequence_id:
                        continue
                    if record.sequence_id > up_to_sequence_id:
                        return
                    yield record
        except OSError as error:
            raise StorageUnavailableError(
                f"Failed to read raw log {self._records_path}: {error}. Retry on the next tick."
            ) from error

    def loaded_source_files(self) -> set[str]:
        """Return source file ids already present in the log."""
        return {
            record.source_file_id for record in self.iter_range(0, self.high_watermark())
        }

    def _write_lines(self, lines: list[str]) -> None:
        try:
            with self._records_path.open("a", encoding="utf-8") as handle:
                handle.write("".join(lines))
                handle.flush()
                os.fsync(handle.fileno())
        except OSError as error:
            raise StorageUnavailableError(
                f"Failed to append to raw log {self._records_path}: {error}. "
                "Check disk space and retry ingest."
            ) from error

    def _repair_partial_tail(self) -> None:
        """Drop a trailing line left behind by an interrupted append."""
        if not self._records_path.exists():
            return
        try:
            with self._records_path.open("rb+") as handle:
                size = handle.seek(0, os.SEEK_END)
                if size == 0:
                    return
                handle.seek(size - 1)
                if handle.read(1) == b"\n":
                    return
                tail_start = _find_tail_start(handle, size)
                handle.truncate(tail_start)
        except OSError as error:
            raise StorageUnavailableError(
                f"Failed to repair raw log tail at {self._records_path}: {error}."
            ) from error
        _LOGGER.warning(
            "raw_log_partial_tail_dropped",
            table_name=self._table_name,
            truncated_at=tail_start,
        )

    def _read_last_complete_line(self) -> str | None:
        if not self._records_path.exists():
            return None
        try:
            with self._records_path.open("rb") as handle:
                size = handle.seek(0, os.SEEK_END)
                chunk_size = _TAIL_CHUNK_BYTES
                while True:
                    start = max(0, size - chunk_size)
                    handle.seek(start)
                    chunk = handle.read(size - start)
                    complete = chunk[: chunk.rfind(b"\n") + 1]
                    lines = [line for line in complete.split(b"\n") if line.strip()]
                    # The first piece may start mid-line unless the chunk reaches file start.
                    if lines and (start == 0 or len(lines) > 1):
                        return lines[-1].decode("utf-8")
                    if start == 0:
                        return None
                    chunk_size *= 2
        except OSError as error:
            raise StorageUnavailableError(
                f"Failed to read raw log {self._records_path}: {error}. Retry on the next tick."
            ) from error


def _append_lock_for(records_path: Path) -> threading.Lock:
    key = records_path.resolve()
    with _APPEND_LOCKS_GUARD:
        return _APPEND_LOCKS.setdefault(key, threading.Lock())


def _find_tail_start(handle: Any, size: int) -> int:
    """Return the byte offset just after the last newline, or 0."""
    position = size
    while position > 0:
        start = max(0, position - _TAIL_CHUNK_BYTES)
        handle.seek(start)
        chunk = handle.read(position - start)
        newline_index = chunk.rfind(b"\n")
        if newline_index >= 0:
            return start + newline_index + 1
        position = start
    return 0


def _validate_source_row(row: SourceLogRow) -> None:
    if not isinstance(row.source_file_id, str) or not row.source_file_id:
        raise StreamTaskIngestError(
            "Invalid raw row: source_file_id must be a non-empty string. "
            "Fix the ingestion source and retry."
        )
    ordinal = row.source_row_ordinal
    if not isinstance(ordinal, int) or isinstance(ordinal, bool) or ordinal < 0:
        raise StreamTaskIngestError(
            f"Invalid raw row from {row.source_file_id}: source_row_ordinal must be an "
            f"integer >= 0, got {ordinal!r}."
        )
    if not isinstance(row.field_map, Mapping):
        raise StreamTaskIngestError(
            f"Invalid raw row {row.source_file_id}:{ordinal}: field_map must be an object."
        )


def _encode_record(record: RawRecord) -> str:
    payload = {
        "sequence_id": record.sequence_id,
        "source_file_id": record.source_file_id,
        "source_row_ordinal": record.source_row_ordinal,
        "load_timestamp": record.load_timestamp,
        "field_map": dict(record.field_map),
    }
    try:
        return json.dumps(payload, sort_keys=True) + "\n"
    except (TypeError, ValueError) as error:
        raise StreamTaskIngestError(
            f"Invalid raw row {record.source_file_id}:{record.source_row_ordinal}: "
            f"field_map is not JSON serializable ({error})."
        ) from error


def _decode_record(line: str, records_path: Path) -> RawRecord:
    try:
        payload = json.loads(line)
        return RawRecord(
            sequence_id=int(payload["sequence_id"]),
            source_file_id=str(payload["source_file_id"]),
            source_row_ordinal=int(payload["source_row_ordinal"]),
            load_timestamp=str(payload["load_timestamp"]),
            field_map=dict(payload["field_map"]),
        )
    except (json.JSONDecodeError, KeyError, TypeError, ValueError) as error:
        raise StreamTaskStoreError(
            f"Corrupt raw log row in {records_path}: {error}. "
            "Restore the raw log from its ingestion source."
        ) from error
