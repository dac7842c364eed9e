"""Batch-file table keyed by source sequence id.

Each commit writes one JSONL batch named after the sequence range it
covers. A batch is first staged as ``.uncommitted`` and published once the
consumer offset has moved past it. A row is visible only when its sequence
id is at or below the committed offset, so rows staged by a failed commit
or left over by an interrupted rewind never leak to readers.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Sequence

from core.constants import BATCH_FILE_PREFIX, BATCH_FILE_SUFFIX, UNCOMMITTED_BATCH_SUFFIX
from core.errors import DuplicateSourceSequenceError, StorageUnavailableError
from core.logging_config import get_logger
from core.types import CommitWindow
from store.json_io import read_jsonl_file, write_jsonl_file

_LOGGER = get_logger(__name__)
_BATCH_NAME_PATTERN = re.compile(
    rf"^{re.escape(BATCH_FILE_PREFIX)}(\d+)-(\d+){re.escape(BATCH_FILE_SUFFIX)}"
    rf"({re.escape(UNCOMMITTED_BATCH_SUFFIX)})?$"
)
SEQUENCE_KEY = "source_sequence_id"


@dataclass(frozen=True)
class BatchFile:
    """One batch file and the sequence range it covers."""

    path: Path
    start_sequence_id: int
    end_sequence_id: int
    committed: bool


class BatchTable:
    """Filesystem table of immutable sequence-range batches."""

    def __init__(self, table_dir: Path, table_name: str) -> None:
        self._table_dir = table_dir
        self._table_name = table_name
        self._table_dir.mkdir(parents=True, exist_ok=True)

    @property
    def table_name(self) -> str:
        return self._table_name

    def stage_batch(self, window: CommitWindow, rows: Sequence[dict[str, Any]]) -> Path | None:
        """Stage rows for a commit window.

        The table is first reconciled with the committed offset implied by
        the window: staged batches at or below it are published, and any
        row above it is dropped. Rows above the offset were never committed;
        they are left behind by a failed commit or an interrupted rewind.

        Args:
            window: Sequence range being committed.
            rows: Row payloads, each carrying ``source_sequence_id``.

        Returns:
            Staged file path, or None when there are no rows.

        Raises:
            DuplicateSourceSequenceError: If a sequence id repeats, falls
                outside the window, or is still stored after reconciliation.
        """
        committed_offset = window.start_sequence_id - 1
        self.publish(committed_offset)
        self.purge_beyond(committed_offset)
        _validate_batch_ids(window, rows, self._table_name)
        self._guard_against_overlap(window)
        if not rows:
            return None
        staged_path = self._table_dir / _batch_name(window, committed=False)
        write_jsonl_file(staged_path, rows)
        return staged_path

    def publish(self, committed_offset: int) -> None:
        """Reconcile staged batches with the committed offset.

        Staged batches ending at or below the offset are published, staged
        batches reaching beyond it are discarded.
        """
        for batch in self._list_batches():
            if batch.committed:
                continue
            if batch.end_sequence_id <= committed_offset:
                published_path = batch.path.with_name(
                    batch.path.name.removesuffix(UNCOMMITTED_BATCH_SUFFIX)
                )
                _rename(batch.path, published_path)
                continue
            _unlink(batch.path)
            _LOGGER.warning(
                "staged_batch_discarded",
                table_name=self._table_name,
                start_sequence_id=batch.start_sequence_id,
                end_sequence_id=batch.end_sequence_id,
                committed_offset=committed_offset,
            )

    def read_rows(self, committed_offset: int) -> list[dict[str, Any]]:
        """Return rows at or below the committed offset, ordered by sequence id."""
        rows: list[dict[str, Any]] = []
        for batch in self._list_batches():
            if batch.start_sequence_id > committed_offset:
                continue
            rows.extend(
                row
                for row in read_jsonl_file(batch.path)
                if int(row[SEQUENCE_KEY]) <= committed_offset
            )
        return sorted(rows, key=lambda row: int(row[SEQUENCE_KEY]))

    def purge_beyond(self, sequence_id: int) -> int:
        """Delete rows with a source sequence id above ``sequence_id``.

        A published batch straddling the boundary is rewritten with the rows
        it keeps. Staged batches reaching beyond it are dropped whole.

        Returns:
            Number of batch files removed or rewritten.
        """
        touched = 0
        for batch in self._list_batches():
            if batch.end_sequence_id <= sequence_id:
                continue
            touched += 1
            if batch.start_sequence_id > sequence_id or not batch.committed:
                _unlink(batch.path)
                continue
            kept_rows = [
                row for row in read_jsonl_file(batch.path) if int(row[SEQUENCE_KEY]) <= sequence_id
            ]
            kept_window = CommitWindow(
                consumer_id=self._table_name,
                start_sequence_id=batch.start_sequence_id,
                end_sequence_id=sequence_id,
            )
            write_jsonl_file(self._table_dir / _batch_name(kept_window, committed=True), kept_rows)
            _unlink(batch.path)
        if touched:
            _LOGGER.warning(
                "table_rows_purged",
                table_name=self._table_name,
                beyond_sequence_id=sequence_id,
                batches_touched=touched,
            )
        return touched

    def _guard_against_overlap(self, window: CommitWindow) -> None:
        for batch in self._list_batches():
            if batch.end_sequence_id < window.start_sequence_id:
                continue
            if batch.start_sequence_id > window.end_sequence_id:
                continue
            raise DuplicateSourceSequenceError(
                f"Table '{self._table_name}' still stores sequence ids "
                f"{batch.start_sequence_id}-{batch.end_sequence_id}, which overlap the "
                f"commit window {window.start_sequence_id}-{window.end_sequence_id}. "
                "Check for another writer on this table before retrying."
            )

    def _list_batches(self) -> list[BatchFile]:
        try:
            candidates = sorted(self._table_dir.iterdir())
        except OSError as error:
            raise StorageUnavailableError(
                f"Failed to list table directory {self._table_dir}: {error}."
            ) from error
        batches: list[BatchFile] = []
        for path in candidates:
            match = _BATCH_NAME_PATTERN.match(path.name)
            if match is None:
                continue
            batches.append(
                BatchFile(
                    path=path,
                    start_sequence_id=int(match.group(1)),
                    end_sequence_id=int(match.group(2)),
                    committed=match.group(3) is None,
                )
            )
        return sorted(batches, key=lambda batch: batch.start_sequence_id)


def _validate_batch_ids(
    window: CommitWindow,
    rows: Sequence[dict[str, Any]],
    table_name: str,
) -> None:
    seen_ids: set[int] = set()
    for row in rows:
        sequence_id = int(row[SEQUENCE_KEY])
        if not window.covers(sequence_id):
            raise DuplicateSourceSequenceError(
                f"Row with sequence id {sequence_id} for table '{table_name}' falls outside "
                f"the commit window {window.start_sequence_id}-{window.end_sequence_id}."
            )
        if sequence_id in seen_ids:
            raise DuplicateSourceSequenceError(
                f"Batch for table '{table_name}' repeats sequence id {sequence_id}."
            )
        seen_ids.add(sequence_id)


def _batch_name(window: CommitWindow, committed: bool) -> str:
    name = (
        f"{BATCH_FILE_PREFIX}{window.start_sequence_id}-{window.end_sequence_id}"
        f"{BATCH_FILE_SUFFIX}"
    )
    return name if committed else name + UNCOMMITTED_BATCH_SUFFIX


def _rename(source: Path, target: Path) -> None:
    try:
        source.replace(target)
    except OSError as error:
        raise StorageUnavailableError(f"Failed to publish batch {source}: {error}.") from error


def _unlink(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as error:
        raise StorageUnavailableError(f"Failed to remove batch {path}: {error}.") from error
