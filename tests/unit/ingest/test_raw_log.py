"""Unit tests for the raw append log."""

from __future__ import annotations

from pathlib import Path

import pytest

from core.errors import StreamTaskIngestError
from core.types import SourceLogRow
from ingest.raw_log import RawAppendLog
from tests.log_rows import login_rows


def test_append_rows_assigns_dense_sequence_ids(tmp_path: Path) -> None:
    """Sequence ids should continue across appends without gaps."""
    raw_log = RawAppendLog(tmp_path, "raw_logs")
    raw_log.append_rows(login_rows(2))

    appended = raw_log.append_rows(login_rows(3))

    assert [record.sequence_id for record in appended] == [3, 4, 5]


def test_high_watermark_is_zero_for_empty_log(tmp_path: Path) -> None:
    """A fresh table has no records."""
    raw_log = RawAppendLog(tmp_path, "raw_logs")

    assert raw_log.high_watermark() == 0


def test_iter_range_is_exclusive_of_lower_bound(tmp_path: Path) -> None:
    """Range reads should yield ``after < id <= up_to``."""
    raw_log = RawAppendLog(tmp_path, "raw_logs")
    raw_log.append_rows(login_rows(5))

    sequence_ids = [record.sequence_id for record in raw_log.iter_range(2, 4)]

    assert sequence_ids == [3, 4]


def test_readers_ignore_partial_trailing_line(tmp_path: Path) -> None:
    """A half-written last line must not be visible to readers."""
    raw_log = RawAppendLog(tmp_path, "raw_logs")
    raw_log.append_rows(login_rows(2))
    records_path = tmp_path / "raw" / "raw_logs" / "records.jsonl"
    with records_path.open("a", encoding="utf-8") as handle:
        handle.write('{"sequence_id": 3, "source_file_id"')

    assert raw_log.high_watermark() == 2


def test_append_rows_repairs_partial_trailing_line(tmp_path: Path) -> None:
    """The next append should drop an interrupted tail and reuse its id."""
    raw_log = RawAppendLog(tmp_path, "raw_logs")
    raw_log.append_rows(login_rows(2))
    records_path = tmp_path / "raw" / "raw_logs" / "records.jsonl"
    with records_path.open("a", encoding="utf-8") as handle:
        handle.write('{"sequence_id": 3, "source_file_id"')

    appended = raw_log.append_rows(login_rows(1))

    sequence_ids = [record.sequence_id for record in raw_log.iter_range(0, 10)]

    assert sequence_ids == [1, 2, appended[0].sequence_id]


def test_append_rows_rejects_negative_ordinal(tmp_path: Path) -> None:
    """The ingestion contract requires ordinals >= 0."""
    raw_log = RawAppendLog(tmp_path, "raw_logs")
    bad_row = SourceLogRow(source_file_id="memory://x", source_row_ordinal=-1, field_map={})

    with pytest.raises(StreamTaskIngestError):
        raw_log.append_rows([bad_row])


def test_append_rows_rejects_empty_source_file_id(tmp_path: Path) -> None:
    """Every row must name its source file."""
    raw_log = RawAppendLog(tmp_path, "raw_logs")
    bad_row = SourceLogRow(source_file_id="", source_row_ordinal=0, field_map={})

    with pytest.raises(StreamTaskIngestError):
        raw_log.append_rows([bad_row])


def test_append_rows_rejects_invalid_batch_without_partial_write(tmp_path: Path) -> None:
    """A batch with one invalid row should append nothing."""
    raw_log = RawAppendLog(tmp_path, "raw_logs")
    bad_row = SourceLogRow(source_file_id="memory://x", source_row_ordinal=-1, field_map={})
    with pytest.raises(StreamTaskIngestError):
        raw_log.append_rows([*login_rows(2), bad_row])

    assert raw_log.high_watermark() == 0


def test_contains_rejects_ids_beyond_high_watermark(tmp_path: Path) -> None:
    """Only appended ids count as real boundaries."""
    raw_log = RawAppendLog(tmp_path, "raw_logs")
    raw_log.append_rows(login_rows(3))

    assert (raw_log.contains(3), raw_log.contains(4), raw_log.contains(0)) == (True, False, False)


def test_loaded_source_files_lists_distinct_file_ids(tmp_path: Path) -> None:
    """Load history should report every source file appended so far."""
    raw_log = RawAppendLog(tmp_path, "raw_logs")
    raw_log.append_rows(login_rows(2, source_file_id="memory://a.json"))
    raw_log.append_rows(login_rows(1, source_file_id="memory://b.json"))

    assert raw_log.loaded_source_files() == {"memory://a.json", "memory://b.json"}
