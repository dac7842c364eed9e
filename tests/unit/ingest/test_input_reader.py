"""Unit tests for input reader module."""

from __future__ import annotations

from pathlib import Path

import pytest

from core.config import StreamTaskConfig
from core.errors import StreamTaskIngestError
from ingest.input_reader import parse_log_text, read_source_rows
from tests.fixture_paths import fixture_path


def test_read_source_rows_reads_supported_files_from_directory() -> None:
    """Reader should collect .json and .jsonl files and ignore other files."""
    config = StreamTaskConfig.from_env()

    result = read_source_rows(str(fixture_path("logs")), config)

    assert sorted(Path(file_id).name for file_id in result.rows_by_file) == [
        "login_events.json",
        "session_events.jsonl",
    ]


def test_read_source_rows_reads_json_array_rows() -> None:
    """A .json file holding an array should yield one row per element."""
    config = StreamTaskConfig.from_env()

    result = read_source_rows(str(fixture_path("logs/login_events.json")), config)

    assert [len(rows) for rows in result.rows_by_file.values()] == [3]


def test_read_source_rows_skips_loaded_files() -> None:
    """Files already loaded should be reported as skipped and not read."""
    config = StreamTaskConfig.from_env()
    loaded_id = str(fixture_path("logs/login_events.json").resolve())

    result = read_source_rows(
        str(fixture_path("logs")), config, skip_file_ids=frozenset({loaded_id})
    )

    assert result.skipped_file_ids == (loaded_id,)


def test_read_source_rows_raises_for_missing_path(tmp_path: Path) -> None:
    """Reader should fail when source path is missing."""
    config = StreamTaskConfig.from_env()

    with pytest.raises(StreamTaskIngestError):
        read_source_rows(str(tmp_path / "does-not-exist"), config)


def test_read_source_rows_raises_for_truncated_jsonl() -> None:
    """Reader should fail for a JSONL file with a broken line."""
    config = StreamTaskConfig.from_env()

    with pytest.raises(StreamTaskIngestError):
        read_source_rows(str(fixture_path("logs_bad/truncated.jsonl")), config)


def test_read_source_rows_raises_for_directory_without_logs(tmp_path: Path) -> None:
    """A directory with no supported files is an ingest error."""
    (tmp_path / "readme.txt").write_text("nothing to load", encoding="utf-8")
    config = StreamTaskConfig.from_env()

    with pytest.raises(StreamTaskIngestError):
        read_source_rows(str(tmp_path), config)


def test_parse_log_text_assigns_zero_based_ordinals() -> None:
    """Row ordinals should follow line order starting at zero."""
    rows = parse_log_text("memory://a.jsonl", '{"a": 1}\n\n{"a": 2}\n', is_json_lines=True)

    assert [row.source_row_ordinal for row in rows] == [0, 1]


def test_parse_log_text_accepts_single_json_object() -> None:
    """A .json body holding one object should yield one row."""
    rows = parse_log_text("memory://one.json", '{"user_login": "alice"}', is_json_lines=False)

    assert rows[0].field_map == {"user_login": "alice"}


def test_parse_log_text_rejects_non_object_rows() -> None:
    """Scalar rows violate the field map contract."""
    with pytest.raises(StreamTaskIngestError):
        parse_log_text("memory://bad.jsonl", "42\n", is_json_lines=True)


def test_read_source_rows_lists_s3_prefix(monkeypatch: pytest.MonkeyPatch) -> None:
    """S3 sources should be listed, filtered by extension, and downloaded."""

    class _FakeBody:
        def __init__(self, text: str) -> None:
            self._text = text

        def read(self) -> bytes:
            return self._text.encode("utf-8")

    class _FakePaginator:
        def paginate(self, Bucket: str, Prefix: str) -> list[dict[str, object]]:
            return [{"Contents": [{"Key": f"{Prefix}/a.jsonl"}, {"Key": f"{Prefix}/b.csv"}]}]

    class _FakeS3Client:
        def get_paginator(self, name: str) -> _FakePaginator:
            return _FakePaginator()

        def get_object(self, Bucket: str, Key: str) -> dict[str, object]:
            return {"Body": _FakeBody('{"user_login": "alice"}\n')}

    monkeypatch.setattr(
        "ingest.input_reader._create_s3_client", lambda config: _FakeS3Client()
    )
    config = StreamTaskConfig.from_env()

    result = read_source_rows("s3://log-bucket/events", config)

    assert list(result.rows_by_file) == ["s3://log-bucket/events/a.jsonl"]
