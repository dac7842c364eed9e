"""Integration tests for exactly-once transform guarantees."""

from __future__ import annotations

import threading
from dataclasses import replace
from pathlib import Path

import pytest

from capture.offset_store import OffsetStore
from core.config import StreamTaskConfig
from core.errors import ConcurrentCommitConflictError, StorageUnavailableError
from store.enhanced_table import EnhancedTable
from tasks.pipeline_client import StreamTaskClient
from tests.log_rows import login_rows, row_with


def _client(data_root: Path) -> StreamTaskClient:
    return StreamTaskClient(replace(StreamTaskConfig.from_env(), data_root=data_root))


def test_login_scenario_consumes_five_records(tmp_path: Path) -> None:
    """Five alice logins are transformed once and then nothing is pending."""
    client = _client(tmp_path)
    client.append_rows(login_rows(5))

    first = client.run_once()
    second = client.run_once()

    assert (
        client.get_offset("enhanced_logs"),
        [item.source_sequence_id for item in client.read_enhanced("enhanced_logs")],
        client.has_pending("enhanced_logs"),
        len(first),
        second,
    ) == (5, [1, 2, 3, 4, 5], False, 1, ())


def test_every_raw_record_lands_exactly_once(tmp_path: Path) -> None:
    """Interleaved appends and runs never skip or repeat a sequence id."""
    client = _client(tmp_path)
    for batch_size in (3, 1, 4, 2):
        client.append_rows(login_rows(batch_size))
        client.run_once()

    sequence_ids = [item.source_sequence_id for item in client.read_enhanced("enhanced_logs")]

    assert sequence_ids == list(range(1, 11))


def test_offset_is_monotonic_across_runs(tmp_path: Path) -> None:
    """Committed offsets never move backwards."""
    client = _client(tmp_path)
    offsets: list[int] = []
    for batch_size in (2, 0, 3):
        client.append_rows(login_rows(batch_size))
        client.run_once()
        offsets.append(client.get_offset("enhanced_logs"))

    assert offsets == sorted(offsets) and offsets[-1] == 5


def test_retry_after_failed_commit_matches_single_run(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """A crash before the offset advance plus a retry equals one clean run."""
    client = _client(tmp_path / "retried")
    clean_client = _client(tmp_path / "clean")
    for target in (client, clean_client):
        target.append_rows(login_rows(4))
    original_save = OffsetStore.save
    calls = {"count": 0}

    def crashing_save(
        self: OffsetStore,
        consumer_id: str,
        sequence_id: int,
        paused: bool,
        last_run_id: str | None = None,
    ):
        calls["count"] += 1
        if calls["count"] == 1:
            raise StorageUnavailableError("power loss before offset write")
        return original_save(self, consumer_id, sequence_id, paused, last_run_id)

    monkeypatch.setattr(OffsetStore, "save", crashing_save)
    with pytest.raises(StorageUnavailableError):
        client.run_once()
    client.run_once()
    monkeypatch.setattr(OffsetStore, "save", original_save)
    clean_client.run_once()

    retried_fields = [item.fields for item in client.read_enhanced("enhanced_logs")]
    clean_fields = [item.fields for item in clean_client.read_enhanced("enhanced_logs")]
    assert retried_fields == clean_fields


def test_concurrent_runs_commit_once(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Two runs racing on one consumer yield one commit and one conflict."""
    client = _client(tmp_path)
    client.append_rows(login_rows(3))
    entered = threading.Event()
    release = threading.Event()
    original_stage = EnhancedTable.stage_batch

    def blocking_stage(self: EnhancedTable, window, records) -> None:
        entered.set()
        release.wait(timeout=5)
        original_stage(self, window, records)

    monkeypatch.setattr(EnhancedTable, "stage_batch", blocking_stage)
    results: list[object] = []
    worker = threading.Thread(
        target=lambda: results.append(client.transform_task("enhanced_logs").run())
    )
    worker.start()
    entered.wait(timeout=5)
    try:
        with pytest.raises(ConcurrentCommitConflictError):
            client.transform_task("enhanced_logs").run()
    finally:
        release.set()
        worker.join(timeout=5)

    assert (len(results), len(client.read_enhanced("enhanced_logs"))) == (1, 3)


def test_malformed_record_is_isolated(tmp_path: Path) -> None:
    """Ten records with the fifth malformed give 9 rows, 1 dead letter, offset 10."""
    client = _client(tmp_path)
    rows = [
        row_with(ordinal, datetime_iso8601=None) if ordinal == 4 else row_with(ordinal)
        for ordinal in range(10)
    ]
    client.append_rows(rows)

    client.run_once()

    assert (
        len(client.read_enhanced("enhanced_logs")),
        [item.source_sequence_id for item in client.read_dead_letters("enhanced_logs")],
        client.get_offset("enhanced_logs"),
    ) == (9, [5], 10)
