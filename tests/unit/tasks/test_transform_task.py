"""Unit tests for the transform task."""

from __future__ import annotations

from dataclasses import replace
from pathlib import Path

import pytest

from core.config import StreamTaskConfig
from core.errors import StorageUnavailableError
from store.enhanced_table import EnhancedTable
from store.run_registry import TaskRunRegistry
from tasks.pipeline_client import StreamTaskClient
from tests.log_rows import login_rows, row_with


def _client(data_root: Path) -> StreamTaskClient:
    return StreamTaskClient(replace(StreamTaskConfig.from_env(), data_root=data_root))


def test_run_returns_none_without_pending_records(tmp_path: Path) -> None:
    """An empty pending set creates no task run."""
    client = _client(tmp_path)

    assert client.transform_task("enhanced_logs").run() is None


def test_run_without_pending_records_leaves_no_history(tmp_path: Path) -> None:
    """Skipped runs are not recorded."""
    client = _client(tmp_path)
    client.transform_task("enhanced_logs").run()

    assert client.list_task_runs("enhanced_logs") == ()


def test_run_records_succeeded_status(tmp_path: Path) -> None:
    """A run that commits ends as succeeded with the new offset."""
    client = _client(tmp_path)
    client.append_rows(login_rows(3))

    run = client.transform_task("enhanced_logs").run()

    assert (run.status, run.offset_before, run.offset_after) == ("succeeded", 0, 3)


def test_run_routes_null_field_to_dead_letters(tmp_path: Path) -> None:
    """A record with a null projected field becomes a dead letter."""
    client = _client(tmp_path)
    client.append_rows([row_with(0), row_with(1, user_login=None), row_with(2)])
    client.transform_task("enhanced_logs").run()

    assert [item.source_sequence_id for item in client.read_dead_letters("enhanced_logs")] == [2]


def test_run_still_consumes_dead_lettered_records(tmp_path: Path) -> None:
    """Malformed records are consumed, not retried forever."""
    client = _client(tmp_path)
    client.append_rows([row_with(0, ip_address="999.1.1.1")])
    client.transform_task("enhanced_logs").run()

    assert client.get_offset("enhanced_logs") == 1


def test_run_failure_leaves_offset_unchanged(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """A storage failure inside the commit keeps the pending range."""
    client = _client(tmp_path)
    client.append_rows(login_rows(2))

    def failing_stage(self: EnhancedTable, window: object, records: object) -> None:
        raise StorageUnavailableError("disk unavailable")

    monkeypatch.setattr(EnhancedTable, "stage_batch", failing_stage)
    with pytest.raises(StorageUnavailableError):
        client.transform_task("enhanced_logs").run()

    assert client.get_offset("enhanced_logs") == 0


def test_run_failure_records_error_kind(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Failed runs carry diagnostic detail for operators."""
    client = _client(tmp_path)
    client.append_rows(login_rows(2))

    def failing_stage(self: EnhancedTable, window: object, records: object) -> None:
        raise StorageUnavailableError("disk unavailable")

    monkeypatch.setattr(EnhancedTable, "stage_batch", failing_stage)
    with pytest.raises(StorageUnavailableError):
        client.transform_task("enhanced_logs").run()

    assert client.list_task_runs("enhanced_logs")[0].error_kind == "StorageUnavailableError"


def test_failure_after_watchdog_keeps_original_error(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """An abandoned run that fails late raises its own error, not a status conflict."""
    client = _client(tmp_path)
    client.append_rows(login_rows(2))
    registry = TaskRunRegistry(tmp_path)

    def failing_stage(self: EnhancedTable, window: object, records: object) -> None:
        registry.fail_run(registry.list_runs("enhanced_logs")[0], "RunTimeoutError", "late")
        raise StorageUnavailableError("disk unavailable")

    monkeypatch.setattr(EnhancedTable, "stage_batch", failing_stage)
    with pytest.raises(StorageUnavailableError, match="disk unavailable"):
        client.transform_task("enhanced_logs").run()


def test_status_write_failure_after_commit_reports_success(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Committed data is reported as a succeeded run even if its status cannot be saved."""
    client = _client(tmp_path)
    client.append_rows(login_rows(2))

    def failing_complete(self: TaskRunRegistry, run: object, **counts: object) -> None:
        raise StorageUnavailableError("run history volume full")

    monkeypatch.setattr(TaskRunRegistry, "complete_run", failing_complete)
    run = client.transform_task("enhanced_logs").run()

    assert (run.status, run.offset_after, client.get_offset("enhanced_logs")) == (
        "succeeded",
        2,
        2,
    )


def test_deferred_status_is_resolved_by_next_client(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """A committed run left running is recovered as succeeded."""
    client = _client(tmp_path)
    client.append_rows(login_rows(2))
    original_complete = TaskRunRegistry.complete_run

    def failing_complete(self: TaskRunRegistry, run: object, **counts: object) -> None:
        raise StorageUnavailableError("run history volume full")

    monkeypatch.setattr(TaskRunRegistry, "complete_run", failing_complete)
    client.transform_task("enhanced_logs").run()
    monkeypatch.setattr(TaskRunRegistry, "complete_run", original_complete)

    _client(tmp_path).run_once()

    assert _client(tmp_path).list_task_runs("enhanced_logs")[0].status == "succeeded"
