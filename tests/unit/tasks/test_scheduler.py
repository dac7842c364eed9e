"""Unit tests for the coalescing scheduler."""

from __future__ import annotations

import random
import threading
import time
from dataclasses import replace
from pathlib import Path

import pytest

from core.config import StreamTaskConfig
from core.errors import StorageUnavailableError
from store.run_registry import TaskRunRegistry
from tasks import transform_task
from tasks.pipeline_client import StreamTaskClient
from tests.log_rows import login_rows


def _client(data_root: Path, **overrides: object) -> StreamTaskClient:
    config = replace(StreamTaskConfig.from_env(), data_root=data_root, **overrides)
    return StreamTaskClient(config)


def test_tick_runs_consumer_with_pending_records(tmp_path: Path) -> None:
    """A tick over pending data should produce a succeeded outcome."""
    client = _client(tmp_path)
    client.append_rows(login_rows(2))

    with client.scheduler() as scheduler:
        outcomes = scheduler.tick()

    assert [outcome.outcome for outcome in outcomes] == ["succeeded"]


def test_tick_reports_no_data_without_pending_records(tmp_path: Path) -> None:
    """An idle consumer with nothing pending is not run."""
    client = _client(tmp_path)

    with client.scheduler() as scheduler:
        outcomes = scheduler.tick()

    assert outcomes[0].outcome == "no_data"


def test_tick_skips_paused_consumer(tmp_path: Path) -> None:
    """Paused consumers are never triggered."""
    client = _client(tmp_path)
    client.append_rows(login_rows(2))
    client.pause("enhanced_logs")

    with client.scheduler() as scheduler:
        outcomes = scheduler.tick()

    assert (outcomes[0].outcome, client.get_offset("enhanced_logs")) == ("paused", 0)


def test_consumer_returns_to_idle_after_run(tmp_path: Path) -> None:
    """The state machine ends each run back in idle."""
    client = _client(tmp_path)
    client.append_rows(login_rows(1))

    with client.scheduler() as scheduler:
        scheduler.tick()
        state = scheduler.state("enhanced_logs")

    assert state == "idle"


def test_trigger_is_coalesced_while_triggered(tmp_path: Path) -> None:
    """A second trigger before the run starts is dropped, not queued."""
    client = _client(tmp_path)

    with client.scheduler() as scheduler:
        accepted = [scheduler.trigger("enhanced_logs"), scheduler.trigger("enhanced_logs")]

    assert accepted == [True, False]


def test_notify_new_data_runs_immediately(tmp_path: Path) -> None:
    """A new-data signal should trigger and run without waiting for a tick."""
    client = _client(tmp_path)
    client.append_rows(login_rows(3))

    with client.scheduler() as scheduler:
        outcome = scheduler.notify_new_data("enhanced_logs")

    assert (outcome.outcome, client.get_offset("enhanced_logs")) == ("succeeded", 3)


def test_first_tick_recovers_interrupted_runs(tmp_path: Path) -> None:
    """Runs left running by a dead process are resolved before scheduling."""
    client = _client(tmp_path)
    stale_run = TaskRunRegistry(tmp_path).start_run("enhanced_logs", 0, 4)

    with client.scheduler() as scheduler:
        scheduler.tick()

    resolved = TaskRunRegistry(tmp_path).load_run("enhanced_logs", stale_run.run_id)
    assert resolved.error_kind == "interrupted"


def test_failed_run_backs_off_with_jitter(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """After a failure the consumer waits a random delay before retrying."""
    client = _client(tmp_path, retry_jitter_seconds=30.0)
    client.append_rows(login_rows(1))

    def failing_projection(*args: object) -> object:
        raise StorageUnavailableError("lookup store offline")

    monkeypatch.setattr(transform_task, "project_record", failing_projection)
    with client.scheduler(clock=lambda: 100.0, rng=random.Random(7)) as scheduler:
        first = scheduler.tick()
        second = scheduler.tick()

    assert (first[0].outcome, second[0].outcome) == ("failed", "backing_off")


def test_slow_run_is_timed_out_by_watchdog(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """A run exceeding its budget is failed and cannot commit."""
    client = _client(tmp_path, run_timeout_seconds=0.2)
    client.append_rows(login_rows(1))
    original_projection = transform_task.project_record

    def slow_projection(*args: object) -> object:
        time.sleep(0.5)
        return original_projection(*args)

    monkeypatch.setattr(transform_task, "project_record", slow_projection)
    with client.scheduler() as scheduler:
        outcome = scheduler.tick()[0]

    assert (outcome.outcome, outcome.run.status, outcome.run.error_kind) == (
        "timed_out",
        "failed",
        "RunTimeoutError",
    )


def test_run_forever_stops_after_max_ticks(tmp_path: Path) -> None:
    """The loop should stop once the tick budget is spent."""
    client = _client(tmp_path, tick_interval_seconds=0.01)

    with client.scheduler() as scheduler:
        ticks = scheduler.run_forever(threading.Event(), max_ticks=2)

    assert ticks == 2


def test_run_forever_exits_when_stop_event_is_set(tmp_path: Path) -> None:
    """A set stop event ends the loop before the first tick."""
    client = _client(tmp_path)
    stop_event = threading.Event()
    stop_event.set()

    with client.scheduler() as scheduler:
        ticks = scheduler.run_forever(stop_event)

    assert ticks == 0
