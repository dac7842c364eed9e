"""Task run lifecycle persistence.

This module stores status transitions of transform task runs under the
configured data-root so runs remain inspectable across restarts.
"""

from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from uuid import uuid4

from core.constants import RUN_INDEX_FILE_NAME, RUNS_DIR_NAME
from core.errors import StreamTaskStoreError
from core.logging_config import get_logger
from store.json_io import read_json_file, write_json_file
from store.run_types import (
    TaskRun,
    task_run_from_payload,
    task_run_to_payload,
    validate_transition,
)

_LOGGER = get_logger(__name__)
_REGISTRY_LOCK = threading.RLock()


class TaskRunRegistry:
    """Persistent lifecycle registry for transform task runs."""

    def __init__(self, data_root: Path) -> None:
        self._runs_root = data_root / RUNS_DIR_NAME
        self._runs_root.mkdir(parents=True, exist_ok=True)

    def start_run(self, consumer_id: str, offset_before: int, pending_count: int) -> TaskRun:
        """Create a new running record and append it to the consumer index."""
        run = TaskRun(
            run_id=_build_run_id(),
            consumer_id=consumer_id,
            status="running",
            started_at=_utc_now_iso(),
            offset_before=offset_before,
            pending_count=pending_count,
        )
        with _REGISTRY_LOCK:
            self._write_run(run)
            self._append_index_row(consumer_id, run.run_id)
        return run

    def complete_run(
        self,
        run: TaskRun,
        offset_after: int,
        enhanced_count: int,
        dead_letter_count: int,
    ) -> TaskRun:
        """Mark a running record succeeded."""
        with _REGISTRY_LOCK:
            current = self.load_run(run.consumer_id, run.run_id)
            validate_transition(current.status, "succeeded")
            completed = replace(
                current,
                status="succeeded",
                finished_at=_utc_now_iso(),
                offset_after=offset_after,
                enhanced_count=enhanced_count,
                dead_letter_count=dead_letter_count,
            )
            self._write_run(completed)
        return completed

    def fail_run(self, run: TaskRun, error_kind: str, error_message: str) -> TaskRun:
        """Mark a running record failed with diagnostic detail."""
        with _REGISTRY_LOCK:
            current = self.load_run(run.consumer_id, run.run_id)
            validate_transition(current.status, "failed")
            failed = replace(
                current,
                status="failed",
                finished_at=_utc_now_iso(),
                error_kind=error_kind,
                error_message=error_message,
            )
            self._write_run(failed)
        return failed

    def fail_if_running(self, run: TaskRun, error_kind: str, error_message: str) -> TaskRun | None:
        """Mark a record failed unless it already finished."""
        with _REGISTRY_LOCK:
            if self.load_run(run.consumer_id, run.run_id).status != "running":
                return None
            return self.fail_run(run, error_kind, error_message)

    def load_run(self, consumer_id: str, run_id: str) -> TaskRun:
        """Load one run record by consumer and ID."""
        run_path = self._run_path(consumer_id, run_id)
        payload = read_json_file(run_path)
        if not isinstance(payload, dict):
            raise StreamTaskStoreError(f"Invalid task run payload at {run_path}: expected object.")
        return task_run_from_payload(payload, run_path)

    def list_run_ids(self, consumer_id: str) -> tuple[str, ...]:
        """List run IDs of a consumer in insertion order."""
        index_path = self._index_path(consumer_id)
        payload = read_json_file(index_path, default_value={"runs": []})
        if not isinstance(payload, dict) or not isinstance(payload.get("runs"), list):
            raise StreamTaskStoreError(
                f"Invalid run index format at {index_path}: expected runs list."
            )
        return tuple(str(item) for item in payload["runs"])

    def list_runs(self, consumer_id: str, limit: int | None = None) -> tuple[TaskRun, ...]:
        """List runs of a consumer, most recent first."""
        run_ids = list(reversed(self.list_run_ids(consumer_id)))
        if limit is not None:
            run_ids = run_ids[: max(0, limit)]
        return tuple(self.load_run(consumer_id, run_id) for run_id in run_ids)

    def recover_interrupted(
        self,
        consumer_id: str,
        committed_offset: int,
        committing_run_id: str | None,
    ) -> tuple[TaskRun, ...]:
        """Resolve runs left ``running`` by a process that died.

        Only the run named as the committer of the current offset reached
        its commit before the crash; it is marked succeeded. Any other run
        is marked failed and its pending range is retried by the next run.
        """
        recovered: list[TaskRun] = []
        with _REGISTRY_LOCK:
            for run in self.list_runs(consumer_id):
                if run.status != "running":
                    continue
                if run.run_id == committing_run_id:
                    resolved = self.complete_run(
                        run,
                        offset_after=committed_offset,
                        enhanced_count=run.enhanced_count,
                        dead_letter_count=run.dead_letter_count,
                    )
                else:
                    resolved = self.fail_run(
                        run,
                        error_kind="interrupted",
                        error_message="Run was interrupted before completion; "
                        "the pending range is retried by the next run.",
                    )
                recovered.append(resolved)
                _LOGGER.warning(
                    "task_run_recovered",
                    consumer_id=consumer_id,
                    run_id=run.run_id,
                    status=resolved.status,
                    committed_offset=committed_offset,
                )
        return tuple(recovered)

    def _write_run(self, run: TaskRun) -> None:
        consumer_dir = self._runs_root / run.consumer_id
        consumer_dir.mkdir(parents=True, exist_ok=True)
        write_json_file(self._run_path(run.consumer_id, run.run_id), task_run_to_payload(run))

    def _append_index_row(self, consumer_id: str, run_id: str) -> None:
        index_path = self._index_path(consumer_id)
        run_ids = list(self.list_run_ids(consumer_id))
        if run_id not in run_ids:
            run_ids.append(run_id)
            write_json_file(index_path, {"runs": run_ids})

    def _run_path(self, consumer_id: str, run_id: str) -> Path:
        return self._runs_root / consumer_id / f"{run_id}.json"

    def _index_path(self, consumer_id: str) -> Path:
        return self._runs_root / consumer_id / RUN_INDEX_FILE_NAME


def _build_run_id() -> str:
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
    return f"run-{timestamp}-{uuid4().hex[:8]}"


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
