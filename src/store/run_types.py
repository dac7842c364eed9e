"""Typed task-run lifecycle models and validation helpers.

This module defines run statuses and payload parsing used by the run
registry and by status queries that inspect persisted run history.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Literal, cast

from core.errors import StreamTaskStoreError

TaskRunStatus = Literal["running", "succeeded", "failed"]
ALLOWED_STATUS_TRANSITIONS: dict[TaskRunStatus, tuple[TaskRunStatus, ...]] = {
    "running": ("succeeded", "failed"),
    "succeeded": (),
    "failed": (),
}


@dataclass(frozen=True)
class TaskRun:
    """Persisted metadata of one transform task run."""

    run_id: str
    consumer_id: str
    status: TaskRunStatus
    started_at: str
    offset_before: int
    pending_count: int
    finished_at: str | None = None
    offset_after: int | None = None
    enhanced_count: int = 0
    dead_letter_count: int = 0
    error_kind: str | None = None
    error_message: str | None = None


def validate_transition(current: TaskRunStatus, next_status: TaskRunStatus) -> None:
    """Validate one status transition against allowed state machine edges."""
    allowed_statuses = ALLOWED_STATUS_TRANSITIONS[current]
    if next_status not in allowed_statuses:
        raise StreamTaskStoreError(
            f"Invalid task run status transition {current!r} -> {next_status!r}. "
            f"Allowed: {', '.join(allowed_statuses) or 'none'}."
        )


def task_run_to_payload(run: TaskRun) -> dict[str, object]:
    """Serialize a task run into a JSON-safe payload."""
    return {
        "run_id": run.run_id,
        "consumer_id": run.consumer_id,
        "status": run.status,
        "started_at": run.started_at,
        "offset_before": run.offset_before,
        "pending_count": run.pending_count,
        "finished_at": run.finished_at,
        "offset_after": run.offset_after,
        "enhanced_count": run.enhanced_count,
        "dead_letter_count": run.dead_letter_count,
        "error_kind": run.error_kind,
        "error_message": run.error_message,
    }


def task_run_from_payload(payload: dict[str, object], payload_path: Path) -> TaskRun:
    """Deserialize a task run payload from JSON."""
    status = parse_status(payload.get("status"), payload_path)
    try:
        return TaskRun(
            run_id=str(payload["run_id"]),
            consumer_id=str(payload["consumer_id"]),
            status=status,
            started_at=str(payload["started_at"]),
            offset_before=_as_int(payload["offset_before"]),
            pending_count=_as_int(payload.get("pending_count", 0)),
            finished_at=optional_string(payload.get("finished_at")),
            offset_after=_optional_int(payload.get("offset_after")),
            enhanced_count=_as_int(payload.get("enhanced_count", 0)),
            dead_letter_count=_as_int(payload.get("dead_letter_count", 0)),
            error_kind=optional_string(payload.get("error_kind")),
            error_message=optional_string(payload.get("error_message")),
        )
    except KeyError as error:
        raise StreamTaskStoreError(
            f"Invalid task run at {payload_path}: missing required field {error.args[0]!r}."
        ) from error
    except (TypeError, ValueError) as error:
        raise StreamTaskStoreError(f"Invalid task run at {payload_path}: {error}.") from error


def parse_status(raw_status: object, payload_path: Path) -> TaskRunStatus:
    """Parse one task run status value from persisted payload."""
    if isinstance(raw_status, str) and raw_status in ALLOWED_STATUS_TRANSITIONS:
        return cast(TaskRunStatus, raw_status)
    allowed = ", ".join(ALLOWED_STATUS_TRANSITIONS.keys())
    raise StreamTaskStoreError(f"Invalid task run at {payload_path}: expected one of {allowed}.")


def optional_string(raw_value: object) -> str | None:
    """Convert optional payload field to string when present."""
    if raw_value is None:
        return None
    if isinstance(raw_value, str):
        return raw_value
    return str(raw_value)


def _as_int(raw_value: object) -> int:
    if isinstance(raw_value, bool) or not isinstance(raw_value, (int, str)):
        raise TypeError(f"expected integer, got {type(raw_value).__name__}")
    return int(raw_value)


def _optional_int(raw_value: object) -> int | None:
    if raw_value is None:
        return None
    return _as_int(raw_value)
