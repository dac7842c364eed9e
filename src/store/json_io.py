"""JSON I/O helpers for offsets, run history, and batch tables."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Iterable

from core.constants import STAGING_FILE_SUFFIX
from core.errors import StorageUnavailableError, StreamTaskStoreError


def read_json_file(payload_path: Path, default_value: object | None = None) -> object:
    """Read JSON payload from disk with optional default when missing."""
    if default_value is not None and not payload_path.exists():
        return default_value
    try:
        return json.loads(payload_path.read_text(encoding="utf-8"))
    except FileNotFoundError as error:
        raise StreamTaskStoreError(
            f"Missing required state file at {payload_path}. State may be incomplete."
        ) from error
    except json.JSONDecodeError as error:
        raise StreamTaskStoreError(f"Failed to parse JSON at {payload_path}: {error.msg}.") from error
    except OSError as error:
        raise StorageUnavailableError(f"Failed to read state file {payload_path}: {error}.") from error


def write_json_file(payload_path: Path, payload: object) -> None:
    """Atomically replace one JSON payload on disk."""
    _replace_file(payload_path, json.dumps(payload, indent=2) + "\n")


def write_jsonl_file(payload_path: Path, rows: Iterable[dict[str, Any]]) -> None:
    """Atomically replace one JSONL file with the given rows."""
    lines = [json.dumps(row, sort_keys=True) for row in rows]
    _replace_file(payload_path, "".join(f"{line}\n" for line in lines))


def read_jsonl_file(payload_path: Path) -> list[dict[str, Any]]:
    """Read all JSON object rows from one JSONL file."""
    try:
        text = payload_path.read_text(encoding="utf-8")
    except OSError as error:
        raise StorageUnavailableError(f"Failed to read table file {payload_path}: {error}.") from error
    rows: list[dict[str, Any]] = []
    for line_number, line in enumerate(text.splitlines(), 1):
        if not line.strip():
            continue
        try:
            payload = json.loads(line)
        except json.JSONDecodeError as error:
            raise StreamTaskStoreError(
                f"Failed to parse table row at {payload_path}:{line_number}: {error.msg}."
            ) from error
        if not isinstance(payload, dict):
            raise StreamTaskStoreError(
                f"Invalid table row at {payload_path}:{line_number}: expected JSON object."
            )
        rows.append(payload)
    return rows


def _replace_file(payload_path: Path, text: str) -> None:
    staging_path = payload_path.with_name(payload_path.name + STAGING_FILE_SUFFIX)
    try:
        with staging_path.open("w", encoding="utf-8") as handle:
            handle.write(text)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(staging_path, payload_path)
    except OSError as error:
        raise StorageUnavailableError(
            f"Failed to write state file {payload_path}: {error}. Check disk space and retry."
        ) from error
