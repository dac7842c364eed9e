"""Durable per-consumer offset persistence.

One JSON document per consumer records the last committed raw sequence
id, the run that committed it and the pause flag. Every write replaces
the document atomically.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

from core.constants import CONSUMERS_DIR_NAME, OFFSET_FILE_NAME
from core.errors import StreamTaskStoreError
from core.types import ConsumerOffset
from store.json_io import read_json_file, write_json_file


class OffsetStore:
    """Filesystem-backed consumer offset store."""

    def __init__(self, data_root: Path) -> None:
        self._consumers_root = data_root / CONSUMERS_DIR_NAME
        self._consumers_root.mkdir(parents=True, exist_ok=True)

    def load(self, consumer_id: str) -> ConsumerOffset:
        """Load the offset of one consumer, starting at zero when unknown."""
        offset_path = self._offset_path(consumer_id)
        if not offset_path.exists():
            return ConsumerOffset(
                consumer_id=consumer_id,
                last_committed_sequence_id=0,
                paused=False,
                updated_at=_utc_now_iso(),
            )
        payload = read_json_file(offset_path)
        if not isinstance(payload, dict):
            raise StreamTaskStoreError(f"Invalid offset state at {offset_path}: expected object.")
        try:
            return ConsumerOffset(
                consumer_id=str(payload["consumer_id"]),
                last_committed_sequence_id=int(payload["last_committed_sequence_id"]),
                paused=bool(payload.get("paused", False)),
                updated_at=str(payload["updated_at"]),
                last_run_id=_optional_run_id(payload.get("last_run_id")),
            )
        except (KeyError, TypeError, ValueError) as error:
            raise StreamTaskStoreError(
                f"Invalid offset state at {offset_path}: {error}. "
                "Restore the file or reset the consumer offset."
            ) from error

    def save(
        self,
        consumer_id: str,
        sequence_id: int,
        paused: bool,
        last_run_id: str | None = None,
    ) -> ConsumerOffset:
        """Persist a new offset state and return it."""
        offset = ConsumerOffset(
            consumer_id=consumer_id,
            last_committed_sequence_id=sequence_id,
            paused=paused,
            updated_at=_utc_now_iso(),
            last_run_id=last_run_id,
        )
        consumer_dir = self._consumers_root / consumer_id
        consumer_dir.mkdir(parents=True, exist_ok=True)
        write_json_file(
            self._offset_path(consumer_id),
            {
                "consumer_id": offset.consumer_id,
                "last_committed_sequence_id": offset.last_committed_sequence_id,
                "paused": offset.paused,
                "updated_at": offset.updated_at,
                "last_run_id": offset.last_run_id,
            },
        )
        return offset

    def _offset_path(self, consumer_id: str) -> Path:
        return self._consumers_root / consumer_id / OFFSET_FILE_NAME


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _optional_run_id(value: object) -> str | None:
    return None if value is None else str(value)
