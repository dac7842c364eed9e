"""Wall-clock deadline shared by a task run and the scheduler watchdog."""

from __future__ import annotations

import threading
from typing import Literal

from core.errors import RunTimeoutError
from store.run_types import TaskRun

DeadlineState = Literal["active", "expired", "committing"]


class RunDeadline:
    """Handshake deciding whether a run may still commit.

    The watchdog calls ``expire``; the run calls ``begin_commit`` right
    before staging its writes. Whichever happens first wins: an expired run
    cannot commit, and a committing run cannot be expired.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._state: DeadlineState = "active"
        self._run: TaskRun | None = None

    @property
    def run(self) -> TaskRun | None:
        return self._run

    @property
    def is_expired(self) -> bool:
        with self._lock:
            return self._state == "expired"

    def attach_run(self, run: TaskRun) -> None:
        self._run = run

    def expire(self) -> bool:
        """Expire the deadline; return False if the run is already committing."""
        with self._lock:
            if self._state == "committing":
                return False
            self._state = "expired"
            return True

    def ensure_active(self) -> None:
        """Raise RunTimeoutError when the deadline has expired."""
        if self.is_expired:
            raise RunTimeoutError(
                "Task run exceeded its wall-clock budget and was stopped before commit."
            )

    def begin_commit(self) -> None:
        """Enter the commit; raise RunTimeoutError when already expired."""
        with self._lock:
            if self._state == "expired":
                raise RunTimeoutError(
                    "Task run exceeded its wall-clock budget and was stopped before commit."
                )
            self._state = "committing"
