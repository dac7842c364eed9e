"""Recurring scheduler for transform tasks.

Each consumer moves through ``idle -> triggered -> running -> idle``.
A trigger that arrives while a consumer is triggered or running is
coalesced, not queued: the in-flight run's successor picks up whatever
arrived meanwhile. Independent consumers run concurrently on a thread
pool, and a watchdog fails runs that exceed the wall-clock budget.
"""

from __future__ import annotations

import random
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from typing import Callable, Literal, Sequence

from capture.change_log import ChangeLog
from core.config import StreamTaskConfig
from core.errors import RunTimeoutError, StreamTaskError
from core.logging_config import get_logger
from store.run_registry import TaskRunRegistry
from store.run_types import TaskRun
from tasks.run_deadline import RunDeadline
from tasks.transform_task import TransformTask

_LOGGER = get_logger(__name__)

ConsumerState = Literal["idle", "triggered", "running"]
TriggerReason = Literal["timer", "new_data"]
TickOutcomeKind = Literal[
    "paused",
    "backing_off",
    "no_data",
    "coalesced",
    "succeeded",
    "failed",
    "timed_out",
]


@dataclass(frozen=True)
class TickOutcome:
    """Result of scheduling one consumer in one tick."""

    consumer_id: str
    outcome: TickOutcomeKind
    run: TaskRun | None = None
    error_message: str | None = None


@dataclass
class _ConsumerSlot:
    task: TransformTask
    state: ConsumerState = "idle"
    retry_not_before: float = 0.0
    active_deadline: RunDeadline | None = field(default=None, repr=False)


class Scheduler:
    """Coalescing scheduler with a per-run watchdog."""

    def __init__(
        self,
        tasks: Sequence[TransformTask],
        change_log: ChangeLog,
        run_registry: TaskRunRegistry,
        config: StreamTaskConfig,
        clock: Callable[[], float] = time.monotonic,
        rng: random.Random | None = None,
    ) -> None:
        self._slots = {task.consumer_id: _ConsumerSlot(task=task) for task in tasks}
        self._change_log = change_log
        self._run_registry = run_registry
        self._config = config
        self._clock = clock
        self._rng = rng or random.Random()
        self._state_lock = threading.Lock()
        self._executor = ThreadPoolExecutor(
            max_workers=config.max_workers, thread_name_prefix="streamtask"
        )
        self._recovered = False

    def __enter__(self) -> "Scheduler":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @property
    def consumer_ids(self) -> tuple[str, ...]:
        return tuple(self._slots)

    def close(self) -> None:
        """Stop accepting work; in-flight runs finish in the background."""
        self._executor.shutdown(wait=False)

    def state(self, consumer_id: str) -> ConsumerState:
        with self._state_lock:
            return self._slot(consumer_id).state

    def recover_interrupted_runs(self) -> tuple[TaskRun, ...]:
        """Resolve runs a previous process left ``running``."""
        recovered: list[TaskRun] = []
        for consumer_id in self._slots:
            offset = self._change_log.load_offset(consumer_id)
            recovered.extend(
                self._run_registry.recover_interrupted(
                    consumer_id, offset.last_committed_sequence_id, offset.last_run_id
                )
            )
        self._recovered = True
        return tuple(recovered)

    def trigger(self, consumer_id: str, reason: TriggerReason = "timer") -> bool:
        """Move an idle, unpaused consumer to ``triggered``.

        Returns:
            True when the trigger was accepted, False when it was dropped
            because the consumer is paused or already triggered or running.
        """
        if self._change_log.is_paused(consumer_id):
            _LOGGER.debug("trigger_ignored_paused", consumer_id=consumer_id, reason=reason)
            return False
        with self._state_lock:
            slot = self._slot(consumer_id)
            if slot.state != "idle":
                _LOGGER.info(
                    "trigger_coalesced",
                    consumer_id=consumer_id,
                    reason=reason,
                    state=slot.state,
                )
                return False
            slot.state = "triggered"
        return True

    def notify_new_data(self, consumer_id: str) -> TickOutcome:
        """Handle an explicit new-data signal by triggering and running now."""
        if self._change_log.is_paused(consumer_id):
            return TickOutcome(consumer_id=consumer_id, outcome="paused")
        if not self.trigger(consumer_id, reason="new_data"):
            return TickOutcome(consumer_id=consumer_id, outcome="coalesced")
        started = self._start_triggered(consumer_id)
        return self._await_run(consumer_id, *started)

    def tick(self) -> tuple[TickOutcome, ...]:
        """Run one scheduling pass over every consumer.

        Returns:
            One outcome per consumer, in declaration order.
        """
        if not self._recovered:
            self.recover_interrupted_runs()
        outcomes: dict[str, TickOutcome] = {}
        started: dict[str, tuple[Future[TaskRun | None], RunDeadline, float]] = {}
        for consumer_id in self._slots:
            skipped = self._check_eligibility(consumer_id)
            if skipped is not None:
                outcomes[consumer_id] = skipped
                continue
            if not self.trigger(consumer_id, reason="timer"):
                outcomes[consumer_id] = TickOutcome(consumer_id=consumer_id, outcome="coalesced")
                continue
            started[consumer_id] = self._start_triggered(consumer_id)
        for consumer_id, (future, deadline, started_at) in started.items():
            outcomes[consumer_id] = self._await_run(consumer_id, future, deadline, started_at)
        ordered = tuple(outcomes[consumer_id] for consumer_id in self._slots)
        _LOGGER.info(
            "scheduler_tick_completed",
            outcomes={outcome.consumer_id: outcome.outcome for outcome in ordered},
        )
        return ordered

    def run_forever(self, stop_event: threading.Event, max_ticks: int | None = None) -> int:
        """Tick on the configured interval until stopped.

        Args:
            stop_event: Event that ends the loop when set.
            max_ticks: Optional number of ticks after which to stop.

        Returns:
            Number of ticks executed.
        """
        ticks = 0
        while not stop_event.is_set():
            self.tick()
            ticks += 1
            if max_ticks is not None and ticks >= max_ticks:
                break
            stop_event.wait(self._config.tick_interval_seconds)
        return ticks

    def _check_eligibility(self, consumer_id: str) -> TickOutcome | None:
        if self._change_log.is_paused(consumer_id):
            return TickOutcome(consumer_id=consumer_id, outcome="paused")
        with self._state_lock:
            retry_not_before = self._slot(consumer_id).retry_not_before
        if self._clock() < retry_not_before:
            return TickOutcome(consumer_id=consumer_id, outcome="backing_off")
        try:
            has_pending = self._change_log.has_pending(consumer_id)
        except StreamTaskError as error:
            _LOGGER.error("pending_check_failed", consumer_id=consumer_id, error=str(error))
            return TickOutcome(consumer_id=consumer_id, outcome="failed", error_message=str(error))
        if not has_pending:
            return TickOutcome(consumer_id=consumer_id, outcome="no_data")
        return None

    def _start_triggered(
        self,
        consumer_id: str,
    ) -> tuple[Future[TaskRun | None], RunDeadline, float]:
        deadline = RunDeadline()
        with self._state_lock:
            slot = self._slot(consumer_id)
            slot.state = "running"
            slot.active_deadline = deadline
        future = self._executor.submit(self._run_task, slot.task, deadline)
        return future, deadline, self._clock()

    def _run_task(self, task: TransformTask, deadline: RunDeadline) -> TaskRun | None:
        try:
            return task.run(deadline)
        finally:
            self._return_to_idle(task.consumer_id, deadline)

    def _await_run(
        self,
        consumer_id: str,
        future: Future[TaskRun | None],
        deadline: RunDeadline,
        started_at: float,
    ) -> TickOutcome:
        remaining = self._config.run_timeout_seconds - (self._clock() - started_at)
        try:
            run = future.result(timeout=max(0.0, remaining))
        except FutureTimeoutError:
            if deadline.expire():
                return self._record_timeout(consumer_id, deadline)
            # The run entered its commit before expiry; let it finish.
            _LOGGER.warning("task_run_over_budget", consumer_id=consumer_id)
            return self._await_run(consumer_id, future, deadline, started_at=self._clock())
        except RunTimeoutError as error:
            return TickOutcome(
                consumer_id=consumer_id, outcome="timed_out", error_message=str(error)
            )
        except StreamTaskError as error:
            self._schedule_retry(consumer_id)
            return TickOutcome(
                consumer_id=consumer_id,
                outcome="failed",
                run=self._reload_run(consumer_id, deadline),
                error_message=str(error),
            )
        if run is None:
            return TickOutcome(consumer_id=consumer_id, outcome="no_data")
        return TickOutcome(consumer_id=consumer_id, outcome="succeeded", run=run)

    def _record_timeout(self, consumer_id: str, deadline: RunDeadline) -> TickOutcome:
        message = (
            f"Task run exceeded the {self._config.run_timeout_seconds:g}s wall-clock budget; "
            "the pending range is retried by the next tick."
        )
        failed_run = None
        if deadline.run is not None:
            failed_run = self._run_registry.fail_if_running(
                deadline.run, RunTimeoutError.__name__, message
            )
        self._return_to_idle(consumer_id, deadline)
        self._schedule_retry(consumer_id)
        _LOGGER.error(
            "task_run_timed_out",
            consumer_id=consumer_id,
            run_id=deadline.run.run_id if deadline.run else None,
            budget_seconds=self._config.run_timeout_seconds,
        )
        return TickOutcome(
            consumer_id=consumer_id,
            outcome="timed_out",
            run=failed_run,
            error_message=message,
        )

    def _return_to_idle(self, consumer_id: str, deadline: RunDeadline) -> None:
        with self._state_lock:
            slot = self._slot(consumer_id)
            if slot.active_deadline is deadline:
                slot.state = "idle"
                slot.active_deadline = None

    def _schedule_retry(self, consumer_id: str) -> None:
        jitter = self._config.retry_jitter_seconds
        if jitter <= 0:
            return
        delay = self._rng.uniform(0.0, jitter)
        with self._state_lock:
            self._slot(consumer_id).retry_not_before = self._clock() + delay
        _LOGGER.info("task_retry_delayed", consumer_id=consumer_id, delay_seconds=delay)

    def _reload_run(self, consumer_id: str, deadline: RunDeadline) -> TaskRun | None:
        if deadline.run is None:
            return None
        return self._run_registry.load_run(consumer_id, deadline.run.run_id)

    def _slot(self, consumer_id: str) -> _ConsumerSlot:
        try:
            return self._slots[consumer_id]
        except KeyError as error:
            raise StreamTaskError(
                f"Consumer '{consumer_id}' is not scheduled. "
                f"Known consumers: {', '.join(self._slots)}."
            ) from error
