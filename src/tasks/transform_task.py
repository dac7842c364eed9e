"""Transform task: pending raw records to the enhanced table.

One run reads the consumer's pending snapshot, projects every record, and
commits the enhanced rows, the dead letters, and the offset advance as a
single change-log commit. A failed run leaves the offset untouched, so the
next run retries the same range.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone

from capture.change_log import ChangeLog, PendingSnapshot
from core.errors import MalformedRecordError, RunTimeoutError, StreamTaskStoreError
from core.logging_config import get_logger
from core.pipeline_spec import ConsumerSpec
from core.types import CommitWindow, DeadLetterRecord, EnhancedRecord
from store.enhanced_table import DeadLetterSink, EnhancedTable
from store.run_registry import TaskRunRegistry
from store.run_types import TaskRun
from tasks.run_deadline import RunDeadline
from transforms.field_projection import project_record

_LOGGER = get_logger(__name__)


@dataclass(frozen=True)
class TransformedBatch:
    """Projection output of one pending snapshot."""

    enhanced: tuple[EnhancedRecord, ...]
    dead_letters: tuple[DeadLetterRecord, ...]


class TransformTask:
    """Exactly-once transform of one consumer's pending records."""

    def __init__(
        self,
        consumer_spec: ConsumerSpec,
        change_log: ChangeLog,
        enhanced_table: EnhancedTable,
        dead_letters: DeadLetterSink,
        run_registry: TaskRunRegistry,
    ) -> None:
        self._consumer_spec = consumer_spec
        self._change_log = change_log
        self._enhanced_table = enhanced_table
        self._dead_letters = dead_letters
        self._run_registry = run_registry

    @property
    def consumer_id(self) -> str:
        return self._consumer_spec.consumer_id

    def run(self, deadline: RunDeadline | None = None) -> TaskRun | None:
        """Transform and commit all currently pending records.

        Args:
            deadline: Optional watchdog handshake; a fresh one is used if omitted.

        Returns:
            The finished run, or None when nothing was pending.

        Raises:
            StreamTaskError: Any failure after the run started; the run is
                recorded as failed and the offset is unchanged.
        """
        deadline = deadline or RunDeadline()
        snapshot = self._change_log.peek_pending(self.consumer_id)
        if snapshot.is_empty:
            _LOGGER.debug("task_run_skipped", consumer_id=self.consumer_id, offset=snapshot.offset)
            return None
        run = self._run_registry.start_run(
            self.consumer_id, snapshot.offset, snapshot.pending_count
        )
        deadline.attach_run(run)
        _LOGGER.info(
            "task_run_started",
            consumer_id=self.consumer_id,
            run_id=run.run_id,
            offset_before=snapshot.offset,
            high_watermark=snapshot.high_watermark,
        )
        try:
            batch = self._transform(snapshot, run, deadline)
            self._commit(snapshot, batch, run, deadline)
        except RunTimeoutError as error:
            self._run_registry.fail_if_running(run, type(error).__name__, str(error))
            _LOGGER.error("task_run_timed_out", consumer_id=self.consumer_id, run_id=run.run_id)
            raise
        except Exception as error:
            self._run_registry.fail_if_running(run, type(error).__name__, str(error))
            _LOGGER.error(
                "task_run_failed",
                consumer_id=self.consumer_id,
                run_id=run.run_id,
                error_kind=type(error).__name__,
                error=str(error),
            )
            raise
        completed = self._complete(run, snapshot, batch)
        _LOGGER.info(
            "task_run_succeeded",
            consumer_id=self.consumer_id,
            run_id=run.run_id,
            offset_after=snapshot.high_watermark,
            enhanced_count=completed.enhanced_count,
            dead_letter_count=completed.dead_letter_count,
        )
        return completed

    def _complete(
        self,
        run: TaskRun,
        snapshot: PendingSnapshot,
        batch: TransformedBatch,
    ) -> TaskRun:
        """Record success; a status write failure after the commit is deferred.

        The offset document names this run as its committer, so crash
        recovery resolves a run left ``running`` here as succeeded.
        """
        try:
            return self._run_registry.complete_run(
                run,
                offset_after=snapshot.high_watermark,
                enhanced_count=len(batch.enhanced),
                dead_letter_count=len(batch.dead_letters),
            )
        except StreamTaskStoreError as error:
            _LOGGER.warning(
                "task_run_status_deferred",
                consumer_id=self.consumer_id,
                run_id=run.run_id,
                error=str(error),
            )
            return replace(
                run,
                status="succeeded",
                finished_at=_utc_now_iso(),
                offset_after=snapshot.high_watermark,
                enhanced_count=len(batch.enhanced),
                dead_letter_count=len(batch.dead_letters),
            )

    def _transform(
        self,
        snapshot: PendingSnapshot,
        run: TaskRun,
        deadline: RunDeadline,
    ) -> TransformedBatch:
        transform_timestamp = _utc_now_iso()
        enhanced: list[EnhancedRecord] = []
        dead_letters: list[DeadLetterRecord] = []
        for record in snapshot:
            deadline.ensure_active()
            try:
                enhanced.append(project_record(self._consumer_spec, record, transform_timestamp))
            except MalformedRecordError as error:
                dead_letters.append(
                    DeadLetterRecord(
                        source_sequence_id=record.sequence_id,
                        source_file_id=record.source_file_id,
                        source_row_ordinal=record.source_row_ordinal,
                        field_map=dict(record.field_map),
                        reason=str(error),
                        run_id=run.run_id,
                        recorded_at=transform_timestamp,
                    )
                )
                _LOGGER.warning(
                    "record_dead_lettered",
                    consumer_id=self.consumer_id,
                    run_id=run.run_id,
                    sequence_id=record.sequence_id,
                    field_name=error.field_name,
                    reason=error.reason,
                )
        return TransformedBatch(enhanced=tuple(enhanced), dead_letters=tuple(dead_letters))

    def _commit(
        self,
        snapshot: PendingSnapshot,
        batch: TransformedBatch,
        run: TaskRun,
        deadline: RunDeadline,
    ) -> None:
        def stage(window: CommitWindow) -> None:
            deadline.begin_commit()
            self._enhanced_table.stage_batch(window, batch.enhanced)
            self._dead_letters.stage_batch(window, batch.dead_letters)

        def publish(window: CommitWindow) -> None:
            self._enhanced_table.publish(window.end_sequence_id)
            self._dead_letters.publish(window.end_sequence_id)

        self._change_log.commit(
            self.consumer_id,
            snapshot.high_watermark,
            effect=stage,
            on_committed=publish,
            run_id=run.run_id,
        )


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
