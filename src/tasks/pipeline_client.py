"""Python SDK for the transform pipeline.

This module wires the raw append log, change log, enhanced tables, run
registry, and scheduler for one data root, and exposes the ingest,
status, and admin surfaces used by the CLI.
"""

from __future__ import annotations

import random
import time
from dataclasses import replace
from pathlib import Path
from typing import Callable, Sequence

from capture.change_log import ChangeLog
from core.config import StreamTaskConfig
from core.constants import DEFAULT_RUN_LIST_LIMIT
from core.pipeline_spec import PipelineSpec, default_pipeline_spec
from core.types import (
    ConsumerOffset,
    DeadLetterRecord,
    EnhancedRecord,
    IngestResult,
    RawRecord,
    SourceLogRow,
)
from ingest.pipeline import ingest_logs
from ingest.raw_log import RawAppendLog
from store.enhanced_table import DeadLetterSink, EnhancedTable
from store.run_registry import TaskRunRegistry
from store.run_types import TaskRun
from tasks.scheduler import Scheduler
from tasks.transform_task import TransformTask


class StreamTaskClient:
    """Primary SDK entry point for ingest, transform, and admin workflows."""

    def __init__(
        self,
        config: StreamTaskConfig | None = None,
        pipeline_spec: PipelineSpec | None = None,
    ) -> None:
        """Create SDK client.

        Args:
            config: Optional runtime configuration.
            pipeline_spec: Optional pipeline definition; the default
                single-consumer pipeline is used when omitted.
        """
        self._config = config or StreamTaskConfig.from_env()
        self._pipeline_spec = pipeline_spec or default_pipeline_spec()
        data_root = self._config.data_root
        self._raw_log = RawAppendLog(data_root, self._pipeline_spec.source_table)
        self._change_log = ChangeLog(data_root, self._raw_log)
        self._run_registry = TaskRunRegistry(data_root)
        self._recovered = False

    @property
    def config(self) -> StreamTaskConfig:
        return self._config

    @property
    def pipeline_spec(self) -> PipelineSpec:
        return self._pipeline_spec

    @property
    def consumer_ids(self) -> tuple[str, ...]:
        return tuple(consumer.consumer_id for consumer in self._pipeline_spec.consumers)

    def with_data_root(self, data_root: str) -> "StreamTaskClient":
        """Clone the client with a different local data root.

        Args:
            data_root: New data root path.

        Returns:
            New SDK client instance.
        """
        resolved_root = Path(data_root).expanduser().resolve()
        updated_config = replace(self._config, data_root=resolved_root)
        return StreamTaskClient(updated_config, self._pipeline_spec)

    def ingest(self, source_uri: str) -> IngestResult:
        """Load log files from a local path or S3 prefix into the raw log.

        Args:
            source_uri: Source file, directory, or ``s3://bucket/prefix``.

        Returns:
            Ingest summary.

        Raises:
            StreamTaskIngestError: If the source cannot be read or parsed.
            StorageUnavailableError: If the raw log cannot be written.
        """
        return ingest_logs(self._raw_log, source_uri, self._config)

    def append_rows(self, rows: Sequence[SourceLogRow]) -> tuple[RawRecord, ...]:
        """Append already-parsed rows to the raw log."""
        return self._raw_log.append_rows(rows)

    def transform_task(self, consumer_id: str) -> TransformTask:
        """Build the transform task of one consumer.

        Raises:
            StreamTaskSpecError: If the consumer is not declared.
        """
        consumer_spec = self._pipeline_spec.consumer(consumer_id)
        return TransformTask(
            consumer_spec=consumer_spec,
            change_log=self._change_log,
            enhanced_table=self._enhanced_table(consumer_id),
            dead_letters=self._dead_letter_sink(consumer_id),
            run_registry=self._run_registry,
        )

    def scheduler(
        self,
        clock: Callable[[], float] = time.monotonic,
        rng: random.Random | None = None,
    ) -> Scheduler:
        """Build a scheduler over every declared consumer.

        Args:
            clock: Monotonic time source for deadlines and backoff.
            rng: Random source for retry jitter.
        """
        tasks = [self.transform_task(consumer_id) for consumer_id in self.consumer_ids]
        return Scheduler(
            tasks,
            self._change_log,
            self._run_registry,
            self._config,
            clock=clock,
            rng=rng,
        )

    def run_once(self, consumer_id: str | None = None) -> tuple[TaskRun, ...]:
        """Run the transform task of one or every consumer once, inline.

        Runs a previous process left ``running`` are resolved before the
        first inline run of this client. Paused consumers are skipped.
        Consumers with nothing pending produce no run.

        Returns:
            Finished runs, in consumer declaration order.
        """
        if not self._recovered:
            self.recover_interrupted_runs()
        consumer_ids = (consumer_id,) if consumer_id else self.consumer_ids
        runs: list[TaskRun] = []
        for current_id in consumer_ids:
            if self._change_log.is_paused(current_id):
                continue
            run = self.transform_task(current_id).run()
            if run is not None:
                runs.append(run)
        return tuple(runs)

    def recover_interrupted_runs(self) -> tuple[TaskRun, ...]:
        """Resolve runs left ``running`` by a process that died.

        A run is marked succeeded only when the offset document names it as
        the committer of the current offset; every other one is failed.
        """
        recovered: list[TaskRun] = []
        for consumer_id in self.consumer_ids:
            offset = self._change_log.load_offset(consumer_id)
            recovered.extend(
                self._run_registry.recover_interrupted(
                    consumer_id, offset.last_committed_sequence_id, offset.last_run_id
                )
            )
        self._recovered = True
        return tuple(recovered)

    def get_offset(self, consumer_id: str) -> int:
        return self._change_log.get_offset(consumer_id)

    def consumer_offset(self, consumer_id: str) -> ConsumerOffset:
        return self._change_log.load_offset(consumer_id)

    def has_pending(self, consumer_id: str) -> bool:
        return self._change_log.has_pending(consumer_id)

    def high_watermark(self) -> int:
        return self._raw_log.high_watermark()

    def list_task_runs(
        self,
        consumer_id: str,
        limit: int | None = DEFAULT_RUN_LIST_LIMIT,
    ) -> tuple[TaskRun, ...]:
        """List task runs of a consumer, most recent first."""
        return self._run_registry.list_runs(consumer_id, limit)

    def pause(self, consumer_id: str) -> ConsumerOffset:
        self._pipeline_spec.consumer(consumer_id)
        return self._change_log.pause(consumer_id)

    def resume(self, consumer_id: str) -> ConsumerOffset:
        self._pipeline_spec.consumer(consumer_id)
        return self._change_log.resume(consumer_id)

    def reset_offset(self, consumer_id: str, sequence_id: int) -> ConsumerOffset:
        """Move a paused consumer's offset and drop output beyond it.

        Rewinding removes enhanced rows and dead letters above the new
        offset so the replayed range is written exactly once.

        Raises:
            StreamTaskAdminError: If the consumer is running or the offset
                is out of range.
            ConcurrentCommitConflictError: If a commit is in flight.
        """
        self._pipeline_spec.consumer(consumer_id)
        enhanced_table = self._enhanced_table(consumer_id)
        dead_letters = self._dead_letter_sink(consumer_id)

        def drop_replayed_output(old_offset: int, new_offset: int) -> None:
            enhanced_table.publish(old_offset)
            dead_letters.publish(old_offset)
            enhanced_table.purge_beyond(new_offset)
            dead_letters.purge_beyond(new_offset)

        return self._change_log.reset_offset(consumer_id, sequence_id, drop_replayed_output)

    def read_enhanced(self, consumer_id: str) -> list[EnhancedRecord]:
        """Read the visible enhanced rows of a consumer in sequence order."""
        offset = self._change_log.get_offset(consumer_id)
        return self._enhanced_table(consumer_id).read_records(offset)

    def read_dead_letters(self, consumer_id: str) -> list[DeadLetterRecord]:
        """Read the visible dead letters of a consumer in sequence order."""
        offset = self._change_log.get_offset(consumer_id)
        return self._dead_letter_sink(consumer_id).read_records(offset)

    def _enhanced_table(self, consumer_id: str) -> EnhancedTable:
        return EnhancedTable(self._config.data_root, consumer_id)

    def _dead_letter_sink(self, consumer_id: str) -> DeadLetterSink:
        return DeadLetterSink(self._config.data_root, consumer_id)
