"""Offset-based change log over the raw append log.

A consumer's pending records are the raw records with a sequence id above
its committed offset. The change log is the only component that moves an
offset, and it does so in the same atomic unit as the caller's write.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterator

from capture.commit_lock import hold_consumer_lock
from capture.offset_store import OffsetStore
from core.errors import StaleOffsetError, StreamTaskAdminError, StreamTaskStoreError
from core.logging_config import get_logger
from core.types import CommitWindow, ConsumerOffset, RawRecord
from ingest.raw_log import RawAppendLog

_LOGGER = get_logger(__name__)

CommitEffect = Callable[[CommitWindow], None]


@dataclass(frozen=True)
class PendingSnapshot:
    """Pending records of one consumer, frozen at a high-watermark.

    Iterating re-reads ``(offset, high_watermark]`` from the raw log each
    time, so the snapshot can be replayed without side effects and never
    includes records appended after it was taken.
    """

    consumer_id: str
    offset: int
    high_watermark: int
    raw_log: RawAppendLog = field(repr=False, compare=False)

    def __iter__(self) -> Iterator[RawRecord]:
        return self.raw_log.iter_range(self.offset, self.high_watermark)

    @property
    def is_empty(self) -> bool:
        return self.high_watermark <= self.offset

    @property
    def pending_count(self) -> int:
        return max(0, self.high_watermark - self.offset)


class ChangeLog:
    """Per-consumer change capture with atomic offset commits."""

    def __init__(self, data_root: Path, raw_log: RawAppendLog) -> None:
        self._data_root = data_root
        self._raw_log = raw_log
        self._offsets = OffsetStore(data_root)

    @property
    def raw_log(self) -> RawAppendLog:
        return self._raw_log

    def peek_pending(self, consumer_id: str) -> PendingSnapshot:
        """Return the pending records of a consumer without consuming them.

        Args:
            consumer_id: Consumer identifier.

        Returns:
            Snapshot bounded by the raw log high-watermark at call time.

        Raises:
            StorageUnavailableError: If offset or raw log cannot be read.
        """
        offset = self._offsets.load(consumer_id).last_committed_sequence_id
        high_watermark = max(offset, self._raw_log.high_watermark())
        return PendingSnapshot(
            consumer_id=consumer_id,
            offset=offset,
            high_watermark=high_watermark,
            raw_log=self._raw_log,
        )

    def has_pending(self, consumer_id: str) -> bool:
        """Return whether a consumer has uncommitted records."""
        return not self.peek_pending(consumer_id).is_empty

    def get_offset(self, consumer_id: str) -> int:
        """Return the last committed sequence id of a consumer."""
        return self._offsets.load(consumer_id).last_committed_sequence_id

    def load_offset(self, consumer_id: str) -> ConsumerOffset:
        """Return the full offset state of a consumer."""
        return self._offsets.load(consumer_id)

    def is_paused(self, consumer_id: str) -> bool:
        return self._offsets.load(consumer_id).paused

    def commit(
        self,
        consumer_id: str,
        new_offset: int,
        effect: CommitEffect,
        on_committed: CommitEffect | None = None,
        run_id: str | None = None,
    ) -> ConsumerOffset:
        """Run an effect and advance the offset as one atomic unit.

        The offset document is the commit point: if ``effect`` raises, or the
        process dies before the offset is replaced, the offset is unchanged
        and whatever the effect staged stays invisible. ``on_committed`` runs
        after the offset advance, still under the consumer lock; a storage
        failure there is logged and left for the next commit to reconcile.

        Args:
            consumer_id: Consumer identifier.
            new_offset: Sequence id the consumer will have consumed up to.
            effect: Write step receiving the committed window.
            on_committed: Optional post-commit step receiving the same window.
            run_id: Task run making the commit, stored with the offset so
                crash recovery can tell which run advanced it.

        Returns:
            The new offset state.

        Raises:
            ConcurrentCommitConflictError: If a commit for the consumer is in flight.
            StaleOffsetError: If ``new_offset`` is not ahead of the current offset
                or does not name an appended record.
        """
        with hold_consumer_lock(self._data_root, consumer_id):
            current = self._offsets.load(consumer_id)
            self._validate_new_offset(current, new_offset)
            window = CommitWindow(
                consumer_id=consumer_id,
                start_sequence_id=current.last_committed_sequence_id + 1,
                end_sequence_id=new_offset,
            )
            effect(window)
            committed = self._offsets.save(consumer_id, new_offset, current.paused, run_id)
            if on_committed is not None:
                self._run_post_commit(on_committed, window)
        _LOGGER.info(
            "offset_committed",
            consumer_id=consumer_id,
            offset_before=current.last_committed_sequence_id,
            offset_after=new_offset,
        )
        return committed

    def pause(self, consumer_id: str) -> ConsumerOffset:
        """Stop the scheduler from triggering a consumer."""
        return self._set_paused(consumer_id, paused=True)

    def resume(self, consumer_id: str) -> ConsumerOffset:
        """Let the scheduler trigger a paused consumer again."""
        return self._set_paused(consumer_id, paused=False)

    def reset_offset(
        self,
        consumer_id: str,
        sequence_id: int,
        on_reset: Callable[[int, int], None] | None = None,
    ) -> ConsumerOffset:
        """Override the committed offset of a paused consumer.

        Args:
            consumer_id: Consumer identifier.
            sequence_id: New committed offset, between 0 and the high-watermark.
            on_reset: Optional step run under the consumer lock after the
                override, receiving the previous and the new offset. A
                storage failure there is logged; rows it left above the new
                offset stay invisible and are dropped by the next commit.

        Returns:
            The new offset state.

        Raises:
            StreamTaskAdminError: If the consumer is not paused or the offset
                is out of range.
            ConcurrentCommitConflictError: If a commit is in flight.
        """
        with hold_consumer_lock(self._data_root, consumer_id):
            current = self._offsets.load(consumer_id)
            if not current.paused:
                raise StreamTaskAdminError(
                    f"Cannot reset offset of consumer '{consumer_id}' while it is running. "
                    "Pause the consumer first."
                )
            high_watermark = self._raw_log.high_watermark()
            if sequence_id < 0 or sequence_id > high_watermark:
                raise StreamTaskAdminError(
                    f"Cannot reset consumer '{consumer_id}' to {sequence_id}: "
                    f"expected a value between 0 and {high_watermark}."
                )
            reset = self._offsets.save(consumer_id, sequence_id, paused=True)
            if on_reset is not None:
                self._run_reset_cleanup(on_reset, current, sequence_id)
        _LOGGER.warning(
            "offset_reset",
            consumer_id=consumer_id,
            offset_before=current.last_committed_sequence_id,
            offset_after=sequence_id,
        )
        return reset

    def _set_paused(self, consumer_id: str, paused: bool) -> ConsumerOffset:
        with hold_consumer_lock(self._data_root, consumer_id, blocking=True):
            current = self._offsets.load(consumer_id)
            updated = self._offsets.save(
                consumer_id, current.last_committed_sequence_id, paused, current.last_run_id
            )
        _LOGGER.info("consumer_paused" if paused else "consumer_resumed", consumer_id=consumer_id)
        return updated

    def _run_post_commit(self, on_committed: CommitEffect, window: CommitWindow) -> None:
        """Run the post-commit step; storage failures are reconciled by the next commit."""
        try:
            on_committed(window)
        except StreamTaskStoreError as error:
            _LOGGER.warning(
                "post_commit_step_deferred",
                consumer_id=window.consumer_id,
                end_sequence_id=window.end_sequence_id,
                error=str(error),
            )

    def _run_reset_cleanup(
        self,
        on_reset: Callable[[int, int], None],
        current: ConsumerOffset,
        sequence_id: int,
    ) -> None:
        try:
            on_reset(current.last_committed_sequence_id, sequence_id)
        except StreamTaskStoreError as error:
            _LOGGER.warning(
                "offset_reset_cleanup_deferred",
                consumer_id=current.consumer_id,
                offset_after=sequence_id,
                error=str(error),
            )

    def _validate_new_offset(self, current: ConsumerOffset, new_offset: int) -> None:
        if new_offset <= current.last_committed_sequence_id:
            raise StaleOffsetError(
                f"Commit offset {new_offset} for consumer '{current.consumer_id}' is not ahead "
                f"of the committed offset {current.last_committed_sequence_id}. "
                "The pending range was already consumed or the offset was reset."
            )
        if not self._raw_log.contains(new_offset):
            raise StaleOffsetError(
                f"Commit offset {new_offset} for consumer '{current.consumer_id}' does not name "
                "an appended raw record. Refusing to skip records."
            )
