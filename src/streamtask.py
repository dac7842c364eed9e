"""Public SDK surface for StreamTask.

This module provides a stable import path for pipeline users.
It re-exports the primary client and typed models.
"""

from __future__ import annotations

from core.config import StreamTaskConfig
from core.errors import (
    ConcurrentCommitConflictError,
    MalformedRecordError,
    StaleOffsetError,
    StreamTaskError,
)
from core.pipeline_spec import (
    ConsumerSpec,
    FieldProjection,
    PipelineSpec,
    default_pipeline_spec,
    load_pipeline_spec,
)
from core.types import (
    ConsumerOffset,
    DeadLetterRecord,
    EnhancedRecord,
    IngestResult,
    RawRecord,
    SourceLogRow,
)
from store.run_types import TaskRun
from tasks.pipeline_client import StreamTaskClient
from tasks.scheduler import Scheduler, TickOutcome

__all__ = [
    "ConcurrentCommitConflictError",
    "ConsumerOffset",
    "ConsumerSpec",
    "DeadLetterRecord",
    "EnhancedRecord",
    "FieldProjection",
    "IngestResult",
    "MalformedRecordError",
    "PipelineSpec",
    "RawRecord",
    "Scheduler",
    "SourceLogRow",
    "StaleOffsetError",
    "StreamTaskClient",
    "StreamTaskConfig",
    "StreamTaskError",
    "TaskRun",
    "TickOutcome",
    "default_pipeline_spec",
    "load_pipeline_spec",
]
