"""Runtime configuration model for StreamTask.

This module owns all environment variable parsing and validation.
Other modules consume a typed config object instead of raw env reads.
"""

from __future__ import annotations

from dataclasses import dataclass
import os
from pathlib import Path

from core.constants import (
    DEFAULT_DATA_ROOT,
    DEFAULT_MAX_WORKERS,
    DEFAULT_RETRY_JITTER_SECONDS,
    DEFAULT_RUN_TIMEOUT_SECONDS,
    DEFAULT_TICK_INTERVAL_SECONDS,
)
from core.errors import StreamTaskConfigError


@dataclass(frozen=True)
class StreamTaskConfig:
    """Validated runtime configuration.

    Attributes:
        data_root: Local root directory for raw logs, offsets, and tables.
        s3_region: Optional default AWS region for S3 log reads.
        s3_profile: Optional AWS profile for boto3 session initialization.
        tick_interval_seconds: Scheduler cadence between ticks.
        run_timeout_seconds: Wall-clock budget of one task run.
        retry_jitter_seconds: Upper bound of random delay after a failed run.
        max_workers: Thread pool size for concurrent consumers.
    """

    data_root: Path
    s3_region: str | None
    s3_profile: str | None
    tick_interval_seconds: float = DEFAULT_TICK_INTERVAL_SECONDS
    run_timeout_seconds: float = DEFAULT_RUN_TIMEOUT_SECONDS
    retry_jitter_seconds: float = DEFAULT_RETRY_JITTER_SECONDS
    max_workers: int = DEFAULT_MAX_WORKERS

    @classmethod
    def from_env(cls) -> "StreamTaskConfig":
        """Build config from process environment variables.

        Returns:
            A validated config object.

        Raises:
            StreamTaskConfigError: If environment values are invalid.
        """
        data_root_value = os.getenv("STREAMTASK_DATA_ROOT", str(DEFAULT_DATA_ROOT))
        return cls(
            data_root=Path(data_root_value).expanduser().resolve(),
            s3_region=os.getenv("STREAMTASK_S3_REGION"),
            s3_profile=os.getenv("STREAMTASK_S3_PROFILE"),
            tick_interval_seconds=_parse_seconds(
                "STREAMTASK_TICK_INTERVAL_SECONDS", DEFAULT_TICK_INTERVAL_SECONDS, allow_zero=False
            ),
            run_timeout_seconds=_parse_seconds(
                "STREAMTASK_RUN_TIMEOUT_SECONDS", DEFAULT_RUN_TIMEOUT_SECONDS, allow_zero=False
            ),
            retry_jitter_seconds=_parse_seconds(
                "STREAMTASK_RETRY_JITTER_SECONDS", DEFAULT_RETRY_JITTER_SECONDS, allow_zero=True
            ),
            max_workers=_parse_max_workers(os.getenv("STREAMTASK_MAX_WORKERS")),
        )


def _parse_seconds(env_name: str, default_value: float, allow_zero: bool) -> float:
    """Parse one duration environment value.

    Args:
        env_name: Environment variable name.
        default_value: Value used when the variable is unset.
        allow_zero: Whether zero is an accepted value.

    Returns:
        Parsed duration in seconds.

    Raises:
        StreamTaskConfigError: If value is not a valid non-negative number.
    """
    raw_value = os.getenv(env_name)
    if raw_value is None:
        return default_value
    try:
        seconds = float(raw_value)
    except ValueError as error:
        raise StreamTaskConfigError(
            f"Invalid {env_name} value: expected number of seconds, got '{raw_value}'. "
            f"Set {env_name} to a numeric value."
        ) from error
    if seconds < 0 or (seconds == 0 and not allow_zero):
        bound = "non-negative" if allow_zero else "positive"
        raise StreamTaskConfigError(
            f"Invalid {env_name} value: expected {bound} seconds, got '{raw_value}'."
        )
    return seconds


def _parse_max_workers(raw_value: str | None) -> int:
    """Parse the worker pool size environment value."""
    if raw_value is None:
        return DEFAULT_MAX_WORKERS
    try:
        max_workers = int(raw_value)
    except ValueError as error:
        raise StreamTaskConfigError(
            "Invalid STREAMTASK_MAX_WORKERS value: "
            f"expected integer, got '{raw_value}'. "
            "Set STREAMTASK_MAX_WORKERS to a numeric value."
        ) from error
    if max_workers < 1:
        raise StreamTaskConfigError(
            f"Invalid STREAMTASK_MAX_WORKERS value: expected at least 1, got {max_workers}."
        )
    return max_workers
