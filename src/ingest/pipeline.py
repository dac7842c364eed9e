"""Log ingestion into the raw append log.

This module plays the external ingestion collaborator: it reads JSON log
files, skips files already loaded, and appends their rows to the raw log.
"""

from __future__ import annotations

from core.config import StreamTaskConfig
from core.logging_config import get_logger
from core.types import IngestResult
from ingest.input_reader import read_source_rows
from ingest.raw_log import RawAppendLog

_LOGGER = get_logger(__name__)


def ingest_logs(raw_log: RawAppendLog, source_uri: str, config: StreamTaskConfig) -> IngestResult:
    """Load new log files from a source URI into the raw append log.

    Files whose source file id already appears in the raw log are skipped,
    so re-running ingest over the same prefix does not duplicate rows.

    Args:
        raw_log: Destination raw append log.
        source_uri: Local path or ``s3://`` prefix.
        config: Runtime configuration.

    Returns:
        Summary of loaded and skipped files.

    Raises:
        StreamTaskIngestError: If source read or row validation fails.
        StorageUnavailableError: If the raw log cannot be written.
    """
    loaded_file_ids = frozenset(raw_log.loaded_source_files())
    read_result = read_source_rows(source_uri, config, skip_file_ids=loaded_file_ids)
    files_loaded: list[str] = []
    rows_appended = 0
    for source_file_id, rows in read_result.rows_by_file.items():
        appended = raw_log.append_rows(rows)
        files_loaded.append(source_file_id)
        rows_appended += len(appended)
    result = IngestResult(
        files_loaded=tuple(files_loaded),
        files_skipped=read_result.skipped_file_ids,
        rows_appended=rows_appended,
        high_watermark=raw_log.high_watermark(),
    )
    _LOGGER.info(
        "ingest_completed",
        table_name=raw_log.table_name,
        source_uri=source_uri,
        files_loaded=len(result.files_loaded),
        files_skipped=len(result.files_skipped),
        rows_appended=result.rows_appended,
        high_watermark=result.high_watermark,
    )
    return result
