"""JSON log readers for ingestion.

This module loads JSON event logs from local paths or S3 prefixes.
It normalizes inputs into typed source rows for the raw append log.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable

from core.config import StreamTaskConfig
from core.constants import SUPPORTED_LOG_EXTENSIONS
from core.errors import StreamTaskDependencyError, StreamTaskIngestError
from core.s3_uri import S3Location, parse_s3_uri
from core.types import SourceLogRow


@dataclass(frozen=True)
class SourceReadResult:
    """Rows read from a source URI.

    Attributes:
        rows_by_file: Source file id to its rows, in file order.
        skipped_file_ids: Candidate files left unread because already loaded.
    """

    rows_by_file: dict[str, list[SourceLogRow]] = field(default_factory=dict)
    skipped_file_ids: tuple[str, ...] = ()


def read_source_rows(
    source_uri: str,
    config: StreamTaskConfig,
    skip_file_ids: frozenset[str] = frozenset(),
) -> SourceReadResult:
    """Load parsed log rows from local files or S3, grouped by file.

    Args:
        source_uri: Local path, local file, or ``s3://`` URI.
        config: Runtime configuration for S3 session defaults.
        skip_file_ids: Source file ids that must not be read again.

    Returns:
        Rows grouped by file plus the skipped file ids.

    Raises:
        StreamTaskIngestError: If source cannot be read or parsed.
    """
    if source_uri.startswith("s3://"):
        return _read_s3_rows(source_uri, config, skip_file_ids)
    return _read_local_rows(Path(source_uri).expanduser(), skip_file_ids)


def parse_log_text(source_file_id: str, text: str, is_json_lines: bool) -> list[SourceLogRow]:
    """Parse one log file body into source rows.

    Args:
        source_file_id: Identifier recorded on every row.
        text: Raw file content.
        is_json_lines: Whether the body holds one JSON object per line.

    Returns:
        Parsed rows with zero-based ordinals.

    Raises:
        StreamTaskIngestError: If the body is not valid JSON objects.
    """
    if is_json_lines:
        payloads = _parse_json_lines(source_file_id, text)
    else:
        payloads = _parse_json_document(source_file_id, text)
    return [
        SourceLogRow(source_file_id=source_file_id, source_row_ordinal=ordinal, field_map=payload)
        for ordinal, payload in enumerate(payloads)
    ]


def _read_local_rows(
    source_path: Path,
    skip_file_ids: frozenset[str],
) -> SourceReadResult:
    """Read rows from the local file system.

    Raises:
        StreamTaskIngestError: If path is missing or holds no log files.
    """
    if not source_path.exists():
        raise StreamTaskIngestError(
            f"Failed to read source at {source_path}: path does not exist. "
            "Provide an existing file or directory."
        )
    if source_path.is_file():
        candidate_files = [source_path]
    else:
        candidate_files = [
            file_path
            for file_path in sorted(source_path.rglob("*"))
            if file_path.is_file() and _is_supported_name(file_path.name)
        ]
    if not candidate_files:
        raise StreamTaskIngestError(
            f"No log files found under {source_path}. "
            f"Supported extensions: {SUPPORTED_LOG_EXTENSIONS}."
        )
    rows_by_file: dict[str, list[SourceLogRow]] = {}
    skipped_file_ids: list[str] = []
    for file_path in candidate_files:
        source_file_id = str(file_path.resolve())
        if source_file_id in skip_file_ids:
            skipped_file_ids.append(source_file_id)
            continue
        text = _read_local_text(file_path)
        rows_by_file[source_file_id] = parse_log_text(
            source_file_id, text, _is_json_lines_name(file_path.name)
        )
    return SourceReadResult(rows_by_file=rows_by_file, skipped_file_ids=tuple(skipped_file_ids))


def _read_local_text(file_path: Path) -> str:
    try:
        return file_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as error:
        raise StreamTaskIngestError(
            f"Failed to read log file {file_path}: {error}. Check the file and retry ingest."
        ) from error


def _parse_json_lines(source_file_id: str, text: str) -> list[dict[str, Any]]:
    payloads: list[dict[str, Any]] = []
    for line_number, line in enumerate(text.splitlines(), 1):
        if not line.strip():
            continue
        try:
            payload = json.loads(line)
        except json.JSONDecodeError as error:
            raise StreamTaskIngestError(
                f"Failed to parse JSON log line at {source_file_id}:{line_number}: "
                f"{error.msg}. Fix the JSON syntax and retry ingest."
            ) from error
        payloads.append(_expect_object(payload, f"{source_file_id}:{line_number}"))
    return payloads


def _parse_json_document(source_file_id: str, text: str) -> list[dict[str, Any]]:
    if not text.strip():
        return []
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as error:
        raise StreamTaskIngestError(
            f"Failed to parse JSON log file {source_file_id}: {error.msg} at line "
            f"{error.lineno}. Fix the JSON syntax and retry ingest."
        ) from error
    if isinstance(payload, list):
        return [
            _expect_object(item, f"{source_file_id}[{index}]")
            for index, item in enumerate(payload)
        ]
    return [_expect_object(payload, source_file_id)]


def _expect_object(payload: object, location: str) -> dict[str, Any]:
    if not isinstance(payload, dict):
        raise StreamTaskIngestError(
            f"Invalid JSON log row at {location}: expected object, "
            f"got {type(payload).__name__}."
        )
    return payload


def _read_s3_rows(
    source_uri: str,
    config: StreamTaskConfig,
    skip_file_ids: frozenset[str],
) -> SourceReadResult:
    """Read rows from S3 objects under a prefix.

    Raises:
        StreamTaskIngestError: If S3 read fails or no log objects are found.
    """
    location = parse_s3_uri(source_uri)
    s3_client = _create_s3_client(config)
    object_keys = _list_s3_keys(s3_client, location)
    if not object_keys:
        raise StreamTaskIngestError(
            f"No log objects found for {source_uri}. "
            f"Upload {'/'.join(SUPPORTED_LOG_EXTENSIONS)} files and retry ingest."
        )
    rows_by_file: dict[str, list[SourceLogRow]] = {}
    skipped_file_ids: list[str] = []
    for object_key in object_keys:
        source_file_id = f"s3://{location.bucket}/{object_key}"
        if source_file_id in skip_file_ids:
            skipped_file_ids.append(source_file_id)
            continue
        text = _download_s3_text(s3_client, location.bucket, object_key)
        rows_by_file[source_file_id] = parse_log_text(
            source_file_id, text, _is_json_lines_name(object_key)
        )
    return SourceReadResult(rows_by_file=rows_by_file, skipped_file_ids=tuple(skipped_file_ids))


def _create_s3_client(config: StreamTaskConfig) -> Any:
    """Create a boto3 S3 client.

    Raises:
        StreamTaskDependencyError: If boto3 is missing.
    """
    try:
        import boto3
    except ImportError as error:
        raise StreamTaskDependencyError(
            "S3 support requires boto3, but it is not installed. "
            "Install boto3 to ingest from s3:// sources."
        ) from error
    session_kwargs = _build_boto3_session_kwargs(config)
    session = boto3.session.Session(**session_kwargs)
    return session.client("s3")


def _build_boto3_session_kwargs(config: StreamTaskConfig) -> dict[str, str]:
    kwargs: dict[str, str] = {}
    if config.s3_profile:
        kwargs["profile_name"] = config.s3_profile
    if config.s3_region:
        kwargs["region_name"] = config.s3_region
    return kwargs


def _list_s3_keys(s3_client: Any, location: S3Location) -> list[str]:
    """List supported log object keys under an S3 prefix."""
    paginator = s3_client.get_paginator("list_objects_v2")
    object_keys: list[str] = []
    try:
        for page in paginator.paginate(Bucket=location.bucket, Prefix=location.prefix):
            object_keys.extend(_supported_keys(page.get("Contents", [])))
    except Exception as error:
        raise StreamTaskIngestError(
            f"Failed to list s3://{location.bucket}/{location.prefix}: {error}. "
            "Check AWS credentials and bucket permissions."
        ) from error
    return sorted(object_keys)


def _supported_keys(contents: Iterable[dict[str, Any]]) -> list[str]:
    return [
        str(item["Key"]) for item in contents if _is_supported_name(str(item.get("Key", "")))
    ]


def _download_s3_text(s3_client: Any, bucket: str, object_key: str) -> str:
    try:
        response = s3_client.get_object(Bucket=bucket, Key=object_key)
        return response["Body"].read().decode("utf-8")
    except Exception as error:
        raise StreamTaskIngestError(
            f"Failed to read s3://{bucket}/{object_key}: {error}. "
            "Check object permissions and encoding."
        ) from error


def _is_supported_name(name: str) -> bool:
    return name.lower().endswith(SUPPORTED_LOG_EXTENSIONS)


def _is_json_lines_name(name: str) -> bool:
    return name.lower().endswith((".jsonl", ".ndjson"))
