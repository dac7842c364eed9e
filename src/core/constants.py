"""Core constants used across StreamTask modules.

This module centralizes non-domain-specific constants.
Keeping values here avoids magic literals in business logic.
"""

from __future__ import annotations

from pathlib import Path

DEFAULT_DATA_ROOT = Path(".streamtask")
RAW_DIR_NAME = "raw"
CONSUMERS_DIR_NAME = "consumers"
ENHANCED_DIR_NAME = "enhanced"
DEAD_LETTER_DIR_NAME = "dead_letter"
RUNS_DIR_NAME = "runs"
RAW_RECORDS_FILE_NAME = "records.jsonl"
OFFSET_FILE_NAME = "offset.json"
RUN_INDEX_FILE_NAME = "index.json"
BATCH_FILE_PREFIX = "batch-"
BATCH_FILE_SUFFIX = ".jsonl"
STAGING_FILE_SUFFIX = ".staging"
UNCOMMITTED_BATCH_SUFFIX = ".uncommitted"
DEFAULT_SOURCE_TABLE = "raw_logs"
DEFAULT_CONSUMER_ID = "enhanced_logs"
DEFAULT_TICK_INTERVAL_SECONDS = 60.0
DEFAULT_RUN_TIMEOUT_SECONDS = 300.0
DEFAULT_RETRY_JITTER_SECONDS = 0.0
DEFAULT_MAX_WORKERS = 4
DEFAULT_RUN_LIST_LIMIT = 20
SUPPORTED_LOG_EXTENSIONS = (".json", ".jsonl", ".ndjson")
SUPPORTED_FIELD_TYPES = ("string", "integer", "float", "boolean", "timestamp", "ip_address")
