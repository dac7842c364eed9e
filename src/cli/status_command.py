"""Status and inspection command wiring for StreamTask CLI."""

from __future__ import annotations

import argparse
import json
from typing import Any

from core.constants import DEFAULT_RUN_LIST_LIMIT
from tasks.pipeline_client import StreamTaskClient


def add_status_command(subparsers: Any) -> None:
    """Register status subcommand."""
    parser = subparsers.add_parser("status", help="Show consumer offsets and pending state")
    parser.add_argument("--consumer", help="Only show this consumer")


def add_runs_command(subparsers: Any) -> None:
    """Register runs subcommand."""
    parser = subparsers.add_parser("runs", help="List task runs, most recent first")
    parser.add_argument("--consumer", required=True, help="Consumer identifier")
    parser.add_argument(
        "--limit",
        type=int,
        default=DEFAULT_RUN_LIST_LIMIT,
        help="Maximum number of runs to list",
    )


def add_show_command(subparsers: Any) -> None:
    """Register show subcommand."""
    parser = subparsers.add_parser("show", help="Print committed enhanced rows as JSON lines")
    parser.add_argument("--consumer", required=True, help="Consumer identifier")
    parser.add_argument(
        "--dead-letters",
        action="store_true",
        help="Print dead-lettered records instead of enhanced rows",
    )


def run_status_command(client: StreamTaskClient, args: argparse.Namespace) -> int:
    """Print one status line per consumer."""
    consumer_ids = (args.consumer,) if args.consumer else client.consumer_ids
    high_watermark = client.high_watermark()
    print(f"high_watermark={high_watermark}")
    for consumer_id in consumer_ids:
        offset = client.consumer_offset(consumer_id)
        pending = max(0, high_watermark - offset.last_committed_sequence_id)
        print(
            f"{consumer_id}\t"
            f"offset={offset.last_committed_sequence_id}\t"
            f"pending={pending}\t"
            f"paused={str(offset.paused).lower()}"
        )
    return 0


def run_runs_command(client: StreamTaskClient, args: argparse.Namespace) -> int:
    """Print recent task runs of one consumer."""
    for run in client.list_task_runs(args.consumer, args.limit):
        print(
            f"{run.run_id}\t{run.status}\t{run.started_at}\t"
            f"{run.offset_before}->{run.offset_after if run.offset_after is not None else '-'}\t"
            f"{run.error_kind or '-'}"
        )
    return 0


def run_show_command(client: StreamTaskClient, args: argparse.Namespace) -> int:
    """Print committed enhanced rows or dead letters of one consumer."""
    if args.dead_letters:
        for dead_letter in client.read_dead_letters(args.consumer):
            print(
                json.dumps(
                    {
                        "source_sequence_id": dead_letter.source_sequence_id,
                        "reason": dead_letter.reason,
                        "field_map": dead_letter.field_map,
                    },
                    sort_keys=True,
                )
            )
        return 0
    for record in client.read_enhanced(args.consumer):
        print(
            json.dumps(
                {"source_sequence_id": record.source_sequence_id, **record.fields},
                sort_keys=True,
            )
        )
    return 0
