"""StreamTask CLI entry points.
This module exposes ingest, transform, and scheduling commands.
It maps argparse commands onto SDK calls.
"""

from __future__ import annotations

import argparse
import threading
from dataclasses import replace
from pathlib import Path
from typing import Any, Sequence

from cli.admin_command import (
    add_pause_command,
    add_reset_offset_command,
    add_resume_command,
    run_pause_command,
    run_reset_offset_command,
    run_resume_command,
)
from cli.status_command import (
    add_runs_command,
    add_show_command,
    add_status_command,
    run_runs_command,
    run_show_command,
    run_status_command,
)
from core.config import StreamTaskConfig
from core.errors import StreamTaskError
from core.pipeline_spec import load_pipeline_spec
from tasks.pipeline_client import StreamTaskClient


def build_parser() -> argparse.ArgumentParser:
    """Build the top-level CLI parser.

    Returns:
        Configured argument parser.
    """
    parser = argparse.ArgumentParser(prog="streamtask", description="StreamTask transform CLI")
    parser.add_argument("--data-root", help="Override STREAMTASK_DATA_ROOT for this command")
    parser.add_argument("--pipeline-spec", help="Optional YAML pipeline spec file")
    subparsers = parser.add_subparsers(dest="command", required=True)
    _add_ingest_command(subparsers)
    _add_run_command(subparsers)
    _add_schedule_command(subparsers)
    add_status_command(subparsers)
    add_runs_command(subparsers)
    add_show_command(subparsers)
    add_pause_command(subparsers)
    add_resume_command(subparsers)
    add_reset_offset_command(subparsers)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Run the StreamTask CLI.

    Args:
        argv: Optional argument vector.

    Returns:
        Process exit code.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        client = _build_client(args.data_root, args.pipeline_spec)
        return _dispatch_command(parser, client, args)
    except StreamTaskError as error:
        print(f"error={error}")
        return 1


def _dispatch_command(
    parser: argparse.ArgumentParser,
    client: StreamTaskClient,
    args: argparse.Namespace,
) -> int:
    if args.command == "ingest":
        return _run_ingest_command(client, args)
    if args.command == "run":
        return _run_run_command(client, args)
    if args.command == "schedule":
        return _run_schedule_command(client, args)
    if args.command == "status":
        return run_status_command(client, args)
    if args.command == "runs":
        return run_runs_command(client, args)
    if args.command == "show":
        return run_show_command(client, args)
    if args.command == "pause":
        return run_pause_command(client, args)
    if args.command == "resume":
        return run_resume_command(client, args)
    if args.command == "reset-offset":
        return run_reset_offset_command(client, args)
    parser.error(f"Unsupported command: {args.command}")
    return 2


def _build_client(data_root: str | None, pipeline_spec_path: str | None) -> StreamTaskClient:
    """Build SDK client with optional data-root and pipeline overrides.

    Args:
        data_root: Optional override path.
        pipeline_spec_path: Optional YAML pipeline spec path.

    Returns:
        Configured SDK client.
    """
    config = StreamTaskConfig.from_env()
    if data_root:
        config = replace(config, data_root=Path(data_root).expanduser().resolve())
    pipeline_spec = load_pipeline_spec(pipeline_spec_path) if pipeline_spec_path else None
    return StreamTaskClient(config, pipeline_spec)


def _run_ingest_command(client: StreamTaskClient, args: argparse.Namespace) -> int:
    """Handle ingest command.

    Args:
        client: SDK client.
        args: Parsed CLI args.

    Returns:
        Exit code.
    """
    result = client.ingest(args.source)
    print(f"files_loaded={len(result.files_loaded)}")
    print(f"files_skipped={len(result.files_skipped)}")
    print(f"rows_appended={result.rows_appended}")
    print(f"high_watermark={result.high_watermark}")
    return 0


def _run_run_command(client: StreamTaskClient, args: argparse.Namespace) -> int:
    """Handle run command.

    Args:
        client: SDK client.
        args: Parsed CLI args.

    Returns:
        Exit code.
    """
    runs = client.run_once(args.consumer)
    if not runs:
        print("no_pending_records")
        return 0
    for run in runs:
        print(
            f"{run.consumer_id}\t{run.run_id}\t{run.status}\t"
            f"{run.offset_before}->{run.offset_after}\t"
            f"enhanced={run.enhanced_count}\tdead_letters={run.dead_letter_count}"
        )
    return 0


def _run_schedule_command(client: StreamTaskClient, args: argparse.Namespace) -> int:
    """Handle schedule command.

    Args:
        client: SDK client.
        args: Parsed CLI args.

    Returns:
        Exit code.
    """
    stop_event = threading.Event()
    with client.scheduler() as scheduler:
        try:
            ticks = scheduler.run_forever(stop_event, max_ticks=args.max_ticks)
        except KeyboardInterrupt:
            stop_event.set()
            print("scheduler_stopped=interrupted")
            return 0
    print(f"ticks={ticks}")
    return 0


def _add_ingest_command(subparsers: Any) -> None:
    """Register ingest subcommand."""
    parser = subparsers.add_parser("ingest", help="Load log files into the raw append log")
    parser.add_argument("source", help="Source file, directory, or s3://bucket/prefix")


def _add_run_command(subparsers: Any) -> None:
    """Register run subcommand."""
    parser = subparsers.add_parser("run", help="Run transform tasks once over pending records")
    parser.add_argument("--consumer", help="Only run this consumer")


def _add_schedule_command(subparsers: Any) -> None:
    """Register schedule subcommand."""
    parser = subparsers.add_parser(
        "schedule",
        help="Run the recurring scheduler on STREAMTASK_TICK_INTERVAL_SECONDS",
    )
    parser.add_argument("--max-ticks", type=int, help="Stop after this many ticks")
