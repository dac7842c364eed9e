"""Consumer admin command wiring for StreamTask CLI.

Pause, resume, and offset reset are operator overrides. A reset is only
accepted while the consumer is paused.
"""

from __future__ import annotations

import argparse
from typing import Any

from core.types import ConsumerOffset
from tasks.pipeline_client import StreamTaskClient


def add_pause_command(subparsers: Any) -> None:
    """Register pause subcommand."""
    parser = subparsers.add_parser("pause", help="Stop scheduling a consumer")
    parser.add_argument("--consumer", required=True, help="Consumer identifier")


def add_resume_command(subparsers: Any) -> None:
    """Register resume subcommand."""
    parser = subparsers.add_parser("resume", help="Resume scheduling a paused consumer")
    parser.add_argument("--consumer", required=True, help="Consumer identifier")


def add_reset_offset_command(subparsers: Any) -> None:
    """Register reset-offset subcommand."""
    parser = subparsers.add_parser(
        "reset-offset",
        help="Move the committed offset of a paused consumer",
    )
    parser.add_argument("--consumer", required=True, help="Consumer identifier")
    parser.add_argument(
        "--sequence-id",
        type=int,
        required=True,
        help="New committed offset; 0 replays the whole raw log",
    )


def run_pause_command(client: StreamTaskClient, args: argparse.Namespace) -> int:
    _print_offset(client.pause(args.consumer))
    return 0


def run_resume_command(client: StreamTaskClient, args: argparse.Namespace) -> int:
    _print_offset(client.resume(args.consumer))
    return 0


def run_reset_offset_command(client: StreamTaskClient, args: argparse.Namespace) -> int:
    _print_offset(client.reset_offset(args.consumer, args.sequence_id))
    return 0


def _print_offset(offset: ConsumerOffset) -> None:
    print(f"consumer_id={offset.consumer_id}")
    print(f"offset={offset.last_committed_sequence_id}")
    print(f"paused={str(offset.paused).lower()}")
