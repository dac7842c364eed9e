"""Unit tests for consumer admin commands."""

from __future__ import annotations

from pathlib import Path

import pytest

from cli.main import main
from tests.fixture_paths import fixture_path


def test_pause_prints_paused_state(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    """Pause should report the consumer as paused."""
    exit_code = main(["--data-root", str(tmp_path), "pause", "--consumer", "enhanced_logs"])
    output = capsys.readouterr().out

    assert exit_code == 0 and "paused=true" in output


def test_reset_offset_requires_paused_consumer(
    tmp_path: Path,
    capsys: pytest.CaptureFixture[str],
) -> None:
    """Resetting a running consumer should fail with an error line."""
    main(["--data-root", str(tmp_path), "ingest", str(fixture_path("logs"))])
    capsys.readouterr()

    exit_code = main(
        [
            "--data-root",
            str(tmp_path),
            "reset-offset",
            "--consumer",
            "enhanced_logs",
            "--sequence-id",
            "0",
        ]
    )
    output = capsys.readouterr().out

    assert exit_code == 1 and output.startswith("error=")


def test_reset_offset_rewinds_paused_consumer(
    tmp_path: Path,
    capsys: pytest.CaptureFixture[str],
) -> None:
    """A paused consumer can be rewound from the CLI."""
    data_root = str(tmp_path)
    main(["--data-root", data_root, "ingest", str(fixture_path("logs"))])
    main(["--data-root", data_root, "run"])
    main(["--data-root", data_root, "pause", "--consumer", "enhanced_logs"])
    capsys.readouterr()

    main(
        [
            "--data-root",
            data_root,
            "reset-offset",
            "--consumer",
            "enhanced_logs",
            "--sequence-id",
            "3",
        ]
    )
    output = capsys.readouterr().out

    assert "offset=3" in output
