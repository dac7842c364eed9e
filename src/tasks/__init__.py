"""Transform tasks and their scheduler.

This package runs exactly-once transforms over consumer change logs and
exposes the SDK client used by the CLI.
"""
