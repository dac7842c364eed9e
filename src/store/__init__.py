"""Storage layer.

This package persists enhanced tables, dead letters, and task run
records under the data root with atomic file replacement.
"""
