"""Shared raw log row builders for tests."""

from __future__ import annotations

from core.types import SourceLogRow

LOGIN_FIELDS = {
    "user_event": "login",
    "ip_address": "10.0.0.1",
    "datetime_iso8601": "2024-01-01T00:00:00Z",
    "user_login": "alice",
}


def login_rows(count: int, source_file_id: str = "memory://logins.jsonl") -> list[SourceLogRow]:
    """Build ``count`` identical alice login rows with consecutive ordinals."""
    return [
        SourceLogRow(
            source_file_id=source_file_id,
            source_row_ordinal=ordinal,
            field_map=dict(LOGIN_FIELDS),
        )
        for ordinal in range(count)
    ]


def row_with(ordinal: int, **field_overrides: object) -> SourceLogRow:
    """Build one login row with some fields replaced or set to None."""
    field_map: dict[str, object] = dict(LOGIN_FIELDS)
    field_map.update(field_overrides)
    return SourceLogRow(
        source_file_id="memory://overrides.jsonl",
        source_row_ordinal=ordinal,
        field_map=field_map,
    )
