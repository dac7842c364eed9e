"""Field projection transform.

This module turns a raw record's parsed field map into the typed output
fields declared by a consumer spec. It is a pure function of the field
map; any missing, null, or unparsable required field raises
``MalformedRecordError`` so the caller can dead-letter the record.
"""

from __future__ import annotations

import ipaddress
import math
from datetime import datetime, timezone
from typing import Callable, Mapping

from core.errors import MalformedRecordError
from core.pipeline_spec import ConsumerSpec, FieldProjection
from core.types import EnhancedRecord, RawRecord

_TRUE_VALUES = frozenset({"true", "t", "yes", "1"})
_FALSE_VALUES = frozenset({"false", "f", "no", "0"})


def project_record(
    consumer_spec: ConsumerSpec,
    record: RawRecord,
    transform_timestamp: str,
) -> EnhancedRecord:
    """Project one raw record into an enhanced record.

    Args:
        consumer_spec: Consumer whose field projections apply.
        record: Raw record to transform.
        transform_timestamp: UTC ISO-8601 time stamped on the output.

    Returns:
        Enhanced record carrying the raw sequence id.

    Raises:
        MalformedRecordError: If a required field is missing, null, or unparsable.
    """
    fields = project_fields(consumer_spec.fields, record.field_map)
    return EnhancedRecord(
        source_sequence_id=record.sequence_id,
        fields=fields,
        transform_timestamp=transform_timestamp,
    )


def project_fields(
    projections: tuple[FieldProjection, ...],
    field_map: Mapping[str, object],
) -> dict[str, object]:
    """Apply projections to a field map and return the output fields."""
    output: dict[str, object] = {}
    for projection in projections:
        raw_value = field_map.get(projection.source)
        if raw_value is None:
            if projection.required:
                reason = "missing" if projection.source not in field_map else "null"
                raise MalformedRecordError(
                    projection.source, reason, f"required by output field '{projection.name}'"
                )
            output[projection.name] = None
            continue
        output[projection.name] = convert_value(projection, raw_value)
    return output


def convert_value(projection: FieldProjection, raw_value: object) -> object:
    """Convert one raw value to the projection's declared type.

    Raises:
        MalformedRecordError: If the value cannot be parsed as that type.
    """
    converter = _CONVERTERS[projection.field_type]
    try:
        return converter(raw_value)
    except (TypeError, ValueError, OverflowError, OSError) as error:
        raise MalformedRecordError(
            projection.source,
            "unparsable",
            f"cannot read {raw_value!r} as {projection.field_type} ({error})",
        ) from error


def _to_string(raw_value: object) -> str:
    if isinstance(raw_value, bool):
        return "true" if raw_value else "false"
    if isinstance(raw_value, (str, int, float)):
        return str(raw_value)
    raise TypeError(f"expected scalar, got {type(raw_value).__name__}")


def _to_integer(raw_value: object) -> int:
    if isinstance(raw_value, bool):
        raise TypeError("booleans are not integers")
    if isinstance(raw_value, int):
        return raw_value
    if isinstance(raw_value, float):
        if not raw_value.is_integer():
            raise ValueError("value has a fractional part")
        return int(raw_value)
    if isinstance(raw_value, str):
        return int(raw_value.strip())
    raise TypeError(f"expected number, got {type(raw_value).__name__}")


def _to_float(raw_value: object) -> float:
    if isinstance(raw_value, bool):
        raise TypeError("booleans are not numbers")
    if isinstance(raw_value, (int, float, str)):
        value = float(raw_value)
        if math.isnan(value) or math.isinf(value):
            raise ValueError("value is not finite")
        return value
    raise TypeError(f"expected number, got {type(raw_value).__name__}")


def _to_boolean(raw_value: object) -> bool:
    if isinstance(raw_value, bool):
        return raw_value
    if isinstance(raw_value, str):
        normalized = raw_value.strip().lower()
        if normalized in _TRUE_VALUES:
            return True
        if normalized in _FALSE_VALUES:
            return False
    raise ValueError("expected true or false")


def _to_timestamp(raw_value: object) -> str:
    """Normalize ISO-8601 text or epoch seconds to a UTC ISO-8601 string."""
    if isinstance(raw_value, bool):
        raise TypeError("booleans are not timestamps")
    if isinstance(raw_value, (int, float)):
        parsed = datetime.fromtimestamp(raw_value, tz=timezone.utc)
    elif isinstance(raw_value, str):
        text = raw_value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
    else:
        raise TypeError(f"expected ISO-8601 text, got {type(raw_value).__name__}")
    return parsed.astimezone(timezone.utc).isoformat()


def _to_ip_address(raw_value: object) -> str:
    if not isinstance(raw_value, str):
        raise TypeError(f"expected text, got {type(raw_value).__name__}")
    return str(ipaddress.ip_address(raw_value.strip()))


_CONVERTERS: dict[str, Callable[[object], object]] = {
    "string": _to_string,
    "integer": _to_integer,
    "float": _to_float,
    "boolean": _to_boolean,
    "timestamp": _to_timestamp,
    "ip_address": _to_ip_address,
}
