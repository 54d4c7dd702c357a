# backend/warehouse/column_types.py
"""Semantic column types and the literal coercion rules that go with them."""

from __future__ import annotations

import enum
import math
import re
import uuid as _uuid
from datetime import date, datetime
from typing import Any, Optional, Tuple

from dateutil import parser as dateutil_parser

from .errors import TypeMismatchError


class SemanticType(enum.Enum):
    UUID = "uuid"
    STRING = "string"
    ARRAY = "array"
    INTEGER = "integer"
    BIGINT = "bigint"
    DOUBLE = "double"
    TIMESTAMP = "timestamp"
    OID = "oid"


NUMERIC_TYPES = frozenset({SemanticType.INTEGER, SemanticType.BIGINT, SemanticType.DOUBLE})

_INT32_RANGE = (-(2 ** 31), 2 ** 31 - 1)
_INT64_RANGE = (-(2 ** 63), 2 ** 63 - 1)
_OID_RANGE = (0, 2 ** 32 - 1)

_DATE_FORMATS: Tuple[str, ...] = (
    "%Y/%m/%d",
    "%m/%d/%Y",
    "%m-%d-%Y",
    "%Y/%m/%d %H:%M:%S",
)


def normalize_column_type(type_str: Optional[str]) -> Optional[SemanticType]:
    """Map a database type name (``information_schema`` or SQLAlchemy ``str(col.type)``)
    onto a :class:`SemanticType`. Unsupported types map to ``None``."""
    normalized = (type_str or "").strip().lower()
    if not normalized:
        return None
    if normalized.endswith("[]") or normalized.startswith("array") or normalized == "array":
        return SemanticType.ARRAY
    if "uuid" in normalized:
        return SemanticType.UUID
    if normalized.startswith("timestamp") or normalized in ("date", "datetime"):
        return SemanticType.TIMESTAMP
    if normalized == "oid":
        return SemanticType.OID
    if normalized in ("bigint", "int8", "bigserial"):
        return SemanticType.BIGINT
    if normalized in ("integer", "int", "int4", "smallint", "int2", "serial", "smallserial"):
        return SemanticType.INTEGER
    if any(token in normalized for token in ("double", "float", "real", "numeric", "decimal")):
        return SemanticType.DOUBLE
    if any(token in normalized for token in ("char", "text", "string", "citext")):
        return SemanticType.STRING
    return None


def normalize_pg_uuid(s: str) -> str:
    """
    Normalize an input string into a PostgreSQL UUID (xxxxxxxx-xxxx-xxxx-xxxx-xxxxxxxxxxxx).

    Non-alphanumeric characters are dropped, the remainder must be exactly 32 hex digits.

    Raises:
        ValueError: If length != 32 after cleaning, or if non-hex letters are present.
    """
    if not isinstance(s, str):
        raise TypeError("normalize_pg_uuid expects a string input.")

    cleaned = re.sub(r"[^0-9A-Za-z]+", "", s)
    if len(cleaned) != 32:
        raise ValueError(
            f"Normalized UUID must have exactly 32 hex characters; got {len(cleaned)}."
        )
    if re.search(r"[G-Zg-z]", cleaned):
        raise ValueError("Invalid UUID: contains letters beyond 'F' (non-hex characters).")

    cleaned = cleaned.lower()
    return f"{cleaned[0:8]}-{cleaned[8:12]}-{cleaned[12:16]}-{cleaned[16:20]}-{cleaned[20:32]}"


def _mismatch(value: Any, semantic_type: SemanticType, column: Optional[str]) -> TypeMismatchError:
    where = f" for column {column!r}" if column else ""
    return TypeMismatchError(f"Value {value!r} is not a valid {semantic_type.value}{where}")


def _coerce_int(value: Any, bounds: Tuple[int, int]) -> int:
    if isinstance(value, bool):
        raise ValueError("booleans are not integers")
    if isinstance(value, int):
        number = value
    elif isinstance(value, float):
        if not value.is_integer():
            raise ValueError("fractional value")
        number = int(value)
    else:
        text = str(value).strip()
        if not re.fullmatch(r"[+-]?\d+", text):
            raise ValueError("not an integer literal")
        number = int(text)
    low, high = bounds
    if number < low or number > high:
        raise ValueError("out of range")
    return number


def _coerce_double(value: Any) -> float:
    if isinstance(value, bool):
        raise ValueError("booleans are not numbers")
    number = float(value) if not isinstance(value, str) else float(value.strip())
    if not math.isfinite(number):
        raise ValueError("non-finite value")
    return number


def _coerce_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if not isinstance(value, str) or not value.strip():
        raise ValueError("not a timestamp literal")
    candidate = value.strip()
    try:
        return dateutil_parser.isoparse(candidate)
    except ValueError:
        pass
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(candidate, fmt)
        except ValueError:
            continue
    raise ValueError("unrecognized timestamp format")


def coerce_literal(value: Any, semantic_type: SemanticType, *, column: Optional[str] = None) -> Any:
    """Parse ``value`` into the Python value bound for ``semantic_type``.

    Raises :class:`TypeMismatchError` when the literal does not fit the type.
    """
    if value is None:
        raise _mismatch(value, semantic_type, column)
    try:
        if semantic_type is SemanticType.STRING:
            if isinstance(value, (dict, list, tuple, set, bytes)):
                raise ValueError("not a scalar")
            return value if isinstance(value, str) else str(value)
        if semantic_type is SemanticType.UUID:
            if isinstance(value, _uuid.UUID):
                return value
            return _uuid.UUID(normalize_pg_uuid(str(value)))
        if semantic_type is SemanticType.INTEGER:
            return _coerce_int(value, _INT32_RANGE)
        if semantic_type is SemanticType.BIGINT:
            return _coerce_int(value, _INT64_RANGE)
        if semantic_type is SemanticType.OID:
            return _coerce_int(value, _OID_RANGE)
        if semantic_type is SemanticType.DOUBLE:
            return _coerce_double(value)
        if semantic_type is SemanticType.TIMESTAMP:
            return _coerce_timestamp(value)
    except (TypeError, ValueError, OverflowError) as exc:
        raise _mismatch(value, semantic_type, column) from exc
    # ARRAY columns have no literal form we can compare against
    raise TypeMismatchError(
        f"Columns of type {semantic_type.value} cannot be compared to literal values"
        + (f" (column {column!r})" if column else "")
    )
