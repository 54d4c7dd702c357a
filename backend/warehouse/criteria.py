# backend/warehouse/criteria.py
"""Structured search criteria.

A :class:`SearchCriteria` is built by the caller for one search, handed to
:func:`warehouse.composer.compile_search` and then discarded. Semantics:

* ``tag_groups`` / ``attribute_groups``: OR within a group, AND across groups.
* ``column_filters``: OR within a column, AND across columns.
* ``numeric_filters``: a row matches a column when its value falls within the
  tolerance window of ANY centre value; columns are AND-ed.
* every kind is AND-ed with every other kind.
"""

from __future__ import annotations

import enum
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .errors import ConfigurationError

log = logging.getLogger(__name__)

Group = Tuple[str, ...]


class MatchMode(enum.Enum):
    """How a tag literal is matched against hierarchical tag paths."""

    EXACT = "exact"
    PREFIX = "prefix"
    WORD = "word"

    @classmethod
    def parse(cls, value: Any) -> Optional["MatchMode"]:
        if value is None or isinstance(value, MatchMode):
            return value
        if isinstance(value, str):
            key = value.strip().lower()
            if not key:
                return None
            for mode in cls:
                if mode.value == key:
                    return mode
        raise ConfigurationError(f"Unknown match mode {value!r}; expected one of exact, prefix, word")


@dataclass(frozen=True)
class NumericFilter:
    """Centre values plus the ``[lower, upper]`` deltas added to each of them."""

    values: Tuple[float, ...]
    lower: float
    upper: float

    def windows(self) -> List[Tuple[float, float]]:
        return [(value + self.lower, value + self.upper) for value in self.values]


@dataclass(frozen=True)
class SearchCriteria:
    tag_groups: Tuple[Group, ...] = ()
    attribute_groups: Tuple[Group, ...] = ()
    column_filters: Mapping[str, Tuple[Any, ...]] = field(default_factory=dict)
    numeric_filters: Mapping[str, NumericFilter] = field(default_factory=dict)
    match_mode: Optional[MatchMode] = None
    regex_enabled: bool = False
    limit: Optional[int] = None

    def is_empty(self) -> bool:
        """True when no filter of any kind is present (``limit`` is not a filter)."""
        return not (self.tag_groups or self.attribute_groups or self.column_filters or self.numeric_filters)

    @classmethod
    def build(
        cls,
        *,
        tags: Optional[Iterable[Iterable[str]]] = None,
        attributes: Optional[Iterable[Iterable[str]]] = None,
        columns: Optional[Mapping[str, Any]] = None,
        numeric: Optional[Mapping[str, Any]] = None,
        match: Any = None,
        regex: Any = False,
        limit: Any = None,
        default_tolerance: float = 0.0,
    ) -> "SearchCriteria":
        """Normalize loosely-typed inputs (lists, strings, pairs) into a criteria object."""
        return cls(
            tag_groups=_normalize_groups(tags, "tags"),
            attribute_groups=_normalize_groups(attributes, "attributes"),
            column_filters=_normalize_column_filters(columns),
            numeric_filters=_normalize_numeric_filters(numeric, default_tolerance),
            match_mode=MatchMode.parse(match),
            regex_enabled=_coerce_regex_flag(regex),
            limit=_coerce_limit(limit),
        )

    @classmethod
    def from_mapping(cls, payload: Any, *, default_tolerance: float = 0.0) -> "SearchCriteria":
        """Build criteria from a decoded JSON object.

        Accepted keys: ``tags``, ``attributes`` (lists of groups), ``columns``
        (column -> value or list of values), ``numeric`` (column -> ``{"values":
        [...], "range": [lo, hi]}`` or ``[[values], [lo, hi]]``), ``match``,
        ``regex`` and ``limit``.
        """
        if payload is None:
            payload = {}
        if not isinstance(payload, Mapping):
            raise ConfigurationError("Search criteria must be a JSON object")
        known = {"tags", "attributes", "columns", "numeric", "match", "regex", "limit"}
        unknown = sorted(str(k) for k in payload if k not in known)
        if unknown:
            raise ConfigurationError(f"Unknown search criteria keys: {', '.join(unknown)}")
        return cls.build(
            tags=payload.get("tags"),
            attributes=payload.get("attributes"),
            columns=payload.get("columns"),
            numeric=payload.get("numeric"),
            match=payload.get("match"),
            regex=payload.get("regex", False),
            limit=payload.get("limit"),
            default_tolerance=default_tolerance,
        )


def _is_iterable_but_not_str(x: Any) -> bool:
    return isinstance(x, Iterable) and not isinstance(x, (str, bytes, bytearray, Mapping))


def _dedupe(values: Iterable[Any]) -> Tuple[Any, ...]:
    seen: List[Any] = []
    for value in values:
        if value not in seen:
            seen.append(value)
    return tuple(seen)


def _normalize_groups(raw: Any, label: str) -> Tuple[Group, ...]:
    if raw is None:
        return ()
    if isinstance(raw, str) or not _is_iterable_but_not_str(raw):
        raise ConfigurationError(f"{label} must be a list of groups")
    groups: List[Group] = []
    for group in raw:
        # A bare string is shorthand for a single-literal group
        members = [group] if isinstance(group, str) else group
        if not _is_iterable_but_not_str(members):
            raise ConfigurationError(f"Each {label} group must be a list of strings")
        literals: List[str] = []
        for literal in members:
            if not isinstance(literal, str):
                raise ConfigurationError(f"{label} literals must be strings, got {literal!r}")
            literals.append(literal)
        groups.append(_dedupe(literals))
    return tuple(groups)


def _normalize_column_filters(raw: Any) -> Dict[str, Tuple[Any, ...]]:
    if raw is None:
        return {}
    if not isinstance(raw, Mapping):
        raise ConfigurationError("columns must map column names to values")
    filters: Dict[str, Tuple[Any, ...]] = {}
    for column, values in raw.items():
        if not isinstance(column, str) or not column.strip():
            raise ConfigurationError(f"Invalid column name {column!r}")
        if _is_iterable_but_not_str(values):
            filters[column.strip()] = _dedupe(values)
        else:
            filters[column.strip()] = (values,)
    return filters


def _as_float(value: Any, what: str) -> float:
    if isinstance(value, bool):
        raise ConfigurationError(f"{what} must be a number, got {value!r}")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{what} must be a number, got {value!r}") from None
    if not math.isfinite(number):
        raise ConfigurationError(f"{what} must be finite, got {value!r}")
    return number


def _normalize_numeric_filter(column: str, raw: Any, default_tolerance: float) -> NumericFilter:
    if isinstance(raw, NumericFilter):
        return raw
    bounds: Optional[Sequence[Any]] = None
    if isinstance(raw, Mapping):
        values = raw.get("values")
        bounds = raw.get("range")
    elif _is_iterable_but_not_str(raw):
        items = list(raw)
        if len(items) == 2 and _is_iterable_but_not_str(items[1]):
            values, bounds = items
        else:
            # plain list of centre values, default tolerance
            values = items
    else:
        values = raw

    if values is None:
        values = ()
    elif not _is_iterable_but_not_str(values):
        values = (values,)
    centres = _dedupe(_as_float(v, f"numeric value for {column!r}") for v in values)

    if bounds is None:
        lower, upper = -abs(default_tolerance), abs(default_tolerance)
    else:
        if not _is_iterable_but_not_str(bounds):
            raise ConfigurationError(f"range for {column!r} must be [lower, upper]")
        bounds = list(bounds)
        if len(bounds) != 2:
            raise ConfigurationError(f"range for {column!r} must be [lower, upper]")
        lower, upper = (_as_float(b, f"range bound for {column!r}") for b in bounds)
    return NumericFilter(values=centres, lower=lower, upper=upper)


def _normalize_numeric_filters(raw: Any, default_tolerance: float) -> Dict[str, NumericFilter]:
    if raw is None:
        return {}
    if not isinstance(raw, Mapping):
        raise ConfigurationError("numeric must map column names to value ranges")
    filters: Dict[str, NumericFilter] = {}
    for column, spec in raw.items():
        if not isinstance(column, str) or not column.strip():
            raise ConfigurationError(f"Invalid column name {column!r}")
        filters[column.strip()] = _normalize_numeric_filter(column, spec, default_tolerance)
    return filters


def _coerce_regex_flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    if isinstance(value, str):
        low = value.strip().lower()
        if low in {"on", "true", "1", "yes"}:
            return True
        if low in {"off", "false", "0", "no", ""}:
            return False
    raise ConfigurationError(f"regex must be a boolean or 'on'/'off', got {value!r}")


def _coerce_limit(value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, float) and math.isinf(value) and value > 0:
        # an infinite limit means "no limit"
        return None
    if isinstance(value, bool):
        raise ConfigurationError(f"limit must be a positive integer, got {value!r}")
    try:
        limit = int(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"limit must be a positive integer, got {value!r}") from None
    if limit <= 0 or (not isinstance(value, str) and limit != value):
        raise ConfigurationError(f"limit must be a positive integer, got {value!r}")
    return limit
