# backend/warehouse/catalog.py
"""Read-only schema catalog consumed by the search compiler.

The compiler never talks to the database itself. It asks a :class:`SchemaCatalog`
which tables and columns exist, what their semantic types are and which columns
form a table's primary key. :func:`reflect_schema_catalog` builds a snapshot of a
live database through SQLAlchemy reflection; :class:`StaticSchemaCatalog` can also
be populated by hand (tests, fixed deployments).
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from sqlalchemy import inspect as sa_inspect
from sqlalchemy.engine import Engine

from .column_types import SemanticType, normalize_column_type

log = logging.getLogger(__name__)


def _norm(name: str) -> str:
    return (name or "").strip().lower()


class SchemaCatalog:
    """Interface of the schema snapshot. Names are compared case-insensitively."""

    def tables(self) -> List[str]:
        raise NotImplementedError

    def has_table(self, table: str) -> bool:
        raise NotImplementedError

    def has_column(self, table: str, column: str) -> bool:
        raise NotImplementedError

    def columns(self, table: str) -> Dict[str, Optional[SemanticType]]:
        raise NotImplementedError

    def semantic_type(self, table: str, column: str) -> Optional[SemanticType]:
        """Return the column's semantic type, or ``None`` when the column is
        missing or its database type is not supported."""
        raise NotImplementedError

    def primary_key(self, table: str) -> List[str]:
        raise NotImplementedError


class StaticSchemaCatalog(SchemaCatalog):
    """Immutable in-memory catalog.

    ``columns`` maps table -> {column -> SemanticType or database type name}.
    ``primary_keys`` maps table -> ordered key columns.
    """

    def __init__(
        self,
        columns: Mapping[str, Mapping[str, object]],
        primary_keys: Optional[Mapping[str, Sequence[str]]] = None,
    ):
        self._columns: Dict[str, Dict[str, Optional[SemanticType]]] = {}
        for table, column_map in columns.items():
            resolved: Dict[str, Optional[SemanticType]] = {}
            for column, raw_type in column_map.items():
                if isinstance(raw_type, SemanticType) or raw_type is None:
                    resolved[_norm(column)] = raw_type
                else:
                    resolved[_norm(column)] = normalize_column_type(str(raw_type))
            self._columns[_norm(table)] = resolved
        self._keys: Dict[str, Tuple[str, ...]] = {
            _norm(table): tuple(_norm(c) for c in keys) for table, keys in (primary_keys or {}).items()
        }

    def tables(self) -> List[str]:
        return sorted(self._columns)

    def has_table(self, table: str) -> bool:
        return _norm(table) in self._columns

    def has_column(self, table: str, column: str) -> bool:
        return _norm(column) in self._columns.get(_norm(table), {})

    def columns(self, table: str) -> Dict[str, Optional[SemanticType]]:
        return dict(self._columns.get(_norm(table), {}))

    def semantic_type(self, table: str, column: str) -> Optional[SemanticType]:
        return self._columns.get(_norm(table), {}).get(_norm(column))

    def primary_key(self, table: str) -> List[str]:
        return list(self._keys.get(_norm(table), ()))

    def __repr__(self) -> str:
        return f"StaticSchemaCatalog(tables={self.tables()!r})"


def reflect_schema_catalog(
    engine: Engine,
    *,
    schema: Optional[str] = None,
    tables: Optional[Iterable[str]] = None,
) -> StaticSchemaCatalog:
    """
    Snapshot column types and primary keys of ``schema`` (default schema when None).

    Example:
        catalog = reflect_schema_catalog(get_engine())
        catalog.semantic_type("events", "event_start_time")  # -> SemanticType.DOUBLE
    """
    insp = sa_inspect(engine)
    table_names = list(tables) if tables is not None else insp.get_table_names(schema=schema)

    columns: Dict[str, Dict[str, object]] = {}
    primary_keys: Dict[str, List[str]] = {}
    for table_name in table_names:
        column_types: Dict[str, object] = {}
        for col in insp.get_columns(table_name, schema=schema):
            type_name = str(col["type"])
            semantic = normalize_column_type(type_name)
            if semantic is None:
                log.debug("column %s.%s has unsupported type %s", table_name, col["name"], type_name)
            column_types[col["name"]] = semantic
        columns[table_name] = column_types
        pk = insp.get_pk_constraint(table_name, schema=schema) or {}
        primary_keys[table_name] = list(pk.get("constrained_columns") or [])

    log.info("Reflected schema catalog: %d tables", len(columns))
    return StaticSchemaCatalog(columns, primary_keys)
