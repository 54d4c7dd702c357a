# backend/warehouse/composer.py
"""Set composition: AND criteria together by intersecting their identifier sets."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Tuple

from .catalog import SchemaCatalog
from .column_types import SemanticType, coerce_literal
from .compiler import (
    PLACEHOLDER,
    CompiledFragment,
    QueryParam,
    SqlBuilder,
    compile_fragments,
    placeholders,
    require_column,
    resolve_key,
)
from .criteria import SearchCriteria
from .errors import ConfigurationError

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class CompiledQuery:
    """Complete statement with positional ``?`` placeholders, ready for the binder."""

    sql: str
    params: Tuple[QueryParam, ...] = ()


def _limit_param(limit: Optional[int]) -> List[QueryParam]:
    return [QueryParam(limit, SemanticType.INTEGER)]


def intersect_fragments(fragments: Sequence[CompiledFragment]) -> CompiledFragment:
    """``f1 INTERSECT f2 ... INTERSECT fN``; each fragment is a complete identifier set."""
    return SqlBuilder().join(" INTERSECT ", fragments).build()


def compose_query(
    table: str,
    fragments: Sequence[CompiledFragment],
    catalog: SchemaCatalog,
    *,
    limit: Optional[int] = None,
) -> CompiledQuery:
    """
    SELECT * FROM table [WHERE key IN (f1 INTERSECT ... INTERSECT fN)] [LIMIT ?]

    No fragments means no WHERE clause.
    """
    key = resolve_key(catalog, table)
    table = table.strip().lower()

    builder = SqlBuilder().append(f"SELECT * FROM {table}")
    if fragments:
        builder.append(f" WHERE {key} IN (")
        builder.extend(intersect_fragments(fragments))
        builder.append(")")
    if limit is not None:
        builder.append(f" LIMIT {PLACEHOLDER}", _limit_param(limit))
    built = builder.build()
    return CompiledQuery(built.sql, built.params)


def compile_search(table: str, criteria: SearchCriteria, catalog: SchemaCatalog) -> CompiledQuery:
    """Compile ``criteria`` against ``table`` into one parameterized query."""
    fragments = compile_fragments(table, criteria, catalog)
    query = compose_query(table, fragments, catalog, limit=criteria.limit)
    log.debug("search on %s compiled to %s (%d params)", table, query.sql, len(query.params))
    return query


def compile_extraction(
    table: str,
    inner: SearchCriteria,
    outer: SearchCriteria,
    lower: float,
    upper: float,
    catalog: SchemaCatalog,
    *,
    limit: Optional[int] = None,
    entity_column: str = "event_entity_uuid",
    start_column: str = "event_start_time",
    end_column: str = "event_end_time",
) -> CompiledQuery:
    """
    Find rows matching ``inner`` that have related rows matching ``outer``.

    A row R is related to a base row B when both belong to the same entity and
    ``R.start`` lies in ``[B.start + lower, B.end + upper]``. Every returned base
    row carries the identifiers of its related rows in an ``extracted`` array
    column; base rows without related rows are dropped. Results are ordered by
    entity and start time.
    """
    key = resolve_key(catalog, table)
    table = table.strip().lower()
    entity_column = require_column(catalog, table, entity_column)
    start_column = require_column(catalog, table, start_column)
    end_column = require_column(catalog, table, end_column)

    lower_bound = coerce_literal(lower, SemanticType.DOUBLE, column=start_column)
    upper_bound = coerce_literal(upper, SemanticType.DOUBLE, column=start_column)
    if lower_bound > upper_bound:
        raise ConfigurationError(f"extraction range lower bound {lower} is above upper bound {upper}")

    inner_fragments = compile_fragments(table, inner, catalog)
    outer_fragments = compile_fragments(table, outer, catalog)

    builder = SqlBuilder()
    builder.append(f"SELECT * FROM (SELECT base.*, ARRAY(SELECT related.{key} FROM {table} AS related WHERE ")
    if outer_fragments:
        builder.append(f"related.{key} IN (")
        builder.extend(intersect_fragments(outer_fragments))
        builder.append(") AND ")
    builder.append(
        f"related.{key} <> base.{key}"
        f" AND related.{entity_column} = base.{entity_column}"
        f" AND related.{start_column} BETWEEN base.{start_column} + {PLACEHOLDER}"
        f" AND base.{end_column} + {PLACEHOLDER}",
        [QueryParam(lower_bound, SemanticType.DOUBLE), QueryParam(upper_bound, SemanticType.DOUBLE)],
    )
    builder.append(f" ORDER BY related.{start_column}) AS extracted FROM {table} AS base")
    if inner_fragments:
        builder.append(f" WHERE base.{key} IN (")
        builder.extend(intersect_fragments(inner_fragments))
        builder.append(")")
    builder.append(f") AS extraction WHERE cardinality(extracted) > 0 ORDER BY {entity_column}, {start_column}")
    if limit is not None:
        builder.append(f" LIMIT {PLACEHOLDER}", _limit_param(limit))
    built = builder.build()
    log.debug("extraction on %s compiled to %s (%d params)", table, built.sql, len(built.params))
    return CompiledQuery(built.sql, built.params)


def unique_extracted_ids(rows: Iterable[Mapping[str, Any]], column: str = "extracted") -> List[Any]:
    """Flatten the ``extracted`` arrays of extraction rows, first occurrence wins."""
    seen = set()
    ordered: List[Any] = []
    for row in rows:
        for identifier in row.get(column) or ():
            marker = str(identifier)
            if marker in seen:
                continue
            seen.add(marker)
            ordered.append(identifier)
    return ordered


def compile_identifier_lookup(
    table: str,
    identifiers: Sequence[Any],
    catalog: SchemaCatalog,
    *,
    limit: Optional[int] = None,
) -> CompiledQuery:
    """SELECT * FROM table WHERE key IN (?, ...) typed by the key column."""
    key = resolve_key(catalog, table)
    table = table.strip().lower()
    if not identifiers:
        raise ConfigurationError("identifier lookup needs at least one identifier")
    key_type = catalog.semantic_type(table, key) or SemanticType.STRING
    params = [QueryParam(coerce_literal(v, key_type, column=key), key_type) for v in identifiers]
    builder = SqlBuilder().append(f"SELECT * FROM {table} WHERE {key} IN ({placeholders(len(params))})", params)
    if limit is not None:
        builder.append(f" LIMIT {PLACEHOLDER}", _limit_param(limit))
    built = builder.build()
    return CompiledQuery(built.sql, built.params)
