# backend/warehouse/compiler.py
"""
Predicate compiler: turns :class:`SearchCriteria` into an ordered list of SQL
fragments, each one a self-contained ``SELECT <key> ...`` returning a complete
candidate identifier set.

Fragments are emitted in a fixed order (tags, attributes, column filters,
numeric filters) and use positional ``?`` placeholders. SQL text and parameters
are always appended together through :class:`SqlBuilder`, so the i-th
placeholder is the i-th parameter by construction.
"""

from __future__ import annotations

import enum
import logging
import re
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, Sequence, Tuple

from .catalog import SchemaCatalog
from .column_types import NUMERIC_TYPES, SemanticType, coerce_literal
from .criteria import MatchMode, NumericFilter, SearchCriteria
from .errors import BindingError, ConfigurationError, SchemaError, TypeMismatchError

log = logging.getLogger(__name__)

PLACEHOLDER = "?"

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# Postgres ARE metacharacters. Only punctuation is escaped, never letters or
# digits, so `~*` still matches every literal letter case-insensitively.
_REGEX_METACHARACTERS = frozenset("\\^$.|?*+()[]{}")


@dataclass(frozen=True)
class QueryParam:
    value: Any
    semantic_type: SemanticType


@dataclass(frozen=True)
class CompiledFragment:
    sql: str
    params: Tuple[QueryParam, ...] = ()


class SqlBuilder:
    """Append-only SQL text plus parameters, kept in lock step."""

    def __init__(self) -> None:
        self._parts: List[str] = []
        self._params: List[QueryParam] = []

    def append(self, sql: str, params: Iterable[QueryParam] = ()) -> "SqlBuilder":
        params = tuple(params)
        if sql.count(PLACEHOLDER) != len(params):
            raise BindingError(
                f"Fragment {sql!r} has {sql.count(PLACEHOLDER)} placeholders but {len(params)} parameters"
            )
        self._parts.append(sql)
        self._params.extend(params)
        return self

    def extend(self, fragment: CompiledFragment) -> "SqlBuilder":
        return self.append(fragment.sql, fragment.params)

    def join(self, separator: str, fragments: Sequence[CompiledFragment]) -> "SqlBuilder":
        for index, fragment in enumerate(fragments):
            if index:
                self.append(separator)
            self.extend(fragment)
        return self

    def build(self) -> CompiledFragment:
        return CompiledFragment("".join(self._parts), tuple(self._params))


class GroupKind(enum.Enum):
    TAG = "tag"
    ATTRIBUTE = "attribute"


@dataclass(frozen=True)
class GroupSource:
    """Where the values of one group kind live and how they link to entities."""

    select_sql: str
    value_column: str
    class_column: str
    required_columns: Tuple[Tuple[str, str], ...]


def group_source(kind: GroupKind) -> GroupSource:
    if kind is GroupKind.TAG:
        return GroupSource(
            select_sql=(
                "SELECT tag_entities.tag_entity_uuid FROM tag_entities"
                " INNER JOIN tags ON tag_entities.tag_entity_tag_uuid = tags.tag_uuid"
            ),
            value_column="tags.tag_name",
            class_column="tag_entities.tag_entity_class",
            required_columns=(
                ("tags", "tag_uuid"),
                ("tags", "tag_name"),
                ("tag_entities", "tag_entity_uuid"),
                ("tag_entities", "tag_entity_tag_uuid"),
                ("tag_entities", "tag_entity_class"),
            ),
        )
    if kind is GroupKind.ATTRIBUTE:
        return GroupSource(
            select_sql="SELECT attributes.attribute_entity_uuid FROM attributes",
            value_column="attributes.attribute_value",
            class_column="attributes.attribute_entity_class",
            required_columns=(
                ("attributes", "attribute_entity_uuid"),
                ("attributes", "attribute_entity_class"),
                ("attributes", "attribute_value"),
            ),
        )
    raise ValueError(f"Unhandled group kind {kind!r}")


def placeholders(count: int) -> str:
    return ", ".join([PLACEHOLDER] * count)


def folded_placeholders(count: int) -> str:
    """Placeholders wrapped in UPPER(), so literal and column are folded by the same function."""
    return ", ".join([f"UPPER({PLACEHOLDER})"] * count)


def check_identifier(name: str) -> str:
    if not isinstance(name, str) or not _IDENTIFIER.match(name.strip()):
        raise SchemaError(f"{name!r} is not a valid table or column name")
    return name.strip().lower()


def require_table(catalog: SchemaCatalog, table: str) -> str:
    table = check_identifier(table)
    if not catalog.has_table(table):
        raise SchemaError(f"table {table} is not in the schema catalog")
    return table


def require_column(catalog: SchemaCatalog, table: str, column: str) -> str:
    column = check_identifier(column)
    if not catalog.has_column(table, column):
        raise SchemaError(f"column {column} is not a column of table {table}")
    return column


def resolve_key(catalog: SchemaCatalog, table: str) -> str:
    """Return the first primary-key column of ``table``; the identifier every fragment selects."""
    table = require_table(catalog, table)
    keys = catalog.primary_key(table)
    if not keys:
        raise SchemaError(f"table {table} has no primary key")
    return check_identifier(keys[0])


def escape_regex(value: str) -> str:
    """Backslash-escape regex metacharacters so ``value`` matches itself literally."""
    return "".join("\\" + ch if ch in _REGEX_METACHARACTERS else ch for ch in value)


def _alternation(parts: Sequence[str]) -> str:
    if len(parts) == 1:
        return parts[0]
    return "(" + "|".join(parts) + ")"


def derive_group_pattern(mode: MatchMode, literals: Sequence[str]) -> str:
    """Build one anchored pattern matching a tag path iff it matches ANY literal under ``mode``.

    EXACT:  ^lit$
    PREFIX: ^lit(/.*)?$          (trailing slashes on the literal are ignored)
    WORD:   (^|/)lit(/|$)
    """
    if mode is MatchMode.EXACT:
        return "^" + _alternation([escape_regex(v) for v in literals]) + "$"
    if mode is MatchMode.PREFIX:
        return "^" + _alternation([escape_regex(v.rstrip("/")) for v in literals]) + "(/.*)?$"
    if mode is MatchMode.WORD:
        return "(^|/)" + _alternation([escape_regex(v) for v in literals]) + "(/|$)"
    raise ValueError(f"Unhandled match mode {mode!r}")


def join_regex_fragments(literals: Sequence[str]) -> str:
    """Alternation of caller-supplied regular expressions."""
    if len(literals) == 1:
        return literals[0]
    return "|".join(f"(?:{p})" for p in literals)


def _check_group(kind: GroupKind, literals: Sequence[str]) -> None:
    if not literals:
        raise ConfigurationError(f"{kind.value} groups cannot be empty")
    for literal in literals:
        if not isinstance(literal, str) or not literal.strip():
            raise ConfigurationError(f"{kind.value} group contains an empty value: {list(literals)!r}")


def compile_group_fragment(
    kind: GroupKind,
    table: str,
    literals: Sequence[str],
    *,
    catalog: SchemaCatalog,
    match_mode: Optional[MatchMode],
    regex_enabled: bool,
) -> CompiledFragment:
    """One group -> identifiers of ``table`` entities carrying any of ``literals``."""
    _check_group(kind, literals)
    source = group_source(kind)
    for source_table, source_column in source.required_columns:
        if not catalog.has_column(source_table, source_column):
            raise SchemaError(
                f"{kind.value} search needs column {source_table}.{source_column}, which is not in the schema catalog"
            )

    builder = SqlBuilder().append(source.select_sql + " WHERE ")
    if regex_enabled:
        builder.append(
            f"{source.value_column} ~* {PLACEHOLDER}",
            [QueryParam(join_regex_fragments(literals), SemanticType.STRING)],
        )
    elif kind is GroupKind.TAG:
        if match_mode is None:
            raise ConfigurationError("tag search needs a match mode (exact, prefix or word) when regex is off")
        builder.append(
            f"{source.value_column} ~* {PLACEHOLDER}",
            [QueryParam(derive_group_pattern(match_mode, literals), SemanticType.STRING)],
        )
    elif kind is GroupKind.ATTRIBUTE:
        # attributes are flat values: exact, case-insensitive equality
        builder.append(
            f"UPPER({source.value_column}) IN ({folded_placeholders(len(literals))})",
            [QueryParam(v, SemanticType.STRING) for v in literals],
        )
    else:
        raise ValueError(f"Unhandled group kind {kind!r}")
    builder.append(
        f" AND UPPER({source.class_column}) = {folded_placeholders(1)}",
        [QueryParam(table, SemanticType.STRING)],
    )
    return builder.build()


def compile_column_fragment(
    table: str,
    key: str,
    column: str,
    values: Sequence[Any],
    *,
    catalog: SchemaCatalog,
    regex_enabled: bool,
) -> CompiledFragment:
    """One column filter -> identifiers of rows whose ``column`` equals (or matches) any value."""
    column = require_column(catalog, table, column)
    if not values:
        raise ConfigurationError(f"column filter on {column} has no values")
    semantic_type = catalog.semantic_type(table, column)
    if semantic_type is None:
        raise TypeMismatchError(f"column {column} of table {table} has a type that cannot be searched")

    builder = SqlBuilder().append(f"SELECT {key} FROM {table} WHERE ")
    if semantic_type is SemanticType.STRING and regex_enabled:
        patterns = [coerce_literal(v, semantic_type, column=column) for v in values]
        clauses = " OR ".join([f"{column} ~* {PLACEHOLDER}"] * len(patterns))
        builder.append(f"({clauses})", [QueryParam(p, semantic_type) for p in patterns])
    elif semantic_type is SemanticType.STRING:
        literals = [coerce_literal(v, semantic_type, column=column) for v in values]
        builder.append(
            f"UPPER({column}) IN ({folded_placeholders(len(literals))})",
            [QueryParam(v, semantic_type) for v in literals],
        )
    else:
        literals = [coerce_literal(v, semantic_type, column=column) for v in values]
        builder.append(
            f"{column} IN ({placeholders(len(literals))})",
            [QueryParam(v, semantic_type) for v in literals],
        )
    return builder.build()


def compile_numeric_fragment(
    table: str,
    key: str,
    column: str,
    numeric: NumericFilter,
    *,
    catalog: SchemaCatalog,
) -> CompiledFragment:
    """Tolerance search: ``column`` within ``[c + lower, c + upper]`` for any centre ``c``."""
    column = require_column(catalog, table, column)
    semantic_type = catalog.semantic_type(table, column)
    if semantic_type not in NUMERIC_TYPES:
        raise TypeMismatchError(f"numeric range search needs a numeric column; {column} is not")
    if not numeric.values:
        raise ConfigurationError(f"numeric filter on {column} has no values")
    if numeric.lower > numeric.upper:
        raise ConfigurationError(
            f"numeric range on {column} has lower bound {numeric.lower} above upper bound {numeric.upper}"
        )

    params: List[QueryParam] = []
    for low, high in numeric.windows():
        params.append(QueryParam(coerce_literal(low, SemanticType.DOUBLE, column=column), SemanticType.DOUBLE))
        params.append(QueryParam(coerce_literal(high, SemanticType.DOUBLE, column=column), SemanticType.DOUBLE))
    clauses = " OR ".join([f"{column} BETWEEN {PLACEHOLDER} AND {PLACEHOLDER}"] * len(numeric.values))
    return SqlBuilder().append(f"SELECT {key} FROM {table} WHERE ({clauses})", params).build()


def compile_fragments(table: str, criteria: SearchCriteria, catalog: SchemaCatalog) -> List[CompiledFragment]:
    """Compile every criterion into fragments: tags, attributes, column filters, numeric filters."""
    key = resolve_key(catalog, table)
    table = check_identifier(table)
    fragments: List[CompiledFragment] = []

    for kind, groups in ((GroupKind.TAG, criteria.tag_groups), (GroupKind.ATTRIBUTE, criteria.attribute_groups)):
        for literals in groups:
            fragments.append(
                compile_group_fragment(
                    kind,
                    table,
                    literals,
                    catalog=catalog,
                    match_mode=criteria.match_mode,
                    regex_enabled=criteria.regex_enabled,
                )
            )

    for column, values in criteria.column_filters.items():
        fragments.append(
            compile_column_fragment(table, key, column, values, catalog=catalog, regex_enabled=criteria.regex_enabled)
        )

    for column, numeric in criteria.numeric_filters.items():
        fragments.append(compile_numeric_fragment(table, key, column, numeric, catalog=catalog))

    log.debug("compiled %d fragments for table %s", len(fragments), table)
    return fragments
