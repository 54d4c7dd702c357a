"""Tests for fragment compilation: SQL shape, parameter order and error taxonomy."""

from __future__ import annotations

import uuid

import pytest

from warehouse.column_types import SemanticType
from warehouse.compiler import (
    PLACEHOLDER,
    CompiledFragment,
    GroupKind,
    QueryParam,
    SqlBuilder,
    compile_column_fragment,
    compile_fragments,
    compile_group_fragment,
    compile_numeric_fragment,
    resolve_key,
)
from warehouse.criteria import MatchMode, NumericFilter, SearchCriteria
from warehouse.errors import BindingError, ConfigurationError, SchemaError, TypeMismatchError


def _values(fragment: CompiledFragment):
    return [p.value for p in fragment.params]


class TestSqlBuilder:
    def test_keeps_sql_and_params_in_step(self):
        built = (
            SqlBuilder()
            .append("a = ?", [QueryParam(1, SemanticType.INTEGER)])
            .append(" AND b = ?", [QueryParam("x", SemanticType.STRING)])
            .build()
        )
        assert built.sql == "a = ? AND b = ?"
        assert _values(built) == [1, "x"]

    def test_count_mismatch(self):
        with pytest.raises(BindingError):
            SqlBuilder().append("a = ? AND b = ?", [QueryParam(1, SemanticType.INTEGER)])

    def test_join(self):
        parts = [CompiledFragment("x ?", (QueryParam(1, SemanticType.INTEGER),)), CompiledFragment("y")]
        built = SqlBuilder().join(" INTERSECT ", parts).build()
        assert built.sql == "x ? INTERSECT y"
        assert len(built.params) == 1


class TestResolveKey:
    def test_first_primary_key_column(self, catalog):
        assert resolve_key(catalog, "events") == "event_uuid"
        assert resolve_key(catalog, "tag_entities") == "tag_entity_uuid"

    def test_unknown_table(self, catalog):
        with pytest.raises(SchemaError):
            resolve_key(catalog, "nope")

    def test_table_without_key(self, catalog):
        with pytest.raises(SchemaError):
            resolve_key(catalog, "keyless")

    def test_injection_is_rejected(self, catalog):
        with pytest.raises(SchemaError):
            resolve_key(catalog, "events; DROP TABLE events")


class TestTagGroups:
    def test_exact_group(self, catalog):
        fragment = compile_group_fragment(
            GroupKind.TAG, "events", ["/Context/Indoors"], catalog=catalog, match_mode=MatchMode.EXACT, regex_enabled=False
        )
        assert fragment.sql == (
            "SELECT tag_entities.tag_entity_uuid FROM tag_entities"
            " INNER JOIN tags ON tag_entities.tag_entity_tag_uuid = tags.tag_uuid"
            " WHERE tags.tag_name ~* ? AND UPPER(tag_entities.tag_entity_class) = UPPER(?)"
        )
        assert _values(fragment) == ["^/Context/Indoors$", "events"]

    def test_group_is_one_pattern(self, catalog):
        fragment = compile_group_fragment(
            GroupKind.TAG, "events", ["/a", "/b"], catalog=catalog, match_mode=MatchMode.WORD, regex_enabled=False
        )
        assert fragment.sql.count(PLACEHOLDER) == 2
        assert _values(fragment)[0] == "(^|/)(/a|/b)(/|$)"

    def test_regex_mode_ignores_match_mode(self, catalog):
        fragment = compile_group_fragment(
            GroupKind.TAG, "events", ["^/A", "B$"], catalog=catalog, match_mode=None, regex_enabled=True
        )
        assert "tags.tag_name ~* ?" in fragment.sql
        assert "UPPER(tags.tag_name)" not in fragment.sql
        assert _values(fragment)[0] == "(?:^/A)|(?:B$)"

    def test_missing_match_mode(self, catalog):
        with pytest.raises(ConfigurationError):
            compile_group_fragment(GroupKind.TAG, "events", ["/a"], catalog=catalog, match_mode=None, regex_enabled=False)

    @pytest.mark.parametrize("literals", [[], [""], ["/a", "   "]])
    def test_empty_group_or_literal(self, catalog, literals):
        with pytest.raises(ConfigurationError):
            compile_group_fragment(
                GroupKind.TAG, "events", literals, catalog=catalog, match_mode=MatchMode.EXACT, regex_enabled=False
            )

    def test_missing_tag_tables(self, bare_catalog):
        with pytest.raises(SchemaError):
            compile_group_fragment(
                GroupKind.TAG, "events", ["/a"], catalog=bare_catalog, match_mode=MatchMode.EXACT, regex_enabled=False
            )


class TestAttributeGroups:
    def test_exact_case_insensitive_equality(self, catalog):
        fragment = compile_group_fragment(
            GroupKind.ATTRIBUTE, "events", ["moving", "still"], catalog=catalog, match_mode=MatchMode.PREFIX, regex_enabled=False
        )
        assert fragment.sql == (
            "SELECT attributes.attribute_entity_uuid FROM attributes"
            " WHERE UPPER(attributes.attribute_value) IN (UPPER(?), UPPER(?))"
            " AND UPPER(attributes.attribute_entity_class) = UPPER(?)"
        )
        assert _values(fragment) == ["moving", "still", "events"]

    def test_regex(self, catalog):
        fragment = compile_group_fragment(
            GroupKind.ATTRIBUTE, "events", ["^mov"], catalog=catalog, match_mode=None, regex_enabled=True
        )
        assert "attributes.attribute_value ~* ?" in fragment.sql
        assert _values(fragment)[0] == "^mov"


class TestColumnFilters:
    def test_string_folds_case(self, catalog):
        fragment = compile_column_fragment("events", "event_uuid", "event_tag", ["walk", "Run"], catalog=catalog, regex_enabled=False)
        assert fragment.sql == "SELECT event_uuid FROM events WHERE UPPER(event_tag) IN (UPPER(?), UPPER(?))"
        assert _values(fragment) == ["walk", "Run"]

    def test_string_regex(self, catalog):
        fragment = compile_column_fragment("events", "event_uuid", "event_tag", ["^w", "n$"], catalog=catalog, regex_enabled=True)
        assert fragment.sql == "SELECT event_uuid FROM events WHERE (event_tag ~* ? OR event_tag ~* ?)"
        assert _values(fragment) == ["^w", "n$"]

    def test_typed_literals(self, catalog):
        fragment = compile_column_fragment(
            "events", "event_uuid", "event_entity_uuid", ["0123456789abcdef0123456789abcdef"], catalog=catalog, regex_enabled=False
        )
        assert fragment.sql == "SELECT event_uuid FROM events WHERE event_entity_uuid IN (?)"
        assert _values(fragment) == [uuid.UUID("01234567-89ab-cdef-0123-456789abcdef")]
        assert fragment.params[0].semantic_type is SemanticType.UUID

    def test_integer_literals_are_parsed(self, catalog):
        fragment = compile_column_fragment("events", "event_uuid", "event_size", ["7", 8], catalog=catalog, regex_enabled=False)
        assert _values(fragment) == [7, 8]

    @pytest.mark.parametrize("column", ["event_count", "event_oid"])
    def test_non_numeric_literal(self, catalog, column):
        with pytest.raises(TypeMismatchError):
            compile_column_fragment("events", "event_uuid", column, ["abc"], catalog=catalog, regex_enabled=False)

    @pytest.mark.parametrize("column", ["event_labels", "event_shape"])
    def test_array_and_unsupported_columns(self, catalog, column):
        with pytest.raises(TypeMismatchError):
            compile_column_fragment("events", "event_uuid", column, ["x"], catalog=catalog, regex_enabled=False)

    def test_unknown_column(self, catalog):
        with pytest.raises(SchemaError):
            compile_column_fragment("events", "event_uuid", "nope", ["x"], catalog=catalog, regex_enabled=False)

    def test_no_values(self, catalog):
        with pytest.raises(ConfigurationError):
            compile_column_fragment("events", "event_uuid", "event_tag", [], catalog=catalog, regex_enabled=False)


class TestNumericFilters:
    def test_windows_become_between_clauses(self, catalog):
        numeric = NumericFilter(values=(1.0, 5.0), lower=-0.5, upper=0.25)
        fragment = compile_numeric_fragment("events", "event_uuid", "event_start_time", numeric, catalog=catalog)
        assert fragment.sql == (
            "SELECT event_uuid FROM events WHERE"
            " (event_start_time BETWEEN ? AND ? OR event_start_time BETWEEN ? AND ?)"
        )
        assert _values(fragment) == [0.5, 1.25, 4.5, 5.25]
        assert all(p.semantic_type is SemanticType.DOUBLE for p in fragment.params)

    @pytest.mark.parametrize("column", ["event_size", "event_count", "event_score"])
    def test_numeric_column_types(self, catalog, column):
        numeric = NumericFilter(values=(1.0,), lower=0.0, upper=0.0)
        compile_numeric_fragment("events", "event_uuid", column, numeric, catalog=catalog)

    def test_non_numeric_column(self, catalog):
        with pytest.raises(TypeMismatchError):
            compile_numeric_fragment(
                "events", "event_uuid", "event_tag", NumericFilter((1.0,), 0.0, 0.0), catalog=catalog
            )

    def test_inverted_range(self, catalog):
        with pytest.raises(ConfigurationError):
            compile_numeric_fragment(
                "events", "event_uuid", "event_score", NumericFilter((1.0,), 1.0, -1.0), catalog=catalog
            )

    def test_no_values(self, catalog):
        with pytest.raises(ConfigurationError):
            compile_numeric_fragment("events", "event_uuid", "event_score", NumericFilter((), 0.0, 0.0), catalog=catalog)


class TestCompileFragments:
    def test_fixed_order(self, catalog):
        criteria = SearchCriteria.build(
            numeric={"event_score": {"values": [1.0], "range": [0, 0]}},
            columns={"event_tag": ["walk"]},
            attributes=[["moving"]],
            tags=[["/a"], ["/b"]],
            match="exact",
        )
        fragments = compile_fragments("events", criteria, catalog)
        assert len(fragments) == 5
        assert fragments[0].sql.startswith("SELECT tag_entities.")
        assert fragments[1].sql.startswith("SELECT tag_entities.")
        assert fragments[2].sql.startswith("SELECT attributes.")
        assert "UPPER(event_tag)" in fragments[3].sql
        assert "BETWEEN" in fragments[4].sql

    def test_empty_criteria(self, catalog):
        assert compile_fragments("events", SearchCriteria(), catalog) == []
