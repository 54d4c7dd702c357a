"""Shared pytest fixtures: an in-memory SQLite database and hand-built schema catalogs."""

from __future__ import annotations

import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.pool import StaticPool

from warehouse.catalog import StaticSchemaCatalog
from warehouse.column_types import SemanticType

EVENT_ROWS = [
    # event_id, entity, tag, start, end, count
    (1, "entity-a", "walk", 1.0, 2.0, 10),
    (2, "entity-a", "run", 1.0000001, 3.0, 20),
    (3, "entity-a", "Walk", 5.0, 6.0, 30),
    (4, "entity-b", "sit", 1.0, 1.5, 40),
    (5, "entity-b", "walk", 9.0, 9.5, 50),
]

ATTRIBUTE_ROWS = [
    # entity (event_id), entity class, value
    (1, "events", "moving"),
    (1, "events", "indoors"),
    (3, "events", "Moving"),
    (4, "events", "indoors"),
    (5, "events", "outdoors"),
    (2, "elements", "moving"),
]


def _create_events(conn, rows) -> None:
    conn.execute(
        text(
            """
            CREATE TABLE events (
                event_id INTEGER PRIMARY KEY,
                event_entity_uuid VARCHAR(64) NOT NULL,
                event_tag VARCHAR(64),
                event_start_time FLOAT NOT NULL,
                event_end_time FLOAT NOT NULL,
                event_count BIGINT
            )
            """
        )
    )
    conn.execute(
        text(
            "INSERT INTO events (event_id, event_entity_uuid, event_tag, event_start_time, event_end_time, event_count)"
            " VALUES (:id, :entity, :tag, :start, :end, :count)"
        ),
        [{"id": i, "entity": e, "tag": t, "start": s, "end": en, "count": c} for i, e, t, s, en, c in rows],
    )


@pytest.fixture
def event_rows():
    """The rows every events table built by these fixtures starts with."""
    return list(EVENT_ROWS)


@pytest.fixture
def load_events(event_rows):
    """Callable creating and filling the ``events`` table on any engine."""

    def load(engine) -> None:
        with engine.begin() as conn:
            _create_events(conn, event_rows)

    return load


@pytest.fixture
def sqlite_engine(load_events):
    """In-memory SQLite engine holding a small ``events`` table.

    StaticPool keeps the single connection alive so every ``connect()`` sees the data.
    """
    engine = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    load_events(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def attribute_engine(sqlite_engine):
    """``sqlite_engine`` plus an ``attributes`` table keyed by ``events.event_id``."""
    with sqlite_engine.begin() as conn:
        conn.execute(
            text(
                """
                CREATE TABLE attributes (
                    attribute_entity_uuid INTEGER NOT NULL,
                    attribute_entity_class VARCHAR(64) NOT NULL,
                    attribute_value VARCHAR(64) NOT NULL
                )
                """
            )
        )
        conn.execute(
            text("INSERT INTO attributes VALUES (:entity, :cls, :value)"),
            [{"entity": e, "cls": c, "value": v} for e, c, v in ATTRIBUTE_ROWS],
        )
    return sqlite_engine


def _event_columns():
    return {
        "event_uuid": SemanticType.UUID,
        "event_entity_uuid": SemanticType.UUID,
        "event_tag": SemanticType.STRING,
        "event_labels": SemanticType.ARRAY,
        "event_count": SemanticType.BIGINT,
        "event_size": SemanticType.INTEGER,
        "event_oid": SemanticType.OID,
        "event_score": SemanticType.DOUBLE,
        "event_start_time": SemanticType.DOUBLE,
        "event_end_time": SemanticType.DOUBLE,
        "event_created": SemanticType.TIMESTAMP,
        "event_shape": None,
    }


@pytest.fixture
def catalog():
    """Catalog resembling the production schema: events plus the tag and attribute tables."""
    return StaticSchemaCatalog(
        {
            "events": _event_columns(),
            "elements": {
                "element_uuid": "uuid",
                "element_name": "text",
            },
            "tags": {
                "tag_uuid": "uuid",
                "tag_name": "character varying",
            },
            "tag_entities": {
                "tag_entity_uuid": "uuid",
                "tag_entity_tag_uuid": "uuid",
                "tag_entity_class": "character varying",
            },
            "attributes": {
                "attribute_entity_uuid": "uuid",
                "attribute_entity_class": "character varying",
                "attribute_value": "text",
            },
            "keyless": {
                "name": "text",
            },
        },
        primary_keys={
            "events": ["event_uuid"],
            "elements": ["element_uuid"],
            "tags": ["tag_uuid"],
            "tag_entities": ["tag_entity_uuid", "tag_entity_tag_uuid"],
            "attributes": ["attribute_entity_uuid"],
        },
    )


@pytest.fixture
def bare_catalog():
    """Catalog with the events table only (no tag or attribute tables)."""
    return StaticSchemaCatalog({"events": _event_columns()}, primary_keys={"events": ["event_uuid"]})
