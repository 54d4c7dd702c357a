# backend/warehouse/search.py
"""Search service and its HTTP surface.

The service functions compile, bind and execute one statement each. The Flask
blueprint below exposes them under ``/api``; schema and criteria errors raised
while compiling propagate to the handlers in :mod:`warehouse.errors`.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import replace
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional

from flask import Blueprint, current_app, jsonify, request
from sqlalchemy.engine import Engine

from .binder import bind_statement
from .catalog import SchemaCatalog, reflect_schema_catalog
from .composer import (
    compile_extraction,
    compile_identifier_lookup,
    compile_search,
    unique_extracted_ids,
)
from .criteria import SearchCriteria
from .db import fetch_rows, get_engine
from .errors import ConfigurationError

log = logging.getLogger(__name__)

bp = Blueprint("search", __name__, url_prefix="/api")

EXTENSION_KEY = "warehouse"


def _normalize_db_row(row: Mapping[str, Any]) -> Dict[str, Any]:
    """Return a JSON-serializable copy of a database row."""
    normalized: Dict[str, Any] = {}
    for key, value in dict(row).items():
        normalized[key] = _normalize_value(value)
    return normalized


def _normalize_value(value: Any) -> Any:
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (list, tuple)):
        return [_normalize_value(v) for v in value]
    return value


def _resolve(engine: Optional[Engine], catalog: Optional[SchemaCatalog]):
    engine = engine or get_engine()
    if catalog is None:
        catalog = reflect_schema_catalog(engine)
    return engine, catalog


def search_rows(
    table: str,
    criteria: SearchCriteria,
    *,
    engine: Optional[Engine] = None,
    catalog: Optional[SchemaCatalog] = None,
) -> List[Dict[str, Any]]:
    """Run one search against ``table`` and return its rows as dicts.

    When ``catalog`` is omitted it is reflected from ``engine`` for this call.
    """
    engine, catalog = _resolve(engine, catalog)
    bound = bind_statement(compile_search(table, criteria, catalog))
    with engine.connect() as conn:
        rows = fetch_rows(conn, bound)
    log.info("search on %s returned %d rows", table, len(rows))
    return rows


def extract_rows(
    table: str,
    inner: SearchCriteria,
    outer: SearchCriteria,
    lower: float,
    upper: float,
    *,
    engine: Optional[Engine] = None,
    catalog: Optional[SchemaCatalog] = None,
    limit: Optional[int] = None,
) -> List[Dict[str, Any]]:
    """Rows matching ``inner`` with the ids of their related ``outer`` rows in ``extracted``."""
    engine, catalog = _resolve(engine, catalog)
    bound = bind_statement(compile_extraction(table, inner, outer, lower, upper, catalog, limit=limit))
    with engine.connect() as conn:
        rows = fetch_rows(conn, bound)
    log.info("extraction on %s returned %d rows", table, len(rows))
    return rows


def extract_unique_rows(
    table: str,
    rows: Iterable[Mapping[str, Any]],
    *,
    engine: Optional[Engine] = None,
    catalog: Optional[SchemaCatalog] = None,
    limit: Optional[int] = None,
) -> List[Dict[str, Any]]:
    """Fetch every row referenced by the ``extracted`` arrays of ``rows``, once each."""
    identifiers = unique_extracted_ids(rows)
    if not identifiers:
        return []
    engine, catalog = _resolve(engine, catalog)
    bound = bind_statement(compile_identifier_lookup(table, identifiers, catalog, limit=limit))
    with engine.connect() as conn:
        found = fetch_rows(conn, bound)
    log.info("unique extraction on %s returned %d rows", table, len(found))
    return found


def init_search(app: Any, *, engine: Optional[Engine] = None, catalog: Optional[SchemaCatalog] = None) -> None:
    """Attach the engine and (optionally) a fixed catalog to ``app``."""
    app.extensions[EXTENSION_KEY] = {"engine": engine, "catalog": catalog}


def _state() -> Dict[str, Any]:
    return current_app.extensions.setdefault(EXTENSION_KEY, {"engine": None, "catalog": None})


def _current_engine() -> Engine:
    state = _state()
    if state.get("engine") is None:
        state["engine"] = get_engine()
    return state["engine"]


def _current_catalog() -> SchemaCatalog:
    # Reflected once per app; schema changes need a restart.
    state = _state()
    if state.get("catalog") is None:
        state["catalog"] = reflect_schema_catalog(_current_engine())
    return state["catalog"]


def _request_limit(raw: Any) -> Optional[int]:
    """Apply the configured default and clamp to the configured maximum."""
    max_limit = current_app.config.get("SEARCH_MAX_LIMIT")
    if raw is None:
        limit = current_app.config.get("SEARCH_DEFAULT_LIMIT")
    else:
        limit = SearchCriteria.build(limit=raw).limit
    if max_limit and (limit is None or limit > max_limit):
        limit = max_limit
    return limit


def _criteria_from_body(body: Any, *, with_limit: bool) -> SearchCriteria:
    tolerance = current_app.config.get("NUMERIC_TOLERANCE", 0.0)
    if body is not None and not isinstance(body, Mapping):
        raise ConfigurationError("Search criteria must be a JSON object")
    payload = dict(body or {})
    if not with_limit and "limit" in payload:
        # extraction criteria are fragments of one statement; only the top-level limit applies
        raise ConfigurationError("limit is not accepted inside extraction criteria; set it at the top level")
    raw_limit = payload.pop("limit", None)
    criteria = SearchCriteria.from_mapping(payload, default_tolerance=tolerance)
    if with_limit:
        criteria = replace(criteria, limit=_request_limit(raw_limit))
    return criteria


def _json_body() -> Dict[str, Any]:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError("Request body must be a JSON object")
    return data


@bp.route("/search/<table>", methods=["POST"])
def search_api(table: str):
    """
    POST /api/search/<table>
    JSON body:
      {
        "tags": [["/Context/Indoors"], ["/Motion"]],   # optional
        "attributes": [["moving"]],                    # optional
        "columns": {"event_tag": ["x", "y"]},          # optional
        "numeric": {"event_start_time": {"values": [1.0], "range": [-1e-9, 1e-9]}},
        "match": "exact" | "prefix" | "word",
        "regex": false,
        "limit": 100
      }

    Response:
      { "ok": true, "data": [...] } on success
      { "ok": false, "error": "...", "description": "..." } on failure
    """
    criteria = _criteria_from_body(_json_body(), with_limit=True)
    rows = search_rows(table, criteria, engine=_current_engine(), catalog=_current_catalog())
    return jsonify(ok=True, data=[_normalize_db_row(r) for r in rows])


@bp.route("/extract/<table>", methods=["POST"])
def extract_api(table: str):
    """
    POST /api/extract/<table>
    JSON body: {"in": {criteria}, "out": {criteria}, "range": [lower, upper],
                "limit": 100, "unique": false}

    With ``unique`` the related rows themselves are returned, each once.
    """
    body = _json_body()
    known = {"in", "out", "range", "limit", "unique"}
    unknown = sorted(str(k) for k in body if k not in known)
    if unknown:
        raise ConfigurationError(f"Unknown extraction keys: {', '.join(unknown)}")
    bounds = body.get("range")
    if not isinstance(bounds, (list, tuple)) or len(bounds) != 2:
        raise ConfigurationError("range must be [lower, upper]")

    inner = _criteria_from_body(body.get("in"), with_limit=False)
    outer = _criteria_from_body(body.get("out"), with_limit=False)
    limit = _request_limit(body.get("limit"))
    engine = _current_engine()
    catalog = _current_catalog()

    rows = extract_rows(table, inner, outer, bounds[0], bounds[1], engine=engine, catalog=catalog, limit=limit)
    if body.get("unique"):
        rows = extract_unique_rows(table, rows, engine=engine, catalog=catalog, limit=limit)
    return jsonify(ok=True, data=[_normalize_db_row(r) for r in rows])


@bp.route("/tables", methods=["GET"])
def tables_api():
    """GET /api/tables -> {"ok": true, "data": {table: {column: type-or-null}}}"""
    catalog = _current_catalog()
    data: Dict[str, Dict[str, Optional[str]]] = {}
    for table in catalog.tables():
        columns = catalog.columns(table)
        data[table] = {name: (kind.value if kind is not None else None) for name, kind in columns.items()}
    return jsonify(ok=True, data=data)
