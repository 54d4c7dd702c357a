# backend/warehouse/cli.py
# run it from the repo root or backend/. It uses your backend/.env (DATABASE_URL) unless --db-url is given.

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine

from .binder import bind_statement
from .catalog import SchemaCatalog, StaticSchemaCatalog, reflect_schema_catalog
from .composer import compile_search
from .config_loader import get_numeric_tolerance, load_app_config
from .criteria import SearchCriteria
from .db import build_db_url, fetch_rows
from .errors import ConfigurationError, WarehouseError

log = logging.getLogger(__name__)


def _split_group(raw: str) -> List[str]:
    return raw.split("|")


def _parse_columns(pairs: Sequence[str]) -> Dict[str, List[str]]:
    columns: Dict[str, List[str]] = {}
    for pair in pairs:
        if "=" not in pair:
            raise ConfigurationError(f"--column expects col=value, got {pair!r}")
        column, value = pair.split("=", 1)
        columns.setdefault(column.strip(), []).append(value)
    return columns


def _parse_numeric(pairs: Sequence[str], bounds: Optional[Sequence[float]]) -> Dict[str, object]:
    numeric: Dict[str, object] = {}
    for pair in pairs:
        if "=" not in pair:
            raise ConfigurationError(f"--numeric expects col=v1,v2,..., got {pair!r}")
        column, values = pair.split("=", 1)
        centres = [v.strip() for v in values.split(",") if v.strip()]
        spec: Dict[str, object] = {"values": centres}
        if bounds is not None:
            spec["range"] = list(bounds)
        numeric[column.strip()] = spec
    return numeric


def _load_catalog_file(path: Path) -> StaticSchemaCatalog:
    """{"columns": {table: {column: type}}, "primary_keys": {table: [column, ...]}}"""
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise ConfigurationError(f"Could not read catalog file {path}: {exc}") from exc
    if not isinstance(data, dict) or not isinstance(data.get("columns"), dict):
        raise ConfigurationError(f"Catalog file {path} needs a 'columns' object")
    return StaticSchemaCatalog(data["columns"], data.get("primary_keys") or {})


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="warehouse-search", description="Search warehouse tables by tags, attributes and columns")
    ap.add_argument("--table", help="Table to search (e.g. events)")
    ap.add_argument("--db-url", help="SQLAlchemy URL (default: DATABASE_URL / DB_* env)")
    ap.add_argument("--catalog", type=Path, help="JSON schema catalog to use instead of reflecting the database")
    ap.add_argument("--tag", action="append", default=[], help="One tag group; separate alternatives with '|'")
    ap.add_argument("--attribute", action="append", default=[], help="One attribute group; separate alternatives with '|'")
    ap.add_argument("--column", action="append", default=[], metavar="COL=VALUE", help="Column filter, repeatable")
    ap.add_argument("--numeric", action="append", default=[], metavar="COL=V1,V2", help="Numeric centre values")
    ap.add_argument("--range", nargs=2, type=float, metavar=("LOWER", "UPPER"), help="Window added to every numeric value")
    ap.add_argument("--match", choices=["exact", "prefix", "word"], help="Tag match mode")
    ap.add_argument("--regex", action="store_true", help="Treat tags, attributes and string columns as regular expressions")
    ap.add_argument("--limit", type=int, help="Maximum number of rows")
    ap.add_argument("--show-sql", action="store_true", help="Print the bound SQL and parameters instead of running it")
    ap.add_argument("--list-tables", action="store_true", help="Print the schema catalog and exit")
    ap.add_argument("--log-level", default="WARNING", help="Console log level (default: WARNING)")
    return ap


def _criteria_from_args(args: argparse.Namespace) -> SearchCriteria:
    return SearchCriteria.build(
        tags=[_split_group(t) for t in args.tag] or None,
        attributes=[_split_group(a) for a in args.attribute] or None,
        columns=_parse_columns(args.column) or None,
        numeric=_parse_numeric(args.numeric, args.range) or None,
        match=args.match,
        regex=args.regex,
        limit=args.limit,
        default_tolerance=get_numeric_tolerance(load_app_config()),
    )


def _describe_catalog(catalog: SchemaCatalog) -> Dict[str, Dict[str, object]]:
    described: Dict[str, Dict[str, object]] = {}
    for table in catalog.tables():
        described[table] = {
            "primary_key": catalog.primary_key(table),
            "columns": {name: (kind.value if kind is not None else None) for name, kind in catalog.columns(table).items()},
        }
    return described


def run(args: argparse.Namespace, out=None) -> int:
    out = out or sys.stdout
    engine: Optional[Engine] = None

    def _engine() -> Engine:
        nonlocal engine
        if engine is None:
            engine = create_engine(args.db_url or build_db_url(), pool_pre_ping=True)
        return engine

    try:
        catalog = _load_catalog_file(args.catalog) if args.catalog else None

        if args.list_tables:
            catalog = catalog or reflect_schema_catalog(_engine())
            out.write(json.dumps(_describe_catalog(catalog), indent=2) + "\n")
            return 0

        if not args.table:
            raise ConfigurationError("--table is required unless --list-tables is given")

        criteria = _criteria_from_args(args)
        catalog = catalog or reflect_schema_catalog(_engine())
        bound = bind_statement(compile_search(args.table, criteria, catalog))

        if args.show_sql:
            out.write(json.dumps({"sql": bound.sql, "params": bound.params}, indent=2, default=str) + "\n")
            return 0

        with _engine().connect() as conn:
            rows = fetch_rows(conn, bound)
        out.write(json.dumps(rows, indent=2, default=str) + "\n")
        return 0
    finally:
        if engine is not None:
            engine.dispose()


def main(argv: Optional[Sequence[str]] = None) -> int:
    ap = build_parser()
    args = ap.parse_args(argv)
    logging.basicConfig(level=getattr(logging, str(args.log_level).upper(), logging.WARNING))
    try:
        return run(args)
    except WarehouseError as exc:
        log.debug("search failed", exc_info=True)
        print(f"{type(exc).__name__}: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
