# backend/warehouse/db.py
from __future__ import annotations

import logging
import os
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import quote_plus

from dotenv import load_dotenv
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine

from .binder import BoundStatement

log = logging.getLogger(__name__)

# Module-level singletons
_ENGINE: Optional[Engine] = None
_INIT_LOCK = threading.Lock()

# Resolve paths based on this file's location:
#   repo_root/backend/warehouse/db.py  -> parents[2] == repo_root
REPO_ROOT = Path(__file__).resolve().parents[2]
BACKEND_DIR = REPO_ROOT / "backend"
BACKEND_ENV = BACKEND_DIR / ".env"
ROOT_ENV = REPO_ROOT / ".env"


def _load_env_once() -> None:
    """Load env files if present. Safe to call multiple times."""
    # backend/.env first (app runtime), then root .env, without overwriting existing env
    if BACKEND_ENV.exists():
        log.debug("loading /backend/.env")
        load_dotenv(BACKEND_ENV, override=False)
    if ROOT_ENV.exists():
        log.debug("loading root/.env")
        load_dotenv(ROOT_ENV, override=False)


def build_db_url() -> str:
    """
    Decide the effective DATABASE_URL.
    Precedence:
      1) DATABASE_URL
      2) DB_* envs (falling back to the standard PG* names)
    """
    _load_env_once()

    url = os.getenv("DATABASE_URL")
    if url:
        return url

    user = os.getenv("DB_USER") or os.getenv("PGUSER") or "postgres"
    pwd = os.getenv("DB_PASSWORD") or os.getenv("PGPASSWORD") or ""
    name = os.getenv("DB_NAME") or os.getenv("PGDATABASE") or "warehouse"
    host = os.getenv("DB_HOST") or os.getenv("PGHOST") or "127.0.0.1"
    port = os.getenv("DB_PORT") or os.getenv("PGPORT") or "5432"

    # URL-encode password in case it has special chars
    safe_pwd = quote_plus(pwd)

    # SQLAlchemy 2.x psycopg (v3) driver
    return f"postgresql+psycopg://{user}:{safe_pwd}@{host}:{port}/{name}"


def get_engine() -> Engine:
    """
    Return a process-wide SQLAlchemy Engine (with pooling).
    Creates it on first use, thread-safe.
    """
    global _ENGINE
    if _ENGINE is not None:
        return _ENGINE

    with _INIT_LOCK:
        if _ENGINE is not None:
            return _ENGINE

        db_url = build_db_url()

        echo = bool(int(os.getenv("SQLALCHEMY_ECHO", "0")))
        pool_size = int(os.getenv("SQLALCHEMY_POOL_SIZE", "5"))
        max_overflow = int(os.getenv("SQLALCHEMY_MAX_OVERFLOW", "10"))
        pool_pre_ping = bool(int(os.getenv("SQLALCHEMY_POOL_PRE_PING", "1")))

        log.info("Creating DB engine echo=%s pool_size=%s max_overflow=%s pre_ping=%s",
                 echo, pool_size, max_overflow, pool_pre_ping)

        _ENGINE = create_engine(
            db_url,
            echo=echo,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_pre_ping=pool_pre_ping,
        )
        return _ENGINE


def ping_db(engine: Optional[Engine] = None) -> bool:
    """Quick health check."""
    try:
        with (engine or get_engine()).connect() as conn:
            conn.execute(text("select 1"))
        return True
    except Exception:
        log.exception("DB ping failed")
        return False


def fetch_rows(connection: Any, bound: BoundStatement) -> List[Dict[str, Any]]:
    """Execute a bound search statement on a Connection and return dict rows."""
    result = connection.execute(bound.clause)
    rows = [dict(row) for row in result.mappings().all()]
    log.debug("statement returned %d rows", len(rows))
    return rows
