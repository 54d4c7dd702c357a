# backend/warehouse/main.py
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from flask import Flask, jsonify
from sqlalchemy.engine import Engine

from .catalog import SchemaCatalog
from .config_loader import initialize_app_config
from .db import ping_db
from .errors import register_error_handlers
from .logging_setup import start_log
from .search import EXTENSION_KEY, bp as bp_search, init_search

# Load backend/.env explicitly (does nothing if file doesn't exist)
DOTENV_PATH = Path(__file__).resolve().parents[1] / ".env"

log = logging.getLogger(__name__)


def create_app(
    *,
    engine: Optional[Engine] = None,
    catalog: Optional[SchemaCatalog] = None,
    configure_logging: bool = True,
    config_path: Optional[Path] = None,
) -> Flask:
    """Instantiate and fully configure the Flask application instance.

    ``engine`` defaults to the process-wide engine from :mod:`warehouse.db`;
    ``catalog`` is reflected from it on first use when omitted.
    """
    load_dotenv(DOTENV_PATH, override=False)
    if configure_logging:
        start_log(app_name="warehouse", level=logging.DEBUG if os.getenv("FLASK_ENV") == "development" else None)

    app = Flask(__name__)
    if os.getenv("FLASK_ENV") == "development":
        app.logger.setLevel(logging.DEBUG)
        log.debug("Start of logger debug level")

    init_search(app, engine=engine, catalog=catalog)
    app.register_blueprint(bp_search)

    @app.get("/api/health")
    def health():
        """Provide a quick database reachability check for monitoring."""
        ok = ping_db(app.extensions[EXTENSION_KEY].get("engine"))
        return jsonify(ok=ok), (200 if ok else 503)

    initialize_app_config(app, config_path)

    register_error_handlers(app)
    log.info("warehouse app created")
    return app
