# backend/warehouse/errors.py
from __future__ import annotations

import json

from flask import jsonify, request
from flask.signals import got_request_exception
from werkzeug.exceptions import HTTPException


class WarehouseError(Exception):
    """Base class for every error raised while compiling a search."""

    http_status = 400


class ConfigurationError(WarehouseError):
    """Malformed search criteria (empty group, missing match mode, bad range...)."""


class TypeMismatchError(WarehouseError):
    """A literal could not be coerced to the semantic type of its column."""


class SchemaError(WarehouseError):
    """A table or column is not present in the schema catalog."""

    http_status = 404


class BindingError(WarehouseError):
    """Placeholder and parameter counts diverged; this is a compiler defect."""

    http_status = 500


# note about app.logger: it propagates to the root logger configured by start_log(...),
# so these lines end up in the same rotating log files as every module logger.

def register_error_handlers(app):
    setup_signals(app)

    @app.errorhandler(WarehouseError)
    def handle_warehouse(e: WarehouseError):
        if e.http_status >= 500:
            app.logger.error("Search compiler failure on %s %s", request.method, request.path, exc_info=e)
        else:
            app.logger.warning("Rejected search on %s %s: %s", request.method, request.path, e)
        payload = {
            "ok": False,
            "error": type(e).__name__,
            "description": str(e),
            "path": request.path,
            "method": request.method,
        }
        return jsonify(payload), e.http_status

    @app.errorhandler(HTTPException)
    def handle_http(e: HTTPException):
        app.logger.warning("HTTP %s on %s %s", e.code, request.method, request.path, exc_info=e)
        resp = e.get_response()
        payload = {
            "ok": False,
            "error": e.name,
            "code": e.code,
            "description": e.description,
            "path": request.path,
            "method": request.method,
        }
        resp.data = json.dumps(payload)
        resp.content_type = "application/json"
        return resp

    @app.errorhandler(Exception)
    def handle_uncaught(e: Exception):
        app.logger.exception("Unhandled exception")
        return jsonify(ok=False, error="Internal Server Error"), 500

    @app.teardown_request
    def log_teardown(exc):
        if exc is not None:
            app.logger.exception("Teardown exception", exc_info=exc)
        return None


def setup_signals(app):
    def on_exc(sender, exception, **extra):
        app.logger.exception("Signal caught exception")
    got_request_exception.connect(on_exc, app)
