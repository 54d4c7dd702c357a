# backend/warehouse/config_loader.py
from __future__ import annotations

import json
import logging
import math
import sys
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Optional

log = logging.getLogger(__name__)

REPO_ROOT = Path(__file__).resolve().parents[2]
CONFIG_DIR = REPO_ROOT / "config"
CONFIG_PATH = CONFIG_DIR / "appconfig.json"

_NUMERIC_TOLERANCE_KEY = "numeric_tolerance"
_NUMERIC_TOLERANCE_DEFAULT = sys.float_info.epsilon  # 2.220446049250313e-16

_DEFAULT_LIMIT_KEY = "search_default_limit"
_DEFAULT_LIMIT_DEFAULT = 1000

_MAX_LIMIT_KEY = "search_max_limit"
_MAX_LIMIT_DEFAULT = 10000


def _read_json_file(path: Path) -> dict:
    """Read JSON from disk, returning an empty mapping on failure."""
    if not path.exists():
        log.debug("%s not found; using built-in defaults", path)
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except Exception:
        log.warning("Could not read %s; falling back to defaults", path, exc_info=True)
        return {}
    if not isinstance(data, dict):
        log.warning("%s does not contain a JSON object; falling back to defaults", path)
        return {}
    return data


def load_app_config(path: Optional[Path] = None) -> dict:
    """Return the raw JSON configuration for the application."""
    return _read_json_file(path or CONFIG_PATH)


def _coerce_positive_int(value: Any, fallback: Optional[int]) -> Optional[int]:
    """Convert unknown input into a positive integer, keeping ``fallback`` on bad input."""
    if isinstance(value, bool):
        return fallback
    try:
        numeric = float(value)
    except Exception:
        return fallback
    if not math.isfinite(numeric) or numeric <= 0:
        return fallback
    return int(numeric)


def get_numeric_tolerance(cfg: Optional[Mapping[str, Any]] = None) -> float:
    """Tolerance applied to numeric filters that arrive without an explicit range."""
    if cfg is None:
        cfg = load_app_config()
    raw = cfg.get(_NUMERIC_TOLERANCE_KEY) if isinstance(cfg, Mapping) else None
    if raw is None:
        return _NUMERIC_TOLERANCE_DEFAULT
    try:
        tolerance = abs(float(raw))
    except (TypeError, ValueError):
        log.warning("Invalid %s %r; using %s", _NUMERIC_TOLERANCE_KEY, raw, _NUMERIC_TOLERANCE_DEFAULT)
        return _NUMERIC_TOLERANCE_DEFAULT
    if not math.isfinite(tolerance):
        log.warning("Invalid %s %r; using %s", _NUMERIC_TOLERANCE_KEY, raw, _NUMERIC_TOLERANCE_DEFAULT)
        return _NUMERIC_TOLERANCE_DEFAULT
    return tolerance


def get_search_max_limit(cfg: Optional[Mapping[str, Any]] = None) -> int:
    """Upper bound on the row count a single HTTP search may request."""
    if cfg is None:
        cfg = load_app_config()
    raw = cfg.get(_MAX_LIMIT_KEY) if isinstance(cfg, Mapping) else None
    return _coerce_positive_int(raw, _MAX_LIMIT_DEFAULT) or _MAX_LIMIT_DEFAULT


def get_search_default_limit(cfg: Optional[Mapping[str, Any]] = None) -> Optional[int]:
    """Limit applied when an HTTP search omits one; ``null`` in the config means unlimited."""
    if cfg is None:
        cfg = load_app_config()
    if isinstance(cfg, Mapping) and _DEFAULT_LIMIT_KEY in cfg and cfg[_DEFAULT_LIMIT_KEY] is None:
        return None
    raw = cfg.get(_DEFAULT_LIMIT_KEY) if isinstance(cfg, Mapping) else None
    limit = _coerce_positive_int(raw, _DEFAULT_LIMIT_DEFAULT)
    return min(limit, get_search_max_limit(cfg)) if limit is not None else None


def initialize_app_config(app: Any, path: Optional[Path] = None) -> None:
    """Populate a Flask app instance with values derived from appconfig.json."""
    cfg = load_app_config(path)
    app.config.update(cfg)
    # Uppercase variants are what the blueprints read.
    app.config["NUMERIC_TOLERANCE"] = get_numeric_tolerance(cfg)
    app.config["SEARCH_DEFAULT_LIMIT"] = get_search_default_limit(cfg)
    app.config["SEARCH_MAX_LIMIT"] = get_search_max_limit(cfg)
