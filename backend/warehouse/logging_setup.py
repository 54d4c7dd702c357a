# backend/warehouse/logging_setup.py
from __future__ import annotations

import logging
import os
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

REPO_ROOT = Path(__file__).resolve().parents[2]

SQL_LOGGERS = ("warehouse.compiler", "warehouse.composer", "warehouse.binder")


class DateSizeRotatingFileHandler(RotatingFileHandler):
    """
    Like RotatingFileHandler, but when size is exceeded it creates a NEW file
    whose name includes the current date/time (instead of .1, .2, ...).
    """

    def __init__(
        self,
        directory: Path,
        prefix: str = "warehouse",
        max_bytes: int = 1_000_000,
        encoding: str = "utf-8",
        errors: str = "replace",
    ):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self.prefix = prefix
        super().__init__(self._new_filename(), maxBytes=max_bytes, backupCount=0, encoding=encoding, errors=errors)

    def _new_filename(self) -> str:
        # milliseconds avoid collisions when rolling more than once per second
        ts = datetime.now().strftime("%Y%m%d-%H%M%S-%f")[:-3]
        return str(self.directory / f"{self.prefix}-{ts}.log")

    def doRollover(self) -> None:
        """Open a brand-new file with a fresh timestamped name when size threshold is hit."""
        if self.stream:
            self.stream.close()
            self.stream = None
        self.baseFilename = os.fspath(self._new_filename())
        self.mode = "a"
        self.stream = self._open()


def _coerce_level(level: Optional[str | int]) -> int:
    if isinstance(level, int):
        return level
    if isinstance(level, str):
        return getattr(logging, level.upper(), logging.INFO)
    env_level = os.getenv("LOG_LEVEL", "INFO")
    return getattr(logging, env_level.upper(), logging.INFO)


def start_log(
    *,
    app_name: str = "warehouse",
    log_dir: Optional[str | Path] = None,
    level: Optional[str | int] = None,
    to_console: bool = True,
    max_bytes: int = 1_000_000,
    sql_level: Optional[str | int] = None,
) -> logging.Logger:
    """
    Initialize logging for the whole backend.

    - Writes UTF-8 logs to LOG_DIR, or repo_root/var/logs by default.
    - Rotates when ~max_bytes is reached by starting a NEW timestamped file.
    - Configures the ROOT logger so every module using logging.getLogger(__name__)
      writes here after start_log() is called once.
    - ``sql_level`` (or LOG_SQL_LEVEL) sets the level of the compiler, composer and
      binder loggers, which log every compiled statement at DEBUG. Defaults to WARNING
      so search SQL stays out of the log unless asked for.

    Returns the configured root logger.
    """
    if log_dir is None:
        log_dir = os.getenv("LOG_DIR", None)
    if log_dir is None:
        log_dir = REPO_ROOT / "var" / "logs"
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    root.setLevel(_coerce_level(level))

    # Avoid duplicate handlers if start_log() gets called twice (e.g., dev reload)
    for h in list(root.handlers):
        root.removeHandler(h)
        h.close()

    file_handler = DateSizeRotatingFileHandler(
        directory=log_dir,
        prefix=app_name,
        max_bytes=max_bytes,
    )
    formatter = logging.Formatter(
        fmt="%(asctime)s %(levelname)s [%(process)d] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    file_handler.setFormatter(formatter)
    root.addHandler(file_handler)

    if to_console:
        console = logging.StreamHandler()
        console.setFormatter(formatter)
        console.setLevel(root.level)
        root.addHandler(console)

    sql_threshold = _coerce_level(sql_level if sql_level is not None else os.getenv("LOG_SQL_LEVEL", "WARNING"))
    for name in SQL_LOGGERS:
        logging.getLogger(name).setLevel(sql_threshold)

    root.info("Logging started app=%s dir=%s level=%s", app_name, str(log_dir), logging.getLevelName(root.level))
    return root
