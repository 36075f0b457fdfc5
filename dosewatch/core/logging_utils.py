from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Any, Mapping

LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def level_of(name: Any) -> int:
    """'info' / 'INFO' / 20 -> 20. Unknown names raise ValueError."""
    if isinstance(name, int) and not isinstance(name, bool):
        return name
    level = logging.getLevelName(str(name).upper())
    if not isinstance(level, int):
        raise ValueError(f"unknown log level {name!r}")
    return level


def _file_handler(cfg: Any) -> RotatingFileHandler:
    path = cfg.LOG_FILE
    log_dir = os.path.dirname(path)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
    fh = RotatingFileHandler(
        path,
        maxBytes=getattr(cfg, "LOG_MAX_BYTES", 5_000_000),
        backupCount=getattr(cfg, "LOG_BACKUPS", 10),
        encoding="utf-8",
    )
    fh.setLevel(logging.DEBUG)
    return fh


def apply_levels(levels: Mapping[str, Any]) -> None:
    for name, level in levels.items():
        logging.getLogger(name).setLevel(level_of(level))


def setup_logging(cfg: Any) -> logging.Logger:
    """
    File (DEBUG, rotating at LOG_FILE) plus console (CONSOLE_LOG_LEVEL) on the
    "dosewatch" logger, then LOG_LEVELS per component.
    """
    fmt = logging.Formatter(LOG_FORMAT, DATE_FORMAT)

    fh = _file_handler(cfg)
    fh.setFormatter(fmt)

    ch = logging.StreamHandler()
    ch.setFormatter(fmt)
    ch.setLevel(level_of(getattr(cfg, "CONSOLE_LOG_LEVEL", "INFO")))

    app = logging.getLogger("dosewatch")
    app.setLevel(logging.DEBUG)
    for h in list(app.handlers):
        app.removeHandler(h)
        h.close()
    app.addHandler(fh)
    app.addHandler(ch)
    app.propagate = False

    apply_levels(getattr(cfg, "LOG_LEVELS", {}) or {})
    return app


def kv(**kwargs: Any) -> str:
    """Key=value compact formatting (values repr()'d for clarity)."""
    return " ".join(f"{k}={v!r}" for k, v in kwargs.items())
