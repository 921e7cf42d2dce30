"""Logging setup for the relay.

Console output plus a daily rolling file under the temp directory
(``<tmp>/warelay/warelay-YYYY-MM-DD.log``). Files older than a day
are pruned when logging is configured.
"""
from __future__ import annotations

import logging
import os
import tempfile
import time
from datetime import date
from pathlib import Path

DEFAULT_LOG_DIR = Path(tempfile.gettempdir()) / "warelay"
LOG_PREFIX = "warelay"
LOG_SUFFIX = ".log"
MAX_LOG_AGE_SECONDS = 24 * 60 * 60

LOG_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"

_LEVELS = {
    "silent": logging.CRITICAL + 10,
    "fatal": logging.CRITICAL,
    "critical": logging.CRITICAL,
    "error": logging.ERROR,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
    "trace": logging.DEBUG,
}

_file_handler: logging.Handler | None = None


def normalize_level(level: str | None, *, verbose: bool = False) -> int:
    """Map a level name to a logging level; unknown names mean INFO."""
    if verbose:
        return logging.DEBUG
    return _LEVELS.get((level or "info").strip().lower(), logging.INFO)


def default_rolling_path(today: date | None = None) -> Path:
    day = (today or date.today()).isoformat()
    return DEFAULT_LOG_DIR / f"{LOG_PREFIX}-{day}{LOG_SUFFIX}"


def prune_old_logs(log_dir: Path = DEFAULT_LOG_DIR, now: float | None = None) -> int:
    """Delete rolling log files older than a day. Returns the count removed."""
    if not log_dir.is_dir():
        return 0
    cutoff = (now if now is not None else time.time()) - MAX_LOG_AGE_SECONDS
    removed = 0
    for entry in log_dir.iterdir():
        if not (entry.name.startswith(f"{LOG_PREFIX}-") and entry.suffix == LOG_SUFFIX):
            continue
        try:
            if entry.stat().st_mtime < cutoff:
                entry.unlink()
                removed += 1
        except OSError:
            continue
    return removed


def configure_logging(
    level: str | None = "INFO",
    file: str | os.PathLike[str] | None = None,
    *,
    verbose: bool = False,
) -> Path:
    """Configure root logging; returns the log file path in use."""
    global _file_handler

    resolved = normalize_level(level, verbose=verbose)
    log_path = Path(file) if file else default_rolling_path()
    log_path.parent.mkdir(parents=True, exist_ok=True)
    if not file:
        prune_old_logs(log_path.parent)

    logging.basicConfig(level=resolved, format=LOG_FORMAT, datefmt="%H:%M:%S")
    root = logging.getLogger()
    root.setLevel(resolved)

    if _file_handler is not None:
        root.removeHandler(_file_handler)
        _file_handler.close()
    _file_handler = logging.FileHandler(log_path, encoding="utf-8")
    _file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(_file_handler)
    return log_path
