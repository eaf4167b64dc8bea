"""Logging setup for tvsync.

Two outputs:
- the ``tvsync`` logger, written to ``<data dir>/logs/local-<date>.log``
  (plus the console when running at DEBUG)
- a compact append-only event log, ``sync-events-<date>.log``, with one
  line per push or pull so sync history can be audited without debug logs
"""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from tvsync.utils import get_tvsync_home

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

_VALID_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def _log_dir() -> Path:
    path = get_tvsync_home() / "logs"
    path.mkdir(parents=True, exist_ok=True)
    return path


def _today() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%d")


def setup_tvsync_logging(user_id: str = "default", level: str = "INFO") -> logging.Logger:
    """Configure the ``tvsync`` logger.

    Args:
        user_id: Included in the startup line so logs from several
            profiles can be told apart.
        level: Log level name (case-insensitive). Invalid names fall
            back to INFO.

    Returns:
        The configured ``tvsync`` logger. Calling this again does not add
        duplicate handlers.
    """
    level_name = (level or "INFO").upper()
    if level_name not in _VALID_LEVELS:
        level_name = "INFO"
    numeric_level = getattr(logging, level_name)

    logger = logging.getLogger("tvsync")
    logger.setLevel(numeric_level)

    formatter = logging.Formatter(LOG_FORMAT)

    if not any(isinstance(h, logging.FileHandler) for h in logger.handlers):
        file_handler = logging.FileHandler(_log_dir() / f"local-{_today()}.log")
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    has_console = any(
        isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler)
        for h in logger.handlers
    )
    if numeric_level <= logging.DEBUG and not has_console:
        console = logging.StreamHandler()
        console.setFormatter(formatter)
        logger.addHandler(console)

    logger.debug(f"tvsync logging initialized for user={user_id}")
    return logger


def log_sync_event(event_type: str, details: str, user_id: str = "default") -> None:
    """Append one line to the sync event log."""
    timestamp = datetime.now(timezone.utc).isoformat()
    line = f"{timestamp} | {event_type} | user={user_id} | {details}\n"
    try:
        path = _log_dir() / f"sync-events-{_today()}.log"
        with open(path, "a") as f:
            f.write(line)
    except OSError as e:
        logging.getLogger(__name__).debug(f"Could not write sync event log: {e}")


def log_sync(user_id: str, direction: str, count: int, errors: int = 0, **extra: Any) -> None:
    """Record a push or pull with how many collections moved and failed."""
    details = f"direction={direction}, count={count}, errors={errors}"
    if extra:
        details += ", " + ", ".join(f"{k}={v}" for k, v in sorted(extra.items()))
    log_sync_event("sync", details, user_id=user_id)
