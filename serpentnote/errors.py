"""
Exception types and error logging for serpentnote.

Logs full stack traces for debugging while showing clean messages to users.
"""

import os
import traceback
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional


class SerpentnoteError(Exception):
    """Base class for serpentnote errors."""


class StorageError(SerpentnoteError):
    """A storage backend read or write failed."""


class QuotaExceededError(StorageError):
    """The flat store refused a write that would exceed its quota."""


class BackendUnavailableError(StorageError):
    """A storage backend could not be initialized in this environment."""


class ImportValidationError(SerpentnoteError, ValueError):
    """An import payload is missing required collections."""


class IngestError(SerpentnoteError):
    """An image batch was rejected before processing started."""


def _error_log_path(data_path: Optional[Path] = None) -> Path:
    """Resolve error log path, respecting SERPENTNOTE_DATA_PATH."""
    if data_path is not None:
        return Path(data_path) / "serpentnote-errors.log"
    store = os.environ.get("SERPENTNOTE_DATA_PATH")
    if store:
        return Path(store) / "serpentnote-errors.log"
    return Path.home() / ".serpentnote" / "serpentnote-errors.log"


def log_exception(exc: Exception, context: str = "", data_path: Optional[Path] = None) -> Path:
    """
    Log exception with full traceback to file.

    Args:
        exc: The exception that occurred
        context: Optional context string (e.g., command name)
        data_path: Data directory to log into (default: environment/home)

    Returns:
        Path to the error log file
    """
    log_path = _error_log_path(data_path)
    timestamp = datetime.now(timezone.utc).isoformat()
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(log_path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
        with os.fdopen(fd, "a") as f:
            f.write(f"\n{'='*60}\n")
            f.write(f"[{timestamp}]")
            if context:
                f.write(f" {context}")
            f.write("\n")
            f.write("".join(traceback.format_exception(type(exc), exc, exc.__traceback__)))
    except OSError:
        pass  # Can't write error log; don't crash over it
    return log_path
