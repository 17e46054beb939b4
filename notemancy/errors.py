"""
Exception types and error logging for notemancy.

Scan and index runs collect per-file failures into their reports; single
operations (open a document, run a query) raise one of these types.
The CLI logs full stack traces to a file while showing a clean message.
"""

import os
import traceback
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional


ERROR_LOG_FILENAME = "notemancy-errors.log"


class KbError(Exception):
    """Base class for all notemancy errors."""


class StorageIOError(KbError, OSError):
    """A filesystem or storage backend could not be read or written."""


class NotFoundError(KbError, LookupError):
    """A table, record, or file does not exist."""


class DimensionMismatchError(KbError, ValueError):
    """A vector's length disagrees with the store's configured dimension."""

    def __init__(self, expected: int, actual: int, id: Optional[str] = None):
        self.expected = expected
        self.actual = actual
        self.id = id
        where = f" for {id!r}" if id else ""
        super().__init__(
            f"Embedding dimension mismatch{where}: expected {expected}, got {actual}"
        )


class ConversionError(KbError, ValueError):
    """A backend payload, filter, or id could not be converted."""


class IndicatorNotFoundError(KbError, ValueError):
    """The indicator segment does not occur in a physical path."""

    def __init__(self, path, indicator: str):
        self.path = str(path)
        self.indicator = indicator
        super().__init__(
            f"Indicator '{indicator}' not found in path: {self.path}"
        )


class TaskFailureError(KbError, RuntimeError):
    """A unit of work offloaded to a worker thread failed unexpectedly."""


class ProviderUnavailableError(KbError, RuntimeError):
    """The embedding model or its library could not be loaded."""


def log_exception(exc: BaseException, context: str = "", log_dir: Optional[Path] = None) -> Path:
    """
    Log exception with full traceback to file.

    Args:
        exc: The exception that occurred
        context: Optional context string (e.g., command name)
        log_dir: Directory for the log file (default: ~/.notemancy)

    Returns:
        Path to the error log file
    """
    base = Path(log_dir) if log_dir is not None else Path.home() / ".notemancy"
    log_path = base / ERROR_LOG_FILENAME
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
        pass  # The error log is best-effort
    return log_path
