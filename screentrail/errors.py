"""
Error types and error logging for screentrail.

Per-record and per-file failures are contained by the caller and logged;
per-query failures are turned into a short message for the user. The CLI
logs full stack traces to a file while showing clean messages.
"""

import os
import traceback
from datetime import datetime, timezone
from pathlib import Path


class ScreentrailError(Exception):
    """Base class for screentrail errors."""


class EmbeddingFailure(ScreentrailError):
    """The embedding provider returned no vector, or an empty one."""


class MalformedRecord(ScreentrailError):
    """A record file is empty, unparseable, or missing summary/extracted_text."""


class UnresolvableTimestamp(ScreentrailError):
    """A record timestamp cannot be converted to canonical ISO form."""


class CollaboratorFailure(ScreentrailError):
    """An external collaborator (parser, summarizer, vision) failed."""


class MalformedReply(CollaboratorFailure):
    """A collaborator answered, but the reply failed validation."""


class PartialTimeRange(MalformedReply):
    """Exactly one of start/end was present in a time-parse reply."""


def _error_log_path() -> Path:
    """Resolve error log path, respecting SCREENTRAIL_STORE_PATH."""
    store = os.environ.get("SCREENTRAIL_STORE_PATH")
    if store:
        return Path(store) / "screentrail-errors.log"
    return Path.home() / ".screentrail" / "screentrail-errors.log"


def log_exception(exc: Exception, context: str = "") -> Path:
    """
    Log exception with full traceback to file.

    Args:
        exc: The exception that occurred
        context: Optional context string (e.g., command name)

    Returns:
        Path to the error log file
    """
    log_path = _error_log_path()
    timestamp = datetime.now(timezone.utc).isoformat()
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(log_path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
        with os.fdopen(fd, "a") as f:
            f.write(f"\n{'='*60}\n")
            f.write(f"[{timestamp}]")
            if context:
                f.write(f" {context}")
            f.write(f" {type(exc).__name__}: {exc}\n")
            f.write("".join(traceback.format_exception(exc)))
    except OSError:
        pass  # Can't write error log, don't crash over it
    return log_path
