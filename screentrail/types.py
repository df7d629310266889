"""
Data types for screen activity records.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, field_validator


# Filename-safe timestamp: 2025-05-11T21-45-09-471Z (":" and "." replaced by "-")
_FILENAME_TS_RE = re.compile(
    r'^(\d{4}-\d{2}-\d{2})T(\d{2})-(\d{2})-(\d{2})(?:-(\d{1,6}))?(Z?)$'
)


def format_timestamp(dt: datetime) -> str:
    """Format a datetime in canonical form: YYYY-MM-DDTHH:MM:SS.sssZ.

    Naive datetimes are taken to be UTC. This is the single source of
    truth for timestamp formatting.
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def utc_now() -> str:
    """Current UTC timestamp in canonical format."""
    return format_timestamp(datetime.now(timezone.utc))


def parse_timestamp(ts: str) -> datetime:
    """Parse an ISO timestamp string to a timezone-aware UTC datetime.

    Accepts the canonical form as well as '+00:00' offsets, other offsets,
    and naive timestamps (taken as UTC). Raises ValueError otherwise.
    """
    if not isinstance(ts, str) or not ts.strip():
        raise ValueError(f"Not a timestamp: {ts!r}")
    value = ts.strip()
    if value.endswith(("Z", "z")):
        value = value[:-1] + "+00:00"
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_filename_safe(ts: str) -> str:
    """Encode a canonical timestamp for use in a filename."""
    return ts.replace(":", "-").replace(".", "-")


def is_filename_safe(ts: str) -> bool:
    """Check whether a string looks like a filename-safe timestamp."""
    return isinstance(ts, str) and bool(_FILENAME_TS_RE.match(ts))


def from_filename_safe(ts: str) -> str:
    """Decode a filename-safe timestamp back to ISO form.

    2025-05-11T21-45-09-471Z -> 2025-05-11T21:45:09.471Z
    Strings not in the filename-safe encoding are returned unchanged.
    """
    m = _FILENAME_TS_RE.match(ts) if isinstance(ts, str) else None
    if not m:
        return ts
    date, hh, mm, ss, frac, zone = m.groups()
    frac_part = f".{frac}" if frac else ""
    return f"{date}T{hh}:{mm}:{ss}{frac_part}{zone}"


class ActivityRecord(BaseModel):
    """
    One analyzed screenshot plus its capture instant.

    Keys are the ones the analysis collaborator emits. Unknown keys are
    kept and passed through as opaque attributes. ``summary`` and
    ``extracted_text`` are required and must be non-empty.
    """
    model_config = ConfigDict(extra="allow", frozen=True)

    summary: str
    extracted_text: str
    timestamp: Optional[Any] = None
    active_app: Optional[Any] = None
    task_category: Optional[Any] = None
    productivity_score: Optional[Any] = None
    workflow_suggestions: Optional[Any] = None

    @field_validator("summary", "extracted_text")
    @classmethod
    def _non_empty(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must be a non-empty string")
        return value

    @property
    def embedding_text(self) -> str:
        """The text that gets embedded: summary followed by extracted text."""
        return f"{self.summary} {self.extracted_text}"

    def to_attributes(self) -> dict[str, Any]:
        """Full record as a plain dict, extra keys included."""
        return self.model_dump()


@dataclass(frozen=True)
class TimeWindow:
    """Inclusive [start, end] range of aware datetimes."""
    start: datetime
    end: datetime

    def __post_init__(self):
        if self.start > self.end:
            raise ValueError(f"Time window start {self.start} is after end {self.end}")

    def contains(self, instant: datetime) -> bool:
        return self.start <= instant <= self.end

    def __str__(self) -> str:
        return f"{format_timestamp(self.start)} .. {format_timestamp(self.end)}"


@dataclass(frozen=True)
class ResolvedQuery:
    """
    Output of the temporal resolver.

    Attributes:
        window: Time window to filter on, or None for no time filter
        cleaned_query: Query text to embed, with time phrases removed
        source: Which parser produced the window ("llm", "fallback", "none")
    """
    window: Optional[TimeWindow]
    cleaned_query: str
    source: str = "none"

    @property
    def start(self) -> Optional[datetime]:
        return self.window.start if self.window else None

    @property
    def end(self) -> Optional[datetime]:
        return self.window.end if self.window else None


@dataclass(frozen=True)
class SearchHit:
    """A retrieved document with its record attributes and similarity score."""
    document: str
    attributes: dict[str, Any] = field(default_factory=dict)
    score: float = 0.0

    @property
    def timestamp(self) -> Optional[str]:
        return self.attributes.get("timestamp")

    def __str__(self) -> str:
        return f"{self.timestamp} [{self.score:.3f}]: {self.document[:60]}..."
