"""
Natural-language time-range resolution for activity queries.

A query like "what invoices did I see last Tuesday?" becomes a time window
plus the query with the time phrase removed. An LLM parser handles open
phrasing; when it cannot be reached a deterministic parser recognises
"yesterday" and literal YYYY-MM-DD dates. Replies are validated before
use: a partial range or a bad ISO string means no time filter, never a
half-trusted one.
"""

import json
import logging
import re
from datetime import date, datetime, time, timedelta
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import CollaboratorFailure, MalformedReply, PartialTimeRange
from .providers.base import GenerationProvider, strip_code_fences
from .types import ResolvedQuery, TimeWindow, format_timestamp, parse_timestamp

logger = logging.getLogger(__name__)

# Embedded when time-phrase removal leaves nothing to search for
PLACEHOLDER_QUERY = "What was I doing?"

TIME_PARSE_SYSTEM_PROMPT = """You extract time ranges from questions about past computer activity.

Reply with a single JSON object and nothing else."""

TIME_PARSE_PROMPT = """Given the user's query: "{query}"

Analyze this query to identify any specific dates, date ranges, or relative time references (like "today", "yesterday", "last Tuesday", "this week", "last month", "between May 1st and May 5th").

If a time reference is found, provide the start and end of that time range in ISO 8601 format (YYYY-MM-DDTHH:mm:ss.sssZ).

For "today", the range is from the beginning of today to the end of today.
For "yesterday", from the beginning of yesterday to the end of yesterday.
For "this week", assume the week starts on Monday, provide the range from the beginning of this Monday to the end of this coming Sunday.
For "last month", provide the range for the entire previous calendar month.
If a single date is mentioned (e.g., "on May 10th"), provide the range for that entire day.
If an open-ended range like "since Monday" is mentioned, use the current time as the end of the range.
If no specific time reference is found, or if it's too vague, output null for startTimeISO and endTimeISO.

Current date for reference: {now}

Output ONLY the JSON object like this:
{{
"startTimeISO": "YYYY-MM-DDTHH:mm:ss.sssZ_or_null",
"endTimeISO": "YYYY-MM-DDTHH:mm:ss.sssZ_or_null",
"cleanedQuery": "The user query with the time phrases removed or normalized, focusing on the core activity."
}}
If no time is found, both startTimeISO and endTimeISO should be null, and cleanedQuery should be the original query."""

_YESTERDAY_RE = re.compile(r"yesterday", re.IGNORECASE)
_DATE_RE = re.compile(r"\d{4}-\d{2}-\d{2}")


class TimeParseReply(BaseModel):
    """Shape of the LLM time-parse reply. Anything else is rejected."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    start: Optional[str] = Field(default=None, alias="startTimeISO")
    end: Optional[str] = Field(default=None, alias="endTimeISO")
    cleaned_query: Optional[str] = Field(default=None, alias="cleanedQuery")


def parse_reply(text: str) -> tuple[Optional[TimeWindow], Optional[str]]:
    """
    Validate an LLM time-parse reply.

    Returns:
        (window or None, cleaned query or None)

    Raises:
        MalformedReply: reply is not the expected JSON object, an ISO
            string does not parse, or start is after end
        PartialTimeRange: exactly one of start/end is present
    """
    try:
        data = json.loads(strip_code_fences(text))
    except json.JSONDecodeError as e:
        raise MalformedReply(f"Time-parse reply is not JSON: {e}") from e
    if not isinstance(data, dict):
        raise MalformedReply(f"Time-parse reply is not an object: {type(data).__name__}")
    try:
        reply = TimeParseReply.model_validate(data)
    except ValidationError as e:
        raise MalformedReply(f"Time-parse reply failed validation: {e}") from e

    # Empty strings count as absent
    start_iso = reply.start or None
    end_iso = reply.end or None
    if bool(start_iso) != bool(end_iso):
        raise PartialTimeRange(f"Partial time range: start={start_iso!r} end={end_iso!r}")

    window = None
    if start_iso and end_iso:
        try:
            window = TimeWindow(parse_timestamp(start_iso), parse_timestamp(end_iso))
        except ValueError as e:
            raise MalformedReply(f"Invalid time range in reply: {e}") from e

    return window, reply.cleaned_query


def _day_window(day: date, tz) -> TimeWindow:
    """Whole day [00:00:00.000, 23:59:59.999] in ``tz``.

    With ``tz`` None the day is in system local time, and each boundary
    takes the UTC offset in force at that moment (DST changes included).
    """
    start = datetime.combine(day, time.min)
    end = datetime.combine(day, time(23, 59, 59, 999000))
    if tz is None:
        return TimeWindow(start.astimezone(), end.astimezone())
    return TimeWindow(start.replace(tzinfo=tz), end.replace(tzinfo=tz))


def fallback_parse(query: str, now: datetime) -> tuple[Optional[TimeWindow], str]:
    """
    Deterministic time parsing for when the LLM parser is unavailable.

    Recognises only "yesterday" and an embedded YYYY-MM-DD date, both as
    whole local days in the timezone of ``now``. A naive ``now`` is system
    local time. The matched phrase is removed from the returned query text.
    """
    tz = now.tzinfo
    if _YESTERDAY_RE.search(query):
        window = _day_window(now.date() - timedelta(days=1), tz)
        return window, " ".join(_YESTERDAY_RE.sub("", query).split())

    m = _DATE_RE.search(query)
    if m:
        try:
            day = datetime.strptime(m.group(0), "%Y-%m-%d").date()
        except ValueError:
            logger.warning("Could not parse date string %r, no time filter", m.group(0))
            return None, query
        return _day_window(day, tz), " ".join((query[:m.start()] + query[m.end():]).split())

    return None, query


def _cleaned(text: Optional[str], original: str) -> str:
    """Pick the query to embed: cleaned text, else original, never blank."""
    candidate = original if text is None else text
    return candidate if candidate.strip() else PLACEHOLDER_QUERY


class TemporalResolver:
    """
    Resolves the time range and search text of a free-text query.

    Holds no state between queries. ``parser`` may be None, in which case
    every query goes straight to the deterministic fallback.
    """

    def __init__(self, parser: Optional[GenerationProvider] = None, *, max_tokens: int = 300):
        self._parser = parser
        self._max_tokens = max_tokens

    def _ask_parser(self, query: str, now: datetime) -> str:
        """Call the LLM parser. Any failure is a CollaboratorFailure."""
        if self._parser is None:
            raise CollaboratorFailure("No time parser configured")
        prompt = TIME_PARSE_PROMPT.format(query=query, now=format_timestamp(now))
        try:
            text = self._parser.generate(
                TIME_PARSE_SYSTEM_PROMPT, prompt, max_tokens=self._max_tokens,
            )
        except Exception as e:
            raise CollaboratorFailure(f"Time parser failed: {e}") from e
        if not text:
            raise CollaboratorFailure("Time parser returned no text")
        return text

    def resolve(self, query: str, now: Optional[datetime] = None) -> ResolvedQuery:
        """
        Resolve ``query`` against the instant ``now`` (default: local now).

        Returns:
            ResolvedQuery with a window (or None) and the text to embed
        """
        # Naive "now" (the default) is system local time; the fallback keeps
        # it naive so day boundaries follow the local DST rules
        if now is None:
            now = datetime.now()
        aware_now = now if now.tzinfo is not None else now.astimezone()

        try:
            text = self._ask_parser(query, aware_now)
        except CollaboratorFailure as e:
            logger.warning("%s; using fallback time parser", e)
            window, remainder = fallback_parse(query, now)
            if window is not None:
                logger.info("Fallback time filter: %s", window)
                return ResolvedQuery(window, _cleaned(remainder, query), "fallback")
            return ResolvedQuery(None, _cleaned(query, query), "none")

        logger.debug("Time parser raw reply: %s", text)
        try:
            window, cleaned = parse_reply(text)
        except MalformedReply as e:
            logger.warning("%s; ignoring time filter", e)
            return ResolvedQuery(None, _cleaned(query, query), "none")

        if window is None:
            return ResolvedQuery(None, _cleaned(cleaned, query), "none")
        logger.info("Time filter: %s", window)
        return ResolvedQuery(window, _cleaned(cleaned, query), "llm")
