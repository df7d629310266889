"""
Answer free-text questions about past screen activity.

resolve time range -> retrieve from the index (time-filtered or not) ->
hand the retrieved documents to the summarizer. Every failure is turned
into a short message; a bad query never ends the interactive session.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Optional

from .errors import CollaboratorFailure
from .index import EmbeddingIndex
from .providers.base import GenerationProvider
from .temporal import TemporalResolver
from .types import SearchHit, TimeWindow, parse_timestamp

logger = logging.getLogger(__name__)

NO_ACTIVITY_MESSAGE = "I couldn't find any activity matching your query and time range."
QUERY_ERROR_MESSAGE = "Error processing query."

# Time filtering happens after ranking, so fetch more when filtering
FILTERED_RESULTS = 10
DEFAULT_RESULTS = 5

ANSWER_SYSTEM_PROMPT = (
    "You answer questions about the user's past computer activity, "
    "using only the screen activity records provided."
)


def within(window: TimeWindow) -> Callable[[dict[str, Any]], bool]:
    """Predicate: record timestamp falls inside ``window`` (inclusive).

    Records with a missing or unparseable timestamp never match.
    """
    def predicate(attributes: dict[str, Any]) -> bool:
        ts = attributes.get("timestamp")
        if not ts:
            return False
        try:
            return window.contains(parse_timestamp(ts))
        except ValueError:
            logger.warning("Could not parse record timestamp: %r", ts)
            return False
    return predicate


def build_answer_prompt(query: str, hits: list[SearchHit]) -> str:
    """Prompt binding the user's original question to the retrieved context."""
    context = "\n".join(
        f"Document {i}: {hit.document} (Timestamp: {hit.timestamp})"
        for i, hit in enumerate(hits, start=1)
    )
    return f"""Based on the following context, answer the query: "{query}"

Context:
{context}

Answer in a concise, natural language format. If the query asks for a summary of activities, provide that."""


class QueryOrchestrator:
    """
    Combines the temporal resolver, the index and the summarizer.

    ``summarizer`` may be None when no LLM is configured; queries that
    find activity then report a generic error instead of an answer.
    """

    def __init__(
        self,
        index: EmbeddingIndex,
        resolver: TemporalResolver,
        summarizer: Optional[GenerationProvider],
        *,
        filtered_results: int = FILTERED_RESULTS,
        default_results: int = DEFAULT_RESULTS,
        max_tokens: int = 500,
    ):
        self._index = index
        self._resolver = resolver
        self._summarizer = summarizer
        self.filtered_results = filtered_results
        self.default_results = default_results
        self._max_tokens = max_tokens

    def retrieve(self, raw_query: str, now: Optional[datetime] = None) -> list[SearchHit]:
        """Resolve the time range and fetch matching documents."""
        resolved = self._resolver.resolve(raw_query, now=now)
        if resolved.window is not None:
            logger.info(
                "Searching %r within %s (%s)",
                resolved.cleaned_query, resolved.window, resolved.source,
            )
            return self._index.query(
                resolved.cleaned_query,
                self.filtered_results,
                predicate=within(resolved.window),
            )
        logger.info("Searching %r (no time filter)", resolved.cleaned_query)
        return self._index.query(resolved.cleaned_query, self.default_results)

    def _summarize(self, raw_query: str, hits: list[SearchHit]) -> str:
        if self._summarizer is None:
            raise CollaboratorFailure("No summarizer configured")
        prompt = build_answer_prompt(raw_query, hits)
        try:
            text = self._summarizer.generate(
                ANSWER_SYSTEM_PROMPT, prompt, max_tokens=self._max_tokens,
            )
        except Exception as e:
            raise CollaboratorFailure(f"Summarizer failed: {e}") from e
        if not text:
            raise CollaboratorFailure("Summarizer returned no text")
        return text

    def answer(self, raw_query: str, now: Optional[datetime] = None) -> str:
        """
        Answer a free-text question about past activity.

        Returns the summarizer's reply verbatim, NO_ACTIVITY_MESSAGE when
        nothing matched (the summarizer is not called), or
        QUERY_ERROR_MESSAGE on any failure.
        """
        try:
            hits = self.retrieve(raw_query, now=now)
            if not hits:
                return NO_ACTIVITY_MESSAGE
            logger.debug("Retrieved %d documents: %s", len(hits), [str(h) for h in hits])
            return self._summarize(raw_query, hits)
        except Exception as e:
            logger.error("Query failed for %r: %s", raw_query, e, exc_info=True)
            return QUERY_ERROR_MESSAGE
