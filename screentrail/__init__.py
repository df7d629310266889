"""
screentrail: screen activity tracking with time-aware semantic recall.

Screenshots are captured periodically, described by a vision model and
indexed by embedding. Questions such as "What invoices did I see
yesterday?" are answered by resolving the time range, retrieving the
closest records and summarizing them.

Quick start:
    from screentrail import Tracker

    with Tracker() as tracker:
        tracker.load_history()
        print(tracker.ask("What was I doing this morning?"))
"""

from .api import Tracker
from .errors import (
    ScreentrailError,
    EmbeddingFailure,
    MalformedRecord,
    UnresolvableTimestamp,
    CollaboratorFailure,
    MalformedReply,
    PartialTimeRange,
)
from .index import EmbeddingIndex, cosine_similarity
from .query import NO_ACTIVITY_MESSAGE, QUERY_ERROR_MESSAGE, QueryOrchestrator
from .temporal import TemporalResolver
from .types import ActivityRecord, ResolvedQuery, SearchHit, TimeWindow

__version__ = "0.1.0"

__all__ = [
    "Tracker",
    "EmbeddingIndex",
    "TemporalResolver",
    "QueryOrchestrator",
    "ActivityRecord",
    "TimeWindow",
    "ResolvedQuery",
    "SearchHit",
    "cosine_similarity",
    "NO_ACTIVITY_MESSAGE",
    "QUERY_ERROR_MESSAGE",
    "ScreentrailError",
    "EmbeddingFailure",
    "MalformedRecord",
    "UnresolvableTimestamp",
    "CollaboratorFailure",
    "MalformedReply",
    "PartialTimeRange",
]
