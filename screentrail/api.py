"""
Core API for screen activity recall.

Tracker is the context object built once at startup. It owns the
configuration, provider handles, the embedding index, the temporal
resolver and the query orchestrator, and passes them explicitly to the
components that need them:

- load_history(): replay persisted records into the index
- ingest(): index one record (live capture and replay share this path)
- ask(): answer a free-text, time-aware question
- capture_once() / supervisor(): screenshot capture
"""

import logging
from pathlib import Path
from typing import Callable, Optional

from .capture import CaptureSupervisor, capture_step, grab_screenshot
from .config import StoreConfig, get_default_store_path, load_or_create_config
from .index import EmbeddingIndex
from .ingest import LoadReport, ingest, load_history
from .logging_config import configure_ops_log
from .providers.base import EmbeddingProvider, GenerationProvider, VisionProvider, get_registry
from .query import QueryOrchestrator
from .temporal import TemporalResolver
from .types import ActivityRecord

logger = logging.getLogger(__name__)


class Tracker:
    """
    Screen activity tracker with semantic, time-aware recall.

    Providers passed in explicitly are used as-is (tests pass fakes);
    otherwise they are created from the store's screentrail.toml. Provider
    creation is lazy: the embedding model loads on first index use, and an
    LLM provider that cannot be created is logged and treated as
    unavailable.
    """

    def __init__(
        self,
        store_path: Optional[str | Path] = None,
        *,
        config: Optional[StoreConfig] = None,
        embedding: Optional[EmbeddingProvider] = None,
        time_parser: Optional[GenerationProvider] = None,
        summarizer: Optional[GenerationProvider] = None,
        vision: Optional[VisionProvider] = None,
        ops_log: bool = False,
    ):
        if config is not None:
            self._config = config
        else:
            path = Path(store_path).expanduser() if store_path else get_default_store_path()
            self._config = load_or_create_config(path)

        self._embedding = embedding
        self._time_parser = time_parser
        self._summarizer = summarizer
        self._vision = vision
        self._time_parser_resolved = time_parser is not None
        self._summarizer_resolved = summarizer is not None

        self._index: Optional[EmbeddingIndex] = None
        self._resolver: Optional[TemporalResolver] = None
        self._orchestrator: Optional[QueryOrchestrator] = None
        self._supervisor: Optional[CaptureSupervisor] = None

        self._ops_handler = configure_ops_log(self._config.path) if ops_log else None

    # -- configuration ------------------------------------------------------

    @property
    def config(self) -> StoreConfig:
        return self._config

    @property
    def store_path(self) -> Path:
        return self._config.path

    @property
    def history_dir(self) -> Path:
        return self._config.history_dir

    @property
    def screenshots_dir(self) -> Path:
        return self._config.screenshots_dir

    # -- providers ----------------------------------------------------------

    def _get_embedding_provider(self) -> EmbeddingProvider:
        if self._embedding is None:
            cfg = self._config.embedding
            self._embedding = get_registry().create_embedding(cfg.name, cfg.params)
        return self._embedding

    def _create_llm(self, role: str, cfg) -> Optional[GenerationProvider]:
        params = dict(cfg.params)
        params.setdefault("timeout", self._config.query.timeout)
        try:
            return get_registry().create_generation(cfg.name, params)
        except (ValueError, RuntimeError) as e:
            logger.warning("%s provider '%s' unavailable: %s", role, cfg.name, e)
            return None

    def _get_time_parser(self) -> Optional[GenerationProvider]:
        if not self._time_parser_resolved:
            self._time_parser = self._create_llm("Time parser", self._config.time_parser)
            self._time_parser_resolved = True
        return self._time_parser

    def _get_summarizer(self) -> Optional[GenerationProvider]:
        if not self._summarizer_resolved:
            self._summarizer = self._create_llm("Summarization", self._config.summarization)
            self._summarizer_resolved = True
        return self._summarizer

    def _get_vision_provider(self) -> VisionProvider:
        if self._vision is None:
            cfg = self._config.vision
            self._vision = get_registry().create_vision(cfg.name, dict(cfg.params))
        return self._vision

    # -- components ---------------------------------------------------------

    @property
    def index(self) -> EmbeddingIndex:
        if self._index is None:
            self._index = EmbeddingIndex(self._get_embedding_provider())
        return self._index

    @property
    def resolver(self) -> TemporalResolver:
        if self._resolver is None:
            self._resolver = TemporalResolver(self._get_time_parser())
        return self._resolver

    @property
    def orchestrator(self) -> QueryOrchestrator:
        if self._orchestrator is None:
            self._orchestrator = QueryOrchestrator(
                self.index,
                self.resolver,
                self._get_summarizer(),
                filtered_results=self._config.query.filtered_results,
                default_results=self._config.query.default_results,
            )
        return self._orchestrator

    # -- operations ---------------------------------------------------------

    def load_history(self) -> LoadReport:
        """Replay every persisted record into the index."""
        return load_history(self.index, self.history_dir)

    def ingest(self, record: ActivityRecord) -> bool:
        """Index one record; False if it could not be indexed."""
        return ingest(self.index, record)

    def ask(self, query: str) -> str:
        """Answer a free-text question about past activity. Never raises."""
        return self.orchestrator.answer(query)

    def capture_once(self, grab: Optional[Callable[[], bytes]] = None) -> Optional[ActivityRecord]:
        """Take one screenshot, analyze, persist and index it."""
        return capture_step(
            self._get_vision_provider(),
            self.screenshots_dir,
            self.history_dir,
            self.ingest,
            grab=grab or grab_screenshot,
        )

    def supervisor(self, interval: Optional[float] = None) -> CaptureSupervisor:
        """The capture supervisor for this tracker (created on first call)."""
        if self._supervisor is None:
            sup = self._config.supervisor
            self._supervisor = CaptureSupervisor(
                self.capture_once,
                interval=interval if interval is not None else self._config.capture.interval,
                max_restarts=sup.max_restarts,
                backoff_base=sup.backoff_base,
                backoff_max=sup.backoff_max,
            )
        return self._supervisor

    def close(self) -> None:
        """Stop background capture and detach the ops log."""
        if self._supervisor is not None:
            self._supervisor.stop()
        if self._ops_handler is not None:
            logging.getLogger("screentrail").removeHandler(self._ops_handler)
            self._ops_handler.close()
            self._ops_handler = None

    def __enter__(self) -> "Tracker":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
