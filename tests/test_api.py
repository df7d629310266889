"""End-to-end tests for the Tracker context object, with mock providers."""

import json
from datetime import datetime, timedelta, timezone

from screentrail.api import Tracker
from screentrail.config import ProviderConfig
from screentrail.query import NO_ACTIVITY_MESSAGE, QUERY_ERROR_MESSAGE

from conftest import (
    FailingGenerationProvider,
    MockEmbeddingProvider,
    MockGenerationProvider,
    MockVisionProvider,
    make_record,
    write_record,
)


def fake_grab() -> bytes:
    return b"jpeg"


def make_tracker(store_config, **kwargs):
    defaults = dict(
        embedding=MockEmbeddingProvider(),
        time_parser=FailingGenerationProvider(),
        summarizer=MockGenerationProvider(default="You were editing an invoice."),
        vision=MockVisionProvider(),
    )
    defaults.update(kwargs)
    return Tracker(config=store_config, **defaults)


class TestTracker:
    def test_empty_store(self, store_config):
        with make_tracker(store_config) as tracker:
            assert tracker.load_history().total == 0
            assert tracker.ask("What was I doing?") == NO_ACTIVITY_MESSAGE

    def test_capture_then_ask(self, store_config):
        summarizer = MockGenerationProvider(default="You were editing an invoice.")
        with make_tracker(store_config, summarizer=summarizer) as tracker:
            record = tracker.capture_once(grab=fake_grab)
            assert record is not None
            assert len(tracker.index) == 1
            assert tracker.ask("invoice spreadsheet") == "You were editing an invoice."
            _, prompt = summarizer.calls[0]
            assert "quarterly invoice spreadsheet" in prompt

    def test_history_survives_restart(self, store_config):
        with make_tracker(store_config) as tracker:
            tracker.capture_once(grab=fake_grab)

        with make_tracker(store_config) as restarted:
            report = restarted.load_history()
            assert report.loaded == 1
            assert len(restarted.index) == 1

    def test_load_history_reads_store(self, store_config):
        write_record(store_config.history_dir, "2025-05-10T09-00-00-000Z.json",
                     make_record("Reviewing invoice", "Invoice 42", "2025-05-10T09:00:00.000Z"))
        write_record(store_config.history_dir, "broken.json", "{")
        with make_tracker(store_config) as tracker:
            report = tracker.load_history()
            assert (report.loaded, report.skipped) == (1, 1)

    def test_yesterday_query(self, store_config):
        now = datetime.now().astimezone()
        yesterday = (now - timedelta(days=1)).replace(hour=12, minute=0, second=0, microsecond=0)
        write_record(store_config.history_dir, "a.json",
                     make_record("Reviewing invoice", "Invoice 42", yesterday.isoformat()))
        summarizer = MockGenerationProvider(default="Invoice 42.")
        with make_tracker(store_config, summarizer=summarizer) as tracker:
            tracker.load_history()
            assert tracker.ask("What invoices did I see yesterday?") == "Invoice 42."

    def test_unavailable_llms_are_tolerated(self, store_config):
        store_config.time_parser = ProviderConfig("no-such-provider")
        store_config.summarization = ProviderConfig("no-such-provider")
        write_record(store_config.history_dir, "a.json",
                     make_record("Reviewing invoice", "Invoice 42", "2025-05-10T09:00:00.000Z"))
        tracker = Tracker(config=store_config, embedding=MockEmbeddingProvider())
        tracker.load_history()
        assert tracker.ask("invoice") == QUERY_ERROR_MESSAGE
        tracker.close()

    def test_supervisor_uses_config(self, store_config):
        store_config.supervisor.max_restarts = 2
        with make_tracker(store_config) as tracker:
            sup = tracker.supervisor(interval=5)
            assert sup.interval == 5
            assert sup.max_restarts == 2
            assert tracker.supervisor() is sup

    def test_ops_log_written(self, store_config):
        tracker = make_tracker(store_config, ops_log=True)
        tracker.capture_once(grab=fake_grab)
        tracker.close()
        log = store_config.path / "screentrail-ops.log"
        assert log.exists()
        assert "Saved analysis" in log.read_text()

    def test_saved_record_format(self, store_config):
        with make_tracker(store_config) as tracker:
            record = tracker.capture_once(grab=fake_grab)
        [path] = list(store_config.history_dir.iterdir())
        data = json.loads(path.read_text())
        assert data["timestamp"] == record.timestamp
        assert data["task_category"] == "finance"
        parsed = datetime.fromisoformat(data["timestamp"].replace("Z", "+00:00"))
        assert parsed.tzinfo == timezone.utc
