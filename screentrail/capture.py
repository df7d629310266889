"""
Periodic screenshot capture and analysis.

Each step grabs the screen, asks the vision provider for a structured
description, persists the image and the JSON record, and ingests the
record so it is searchable immediately. Steps run under a supervisor that
retries failures with bounded exponential back-off and gives up after too
many consecutive failures.
"""

import io
import json
import logging
import threading
from pathlib import Path
from typing import Any, Callable, Optional

from pydantic import ValidationError

from .errors import CollaboratorFailure
from .ingest import save_record
from .providers.base import VisionProvider, strip_code_fences
from .types import ActivityRecord, to_filename_safe, utc_now

logger = logging.getLogger(__name__)

SCREENSHOT_CONTENT_TYPE = "image/jpeg"

ANALYSIS_PROMPT = (
    "Analyze this screenshot and provide a detailed description in the following "
    'JSON format: { "active_app": "", "summary": "", "extracted_text": "", '
    '"task_category": "", "productivity_score": 0, "workflow_suggestions": "" }'
)


def grab_screenshot(quality: int = 85) -> bytes:
    """Capture the full screen as JPEG bytes."""
    from PIL import ImageGrab

    image = ImageGrab.grab(all_screens=True)
    buf = io.BytesIO()
    image.convert("RGB").save(buf, format="JPEG", quality=quality)
    return buf.getvalue()


def parse_analysis(text: Optional[str]) -> Optional[dict[str, Any]]:
    """
    Validate the vision provider's reply.

    Returns the decoded object, or None if the reply is not a JSON object
    with non-empty ``summary`` and ``extracted_text``.
    """
    if not text:
        return None
    try:
        data = json.loads(strip_code_fences(text))
    except json.JSONDecodeError as e:
        logger.warning("Analysis reply is not JSON: %s", e)
        return None
    if not isinstance(data, dict):
        logger.warning("Analysis reply is not an object: %s", type(data).__name__)
        return None
    data.pop("timestamp", None)
    try:
        ActivityRecord.model_validate(data)
    except ValidationError as e:
        logger.warning("Analysis reply missing essential data: %s", e.errors()[0]["msg"])
        return None
    return data


def analyze_screenshot(vision: VisionProvider, image: bytes) -> Optional[dict[str, Any]]:
    """
    Ask the vision provider to describe a screenshot.

    Raises:
        CollaboratorFailure: If the provider call fails
    """
    try:
        reply = vision.describe(image, SCREENSHOT_CONTENT_TYPE, ANALYSIS_PROMPT)
    except Exception as e:
        raise CollaboratorFailure(f"Screenshot analysis failed: {e}") from e
    return parse_analysis(reply)


def save_screenshot(directory: Path, timestamp: str, image: bytes) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / f"{to_filename_safe(timestamp)}.jpg"
    path.write_bytes(image)
    return path


class CaptureSupervisor:
    """
    Runs a capture step repeatedly in a background thread.

    On failure the step is retried after ``backoff_base * 2**(n-1)``
    seconds (capped at ``backoff_max``), where n counts consecutive
    failures. A failure that follows ``max_restarts`` consecutive restarts
    stops the supervisor and sets ``gave_up`` (so the step runs at most
    ``max_restarts + 1`` times in a row without success). A successful
    step resets the count.
    """

    def __init__(
        self,
        step: Callable[[], Any],
        *,
        interval: float = 60.0,
        max_restarts: int = 5,
        backoff_base: float = 5.0,
        backoff_max: float = 300.0,
    ):
        self._step = step
        self.interval = interval
        self.max_restarts = max_restarts
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.restarts = 0
        self.consecutive_failures = 0
        self.steps = 0
        self.gave_up = False
        self.last_error: Optional[str] = None

    def backoff(self, failures: int) -> float:
        """Delay before the retry that follows ``failures`` consecutive failures."""
        return min(self.backoff_base * (2 ** max(failures - 1, 0)), self.backoff_max)

    def run(self) -> None:
        """Loop until stopped or until the restart limit is exhausted."""
        logger.info("Capture loop started (every %.0fs)", self.interval)
        while not self._stop.is_set():
            try:
                self._step()
            except Exception as e:
                self.consecutive_failures += 1
                self.last_error = str(e)
                if self.consecutive_failures > self.max_restarts:
                    self.gave_up = True
                    logger.error(
                        "Capture loop giving up after %d consecutive failures: %s",
                        self.consecutive_failures, e, exc_info=True,
                    )
                    return
                self.restarts += 1
                delay = self.backoff(self.consecutive_failures)
                logger.warning(
                    "Capture step failed (%d/%d), restarting in %.1fs: %s",
                    self.consecutive_failures, self.max_restarts, delay, e,
                )
                if self._stop.wait(delay):
                    break
                continue

            self.steps += 1
            self.consecutive_failures = 0
            if self._stop.wait(self.interval):
                break
        logger.info("Capture loop stopped")

    def start(self) -> threading.Thread:
        """Run the loop in a daemon thread."""
        if self._thread is not None and self._thread.is_alive():
            return self._thread
        self._stop.clear()
        self._thread = threading.Thread(target=self.run, name="capture", daemon=True)
        self._thread.start()
        return self._thread

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        """Signal the loop to stop, interrupting any sleep, and wait for it."""
        self._stop.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout)

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def status(self) -> dict[str, Any]:
        """Counters for operators."""
        return {
            "running": self.running,
            "steps": self.steps,
            "restarts": self.restarts,
            "consecutive_failures": self.consecutive_failures,
            "max_restarts": self.max_restarts,
            "gave_up": self.gave_up,
            "last_error": self.last_error,
        }


def capture_step(
    vision: VisionProvider,
    screenshots_dir: Path,
    history_dir: Path,
    on_record: Callable[[ActivityRecord], Any],
    grab: Callable[[], bytes] = grab_screenshot,
) -> Optional[ActivityRecord]:
    """
    One capture iteration: grab, store image, analyze, persist, hand off.

    Returns the new record, or None if the analysis was unusable.
    """
    timestamp = utc_now()
    image = grab()
    save_screenshot(Path(screenshots_dir), timestamp, image)

    analysis = analyze_screenshot(vision, image)
    if analysis is None:
        logger.info("No usable analysis for screenshot %s", timestamp)
        return None

    record = ActivityRecord.model_validate({**analysis, "timestamp": timestamp})
    path = save_record(Path(history_dir), record)
    logger.info("Saved analysis %s", path.name)
    on_record(record)
    return record
