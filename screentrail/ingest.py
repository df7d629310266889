"""
Record ingestion, persistence and history replay.

Live capture and startup replay share one path: validate the record,
normalize its timestamp, embed summary + extracted text, append to the
index. Per-record failures are logged and skipped; they never abort a
batch.
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from .errors import EmbeddingFailure, MalformedRecord, UnresolvableTimestamp
from .index import EmbeddingIndex
from .types import (
    ActivityRecord,
    format_timestamp,
    from_filename_safe,
    is_filename_safe,
    parse_timestamp,
    to_filename_safe,
)

logger = logging.getLogger(__name__)

RECORD_SUFFIX = ".json"


def normalize_timestamp(raw: Any) -> str:
    """
    Convert a stored timestamp to canonical ISO form.

    Filename-safe encodings (2025-05-11T21-45-09-471Z), and any string that
    does not parse directly, are decoded first. A timestamp that still does
    not parse is rejected; no default is ever substituted.

    Raises:
        UnresolvableTimestamp: If the value cannot be converted
    """
    if not isinstance(raw, str) or not raw.strip():
        raise UnresolvableTimestamp(f"Missing or non-string timestamp: {raw!r}")

    candidate = raw.strip()
    if is_filename_safe(candidate):
        candidate = from_filename_safe(candidate)
    else:
        try:
            return format_timestamp(parse_timestamp(candidate))
        except ValueError:
            candidate = from_filename_safe(candidate)

    try:
        return format_timestamp(parse_timestamp(candidate))
    except ValueError as e:
        raise UnresolvableTimestamp(
            f"Timestamp {raw!r} is not valid ISO even after conversion ({candidate!r})"
        ) from e


def parse_record(payload: Any) -> ActivityRecord:
    """
    Validate a decoded record payload.

    Raises:
        MalformedRecord: If the payload is not an object or lacks a
            non-empty summary or extracted_text
    """
    if not isinstance(payload, dict):
        raise MalformedRecord(f"Record is not a JSON object: {type(payload).__name__}")
    try:
        return ActivityRecord.model_validate(payload)
    except ValidationError as e:
        fields = ", ".join(str(err["loc"][0]) for err in e.errors() if err["loc"])
        raise MalformedRecord(f"Record is missing essential data ({fields})") from e


def ingest(index: EmbeddingIndex, record: ActivityRecord) -> bool:
    """
    Normalize, embed and index one record.

    Returns:
        True if the record was indexed. False if its timestamp could not be
        resolved or embedding failed; both are logged, not raised.
    """
    try:
        timestamp = normalize_timestamp(record.timestamp)
    except UnresolvableTimestamp as e:
        logger.warning("Not indexing record: %s", e)
        return False

    attributes = record.to_attributes()
    attributes["timestamp"] = timestamp
    try:
        index.insert(timestamp, record.embedding_text, attributes)
    except EmbeddingFailure as e:
        logger.error("Not indexing record %s: %s", timestamp, e)
        return False
    return True


def read_record(path: Path) -> ActivityRecord:
    """
    Read and validate one record file.

    Raises:
        MalformedRecord: empty file, literal null, invalid JSON, or
            invalid record
    """
    try:
        content = path.read_text(encoding="utf-8").strip()
    except (OSError, UnicodeDecodeError) as e:
        raise MalformedRecord(f"Could not read file: {e}") from e
    if not content or content == "null":
        raise MalformedRecord("File is empty")
    try:
        payload = json.loads(content)
    except json.JSONDecodeError as e:
        raise MalformedRecord(f"Could not parse JSON: {e}") from e
    return parse_record(payload)


@dataclass
class LoadReport:
    """Outcome of a history replay."""
    loaded: int = 0
    skipped: int = 0   # malformed files
    failed: int = 0    # valid files that could not be indexed

    @property
    def total(self) -> int:
        return self.loaded + self.skipped + self.failed


def load_history(index: EmbeddingIndex, directory: Path) -> LoadReport:
    """
    Replay every persisted record in ``directory`` into the index.

    Files are processed in name order, which is capture order. Bad files
    are skipped with a warning. Running this twice against the same index
    appends duplicates but never loses a record.
    """
    report = LoadReport()
    directory = Path(directory)
    if not directory.is_dir():
        logger.info("No history directory at %s", directory)
        return report

    files = sorted(p for p in directory.iterdir()
                   if p.suffix.lower() == RECORD_SUFFIX and p.is_file())
    logger.info("Loading %d record files from %s", len(files), directory)

    for path in files:
        try:
            record = read_record(path)
        except MalformedRecord as e:
            logger.warning("Skipping %s: %s", path.name, e)
            report.skipped += 1
            continue

        if ingest(index, record):
            report.loaded += 1
        else:
            report.failed += 1

    logger.info(
        "History loaded: %d indexed, %d skipped, %d failed",
        report.loaded, report.skipped, report.failed,
    )
    return report


def save_record(directory: Path, record: ActivityRecord) -> Path:
    """
    Persist a record as ``<filename-safe timestamp>.json``.

    Returns:
        Path of the written file

    Raises:
        UnresolvableTimestamp: If the record has no valid timestamp
    """
    timestamp = normalize_timestamp(record.timestamp)
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    attributes = record.to_attributes()
    attributes["timestamp"] = timestamp
    path = directory / f"{to_filename_safe(timestamp)}{RECORD_SUFFIX}"
    path.write_text(json.dumps(attributes, indent=2, ensure_ascii=False), encoding="utf-8")
    return path
