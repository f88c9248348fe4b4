"""Lossless, append-only log of raw session events.

Every raw event a turn receives is written here before classification, one
JSON line per event. The projection engine only appends; :func:`iter_raw_events`
exists for replay tooling.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator

from acprelay.paths import raw_log_dir

logger = logging.getLogger(__name__)

LOG_FILE_NAME = "events.jsonl"
_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def safe_session_dir(session_key: str) -> str:
    cleaned = _UNSAFE_CHARS.sub("_", session_key).strip("._")
    return cleaned or "_"


def dump_raw_event(raw_event: Any) -> Any:
    """Convert a raw event into JSON-compatible data without dropping fields."""
    if isinstance(raw_event, BaseException):
        return {"type": "error", "message": str(raw_event), "exception": type(raw_event).__name__}
    if hasattr(raw_event, "model_dump"):
        return raw_event.model_dump(mode="json", by_alias=True)
    try:
        return json.loads(json.dumps(raw_event, default=lambda o: getattr(o, "__dict__", repr(o))))
    except (TypeError, ValueError):
        return {"type": "unserializable", "repr": repr(raw_event)}


@dataclass
class JsonlRawEventLog:
    root: Path

    def __post_init__(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)

    @classmethod
    def default(cls) -> "JsonlRawEventLog":
        return cls(raw_log_dir())

    def path_for(self, session_key: str) -> Path:
        directory = self.root / safe_session_dir(session_key)
        directory.mkdir(parents=True, exist_ok=True)
        return directory / LOG_FILE_NAME

    def append(self, session_key: str, raw_event: Any) -> None:
        record = {
            "session": session_key,
            "received_at": datetime.now(timezone.utc).isoformat(),
            "event": dump_raw_event(raw_event),
        }
        with self.path_for(session_key).open("a", encoding="utf-8") as fh:
            fh.write(json.dumps(record, ensure_ascii=False) + "\n")


def iter_raw_events(path: Path) -> Iterator[tuple[str, Any]]:
    """Yield ``(session_key, event)`` pairs from a log file, skipping bad lines."""
    with path.open("r", encoding="utf-8") as fh:
        for lineno, line in enumerate(fh, start=1):
            if not line.strip():
                continue
            try:
                record = json.loads(line)
            except ValueError:
                logger.warning("Skipping malformed raw log line %s:%d", path, lineno)
                continue
            if isinstance(record, dict) and "event" in record:
                yield str(record.get("session") or ""), record["event"]
            else:
                yield "", record
