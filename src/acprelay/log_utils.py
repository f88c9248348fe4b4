"""Logging configuration and structured context helpers."""

from __future__ import annotations

import contextlib
import contextvars
import json
import logging
import os
from dataclasses import dataclass, field
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Iterator

from acprelay.paths import log_dir

ENV_PREFIX = "ACPRELAY_LOG_"
DEFAULT_LOG_FILE = "acprelay.log"
DEFAULT_LOG_MAX_BYTES = 5_000_000
DEFAULT_LOG_BACKUPS = 3
CHUNK_PREVIEW_CHARS = 80

_LOG_CONTEXT: contextvars.ContextVar[Dict[str, Any]] = contextvars.ContextVar("acprelay_log_context", default={})
_LOG_CHUNKS_ENABLED = False


@dataclass(frozen=True)
class LogConfig:
    """Configuration for log setup.

    Hosts embedding the projection engine usually own logging themselves; this
    is used by the CLI and by hosts that want the same rotating file layout.
    """

    log_file: Path
    level: int = logging.INFO
    stderr: bool = False
    json: bool = False
    log_chunks: bool = False
    max_bytes: int = DEFAULT_LOG_MAX_BYTES
    backup_count: int = DEFAULT_LOG_BACKUPS
    logger_levels: Dict[str, int] = field(default_factory=dict)


def _env(name: str) -> str | None:
    return os.getenv(f"{ENV_PREFIX}{name}")


def parse_level(value: str | None, default: int) -> int:
    """Parse a log level name or number, falling back to ``default``."""
    if not value:
        return default
    if value.isdigit():
        return int(value)
    return logging._nameToLevel.get(value.upper(), default)


def parse_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def parse_int(value: str | None, default: int) -> int:
    if value is None:
        return default
    with contextlib.suppress(ValueError):
        return int(value)
    return default


def build_log_config(*, log_file_name: str = DEFAULT_LOG_FILE, default_level: int = logging.INFO) -> LogConfig:
    """Build log configuration from ``ACPRELAY_LOG_*`` environment variables."""

    directory = Path(_env("DIR") or str(log_dir()))
    directory.mkdir(parents=True, exist_ok=True)

    return LogConfig(
        log_file=directory / log_file_name,
        level=parse_level(_env("LEVEL"), default_level),
        stderr=parse_bool(_env("STDERR"), False),
        json=parse_bool(_env("JSON"), False),
        log_chunks=parse_bool(_env("CHUNKS"), False),
        max_bytes=parse_int(_env("MAX_BYTES"), DEFAULT_LOG_MAX_BYTES),
        backup_count=parse_int(_env("BACKUPS"), DEFAULT_LOG_BACKUPS),
    )


def configure_logging(config: LogConfig) -> None:
    """Configure root logging with rotation and context support.

    Existing root handlers are removed so repeated calls do not duplicate output.
    """

    global _LOG_CHUNKS_ENABLED
    _LOG_CHUNKS_ENABLED = config.log_chunks

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    root_logger.setLevel(config.level)

    formatter: logging.Formatter
    if config.json:
        formatter = JsonFormatter()
    else:
        formatter = ContextFormatter("%(asctime)s %(levelname)s %(name)s %(message)s")

    handlers: list[logging.Handler] = [
        RotatingFileHandler(
            config.log_file,
            maxBytes=config.max_bytes,
            backupCount=config.backup_count,
            encoding="utf-8",
        )
    ]
    if config.stderr:
        handlers.append(logging.StreamHandler())
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(ContextFilter())
        root_logger.addHandler(handler)

    for name, level in config.logger_levels.items():
        logging.getLogger(name).setLevel(level)


def log_chunks_enabled() -> bool:
    """Return True if per-chunk logging is enabled (off by default, very noisy)."""
    return _LOG_CHUNKS_ENABLED


def chunk_preview(text: str, limit: int = CHUNK_PREVIEW_CHARS) -> str:
    """Shorten a text fragment for log lines."""
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


@contextlib.contextmanager
def log_context(**fields: Any) -> Iterator[None]:
    """Attach structured context fields (session, tool call) to records in a block."""

    current = _LOG_CONTEXT.get()
    merged = {**current, **{k: v for k, v in fields.items() if v is not None}}
    token = _LOG_CONTEXT.set(merged)
    try:
        yield
    finally:
        _LOG_CONTEXT.reset(token)


def log_event(logger: logging.Logger, event: str, *, level: int = logging.INFO, **fields: Any) -> None:
    """Log a short, stable event name with structured fields."""

    logger.log(level, event, extra={"event_fields": fields})


_LEADING_KEYS = ("session_id", "tool_call_id")


def _format_value(value: Any) -> str:
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, ensure_ascii=True, separators=(",", ":"), default=str)
    text = str(value)
    if text == "" or any(ch.isspace() or ch in '="' for ch in text):
        return json.dumps(text, ensure_ascii=True)
    return text


def _ordered_items(fields: Dict[str, Any]) -> list[tuple[str, Any]]:
    """Session and tool-call ids first, then the rest alphabetically; drops None values."""
    present = {key: value for key, value in fields.items() if value is not None}
    leading = [(key, present.pop(key)) for key in _LEADING_KEYS if key in present]
    return leading + sorted(present.items())


class ContextFilter(logging.Filter):
    """Copy the active log context onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003 - logging API name
        record.context_fields = dict(_LOG_CONTEXT.get())
        if not hasattr(record, "event_fields"):
            record.event_fields = {}
        return True


class ContextFormatter(logging.Formatter):
    """Human-readable lines: ``<prefix> <event> key=value ...``."""

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        items = _ordered_items(getattr(record, "context_fields", {}))
        items += _ordered_items(getattr(record, "event_fields", {}))
        if not items:
            return base
        return base + " " + " ".join(f"{key}={_format_value(value)}" for key, value in items)


class JsonFormatter(logging.Formatter):
    """One JSON object per line, for log shippers and jq."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "event": record.getMessage(),
        }
        payload.update(getattr(record, "context_fields", {}))
        fields = getattr(record, "event_fields", {})
        if fields:
            payload["fields"] = fields
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=True, default=str)
