from __future__ import annotations

import json
import logging

import pytest

from acprelay import log_utils, paths
from acprelay.log_utils import ContextFilter, ContextFormatter, JsonFormatter, log_context, log_event


def _record(logger_name: str = "acprelay.test") -> logging.LogRecord:
    captured: list[logging.LogRecord] = []

    class _Capture(logging.Handler):
        def emit(self, record: logging.LogRecord) -> None:
            captured.append(record)

    logger = logging.getLogger(logger_name)
    handler = _Capture()
    handler.addFilter(ContextFilter())
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)
    try:
        with log_context(session_id="s1", tool_call_id=None):
            log_event(logger, "projection.text.flush", chars=3, reason="end turn")
    finally:
        logger.removeHandler(handler)
    return captured[0]


def test_context_formatter_appends_fields():
    line = ContextFormatter("%(levelname)s %(message)s").format(_record())
    assert line == 'INFO projection.text.flush session_id=s1 chars=3 reason="end turn"'


def test_json_formatter_nests_context():
    payload = json.loads(JsonFormatter().format(_record()))
    assert payload["event"] == "projection.text.flush"
    assert payload["session_id"] == "s1"
    assert "tool_call_id" not in payload
    assert payload["fields"] == {"chars": 3, "reason": "end turn"}


def test_parse_helpers():
    assert log_utils.parse_level("debug", logging.INFO) == logging.DEBUG
    assert log_utils.parse_level("nonsense", logging.INFO) == logging.INFO
    assert log_utils.parse_level("15", logging.INFO) == 15
    assert log_utils.parse_bool("On", False) is True
    assert log_utils.parse_int("x", 7) == 7


def test_chunk_preview():
    assert log_utils.chunk_preview("short") == "short"
    assert log_utils.chunk_preview("y" * 100, limit=10) == "y" * 10 + "..."


@pytest.fixture
def _restore_root_logging():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)
    log_utils._LOG_CHUNKS_ENABLED = False


def test_build_and_configure_logging(monkeypatch, _restore_root_logging):
    monkeypatch.setenv("ACPRELAY_LOG_LEVEL", "DEBUG")
    monkeypatch.setenv("ACPRELAY_LOG_CHUNKS", "1")
    monkeypatch.delenv("ACPRELAY_LOG_DIR", raising=False)

    config = log_utils.build_log_config()
    assert config.log_file == paths.log_dir() / "acprelay.log"
    assert config.level == logging.DEBUG

    log_utils.configure_logging(config)
    log_utils.configure_logging(config)
    assert len(logging.getLogger().handlers) == 1
    assert log_utils.log_chunks_enabled()

    log_event(logging.getLogger("acprelay.test"), "projection.turn.start", mode="live")
    for handler in logging.getLogger().handlers:
        handler.flush()
    assert "projection.turn.start mode=live" in config.log_file.read_text()
