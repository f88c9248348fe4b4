from __future__ import annotations

import json

from acprelay import paths
from acprelay.raw_log import JsonlRawEventLog, dump_raw_event, iter_raw_events, safe_session_dir
from tests.utils import done, text, tool_update


def test_append_writes_lossless_jsonl(tmp_path):
    log = JsonlRawEventLog(tmp_path)
    log.append("sess/1", text("hello"))
    log.append("sess/1", {"sessionUpdate": "something_new", "extra": [1, 2]})

    path = log.path_for("sess/1")
    assert path.parent.name == "sess_1"
    lines = [json.loads(line) for line in path.read_text().splitlines()]
    assert lines[0]["session"] == "sess/1"
    assert lines[0]["event"]["sessionUpdate"] == "agent_message_chunk"
    assert lines[0]["event"]["content"]["text"] == "hello"
    assert lines[1]["event"] == {"sessionUpdate": "something_new", "extra": [1, 2]}
    assert "received_at" in lines[1]


def test_default_root_uses_state_dir():
    assert JsonlRawEventLog.default().root == paths.state_dir() / "events"


def test_dump_handles_exceptions_and_responses():
    assert dump_raw_event(RuntimeError("boom")) == {
        "type": "error",
        "message": "boom",
        "exception": "RuntimeError",
    }
    assert dump_raw_event(done())["stopReason"] == "end_turn"


def test_iter_skips_malformed_lines(tmp_path):
    path = tmp_path / "events.jsonl"
    path.write_text('{"session": "s1", "event": {"type": "done"}}\nnot json\n\n{"sessionUpdate": "plan"}\n')
    assert list(iter_raw_events(path)) == [("s1", {"type": "done"}), ("", {"sessionUpdate": "plan"})]


def test_safe_session_dir():
    assert safe_session_dir("../../etc") == "etc"
    assert safe_session_dir("...") == "_"


def test_dump_keeps_explicit_nulls():
    dumped = dump_raw_event(tool_update("t1", "completed"))
    assert dumped["toolCallId"] == "t1"
    assert "title" in dumped and dumped["title"] is None
    assert "rawOutput" in dumped and dumped["rawOutput"] is None
