from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from acprelay.delivery import TextCoalescer
from acprelay.projection import Emit, ProjectionConfig, Suppress, TurnCollaborators, TurnController, TurnPhase
from tests.utils import done, make_harness, make_turn, text, tool_start, tool_update


@pytest.mark.asyncio
async def test_turn_streams_text_and_stops_typing_after_flush():
    harness = make_harness()
    turn = make_turn(harness)

    assert await turn.handle(text("Hello ")) == Emit("Hello ")
    await turn.handle(text("world"))
    assert await turn.handle(done()) is None

    assert harness.coalescer.flushes == ["Hello ", "world"]
    assert harness.events[0] == "typing:start"
    assert harness.events[-1] == "typing:stop"
    assert harness.events.index("flush:world") < harness.events.index("typing:stop")
    assert turn.state.phase is TurnPhase.TERMINAL
    assert turn.state.terminal_reason == "end_turn"
    assert turn.memory is None


@pytest.mark.asyncio
async def test_final_only_delivers_once_at_end():
    harness = make_harness()
    turn = make_turn(harness, delivery_mode="final_only")

    for delta in ("a", "b", "c"):
        await turn.handle(text(delta))
    assert harness.coalescer.flushes == []
    await turn.handle(done())

    assert harness.coalescer.flushes == ["abc"]
    assert turn.scheduler.flush_count == 1


@pytest.mark.asyncio
async def test_every_raw_event_is_logged_including_hidden_and_late():
    harness = make_harness()
    turn = make_turn(harness)
    thought = {"sessionUpdate": "agent_thought_chunk", "content": {"type": "text", "text": "x"}}

    assert await turn.handle(thought) == Suppress("hidden_tag")
    await turn.handle(done())
    assert await turn.handle(text("late")) is None

    assert len(harness.raw_log.records) == 3
    assert harness.coalescer.appended == []


@pytest.mark.asyncio
async def test_tool_lifecycle_edits_in_place():
    harness = make_harness()
    turn = make_turn(harness)

    await turn.handle(tool_start("t1", raw_input={"tool": "run_command", "command": "ls"}))
    await turn.handle(tool_update("t1", "in_progress"))
    await turn.handle(tool_update("t1", "completed", raw_output={"returncode": 0}))
    await turn.handle(done())

    assert harness.sender.sent == ["🛠️ Tool[start]: run_command cmd=`ls`"]
    assert [body for _, body in harness.sender.edits] == ["🛠️ Tool[completed]: run_command rc=0"]


@pytest.mark.asyncio
async def test_typing_first_text_waits_for_text():
    harness = make_harness()
    turn = make_turn(harness, typing_start="first_text")

    await turn.handle(tool_start("t1"))
    assert "typing:start" not in harness.events
    await turn.handle(text("hi"))
    assert harness.events.count("typing:start") == 1
    await turn.handle(done())
    assert harness.events[-1] == "typing:stop"


@pytest.mark.asyncio
async def test_no_typing_stop_when_nothing_was_visible():
    harness = make_harness()
    turn = make_turn(harness)
    await turn.handle(done())
    assert harness.events == []


@pytest.mark.asyncio
async def test_truncation_notice_is_delivered_once():
    harness = make_harness()
    turn = make_turn(harness, max_turn_chars=5, truncation_notice="[cut]")

    await turn.handle(text("abc"))
    await turn.handle(text("defgh"))
    await turn.handle(text("ijk"))
    await turn.handle(done())

    assert "".join(harness.coalescer.flushes) == "abcde\n\n[cut]"
    assert turn.state.truncation_notice_sent
    assert turn.state.emitted_text_chars == 5


@pytest.mark.asyncio
async def test_cancel_twice_runs_external_cancel_and_cleanup_once():
    harness = make_harness()
    cancel = AsyncMock(return_value=True)
    on_cleanup = AsyncMock()
    turn = make_turn(harness, cancel=cancel, on_cleanup=on_cleanup)
    await turn.handle(text("partial"))

    results = await asyncio.gather(turn.cancel(), turn.cancel())

    assert results == [True, True]
    cancel.assert_awaited_once_with("s1", "abort")
    on_cleanup.assert_awaited_once_with("s1")
    assert harness.events.count("typing:stop") == 1
    assert turn.state.terminal_reason == "cancelled"


@pytest.mark.asyncio
async def test_cleanup_runs_when_cancel_operation_fails():
    harness = make_harness()
    cancel = AsyncMock(side_effect=RuntimeError("agent gone"))
    on_cleanup = AsyncMock()
    turn = make_turn(harness, cancel=cancel, on_cleanup=on_cleanup)
    await turn.handle(text("x"))

    assert await turn.cancel() is True
    on_cleanup.assert_awaited_once()
    assert "typing:stop" in harness.events
    assert turn.terminal


@pytest.mark.asyncio
async def test_cancel_flushes_final_only_text():
    harness = make_harness()
    turn = make_turn(harness, delivery_mode="final_only", cancel=AsyncMock(return_value=True))
    await turn.handle(text("so far"))

    await turn.cancel()

    assert harness.coalescer.flushes == ["so far"]
    assert await turn.handle(text("after")) is None
    assert harness.coalescer.flushes == ["so far"]


@pytest.mark.asyncio
async def test_cancel_after_finish_is_noop():
    harness = make_harness()
    cancel = AsyncMock(return_value=True)
    turn = make_turn(harness, cancel=cancel)
    await turn.handle(done())

    assert await turn.cancel() is False
    cancel.assert_not_awaited()


@pytest.mark.asyncio
async def test_error_event_ends_turn():
    harness = make_harness()
    turn = make_turn(harness)
    await turn.handle(text("x"))
    await turn.handle(RuntimeError("rate limited"))
    assert turn.state.terminal_reason == "error"
    assert harness.events[-1] == "typing:stop"


@pytest.mark.asyncio
async def test_status_send_failure_does_not_break_turn():
    harness = make_harness()
    harness.sender.send = AsyncMock(side_effect=RuntimeError("down"))  # type: ignore[method-assign]
    turn = make_turn(harness, tag_visibility={"plan": True})

    decision = await turn.handle({"sessionUpdate": "plan", "entries": [{"content": "step", "status": "pending"}]})
    assert isinstance(decision, Emit)
    await turn.handle(done())
    assert turn.terminal


def _gate_typing_start(harness) -> asyncio.Event:
    gate = asyncio.Event()

    async def start() -> None:
        harness.events.append("typing:start")
        await gate.wait()

    harness.typing.start = start  # type: ignore[method-assign]
    return gate


@pytest.mark.asyncio
async def test_cancel_during_dispatch_still_delivers_accepted_text():
    harness = make_harness()
    gate = _gate_typing_start(harness)
    turn = make_turn(harness, delivery_mode="final_only", cancel=AsyncMock(return_value=True))

    handling = asyncio.create_task(turn.handle(text("accepted")))
    await asyncio.sleep(0.01)
    await turn.cancel()
    gate.set()
    assert await handling == Emit("accepted")

    assert harness.coalescer.flushes == ["accepted"]
    assert turn.state.emitted_text_chars == 8


@pytest.mark.asyncio
async def test_cancel_during_dispatch_still_delivers_accepted_tool_start():
    harness = make_harness()
    gate = _gate_typing_start(harness)
    turn = make_turn(harness, cancel=AsyncMock(return_value=True))

    handling = asyncio.create_task(turn.handle(tool_start("t1")))
    await asyncio.sleep(0.01)
    await turn.cancel()
    gate.set()
    await handling

    assert harness.sender.sent == ["🛠️ Tool[start]: run_command"]


@pytest.mark.asyncio
async def test_final_text_delivered_after_meta_cap():
    harness = make_harness()
    turn = make_turn(harness, meta_mode="verbose", max_meta_events_per_turn=1)

    await turn.handle(tool_start("t1"))
    assert await turn.handle(tool_start("t2")) == Suppress("meta_budget")
    await turn.handle(text("final answer"))
    await turn.handle(done())

    assert harness.sender.sent == ["🛠️ Tool[start]: run_command"]
    assert harness.coalescer.flushes == ["final answer"]
    assert turn.state.emitted_meta_events == 1


def _ordered_turn(delivery_mode: str):
    harness = make_harness()
    collaborators = TurnCollaborators(
        sender=harness.sender,
        coalescer=TextCoalescer(harness.sender),
        typing=harness.typing,
    )
    config = ProjectionConfig(delivery_mode=delivery_mode, tag_visibility={"plan": True})
    return harness, TurnController("s1", config, collaborators)


_PLAN = {"sessionUpdate": "plan", "entries": [{"content": "step", "status": "pending"}]}


@pytest.mark.asyncio
async def test_live_messages_follow_arrival_order():
    harness, turn = _ordered_turn("live")

    for raw in (text("a"), tool_start("t1"), text("b"), _PLAN, done()):
        await turn.handle(raw)

    assert harness.sender.calls == [
        ("send", "a"),
        ("send", "🛠️ Tool[start]: run_command"),
        ("send", "b"),
        ("send", "Plan:\n[ ] step"),
    ]


@pytest.mark.asyncio
async def test_final_only_delays_only_the_text_block():
    harness, turn = _ordered_turn("final_only")

    for raw in (text("a"), tool_start("t1"), text("b"), _PLAN, done()):
        await turn.handle(raw)

    assert harness.sender.calls == [
        ("send", "🛠️ Tool[start]: run_command"),
        ("send", "Plan:\n[ ] step"),
        ("send", "ab"),
    ]
