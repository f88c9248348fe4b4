from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any

from acp import PromptResponse
from acp.helpers import text_block, update_agent_message
from acp.schema import ToolCallProgress, ToolCallStart

from acprelay.projection import DeliveryHandle, ProjectionConfig, TurnCollaborators, TurnController


class FakeSender:
    """Records sends and edits; edit results and capability are configurable."""

    def __init__(self, *, supports_edit: bool = True, edit_result: bool = True, channel: str = "test") -> None:
        self.sent: list[str] = []
        self.edits: list[tuple[DeliveryHandle, str]] = []
        self.calls: list[tuple[str, str]] = []
        self.can_edit = supports_edit
        self.edit_result = edit_result
        self.channel = channel
        self.send_delay = 0.0

    async def send(self, content: str) -> DeliveryHandle:
        if self.send_delay:
            await asyncio.sleep(self.send_delay)
        self.sent.append(content)
        self.calls.append(("send", content))
        return DeliveryHandle(channel=self.channel, destination="chat", message_id=f"H{len(self.sent)}")

    async def edit(self, handle: DeliveryHandle, content: str) -> bool:
        self.edits.append((handle, content))
        self.calls.append(("edit", content))
        return self.edit_result

    def supports_edit(self, handle: DeliveryHandle) -> bool:
        return self.can_edit


class FakeCoalescer:
    """Buffers appended text; every drain returns and records what was buffered."""

    def __init__(self, events: list[str] | None = None) -> None:
        self.appended: list[str] = []
        self.flushes: list[str] = []
        self.buffer = ""
        self.events = events

    def append(self, text: str) -> None:
        self.appended.append(text)
        self.buffer += text

    async def drain(self, force: bool) -> str:
        text, self.buffer = self.buffer, ""
        if text:
            self.flushes.append(text)
            if self.events is not None:
                self.events.append(f"flush:{text}")
        return text


@dataclass
class FakeTyping:
    events: list[str] = field(default_factory=list)

    async def start(self) -> None:
        self.events.append("typing:start")

    async def refresh(self) -> None:
        self.events.append("typing:refresh")

    async def stop(self) -> None:
        self.events.append("typing:stop")


@dataclass
class FakeRawLog:
    records: list[tuple[str, Any]] = field(default_factory=list)

    def append(self, session_key: str, raw_event: Any) -> None:
        self.records.append((session_key, raw_event))


@dataclass
class Harness:
    sender: FakeSender
    coalescer: FakeCoalescer
    typing: FakeTyping
    raw_log: FakeRawLog
    events: list[str]

    def collaborators(self, **kwargs: Any) -> TurnCollaborators:
        return TurnCollaborators(
            sender=self.sender,
            coalescer=self.coalescer,
            typing=self.typing,
            raw_log=self.raw_log,
            **kwargs,
        )


def make_harness(**sender_kwargs: Any) -> Harness:
    events: list[str] = []
    return Harness(
        sender=FakeSender(**sender_kwargs),
        coalescer=FakeCoalescer(events),
        typing=FakeTyping(events),
        raw_log=FakeRawLog(),
        events=events,
    )


def make_turn(harness: Harness, session_key: str = "s1", **config: Any) -> TurnController:
    collab_kwargs = {key: config.pop(key) for key in ("cancel", "on_cleanup") if key in config}
    return TurnController(session_key, ProjectionConfig(**config), harness.collaborators(**collab_kwargs))


def text(value: str):
    return update_agent_message(text_block(value))


def tool_start(tool_call_id: str, title: str = "run_command", **kwargs: Any) -> ToolCallStart:
    return ToolCallStart(session_update="tool_call", tool_call_id=tool_call_id, title=title, **kwargs)


def tool_update(tool_call_id: str, status: str, **kwargs: Any) -> ToolCallProgress:
    return ToolCallProgress(session_update="tool_call_update", tool_call_id=tool_call_id, status=status, **kwargs)


def done(stop_reason: str = "end_turn") -> PromptResponse:
    return PromptResponse(stop_reason=stop_reason)
