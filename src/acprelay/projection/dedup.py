"""Per-turn memory of what has already been shown."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from enum import Enum


class ToolLifecycle(str, Enum):
    STARTED = "started"
    UPDATED = "updated"
    TERMINAL = "terminal"


@dataclass(frozen=True)
class DeliveryHandle:
    """Where a discrete message landed; opaque to the engine beyond ``message_id``."""

    channel: str
    account: str | None = None
    destination: str | None = None
    thread: str | None = None
    message_id: str | None = None


@dataclass
class ToolCallRecord:
    tool_call_id: str
    state: ToolLifecycle = ToolLifecycle.STARTED
    content_hash: str | None = None
    title: str | None = None
    handle: DeliveryHandle | None = None
    terminal_emitted: bool = False


def content_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


@dataclass
class DedupMemory:
    """Last emitted content per status key and per tool-call id.

    Only :func:`acprelay.projection.policy.commit` and the turn controller
    (for delivery handles) mutate this.
    """

    status_hashes: dict[str, str] = field(default_factory=dict)
    last_usage: tuple[int, int] | None = None
    usage_emitted: bool = False
    tool_calls: dict[str, ToolCallRecord] = field(default_factory=dict)

    def is_repeat_status(self, key: str, text: str) -> bool:
        return self.status_hashes.get(key) == content_hash(text)

    def remember_status(self, key: str, text: str) -> None:
        self.status_hashes[key] = content_hash(text)

    def tool_record(self, tool_call_id: str) -> ToolCallRecord | None:
        return self.tool_calls.get(tool_call_id)

    def is_repeat_tool(self, tool_call_id: str, text: str) -> bool:
        record = self.tool_calls.get(tool_call_id)
        return record is not None and record.content_hash == content_hash(text)

    def remember_usage(self, usage: tuple[int, int] | None) -> None:
        self.last_usage = usage
        self.usage_emitted = True

    def is_repeat_usage(self, usage: tuple[int, int] | None) -> bool:
        return self.usage_emitted and self.last_usage == usage
