"""Classification of raw ACP session updates into canonical projection events.

The classifier is stateless and total: every raw event maps to exactly one
:class:`EventCategory`. Raw shapes accepted here:

- ACP schema models (``AgentMessageChunk``, ``ToolCallStart``, ...), optionally
  wrapped in a ``SessionNotification``;
- the same payloads as plain JSON dicts, camelCase or snake_case;
- a ``PromptResponse`` or ``{"type": "done"}`` dict, which ends the turn;
- an exception instance or ``{"type": "error"}`` dict, which ends the turn
  with an error.

Anything else becomes ``EventCategory.UNKNOWN``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from acp import PromptResponse
from acp.schema import SessionNotification

from acprelay.projection import render

logger = logging.getLogger(__name__)


class EventCategory(str, Enum):
    AGENT_MESSAGE_CHUNK = "agent_message_chunk"
    TOOL_CALL = "tool_call"
    TOOL_CALL_UPDATE = "tool_call_update"
    USAGE_UPDATE = "usage_update"
    AVAILABLE_COMMANDS_UPDATE = "available_commands_update"
    CURRENT_MODE_UPDATE = "current_mode_update"
    CONFIG_OPTION_UPDATE = "config_option_update"
    SESSION_INFO_UPDATE = "session_info_update"
    PLAN = "plan"
    AGENT_THOUGHT_CHUNK = "agent_thought_chunk"
    TERMINAL = "terminal"
    UNKNOWN = "unknown"


TEXT_CATEGORIES = frozenset({EventCategory.AGENT_MESSAGE_CHUNK})
TOOL_CATEGORIES = frozenset({EventCategory.TOOL_CALL, EventCategory.TOOL_CALL_UPDATE})
STATUS_CATEGORIES = frozenset(
    {
        EventCategory.USAGE_UPDATE,
        EventCategory.AVAILABLE_COMMANDS_UPDATE,
        EventCategory.CURRENT_MODE_UPDATE,
        EventCategory.CONFIG_OPTION_UPDATE,
        EventCategory.SESSION_INFO_UPDATE,
        EventCategory.PLAN,
        EventCategory.AGENT_THOUGHT_CHUNK,
    }
)

TERMINAL_TOOL_STATUSES = frozenset({"completed", "failed", "cancelled"})

_TAGS = {category.value: category for category in EventCategory}


@dataclass(frozen=True)
class ClassifiedEvent:
    """Immutable, category-tagged view of one raw event.

    ``raw`` is kept for logging only; projection memory never stores it.
    """

    category: EventCategory
    tool_call_id: str | None = None
    text: str | None = None
    title: str | None = None
    detail: str | None = None
    tool_status: str | None = None
    usage: tuple[int, int] | None = None
    stop_reason: str | None = None
    error: str | None = None
    raw: Any = field(default=None, compare=False, repr=False)

    @property
    def is_text(self) -> bool:
        return self.category in TEXT_CATEGORIES

    @property
    def is_tool(self) -> bool:
        return self.category in TOOL_CATEGORIES

    @property
    def is_status(self) -> bool:
        return self.category in STATUS_CATEGORIES

    @property
    def is_meta(self) -> bool:
        return self.is_tool or self.is_status

    @property
    def is_terminal(self) -> bool:
        return self.category is EventCategory.TERMINAL

    @property
    def is_terminal_tool_status(self) -> bool:
        return self.tool_status in TERMINAL_TOOL_STATUSES

    @property
    def failed(self) -> bool:
        return self.is_terminal and self.error is not None


def field_value(obj: Any, *names: str) -> Any:
    """Read the first present attribute or key among ``names``."""
    for name in names:
        if isinstance(obj, dict):
            if name in obj and obj[name] is not None:
                return obj[name]
        else:
            value = getattr(obj, name, None)
            if value is not None:
                return value
    return None


def classify(raw_event: Any) -> ClassifiedEvent:
    """Map a raw event to a :class:`ClassifiedEvent`; never raises."""
    try:
        return _classify(raw_event)
    except Exception:
        logger.debug("Failed to classify raw event; treating as unknown", exc_info=True)
        return ClassifiedEvent(EventCategory.UNKNOWN, raw=raw_event)


def _classify(raw_event: Any) -> ClassifiedEvent:
    if isinstance(raw_event, BaseException):
        return ClassifiedEvent(
            EventCategory.TERMINAL,
            error=str(raw_event) or type(raw_event).__name__,
            stop_reason="error",
            raw=raw_event,
        )
    if isinstance(raw_event, PromptResponse):
        return ClassifiedEvent(
            EventCategory.TERMINAL,
            stop_reason=str(field_value(raw_event, "stop_reason") or "end_turn"),
            raw=raw_event,
        )

    update = _unwrap(raw_event)
    terminal = _classify_terminal_dict(update, raw_event)
    if terminal is not None:
        return terminal

    tag = field_value(update, "session_update", "sessionUpdate")
    category = _TAGS.get(str(tag)) if tag is not None else None
    if category is None or category in (EventCategory.TERMINAL, EventCategory.UNKNOWN):
        return ClassifiedEvent(EventCategory.UNKNOWN, raw=raw_event)

    builder = _BUILDERS[category]
    return builder(update, raw_event)


def _unwrap(raw_event: Any) -> Any:
    if isinstance(raw_event, SessionNotification):
        return raw_event.update
    if isinstance(raw_event, dict):
        inner = raw_event.get("update")
        if inner is not None and ("sessionId" in raw_event or "session_id" in raw_event):
            return inner
    return raw_event


def _classify_terminal_dict(update: Any, raw_event: Any) -> ClassifiedEvent | None:
    if not isinstance(update, dict):
        return None
    kind = update.get("type")
    if kind == "error":
        message = update.get("message") or update.get("error") or "error"
        return ClassifiedEvent(EventCategory.TERMINAL, error=str(message), stop_reason="error", raw=raw_event)
    stop_reason = update.get("stopReason") or update.get("stop_reason")
    if kind == "done" or (stop_reason is not None and "sessionUpdate" not in update and "session_update" not in update):
        return ClassifiedEvent(EventCategory.TERMINAL, stop_reason=str(stop_reason or "end_turn"), raw=raw_event)
    return None


def _build_message_chunk(update: Any, raw_event: Any) -> ClassifiedEvent:
    text = render.content_text(field_value(update, "content"))
    return ClassifiedEvent(EventCategory.AGENT_MESSAGE_CHUNK, text=text, raw=raw_event)


def _build_thought_chunk(update: Any, raw_event: Any) -> ClassifiedEvent:
    text = render.content_text(field_value(update, "content"))
    return ClassifiedEvent(EventCategory.AGENT_THOUGHT_CHUNK, text=render.thought_text(text), raw=raw_event)


def _tool_fields(update: Any) -> dict[str, Any]:
    tool_call_id = field_value(update, "tool_call_id", "toolCallId")
    raw_input = field_value(update, "raw_input", "rawInput")
    raw_output = field_value(update, "raw_output", "rawOutput")
    title = field_value(update, "title")
    kind = field_value(update, "kind")
    status = field_value(update, "status")
    return {
        "tool_call_id": str(tool_call_id) if tool_call_id is not None else None,
        "title": render.tool_title(title, kind, raw_input),
        "status": str(getattr(status, "value", status)) if status is not None else None,
        "raw_input": raw_input if isinstance(raw_input, dict) else {},
        "raw_output": raw_output if isinstance(raw_output, dict) else {},
        "content": field_value(update, "content") or [],
    }


def _build_tool_call(update: Any, raw_event: Any) -> ClassifiedEvent:
    fields = _tool_fields(update)
    status = fields["status"] or "start"
    detail = render.tool_start_detail(fields["raw_input"])
    return ClassifiedEvent(
        EventCategory.TOOL_CALL,
        tool_call_id=fields["tool_call_id"],
        title=fields["title"],
        tool_status=status,
        detail=detail,
        text=render.tool_line(fields["title"], status, detail),
        raw=raw_event,
    )


def _build_tool_call_update(update: Any, raw_event: Any) -> ClassifiedEvent:
    fields = _tool_fields(update)
    status = fields["status"] or "in_progress"
    detail = render.tool_update_detail(status, fields["raw_output"], fields["content"])
    return ClassifiedEvent(
        EventCategory.TOOL_CALL_UPDATE,
        tool_call_id=fields["tool_call_id"],
        title=fields["title"],
        tool_status=status,
        detail=detail,
        text=render.tool_line(fields["title"], status, detail),
        raw=raw_event,
    )


def _build_usage(update: Any, raw_event: Any) -> ClassifiedEvent:
    source = field_value(update, "usage") or update
    used = _as_int(field_value(source, "used", "used_tokens", "usedTokens"))
    size = _as_int(field_value(source, "size", "context_size", "contextSize"))
    usage = (used, size) if used is not None and size is not None else None
    return ClassifiedEvent(EventCategory.USAGE_UPDATE, usage=usage, text=render.usage_text(usage), raw=raw_event)


def _build_commands(update: Any, raw_event: Any) -> ClassifiedEvent:
    commands = field_value(update, "available_commands", "availableCommands") or []
    names = [str(field_value(cmd, "name") or "") for cmd in commands]
    return ClassifiedEvent(
        EventCategory.AVAILABLE_COMMANDS_UPDATE,
        text=render.commands_text([name for name in names if name]),
        raw=raw_event,
    )


def _build_mode(update: Any, raw_event: Any) -> ClassifiedEvent:
    mode_id = field_value(update, "current_mode_id", "currentModeId", "mode_id", "modeId")
    return ClassifiedEvent(EventCategory.CURRENT_MODE_UPDATE, text=render.mode_text(mode_id), raw=raw_event)


def _build_config_options(update: Any, raw_event: Any) -> ClassifiedEvent:
    options = field_value(update, "config_options", "configOptions") or []
    pairs: list[tuple[str, str]] = []
    for option in options:
        name = field_value(option, "name", "id")
        value = field_value(option, "current_value", "currentValue", "value")
        if name is not None:
            pairs.append((str(name), "" if value is None else str(value)))
    return ClassifiedEvent(EventCategory.CONFIG_OPTION_UPDATE, text=render.config_text(pairs), raw=raw_event)


def _build_session_info(update: Any, raw_event: Any) -> ClassifiedEvent:
    title = field_value(update, "title")
    return ClassifiedEvent(EventCategory.SESSION_INFO_UPDATE, text=render.session_info_text(title), raw=raw_event)


def _build_plan(update: Any, raw_event: Any) -> ClassifiedEvent:
    entries = field_value(update, "entries") or []
    items = [
        (str(field_value(entry, "status") or "pending"), str(field_value(entry, "content") or "").strip())
        for entry in entries
    ]
    return ClassifiedEvent(EventCategory.PLAN, text=render.plan_text(items), raw=raw_event)


def _as_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


_BUILDERS = {
    EventCategory.AGENT_MESSAGE_CHUNK: _build_message_chunk,
    EventCategory.AGENT_THOUGHT_CHUNK: _build_thought_chunk,
    EventCategory.TOOL_CALL: _build_tool_call,
    EventCategory.TOOL_CALL_UPDATE: _build_tool_call_update,
    EventCategory.USAGE_UPDATE: _build_usage,
    EventCategory.AVAILABLE_COMMANDS_UPDATE: _build_commands,
    EventCategory.CURRENT_MODE_UPDATE: _build_mode,
    EventCategory.CONFIG_OPTION_UPDATE: _build_config_options,
    EventCategory.SESSION_INFO_UPDATE: _build_session_info,
    EventCategory.PLAN: _build_plan,
}
