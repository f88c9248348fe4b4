"""Visibility policy: decide what one classified event projects to.

:func:`evaluate` is pure. :func:`commit` applies the memory and budget update
for a decision; callers run the two back to back, with no suspension point in
between, so every event is judged against the memory left by the previous one.

Gates, in order (the first one that suppresses wins):

1. tag visibility (override, else default for the tag)
2. meta mode (``off`` / ``minimal`` / ``verbose``; never applies to text)
3. usage visibility and usage-tuple dedup
4. per-turn meta event budget
5. hard character cap for tool/status text
6. per-turn text budget with a single truncation notice
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from acprelay.projection import render
from acprelay.projection.budget import BudgetTracker
from acprelay.projection.config import ProjectionConfig
from acprelay.projection.dedup import DedupMemory, ToolCallRecord, ToolLifecycle, content_hash
from acprelay.projection.events import ClassifiedEvent, EventCategory

ANONYMOUS_TOOL_KEY = "<anonymous>"


@dataclass(frozen=True)
class Suppress:
    reason: str


@dataclass(frozen=True)
class Emit:
    text: str
    truncated: bool = False


@dataclass(frozen=True)
class EmitTruncationNotice:
    """``head`` is the part of the crossing delta that still fits the budget."""

    head: str
    notice: str


Decision = Union[Suppress, Emit, EmitTruncationNotice]


def tool_key(event: ClassifiedEvent) -> str:
    return event.tool_call_id or ANONYMOUS_TOOL_KEY


def rendered_text(event: ClassifiedEvent, memory: DedupMemory) -> str:
    """Full (untruncated) display text; tool updates borrow the title seen at start."""
    if event.is_tool:
        record = memory.tool_record(tool_key(event))
        title = event.title or (record.title if record is not None else None)
        return render.tool_line(title, event.tool_status or "", event.detail)
    return event.text or ""


def evaluate(
    config: ProjectionConfig,
    event: ClassifiedEvent,
    memory: DedupMemory,
    budget: BudgetTracker,
) -> Decision:
    if not config.is_tag_visible(event.category):
        return Suppress("hidden_tag")
    if event.is_text:
        return _evaluate_text(config, event, budget)

    text = rendered_text(event, memory)
    if not text:
        return Suppress("empty")

    reason = _mode_gate(config, event, text, memory)
    if reason is not None:
        return Suppress(reason)

    if event.category is EventCategory.USAGE_UPDATE:
        if not config.show_usage:
            return Suppress("usage_hidden")
        if memory.is_repeat_usage(event.usage):
            return Suppress("usage_unchanged")

    if budget.meta_exhausted:
        return Suppress("meta_budget")

    cap = config.char_cap_for(event.category)
    if len(text) > cap:
        return Emit(text[:cap], truncated=True)
    return Emit(text)


def _mode_gate(
    config: ProjectionConfig,
    event: ClassifiedEvent,
    text: str,
    memory: DedupMemory,
) -> str | None:
    mode = config.meta_mode
    if mode == "off":
        return "meta_off"

    if not event.is_tool:
        # usage has its own tuple-based dedup below
        if event.category is not EventCategory.USAGE_UPDATE and memory.is_repeat_status(event.category.value, text):
            return "repeat"
        return None

    key = tool_key(event)
    record = memory.tool_record(key)
    if event.category is EventCategory.TOOL_CALL:
        if record is not None and (mode == "minimal" or record.state is ToolLifecycle.TERMINAL):
            return "duplicate_start"
    elif mode == "minimal":
        if not event.is_terminal_tool_status:
            return "non_terminal_update"
        if record is not None and record.terminal_emitted:
            return "duplicate_terminal"
    if memory.is_repeat_tool(key, text):
        return "repeat"
    return None


def _evaluate_text(config: ProjectionConfig, event: ClassifiedEvent, budget: BudgetTracker) -> Decision:
    text = event.text or ""
    if not text:
        return Suppress("empty")
    if budget.text_exhausted:
        if budget.notice_sent:
            return Suppress("text_budget")
        return EmitTruncationNotice(head="", notice=config.truncation_notice)
    remaining = budget.text_remaining
    if len(text) > remaining:
        return EmitTruncationNotice(head=text[:remaining], notice=config.truncation_notice)
    return Emit(text)


def commit(
    event: ClassifiedEvent,
    decision: Decision,
    memory: DedupMemory,
    budget: BudgetTracker,
) -> None:
    """Record an emission decision in the turn's memory and budget."""
    if isinstance(decision, Suppress):
        return
    if isinstance(decision, EmitTruncationNotice):
        budget.add_text(len(decision.head))
        budget.mark_notice_sent()
        return
    if event.is_text:
        budget.add_text(len(decision.text))
        return

    full_text = rendered_text(event, memory)
    budget.add_meta()
    if not event.is_tool:
        memory.remember_status(event.category.value, full_text)
        if event.category is EventCategory.USAGE_UPDATE:
            memory.remember_usage(event.usage)
        return

    key = tool_key(event)
    record = memory.tool_calls.get(key)
    if record is None:
        record = ToolCallRecord(tool_call_id=key)
        memory.tool_calls[key] = record
    elif record.state is ToolLifecycle.STARTED and event.category is EventCategory.TOOL_CALL_UPDATE:
        record.state = ToolLifecycle.UPDATED
    record.content_hash = content_hash(full_text)
    if event.title:
        record.title = event.title
    if event.is_terminal_tool_status:
        record.state = ToolLifecycle.TERMINAL
        record.terminal_emitted = True
