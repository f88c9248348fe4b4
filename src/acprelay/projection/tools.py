"""Tool-call message delivery with edit-in-place.

Each tool-call id owns one slot. The first delivery sends a new message and
keeps its handle; later deliveries edit that message when the channel allows
it and otherwise fall back to sending a new one. The fallback message does not
replace the stored handle, so every update for an id targets the message sent
for its start.

A slot runs at most one send/edit at a time. Deliveries that arrive meanwhile
share a single pending slot: a newer one supersedes an older one that has not
started yet, so the visible content is always the last write.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum

from acprelay.log_utils import log_context, log_event
from acprelay.projection.dedup import DeliveryHandle
from acprelay.projection.interfaces import Sender

logger = logging.getLogger(__name__)


class DeliveryOutcome(str, Enum):
    SENT = "sent"
    EDITED = "edited"
    FALLBACK_SENT = "fallback_sent"
    SUPERSEDED = "superseded"
    FAILED = "failed"
    DROPPED = "dropped"


@dataclass(frozen=True)
class DeliveryResult:
    outcome: DeliveryOutcome
    handle: DeliveryHandle | None = None


@dataclass
class _Pending:
    text: str
    future: asyncio.Future[DeliveryResult]


@dataclass
class _ToolSlot:
    handle: DeliveryHandle | None = None
    pending: _Pending | None = None
    worker: asyncio.Task[None] | None = None
    history: list[DeliveryOutcome] = field(default_factory=list)


class ToolLifecycleDeliverer:
    def __init__(self, sender: Sender, *, session_key: str) -> None:
        self._sender = sender
        self._session_key = session_key
        self._slots: dict[str, _ToolSlot] = {}
        self._closed = False

    def handle_for(self, tool_call_id: str) -> DeliveryHandle | None:
        slot = self._slots.get(tool_call_id)
        return slot.handle if slot is not None else None

    def outcomes_for(self, tool_call_id: str) -> list[DeliveryOutcome]:
        slot = self._slots.get(tool_call_id)
        return list(slot.history) if slot is not None else []

    async def deliver(self, tool_call_id: str, text: str) -> DeliveryResult:
        """Show ``text`` for ``tool_call_id``; resolves once delivered or superseded."""
        return await self.submit(tool_call_id, text)

    def submit(self, tool_call_id: str, text: str) -> asyncio.Future[DeliveryResult]:
        """Queue ``text`` for ``tool_call_id`` without waiting.

        Work queued here is covered by :meth:`close`, so it is delivered even if
        the turn ends before the caller awaits the returned future.
        """
        future: asyncio.Future[DeliveryResult] = asyncio.get_running_loop().create_future()
        if self._closed:
            future.set_result(DeliveryResult(DeliveryOutcome.DROPPED))
            return future
        slot = self._slots.setdefault(tool_call_id, _ToolSlot())
        if slot.pending is not None and not slot.pending.future.done():
            slot.pending.future.set_result(DeliveryResult(DeliveryOutcome.SUPERSEDED, slot.handle))
        slot.pending = _Pending(text=text, future=future)
        if slot.worker is None or slot.worker.done():
            slot.worker = asyncio.create_task(self._run_slot(tool_call_id, slot))
        return future

    async def wait_idle(self) -> None:
        workers = [slot.worker for slot in self._slots.values() if slot.worker is not None and not slot.worker.done()]
        if workers:
            await asyncio.gather(*workers, return_exceptions=True)

    async def close(self) -> None:
        """Let in-flight deliveries settle, then refuse new ones."""
        await self.wait_idle()
        self._closed = True

    async def _run_slot(self, tool_call_id: str, slot: _ToolSlot) -> None:
        with log_context(session_id=self._session_key, tool_call_id=tool_call_id):
            while slot.pending is not None:
                item = slot.pending
                slot.pending = None
                if item.future.done():
                    continue
                result = await self._deliver_one(tool_call_id, slot, item.text)
                slot.history.append(result.outcome)
                if not item.future.done():
                    item.future.set_result(result)

    async def _deliver_one(self, tool_call_id: str, slot: _ToolSlot, text: str) -> DeliveryResult:
        if slot.handle is None:
            handle = await self._send(text)
            if handle is None:
                return DeliveryResult(DeliveryOutcome.FAILED)
            slot.handle = handle
            return DeliveryResult(DeliveryOutcome.SENT, handle)

        handle = slot.handle
        if not handle.message_id:
            log_event(logger, "projection.tool.fallback", level=logging.DEBUG, reason="no_message_id")
        elif not self._sender.supports_edit(handle):
            log_event(logger, "projection.tool.fallback", level=logging.DEBUG, reason="edit_unsupported")
        else:
            try:
                edited = await self._sender.edit(handle, text)
            except Exception:
                logger.warning("Edit of tool message %s raised; sending a new message", handle.message_id, exc_info=True)
                edited = False
            if edited:
                return DeliveryResult(DeliveryOutcome.EDITED, handle)
            log_event(logger, "projection.tool.edit_failed", level=logging.WARNING, message_id=handle.message_id)

        fallback = await self._send(text)
        if fallback is None:
            return DeliveryResult(DeliveryOutcome.FAILED, handle)
        return DeliveryResult(DeliveryOutcome.FALLBACK_SENT, fallback)

    async def _send(self, text: str) -> DeliveryHandle | None:
        try:
            return await self._sender.send(text)
        except Exception:
            logger.warning("Tool message send failed for session %s", self._session_key, exc_info=True)
            return None
