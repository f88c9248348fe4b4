"""Turn controller: drives one agent turn from first event to terminal state."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any

from acprelay.log_utils import log_context, log_event
from acprelay.projection.budget import BudgetTracker
from acprelay.projection.config import DeliveryMode, ProjectionConfig
from acprelay.projection.dedup import DedupMemory
from acprelay.projection.events import ClassifiedEvent, classify
from acprelay.projection.interfaces import TurnCollaborators
from acprelay.projection.policy import (
    Decision,
    Emit,
    EmitTruncationNotice,
    Suppress,
    commit,
    evaluate,
    tool_key,
)
from acprelay.projection.scheduler import DeliveryScheduler
from acprelay.projection.tools import ToolLifecycleDeliverer

logger = logging.getLogger(__name__)

ABORT_REASON = "abort"


class TurnPhase(str, Enum):
    IDLE = "idle"
    ACTIVE = "active"
    TERMINAL = "terminal"


@dataclass
class TurnState:
    session_key: str
    delivery_mode: DeliveryMode
    started_at: float
    phase: TurnPhase = TurnPhase.IDLE
    terminal_reason: str | None = None
    emitted_text_chars: int = 0
    emitted_meta_events: int = 0
    truncation_notice_sent: bool = False

    @property
    def terminal(self) -> bool:
        return self.phase is TurnPhase.TERMINAL


class TurnController:
    """Project one turn's raw events onto the injected collaborators.

    Events are applied strictly in arrival order. Each event is classified,
    judged by the visibility policy and committed to the turn's memory before
    any delivery is awaited, so the next event always sees up-to-date memory.
    """

    def __init__(self, session_key: str, config: ProjectionConfig, collaborators: TurnCollaborators) -> None:
        self.config = config
        self.state = TurnState(
            session_key=session_key,
            delivery_mode=config.delivery_mode,
            started_at=time.time(),
        )
        self._collab = collaborators
        self._memory: DedupMemory | None = DedupMemory()
        self._budget: BudgetTracker | None = BudgetTracker(
            max_turn_chars=config.max_turn_chars,
            max_meta_events=config.max_meta_events_per_turn,
        )
        self._scheduler = DeliveryScheduler(
            collaborators.coalescer,
            mode=config.delivery_mode,
            session_key=session_key,
        )
        self._tools = ToolLifecycleDeliverer(collaborators.sender, session_key=session_key)
        self._lock = asyncio.Lock()
        self._typing_started = False
        self._cleanup_task: asyncio.Task[None] | None = None
        self._cancel_task: asyncio.Task[bool] | None = None

    @property
    def session_key(self) -> str:
        return self.state.session_key

    @property
    def terminal(self) -> bool:
        return self.state.terminal

    @property
    def cancelling(self) -> bool:
        return self._cancel_task is not None and not self._cancel_task.done()

    @property
    def memory(self) -> DedupMemory | None:
        """Dedup memory for the active turn; ``None`` once the turn is terminal."""
        return self._memory

    @property
    def scheduler(self) -> DeliveryScheduler:
        return self._scheduler

    @property
    def tools(self) -> ToolLifecycleDeliverer:
        return self._tools

    async def handle(self, raw_event: Any) -> Decision | None:
        """Apply one raw event. Returns the policy decision, or None for terminal/ignored events."""
        self._log_raw(raw_event)
        event = classify(raw_event)
        with log_context(session_id=self.session_key):
            async with self._lock:
                if self.state.terminal:
                    log_event(logger, "projection.event.after_terminal", level=logging.DEBUG, category=event.category.value)
                    return None
                if self.state.phase is TurnPhase.IDLE:
                    self.state.phase = TurnPhase.ACTIVE
                    log_event(logger, "projection.turn.start", mode=self.state.delivery_mode)
                if event.is_terminal:
                    reason = "error" if event.failed else (event.stop_reason or "done")
                    if event.failed:
                        log_event(logger, "projection.turn.error", level=logging.WARNING, error=event.error)
                    await self._terminate(reason)
                    return None
                return await self._apply(event)

    async def finish(self, reason: str = "done") -> None:
        """End the turn without a terminal event from the stream (explicit reset)."""
        await self._terminate(reason)

    async def cancel(self, reason: str = ABORT_REASON) -> bool:
        """Cancel the turn: ask the agent to stop, then always clean up locally.

        Repeated or concurrent calls share one execution. Returns False when the
        turn had already ended without a cancel.
        """
        if self._cancel_task is None:
            if self.state.terminal:
                return False
            self._mark_terminal("cancelled")
            self._cancel_task = asyncio.create_task(self._run_cancel(reason))
        return await asyncio.shield(self._cancel_task)

    async def _run_cancel(self, reason: str) -> bool:
        with log_context(session_id=self.session_key):
            log_event(logger, "projection.cancel.request", reason=reason)
            ok = False
            try:
                if self._collab.cancel is not None:
                    ok = bool(await self._collab.cancel(self.session_key, reason))
                else:
                    log_event(logger, "projection.cancel.unbound", level=logging.DEBUG)
            except Exception:
                logger.warning("Cancel operation raised for session %s", self.session_key, exc_info=True)
                ok = False
            if not ok and self._collab.cancel is not None:
                log_event(logger, "projection.cancel.failed", level=logging.WARNING, reason=reason)
            await self._terminate("cancelled")
            return True

    async def _apply(self, event: ClassifiedEvent) -> Decision:
        memory, budget = self._memory, self._budget
        assert memory is not None and budget is not None
        decision = evaluate(self.config, event, memory, budget)
        commit(event, decision, memory, budget)
        self._sync_counters(budget)
        log_event(
            logger,
            "projection.decision",
            level=logging.DEBUG,
            category=event.category.value,
            decision=type(decision).__name__,
            reason=getattr(decision, "reason", None),
            tool_call_id=event.tool_call_id,
        )
        if isinstance(decision, Suppress):
            return decision
        await self._dispatch(event, decision)
        return decision

    async def _dispatch(self, event: ClassifiedEvent, decision: Decision) -> None:
        # Text and tool work is queued before the first await; cleanup delivers
        # whatever is queued.
        if self.state.terminal:
            return
        if isinstance(decision, EmitTruncationNotice):
            self._scheduler.enqueue(decision.head)
            self._scheduler.enqueue(f"\n\n{decision.notice}")
            log_event(logger, "projection.text.truncated", chars=self.state.emitted_text_chars)
            await self._typing_for(event)
            await self._scheduler.flush_live()
            return
        assert isinstance(decision, Emit)
        if event.is_text:
            self._scheduler.enqueue(decision.text)
            await self._typing_for(event)
            await self._scheduler.flush_live()
        elif event.is_tool:
            key = tool_key(event)
            pending = self._tools.submit(key, decision.text)
            await self._typing_for(event)
            result = await pending
            record = self._memory.tool_record(key) if self._memory is not None else None
            if record is not None and record.handle is None:
                record.handle = self._tools.handle_for(key)
            log_event(logger, "projection.tool.delivered", level=logging.DEBUG, tool_call_id=key, outcome=result.outcome.value)
        else:
            await self._typing_for(event)
            await self._send_status(decision.text)

    async def _send_status(self, text: str) -> None:
        try:
            await self._collab.sender.send(text)
        except Exception:
            logger.warning("Status message send failed for session %s", self.session_key, exc_info=True)

    async def _typing_for(self, event: ClassifiedEvent) -> None:
        if self._typing_started:
            await self._typing_call("refresh")
            return
        if self.config.typing_start == "first_text" and not event.is_text:
            return
        self._typing_started = True
        await self._typing_call("start")

    async def _typing_call(self, action: str) -> None:
        try:
            await getattr(self._collab.typing, action)()
        except Exception:
            logger.warning("Typing %s failed for session %s", action, self.session_key, exc_info=True)

    def _sync_counters(self, budget: BudgetTracker) -> None:
        self.state.emitted_text_chars = budget.text_chars
        self.state.emitted_meta_events = budget.meta_events
        self.state.truncation_notice_sent = budget.notice_sent

    def _mark_terminal(self, reason: str) -> None:
        if self.state.terminal:
            return
        self.state.phase = TurnPhase.TERMINAL
        self.state.terminal_reason = reason

    async def _terminate(self, reason: str) -> None:
        self._mark_terminal(reason)
        if self._cleanup_task is None:
            self._cleanup_task = asyncio.create_task(self._cleanup())
        await asyncio.shield(self._cleanup_task)

    async def _cleanup(self) -> None:
        with log_context(session_id=self.session_key):
            await self._scheduler.close(self.state.terminal_reason or "done")
            await self._tools.close()
            self._memory = None
            self._budget = None
            if self._typing_started:
                await self._typing_call("stop")
            if self._collab.on_cleanup is not None:
                try:
                    await self._collab.on_cleanup(self.session_key)
                except Exception:
                    logger.warning("Cleanup hook failed for session %s", self.session_key, exc_info=True)
            log_event(
                logger,
                "projection.turn.terminal",
                reason=self.state.terminal_reason,
                text_chars=self.state.emitted_text_chars,
                meta_events=self.state.emitted_meta_events,
                flushes=self._scheduler.flush_count,
                duration_s=round(time.time() - self.state.started_at, 3),
            )

    def _log_raw(self, raw_event: Any) -> None:
        try:
            self._collab.raw_log.append(self.session_key, raw_event)
        except Exception:
            logger.exception("Raw event log append failed for session %s", self.session_key)
