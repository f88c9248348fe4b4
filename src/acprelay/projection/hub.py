"""Session routing: one active turn per session, plus the fast-abort bridge."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable

from acprelay.errors import TurnInProgressError
from acprelay.log_utils import log_context, log_event
from acprelay.projection.config import ConfigResolver
from acprelay.projection.events import classify
from acprelay.projection.interfaces import TurnCollaborators
from acprelay.projection.policy import Decision
from acprelay.projection.turn import ABORT_REASON, TurnController

logger = logging.getLogger(__name__)

ABORT_TRIGGERS = frozenset({"stop", "wait", "abort", "cancel", "esc", "exit", "interrupt", "halt"})
RESET_REASON = "reset"


def is_abort_trigger(text: str | None) -> bool:
    """True for a bare stop-style instruction such as ``stop``, ``/wait`` or ``Stop!``."""
    if not text:
        return False
    normalized = text.strip().lower().rstrip("!.? ")
    if normalized.startswith("/"):
        normalized = normalized[1:]
    return normalized in ABORT_TRIGGERS


class ProjectionHub:
    """Route raw events per session to that session's active turn.

    Events for one session are applied in order under a per-session lock;
    sessions are independent of each other. Abort triggers bypass the lock so a
    slow delivery cannot hold up cancellation.

    After an abort the agent may keep streaming until it answers the cancel.
    Those events go to the aborted turn, which only logs them raw, until a
    terminal event (or an explicit :meth:`begin_turn`) settles the session.
    """

    def __init__(
        self,
        build_collaborators: Callable[[str], TurnCollaborators],
        config_resolver: ConfigResolver,
    ) -> None:
        self._build_collaborators = build_collaborators
        self._config_resolver = config_resolver
        self._turns: dict[str, TurnController] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}
        self._aborted: dict[str, TurnController] = {}

    def active_turn(self, session_key: str) -> TurnController | None:
        turn = self._turns.get(session_key)
        if turn is None or turn.terminal:
            return None
        return turn

    def active_sessions(self) -> list[str]:
        return sorted(key for key, turn in self._turns.items() if not turn.terminal)

    def is_cancelling(self, session_key: str) -> bool:
        turn = self._turns.get(session_key)
        return turn is not None and turn.cancelling

    def awaiting_abort_terminal(self, session_key: str) -> bool:
        """True while an aborted turn is waiting for the agent's terminal event."""
        return session_key in self._aborted

    async def begin_turn(self, session_key: str, *, force: bool = False) -> TurnController:
        """Start a fresh turn; an active one is an error unless ``force`` resets it."""
        current = self.active_turn(session_key)
        if current is not None:
            if not force:
                raise TurnInProgressError(session_key)
            with log_context(session_id=session_key):
                log_event(logger, "projection.turn.reset")
            await current.cancel(RESET_REASON)
        self._aborted.pop(session_key, None)
        config = self._config_resolver.resolve(session_key)
        turn = TurnController(session_key, config, self._build_collaborators(session_key))
        self._turns[session_key] = turn
        return turn

    async def feed(self, session_key: str, raw_event: Any) -> Decision | None:
        """Apply one raw event, starting a turn for the session if none is active."""
        lock = self._locks.setdefault(session_key, asyncio.Lock())
        self._lock_users[session_key] = self._lock_users.get(session_key, 0) + 1
        try:
            async with lock:
                aborted = self._aborted.get(session_key)
                if aborted is not None:
                    await self._drain_aborted(session_key, aborted, raw_event)
                    return None
                turn = self.active_turn(session_key)
                if turn is None:
                    turn = await self.begin_turn(session_key)
                decision = await turn.handle(raw_event)
                if turn.terminal and self._turns.get(session_key) is turn:
                    del self._turns[session_key]
                return decision
        finally:
            self._release_lock(session_key)

    async def _drain_aborted(self, session_key: str, turn: TurnController, raw_event: Any) -> None:
        # the turn is terminal: handle() records the event in the raw log and drops it
        await turn.handle(raw_event)
        if classify(raw_event).is_terminal:
            del self._aborted[session_key]
            with log_context(session_id=session_key):
                log_event(logger, "projection.abort.settled")

    def _release_lock(self, session_key: str) -> None:
        users = self._lock_users.get(session_key, 1) - 1
        if users > 0:
            self._lock_users[session_key] = users
            return
        self._lock_users.pop(session_key, None)
        if session_key not in self._turns and session_key not in self._aborted:
            self._locks.pop(session_key, None)

    async def handle_abort_trigger(self, session_key: str, text: str | None) -> bool:
        """Cancel the session's active turn if ``text`` is an abort instruction."""
        if not is_abort_trigger(text):
            return False
        turn = self.active_turn(session_key)
        if turn is None:
            with log_context(session_id=session_key):
                log_event(logger, "projection.abort.unbound", level=logging.DEBUG)
            return False
        self._aborted[session_key] = turn
        await turn.cancel(ABORT_REASON)
        if self._turns.get(session_key) is turn:
            del self._turns[session_key]
        return True

    async def shutdown(self) -> None:
        """Cancel every active turn (process shutdown)."""
        turns = [turn for turn in self._turns.values() if not turn.terminal]
        await asyncio.gather(*(turn.cancel(ABORT_REASON) for turn in turns), return_exceptions=True)
        self._turns.clear()
        self._aborted.clear()
        self._locks.clear()
        self._lock_users.clear()
