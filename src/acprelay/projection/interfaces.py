"""Capability interfaces the projection engine depends on.

The engine never talks to a channel directly; hosts inject implementations of
these protocols (see :mod:`acprelay.delivery` and :mod:`acprelay.display` for
the bundled ones).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Protocol

from acprelay.projection.dedup import DeliveryHandle


class RawEventLog(Protocol):
    """Append-only, lossless log of every raw event; never read by the engine."""

    def append(self, session_key: str, raw_event: Any) -> None: ...


class Sender(Protocol):
    async def send(self, content: str) -> DeliveryHandle: ...

    async def edit(self, handle: DeliveryHandle, content: str) -> bool: ...

    def supports_edit(self, handle: DeliveryHandle) -> bool: ...


class ChunkCoalescer(Protocol):
    """Text accumulator shared by both delivery modes."""

    def append(self, text: str) -> None: ...

    async def drain(self, force: bool) -> str: ...


class TypingSignaler(Protocol):
    """Idempotent typing indicator scoped to one channel/account/session."""

    async def start(self) -> None: ...

    async def refresh(self) -> None: ...

    async def stop(self) -> None: ...


CancelOperation = Callable[[str, str], Awaitable[bool]]
CleanupHook = Callable[[str], Awaitable[None]]


@dataclass
class NullRawEventLog:
    def append(self, session_key: str, raw_event: Any) -> None:
        _ = (session_key, raw_event)


@dataclass
class NullTypingSignaler:
    async def start(self) -> None:
        return None

    async def refresh(self) -> None:
        return None

    async def stop(self) -> None:
        return None


@dataclass
class TurnCollaborators:
    """Everything one turn needs from the outside world."""

    sender: Sender
    coalescer: ChunkCoalescer
    typing: TypingSignaler = field(default_factory=NullTypingSignaler)
    raw_log: RawEventLog = field(default_factory=NullRawEventLog)
    cancel: CancelOperation | None = None
    on_cleanup: CleanupHook | None = None
