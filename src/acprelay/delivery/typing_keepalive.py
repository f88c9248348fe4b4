"""Typing indicator with a periodic keepalive loop."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_S = 4.0


class TypingKeepalive:
    """Re-send a channel's typing action every ``interval_s`` until stopped.

    ``start``, ``refresh`` and ``stop`` are idempotent. Errors from the channel
    are logged and end the loop; they never reach the caller.
    """

    def __init__(
        self,
        send_action: Callable[[], Awaitable[None]],
        *,
        interval_s: float = DEFAULT_INTERVAL_S,
        label: str = "typing",
    ) -> None:
        self._send_action = send_action
        self._interval_s = interval_s
        self._label = label
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop())

    async def refresh(self) -> None:
        if not self.running:
            return
        await self._send_safely()

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _loop(self) -> None:
        while True:
            if not await self._send_safely():
                return
            await asyncio.sleep(self._interval_s)

    async def _send_safely(self) -> bool:
        try:
            await self._send_action()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("%s keepalive failed", self._label)
            return False
        return True
