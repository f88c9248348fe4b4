"""Text delivery scheduling for ``live`` and ``final_only`` turns."""

from __future__ import annotations

import asyncio
import logging

from acprelay.log_utils import chunk_preview, log_chunks_enabled, log_event
from acprelay.projection.config import DeliveryMode
from acprelay.projection.interfaces import ChunkCoalescer

logger = logging.getLogger(__name__)


class DeliveryScheduler:
    """Feed accepted text into the coalescer and decide when to flush it.

    Both modes share :meth:`_flush`. ``live`` flushes after every accepted
    delta; ``final_only`` flushes once from :meth:`close`. Flushes never
    overlap, and :meth:`close` flushes at most once however often it is called.
    """

    def __init__(self, coalescer: ChunkCoalescer, *, mode: DeliveryMode, session_key: str) -> None:
        self._coalescer = coalescer
        self._mode = mode
        self._session_key = session_key
        self._lock = asyncio.Lock()
        self._pending_chars = 0
        self._closed = False
        self.flush_count = 0

    @property
    def mode(self) -> DeliveryMode:
        return self._mode

    @property
    def pending_chars(self) -> int:
        return self._pending_chars

    @property
    def closed(self) -> bool:
        return self._closed

    def enqueue(self, text: str) -> bool:
        """Hand text to the coalescer without flushing; False if dropped."""
        if not text:
            return False
        if self._closed:
            log_event(logger, "projection.text.after_close", level=logging.DEBUG, chars=len(text))
            return False
        self._coalescer.append(text)
        self._pending_chars += len(text)
        if log_chunks_enabled():
            log_event(logger, "projection.text.accepted", level=logging.DEBUG, chunk=chunk_preview(text))
        return True

    async def flush_live(self) -> None:
        """Flush enqueued text now in ``live`` mode; ``final_only`` waits for close."""
        if self._mode == "live" and not self._closed:
            await self._flush("delta")

    async def accept(self, text: str) -> None:
        if self.enqueue(text):
            await self.flush_live()

    async def close(self, reason: str) -> None:
        """Final flush for the turn; also used when the turn is cancelled."""
        if self._closed:
            async with self._lock:
                return
        self._closed = True
        await self._flush(reason)

    async def wait_idle(self) -> None:
        async with self._lock:
            return

    async def _flush(self, reason: str) -> None:
        async with self._lock:
            if self._pending_chars == 0:
                return
            pending = self._pending_chars
            self._pending_chars = 0
            try:
                flushed = await self._coalescer.drain(force=True)
            except Exception:
                logger.exception("Text flush failed for session %s (%d chars lost)", self._session_key, pending)
                return
            self.flush_count += 1
            log_event(
                logger,
                "projection.text.flush",
                level=logging.DEBUG,
                reason=reason,
                mode=self._mode,
                chars=len(flushed or ""),
            )
