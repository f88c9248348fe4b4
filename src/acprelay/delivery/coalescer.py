"""Text coalescer that turns accepted deltas into channel-sized messages."""

from __future__ import annotations

import logging

from acprelay.projection.dedup import DeliveryHandle
from acprelay.projection.interfaces import Sender

logger = logging.getLogger(__name__)

DEFAULT_MAX_CHUNK_CHARS = 4000
DEFAULT_MIN_CHUNK_CHARS = 800


def split_chunks(text: str, max_chars: int) -> list[str]:
    """Split ``text`` into pieces of at most ``max_chars``.

    Breaks prefer a paragraph boundary, then a newline, then whitespace, and
    only cut mid-word when a window has none of them in its second half.
    """
    chunks: list[str] = []
    rest = text
    while len(rest) > max_chars:
        window = rest[:max_chars]
        cut = -1
        for sep in ("\n\n", "\n", " "):
            idx = window.rfind(sep)
            if idx >= max_chars // 2:
                cut = idx + len(sep)
                break
        if cut <= 0:
            cut = max_chars
        chunks.append(rest[:cut])
        rest = rest[cut:]
    if rest:
        chunks.append(rest)
    return [chunk for chunk in chunks if chunk.strip()]


class TextCoalescer:
    """Accumulate text and send it through ``sender`` when drained.

    ``drain(force=True)`` sends everything buffered. ``drain(force=False)``
    only releases whole paragraphs, and only once at least
    ``min_chunk_chars`` are buffered.
    """

    def __init__(
        self,
        sender: Sender,
        *,
        max_chunk_chars: int = DEFAULT_MAX_CHUNK_CHARS,
        min_chunk_chars: int = DEFAULT_MIN_CHUNK_CHARS,
    ) -> None:
        if max_chunk_chars < 1:
            raise ValueError("max_chunk_chars must be positive")
        self._sender = sender
        self._max_chunk_chars = max_chunk_chars
        self._min_chunk_chars = min_chunk_chars
        self._buffer = ""
        self.handles: list[DeliveryHandle] = []

    @property
    def buffered(self) -> str:
        return self._buffer

    def append(self, text: str) -> None:
        self._buffer += text

    async def drain(self, force: bool) -> str:
        if not self._buffer:
            return ""
        if force:
            text, self._buffer = self._buffer, ""
        else:
            if len(self._buffer) < self._min_chunk_chars:
                return ""
            cut = self._buffer.rfind("\n\n")
            if cut <= 0:
                return ""
            text, self._buffer = self._buffer[:cut], self._buffer[cut + 2 :]
        for chunk in split_chunks(text, self._max_chunk_chars):
            self.handles.append(await self._sender.send(chunk))
        return text
