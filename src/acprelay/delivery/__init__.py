"""Bundled production collaborators for the projection engine."""

from acprelay.delivery.coalescer import TextCoalescer, split_chunks
from acprelay.delivery.typing_keepalive import TypingKeepalive

__all__ = ["TextCoalescer", "TypingKeepalive", "split_chunks"]
