from __future__ import annotations

import pytest

from acprelay.delivery import TextCoalescer, split_chunks
from tests.utils import FakeSender


def test_split_prefers_paragraph_breaks():
    text = "a" * 30 + "\n\n" + "b" * 30
    assert split_chunks(text, 40) == ["a" * 30 + "\n\n", "b" * 30]


def test_split_hard_cuts_without_breaks():
    assert split_chunks("x" * 25, 10) == ["x" * 10, "x" * 10, "x" * 5]


@pytest.mark.asyncio
async def test_forced_drain_sends_everything():
    sender = FakeSender()
    coalescer = TextCoalescer(sender, max_chunk_chars=10)
    coalescer.append("hello world, again")

    drained = await coalescer.drain(force=True)

    assert drained == "hello world, again"
    assert sender.sent == ["hello ", "world, ", "again"]
    assert coalescer.buffered == ""
    assert [h.message_id for h in coalescer.handles] == ["H1", "H2", "H3"]


@pytest.mark.asyncio
async def test_soft_drain_releases_whole_paragraphs_only():
    sender = FakeSender()
    coalescer = TextCoalescer(sender, min_chunk_chars=10)
    coalescer.append("short")
    assert await coalescer.drain(force=False) == ""

    coalescer.append(" paragraph\n\ntail")
    assert await coalescer.drain(force=False) == "short paragraph"
    assert coalescer.buffered == "tail"
    assert sender.sent == ["short paragraph"]


@pytest.mark.asyncio
async def test_empty_drain_sends_nothing():
    sender = FakeSender()
    assert await TextCoalescer(sender).drain(force=True) == ""
    assert sender.sent == []
