"""Tests for context collection (ContextCollector)."""
from __future__ import annotations

from typing import List
from unittest.mock import AsyncMock

import pytest

from intent_router.application.context import ContextCollector, strip_markup, trim_oldest
from intent_router.domain import (
    CollationBudget,
    ContextMessage,
    ContextSource,
    MessageNotFoundError,
    RawMessage,
    Role,
)
from intent_router.infrastructure.message_store import InMemoryMessageStore

BOT = "bot-1"


def _raw(
    id: str,
    content: str,
    author: str = "u1",
    name: str = "alice",
    ts: int = 0,
    reply_to: str | None = None,
    is_bot: bool = False,
    display: str | None = None,
    images: tuple = (),
) -> RawMessage:
    return RawMessage(
        id=id,
        content=content,
        author_id=author,
        author_name=name,
        display_name=display,
        is_bot=is_bot,
        created_at_ms=ts,
        reply_to_id=reply_to,
        images=images,
    )


def _collector(**kw) -> ContextCollector:
    return ContextCollector(BOT, **kw)


# ---------------------------------------------------------------------------
# strip_markup
# ---------------------------------------------------------------------------


def test_strip_markup_removes_mentions_and_emoji_ids():
    assert strip_markup("<@123> hi <#456> <:wave:789>") == "hi :wave:"


def test_strip_markup_removes_subtext_lines():
    assert strip_markup("answer\n-# generated in 2s") == "answer"


# ---------------------------------------------------------------------------
# Reply chain
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_reply_chain_oldest_first():
    store = InMemoryMessageStore([
        _raw("a", "first", ts=1),
        _raw("b", "second", author=BOT, name="bot", ts=2, reply_to="a"),
    ])
    trigger = _raw("t", "third", ts=3, reply_to="b")
    out = await _collector().collect_reply_chain(store, trigger, CollationBudget(10, 1000))
    assert [m.origin_id for m in out] == ["a", "b"]
    assert [m.role for m in out] == [Role.USER, Role.ASSISTANT]
    assert all(m.source is ContextSource.REPLY for m in out)
    assert not any(m.origin_id == "t" for m in out)


@pytest.mark.asyncio
async def test_reply_chain_cycle_terminates():
    # B replies to A, and a forged reference makes A appear to reply to B
    a = _raw("a", "message A", ts=1, reply_to="b")
    b = _raw("b", "message B", ts=2, reply_to="a")
    store = InMemoryMessageStore([a, b])
    out = await _collector().collect_reply_chain(store, b, CollationBudget(10, 1000))
    assert [m.origin_id for m in out] == ["a"]


@pytest.mark.asyncio
async def test_reply_chain_stops_at_depth():
    msgs = [_raw(f"m{i}", f"msg {i}", ts=i, reply_to=f"m{i - 1}" if i else None) for i in range(6)]
    store = InMemoryMessageStore(msgs)
    trigger = _raw("t", "now", ts=10, reply_to="m5")
    out = await _collector().collect_reply_chain(store, trigger, CollationBudget(2, 1000))
    assert [m.origin_id for m in out] == ["m4", "m5"]


@pytest.mark.asyncio
async def test_reply_chain_char_budget_counts_name_prefix():
    # "alice: " adds 7 chars per human hop
    store = InMemoryMessageStore([
        _raw("a", "x" * 10, ts=1),
        _raw("b", "y" * 10, ts=2, reply_to="a"),
    ])
    trigger = _raw("t", "q", ts=3, reply_to="b")
    out = await _collector().collect_reply_chain(store, trigger, CollationBudget(10, 30))
    assert [m.origin_id for m in out] == ["b"]


@pytest.mark.asyncio
async def test_reply_chain_fetch_failure_keeps_prior_hops():
    store = InMemoryMessageStore([_raw("b", "kept", ts=2, reply_to="deleted")])
    trigger = _raw("t", "q", ts=3, reply_to="b")
    out = await _collector().collect_reply_chain(store, trigger, CollationBudget(10, 1000))
    assert [m.origin_id for m in out] == ["b"]


@pytest.mark.asyncio
async def test_reply_chain_images_only_for_nearest_hops():
    store = InMemoryMessageStore([
        _raw("a", "old", ts=1, images=("img-a",)),
        _raw("b", "new", ts=2, reply_to="a", images=("img-b",)),
    ])
    trigger = _raw("t", "q", ts=3, reply_to="b")
    out = await _collector().collect_reply_chain(store, trigger, CollationBudget(10, 1000), image_depth=1)
    assert out[0].images == ()
    assert out[1].images == ("img-b",)


@pytest.mark.asyncio
async def test_reply_chain_empty_hops_count_toward_depth():
    chain = [_raw("m0", "the real question", ts=0)]
    for i in range(1, 51):
        images = (f"img-{i}",) if i % 2 else ()
        chain.append(_raw(f"m{i}", "<@123>", ts=i, reply_to=f"m{i - 1}", images=images))
    store = InMemoryMessageStore(chain)
    store.fetch_reference = AsyncMock(side_effect=store.fetch_reference)
    trigger = _raw("t", "q", ts=100, reply_to="m50")

    out = await _collector().collect_reply_chain(store, trigger, CollationBudget(2, 1000), image_depth=2)

    assert store.fetch_reference.await_count == 2
    assert all(m.origin_id != "m0" for m in out)


@pytest.mark.asyncio
async def test_reply_chain_keeps_image_only_hop_within_image_depth():
    store = InMemoryMessageStore([
        _raw("a", "look at this", ts=1),
        _raw("b", "", ts=2, reply_to="a", images=("img-b",)),
    ])
    trigger = _raw("t", "what is it?", ts=3, reply_to="b")
    out = await _collector().collect_reply_chain(store, trigger, CollationBudget(10, 1000), image_depth=1)
    assert [m.origin_id for m in out] == ["a", "b"]
    assert out[1].content == "[image]"
    assert out[1].images == ("img-b",)


@pytest.mark.asyncio
async def test_reply_chain_drops_image_only_hop_beyond_image_depth():
    store = InMemoryMessageStore([
        _raw("a", "", ts=1, images=("img-a",)),
        _raw("b", "see above", ts=2, reply_to="a"),
    ])
    trigger = _raw("t", "q", ts=3, reply_to="b")
    out = await _collector().collect_reply_chain(store, trigger, CollationBudget(10, 1000), image_depth=1)
    assert [m.origin_id for m in out] == ["b"]


@pytest.mark.asyncio
async def test_reply_chain_single_author_not_prefixed():
    store = InMemoryMessageStore([_raw("a", "hello", ts=1)])
    trigger = _raw("t", "q", ts=2, reply_to="a")
    out = await _collector().collect_reply_chain(store, trigger, CollationBudget(10, 1000))
    assert out[0].content == "hello"
    assert out[0].has_name_prefix is False


@pytest.mark.asyncio
async def test_reply_chain_multiple_authors_prefixed_with_display_name():
    store = InMemoryMessageStore([_raw("a", "hello", author="u2", name="bob", display="Bobby", ts=1)])
    trigger = _raw("t", "q", ts=2, reply_to="a")
    out = await _collector().collect_reply_chain(store, trigger, CollationBudget(10, 1000))
    assert out[0].content == "Bobby: hello"
    assert out[0].has_name_prefix is True


@pytest.mark.asyncio
async def test_reply_chain_store_error_is_not_raised():
    store = AsyncMock()
    store.fetch_reference = AsyncMock(side_effect=RuntimeError("network down"))
    trigger = _raw("t", "q", reply_to="a")
    assert await _collector().collect_reply_chain(store, trigger, CollationBudget(10, 1000)) == []


# ---------------------------------------------------------------------------
# Channel history
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_channel_history_skips_trigger_placeholder_and_other_bots():
    store = InMemoryMessageStore([
        _raw("1", "hi there", ts=1),
        _raw("2", "⏳ Processing your request", author=BOT, name="bot", ts=2),
        _raw("3", "beep", author="other-bot", name="robo", is_bot=True, ts=3),
        _raw("4", "answer", author=BOT, name="bot", ts=4),
    ])
    trigger = _raw("5", "q", ts=5)
    store.add(trigger)
    out = await _collector().collect_channel_history(store, trigger, CollationBudget(10, 1000))
    assert [m.origin_id for m in out] == ["1", "4"]


@pytest.mark.asyncio
async def test_channel_history_keeps_other_bots_when_allowed():
    store = InMemoryMessageStore([_raw("3", "beep", author="other-bot", name="robo", is_bot=True, ts=3)])
    trigger = _raw("5", "q", ts=5)
    out = await _collector(allow_bot_interactions=True).collect_channel_history(
        store, trigger, CollationBudget(10, 1000)
    )
    assert [m.origin_id for m in out] == ["3"]


@pytest.mark.asyncio
async def test_channel_history_prefixes_when_authors_differ():
    store = InMemoryMessageStore([_raw("1", "hey", author="u2", name="bob", ts=1)])
    trigger = _raw("5", "q", ts=5)
    out = await _collector().collect_channel_history(store, trigger, CollationBudget(10, 1000))
    assert out[0].content == "bob: hey"


@pytest.mark.asyncio
async def test_channel_history_trims_oldest_to_fit_chars():
    store = InMemoryMessageStore([
        _raw("1", "a" * 50, ts=1),
        _raw("2", "b" * 50, ts=2),
        _raw("3", "c" * 50, ts=3),
    ])
    trigger = _raw("9", "q", ts=9)
    out = await _collector().collect_channel_history(store, trigger, CollationBudget(10, 110))
    assert [m.origin_id for m in out] == ["2", "3"]


@pytest.mark.asyncio
async def test_channel_history_fetch_failure_returns_empty():
    store = AsyncMock()
    store.fetch_recent = AsyncMock(side_effect=RuntimeError("boom"))
    out = await _collector().collect_channel_history(store, _raw("t", "q"), CollationBudget(10, 1000))
    assert out == []


@pytest.mark.asyncio
async def test_thread_history_tagged_as_thread():
    store = InMemoryMessageStore([_raw("1", "in thread", ts=1)])
    out = await _collector().collect_channel_history(
        store, _raw("t", "q", ts=2), CollationBudget(10, 1000), ContextSource.THREAD
    )
    assert out[0].source is ContextSource.THREAD


# ---------------------------------------------------------------------------
# DM history
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_dm_history_always_attributes_human_turns():
    store = InMemoryMessageStore([
        _raw("1", "hello", ts=1),
        _raw("2", "hi alice", author=BOT, name="bot", ts=2),
    ])
    out = await _collector().collect_dm_history(store, _raw("3", "q", ts=3), CollationBudget(10, 1000))
    assert [m.content for m in out] == ["alice: hello", "hi alice"]
    assert out[0].source is ContextSource.DM


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def test_trim_oldest():
    entries: List[ContextMessage] = [
        ContextMessage(role=Role.USER, content="x" * 10, source=ContextSource.CHANNEL, origin_id=str(i))
        for i in range(3)
    ]
    assert [e.origin_id for e in trim_oldest(entries, 20)] == ["1", "2"]


def test_context_message_rejects_empty_content():
    with pytest.raises(ValueError):
        ContextMessage(role=Role.USER, content="  ", source=ContextSource.CHANNEL)


def test_message_not_found_carries_message():
    err = MessageNotFoundError("gone")
    assert str(err) == "gone"
