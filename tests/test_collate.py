"""Tests for context collation (collate)."""
from __future__ import annotations

import random
from typing import Optional

import pytest

from intent_router.application.collate import collate
from intent_router.domain import CollationBudget, ContextMessage, ContextSource, Role


def _msg(
    origin_id: Optional[str],
    content: str,
    ts: Optional[int],
    source: ContextSource = ContextSource.CHANNEL,
) -> ContextMessage:
    return ContextMessage(
        role=Role.USER, content=content, source=source, origin_id=origin_id, created_at_ms=ts
    )


def _ids(entries):
    return [e.origin_id for e in entries]


# ---------------------------------------------------------------------------
# Basics
# ---------------------------------------------------------------------------


def test_merges_chronologically():
    direct = [_msg("r1", "reply one", 10, ContextSource.REPLY), _msg("r2", "reply two", 30, ContextSource.REPLY)]
    ambient = [_msg("c1", "chan one", 5), _msg("c2", "chan two", 20)]
    out = collate(direct, ambient, CollationBudget(max_depth=10, max_chars=1000))
    assert _ids(out) == ["c1", "r1", "c2", "r2"]


def test_direct_copy_wins_on_duplicate():
    direct = [_msg("m1", "same", 10, ContextSource.REPLY)]
    ambient = [_msg("m1", "same", 10), _msg("m2", "other", 20)]
    out = collate(direct, ambient, CollationBudget(10, 1000))
    assert _ids(out) == ["m1", "m2"]
    assert out[0].source is ContextSource.REPLY


def test_ambient_copy_of_trimmed_direct_entry_survives():
    # The direct copy of m1 carries a name prefix and no longer fits next to m2
    direct = [_msg("m1", "bob: " + "x" * 15, 10, ContextSource.REPLY), _msg("m2", "new reply", 30, ContextSource.REPLY)]
    ambient = [_msg("m1", "x" * 5, 10)]
    out = collate(direct, ambient, CollationBudget(max_depth=10, max_chars=20))
    assert _ids(out) == ["m1", "m2"]
    assert out[0].source is ContextSource.CHANNEL


def test_depth_keeps_newest():
    ambient = [_msg(f"c{i}", f"msg {i}", i) for i in range(6)]
    out = collate([], ambient, CollationBudget(max_depth=3, max_chars=1000))
    assert _ids(out) == ["c3", "c4", "c5"]


def test_char_budget_keeps_newest():
    a = _msg("a", "A" * 100, 1)
    b = _msg("b", "B" * 100, 2)
    c = _msg("c", "C" * 100, 3)
    out = collate([], [a, b, c], CollationBudget(max_depth=10, max_chars=200))
    assert _ids(out) == ["b", "c"]


def test_direct_has_priority_over_ambient():
    direct = [_msg("r1", "R" * 150, 1, ContextSource.REPLY)]
    ambient = [_msg("c1", "C" * 100, 5)]
    out = collate(direct, ambient, CollationBudget(max_depth=10, max_chars=200))
    assert _ids(out) == ["r1"]


def test_missing_timestamp_sorts_first():
    direct = [_msg("r1", "reply", None, ContextSource.REPLY)]
    ambient = [_msg("c1", "chan", 5)]
    out = collate(direct, ambient, CollationBudget(10, 1000))
    assert _ids(out) == ["r1", "c1"]


def test_zero_depth_returns_nothing():
    assert collate([_msg("a", "x", 1)], [], CollationBudget(0, 100)) == []


# ---------------------------------------------------------------------------
# Oversized single entry
# ---------------------------------------------------------------------------


def test_single_oversized_direct_entry_is_kept():
    big = _msg("r1", "X" * 500, 1, ContextSource.REPLY)
    out = collate([big], [_msg("c1", "small", 0)], CollationBudget(5, 100))
    assert _ids(out) == ["r1"]


def test_single_oversized_ambient_entry_kept_when_no_direct():
    big = _msg("c1", "X" * 500, 1)
    out = collate([], [big], CollationBudget(5, 100))
    assert _ids(out) == ["c1"]


# ---------------------------------------------------------------------------
# Properties over random inputs
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("seed", range(25))
def test_properties_hold_for_random_inputs(seed):
    rnd = random.Random(seed)
    pool = [f"m{i}" for i in range(12)]

    def _seq(source):
        ids = rnd.sample(pool, rnd.randint(0, 8))
        entries = [
            _msg(i, "x" * rnd.randint(1, 60), rnd.choice([None, rnd.randint(0, 100)]), source)
            for i in ids
        ]
        return sorted(entries, key=lambda e: e.created_at_ms if e.created_at_ms is not None else -1)

    direct, ambient = _seq(ContextSource.REPLY), _seq(ContextSource.CHANNEL)
    budget = CollationBudget(max_depth=rnd.randint(1, 8), max_chars=rnd.randint(30, 300))
    out = collate(direct, ambient, budget)

    ids = [e.origin_id for e in out if e.origin_id]
    assert len(ids) == len(set(ids))
    assert len(out) <= budget.max_depth
    total = sum(len(e.content) for e in out)
    assert total <= budget.max_chars or len(out) == 1
    stamps = [e.created_at_ms if e.created_at_ms is not None else -1 for e in out]
    assert stamps == sorted(stamps)
