"""Merge direct (reply/thread) and ambient (channel) context into one budgeted sequence."""

from __future__ import annotations

from typing import List, Sequence, Set

from intent_router.domain import CollationBudget, ContextMessage


def _take_newest(
    entries: Sequence[ContextMessage],
    max_depth: int,
    max_chars: int,
    allow_oversized: bool,
) -> List[ContextMessage]:
    """Walk newest-first keeping entries while depth and chars allow. Returns oldest-first.

    With ``allow_oversized`` the newest entry is kept even if it alone exceeds
    ``max_chars``, so the latest turn is never left without context.
    """
    kept: List[ContextMessage] = []
    total = 0
    for entry in reversed(entries):
        if len(kept) >= max_depth:
            break
        size = len(entry.content)
        if total + size > max_chars:
            if allow_oversized and not kept:
                kept.append(entry)
            break
        kept.append(entry)
        total += size
    kept.reverse()
    return kept


def _dedupe(entries: Sequence[ContextMessage], seen: Set[str]) -> List[ContextMessage]:
    """Drop entries whose origin_id is in ``seen`` (updated in place). Id-less entries always pass."""
    out: List[ContextMessage] = []
    for entry in entries:
        if entry.origin_id:
            if entry.origin_id in seen:
                continue
            seen.add(entry.origin_id)
        out.append(entry)
    return out


def _timestamp(entry: ContextMessage) -> int:
    # Entries without a timestamp sort as earliest
    return entry.created_at_ms if entry.created_at_ms is not None else -1


def collate(
    direct: Sequence[ContextMessage],
    ambient: Sequence[ContextMessage],
    budget: CollationBudget,
) -> List[ContextMessage]:
    """Return direct context plus as much ambient context as the remaining budget allows.

    Both inputs are oldest-first. Direct context is trimmed first and has
    priority; ambient entries whose ``origin_id`` appears in the kept direct
    entries are dropped. The result is chronological (stable sort on ``created_at_ms``).
    """
    if budget.max_depth <= 0:
        return []

    unique_direct = _dedupe(direct, set())
    kept_direct = _take_newest(unique_direct, budget.max_depth, budget.max_chars, allow_oversized=True)

    # Only direct entries that survived trimming shadow their ambient copies
    seen: Set[str] = {e.origin_id for e in kept_direct if e.origin_id}
    unique_ambient = _dedupe(ambient, seen)

    remaining_depth = budget.max_depth - len(kept_direct)
    remaining_chars = budget.max_chars - sum(len(e.content) for e in kept_direct)

    kept_ambient: List[ContextMessage] = []
    if remaining_depth > 0 and remaining_chars >= 0:
        kept_ambient = _take_newest(
            unique_ambient,
            remaining_depth,
            remaining_chars,
            allow_oversized=not kept_direct,
        )

    return sorted(kept_ambient + kept_direct, key=_timestamp)
