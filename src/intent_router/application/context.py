"""Context collection: reply chains, channel/thread history and DM history.

Every collector is bounded by a ``CollationBudget`` and tolerant of fetch
failures; none of them include the trigger message itself. Results are
returned oldest-first.
"""

from __future__ import annotations

import logging
import re
from typing import List, Optional, Sequence, Set, Tuple

from intent_router.config.constants import IMAGE_ONLY_CONTENT, PROCESSING_PLACEHOLDER
from intent_router.domain import (
    CollationBudget,
    ContextMessage,
    ContextSource,
    RawMessage,
    Role,
)

from .ports import MessageStore

logger = logging.getLogger(__name__)

_MENTION_RE = re.compile(r"<(?:@[!&]?|#)\d+>")
_CUSTOM_EMOJI_RE = re.compile(r"<a?:(\w+):\d+>")
_SUBTEXT_LINE_RE = re.compile(r"^-# .*$", re.MULTILINE)


def strip_markup(text: str) -> str:
    """Remove platform markup (mentions, custom emoji ids, subtext lines) from message content."""
    text = _MENTION_RE.sub("", text)
    text = _CUSTOM_EMOJI_RE.sub(r":\1:", text)
    text = _SUBTEXT_LINE_RE.sub("", text)
    text = re.sub(r"[ \t]{2,}", " ", text)
    return text.strip()


def _sort_key(msg: RawMessage) -> int:
    return msg.created_at_ms if msg.created_at_ms is not None else 0


def _prefix_len(msg: RawMessage) -> int:
    return len(msg.label) + 2  # "Name: "


class ContextCollector:
    """Collects prior conversation for one request.

    ``assistant_id`` identifies the assistant's own messages (role ``assistant``).
    """

    def __init__(
        self,
        assistant_id: str,
        *,
        allow_bot_interactions: bool = False,
        processing_placeholder: str = PROCESSING_PLACEHOLDER,
    ):
        self._assistant_id = assistant_id
        self._allow_bots = allow_bot_interactions
        self._placeholder = processing_placeholder

    def _is_assistant(self, msg: RawMessage) -> bool:
        return msg.author_id == self._assistant_id

    def _is_human(self, msg: RawMessage) -> bool:
        return not msg.is_bot and not self._is_assistant(msg)

    def _to_context(
        self,
        msg: RawMessage,
        content: str,
        source: ContextSource,
        attribute: bool,
        images: Tuple[str, ...] = (),
    ) -> ContextMessage:
        role = Role.ASSISTANT if self._is_assistant(msg) else Role.USER
        prefixed = attribute and role is Role.USER
        return ContextMessage(
            role=role,
            content=f"{msg.label}: {content}" if prefixed else content,
            source=source,
            origin_id=msg.id,
            created_at_ms=msg.created_at_ms,
            has_name_prefix=prefixed,
            images=images,
        )

    # ------------------------------------------------------------------
    # Reply chain
    # ------------------------------------------------------------------

    async def collect_reply_chain(
        self,
        store: MessageStore,
        trigger: RawMessage,
        budget: CollationBudget,
        image_depth: int = 0,
    ) -> List[ContextMessage]:
        """Follow ``reply_to_id`` links from the trigger, newest hop first.

        Stops after ``budget.max_depth`` fetched hops (empty ones included), at
        the first hop that would exceed ``budget.max_chars``, on a revisited id,
        or when a referenced message cannot be fetched. Hops collected before
        the stop are kept. Image-only hops within ``image_depth`` are kept with
        placeholder text so their images reach the prompt.
        """
        visited: Set[str] = {trigger.id}
        hops: List[Tuple[RawMessage, str, Tuple[str, ...]]] = []
        total_chars = 0
        walked = 0
        next_id = trigger.reply_to_id

        while next_id and walked < budget.max_depth:
            if next_id in visited:
                logger.debug("Reply chain revisits %s; stopping", next_id)
                break
            visited.add(next_id)
            try:
                msg = await store.fetch_reference(next_id)
            except Exception as exc:
                logger.info("Reply chain stopped at %s: %s", next_id, exc)
                break
            next_id = msg.reply_to_id
            images = tuple(msg.images) if walked < image_depth else ()
            walked += 1

            content = strip_markup(msg.content)
            if not content:
                if not images:
                    continue
                content = IMAGE_ONLY_CONTENT
            cost = len(content) + (_prefix_len(msg) if self._is_human(msg) else 0)
            if total_chars + cost > budget.max_chars:
                logger.debug("Reply chain char budget reached after %d hops", walked)
                break
            total_chars += cost
            hops.append((msg, content, images))

        hops.reverse()
        humans = {m.author_id for m, _, _ in hops if self._is_human(m)}
        humans.add(trigger.author_id)
        attribute = len(humans) > 1
        return [
            self._to_context(m, content, ContextSource.REPLY, attribute, images)
            for m, content, images in hops
        ]

    # ------------------------------------------------------------------
    # Channel / thread / DM history
    # ------------------------------------------------------------------

    async def collect_channel_history(
        self,
        store: MessageStore,
        trigger: RawMessage,
        budget: CollationBudget,
        source: ContextSource = ContextSource.CHANNEL,
    ) -> List[ContextMessage]:
        """Recent messages before the trigger in its channel (or thread)."""
        return await self._collect_history(store, trigger, budget, source, always_attribute=False)

    async def collect_dm_history(
        self,
        store: MessageStore,
        trigger: RawMessage,
        budget: CollationBudget,
    ) -> List[ContextMessage]:
        """Recent messages of a private conversation; human turns are always attributed."""
        return await self._collect_history(store, trigger, budget, ContextSource.DM, always_attribute=True)

    def _keep(self, msg: RawMessage, trigger: RawMessage) -> bool:
        if msg.id == trigger.id:
            return False
        if self._is_assistant(msg) and msg.content.startswith(self._placeholder):
            return False
        if msg.is_bot and not self._is_assistant(msg) and not self._allow_bots:
            return False
        return True

    async def _collect_history(
        self,
        store: MessageStore,
        trigger: RawMessage,
        budget: CollationBudget,
        source: ContextSource,
        always_attribute: bool,
    ) -> List[ContextMessage]:
        try:
            # One extra in case the platform includes the trigger itself
            fetched = await store.fetch_recent(trigger, budget.max_depth + 1)
        except Exception as exc:
            logger.warning("Could not fetch %s history: %s", source.value, exc)
            return []

        candidates: List[Tuple[RawMessage, str]] = []
        for msg in sorted(fetched, key=_sort_key):
            if not self._keep(msg, trigger):
                continue
            content = strip_markup(msg.content)
            if content:
                candidates.append((msg, content))
        candidates = candidates[-budget.max_depth:] if budget.max_depth > 0 else []

        if always_attribute:
            attribute = True
        else:
            humans = {m.author_id for m, _ in candidates if self._is_human(m)}
            humans.add(trigger.author_id)
            attribute = len(humans) > 1

        entries = [self._to_context(m, content, source, attribute) for m, content in candidates]
        return trim_oldest(entries, budget.max_chars)


def trim_oldest(entries: Sequence[ContextMessage], max_chars: int) -> List[ContextMessage]:
    """Drop entries from the oldest end until the total content length fits ``max_chars``."""
    kept = list(entries)
    total = sum(len(e.content) for e in kept)
    while kept and total > max_chars:
        total -= len(kept.pop(0).content)
    return kept


def find_trigger_entry(entries: Sequence[ContextMessage], origin_id: Optional[str]) -> bool:
    """True when ``origin_id`` is already present in ``entries``."""
    return origin_id is not None and any(e.origin_id == origin_id for e in entries)
