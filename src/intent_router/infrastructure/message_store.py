"""In-memory message store for one conversation (local runs and tests)."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from intent_router.domain import MessageNotFoundError, RawMessage


class InMemoryMessageStore:
    """Messages of a single channel, kept in posting order."""

    def __init__(self, messages: Iterable[RawMessage] = ()):
        self._order: List[str] = []
        self._by_id: Dict[str, RawMessage] = {}
        for m in messages:
            self.add(m)

    def add(self, message: RawMessage) -> None:
        if message.id not in self._by_id:
            self._order.append(message.id)
        self._by_id[message.id] = message

    def delete(self, message_id: str) -> None:
        self._by_id.pop(message_id, None)
        self._order = [i for i in self._order if i != message_id]

    def get(self, message_id: str) -> Optional[RawMessage]:
        return self._by_id.get(message_id)

    async def fetch_reference(self, message_id: str) -> RawMessage:
        try:
            return self._by_id[message_id]
        except KeyError:
            raise MessageNotFoundError(f"Message {message_id} not found") from None

    async def fetch_recent(self, before: RawMessage, limit: int) -> List[RawMessage]:
        if before.id in self._by_id:
            earlier = self._order[: self._order.index(before.id)]
        elif before.created_at_ms is not None:
            earlier = [
                i for i in self._order
                if (self._by_id[i].created_at_ms or 0) < before.created_at_ms
            ]
        else:
            earlier = list(self._order)
        if limit <= 0:
            return []
        return [self._by_id[i] for i in earlier[-limit:]]

    @classmethod
    def from_json(cls, path: Path) -> "InMemoryMessageStore":
        """Load a transcript: a JSON list of objects with RawMessage field names."""
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        return cls(
            RawMessage(
                id=str(item["id"]),
                content=item.get("content", ""),
                author_id=str(item["author_id"]),
                author_name=item.get("author_name") or str(item["author_id"]),
                display_name=item.get("display_name"),
                is_bot=bool(item.get("is_bot", False)),
                created_at_ms=item.get("created_at_ms"),
                reply_to_id=str(item["reply_to_id"]) if item.get("reply_to_id") else None,
                images=tuple(item.get("images") or ()),
            )
            for item in data
        )
