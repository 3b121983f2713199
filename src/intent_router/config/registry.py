"""Keyword registry: the current snapshot of capability bindings.

The snapshot is an immutable tuple; ``replace`` swaps it in one assignment so a
request that already read the registry keeps a consistent view during a reload.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional, Tuple

from intent_router.domain import Capability

from .schema import CapabilityBinding

logger = logging.getLogger(__name__)


class KeywordRegistry:
    """Read-mostly set of bindings, replaced wholesale on reload."""

    def __init__(self, bindings: Iterable[CapabilityBinding] = ()):
        self._snapshot: Tuple[CapabilityBinding, ...] = tuple(bindings)

    def replace(self, bindings: Iterable[CapabilityBinding]) -> None:
        snapshot = tuple(bindings)
        self._snapshot = snapshot
        logger.info("Keyword registry replaced (%d bindings)", len(snapshot))

    def all(self) -> Tuple[CapabilityBinding, ...]:
        return self._snapshot

    def enabled(self) -> Tuple[CapabilityBinding, ...]:
        return tuple(b for b in self._snapshot if b.enabled)

    def routable(self) -> Tuple[CapabilityBinding, ...]:
        """Bindings the model may route to: enabled, not reserved, not plain chat."""
        return tuple(
            b for b in self._snapshot
            if b.enabled and not b.is_reserved and b.capability is not Capability.TEXT
        )

    def get(self, keyword: str) -> Optional[CapabilityBinding]:
        key = keyword.strip().lower()
        for b in self._snapshot:
            if b.enabled and b.keyword.lower() == key:
                return b
        return None

    def for_capability(self, capability: Capability) -> Optional[CapabilityBinding]:
        """First enabled binding for ``capability`` (used for timeouts of internal calls)."""
        for b in self._snapshot:
            if b.enabled and b.capability is capability:
                return b
        return None
