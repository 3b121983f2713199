"""Activity key issuance: a single short-lived key, replaced on every issue."""

from __future__ import annotations

import asyncio
import hmac
import logging
import math
import secrets
import time
from typing import Callable, Optional

from intent_router.config.constants import ACTIVITY_KEY_TTL_S
from intent_router.config.schema import CapabilityBinding
from intent_router.domain import Capability, CapabilityResult

logger = logging.getLogger(__name__)


class ActivityKeyService:
    """Issues URL-safe keys; only the most recent key is valid, and only until it expires."""

    def __init__(self, ttl_s: float = ACTIVITY_KEY_TTL_S, clock: Callable[[], float] = time.monotonic):
        self._ttl_s = ttl_s
        self._clock = clock
        self._key: Optional[str] = None
        self._issued_at = 0.0

    def issue(self) -> str:
        self._key = secrets.token_urlsafe(24)
        self._issued_at = self._clock()
        logger.info("Activity key issued")
        return self._key

    def is_expired(self) -> bool:
        return self._key is None or self._clock() - self._issued_at >= self._ttl_s

    def is_valid(self, presented: str) -> bool:
        if self._key is None or not hmac.compare_digest(presented.encode(), self._key.encode()):
            return False
        return not self.is_expired()

    def remaining_seconds(self) -> int:
        if self._key is None:
            return 0
        return math.ceil(max(0.0, self._ttl_s - (self._clock() - self._issued_at)))

    def revoke(self) -> None:
        self._key = None

    async def invoke(
        self,
        binding: CapabilityBinding,
        parameter: str,
        requester: str,
        signal: asyncio.Event,
    ) -> CapabilityResult:
        key = self.issue()
        minutes = max(1, math.ceil(self._ttl_s / 60))
        return CapabilityResult(
            capability=Capability.ACTIVITY_KEY,
            success=True,
            text=f"Activity key: {key} (valid for {minutes} minute{'s' if minutes != 1 else ''})",
        )
