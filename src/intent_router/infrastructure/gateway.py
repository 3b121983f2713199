"""Capability gateway: one in-flight execution per capability, with timeout and cancellation.

A request for a capability that is already running is rejected immediately
with ``CapabilityBusyError``; nothing is queued.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, Optional

from intent_router.application.ports import GatewayTask
from intent_router.domain import (
    Capability,
    CapabilityBusyError,
    CapabilityTimeoutError,
    RequestCancelledError,
)

logger = logging.getLogger(__name__)


class CapabilityGateway:
    """Serialises capability executions and enforces per-call timeouts.

    Each task gets its own ``asyncio.Event``; it is set when the call times
    out or the caller's signal fires, and the task is cancelled.
    """

    def __init__(self) -> None:
        self._active: Dict[Capability, str] = {}

    def is_busy(self, capability: Capability) -> bool:
        return capability in self._active

    async def execute(
        self,
        capability: Capability,
        requester: str,
        label: str,
        timeout_ms: int,
        task: GatewayTask,
        signal: Optional[asyncio.Event] = None,
    ):
        if capability in self._active:
            logger.info(
                "%s busy (running %r); rejecting %r from %s",
                capability.value, self._active[capability], label, requester,
            )
            raise CapabilityBusyError(f"{capability.value} is busy", capability.value)
        if signal is not None and signal.is_set():
            raise RequestCancelledError(f"{label} cancelled before start", capability.value)

        self._active[capability] = label
        child = asyncio.Event()
        job = asyncio.ensure_future(task(child))
        watcher = asyncio.ensure_future(signal.wait()) if signal is not None else None
        waiters = {job} if watcher is None else {job, watcher}
        logger.debug("%s started %r for %s (timeout %d ms)", capability.value, label, requester, timeout_ms)
        try:
            done, _ = await asyncio.wait(
                waiters,
                timeout=timeout_ms / 1000.0,
                return_when=asyncio.FIRST_COMPLETED,
            )
            if job in done:
                return job.result()
            await self._abort(job, child)
            if watcher is not None and watcher in done:
                logger.info("%s %r cancelled by caller", capability.value, label)
                raise RequestCancelledError(f"{label} cancelled", capability.value)
            logger.warning("%s %r timed out after %d ms", capability.value, label, timeout_ms)
            raise CapabilityTimeoutError(
                f"{capability.value} timed out after {timeout_ms / 1000.0:g}s", capability.value
            )
        finally:
            if watcher is not None:
                watcher.cancel()
            if not job.done():
                child.set()
                job.cancel()
            self._active.pop(capability, None)

    @staticmethod
    async def _abort(job: asyncio.Future, child: asyncio.Event) -> None:
        child.set()
        job.cancel()
        await asyncio.gather(job, return_exceptions=True)
