"""Ports (abstract interfaces) used by the application layer.

Each port is a ``Protocol`` so the application depends only on the *shape* of the
collaborator, not on a concrete implementation.  Infrastructure adapters must satisfy
these shapes; the application never imports from infrastructure.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Dict, List, Optional, Protocol, Sequence, TypeVar

from intent_router.config.schema import CapabilityBinding, ModelConfig
from intent_router.domain import Capability, CapabilityResult, GenerationResult, RawMessage

T = TypeVar("T")

# A gateway task receives its own cancellation signal and must stop promptly once it is set.
GatewayTask = Callable[[asyncio.Event], Awaitable[T]]


class Gateway(Protocol):
    """Serialises executions per capability and enforces timeouts.

    ``execute`` raises ``CapabilityBusyError`` immediately when the capability is
    already running, ``CapabilityTimeoutError`` when ``timeout_ms`` elapses,
    ``RequestCancelledError`` when ``signal`` is set, and otherwise re-raises the
    task's own exception.
    """

    async def execute(
        self,
        capability: Capability,
        requester: str,
        label: str,
        timeout_ms: int,
        task: GatewayTask,
        signal: Optional[asyncio.Event] = None,
    ): ...

    def is_busy(self, capability: Capability) -> bool: ...


class GenerativeBackend(Protocol):
    """Text generation. Failures are reported in the result, not raised."""

    async def generate(
        self,
        prompt: str,
        requester: str,
        model: Optional[str] = None,
        history: Optional[List[Dict[str, str]]] = None,
        signal: Optional[asyncio.Event] = None,
        *,
        include_system_prompt: bool = True,
        images: Sequence[str] = (),
    ) -> GenerationResult: ...

    def reconfigure(self, model_config: ModelConfig) -> None: ...


class MessageStore(Protocol):
    """Read access to the chat platform's message history."""

    async def fetch_reference(self, message_id: str) -> RawMessage:
        """Return the message with ``message_id``; raise ``MessageNotFoundError`` if it is gone."""
        ...

    async def fetch_recent(self, before: RawMessage, limit: int) -> List[RawMessage]:
        """Return up to ``limit`` messages posted before ``before`` in its channel, any order."""
        ...


class CapabilityService(Protocol):
    """A non-text capability (image, search, weather, sports, meme, activity key)."""

    async def invoke(
        self,
        binding: CapabilityBinding,
        parameter: str,
        requester: str,
        signal: asyncio.Event,
    ) -> CapabilityResult: ...
