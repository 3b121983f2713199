"""Relevance filter: let the model decide how much recent history a capability needs."""

from __future__ import annotations

import asyncio
import logging
import re
from typing import List, Optional, Sequence

from intent_router.config.constants import DEFAULT_CAPABILITY_TIMEOUT_MS
from intent_router.config.schema import CapabilityBinding
from intent_router.domain import Capability, ContextMessage, RequestCancelledError, Role

from .ports import Gateway, GenerativeBackend
from .prompts import system_message

logger = logging.getLogger(__name__)

_LEADING_INT_RE = re.compile(r"^\s*(-?\d+)")


def build_filter_prompt(min_depth: int, max_depth: int) -> str:
    return "\n".join([
        "You are a context relevance evaluator. Decide how many recent conversation messages "
        "are relevant to the current user prompt.",
        "",
        "Messages are numbered from most recent (1) to oldest.",
        "",
        "Rules:",
        f"- You MUST include at least {min_depth} message(s).",
        f"- You may include up to {max_depth} message(s).",
        "- Prefer newer messages over older ones. If the topic changed, keep the most recent topic.",
        "- Respond with ONLY a single integer: the number of most-recent messages to include.",
    ])


def _format_for_eval(messages: Sequence[ContextMessage]) -> str:
    return "\n".join(
        f"[{i}] ({m.role.value}): {m.content}"
        for i, m in enumerate(reversed(messages), start=1)
    )


class ContextFilter:
    """Trims history to what the model judges relevant, within the binding's depth bounds.

    Any failure (busy, timeout, non-numeric answer) returns the history unchanged.
    """

    def __init__(
        self,
        backend: GenerativeBackend,
        gateway: Gateway,
        *,
        default_max_depth: int,
        model: Optional[str] = None,
    ):
        self._backend = backend
        self._gateway = gateway
        self._default_max_depth = default_max_depth
        self._model = model

    async def filter(
        self,
        history: Sequence[ContextMessage],
        prompt: str,
        binding: CapabilityBinding,
        requester: str,
        signal: Optional[asyncio.Event] = None,
    ) -> List[ContextMessage]:
        history = list(history)
        if not binding.context_filter_enabled:
            return history
        system = [m for m in history if m.role is Role.SYSTEM]
        conversation = [m for m in history if m.role is not Role.SYSTEM]
        min_depth = binding.context_filter_min_depth if binding.context_filter_min_depth is not None else 1
        max_depth = binding.context_filter_max_depth or self._default_max_depth
        if len(conversation) <= min_depth:
            return history

        candidates = conversation[-min(max_depth, len(conversation)):]
        if len(candidates) <= min_depth:
            return system + candidates

        eval_prompt = (
            f"Conversation messages (most recent first):\n{_format_for_eval(candidates)}\n\n"
            f"Current user prompt: {prompt}"
        )
        instructions = build_filter_prompt(min_depth, max_depth)

        async def _task(task_signal: asyncio.Event):
            return await self._backend.generate(
                eval_prompt,
                requester,
                self._model,
                [system_message(instructions)],
                task_signal,
            )

        try:
            result = await self._gateway.execute(
                Capability.TEXT,
                requester,
                "context-filter",
                binding.timeout_ms or DEFAULT_CAPABILITY_TIMEOUT_MS,
                _task,
                signal,
            )
        except RequestCancelledError:
            raise
        except Exception as exc:
            logger.warning("Context filter failed (%s); keeping full history", exc)
            return history

        if not result.success or not result.text:
            logger.warning("Context filter returned nothing (%s); keeping full history", result.error)
            return history
        m = _LEADING_INT_RE.match(result.text)
        if not m:
            logger.warning("Context filter answered %r; keeping full history", result.text.strip()[:40])
            return history

        count = max(min_depth, min(int(m.group(1)), max_depth, len(candidates)))
        logger.info("Context filter keeps %d of %d messages", count, len(candidates))
        return system + (candidates[-count:] if count > 0 else [])
