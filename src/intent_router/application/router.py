"""Two-stage router: explicit keyword dispatch, or model-directed routing for ambient messages.

Flow for one message::

    explicit "!keyword ..."  -> capability gateway (terminal)
    anything else            -> collect + collate context
                             -> generative call with the abilities directory
                             -> first-line directive?  -> resolve parameter -> dispatch
                                                          (+ final text pass for data capabilities)
                             -> no directive, no marker -> image/meme heuristics
                             -> otherwise the model's reply is the answer
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from intent_router.config.constants import DEFAULT_CAPABILITY_TIMEOUT_MS
from intent_router.config.registry import KeywordRegistry
from intent_router.config.schema import CapabilityBinding, ParameterMode, RouterConfig
from intent_router.domain import (
    EXTERNAL_DATA_CAPABILITIES,
    Capability,
    CapabilityBusyError,
    CapabilityResult,
    CapabilityTimeoutError,
    CapabilityUnavailableError,
    CollationBudget,
    ContextMessage,
    ContextSource,
    GenerationResult,
    Outcome,
    RawMessage,
    RequestCancelledError,
    Role,
)

from .collate import collate
from .context import ContextCollector, find_trigger_entry, strip_markup
from .context_filter import ContextFilter
from .directive import RouteParseResult, parse_directive
from .heuristics import MemeRequest, classify_request, derive_prompt
from .inference import ParameterInferencer
from .matcher import KeywordMatcher
from .ports import CapabilityService, Gateway, GenerativeBackend, MessageStore
from .prompts import build_system_prompt, build_user_content, escape_xml_attribute, system_message

logger = logging.getLogger(__name__)

_PUNCT_RE = re.compile(r"[^\w\s]")


@dataclass
class RouteRequest:
    """One inbound message and what the router needs to know about where it came from."""
    message: RawMessage
    store: MessageStore
    is_private: bool = False
    in_thread: bool = False
    text: Optional[str] = None  # defaults to the message content with markup stripped
    images: Tuple[str, ...] = ()
    signal: Optional[asyncio.Event] = None

    @property
    def requester(self) -> str:
        return self.message.label

    @property
    def content(self) -> str:
        return self.text if self.text is not None else strip_markup(self.message.content)


class ErrorNoticeWindow:
    """Rate limit for user-facing error notices.

    ``should_notify`` is true for the first failure and then again only once
    ``minutes`` have passed since the last notice.
    """

    def __init__(self, minutes: float, clock: Callable[[], float] = time.monotonic):
        self._window_s = minutes * 60.0
        self._clock = clock
        self._last: Optional[float] = None

    def should_notify(self) -> bool:
        now = self._clock()
        if self._last is not None and now - self._last < self._window_s:
            return False
        self._last = now
        return True

    def reset(self, minutes: Optional[float] = None) -> None:
        if minutes is not None:
            self._window_s = minutes * 60.0
        self._last = None


def _failure_from(exc: Exception, capability: Capability, route: str) -> CapabilityResult:
    if isinstance(exc, CapabilityBusyError):
        outcome = Outcome.BUSY
    elif isinstance(exc, CapabilityTimeoutError):
        outcome = Outcome.TIMEOUT
    elif isinstance(exc, RequestCancelledError):
        outcome = Outcome.CANCELLED
    else:
        outcome = Outcome.FAILED
    return CapabilityResult.failure(capability, str(exc) or exc.__class__.__name__, outcome, route)


def _is_bare_keyword(raw: str, binding: CapabilityBinding, marker: str) -> bool:
    text = raw.strip()
    if text.startswith(marker):
        text = text[len(marker):]
    return " ".join(_PUNCT_RE.sub("", text).lower().split()) == binding.keyword.lower()


class TwoStageRouter:
    """Routes one message to a capability and returns a ``CapabilityResult``.

    ``services`` maps each non-text capability to the adapter that performs it.
    Text generation goes through ``backend``; every call, text or not, goes
    through ``gateway``.
    """

    def __init__(
        self,
        config: RouterConfig,
        *,
        backend: GenerativeBackend,
        gateway: Gateway,
        services: Mapping[Capability, CapabilityService],
        assistant_id: str,
    ):
        self._config = config
        self._backend = backend
        self._gateway = gateway
        self._services: Dict[Capability, CapabilityService] = dict(services)
        self._assistant_id = assistant_id
        self._registry = KeywordRegistry(config.keywords)
        self._notices = ErrorNoticeWindow(config.error_notice_minutes)
        self._apply(config)

    def _apply(self, config: RouterConfig) -> None:
        self._matcher = KeywordMatcher(self._registry, config.command_marker)
        self._collector = ContextCollector(
            self._assistant_id,
            allow_bot_interactions=config.context.allow_bot_interactions,
            processing_placeholder=config.context.processing_placeholder,
        )
        self._inferencer = ParameterInferencer(
            self._backend, self._gateway, model=config.model.inference_model
        )
        self._context_filter = ContextFilter(
            self._backend,
            self._gateway,
            default_max_depth=config.context.direct_max_depth,
            model=config.model.model,
        )

    @property
    def registry(self) -> KeywordRegistry:
        return self._registry

    @property
    def matcher(self) -> KeywordMatcher:
        return self._matcher

    def reload(self, config: RouterConfig) -> None:
        """Swap in a new configuration. Bindings are replaced atomically; notice window and model cache reset."""
        self._config = config
        self._registry.replace(config.keywords)
        self._notices.reset(config.error_notice_minutes)
        self._backend.reconfigure(config.model)
        self._apply(config)

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def route(self, request: RouteRequest) -> CapabilityResult:
        result = await self._route(request)
        if not result.success and result.outcome is not Outcome.BUSY:
            result.notify = self._notices.should_notify()
        return result

    async def _route(self, request: RouteRequest) -> CapabilityResult:
        text = request.content
        binding = self._matcher.match(text)

        if binding is not None and binding.capability is Capability.HELP:
            return self.help_result()
        if binding is not None and binding.capability is not Capability.TEXT:
            logger.info("Explicit %r from %s", binding.keyword, request.requester)
            return await self._explicit(binding, text, request)

        marker_used = self._matcher.has_marker(text)
        question = text
        if binding is not None:
            question = self._matcher.strip_keyword(text, binding)
            if not question and not binding.allow_empty_content:
                return self._usage_failure(binding)
        history = await self.collect_context(request)
        return await self._ambient(question, history, request, marker_used)

    # ------------------------------------------------------------------
    # Context
    # ------------------------------------------------------------------

    async def collect_context(self, request: RouteRequest) -> List[ContextMessage]:
        """Reply chain (direct) plus channel, thread or DM history (ambient), collated."""
        ctx = self._config.context
        message = request.message
        direct: List[ContextMessage] = []
        if message.reply_to_id:
            direct = await self._collector.collect_reply_chain(
                request.store, message, ctx.direct_budget(), ctx.image_depth
            )

        if request.is_private:
            ambient = await self._collector.collect_dm_history(request.store, message, ctx.ambient_budget())
        elif request.in_thread:
            thread = await self._collector.collect_channel_history(
                request.store, message, ctx.direct_budget(), ContextSource.THREAD
            )
            if not direct:
                # No reply chain: the thread itself is what the user is talking about
                direct, ambient = thread, []
            else:
                ambient = thread
        else:
            ambient = await self._collector.collect_channel_history(request.store, message, ctx.ambient_budget())

        total = CollationBudget(
            max_depth=max(ctx.direct_max_depth, ctx.ambient_max_depth),
            max_chars=max(ctx.direct_max_chars, ctx.ambient_max_chars),
        )
        collated = collate(direct, ambient, total)
        logger.debug(
            "Context for %s: %d direct, %d ambient, %d collated",
            message.id, len(direct), len(ambient), len(collated),
        )
        return collated

    # ------------------------------------------------------------------
    # Explicit path
    # ------------------------------------------------------------------

    def _usage_failure(self, binding: CapabilityBinding) -> CapabilityResult:
        what = " ".join(f"<{p}>" for p in binding.required_parameters) or "<text>"
        return CapabilityResult.failure(
            binding.capability,
            f"Usage: {self._config.command_marker}{binding.keyword} {what}",
            route="explicit",
        )

    async def _explicit(self, binding: CapabilityBinding, text: str, request: RouteRequest) -> CapabilityResult:
        body = self._matcher.strip_keyword(text, binding)
        # Reserved keywords only match as the whole message, so their body is always empty
        if not body and not binding.allow_empty_content and not binding.is_reserved:
            return self._usage_failure(binding)
        result = await self._dispatch(binding, body, request, route="explicit")
        if result.success and binding.force_final_text_pass:
            history = await self.collect_context(request)
            return await self._final_pass(binding, result, body or text, history, request)
        return result

    # ------------------------------------------------------------------
    # Ambient path
    # ------------------------------------------------------------------

    def _text_timeout_ms(self) -> int:
        binding = self._registry.for_capability(Capability.TEXT)
        return binding.timeout_ms if binding else DEFAULT_CAPABILITY_TIMEOUT_MS

    async def _generate(
        self,
        prompt: str,
        system: str,
        request: RouteRequest,
        label: str,
        *,
        model: Optional[str] = None,
        images: Sequence[str] = (),
    ) -> GenerationResult:
        async def _task(task_signal: asyncio.Event) -> GenerationResult:
            return await self._backend.generate(
                prompt,
                request.requester,
                model,
                [system_message(system)],
                task_signal,
                include_system_prompt=False,
                images=images,
            )

        return await self._gateway.execute(
            Capability.TEXT, request.requester, label, self._text_timeout_ms(), _task, request.signal
        )

    async def _ambient(
        self,
        question: str,
        history: List[ContextMessage],
        request: RouteRequest,
        marker_used: bool,
    ) -> CapabilityResult:
        routable = self._registry.routable()
        marker = self._config.command_marker
        system = build_system_prompt(self._config.model.system_prompt, routable, marker)
        user = build_user_content(
            question,
            history,
            bot_name=self._config.bot_display_name,
            requester=request.requester,
            routable=routable,
            marker=marker,
        )
        images = tuple(request.images) + tuple(img for m in history for img in m.images)
        try:
            generated = await self._generate(user, system, request, "ambient", images=images)
        except Exception as exc:
            logger.warning("Ambient generation failed: %s", exc)
            return _failure_from(exc, Capability.TEXT, "ambient")
        if not generated.success or not generated.text:
            return CapabilityResult.failure(Capability.TEXT, generated.error or "Empty reply from model")

        parsed = parse_directive(generated.text, routable, marker)
        if parsed.matched and parsed.binding is not None:
            return await self._directed(parsed.binding, parsed, question, history, request)

        if not marker_used:
            heuristic = await self._heuristic(question, history, request)
            if heuristic is not None:
                return heuristic
        return CapabilityResult(capability=Capability.TEXT, success=True, text=generated.text, route="ambient")

    async def resolve_parameter(
        self,
        binding: CapabilityBinding,
        inline: Optional[str],
        raw_content: str,
        requester: str,
        history: Sequence[ContextMessage] = (),
        signal: Optional[asyncio.Event] = None,
    ) -> str:
        """Choose the parameter for a model-routed capability.

        Implicit/mixed bindings with required parameters prefer inference from
        the user's own words over the model's inline text, unless the user typed
        nothing but the keyword. The result falls back to the inline text and
        then to the raw content; it is never empty because of an inference failure.
        """
        if not binding.requires_parameter:
            return inline or raw_content
        mode = binding.parameter_mode or ParameterMode.EXPLICIT
        if mode in (ParameterMode.IMPLICIT, ParameterMode.MIXED):
            if inline and _is_bare_keyword(raw_content, binding, self._config.command_marker):
                return inline
            inferred = await self._inferencer.infer(
                binding, raw_content, requester, history=history, signal=signal
            )
            return inferred or inline or raw_content
        if inline:
            return inline
        inferred = await self._inferencer.infer(binding, raw_content, requester, history=history, signal=signal)
        return inferred or raw_content

    async def _directed(
        self,
        binding: CapabilityBinding,
        parsed: RouteParseResult,
        question: str,
        history: List[ContextMessage],
        request: RouteRequest,
    ) -> CapabilityResult:
        logger.info("Model routed %s to %r", request.message.id, binding.keyword)
        try:
            parameter = await self.resolve_parameter(
                binding, parsed.inferred_parameter, question, request.requester, history, request.signal
            )
        except RequestCancelledError as exc:
            return _failure_from(exc, binding.capability, "directive")
        result = await self._dispatch(binding, parameter, request, route="directive")
        result.commentary = parsed.commentary
        if result.success and (binding.capability in EXTERNAL_DATA_CAPABILITIES or binding.force_final_text_pass):
            return await self._final_pass(binding, result, question, history, request)
        return result

    # ------------------------------------------------------------------
    # Dispatch and final pass
    # ------------------------------------------------------------------

    async def _dispatch(
        self,
        binding: CapabilityBinding,
        parameter: str,
        request: RouteRequest,
        route: str,
    ) -> CapabilityResult:
        service = self._services.get(binding.capability)
        if service is None:
            missing = CapabilityUnavailableError(
                f"No service configured for {binding.capability.value}", binding.capability.value
            )
            logger.warning("%s", missing)
            return _failure_from(missing, binding.capability, route)

        async def _task(task_signal: asyncio.Event) -> CapabilityResult:
            return await service.invoke(binding, parameter, request.requester, task_signal)

        try:
            result = await self._gateway.execute(
                binding.capability, request.requester, binding.keyword, binding.timeout_ms, _task, request.signal
            )
        except Exception as exc:
            logger.warning("%r failed for %s: %s", binding.keyword, request.requester, exc)
            return _failure_from(exc, binding.capability, route)
        result.route = route
        return result

    async def _final_pass(
        self,
        binding: CapabilityBinding,
        raw: CapabilityResult,
        question: str,
        history: List[ContextMessage],
        request: RouteRequest,
    ) -> CapabilityResult:
        """Turn a capability's raw data into a conversational answer. Falls back to the raw result."""
        try:
            history = await self._context_filter.filter(
                history, question, binding, request.requester, request.signal
            )
        except RequestCancelledError as exc:
            return _failure_from(exc, binding.capability, raw.route)
        message = request.message
        if not find_trigger_entry(history, message.id) and question:
            history = history + [
                ContextMessage(
                    role=Role.USER,
                    content=f"{request.requester}: {question}",
                    source=ContextSource.TRIGGER,
                    origin_id=message.id,
                    created_at_ms=message.created_at_ms,
                    has_name_prefix=True,
                )
            ]
        external = (
            f'<api_data source="{binding.capability.value}" keyword="{escape_xml_attribute(binding.keyword)}">\n'
            f"{raw.text or 'No data available.'}\n</api_data>"
        )
        user = build_user_content(
            question,
            history,
            bot_name=self._config.bot_display_name,
            requester=request.requester,
            external_data=external,
        )
        try:
            generated = await self._generate(
                user,
                self._config.model.system_prompt,
                request,
                f"{binding.keyword}:final",
                model=self._config.model.final_model,
            )
        except Exception as exc:
            logger.warning("Final pass for %r failed (%s); returning raw result", binding.keyword, exc)
            return raw
        if not generated.success or not generated.text:
            logger.warning("Final pass for %r returned nothing; returning raw result", binding.keyword)
            return raw
        return CapabilityResult(
            capability=binding.capability,
            success=True,
            text=generated.text,
            images=raw.images,
            route=raw.route,
            commentary=raw.commentary,
        )

    # ------------------------------------------------------------------
    # Heuristics and help
    # ------------------------------------------------------------------

    def _routable_binding(self, capability: Capability) -> Optional[CapabilityBinding]:
        return next((b for b in self._registry.routable() if b.capability is capability), None)

    async def _heuristic(
        self,
        text: str,
        history: List[ContextMessage],
        request: RouteRequest,
    ) -> Optional[CapabilityResult]:
        intent = classify_request(text)
        if intent is None:
            return None
        is_meme = isinstance(intent, MemeRequest)
        binding = self._routable_binding(Capability.MEME if is_meme else Capability.IMAGE)
        if binding is None:
            return None
        prompt = derive_prompt(intent, history, self._config.command_marker)
        if not prompt:
            logger.info("Heuristic %s request without a concrete prompt; keeping chat reply", binding.keyword)
            return None
        parameter = prompt
        if is_meme:
            try:
                inferred = await self._inferencer.infer(
                    binding, text, request.requester, history=history, signal=request.signal
                )
            except RequestCancelledError as exc:
                return _failure_from(exc, binding.capability, "heuristic")
            parameter = inferred or prompt
        logger.info("Heuristic routed %s to %r with %r", request.message.id, binding.keyword, parameter)
        return await self._dispatch(binding, parameter, request, route="heuristic")

    def help_result(self) -> CapabilityResult:
        marker = self._config.command_marker
        lines = [
            f"{marker}{b.keyword} - {b.description}" if b.description else f"{marker}{b.keyword}"
            for b in self._registry.enabled()
            if b.capability is not Capability.HELP
        ]
        if lines:
            text = "Available commands:\n" + "\n".join(lines)
        else:
            text = "No commands are currently available."
        return CapabilityResult(capability=Capability.HELP, success=True, text=text, route="builtin")
