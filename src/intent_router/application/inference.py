"""Parameter inference: ask the generative backend to extract a capability's input."""

from __future__ import annotations

import asyncio
import logging
import re
from typing import List, Optional, Sequence

from intent_router.config.constants import DEFAULT_CAPABILITY_TIMEOUT_MS
from intent_router.config.schema import CapabilityBinding, ParameterMode
from intent_router.domain import Capability, ContextMessage, RequestCancelledError

from .ports import Gateway, GenerativeBackend
from .prompts import escape_xml_content, system_message

logger = logging.getLogger(__name__)

_SEPARATOR_RE = re.compile(r"^[:|;,=\-–—>]+\s*")


def _strip_wrapping_quotes(text: str) -> str:
    t = text.strip()
    if len(t) >= 2 and t[0] == t[-1] and t[0] in ("'", '"'):
        return t[1:-1].strip()
    return t


def extract_inference_line(raw: str, binding: CapabilityBinding) -> Optional[str]:
    """Pick the parameter out of a model reply. ``None`` when the model said NONE or nothing usable."""
    lines = [ln.strip() for ln in raw.splitlines()]
    lines = [ln for ln in lines if ln and not ln.startswith("```")]
    if not lines:
        return None

    keyword = r"\s+".join(re.escape(p) for p in binding.keyword.split())
    invocation = re.compile(r"^!?" + keyword + r"(?!\w)(.+)$", re.IGNORECASE)
    for line in lines:
        stripped = _strip_wrapping_quotes(line)
        if stripped.upper() == "NONE":
            return None
        m = invocation.match(stripped)
        if m:
            remainder = _SEPARATOR_RE.sub("", m.group(1).strip()).strip()
            if remainder:
                return remainder

    if binding.capability is Capability.MEME:
        structured = next((ln for ln in lines if "|" in ln), None)
        if structured:
            return _strip_wrapping_quotes(structured)

    value = _strip_wrapping_quotes(lines[0])
    if not value or value.upper() == "NONE":
        return None
    return value


def _system_prompt(binding: CapabilityBinding, meme_templates: Sequence[str]) -> str:
    if binding.capability is Capability.WEATHER:
        return "\n".join([
            "You extract a location from the user's message for a weather service.",
            "",
            "Rules - follow exactly:",
            "1) Output ONLY the location string. No explanations, no prefixes, no keywords.",
            '2) If the user references a place indirectly (e.g. "capital of Thailand"), resolve it (e.g. "Bangkok").',
            '3) Prefer "City, Region, Country". A zip code is fine if the user gave one.',
            "4) If no location can be inferred at all, output exactly: NONE",
        ])
    if binding.capability is Capability.MEME:
        lines = [
            "You select a meme template and compose the meme text lines from the user's message.",
            "",
            "Rules - follow exactly:",
            "1) Output ONLY in this format: templateId | top text | bottom text",
            "2) If the user names a specific template, use that template id.",
            "3) If no meme can be inferred at all, output exactly: NONE",
            "4) Plain text only, exactly one line. No markdown, JSON or explanations.",
        ]
        if meme_templates:
            lines += ["", "Available meme templates (use the id before the colon):", *meme_templates]
        return "\n".join(lines)
    return "\n".join([
        "You extract the required parameters from the user's message for an external ability.",
        "",
        "Rules - follow exactly:",
        "1) Output ONLY the extracted parameter value(s). No explanations, no prefixes.",
        "2) If the user references something indirectly, resolve it to a concrete value.",
        "3) If no parameter can be inferred, output exactly: NONE",
    ])


def _ability_context(binding: CapabilityBinding) -> str:
    parts = [
        f"Ability keyword: {binding.keyword}",
        f"Ability capability: {binding.capability.value}",
        f"Ability description: {binding.description or binding.capability.value}",
        f"Inputs mode: {(binding.parameter_mode or ParameterMode.EXPLICIT).value}",
    ]
    if binding.required_parameters:
        parts.append(f"Required inputs: {', '.join(binding.required_parameters)}")
    if binding.parameter_sources:
        parts.append(f"Infer from: {', '.join(binding.parameter_sources)}")
    return "\n".join(parts)


def _user_prompt(
    binding: CapabilityBinding,
    content: str,
    history: Optional[Sequence[ContextMessage]],
) -> str:
    parts: List[str] = ["<ability_context>", _ability_context(binding), "</ability_context>", ""]
    if history and "history" in binding.parameter_sources:
        rendered = "\n".join(f"{m.role.value}: {escape_xml_content(m.content)}" for m in history)
        parts += ["<conversation_history>", rendered, "</conversation_history>", ""]
    parts.append(f"<user_message>{escape_xml_content(content)}</user_message>")
    parts.append("")
    if binding.capability is Capability.MEME:
        parts.append("Extract meme parameters and output ONLY: templateId | top text | bottom text")
    else:
        parts.append("Extract the required parameter from the user message above. Output ONLY the value.")
    return "\n".join(parts)


class ParameterInferencer:
    """One generative call per ``infer``; results are not cached.

    ``infer`` never raises for backend problems (busy, timeout, HTTP errors,
    NONE answers); it returns ``None`` and the router falls back. Only a
    cancellation from the caller propagates.
    """

    def __init__(
        self,
        backend: GenerativeBackend,
        gateway: Gateway,
        *,
        model: Optional[str] = None,
        meme_templates: Sequence[str] = (),
    ):
        self._backend = backend
        self._gateway = gateway
        self._model = model
        self._meme_templates = tuple(meme_templates)

    async def infer(
        self,
        binding: CapabilityBinding,
        raw_content: str,
        requester: str,
        *,
        history: Optional[Sequence[ContextMessage]] = None,
        signal: Optional[asyncio.Event] = None,
    ) -> Optional[str]:
        system = _system_prompt(binding, self._meme_templates)
        prompt = _user_prompt(binding, raw_content, history)
        logger.info("Inferring parameter for %r", binding.keyword)

        async def _task(task_signal: asyncio.Event):
            return await self._backend.generate(
                prompt,
                requester,
                self._model,
                [system_message(system)],
                task_signal,
                include_system_prompt=False,
            )

        try:
            result = await self._gateway.execute(
                Capability.TEXT,
                requester,
                f"{binding.keyword}:infer",
                binding.timeout_ms or DEFAULT_CAPABILITY_TIMEOUT_MS,
                _task,
                signal,
            )
        except RequestCancelledError:
            raise
        except Exception as exc:
            logger.warning("Parameter inference for %r failed: %s", binding.keyword, exc)
            return None

        if not result.success or not result.text:
            logger.warning("Parameter inference for %r returned nothing: %s", binding.keyword, result.error)
            return None
        inferred = extract_inference_line(result.text.strip(), binding)
        if inferred:
            logger.info("Inferred %r for %r", inferred, binding.keyword)
        else:
            logger.info("Model could not infer a parameter for %r", binding.keyword)
        return inferred
