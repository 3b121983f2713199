"""Tests for ParameterInferencer and extract_inference_line."""
from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from intent_router.application.inference import ParameterInferencer, extract_inference_line
from intent_router.config import CapabilityBinding, ParameterMode
from intent_router.domain import Capability, ContextMessage, ContextSource, GenerationResult, Role
from intent_router.infrastructure.gateway import CapabilityGateway

WEATHER = CapabilityBinding(
    keyword="weather",
    capability=Capability.WEATHER,
    parameter_mode=ParameterMode.IMPLICIT,
    required_parameters=["location"],
)
MEME = CapabilityBinding(
    keyword="meme",
    capability=Capability.MEME,
    parameter_mode=ParameterMode.IMPLICIT,
    parameter_sources=["message", "history"],
    required_parameters=["template", "top", "bottom"],
)


def _backend(text: str | None = None, success: bool = True, error: str | None = None) -> AsyncMock:
    backend = AsyncMock()
    backend.generate = AsyncMock(return_value=GenerationResult(success=success, text=text, error=error))
    return backend


def _inferencer(backend, gateway=None) -> ParameterInferencer:
    return ParameterInferencer(backend, gateway or CapabilityGateway())


# ---------------------------------------------------------------------------
# extract_inference_line
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("raw,expected", [
    ("Austin, TX, USA", "Austin, TX, USA"),
    ('"Bangkok"', "Bangkok"),
    ("!weather: Paris", "Paris"),
    ("```\nweather Oslo\n```", "Oslo"),
    ("NONE", None),
    ("'none'", None),
    ("", None),
])
def test_extract_weather(raw, expected):
    assert extract_inference_line(raw, WEATHER) == expected


def test_extract_meme_prefers_pipe_line():
    raw = "Sure! Here you go:\ndrake | doing work | doing memes"
    assert extract_inference_line(raw, MEME) == "drake | doing work | doing memes"


# ---------------------------------------------------------------------------
# infer
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_infer_returns_extracted_value():
    backend = _backend("Dallas, Texas, USA")
    result = await _inferencer(backend).infer(WEATHER, "is it raining in dallas?", "alice")
    assert result == "Dallas, Texas, USA"
    prompt, requester = backend.generate.call_args.args[:2]
    assert "is it raining in dallas?" in prompt
    assert requester == "alice"
    assert backend.generate.call_args.kwargs["include_system_prompt"] is False


@pytest.mark.asyncio
async def test_infer_none_answer():
    assert await _inferencer(_backend("NONE")).infer(WEATHER, "hello", "alice") is None


@pytest.mark.asyncio
async def test_infer_backend_failure_returns_none():
    backend = _backend(success=False, error="connection refused")
    assert await _inferencer(backend).infer(WEATHER, "weather in rome", "alice") is None


@pytest.mark.asyncio
async def test_infer_backend_exception_returns_none():
    backend = AsyncMock()
    backend.generate = AsyncMock(side_effect=RuntimeError("kaboom"))
    assert await _inferencer(backend).infer(WEATHER, "weather in rome", "alice") is None


@pytest.mark.asyncio
async def test_infer_busy_text_capability_returns_none():
    gateway = CapabilityGateway()
    started = asyncio.Event()
    release = asyncio.Event()

    async def _hold(signal):
        started.set()
        await release.wait()

    holder = asyncio.create_task(gateway.execute(Capability.TEXT, "bob", "chat", 5000, _hold))
    await started.wait()
    try:
        assert await _inferencer(_backend("Paris"), gateway).infer(WEATHER, "paris?", "alice") is None
    finally:
        release.set()
        await holder


@pytest.mark.asyncio
async def test_infer_includes_history_when_binding_reads_it():
    backend = _backend("drake | a | b")
    history = [ContextMessage(role=Role.USER, content="mondays are the worst", source=ContextSource.CHANNEL)]
    await _inferencer(backend).infer(MEME, "make a meme about that", "alice", history=history)
    prompt = backend.generate.call_args.args[0]
    assert "mondays are the worst" in prompt


@pytest.mark.asyncio
async def test_infer_is_not_cached():
    backend = _backend("Paris")
    inf = _inferencer(backend)
    await inf.infer(WEATHER, "paris?", "alice")
    await inf.infer(WEATHER, "paris?", "alice")
    assert backend.generate.await_count == 2
