"""Tests for CLI commands using CliRunner (no live model or capability services required).

Covers:
  - intent-router route
  - intent-router keywords
  - intent-router check
"""
from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock, patch

from typer.testing import CliRunner

from intent_router.config import DEFAULT_CONFIG, CapabilityBinding, RouterConfig
from intent_router.domain import Capability, CapabilityResult, GenerationResult
from intent_router.interfaces.cli import app

runner = CliRunner()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _backend(*texts: str) -> MagicMock:
    backend = MagicMock()
    backend.generate = AsyncMock(side_effect=[GenerationResult(success=True, text=t) for t in texts])
    return backend


def _weather_service(text: str = "Paris: 18C") -> MagicMock:
    service = MagicMock()
    service.invoke = AsyncMock(return_value=CapabilityResult(capability=Capability.WEATHER, success=True, text=text))
    return service


# ---------------------------------------------------------------------------
# intent-router route
# ---------------------------------------------------------------------------

def test_route_help_command():
    with patch("intent_router.interfaces.cli.load_config", return_value=DEFAULT_CONFIG), \
         patch("intent_router.interfaces.cli.build_generative_client", return_value=_backend()):
        result = runner.invoke(app, ["route", "!help"])
    assert result.exit_code == 0
    assert "!weather" in result.output


def test_route_explicit_command_uses_service():
    service = _weather_service()
    with patch("intent_router.interfaces.cli.load_config", return_value=DEFAULT_CONFIG), \
         patch("intent_router.interfaces.cli.build_generative_client", return_value=_backend()), \
         patch("intent_router.interfaces.cli.build_services", return_value={Capability.WEATHER: service}):
        result = runner.invoke(app, ["route", "!weather paris", "--requester", "alice"])
    assert result.exit_code == 0
    assert "Paris: 18C" in result.output
    _, parameter, requester, _ = service.invoke.call_args.args
    assert (parameter, requester) == ("paris", "alice")


def test_route_chat_reply_with_transcript(tmp_path):
    transcript = tmp_path / "chat.json"
    transcript.write_text(json.dumps([
        {"id": "1", "content": "the game starts at 8", "author_id": "u2", "author_name": "bob", "created_at_ms": 1},
    ]))
    backend = _backend("Sounds good, see you at 8!")
    with patch("intent_router.interfaces.cli.load_config", return_value=DEFAULT_CONFIG), \
         patch("intent_router.interfaces.cli.build_generative_client", return_value=backend):
        result = runner.invoke(app, ["route", "when does it start?", "--transcript", str(transcript)])
    assert result.exit_code == 0
    assert "see you at 8" in result.output
    assert "the game starts at 8" in backend.generate.call_args.args[0]


def test_route_failure_exits_nonzero():
    with patch("intent_router.interfaces.cli.load_config", return_value=DEFAULT_CONFIG), \
         patch("intent_router.interfaces.cli.build_generative_client", return_value=_backend()), \
         patch("intent_router.interfaces.cli.build_services", return_value={}):
        result = runner.invoke(app, ["route", "!weather"])
    assert result.exit_code == 1
    assert "Usage: !weather" in result.output


def test_route_invalid_config_exits():
    with patch("intent_router.interfaces.cli.load_config", side_effect=ValueError("Duplicate enabled keyword")):
        result = runner.invoke(app, ["route", "hello"])
    assert result.exit_code == 1
    assert "Invalid configuration" in result.output


# ---------------------------------------------------------------------------
# intent-router keywords
# ---------------------------------------------------------------------------

def test_keywords_lists_enabled_bindings():
    config = RouterConfig(keywords=[
        CapabilityBinding(keyword="weather", capability=Capability.WEATHER),
        CapabilityBinding(keyword="forecast", capability=Capability.WEATHER, enabled=False),
    ])
    with patch("intent_router.interfaces.cli.load_config", return_value=config):
        result = runner.invoke(app, ["keywords"])
        result_all = runner.invoke(app, ["keywords", "--all"])
    assert result.exit_code == 0
    assert "!weather" in result.output
    assert "forecast" not in result.output
    assert "forecast" in result_all.output


# ---------------------------------------------------------------------------
# intent-router check
# ---------------------------------------------------------------------------

def test_check_reports_available_model():
    with patch("intent_router.interfaces.cli.load_config", return_value=DEFAULT_CONFIG), \
         patch("intent_router.interfaces.cli.discover_models", return_value=["llama3.1:8b"]):
        result = runner.invoke(app, ["check"])
    assert result.exit_code == 0
    assert "reachable" in result.output


def test_check_missing_model_exits_nonzero():
    with patch("intent_router.interfaces.cli.load_config", return_value=DEFAULT_CONFIG), \
         patch("intent_router.interfaces.cli.discover_models", return_value=["mistral:7b"]):
        result = runner.invoke(app, ["check"])
    assert result.exit_code == 1


def test_check_unreachable_exits_nonzero():
    with patch("intent_router.interfaces.cli.load_config", return_value=DEFAULT_CONFIG), \
         patch("intent_router.interfaces.cli.discover_models", return_value=None):
        result = runner.invoke(app, ["check"])
    assert result.exit_code == 1
    assert "unreachable" in result.output
