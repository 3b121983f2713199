"""Generative backend factory."""

from __future__ import annotations

from intent_router.application.ports import GenerativeBackend
from intent_router.config.schema import ModelConfig

from .ollama import ModelValidityCache, OllamaGenerativeClient


def build_generative_client(model_config: ModelConfig) -> GenerativeBackend:
    """Return the generative backend for *model_config* (Ollama native chat API)."""
    return OllamaGenerativeClient(model_config, ModelValidityCache(model_config.validity_ttl_s))


__all__ = ["ModelValidityCache", "OllamaGenerativeClient", "build_generative_client"]
