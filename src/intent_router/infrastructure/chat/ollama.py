"""Ollama generative client (native ``/api/chat``).

Failures are returned as ``GenerationResult(success=False, ...)`` rather than
raised, so callers can treat an unreachable model as a normal chat failure.
Model availability is checked against ``/api/tags`` and remembered for a
while in a ``ModelValidityCache``.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Sequence

import httpx

from intent_router.config.constants import MODEL_DISCOVERY_TIMEOUT_S
from intent_router.config.schema import ModelConfig
from intent_router.domain import GenerationResult

logger = logging.getLogger(__name__)


def _ollama_root(base_url: str) -> str:
    """Strip a trailing /v1 (OpenAI-compatible path) to get the native API root."""
    root = base_url.rstrip("/")
    if root.endswith("/v1"):
        root = root[:-3]
    return root


class ModelValidityCache:
    """Remembers which models an endpoint has, each entry with an expiry time.

    Bound to one endpoint; ``bind`` to a different endpoint drops everything.
    """

    def __init__(self, ttl_s: float, clock: Callable[[], float] = time.monotonic):
        self._ttl_s = ttl_s
        self._clock = clock
        self._endpoint: Optional[str] = None
        self._expiry: Dict[str, float] = {}

    def bind(self, endpoint: str, ttl_s: Optional[float] = None) -> None:
        if ttl_s is not None:
            self._ttl_s = ttl_s
        if endpoint != self._endpoint:
            self._endpoint = endpoint
            self._expiry.clear()

    def is_valid(self, model: str) -> bool:
        expires = self._expiry.get(model)
        if expires is None:
            return False
        if self._clock() >= expires:
            del self._expiry[model]
            return False
        return True

    def mark_valid(self, model: str) -> None:
        self._expiry[model] = self._clock() + self._ttl_s

    def invalidate(self, model: Optional[str] = None) -> None:
        if model is None:
            self._expiry.clear()
        else:
            self._expiry.pop(model, None)


def _model_names(tags: Dict[str, Any]) -> List[str]:
    names: List[str] = []
    for m in tags.get("models") or []:
        name = m.get("name") or m.get("model")
        if name:
            names.append(name)
    return names


def _has_model(names: Sequence[str], model: str) -> bool:
    # "llama3.1" in config matches "llama3.1:latest" on the server
    return any(n == model or n == f"{model}:latest" for n in names)


def discover_models(base_url: str, timeout_s: float = MODEL_DISCOVERY_TIMEOUT_S) -> Optional[List[str]]:
    """Model names served by Ollama (GET /api/tags), or None if unreachable / not Ollama."""
    try:
        with httpx.Client(timeout=timeout_s) as client:
            r = client.get(f"{_ollama_root(base_url)}/api/tags")
            if r.status_code != 200:
                return None
            return _model_names(r.json())
    except (httpx.HTTPError, ValueError):
        return None


class OllamaGenerativeClient:
    """Generative backend over Ollama's native chat API."""

    def __init__(self, model_config: ModelConfig, cache: Optional[ModelValidityCache] = None):
        self._cache = cache or ModelValidityCache(model_config.validity_ttl_s)
        self.reconfigure(model_config)

    def reconfigure(self, model_config: ModelConfig) -> None:
        self._config = model_config
        self._root = _ollama_root(model_config.base_url)
        self._cache.bind(self._root, model_config.validity_ttl_s)

    async def _check_model(self, client: httpx.AsyncClient, model: str) -> Optional[str]:
        """Return an error message if the server is reachable but lacks ``model``."""
        if self._cache.is_valid(model):
            return None
        try:
            r = await client.get(f"{self._root}/api/tags", timeout=MODEL_DISCOVERY_TIMEOUT_S)
            r.raise_for_status()
            names = _model_names(r.json())
        except (httpx.HTTPError, ValueError) as exc:
            # Let the chat call surface the real error
            logger.debug("Model list unavailable at %s: %s", self._root, exc)
            return None
        if not _has_model(names, model):
            return f"Model {model!r} is not available at {self._root}"
        self._cache.mark_valid(model)
        return None

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
    ) -> GenerationResult:
        model = model or self._config.model
        if signal is not None and signal.is_set():
            return GenerationResult(success=False, error="cancelled", model=model)

        messages: List[Dict[str, Any]] = []
        if include_system_prompt and self._config.system_prompt:
            messages.append({"role": "system", "content": self._config.system_prompt})
        messages.extend(history or [])
        user: Dict[str, Any] = {"role": "user", "content": prompt}
        if images:
            user["images"] = list(images)
        messages.append(user)

        payload = {
            "model": model,
            "messages": messages,
            "stream": False,
            "options": {"temperature": self._config.temperature},
        }
        logger.debug("Ollama %s for %s: %.80s", model, requester, prompt)
        try:
            async with httpx.AsyncClient(timeout=httpx.Timeout(self._config.timeout_s)) as client:
                missing = await self._check_model(client, model)
                if missing:
                    return GenerationResult(success=False, error=missing, model=model)
                r = await client.post(f"{self._root}/api/chat", json=payload)
                r.raise_for_status()
                data = r.json()
        except httpx.HTTPStatusError as exc:
            if exc.response.status_code == 404:
                self._cache.invalidate(model)
            logger.warning("Ollama %s returned %s", model, exc.response.status_code)
            return GenerationResult(success=False, error=str(exc), model=model)
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Ollama request failed: %s", exc)
            return GenerationResult(success=False, error=str(exc) or exc.__class__.__name__, model=model)

        text = ((data.get("message") or {}).get("content") or "").strip()
        if not text:
            return GenerationResult(success=False, error="Empty response from model", model=model)
        return GenerationResult(success=True, text=text, model=model)
