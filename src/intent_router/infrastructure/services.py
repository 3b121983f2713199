"""HTTP adapters for non-text capabilities (image, search, weather, sports, meme).

Every service speaks the same JSON contract::

    POST <url>  {"keyword": ..., "capability": ..., "input": ..., "requester": ...}
    200         {"success": true, "text": "...", "images": ["<url or base64>", ...]}
                {"success": false, "error": "..."}
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict

import httpx

from intent_router.application.ports import CapabilityService
from intent_router.config.schema import CapabilityBinding, RouterConfig, ServiceConfig
from intent_router.domain import Capability, CapabilityResult, Outcome

from .activity_keys import ActivityKeyService

logger = logging.getLogger(__name__)


class HttpCapabilityService:
    """POSTs the resolved parameter to the capability's endpoint.

    HTTP and transport errors are raised (the gateway caller reports them);
    a ``"success": false`` body is returned as a capability-reported failure.
    """

    def __init__(self, capability: Capability, service: ServiceConfig):
        self._capability = capability
        self._service = service

    async def invoke(
        self,
        binding: CapabilityBinding,
        parameter: str,
        requester: str,
        signal: asyncio.Event,
    ) -> CapabilityResult:
        payload: Dict[str, Any] = {
            "keyword": binding.keyword,
            "capability": self._capability.value,
            "input": parameter,
            "requester": requester,
        }
        timeout = httpx.Timeout(binding.timeout_ms / 1000.0)
        async with httpx.AsyncClient(timeout=timeout) as client:
            r = await client.post(self._service.url, headers=self._service.headers, json=payload)
            r.raise_for_status()
            data = r.json()

        if not data.get("success", True) or data.get("error"):
            error = data.get("error") or f"{self._capability.value} request failed"
            logger.info("%s reported failure: %s", self._capability.value, error)
            return CapabilityResult.failure(self._capability, error, Outcome.FAILED)
        return CapabilityResult(
            capability=self._capability,
            success=True,
            text=data.get("text"),
            images=tuple(data.get("images") or ()),
        )


def build_services(config: RouterConfig) -> Dict[Capability, CapabilityService]:
    """One HTTP adapter per configured endpoint, plus the in-process activity key service."""
    services: Dict[Capability, CapabilityService] = {
        capability: HttpCapabilityService(capability, service)
        for capability, service in config.services.items()
        if capability not in (Capability.TEXT, Capability.HELP, Capability.ACTIVITY_KEY)
    }
    services[Capability.ACTIVITY_KEY] = ActivityKeyService()
    return services
