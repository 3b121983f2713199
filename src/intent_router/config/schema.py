"""Configuration schema. Defaults point at a local Ollama for the generative backend."""

from __future__ import annotations

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from intent_router.domain import Capability, CollationBudget

from .constants import (
    DEFAULT_AMBIENT_MAX_CHARS,
    DEFAULT_AMBIENT_MAX_DEPTH,
    DEFAULT_CAPABILITY_TIMEOUT_MS,
    DEFAULT_COMMAND_MARKER,
    DEFAULT_DIRECT_MAX_CHARS,
    DEFAULT_DIRECT_MAX_DEPTH,
    DEFAULT_ERROR_NOTICE_MINUTES,
    DEFAULT_IMAGE_DEPTH,
    MODEL_VALIDITY_TTL_S,
    PROCESSING_PLACEHOLDER,
    RESERVED_KEYWORDS,
)

RESERVED_CAPABILITIES = frozenset({Capability.HELP, Capability.ACTIVITY_KEY})


class ParameterMode(str, Enum):
    """Where a capability's parameter should come from when the model routes to it."""
    EXPLICIT = "explicit"  # trust the text after the directive
    IMPLICIT = "implicit"  # derive from the user's original message
    MIXED = "mixed"        # derive, but fall back to the directive text


class CapabilityBinding(BaseModel):
    """Maps one keyword to a capability plus its behavioural flags.

    Bindings are immutable; a configuration reload replaces the whole set.
    """
    model_config = ConfigDict(frozen=True)

    keyword: str = Field(..., description="Keyword without the command marker, e.g. 'weather' or 'nfl scores'.")
    capability: Capability
    timeout_ms: int = Field(DEFAULT_CAPABILITY_TIMEOUT_MS, gt=0, description="Per-call timeout enforced by the gateway.")
    description: str = Field("", description="One-line summary shown in the abilities directory and in help.")
    enabled: bool = True
    allow_empty_content: bool = Field(False, description="Accept '!keyword' with nothing after it.")
    context_filter_enabled: bool = Field(
        False,
        description="Ask the model how much of the history is relevant before the final pass.",
    )
    context_filter_min_depth: Optional[int] = Field(None, ge=0)
    context_filter_max_depth: Optional[int] = Field(None, ge=1)
    parameter_mode: Optional[ParameterMode] = None
    parameter_sources: List[str] = Field(
        default_factory=list,
        description="Inputs the inferencer may read: 'message' and/or 'history'.",
    )
    required_parameters: List[str] = Field(default_factory=list)
    force_final_text_pass: bool = Field(
        False,
        description="Run the raw capability result through the model even for non-data capabilities.",
    )

    @field_validator("keyword")
    @classmethod
    def _normalise_keyword(cls, v: str) -> str:
        v = " ".join(v.split())
        if not v:
            raise ValueError("keyword must not be empty")
        return v

    @model_validator(mode="after")
    def _check_filter_depths(self) -> "CapabilityBinding":
        lo, hi = self.context_filter_min_depth, self.context_filter_max_depth
        if lo is not None and hi is not None and lo > hi:
            raise ValueError(
                f"CapabilityBinding {self.keyword!r}: context_filter_min_depth ({lo}) "
                f"exceeds context_filter_max_depth ({hi})."
            )
        return self

    @property
    def is_reserved(self) -> bool:
        """Standalone-only binding (help, activity key)."""
        return self.capability in RESERVED_CAPABILITIES

    @property
    def requires_parameter(self) -> bool:
        return bool(self.required_parameters)


class ContextConfig(BaseModel):
    """Budgets and filters for context collection."""
    direct_max_depth: int = Field(DEFAULT_DIRECT_MAX_DEPTH, ge=1, description="Reply-chain / thread hops.")
    direct_max_chars: int = Field(DEFAULT_DIRECT_MAX_CHARS, ge=1)
    ambient_max_depth: int = Field(DEFAULT_AMBIENT_MAX_DEPTH, ge=1, description="Channel / DM history entries.")
    ambient_max_chars: int = Field(DEFAULT_AMBIENT_MAX_CHARS, ge=1)
    image_depth: int = Field(DEFAULT_IMAGE_DEPTH, ge=0, description="Nearest reply hops whose images are kept.")
    allow_bot_interactions: bool = Field(False, description="Keep messages from other bots in history.")
    processing_placeholder: str = PROCESSING_PLACEHOLDER

    def direct_budget(self) -> CollationBudget:
        return CollationBudget(max_depth=self.direct_max_depth, max_chars=self.direct_max_chars)

    def ambient_budget(self) -> CollationBudget:
        return CollationBudget(max_depth=self.ambient_max_depth, max_chars=self.ambient_max_chars)


class ModelConfig(BaseModel):
    """Generative backend endpoint (Ollama native API) and models."""
    base_url: str = Field("http://localhost:11434", description="Ollama root URL (no /v1 suffix needed).")
    model: str = Field("llama3.1:8b", description="Model for routing and chat.")
    final_model: Optional[str] = Field(None, description="Model for the final pass over capability data; defaults to model.")
    inference_model: Optional[str] = Field(None, description="Model for parameter extraction; defaults to model.")
    system_prompt: str = Field(
        "You are a friendly, concise assistant in a group chat.",
        description="Persona prepended to every prompt that includes the system prompt.",
    )
    temperature: float = 0.2
    timeout_s: float = Field(120.0, description="HTTP read timeout for one chat request.")
    validity_ttl_s: float = Field(MODEL_VALIDITY_TTL_S, ge=0)


class ServiceConfig(BaseModel):
    """HTTP endpoint of one non-text capability."""
    url: str
    headers: Dict[str, str] = Field(default_factory=dict)


class RouterConfig(BaseModel):
    """Root configuration."""
    command_marker: str = Field(DEFAULT_COMMAND_MARKER, min_length=1)
    bot_display_name: str = Field("Assistant", description="Name the assistant is addressed by in prompts.")
    keywords: List[CapabilityBinding] = Field(default_factory=list)
    model: ModelConfig = Field(default_factory=ModelConfig)
    context: ContextConfig = Field(default_factory=ContextConfig)
    services: Dict[Capability, ServiceConfig] = Field(
        default_factory=dict,
        description="HTTP endpoint per capability (image, search, weather, sports, meme).",
    )
    error_notice_minutes: float = Field(DEFAULT_ERROR_NOTICE_MINUTES, ge=0)

    @model_validator(mode="after")
    def _check_keywords(self) -> "RouterConfig":
        seen: Dict[str, str] = {}
        for binding in self.keywords:
            key = binding.keyword.lower()
            if key in RESERVED_KEYWORDS and not binding.is_reserved:
                raise ValueError(
                    f"Keyword {binding.keyword!r} is reserved and must be bound to "
                    f"'help' or 'activity_key', not {binding.capability.value!r}."
                )
            if not binding.enabled:
                continue
            if key in seen:
                raise ValueError(
                    f"Duplicate enabled keyword {binding.keyword!r} "
                    f"(already bound to {seen[key]!r})."
                )
            seen[key] = binding.capability.value
        return self


DEFAULT_CONFIG = RouterConfig(
    keywords=[
        CapabilityBinding(
            keyword="chat",
            capability=Capability.TEXT,
            description="Talk with the assistant.",
        ),
        CapabilityBinding(
            keyword="imagine",
            capability=Capability.IMAGE,
            timeout_ms=600_000,
            description="Generate an image from a description.",
            parameter_mode=ParameterMode.IMPLICIT,
            parameter_sources=["message", "history"],
            required_parameters=["prompt"],
        ),
        CapabilityBinding(
            keyword="search",
            capability=Capability.SEARCH,
            timeout_ms=60_000,
            description="Search the web for current information.",
            parameter_mode=ParameterMode.MIXED,
            parameter_sources=["message"],
            required_parameters=["query"],
            context_filter_enabled=True,
            context_filter_min_depth=0,
            context_filter_max_depth=6,
        ),
        CapabilityBinding(
            keyword="weather",
            capability=Capability.WEATHER,
            timeout_ms=30_000,
            description="Current weather and forecast for a location.",
            parameter_mode=ParameterMode.IMPLICIT,
            parameter_sources=["message"],
            required_parameters=["location"],
        ),
        CapabilityBinding(
            keyword="nfl scores",
            capability=Capability.SPORTS,
            timeout_ms=30_000,
            description="Latest NFL scores.",
            allow_empty_content=True,
        ),
        CapabilityBinding(
            keyword="nfl news",
            capability=Capability.SPORTS,
            timeout_ms=30_000,
            description="Latest NFL news.",
            allow_empty_content=True,
        ),
        CapabilityBinding(
            keyword="meme",
            capability=Capability.MEME,
            timeout_ms=60_000,
            description="Make a meme: template | top text | bottom text.",
            parameter_mode=ParameterMode.IMPLICIT,
            parameter_sources=["message", "history"],
            required_parameters=["template", "top", "bottom"],
        ),
        CapabilityBinding(
            keyword="help",
            capability=Capability.HELP,
            description="List what the assistant can do.",
            allow_empty_content=True,
        ),
        CapabilityBinding(
            keyword="activity_key",
            capability=Capability.ACTIVITY_KEY,
            timeout_ms=10_000,
            description="Issue a short-lived activity key.",
            allow_empty_content=True,
        ),
    ],
)
