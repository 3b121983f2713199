"""Domain models: capabilities, context messages, budgets and results. Pure data, no I/O."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple


class Capability(str, Enum):
    """Backend abilities a keyword can be bound to."""
    TEXT = "text"
    IMAGE = "image"
    SEARCH = "search"
    WEATHER = "weather"
    SPORTS = "sports"
    MEME = "meme"
    HELP = "help"
    ACTIVITY_KEY = "activity_key"


# Capabilities whose raw output is data for the model to talk about, not something
# to show the user as-is.
EXTERNAL_DATA_CAPABILITIES = frozenset({Capability.SEARCH, Capability.WEATHER, Capability.SPORTS})


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class ContextSource(str, Enum):
    """Where a context entry came from."""
    TRIGGER = "trigger"
    REPLY = "reply"
    CHANNEL = "channel"
    THREAD = "thread"
    DM = "dm"


@dataclass(frozen=True)
class ContextMessage:
    """One turn of prior conversation admitted to a prompt.

    ``origin_id`` is the platform message id and the only key used for
    de-duplication. Entries without one are never considered duplicates.
    """
    role: Role
    content: str
    source: ContextSource
    origin_id: Optional[str] = None
    created_at_ms: Optional[int] = None
    has_name_prefix: bool = False
    images: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not self.content or not self.content.strip():
            raise ValueError("ContextMessage content must not be empty")


@dataclass(frozen=True)
class CollationBudget:
    """Depth and character allowance for one context source (or the merged total)."""
    max_depth: int
    max_chars: int


@dataclass(frozen=True)
class RawMessage:
    """A message as the chat platform hands it over, before any context processing."""
    id: str
    content: str
    author_id: str
    author_name: str
    display_name: Optional[str] = None
    is_bot: bool = False
    created_at_ms: Optional[int] = None
    reply_to_id: Optional[str] = None
    images: Tuple[str, ...] = ()

    @property
    def label(self) -> str:
        """Name used for attribution: server display name, falling back to the username."""
        return self.display_name or self.author_name


class Outcome(str, Enum):
    """How a capability call ended. Busy, timeout and failure stay distinct end-to-end."""
    OK = "ok"
    BUSY = "busy"
    TIMEOUT = "timeout"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class CapabilityResult:
    """Tagged result handed back to the caller for rendering."""
    capability: Capability
    success: bool
    text: Optional[str] = None
    images: Tuple[str, ...] = ()
    error: Optional[str] = None
    outcome: Outcome = Outcome.OK
    route: str = "ambient"  # "explicit", "ambient", "directive", "heuristic" or "builtin"
    commentary: Optional[str] = None
    notify: bool = True  # False when an error notice was already shown recently

    @classmethod
    def failure(
        cls,
        capability: Capability,
        error: str,
        outcome: Outcome = Outcome.FAILED,
        route: str = "ambient",
    ) -> "CapabilityResult":
        return cls(capability=capability, success=False, error=error, outcome=outcome, route=route)


@dataclass
class GenerationResult:
    """Result of one generative-backend call."""
    success: bool
    text: Optional[str] = None
    error: Optional[str] = None
    model: Optional[str] = None
    images: Tuple[str, ...] = field(default_factory=tuple)
