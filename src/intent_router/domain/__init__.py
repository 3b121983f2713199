"""Domain layer: capabilities, context entries and results. No I/O."""

from .errors import (
    CapabilityBusyError,
    CapabilityTimeoutError,
    CapabilityUnavailableError,
    MessageNotFoundError,
    RequestCancelledError,
    RouterError,
)
from .models import (
    EXTERNAL_DATA_CAPABILITIES,
    Capability,
    CapabilityResult,
    CollationBudget,
    ContextMessage,
    ContextSource,
    GenerationResult,
    Outcome,
    RawMessage,
    Role,
)

__all__ = [
    "Capability",
    "CapabilityBusyError",
    "CapabilityResult",
    "CapabilityTimeoutError",
    "CapabilityUnavailableError",
    "CollationBudget",
    "ContextMessage",
    "ContextSource",
    "EXTERNAL_DATA_CAPABILITIES",
    "GenerationResult",
    "MessageNotFoundError",
    "Outcome",
    "RawMessage",
    "RequestCancelledError",
    "Role",
    "RouterError",
]
