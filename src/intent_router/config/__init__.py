"""Configuration: schema, loading from env/file, keyword registry and shared constants."""

from .schema import (
    DEFAULT_CONFIG,
    CapabilityBinding,
    ContextConfig,
    ModelConfig,
    ParameterMode,
    RouterConfig,
    ServiceConfig,
)
from .loader import load_config, parse_config
from .registry import KeywordRegistry
from .constants import (
    DEFAULT_COMMAND_MARKER,
    PROCESSING_PLACEHOLDER,
    RESERVED_KEYWORDS,
)

get_config = load_config  # alias

__all__ = [
    "DEFAULT_CONFIG", "CapabilityBinding", "ContextConfig", "ModelConfig",
    "ParameterMode", "RouterConfig", "ServiceConfig",
    "load_config", "parse_config", "get_config", "KeywordRegistry",
    "DEFAULT_COMMAND_MARKER", "PROCESSING_PLACEHOLDER", "RESERVED_KEYWORDS",
]
