"""Load config from ROUTER_CONFIG_PATH or return default.

``load_config()`` is memoised with ``functools.lru_cache`` so the file is read
and parsed at most once per process.  Call ``load_config.cache_clear()`` to
force a re-read (useful in tests and when ``ROUTER_CONFIG_PATH`` changes at
runtime).
"""

from __future__ import annotations

import functools
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

from .schema import DEFAULT_CONFIG, RouterConfig

logger = logging.getLogger(__name__)

# Old keyword-entry keys and the field they became.
_LEGACY_BINDING_KEYS = {
    "api": "capability",
    "allowEmptyContent": "allow_empty_content",
    "contextFilterEnabled": "context_filter_enabled",
    "contextFilterMinDepth": "context_filter_min_depth",
    "contextFilterMaxDepth": "context_filter_max_depth",
    "parameterMode": "parameter_mode",
    "parameterSources": "parameter_sources",
    "requiredParameters": "required_parameters",
    "finalOllamaPass": "force_final_text_pass",
}


class _Env(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="ROUTER_", extra="ignore")
    config_path: Optional[str] = None


_env: Optional[_Env] = None


def _get_env() -> _Env:
    global _env
    if _env is None:
        _env = _Env()
    return _env


def _migrate_binding(entry: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(entry)
    for old, new in _LEGACY_BINDING_KEYS.items():
        if old in out and new not in out:
            out[new] = out.pop(old)
    # Legacy timeouts were whole seconds
    if "timeout" in out and "timeout_ms" not in out:
        out["timeout_ms"] = int(float(out.pop("timeout")) * 1000)
    # Legacy "ollama" capability name for text generation
    if out.get("capability") == "ollama":
        out["capability"] = "text"
    return out


def parse_config(data: Dict[str, Any]) -> RouterConfig:
    """Validate a raw config mapping, accepting legacy keyword-entry keys."""
    data = dict(data)
    if "keywords" in data:
        data["keywords"] = [_migrate_binding(k) for k in data["keywords"]]
    if "commandMarker" in data and "command_marker" not in data:
        data["command_marker"] = data.pop("commandMarker")
    return RouterConfig.model_validate(data)


@functools.lru_cache(maxsize=1)
def load_config() -> RouterConfig:
    """Load config from ROUTER_CONFIG_PATH if set and valid; else return DEFAULT_CONFIG.

    Result is cached for the lifetime of the process.  Call
    ``load_config.cache_clear()`` to force a reload.
    """
    path = _get_env().config_path
    if not path or not path.strip():
        return DEFAULT_CONFIG
    p = Path(path).expanduser().resolve()
    if not p.is_file():
        logger.warning("Config file %s not found; using defaults", p)
        return DEFAULT_CONFIG
    raw = p.read_text(encoding="utf-8")
    return parse_config(json.loads(raw))
