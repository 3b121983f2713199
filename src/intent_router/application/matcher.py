"""Explicit keyword matching for marker-prefixed messages ("!weather paris")."""

from __future__ import annotations

import re
from typing import List, Optional

from intent_router.config.registry import KeywordRegistry
from intent_router.config.schema import CapabilityBinding


def _keyword_pattern(keyword: str) -> str:
    # Internal whitespace in multi-word keywords matches any run of spaces.
    return r"\s+".join(re.escape(part) for part in keyword.split())


class KeywordMatcher:
    """Resolve the binding an explicit command refers to.

    Longest keyword wins, so "!nfl scores today" picks "nfl scores" over "nfl".
    Reserved bindings match only when the message is exactly the marker plus keyword.
    """

    def __init__(self, registry: KeywordRegistry, marker: str = "!"):
        self._registry = registry
        self._marker = marker

    @property
    def marker(self) -> str:
        return self._marker

    def has_marker(self, text: str) -> bool:
        return text.lstrip().startswith(self._marker)

    def _candidates(self) -> List[CapabilityBinding]:
        return sorted(self._registry.enabled(), key=lambda b: len(b.keyword), reverse=True)

    def match(self, text: str) -> Optional[CapabilityBinding]:
        stripped = text.strip()
        if not stripped.startswith(self._marker):
            return None
        body = stripped[len(self._marker):]
        normalised = " ".join(stripped.split()).lower()
        for binding in self._candidates():
            if binding.is_reserved:
                if normalised == f"{self._marker}{binding.keyword}".lower():
                    return binding
                continue
            if re.match(_keyword_pattern(binding.keyword) + r"(?!\w)", body, re.IGNORECASE):
                return binding
        return None

    def strip_keyword(self, text: str, binding: CapabilityBinding) -> str:
        """Return the message body after the marker and keyword."""
        stripped = text.strip()
        if stripped.startswith(self._marker):
            stripped = stripped[len(self._marker):]
        m = re.match(_keyword_pattern(binding.keyword) + r"(?!\w)", stripped, re.IGNORECASE)
        if not m:
            return stripped.strip()
        return stripped[m.end():].strip()
