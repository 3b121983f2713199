"""Parse the routing directive from the first line of a generative reply."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Optional, Sequence

from intent_router.config.schema import CapabilityBinding

logger = logging.getLogger(__name__)

_BULLET_RE = re.compile(r"^[-–—*•]\s*")
_PUNCT_RE = re.compile(r"[\"“”‘’'`.,!?;:()\[\]{}]")
_SEPARATOR_RE = re.compile(r"^[:|;,=\-–—>]+\s*")


@dataclass(frozen=True)
class RouteParseResult:
    """Outcome of parsing one generative reply."""
    matched: bool
    binding: Optional[CapabilityBinding] = None
    inferred_parameter: Optional[str] = None
    commentary: Optional[str] = None

    @classmethod
    def no_match(cls) -> "RouteParseResult":
        return cls(matched=False)


def _first_line(text: str) -> tuple[Optional[str], str]:
    lines = text.splitlines()
    for i, line in enumerate(lines):
        if line.strip():
            return line.strip(), "\n".join(lines[i + 1:]).strip()
    return None, ""


def parse_directive(
    reply: str,
    routable: Sequence[CapabilityBinding],
    marker: str = "!",
) -> RouteParseResult:
    """Match the first non-empty line of ``reply`` against ``routable`` keywords.

    The line may carry the command marker or not ("!weather austin" and
    "WEATHER austin tx" both match ``weather``). Text after the keyword on the
    same line becomes ``inferred_parameter``; lines after it become
    ``commentary``. Reserved bindings are never matched. Longest keyword wins.
    """
    if not reply:
        return RouteParseResult.no_match()
    line, rest = _first_line(reply)
    if not line:
        return RouteParseResult.no_match()

    line = _BULLET_RE.sub("", line).strip()
    if line.startswith(marker):
        line = line[len(marker):].strip()
    candidates = sorted(
        (b for b in routable if b.enabled and not b.is_reserved),
        key=lambda b: len(b.keyword),
        reverse=True,
    )
    commentary = rest or None

    cleaned = " ".join(_PUNCT_RE.sub("", line).lower().split())
    for b in candidates:
        if cleaned == b.keyword.lower():
            logger.info("Directive matched %r exactly", b.keyword)
            return RouteParseResult(matched=True, binding=b, commentary=commentary)

    for b in candidates:
        pattern = r"\s+".join(re.escape(p) for p in b.keyword.split())
        m = re.match(pattern + r"(?!\w)(.*)$", line, re.IGNORECASE)
        if not m:
            continue
        remainder = _SEPARATOR_RE.sub("", m.group(1).strip()).strip()
        logger.info("Directive matched %r with inline parameter %r", b.keyword, remainder)
        return RouteParseResult(
            matched=True,
            binding=b,
            inferred_parameter=remainder or None,
            commentary=commentary,
        )
    return RouteParseResult.no_match()
