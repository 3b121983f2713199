"""Lexical intent heuristics for ambient messages the model did not route.

Classifiers return ``ImageRequest``, ``MemeRequest`` or ``None``. The pattern
tables are module-level data so they can be tested and tuned on their own.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional, Pattern, Sequence, Tuple, Union

from intent_router.domain import ContextMessage, ContextSource, Role

# ---------------------------------------------------------------------------
# Pattern tables
# ---------------------------------------------------------------------------

_POLITE = r"(?:(?:can|could|would|will) you\s+)?(?:please\s+)?"

MEME_PATTERNS: Tuple[Pattern[str], ...] = (
    re.compile(r"\b(?:make|create|generate|do|give)\s+(?:me\s+|us\s+)?(?:a\s+|an\s+|another\s+)?meme\b", re.I),
    re.compile(r"^" + _POLITE + r"meme(?:ify)?\s+(?:this|that|it|about|of)\b", re.I),
    re.compile(r"\bturn\s+(?:this|that|it)\s+into\s+a\s+meme\b", re.I),
)

IMAGE_PATTERNS: Tuple[Pattern[str], ...] = (
    re.compile(r"^" + _POLITE + r"(?:imagine|draw|paint|sketch|illustrate|render)\b", re.I),
    re.compile(
        r"\b(?:make|create|generate|produce|give)\s+(?:me\s+|us\s+)?(?:a\s+|an\s+)?"
        r"(?:image|picture|pic|drawing|painting|illustration|render(?:ing)?)\b",
        re.I,
    ),
    re.compile(r"\b(?:show me|i want|i'd like)\s+(?:a\s+|an\s+)?(?:image|picture|drawing)\s+of\b", re.I),
)

# Leading request phrasing removed before using the message as a prompt.
# Applied repeatedly until nothing more matches.
REQUEST_PHRASING: Tuple[Pattern[str], ...] = (
    re.compile(r"^(?:hey|hi|yo|ok(?:ay)?|so)[,!\s]+", re.I),
    re.compile(r"^(?:can|could|would|will)\s+you\s+(?:please\s+)?", re.I),
    re.compile(r"^please\s+", re.I),
    re.compile(
        r"^(?:imagine|draw|paint|sketch|illustrate|render|make|create|generate|produce|give|show)"
        r"(?:\s+(?:me|us))?(?:\s+|$)",
        re.I,
    ),
    re.compile(
        r"^(?:(?:a|an|another)\s+)?(?:meme|image|picture|pic|drawing|painting|illustration|rendering)"
        r"(?:\s+(?:of|about|for|showing|with|where))?(?:\s+|$)",
        re.I,
    ),
    re.compile(r"^(?:turn|put)\s+", re.I),
)

# References that only point at something else; never usable as a prompt.
GENERIC_REFERENCES = frozenset({
    "this", "that", "it", "this one", "that one", "these", "those", "them",
    "the above", "above", "same", "the same", "something", "anything",
    "one", "me one", "another", "another one", "again",
    "this into a meme", "that into a meme", "it into a meme",
})

_NAME_PREFIX_RE = re.compile(r"^([^:\n]{1,64}):\s+(.+)$", re.DOTALL)
_TRAILING_PUNCT_RE = re.compile(r"[\s?.!,;:]+$")


# ---------------------------------------------------------------------------
# Variants
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ImageRequest:
    """The message asks for an image. ``prompt`` is what the message itself describes, if anything."""
    prompt: Optional[str] = None


@dataclass(frozen=True)
class MemeRequest:
    """The message asks for a meme."""
    prompt: Optional[str] = None


IntentRequest = Union[ImageRequest, MemeRequest]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def strip_request_phrasing(text: str) -> str:
    """Remove leading request phrasing: "can you imagine a red fox" -> "a red fox"."""
    out = text.strip()
    changed = True
    while changed and out:
        changed = False
        for pattern in REQUEST_PHRASING:
            stripped = pattern.sub("", out, count=1).strip()
            if stripped != out:
                out = stripped
                changed = True
    return _TRAILING_PUNCT_RE.sub("", out).strip()


def is_generic_reference(text: Optional[str]) -> bool:
    """True for empty text or a bare placeholder like "this" / "that one"."""
    if not text:
        return True
    cleaned = " ".join(_TRAILING_PUNCT_RE.sub("", text.strip()).lower().split())
    if not cleaned:
        return True
    for lead in ("about ", "of ", "for "):
        if cleaned.startswith(lead):
            cleaned = cleaned[len(lead):]
    return cleaned in GENERIC_REFERENCES


def _concrete_prompt(text: str) -> Optional[str]:
    prompt = strip_request_phrasing(text)
    return None if is_generic_reference(prompt) else prompt


def classify_meme(text: str) -> Optional[MemeRequest]:
    if any(p.search(text) for p in MEME_PATTERNS):
        return MemeRequest(prompt=_concrete_prompt(text))
    return None


def classify_image(text: str) -> Optional[ImageRequest]:
    if any(p.search(text) for p in IMAGE_PATTERNS):
        return ImageRequest(prompt=_concrete_prompt(text))
    return None


# Meme first: "make a meme" would otherwise look like a generic "make a ..." image ask.
CLASSIFIERS = (classify_meme, classify_image)


def classify_request(text: str) -> Optional[IntentRequest]:
    """Tag ``text`` as an image or meme request, or ``None``."""
    for classifier in CLASSIFIERS:
        result = classifier(text)
        if result is not None:
            return result
    return None


def is_meta_request(text: str) -> bool:
    """A request that only points at other turns ("create a meme about this")."""
    request = classify_request(text)
    return request is not None and request.prompt is None


def _entry_text(entry: ContextMessage) -> str:
    if entry.has_name_prefix:
        m = _NAME_PREFIX_RE.match(entry.content)
        if m:
            return m.group(2).strip()
    return entry.content.strip()


def derive_prompt_from_context(
    history: Sequence[ContextMessage],
    marker: str = "!",
) -> Optional[str]:
    """Most recent concrete turn in ``history`` usable as a prompt.

    User turns are scanned newest-first, then assistant turns. The trigger,
    explicit commands, meta requests and generic references are skipped.
    """
    for role in (Role.USER, Role.ASSISTANT):
        for entry in reversed(history):
            if entry.role is not role or entry.source is ContextSource.TRIGGER:
                continue
            text = _entry_text(entry)
            if not text or text.startswith(marker):
                continue
            if is_meta_request(text) or is_generic_reference(text):
                continue
            request = classify_request(text)
            return request.prompt if request is not None else text
    return None


def derive_prompt(
    request: IntentRequest,
    history: Sequence[ContextMessage],
    marker: str = "!",
) -> Optional[str]:
    """The request's own prompt if concrete, else the latest concrete turn from history."""
    if request.prompt and not is_generic_reference(request.prompt):
        return request.prompt
    return derive_prompt_from_context(history, marker)
