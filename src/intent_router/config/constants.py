"""Named constants for values that appear in multiple places or need explanation.

Each constant has a comment explaining what depends on it, so future maintainers
can decide whether a change is safe without grepping for side-effects.
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Keywords
# ---------------------------------------------------------------------------

# Prefix that turns a message into an explicit command ("!weather paris").
# Messages without it go through the generative router instead.
DEFAULT_COMMAND_MARKER: str = "!"

# Keywords that only match when they are the whole message. They are never
# emitted by the model as a directive and never accept trailing arguments.
RESERVED_KEYWORDS: frozenset = frozenset({"help", "activity_key"})

# ---------------------------------------------------------------------------
# Context budgets
# ---------------------------------------------------------------------------

# Reply-chain / thread budget. Replies are what the user pointed at, so they get
# priority inside the collated total.
DEFAULT_DIRECT_MAX_DEPTH: int = 10
DEFAULT_DIRECT_MAX_CHARS: int = 6_000

# Channel history budget. Larger than the direct budget but lower priority.
DEFAULT_AMBIENT_MAX_DEPTH: int = 15
DEFAULT_AMBIENT_MAX_CHARS: int = 8_000

# Only the nearest reply hops carry their images into the prompt; older images
# are rarely relevant and vision prompts get expensive quickly.
DEFAULT_IMAGE_DEPTH: int = 2

# Content of the transient message the assistant posts while it works. It is
# never part of the conversation and must be skipped when reading history.
PROCESSING_PLACEHOLDER: str = "⏳ Processing"

# Stand-in text for a reply-chain message that carries images but no text.
IMAGE_ONLY_CONTENT: str = "[image]"

# ---------------------------------------------------------------------------
# Timeouts
# ---------------------------------------------------------------------------

# Fallback per-capability timeout when a binding does not set one.
DEFAULT_CAPABILITY_TIMEOUT_MS: int = 300_000

# HTTP timeout for model-list queries (Ollama /api/tags). Kept short so a dead
# backend is detected quickly.
MODEL_DISCOVERY_TIMEOUT_S: float = 10.0

# How long a positive "model is available" answer is trusted before /api/tags
# is queried again. The cache is also dropped whenever the endpoint changes.
MODEL_VALIDITY_TTL_S: float = 300.0

# Lifetime of an issued activity key. Long enough to paste it into a client,
# short enough that a leaked key is useless soon after.
ACTIVITY_KEY_TTL_S: float = 600.0

# ---------------------------------------------------------------------------
# Error notices
# ---------------------------------------------------------------------------

# Minimum minutes between two user-facing error notices. Failures inside the
# window are still returned, but flagged so the caller can stay quiet.
DEFAULT_ERROR_NOTICE_MINUTES: float = 5.0
