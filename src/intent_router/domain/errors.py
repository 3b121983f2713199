"""Domain and application errors."""

from __future__ import annotations

from typing import Optional


class RouterError(Exception):
    """Base for router errors. Carries the capability the failure belongs to, if any."""

    def __init__(self, message: str, capability: Optional[str] = None):
        super().__init__(message)
        self.capability = capability


class CapabilityBusyError(RouterError):
    """The capability already has an execution in flight; the request was rejected, not queued."""
    pass


class CapabilityTimeoutError(RouterError):
    """The capability did not finish within its configured timeout."""
    pass


class RequestCancelledError(RouterError):
    """The caller's cancellation signal fired while the capability was running."""
    pass


class CapabilityUnavailableError(RouterError):
    """No service is registered for the capability, or it is disabled."""
    pass


class MessageNotFoundError(RouterError):
    """A referenced message could not be fetched (deleted or inaccessible)."""
    pass
