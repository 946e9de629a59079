"""Exception taxonomy for the remote sync layer and the allocation engine."""

from __future__ import annotations

from typing import Optional


class SyncError(Exception):
    """Base class for failures that abort a whole sync run."""


class ConfigurationError(SyncError):
    """Server URL or per-install secret is missing."""


class TransportError(SyncError):
    """A single HTTP request failed."""


class Unauthorized(TransportError):
    """The server answered 401."""

    def __init__(self, message: str = "Authentication failed") -> None:
        super().__init__(message)
        self.status = 401


class Forbidden(TransportError):
    """The server answered 403. Never retried."""

    def __init__(self, message: str = "Access denied (IP not authorised or wrong secret)") -> None:
        super().__init__(message)
        self.status = 403


class HttpError(TransportError):
    """Any other non-2xx answer."""

    def __init__(self, status: int, body: str = "", message: Optional[str] = None) -> None:
        self.status = status
        self.body = body
        if message is None:
            message = f"HTTP {status}: {body}" if body else f"HTTP {status}"
        super().__init__(message)


class ConnectionFailed(TransportError):
    """Transport-level failure before any answer was received."""


class RequestTimeout(TransportError):
    """The request exceeded its deadline and was cancelled."""


class MalformedResponse(TransportError):
    """A 2xx answer whose body is not valid JSON."""


class AuthenticationError(SyncError):
    """Login returned no token, or the retry after re-login was refused again."""


class MalformedSnapshot(SyncError):
    """The snapshot lacks the top-level ``timestamp`` marker."""


class AllocationConfigError(ValueError):
    """Seat configuration rejected before allocation."""
