"""Exception types shared across tattler."""

from __future__ import annotations


class TattlerError(Exception):
    """Base class for tattler errors."""


class AuthRequired(TattlerError):
    """The credential is missing or was rejected; the user has to log in again."""


class ScopeInsufficient(AuthRequired):
    """The credential works but lacks a required OAuth scope."""

    def __init__(self, required: str, granted: list[str] | None = None) -> None:
        self.required = required
        self.granted = granted or []
        super().__init__(f"token lacks required scope '{required}' (granted: {self.granted})")


class RemoteError(TattlerError):
    """A request to the provider failed.

    status is the HTTP status, or None when the request never got a response
    (DNS failure, connection reset, timeout).
    """

    def __init__(self, status: int | None, message: str = "") -> None:
        self.status = status
        if not message:
            message = f"HTTP {status}" if status is not None else "request failed"
        super().__init__(message)


class OfflineDeferral(TattlerError):
    """A poll was deferred until connectivity returns. Not a failure."""


class MalformedResponse(TattlerError):
    """Part of a response could not be parsed."""


class NotFoundError(TattlerError, LookupError):
    """No registered client owns the given notification or client ID."""
