"""Bearer credential acquisition.

The engine only needs "give me a usable token or tell me to re-authenticate".
Where tokens come from (the state database, an OAuth exchange at login time)
stays behind this seam.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Protocol

from .errors import AuthRequired
from .log import get_logger

_log = get_logger("credentials")


class Authorizer(Protocol):
    async def authorize(self, token: str) -> bool: ...

    def clear_token(self) -> None: ...


class CredentialGate(Protocol):
    """Supplies a valid bearer credential."""

    async def acquire(self) -> str:
        """Return a usable token.

        Raises AuthRequired (or ScopeInsufficient) when the user has to log in.
        """
        ...

    def invalidate(self) -> None:
        """Forget the current credential after the provider rejected it."""
        ...


class TokenGate:
    """Hands out a stored token, verifying it with the provider once.

    After invalidate() the token is considered revoked until a fresh one is
    stored (by `tattler login`); acquire() keeps failing instead of
    hammering the provider with a dead token.
    """

    def __init__(self, client: Authorizer, load_token: Callable[[], str | None]) -> None:
        self._client = client
        self._load_token = load_token
        self._verified: str | None = None
        self._rejected: str | None = None

    async def acquire(self) -> str:
        if self._verified is not None:
            return self._verified

        token = self._load_token()
        if not token:
            raise AuthRequired("no credential stored")
        if token == self._rejected:
            raise AuthRequired("stored credential was rejected; log in again")

        try:
            await self._client.authorize(token)
        except AuthRequired:
            self._rejected = token
            raise
        self._verified = token
        _log.info("credential verified")
        return token

    def invalidate(self) -> None:
        if self._verified is not None:
            self._rejected = self._verified
        self._verified = None
        self._client.clear_token()
