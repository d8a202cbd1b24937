"""Aggregated unread badge across all clients."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable
from typing import Protocol

from .events import BadgeUpdated
from .log import get_logger
from .state import NotificationStateStore

_log = get_logger("badge")

UNKNOWN = "?"


class BadgeSource(Protocol):
    id: str
    store: NotificationStateStore
    needs_auth: bool


def badge_text(count: int | None) -> str:
    """Render a count: "?" when unknown, "" for zero, digits otherwise."""
    if count is None:
        return UNKNOWN
    return str(count) if count else ""


class Badge:
    """Holds the current badge and recomputes it one writer at a time."""

    def __init__(self, emit: Callable[[BadgeUpdated], None] | None = None) -> None:
        self._emit = emit
        self._lock = asyncio.Lock()
        self.count: int | None = None
        self.text: str | None = None

    async def recompute(self, clients: Iterable[BadgeSource]) -> int | None:
        """Sum unread records over clients.

        The count is unknown (None) with no clients at all, or when any client
        needs to re-authenticate.
        """
        async with self._lock:
            clients = list(clients)
            if not clients or any(c.needs_auth for c in clients):
                count = None
            else:
                count = sum(c.store.unread_count() for c in clients)
            self._set(count)
            return count

    def _set(self, count: int | None) -> None:
        text = badge_text(count)
        self.count = count
        if text == self.text:
            return
        self.text = text
        _log.info("badge: %r", text)
        if self._emit is not None:
            self._emit(BadgeUpdated(text))
