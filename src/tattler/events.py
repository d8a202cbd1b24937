"""Typed commands (inbound) and events (outbound).

Commands come from the CLI (or any other front end) and are dispatched by
CommandRouter. Events flow out of the poller through an EventBus to
whatever renders them: the badge file, desktop notifications.
"""

from __future__ import annotations

import asyncio
import typing
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any

from .log import get_logger

_log = get_logger("events")


# --- Commands ---


@dataclass(frozen=True)
class Login:
    provider_type: str = "github"
    token: str | None = None
    code: str | None = None  # OAuth code to exchange instead of a token
    state: str = ""


@dataclass(frozen=True)
class Logout:
    client_id: str


@dataclass(frozen=True)
class MarkAllRead:
    pass


@dataclass(frozen=True)
class MarkNotificationRead:
    notification_id: str


@dataclass(frozen=True)
class UnsubscribeNotification:
    notification_id: str


@dataclass(frozen=True)
class IgnoreNotification:
    notification_id: str


@dataclass(frozen=True)
class OpenNotification:
    notification_id: str


@dataclass(frozen=True)
class OpenNotifications:
    """Open the configured footer destination."""


Command = (
    Login
    | Logout
    | MarkAllRead
    | MarkNotificationRead
    | UnsubscribeNotification
    | IgnoreNotification
    | OpenNotification
    | OpenNotifications
)

COMMAND_TYPES: tuple[type, ...] = typing.get_args(Command)


# --- Events ---


@dataclass(frozen=True)
class BadgeUpdated:
    text: str  # digits, "?" when unknown, "" for zero


@dataclass(frozen=True)
class ShowNotification:
    notification_id: str
    title: str
    url: str


@dataclass(frozen=True)
class AllNotificationsRead:
    client_id: str


@dataclass(frozen=True)
class NotificationRead:
    notification_id: str


Event = BadgeUpdated | ShowNotification | AllNotificationsRead | NotificationRead


class EventBus:
    """Synchronous fan-out of events to subscribers.

    A failing subscriber is logged and does not stop delivery to the others.
    """

    def __init__(self) -> None:
        self._subscribers: list[Callable[[Event], None]] = []

    def subscribe(self, handler: Callable[[Event], None]) -> Callable[[], None]:
        """Add a subscriber. Returns a function that removes it again."""
        self._subscribers.append(handler)

        def unsubscribe() -> None:
            if handler in self._subscribers:
                self._subscribers.remove(handler)

        return unsubscribe

    def emit(self, event: Event) -> None:
        for handler in list(self._subscribers):
            try:
                handler(event)
            except Exception:
                _log.error("subscriber %r failed on %r", handler, event, exc_info=True)


Handler = Callable[[Any], Awaitable[Any]]


class CommandRouter:
    """Routes each command type to exactly one handler.

    Every type in COMMAND_TYPES must have a handler; a missing one is a
    TypeError at construction rather than a command that silently does
    nothing.
    """

    def __init__(self, handlers: Mapping[type, Handler]) -> None:
        missing = [t.__name__ for t in COMMAND_TYPES if t not in handlers]
        if missing:
            raise TypeError(f"no handler for command(s): {', '.join(missing)}")
        unknown = [t.__name__ for t in handlers if t not in COMMAND_TYPES]
        if unknown:
            raise TypeError(f"handlers registered for unknown command(s): {', '.join(unknown)}")
        self._handlers = dict(handlers)
        self._tasks: set[asyncio.Task] = set()

    async def dispatch(self, command: Command) -> Any:
        """Run the command's handler and return its result."""
        handler = self._handlers.get(type(command))
        if handler is None:
            raise TypeError(f"not a command: {command!r}")
        _log.info("dispatch %r", command)
        return await handler(command)

    def submit(self, command: Command) -> asyncio.Task:
        """Fire-and-forget dispatch. Failures are logged, not raised."""
        task = asyncio.ensure_future(self.dispatch(command))
        self._tasks.add(task)
        task.add_done_callback(self._finished)
        return task

    def _finished(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            _log.error("command failed: %s", exc, exc_info=exc)
