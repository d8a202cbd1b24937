"""Registry of provider clients."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from typing import Protocol

from .errors import NotFoundError
from .log import get_logger

_log = get_logger("registry")


class RoutableClient(Protocol):
    id: str

    def owns(self, notification_id: str) -> bool: ...


class ClientRegistry:
    """Holds the active clients and routes notification IDs to them.

    on_change runs after every add/remove so the owner can recompute the
    badge: a removed client takes its unread count with it.
    """

    def __init__(self, on_change: Callable[[], None] | None = None) -> None:
        self._clients: dict[str, RoutableClient] = {}
        self._on_change = on_change

    def __iter__(self) -> Iterator[RoutableClient]:
        return iter(list(self._clients.values()))

    def __len__(self) -> int:
        return len(self._clients)

    def __contains__(self, client_id: object) -> bool:
        return client_id in self._clients

    def add_client(self, client: RoutableClient) -> None:
        if client.id in self._clients:
            raise ValueError(f"client {client.id} already registered")
        self._clients[client.id] = client
        _log.info("added client %s", client.id)
        self._changed()

    def remove_client(self, client: RoutableClient | str) -> RoutableClient:
        client_id = client if isinstance(client, str) else client.id
        removed = self._clients.pop(client_id, None)
        if removed is None:
            raise NotFoundError(f"no client {client_id}")
        _log.info("removed client %s", client_id)
        self._changed()
        return removed

    def get(self, client_id: str) -> RoutableClient:
        try:
            return self._clients[client_id]
        except KeyError:
            raise NotFoundError(f"no client {client_id}") from None

    def route(self, notification_id: str) -> RoutableClient:
        """Find the client that owns a notification ID."""
        for client in self._clients.values():
            if client.owns(notification_id):
                return client
        raise NotFoundError(f"no client owns notification {notification_id}")

    def _changed(self) -> None:
        if self._on_change is not None:
            self._on_change()
