"""The poller: clients, engines, badge and command handling in one place.

`tattler run` keeps a Poller alive; the one-shot CLI commands build one,
dispatch a single command through its router and close it.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

from . import db
from .badge import Badge
from .config import Config, ensure_config_exists
from .connectivity import ConnectivityMonitor
from .credentials import TokenGate
from .engine import ReconciliationEngine
from .errors import NotFoundError, TattlerError
from .events import (
    AllNotificationsRead,
    BadgeUpdated,
    CommandRouter,
    Event,
    EventBus,
    IgnoreNotification,
    Login,
    Logout,
    MarkAllRead,
    MarkNotificationRead,
    NotificationRead,
    OpenNotification,
    OpenNotifications,
    ShowNotification,
    UnsubscribeNotification,
)
from .github import PROVIDER_TYPE, GitHubClient
from .log import get_logger
from .notifier import DesktopNotifier, Notifier, open_url
from .ratelimit import RateLimiter
from .registry import ClientRegistry
from .scheduler import Scheduler
from .state import SyncCursor

_log = get_logger("poller")


class Poller:
    def __init__(
        self,
        config: Config,
        db_path: Path | None = None,
        notifier: Notifier | None = None,
        connectivity: ConnectivityMonitor | None = None,
        scheduler: Scheduler | None = None,
    ) -> None:
        self.config = config
        self.db_path = db_path
        self.notifier = notifier or DesktopNotifier()
        self.connectivity = connectivity or ConnectivityMonitor(
            host=_host(config.github.api_url), interval=config.poll.connectivity_interval
        )
        self.scheduler = scheduler or Scheduler()
        self.bus = EventBus()
        self.badge = Badge(self.bus.emit)
        self.registry = ClientRegistry(on_change=self._on_registry_change)
        self.engines: dict[str, ReconciliationEngine] = {}
        self.router = CommandRouter(
            {
                Login: self.login,
                Logout: self.logout,
                MarkAllRead: self.mark_all_read,
                MarkNotificationRead: self.mark_notification_read,
                UnsubscribeNotification: self.unsubscribe_notification,
                IgnoreNotification: self.ignore_notification,
                OpenNotification: self.open_notification,
                OpenNotifications: self.open_notifications,
            }
        )
        self._tasks: set[asyncio.Task] = set()
        self._watch_task: asyncio.Task | None = None
        self._stop = asyncio.Event()

    # --- Lifecycle ---

    def load_clients(self) -> int:
        """Register every stored client. Returns how many there are."""
        with db.connect(self.db_path) as conn:
            rows = db.get_clients(conn)
            cursors = {row.id: db.load_cursor(conn, row.id) for row in rows}
        for row in rows:
            if row.provider_type != PROVIDER_TYPE:
                _log.warning("skipping %s: unknown provider type %s", row.id, row.provider_type)
                continue
            self._register(self._make_client(row.id), cursors[row.id])
        return len(self.registry)

    def subscribe_outputs(self, notifications: bool = True) -> None:
        """Write badge updates to the badge file and, optionally, show new
        notifications on the desktop."""
        self.bus.subscribe(self._on_badge)
        if notifications and self.config.notifications.enabled:
            self.bus.subscribe(self._on_show)

    async def start(self) -> None:
        """Subscribe outputs and start polling every stored client."""
        self.subscribe_outputs()
        if not self.load_clients():
            _log.info("no clients, log in with `tattler login`")
            await self.badge.recompute(self.registry)
        for client in self.registry:
            self._poll_soon(client.id)
        self._watch_task = asyncio.ensure_future(self.connectivity.watch())

    async def run_forever(self) -> None:
        await self.start()
        try:
            await self._stop.wait()
        finally:
            await self.close()

    def stop(self) -> None:
        self._stop.set()

    def request_mark_all_read(self) -> asyncio.Task:
        """Mark everything read without waiting (the SIGUSR1 handler)."""
        return self.router.submit(MarkAllRead())

    async def close(self) -> None:
        self.scheduler.clear_all()
        if self._watch_task is not None:
            self._watch_task.cancel()
        await self.scheduler.drain()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        for client in self.registry:
            await client.close()

    async def sync_once(self) -> None:
        """Poll every client once, concurrently. Used by one-shot commands."""
        await asyncio.gather(*(engine.check() for engine in self.engines.values()))

    # --- Wiring ---

    def _make_client(self, client_id: str) -> GitHubClient:
        return GitHubClient(client_id, self.config.github, timeout=self.config.poll.timeout)

    def _register(self, client: GitHubClient, cursor: SyncCursor | None = None) -> None:
        gate = TokenGate(client, lambda: self._load_token(client.id))
        self.engines[client.id] = ReconciliationEngine(
            client,
            gate,
            connectivity=self.connectivity,
            emit=self.bus.emit,
            recompute_badge=self.recompute_badge,
            schedule=lambda delay: self._schedule(client.id, delay),
            save_cursor=lambda new_cursor: self._save_cursor(client.id, new_cursor),
            cursor=cursor,
            rate_limiter=RateLimiter(self.config.poll.min_interval),
        )
        self.registry.add_client(client)

    def _load_token(self, client_id: str) -> str | None:
        with db.connect(self.db_path) as conn:
            row = db.get_client(conn, client_id)
        return row.token if row else None

    def _save_cursor(self, client_id: str, cursor: SyncCursor) -> None:
        with db.connect(self.db_path) as conn:
            db.save_cursor(conn, client_id, cursor)

    def _schedule(self, client_id: str, delay: float) -> None:
        engine = self.engines.get(client_id)
        if engine is None:
            return  # logged out meanwhile
        self.scheduler.create(client_id, delay, engine.check)

    def _poll_soon(self, client_id: str) -> None:
        self._schedule(client_id, 0)

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def recompute_badge(self) -> int | None:
        return await self.badge.recompute(self.registry)

    def _on_registry_change(self) -> None:
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return  # no loop yet; the first poll recomputes
        self._spawn(self.recompute_badge())

    def _on_badge(self, event: Event) -> None:
        if isinstance(event, BadgeUpdated):
            self._write_badge(event.text)

    def _on_show(self, event: Event) -> None:
        if isinstance(event, ShowNotification):
            loop = asyncio.get_running_loop()
            self._spawn(loop.run_in_executor(None, self.notifier.show, event.title, event.url))

    def _write_badge(self, text: str) -> None:
        path = self.config.badge.path
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(text)
        except OSError as e:
            _log.warning("could not write badge to %s: %s", path, e)

    # --- Command handlers ---

    async def login(self, command: Login) -> GitHubClient:
        if command.provider_type != PROVIDER_TYPE:
            raise ValueError(f"unknown provider type {command.provider_type}")
        with db.connect(self.db_path) as conn:
            client_id = db.new_client_id(conn, command.provider_type)

        client = self._make_client(client_id)
        try:
            if command.code:
                token = await client.get_token(command.code, command.state)
            elif command.token:
                token = command.token
                await client.authorize(token)
            else:
                raise ValueError("login needs a token or an OAuth code")
        except Exception:
            await client.close()
            raise

        with db.connect(self.db_path) as conn:
            db.save_client(conn, client_id, command.provider_type, token)
        self._register(client)
        self._poll_soon(client_id)
        _log.info("logged in as %s", client_id)
        return client

    async def logout(self, command: Logout) -> None:
        client = self.registry.get(command.client_id)
        token = client.token or self._load_token(client.id)
        if token:
            try:
                await client.deauthorize(token)
            except TattlerError as e:
                _log.warning("could not revoke token for %s: %s", client.id, e)
        self.scheduler.clear(client.id)
        self.engines.pop(client.id, None)
        self.registry.remove_client(client)
        with db.connect(self.db_path) as conn:
            db.delete_client(conn, client.id)
        await client.close()

    async def mark_all_read(self, command: MarkAllRead) -> None:
        clients = list(self.registry)
        results = await asyncio.gather(
            *(self._mark_all_read(client) for client in clients), return_exceptions=True
        )
        await self.recompute_badge()
        errors = [r for r in results if isinstance(r, BaseException)]
        for client, result in zip(clients, results, strict=True):
            if isinstance(result, BaseException):
                _log.warning("mark all read failed for %s: %s", client.id, result)
        if errors:
            raise errors[0]

    async def _mark_all_read(self, client: GitHubClient) -> bool:
        engine = self.engines[client.id]
        if not await client.mark_notifications_read(engine.cursor.last_update):
            return False
        client.store.mark_read(None)
        self.bus.emit(AllNotificationsRead(client.id))
        return True

    async def mark_notification_read(self, command: MarkNotificationRead) -> None:
        client = self.registry.route(command.notification_id)
        thread_id = client.thread_id(command.notification_id)
        client.store.mark_read(thread_id)
        await self.recompute_badge()
        try:
            await client.mark_notification_read(thread_id)
        except TattlerError:
            client.store.mark_unread(thread_id)
            await self.recompute_badge()
            raise
        self.bus.emit(NotificationRead(command.notification_id))

    async def ignore_notification(self, command: IgnoreNotification) -> None:
        client = self.registry.route(command.notification_id)
        thread_id = client.thread_id(command.notification_id)
        client.store.ignore(thread_id)
        await self.recompute_badge()
        try:
            await client.ignore_notification(thread_id)
        except TattlerError as e:
            _log.warning("ignoring %s on GitHub failed: %s", command.notification_id, e)

    async def unsubscribe_notification(self, command: UnsubscribeNotification) -> None:
        client = self.registry.route(command.notification_id)
        thread_id = client.thread_id(command.notification_id)
        client.store.unsubscribe(thread_id)
        await self.recompute_badge()
        try:
            await client.unsubscribe_notification(thread_id)
        except TattlerError as e:
            _log.warning("unsubscribing %s on GitHub failed: %s", command.notification_id, e)

    async def open_notification(self, command: OpenNotification) -> str | None:
        client = self.registry.route(command.notification_id)
        thread_id = client.thread_id(command.notification_id)
        url = await client.get_notification_url(thread_id)
        if url is None:
            raise NotFoundError(f"notification {command.notification_id} is not tracked")
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, open_url, url)
        await self.mark_notification_read(MarkNotificationRead(command.notification_id))
        return url

    async def open_notifications(self, command: OpenNotifications) -> str:
        footer = self.config.notifications.footer
        if footer == "options":
            target = str(ensure_config_exists())
        else:
            clients = list(self.registry)
            client = clients[0] if clients else self._make_client(PROVIDER_TYPE)
            url = client.footer_url(footer)
            if url is None:
                raise ValueError(f"No matching footer action implemented for '{footer}'")
            target = url
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, open_url, target)
        return target


def _host(url: str) -> str:
    return url.split("://", 1)[-1].split("/", 1)[0]
