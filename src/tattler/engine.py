"""Poll cycle for one client.

A cycle runs IDLE -> AUTHENTICATING -> FETCHING -> RECONCILING -> SCHEDULED
-> IDLE. Without connectivity it stops in OFFLINE and leaves a one-shot
resumption with the connectivity monitor. The sync cursor only advances when
a cycle gets all the way through; a failed cycle leaves it exactly as it was.

At most one cycle per client runs at a time. A trigger that arrives while a
cycle is in flight is dropped, not queued: two overlapping fetches would
both see the same new threads and notify twice.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any, Protocol

from .connectivity import ConnectivityMonitor
from .credentials import CredentialGate
from .errors import AuthRequired, MalformedResponse, OfflineDeferral, RemoteError
from .events import Event, ShowNotification
from .github.fetcher import NO_CACHE, RELOAD, CacheMode, PaginatedFetcher
from .log import get_logger
from .ratelimit import RateLimiter
from .records import NotificationRecord
from .state import NotificationStateStore, SyncCursor

_log = get_logger("engine")

# Engine states
IDLE = "idle"
AUTHENTICATING = "authenticating"
FETCHING = "fetching"
RECONCILING = "reconciling"
SCHEDULED = "scheduled"
OFFLINE = "offline"

# Cycle outcomes returned by check()
UPDATED = "updated"
NOT_MODIFIED = "not-modified"
COALESCED = "coalesced"
DEFERRED = "deferred"
AUTH_REQUIRED = "auth-required"
FAILED = "failed"


class PollableClient(Protocol):
    id: str
    store: NotificationStateStore
    fetcher: PaginatedFetcher
    needs_auth: bool

    def notification_id(self, thread_id: str) -> str: ...

    async def fetch_notifications(
        self, cache_mode: CacheMode = NO_CACHE
    ) -> list[NotificationRecord] | None: ...


def _isoformat(epoch: float) -> str:
    return datetime.fromtimestamp(epoch, UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


class ReconciliationEngine:
    def __init__(
        self,
        client: PollableClient,
        gate: CredentialGate,
        connectivity: ConnectivityMonitor,
        emit: Callable[[Event], None],
        recompute_badge: Callable[[], Awaitable[Any]],
        schedule: Callable[[float], None],
        save_cursor: Callable[[SyncCursor], None] | None = None,
        cursor: SyncCursor | None = None,
        rate_limiter: RateLimiter | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.client = client
        self.gate = gate
        self.connectivity = connectivity
        self.cursor = cursor or SyncCursor()
        self.rate_limiter = rate_limiter or RateLimiter()
        self.state = IDLE
        self._emit = emit
        self._recompute_badge = recompute_badge
        self._schedule = schedule
        self._save_cursor = save_cursor
        self._clock = clock
        self._lock = asyncio.Lock()

    @property
    def in_flight(self) -> bool:
        return self._lock.locked()

    @property
    def interval(self) -> int:
        return self.rate_limiter.interval

    async def check(self) -> str:
        """Run one poll cycle unless one is already running. Returns the outcome."""
        if self.in_flight:
            _log.debug("%s: cycle in flight, trigger dropped", self.client.id)
            return COALESCED
        async with self._lock:
            try:
                return await self._cycle()
            finally:
                if self.state != OFFLINE:
                    self.state = IDLE

    async def _cycle(self) -> str:
        try:
            self.connectivity.ensure_online()
        except OfflineDeferral as e:
            return self._defer(e)

        self.state = AUTHENTICATING
        try:
            await self.gate.acquire()
        except AuthRequired as e:
            return await self._auth_failed(e)
        except RemoteError as e:
            return await self._failed(e)

        self.state = FETCHING
        cursor = self.cursor
        cache_mode = RELOAD if cursor.force_refresh else NO_CACHE
        try:
            records = await self.client.fetch_notifications(cache_mode)
        except AuthRequired as e:
            self.gate.invalidate()
            return await self._auth_failed(e)
        except (RemoteError, MalformedResponse) as e:
            return await self._failed(e)
        now = self._clock()

        self.state = RECONCILING
        if records is not None:
            result = self.client.store.apply_fetch_result(records)
            for record in result.new_records:
                if record.unread:
                    self._emit(
                        ShowNotification(
                            notification_id=self.client.notification_id(record.id),
                            title=record.subject_title,
                            url=record.url,
                        )
                    )
            _log.info(
                "%s: %d record(s), %d new, badge %+d",
                self.client.id,
                len(records),
                len(result.new_records),
                result.badge_delta,
            )

        self.state = SCHEDULED
        self.client.needs_auth = False
        interval = self.rate_limiter.update(self.client.fetcher.metadata, now)
        # The ETag doesn't change when threads are read elsewhere, so any
        # non-empty result forces a revalidation-free fetch next time
        new_cursor = SyncCursor(last_update=_isoformat(now), force_refresh=bool(records))
        try:
            await self._recompute_badge()
            if self._save_cursor is not None:
                self._save_cursor(new_cursor)
        except Exception as e:
            # old cursor stays; the next cycle refetches
            _log.error("%s: committing cycle failed: %s", self.client.id, e, exc_info=True)
            self._schedule(self.rate_limiter.interval)
            return FAILED
        self.cursor = new_cursor
        self._schedule(interval)
        return UPDATED if records is not None else NOT_MODIFIED

    def _defer(self, reason: OfflineDeferral) -> str:
        self.state = OFFLINE
        self.connectivity.call_when_online(self.client.id, self._resume)
        _log.info("%s: %s, waiting for connectivity", self.client.id, reason)
        return DEFERRED

    def _resume(self) -> None:
        self.state = IDLE
        self._schedule(0)

    async def _auth_failed(self, error: AuthRequired) -> str:
        _log.warning("%s: authentication required: %s", self.client.id, error)
        self.client.needs_auth = True
        await self._recompute_badge()
        # The gate refuses a rejected token without touching the network, so
        # this only polls again once a new credential has been stored
        self._schedule(self.rate_limiter.interval)
        return AUTH_REQUIRED

    async def _failed(self, error: Exception) -> str:
        _log.warning("%s: poll failed: %s", self.client.id, error)
        if isinstance(error, RemoteError) and error.status is None:
            # no response at all; find out whether we're offline
            if not await self.connectivity.check():
                return self._defer(OfflineDeferral(str(error)))
        self.state = SCHEDULED
        self._schedule(self.rate_limiter.interval)
        return FAILED
