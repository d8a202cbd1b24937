"""Network reachability and one-shot resumption.

While offline the engine must not touch the network. It registers a
ResumeHandle instead; the handle fires once when connectivity returns and is
invalidated right after. Registering again under the same key while a handle
is pending returns the pending handle, so several code paths waiting for the
same client still produce a single resumption.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable

from .errors import OfflineDeferral
from .log import get_logger

_log = get_logger("connectivity")

class ResumeHandle:
    def __init__(self, key: str, callback: Callable[[], None]) -> None:
        self.key = key
        self._callback = callback
        self.active = True

    def cancel(self) -> None:
        self.active = False

    def fire(self) -> bool:
        """Run the callback if the handle is still active. Returns whether it ran."""
        if not self.active:
            return False
        self.active = False
        self._callback()
        return True

class ConnectivityMonitor:
    """Tracks whether the provider host is reachable.

    The online flag changes through set_online(), either from a caller that
    learned about connectivity elsewhere or from probe results (check()).
    """

    def __init__(
        self,
        host: str = "api.github.com",
        port: int = 443,
        interval: float = 30.0,
        probe_timeout: float = 5.0,
        online: bool = True,
    ) -> None:
        self.host = host
        self.port = port
        self.interval = interval
        self.probe_timeout = probe_timeout
        self.online = online
        self._pending: dict[str, ResumeHandle] = {}

    def call_when_online(self, key: str, callback: Callable[[], None]) -> ResumeHandle:
        """Register a one-shot resumption for key.

        Duplicate registrations while one is pending are dropped and get the
        pending handle back.
        """
        handle = self._pending.get(key)
        if handle is not None and handle.active:
            _log.debug("resumption for %s already pending", key)
            return handle
        handle = ResumeHandle(key, callback)
        self._pending[key] = handle
        return handle

    def ensure_online(self) -> None:
        """Raise OfflineDeferral unless the host is believed reachable."""
        if not self.online:
            raise OfflineDeferral(f"{self.host} unreachable")

    def set_online(self, online: bool) -> None:
        was_online = self.online
        self.online = online
        if online and not was_online:
            _log.info("back online")
        elif not online and was_online:
            _log.info("offline")
        if online:
            self._resume_all()

    def _resume_all(self) -> None:
        handles, self._pending = self._pending, {}
        for handle in handles.values():
            try:
                handle.fire()
            except Exception:
                _log.error("resumption for %s failed", handle.key, exc_info=True)

    async def probe(self) -> bool:
        """Try a TCP connection to the provider host."""
        try:
            _reader, writer = await asyncio.wait_for(
                asyncio.open_connection(self.host, self.port), timeout=self.probe_timeout
            )
        except (OSError, asyncio.TimeoutError):
            return False
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass
        return True

    async def check(self) -> bool:
        online = await self.probe()
        self.set_online(online)
        return online

    async def watch(self) -> None:
        """Re-probe every interval while offline. Runs until cancelled."""
        while True:
            await asyncio.sleep(self.interval)
            if not self.online:
                await self.check()
