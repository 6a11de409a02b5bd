"""
Network State Monitor
Tracks whether the remote backend is reachable and tells interested parties
(the orchestrator, the UI status endpoint) when that changes.
"""

import asyncio
import logging
from datetime import datetime
from typing import Awaitable, Callable, List, Optional

from order_sync.core.exceptions import RemoteBackendError
from order_sync.schemas.order import utcnow
from order_sync.schemas.sync import NetworkStatus

logger = logging.getLogger(__name__)

Probe = Callable[[], Awaitable[bool]]
StatusListener = Callable[[NetworkStatus], Awaitable[None]]


class NetworkStateMonitor:
    """
    Connectivity signal with an optional background poll.

    Connectivity can change three ways: the poll loop probes the backend,
    the host reports an online/offline event via set_online(), or a remote
    call fails with a network error and the caller invokes mark_offline().
    """

    def __init__(
        self,
        probe: Probe,
        unsynced_count: Callable[[], int],
        poll_interval: float = 1.0,
        initially_online: bool = True,
    ):
        self._probe = probe
        self._unsynced_count = unsynced_count
        self.poll_interval = poll_interval
        self._online = initially_online
        self._reconciling = False
        self._last_reconciled_at: Optional[datetime] = None
        self._last_changed_at: Optional[datetime] = None
        self._listeners: List[StatusListener] = []
        self._poller: Optional[asyncio.Task] = None
        self.running = False

    @property
    def is_online(self) -> bool:
        return self._online

    def status(self) -> NetworkStatus:
        return NetworkStatus(
            is_online=self._online,
            unsynced_count=self._unsynced_count(),
            is_reconciling=self._reconciling,
            last_reconciled_at=self._last_reconciled_at,
            last_changed_at=self._last_changed_at,
        )

    def add_listener(self, listener: StatusListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: StatusListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def set_reconciling(self, reconciling: bool, finished_at: Optional[datetime] = None) -> None:
        self._reconciling = reconciling
        if finished_at is not None:
            self._last_reconciled_at = finished_at

    # ==================== TRANSITIONS ====================

    def _transition(self, online: bool) -> bool:
        if online == self._online:
            return False
        self._online = online
        self._last_changed_at = utcnow()
        logger.info(f"Connectivity changed: {'online' if online else 'offline'}")
        return True

    def mark_offline(self) -> None:
        """Flip to offline after a remote call failed with a network error."""
        self._transition(False)

    async def set_online(self, online: bool) -> NetworkStatus:
        """Handle a connectivity event reported by the host platform."""
        self._transition(online)
        status = self.status()
        await self._notify(status)
        return status

    async def refresh(self) -> NetworkStatus:
        """Probe the backend once and notify listeners."""
        try:
            online = await self._probe()
        except RemoteBackendError as e:
            logger.debug(f"Connectivity probe failed: {e}")
            online = False
        self._transition(online)
        status = self.status()
        await self._notify(status)
        return status

    async def _notify(self, status: NetworkStatus) -> None:
        for listener in list(self._listeners):
            try:
                await listener(status)
            except Exception as e:
                logger.error(f"Network status listener failed: {e}", exc_info=True)

    # ==================== POLLING ====================

    async def start(self) -> None:
        if self.running:
            return
        self.running = True
        self._poller = asyncio.create_task(self._poll_loop())
        logger.info(f"Network monitor started (poll every {self.poll_interval}s)")

    async def stop(self) -> None:
        self.running = False
        if self._poller is not None:
            self._poller.cancel()
            await asyncio.gather(self._poller, return_exceptions=True)
            self._poller = None
        logger.info("Network monitor stopped")

    async def _poll_loop(self) -> None:
        while self.running:
            try:
                await self.refresh()
                await asyncio.sleep(self.poll_interval)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Network poll error: {e}")
                await asyncio.sleep(self.poll_interval)
