"""Connection monitor for the remote store.

Probes with a PING on demand and on a fixed interval while the
coordinator is active. The cached status is a plain assignment, so a
periodic probe racing a manual one simply resolves last-write-wins.
"""

import asyncio
import logging
from typing import Any, Callable, List, Optional

from tvsync.protocols import Unsubscribe
from tvsync.remote import RemoteStore
from tvsync.types import (
    CONNECTION_CHECK_INTERVAL,
    ConnectionState,
    ConnectionStatus,
    utc_now,
)

logger = logging.getLogger(__name__)

StatusCallback = Callable[[ConnectionState], None]


def is_pong(result: Any) -> bool:
    """Healthy stores answer "PONG"; some REST proxies answer an empty list."""
    return result == "PONG" or result == "[]" or (isinstance(result, list) and len(result) == 0)


class ConnectionMonitor:
    """Tracks remote store reachability.

    Args:
        store: The shared adapter, or None when no remote is configured
            (every check then fails without touching the network).
        interval: Seconds between periodic probes.
    """

    def __init__(self, store: Optional[RemoteStore], interval: float = CONNECTION_CHECK_INTERVAL):
        self._store = store
        self._interval = interval
        self._state = ConnectionState()
        self._callbacks: List[StatusCallback] = []
        self._task: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # Public queries
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state.is_connected

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def on_status_change(self, callback: StatusCallback) -> Unsubscribe:
        """Register a callback fired when the status changes."""
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    # ------------------------------------------------------------------
    # Probing
    # ------------------------------------------------------------------

    async def check_connection(self) -> bool:
        """Probe the store now. Never raises.

        Returns:
            True if the store answered the ping.
        """
        if self._store is None:
            self._set(ConnectionStatus.DISCONNECTED, "Remote store not configured")
            return False

        self._set(ConnectionStatus.CHECKING, None, stamp=False)
        try:
            result = await self._store.ping()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Connection check failed: {e}")
            self._set(ConnectionStatus.DISCONNECTED, str(e))
            return False

        if is_pong(result):
            self._set(ConnectionStatus.CONNECTED, None)
            return True

        logger.warning(f"Unexpected PING reply: {result!r}")
        self._set(ConnectionStatus.DISCONNECTED, f"Unexpected PING reply: {result!r}")
        return False

    def _set(self, status: ConnectionStatus, error: Optional[str], stamp: bool = True) -> None:
        previous = self._state.status
        last_checked_at = utc_now() if stamp else self._state.last_checked_at
        self._state = ConnectionState(
            status=status, last_checked_at=last_checked_at, last_error=error
        )
        if status != previous:
            logger.debug(f"Connection status {previous.value} -> {status.value}")
            for callback in list(self._callbacks):
                try:
                    callback(self._state)
                except Exception as e:
                    logger.error(f"Connection status callback failed: {e}", exc_info=True)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start periodic probing on the running event loop."""
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(
            self._monitor_loop(), name="tvsync-connection-monitor"
        )
        logger.info(f"ConnectionMonitor started (interval={self._interval:.0f}s)")

    def stop(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
            logger.info("ConnectionMonitor stopped")

    async def wait_stopped(self) -> None:
        """Wait for a cancelled monitor task to finish unwinding."""
        task = self._task
        self._task = None
        if task is None:
            return
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _monitor_loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            await self.check_connection()
