"""
SyncCoordinator: lifecycle owner for cloud sync.

Composes the remote store, connection monitor, reconciliation engine and
change observer for one user. Construct one explicitly per running
application; there is no module-level singleton.

Lifecycle::

    UNINITIALIZED -> CHECKING_CONFIG -> DISABLED            (not configured)
                                     -> CONNECTING -> ACTIVE
                                                   -> ERROR

``set_enabled`` toggles ACTIVE <-> DISABLED by flipping the guard flag
consulted by pushes; it does not unsubscribe anything.

Every public method catches its own failures and reports them as a
False/None return plus a log line. User-visible notifications are sent
only for explicit connect and manual sync outcomes.
"""

import asyncio
import logging
from dataclasses import replace
from typing import Any, Dict, Mapping, Optional

from tvsync.config import SyncConfig
from tvsync.identity import IdentityStore, derive_user_id
from tvsync.logging_config import log_sync
from tvsync.monitor import ConnectionMonitor
from tvsync.observer import ChangeObserver, push_snapshot
from tvsync.protocols import ConfigurationError, Notifier, PartialSyncError
from tvsync.reconcile import ReconciliationEngine
from tvsync.remote import RemoteStore
from tvsync.repository import SyncRepository
from tvsync.state import SyncCollections
from tvsync.types import (
    CONNECTION_CHECK_INTERVAL,
    MANUAL_HISTORY_LIMIT,
    CollectionKind,
    CoordinatorState,
    PullResult,
    PushResult,
    SyncStatus,
    SyncStatusView,
    utc_now,
)

logger = logging.getLogger(__name__)

CONNECTION_NOTICE_KEY = "connection_notice_shown"


def log_notifier(level: str, message: str) -> None:
    """Default notifier: route user-facing messages to the log."""
    logger.log(logging.ERROR if level == "error" else logging.INFO, f"[notice] {message}")


class SyncCoordinator:
    """Keeps local collections and the remote store in step.

    Args:
        config: Resolved configuration.
        collections: Local collections to sync.
        store: Optional pre-built RemoteStore (tests inject one backed by
            a mock transport). Ignored when the config has no remote.
        notifier: Sink for user-facing messages (default: the log).
        identity_store: Where the random user id and the one-time
            connected notice are remembered.
        monitor_interval: Seconds between background connection probes.
        debounce_delays: Per-collection debounce overrides.
    """

    def __init__(
        self,
        config: SyncConfig,
        collections: SyncCollections,
        *,
        store: Optional[RemoteStore] = None,
        notifier: Optional[Notifier] = None,
        identity_store: Optional[IdentityStore] = None,
        monitor_interval: float = CONNECTION_CHECK_INTERVAL,
        debounce_delays: Optional[Mapping[CollectionKind, float]] = None,
    ):
        self.config = config
        self.collections = collections
        self._notify = notifier or log_notifier
        self._identity_store = identity_store or IdentityStore()
        self.user_id = derive_user_id(config.credentials, self._identity_store)

        self.state = CoordinatorState.UNINITIALIZED
        self._status = SyncStatus()
        self._activated = False

        self._store: Optional[RemoteStore] = None
        self._repository: Optional[SyncRepository] = None
        self._observer: Optional[ChangeObserver] = None
        self._engine: Optional[ReconciliationEngine] = None

        if config.is_configured:
            self._store = store or RemoteStore(
                config.rest_url, config.rest_token, timeout=config.request_timeout
            )
            self._repository = SyncRepository(self._store, self.user_id, config.key_prefix)
            self._observer = ChangeObserver(
                self._repository,
                collections,
                is_enabled=lambda: self._status.is_enabled,
                delays=debounce_delays,
                observe_search_cache=config.sync_search_cache,
                on_write=self._on_background_write,
            )
            self._engine = ReconciliationEngine(
                self._repository, collections, suppress=self._observer.suppressed
            )

        self._monitor = ConnectionMonitor(self._store, interval=monitor_interval)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def monitor(self) -> ConnectionMonitor:
        return self._monitor

    @property
    def observer(self) -> Optional[ChangeObserver]:
        return self._observer

    @property
    def repository(self) -> Optional[SyncRepository]:
        return self._repository

    @property
    def is_enabled(self) -> bool:
        return self._status.is_enabled

    def get_status(self) -> SyncStatusView:
        return SyncStatusView(
            is_enabled=self._status.is_enabled,
            is_connected=self._monitor.is_connected,
            user_id=self.user_id,
        )

    def sync_status(self) -> SyncStatus:
        """Copy of the enabled/syncing flags and last successful sync time."""
        return replace(self._status)

    def describe(self) -> Dict[str, Any]:
        """Diagnostic summary for the CLI; never includes secrets."""
        connection = self._monitor.state
        return {
            "state": self.state.value,
            "user_id": self.user_id,
            "is_enabled": self._status.is_enabled,
            "is_connected": connection.is_connected,
            "connection": connection.status.value,
            "last_checked_at": (
                connection.last_checked_at.isoformat() if connection.last_checked_at else None
            ),
            "last_synced_at": (
                self._status.last_synced_at.isoformat() if self._status.last_synced_at else None
            ),
            "config": self.config.describe(),
        }

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> bool:
        """Connect, restore remote state once, then start watching.

        Returns:
            True when the coordinator reached ACTIVE. An unconfigured
            remote returns False without any network traffic.
        """
        self.state = CoordinatorState.CHECKING_CONFIG
        try:
            self.config.require_remote()
        except ConfigurationError as e:
            logger.info(f"Cloud sync disabled: {e}")
            self.state = CoordinatorState.DISABLED
            return False

        self.state = CoordinatorState.CONNECTING
        try:
            connected = await self._monitor.check_connection()
            if not connected:
                reason = self._monitor.state.last_error or "no reply"
                logger.warning(f"Cannot connect to remote store: {reason}")
                self.state = CoordinatorState.ERROR
                self._notify("error", "Cannot connect to the cloud database")
                return False

            self._status.is_enabled = True
            await self._pull()

            self._observer.start()
            self._monitor.start()
            self._activated = True
            self.state = CoordinatorState.ACTIVE
            logger.info(f"Cloud sync active for {self.user_id}")
        except Exception as e:
            logger.error(f"Cloud sync initialization failed: {e}", exc_info=True)
            self._status.is_enabled = False
            self.state = CoordinatorState.ERROR
            self._notify("error", "Cannot connect to the cloud database")
            return False

        self._maybe_show_connected_notice()
        return True

    def _maybe_show_connected_notice(self) -> None:
        try:
            if self._identity_store.get(CONNECTION_NOTICE_KEY):
                return
            self._notify("success", "Connected to the cloud database")
            self._identity_store.set(CONNECTION_NOTICE_KEY, True)
        except Exception as e:
            logger.warning(f"Could not record connection notice: {e}")

    def set_enabled(self, enabled: bool) -> None:
        """Allow or block pushes. Pending timers stay scheduled but skip."""
        self._status.is_enabled = bool(enabled)
        if self._activated:
            self.state = CoordinatorState.ACTIVE if enabled else CoordinatorState.DISABLED
        logger.info(f"Cloud sync {'enabled' if enabled else 'disabled'}")

    async def check_connection(self) -> bool:
        """Probe the store now. False (no network) when unconfigured."""
        try:
            return await self._monitor.check_connection()
        except Exception as e:
            logger.error(f"Connection check failed: {e}")
            return False

    def destroy(self) -> None:
        """Stop observing and probing. Does not wait for in-flight writes."""
        logger.info("Stopping cloud sync")
        if self._observer is not None:
            self._observer.stop()
        self._monitor.stop()
        self._activated = False
        self._status.is_enabled = False
        self.state = CoordinatorState.UNINITIALIZED

    async def aclose(self) -> None:
        """Stop, let outstanding writes finish, and release the HTTP client."""
        observer = self._observer
        pending_flush = observer is not None and self._status.is_enabled
        if observer is not None:
            try:
                # Flush debounced edits while pushes are still allowed
                await observer.drain(flush=pending_flush)
            except Exception as e:
                logger.warning(f"Draining pending writes failed: {e}")
        self.destroy()
        try:
            await self._monitor.wait_stopped()
            if self._store is not None:
                await self._store.aclose()
        except Exception as e:
            logger.warning(f"Error while closing cloud sync: {e}")

    async def __aenter__(self) -> "SyncCoordinator":
        await self.initialize()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Pull
    # ------------------------------------------------------------------

    def _can_sync(self) -> bool:
        return self._repository is not None and self._status.is_enabled and self._monitor.is_connected

    async def _pull(self) -> PullResult:
        self._status.is_syncing = True
        try:
            result = await self._engine.pull()
        finally:
            self._status.is_syncing = False
        if result.applied or result.success:
            self._status.last_synced_at = utc_now()
        log_sync(self.user_id, "pull", result.pulled, errors=len(result.errors))
        return result

    async def pull_from_cloud(self) -> Optional[PullResult]:
        """Restore remote state into the local collections.

        Returns:
            The PullResult, or None when sync is disabled or disconnected.
        """
        if not self._can_sync():
            logger.info("Cloud sync not active, skipping pull")
            return None
        try:
            return await self._pull()
        except Exception as e:
            logger.error(f"Pull from cloud failed: {e}", exc_info=True)
            return None

    # ------------------------------------------------------------------
    # Push
    # ------------------------------------------------------------------

    def _manual_push_kinds(self):
        for kind, collection in self.collections.items():
            if kind == CollectionKind.SEARCH_CACHE and not self.config.sync_search_cache:
                continue
            yield kind, collection

    async def push_to_cloud(self) -> bool:
        """Write every collection now, bypassing debounce.

        Each collection is written independently: one failure does not
        stop the others from landing.

        Returns:
            True only if every write succeeded.
        """
        if not self._can_sync():
            logger.info("Cloud sync not active, skipping push")
            self._notify("error", "Cloud sync is not enabled")
            return False

        logger.info("Manual push to cloud...")
        self._status.is_syncing = True
        result = PushResult()
        try:
            kinds = []
            writes = []
            for kind, collection in self._manual_push_kinds():
                kinds.append(kind)
                writes.append(
                    push_snapshot(
                        self._repository,
                        kind,
                        collection.get_snapshot(),
                        history_limit=MANUAL_HISTORY_LIMIT,
                    )
                )
            outcomes = await asyncio.gather(*writes, return_exceptions=True)
        except Exception as e:
            logger.error(f"Manual push failed: {e}", exc_info=True)
            self._notify("error", "Failed to sync to the cloud")
            return False
        finally:
            self._status.is_syncing = False

        for kind, outcome in zip(kinds, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(f"Failed to push {kind.value}: {outcome}")
                result.failed[kind] = str(outcome) or type(outcome).__name__
            else:
                result.succeeded.append(kind)

        log_sync(self.user_id, "push", len(result.succeeded), errors=len(result.failed))

        if not result.success:
            err = PartialSyncError([k.value for k in result.failed])
            logger.warning(str(err))
            self._notify("error", "Failed to sync to the cloud")
            return False

        self._status.last_synced_at = utc_now()
        self._notify("success", "Synced to the cloud")
        return True

    def _on_background_write(self, kind: CollectionKind, ok: bool) -> None:
        if ok:
            self._status.last_synced_at = utc_now()
