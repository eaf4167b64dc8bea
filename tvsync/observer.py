"""Change observer: the push path.

One listener per collection. Each local mutation cancels that
collection's pending write and schedules a new one after the
collection's debounce window, so a burst of edits produces one remote
write carrying only the latest state. Timers are independent per
collection.

Writes that have left the debounce window are tracked until they finish
so shutdown can drain them instead of dropping them.
"""

import asyncio
import contextlib
import functools
import logging
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Set

from tvsync.merge import settings_payload
from tvsync.protocols import Unsubscribe
from tvsync.repository import SyncRepository, sort_by_timestamp
from tvsync.state import SyncCollections
from tvsync.types import (
    DEBOUNCE_DELAYS,
    OBSERVED_HISTORY_LIMIT,
    SEARCH_HISTORY_LIMIT,
    CollectionKind,
)

logger = logging.getLogger(__name__)


async def push_snapshot(
    repository: SyncRepository,
    kind: CollectionKind,
    snapshot: Any,
    history_limit: int = OBSERVED_HISTORY_LIMIT,
) -> None:
    """Write one collection's snapshot to the remote store.

    Viewing history is written record-by-record (the newest
    *history_limit* entries) in one pipeline; every other collection is a
    single whole-value SET. Errors propagate.
    """
    if kind == CollectionKind.VIDEO_SOURCES:
        await repository.save_video_sources(list(snapshot or []))
    elif kind == CollectionKind.VIEWING_HISTORY:
        recent = sort_by_timestamp(list(snapshot or []))[:history_limit]
        await repository.batch_save_play_records(recent)
    elif kind == CollectionKind.SEARCH_HISTORY:
        await repository.save_search_history(list(snapshot or [])[:SEARCH_HISTORY_LIMIT])
    elif kind == CollectionKind.SETTINGS:
        await repository.save_settings(settings_payload(snapshot or {}))
    elif kind == CollectionKind.SEARCH_CACHE:
        await repository.save_search_cache(dict(snapshot or {}))
    else:
        raise ValueError(f"Unknown collection: {kind}")


class ChangeObserver:
    """Debounced local-to-remote writer.

    Args:
        repository: Remote record operations for the active user.
        collections: Local collections to watch.
        is_enabled: Consulted when a timer fires; a disabled engine skips
            the write silently (not queued, not retried).
        delays: Per-collection debounce windows in seconds.
        observe_search_cache: The search cache is pull-only unless set.
        on_write: Called with (kind, ok) after every debounced write.
    """

    def __init__(
        self,
        repository: SyncRepository,
        collections: SyncCollections,
        is_enabled: Callable[[], bool],
        *,
        delays: Optional[Mapping[CollectionKind, float]] = None,
        observe_search_cache: bool = False,
        on_write: Optional[Callable[[CollectionKind, bool], None]] = None,
    ):
        self._repository = repository
        self._collections = collections
        self._is_enabled = is_enabled
        self._delays: Dict[CollectionKind, float] = {**DEBOUNCE_DELAYS, **(delays or {})}
        self._observe_search_cache = observe_search_cache
        self._on_write = on_write

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._unsubscribers: List[Unsubscribe] = []
        self._timers: Dict[CollectionKind, asyncio.TimerHandle] = {}
        self._writes: Set[asyncio.Task] = set()
        self._suppress_depth = 0

    # === Lifecycle ===

    @property
    def started(self) -> bool:
        return bool(self._unsubscribers)

    def observed_kinds(self) -> List[CollectionKind]:
        return [
            kind
            for kind, _ in self._collections.items()
            if kind != CollectionKind.SEARCH_CACHE or self._observe_search_cache
        ]

    def start(self) -> None:
        """Subscribe to every observed collection. Must run on the event loop."""
        if self.started:
            return
        self._loop = asyncio.get_running_loop()
        for kind in self.observed_kinds():
            collection = self._collections.get(kind)
            self._unsubscribers.append(
                collection.subscribe(functools.partial(self._on_change, kind))
            )
        logger.info(f"Observing {len(self._unsubscribers)} collections for changes")

    def stop(self) -> None:
        """Unsubscribe everything and cancel pending (not in-flight) writes."""
        for unsubscribe in self._unsubscribers:
            try:
                unsubscribe()
            except Exception as e:
                logger.warning(f"Unsubscribe failed: {e}")
        self._unsubscribers = []
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()

    async def drain(self, flush: bool = True) -> None:
        """Wait for outstanding writes.

        Args:
            flush: Also fire pending debounced writes immediately instead
                of discarding them.
        """
        if flush:
            for kind in list(self._timers):
                self._timers.pop(kind).cancel()
                self._fire(kind)
        while self._writes:
            await asyncio.gather(*list(self._writes), return_exceptions=True)

    # === Suppression ===

    @contextlib.contextmanager
    def suppressed(self) -> Iterator[None]:
        """Ignore change notifications raised inside this block."""
        self._suppress_depth += 1
        try:
            yield
        finally:
            self._suppress_depth -= 1

    # === Scheduling ===

    def is_pending(self, kind: CollectionKind) -> bool:
        return kind in self._timers

    @property
    def pending_kinds(self) -> List[CollectionKind]:
        return list(self._timers)

    @property
    def in_flight(self) -> int:
        return len(self._writes)

    def _on_change(self, kind: CollectionKind, _snapshot: Any = None) -> None:
        if self._suppress_depth:
            logger.debug(f"Ignoring {kind.value} change raised by a pull")
            return
        self.schedule(kind)

    def schedule(self, kind: CollectionKind) -> None:
        """(Re)start the debounce timer for *kind*, replacing any pending one."""
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        previous = self._timers.pop(kind, None)
        if previous is not None:
            previous.cancel()
        self._timers[kind] = self._loop.call_later(self._delays[kind], self._fire, kind)

    def _fire(self, kind: CollectionKind) -> None:
        self._timers.pop(kind, None)
        if not self._is_enabled():
            logger.debug(f"Sync disabled, skipping {kind.value} write")
            return
        task = self._loop.create_task(self._write(kind), name=f"tvsync-push-{kind.value}")
        self._writes.add(task)
        task.add_done_callback(self._writes.discard)

    async def _write(self, kind: CollectionKind) -> bool:
        collection = self._collections.get(kind)
        if collection is None:
            return False
        logger.info(f"{kind.value} changed, syncing to cloud...")
        try:
            await push_snapshot(self._repository, kind, collection.get_snapshot())
        except Exception as e:
            logger.error(f"Failed to sync {kind.value}: {e}")
            ok = False
        else:
            logger.debug(f"{kind.value} synced")
            ok = True
        if self._on_write is not None:
            self._on_write(kind, ok)
        return ok
