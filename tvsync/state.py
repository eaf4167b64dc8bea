"""Local state collaborators.

The engine reads and writes application state only through the
``SyncableCollection`` protocol. ``InMemoryCollection`` is the reference
implementation: hosts can use it directly or wrap their own store.
"""

import copy
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from tvsync.protocols import Listener, SyncableCollection, Unsubscribe
from tvsync.types import CollectionKind

logger = logging.getLogger(__name__)


class InMemoryCollection:
    """A value plus synchronous change listeners."""

    def __init__(self, name: str, initial: Any = None):
        self.name = name
        self._value = initial
        self._listeners: List[Listener] = []

    def get_snapshot(self) -> Any:
        # Callers get a copy; mutating it must not bypass notification
        return copy.deepcopy(self._value)

    def subscribe(self, listener: Listener) -> Unsubscribe:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def replace_snapshot(self, value: Any) -> None:
        self._value = value
        self._notify()

    def update(self, fn: Callable[[Any], Any]) -> None:
        """Apply *fn* to a copy of the value and store the result."""
        self.replace_snapshot(fn(self.get_snapshot()))

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def _notify(self) -> None:
        snapshot = self.get_snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                # One listener's failure must not stop the others
                logger.error(f"Listener on {self.name} failed: {e}", exc_info=True)


@dataclass
class SyncCollections:
    """The collections a coordinator keeps in sync. Any may be omitted."""

    video_sources: Optional[SyncableCollection] = None
    viewing_history: Optional[SyncableCollection] = None
    search_history: Optional[SyncableCollection] = None
    settings: Optional[SyncableCollection] = None
    search_cache: Optional[SyncableCollection] = None

    def get(self, kind: CollectionKind) -> Optional[SyncableCollection]:
        return getattr(self, kind.value)

    def items(self) -> Iterator[Tuple[CollectionKind, SyncableCollection]]:
        for kind in CollectionKind:
            collection = self.get(kind)
            if collection is not None:
                yield kind, collection

    @classmethod
    def in_memory(cls, **initial: Any) -> "SyncCollections":
        """Fresh in-memory collections with sensible empty defaults."""
        defaults: Dict[str, Any] = {
            "video_sources": [],
            "viewing_history": [],
            "search_history": [],
            "settings": {},
            "search_cache": {},
        }
        defaults.update(initial)
        return cls(**{name: InMemoryCollection(name, value) for name, value in defaults.items()})
