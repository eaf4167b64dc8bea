"""
tvsync - Cloud sync for a streaming media client.

Keeps video sources, viewing history, search history and settings in
step across devices through a shared key-value store.
"""

from .config import SyncConfig, load_sync_config
from .coordinator import SyncCoordinator
from .state import InMemoryCollection, SyncCollections
from .types import CollectionKind, CoordinatorState

try:
    from importlib.metadata import version

    __version__ = version("tvsync")
except Exception:
    __version__ = "0.0.0"

__all__ = [
    "SyncCoordinator",
    "SyncConfig",
    "load_sync_config",
    "SyncCollections",
    "InMemoryCollection",
    "CollectionKind",
    "CoordinatorState",
]
