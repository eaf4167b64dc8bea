"""
Shared sync types for tvsync.

Dataclasses and enums passed between the coordinator, the monitor, the
pull/push paths and the repository. Nothing in here performs I/O.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

# === Shared Utility Functions ===


def utc_now() -> datetime:
    """Get current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


# === Constants ===

DEFAULT_KEY_PREFIX = "ouonnki-tv"

# Seconds between periodic connection probes
CONNECTION_CHECK_INTERVAL = 30.0

# Debounce windows (seconds) per collection
DEBOUNCE_VIDEO_SOURCES = 2.0
DEBOUNCE_VIEWING_HISTORY = 5.0
DEBOUNCE_SEARCH_HISTORY = 3.0
DEBOUNCE_SETTINGS = 5.0
DEBOUNCE_SEARCH_CACHE = 5.0

# Watch records written per debounced push / per manual push
OBSERVED_HISTORY_LIMIT = 10
MANUAL_HISTORY_LIMIT = 50

SEARCH_HISTORY_LIMIT = 50

# Top-level settings groups synced as units
SETTINGS_GROUPS = ("network", "search", "playback", "system")


# === Enums ===


class CollectionKind(str, Enum):
    """The independently synchronized slices of local state."""

    VIDEO_SOURCES = "video_sources"
    VIEWING_HISTORY = "viewing_history"
    SEARCH_HISTORY = "search_history"
    SETTINGS = "settings"
    SEARCH_CACHE = "search_cache"


# Remote key suffix for each whole-snapshot collection. ViewingHistory is
# stored one key per record under "pr:<recordKey>".
COLLECTION_KEYS: Dict[CollectionKind, str] = {
    CollectionKind.VIDEO_SOURCES: "sources",
    CollectionKind.VIEWING_HISTORY: "pr",
    CollectionKind.SEARCH_HISTORY: "search:history",
    CollectionKind.SETTINGS: "settings",
    CollectionKind.SEARCH_CACHE: "search:cache",
}

DEBOUNCE_DELAYS: Dict[CollectionKind, float] = {
    CollectionKind.VIDEO_SOURCES: DEBOUNCE_VIDEO_SOURCES,
    CollectionKind.VIEWING_HISTORY: DEBOUNCE_VIEWING_HISTORY,
    CollectionKind.SEARCH_HISTORY: DEBOUNCE_SEARCH_HISTORY,
    CollectionKind.SETTINGS: DEBOUNCE_SETTINGS,
    CollectionKind.SEARCH_CACHE: DEBOUNCE_SEARCH_CACHE,
}


class ConnectionStatus(str, Enum):
    """Health of the remote store as last observed."""

    UNKNOWN = "unknown"
    CHECKING = "checking"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class CoordinatorState(str, Enum):
    """Lifecycle of a SyncCoordinator."""

    UNINITIALIZED = "uninitialized"
    CHECKING_CONFIG = "checking_config"
    DISABLED = "disabled"
    CONNECTING = "connecting"
    ACTIVE = "active"
    ERROR = "error"


# === Dataclasses ===


@dataclass
class ConnectionState:
    """Cached connection status plus when it was last probed."""

    status: ConnectionStatus = ConnectionStatus.UNKNOWN
    last_checked_at: Optional[datetime] = None
    last_error: Optional[str] = None

    @property
    def is_connected(self) -> bool:
        return self.status == ConnectionStatus.CONNECTED


@dataclass
class SyncStatus:
    """Whether pushes are allowed and when data last moved."""

    is_enabled: bool = False
    is_syncing: bool = False
    last_synced_at: Optional[datetime] = None


@dataclass(frozen=True)
class SyncStatusView:
    """Read-only status snapshot handed to the UI shell."""

    is_enabled: bool
    is_connected: bool
    user_id: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_enabled": self.is_enabled,
            "is_connected": self.is_connected,
            "user_id": self.user_id,
        }


@dataclass(frozen=True)
class Credentials:
    """Credential pair used only to derive a stable user id."""

    username: str = ""
    secret: str = ""

    @property
    def complete(self) -> bool:
        return bool(self.username) and bool(self.secret)


@dataclass
class PullResult:
    """Outcome of one reconciliation pass."""

    applied: List[CollectionKind] = field(default_factory=list)
    skipped: List[CollectionKind] = field(default_factory=list)
    errors: Dict[CollectionKind, str] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return len(self.errors) == 0

    @property
    def pulled(self) -> int:
        """Number of collections whose local state was replaced."""
        return len(self.applied)


@dataclass
class PushResult:
    """Outcome of a manual push across collections."""

    succeeded: List[CollectionKind] = field(default_factory=list)
    failed: Dict[CollectionKind, str] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return len(self.failed) == 0
