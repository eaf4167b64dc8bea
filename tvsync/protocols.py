"""
tvsync Protocol Definitions
===========================

Error taxonomy and the collaborator contract the engine depends on.

The engine never owns application state. Each synchronized slice is
provided by the host application as a ``SyncableCollection``: something
that can hand out a snapshot, replace its snapshot wholesale, and tell
listeners when it changed. How the collection persists itself locally is
not our concern.

Error handling philosophy:
- Missing remote configuration raises ConfigurationError internally and
  surfaces as the DISABLED state, never as an error to the user
- Transient network failures are SyncConnectionError; they are retried,
  then surfaced only as a DISCONNECTED status
- Remote protocol/auth failures are RemoteStoreError (terminal, no retry)
- Malformed payloads are SerializationError; the affected collection is
  treated as having nothing to restore
- A manual push where some collections failed is a PartialSyncError,
  reported to callers as a plain False
- Public coordinator methods never raise
"""

from __future__ import annotations

from typing import Any, Callable, List, Optional, Protocol, runtime_checkable

# =============================================================================
# ERRORS
# =============================================================================


class TvSyncError(Exception):
    """Base for all tvsync errors."""

    pass


class ConfigurationError(TvSyncError):
    """Raised when the remote store endpoint or token is not configured."""

    pass


class SyncConnectionError(TvSyncError):
    """Raised for transient network failures reaching the remote store."""

    pass


class RemoteStoreError(TvSyncError):
    """Raised when the remote store rejects a request or answers with garbage."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class PipelineError(RemoteStoreError):
    """Raised when one or more commands in a pipeline failed.

    The pipeline is not transactional: commands without an error have
    already been applied remotely. ``results`` holds every per-command
    entry in request order.
    """

    def __init__(self, message: str, results: List[Any]) -> None:
        super().__init__(message)
        self.results = results


class SerializationError(TvSyncError):
    """Raised when a remote payload cannot be decoded into the expected shape."""

    pass


class PartialSyncError(TvSyncError):
    """Raised when some collections failed during a manual push."""

    def __init__(self, failed: List[str]) -> None:
        super().__init__(f"{len(failed)} collection(s) failed to sync: {', '.join(failed)}")
        self.failed = failed


# =============================================================================
# COLLABORATOR PROTOCOLS
# =============================================================================

Listener = Callable[[Any], None]
Unsubscribe = Callable[[], None]


@runtime_checkable
class SyncableCollection(Protocol):
    """A named slice of local application state.

    Implementations must call every subscribed listener synchronously with
    the new snapshot after each mutation, including mutations made through
    ``replace_snapshot``.
    """

    def get_snapshot(self) -> Any:
        """Return the current value (list or dict)."""
        ...

    def subscribe(self, listener: Listener) -> Unsubscribe:
        """Register a change listener; return a callable that removes it."""
        ...

    def replace_snapshot(self, value: Any) -> None:
        """Replace the whole value."""
        ...


class Notifier(Protocol):
    """User-facing notification sink (toast in a GUI, a line in a CLI)."""

    def __call__(self, level: str, message: str) -> None: ...
