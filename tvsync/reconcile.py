"""Reconciliation engine: the pull path.

Fetches every collection's remote snapshot concurrently, then folds each
into local state according to its fixed policy:

- video sources: union, remote wins on id collision
- viewing history, search history, search cache: replace if non-empty
- settings: replace only the groups present remotely

A failure in one collection never blocks the others. That collection is
simply treated as having nothing to restore for this pull.
"""

import asyncio
import contextlib
import logging
from typing import Any, Callable, ContextManager, Optional

from tvsync.merge import apply_settings_groups, has_content, merge_video_sources
from tvsync.repository import SyncRepository
from tvsync.state import SyncCollections
from tvsync.types import SETTINGS_GROUPS, CollectionKind, PullResult

logger = logging.getLogger(__name__)


class ReconciliationEngine:
    """Pull remote snapshots into local collections.

    Args:
        repository: Remote record operations for the active user.
        collections: Local collections to restore into.
        suppress: Factory for a context manager under which local change
            notifications must not trigger pushes. Applied state would
            otherwise be echoed straight back to the store.
    """

    def __init__(
        self,
        repository: SyncRepository,
        collections: SyncCollections,
        suppress: Optional[Callable[[], ContextManager[Any]]] = None,
    ):
        self._repository = repository
        self._collections = collections
        self._suppress = suppress or contextlib.nullcontext

    async def pull(self) -> PullResult:
        """Fetch and apply every configured collection.

        Returns:
            PullResult listing which collections were applied, skipped
            (nothing to restore), or failed.
        """
        result = PullResult()
        kinds = [kind for kind, _ in self._collections.items()]
        if not kinds:
            return result

        fetched = await asyncio.gather(
            *(self._repository.fetch(kind) for kind in kinds), return_exceptions=True
        )

        for kind, remote in zip(kinds, fetched):
            if isinstance(remote, BaseException):
                logger.error(f"Failed to pull {kind.value}: {remote}")
                result.errors[kind] = str(remote) or type(remote).__name__
                continue
            try:
                applied = self._apply(kind, remote)
            except Exception as e:
                logger.error(f"Failed to apply pulled {kind.value}: {e}", exc_info=True)
                result.errors[kind] = str(e)
                continue
            (result.applied if applied else result.skipped).append(kind)

        logger.info(
            f"Pull complete: applied={[k.value for k in result.applied]}, "
            f"skipped={len(result.skipped)}, errors={len(result.errors)}"
        )
        return result

    def _apply(self, kind: CollectionKind, remote: Any) -> bool:
        """Fold *remote* into the local collection; return True if replaced."""
        collection = self._collections.get(kind)
        if collection is None:
            return False

        if kind == CollectionKind.SETTINGS:
            if not isinstance(remote, dict) or not any(
                remote.get(group) is not None for group in SETTINGS_GROUPS
            ):
                return False
            new_value = apply_settings_groups(collection.get_snapshot(), remote)
        elif not has_content(remote):
            return False
        elif kind == CollectionKind.VIDEO_SOURCES:
            new_value = merge_video_sources(collection.get_snapshot() or [], remote)
        else:
            new_value = remote

        with self._suppress():
            collection.replace_snapshot(new_value)

        if isinstance(remote, list):
            logger.info(f"Restored {kind.value}: {len(remote)} remote entries")
        else:
            logger.info(f"Restored {kind.value}")
        return True
