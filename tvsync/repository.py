"""Per-collection remote record operations.

SyncRepository maps each collection onto its keys in one user's
namespace and enforces the expected payload shapes. Errors propagate;
the pull and push paths decide what a failure means for them.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

from tvsync.protocols import SerializationError
from tvsync.remote import RemoteStore, del_command, set_command, user_key
from tvsync.types import (
    COLLECTION_KEYS,
    DEFAULT_KEY_PREFIX,
    SEARCH_HISTORY_LIMIT,
    CollectionKind,
)

logger = logging.getLogger(__name__)

PLAY_RECORD_PREFIX = COLLECTION_KEYS[CollectionKind.VIEWING_HISTORY]


def play_record_key(record: Dict[str, Any]) -> Optional[str]:
    """``<sourceCode>_<vodId>`` for a watch record, or None if either is missing."""
    source_code = record.get("sourceCode")
    vod_id = record.get("vodId")
    if source_code in (None, "") or vod_id in (None, ""):
        return None
    return f"{source_code}_{vod_id}"


def _timestamp(record: Dict[str, Any]) -> float:
    try:
        return float(record.get("timestamp") or 0)
    except (TypeError, ValueError):
        return 0.0


def sort_by_timestamp(records: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Newest first."""
    return sorted(records, key=_timestamp, reverse=True)


def _expect_list(value: Any, what: str) -> Optional[List[Any]]:
    if value is None:
        return None
    if not isinstance(value, list):
        raise SerializationError(f"{what}: expected a list, got {type(value).__name__}")
    return value


def _expect_dict(value: Any, what: str) -> Optional[Dict[str, Any]]:
    if value is None:
        return None
    if not isinstance(value, dict):
        raise SerializationError(f"{what}: expected an object, got {type(value).__name__}")
    return value


class SyncRepository:
    """Remote reads and writes for one user's collections.

    Args:
        store: Shared RemoteStore adapter.
        user_id: Namespace for every key.
        key_prefix: Application prefix (default ``ouonnki-tv``).
    """

    def __init__(self, store: RemoteStore, user_id: str, key_prefix: str = DEFAULT_KEY_PREFIX):
        self.store = store
        self.user_id = user_id
        self.key_prefix = key_prefix

    def key(self, collection: str, sub_id: Optional[str] = None) -> str:
        return user_key(self.key_prefix, self.user_id, collection, sub_id)

    def collection_key(self, kind: CollectionKind) -> str:
        return self.key(COLLECTION_KEYS[kind])

    def play_record_key(self, record_key: str) -> str:
        return self.key(PLAY_RECORD_PREFIX, record_key)

    # === Video sources ===

    async def save_video_sources(self, sources: List[Dict[str, Any]]) -> bool:
        ok = await self.store.set(self.collection_key(CollectionKind.VIDEO_SOURCES), sources)
        logger.debug(f"Saved {len(sources)} video sources")
        return ok

    async def get_video_sources(self) -> Optional[List[Dict[str, Any]]]:
        value = await self.store.get(self.collection_key(CollectionKind.VIDEO_SOURCES))
        sources = _expect_list(value, "video sources")
        if sources is None:
            return None
        return [s for s in sources if isinstance(s, dict)]

    # === Play records ===

    async def save_play_record(self, record_key: str, record: Dict[str, Any]) -> bool:
        return await self.store.set(self.play_record_key(record_key), record)

    async def get_play_record(self, record_key: str) -> Optional[Dict[str, Any]]:
        value = await self.store.get(self.play_record_key(record_key))
        return _expect_dict(value, f"play record {record_key}")

    async def get_all_play_records(self) -> List[Dict[str, Any]]:
        """Every stored watch record for this user, newest first."""
        keys = await self.store.list_keys(self.play_record_key("*"))
        if not keys:
            return []
        values = await self.store.multi_get(keys)
        records = []
        for key, value in zip(keys, values):
            if isinstance(value, dict):
                records.append(value)
            elif value is not None:
                logger.warning(f"Skipping malformed play record at {key}")
        return sort_by_timestamp(records)

    async def batch_save_play_records(self, records: Sequence[Dict[str, Any]]) -> int:
        """Write watch records in a single pipeline.

        Returns:
            Number of records sent. Records without a source code or
            item id are skipped.
        """
        commands = []
        for record in records:
            record_key = play_record_key(record)
            if record_key is None:
                logger.debug("Skipping watch record without sourceCode/vodId")
                continue
            commands.append(set_command(self.play_record_key(record_key), record))
        if not commands:
            return 0
        await self.store.pipeline(commands)
        logger.debug(f"Batch saved {len(commands)} play records")
        return len(commands)

    async def delete_play_record(self, record_key: str) -> bool:
        deleted = await self.store.delete(self.play_record_key(record_key))
        return deleted > 0

    async def delete_play_records(self, record_keys: Sequence[str]) -> int:
        if not record_keys:
            return 0
        results = await self.store.pipeline(
            [del_command(self.play_record_key(k)) for k in record_keys]
        )
        return sum(int(r or 0) for r in results)

    # === Search history ===

    async def get_search_history(self) -> List[Dict[str, Any]]:
        value = await self.store.get(self.collection_key(CollectionKind.SEARCH_HISTORY))
        history = _expect_list(value, "search history") or []
        return [h for h in history if isinstance(h, dict)]

    async def save_search_history(self, history: List[Dict[str, Any]]) -> bool:
        return await self.store.set(
            self.collection_key(CollectionKind.SEARCH_HISTORY), history[:SEARCH_HISTORY_LIMIT]
        )

    async def add_search_history(self, item: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Prepend *item*, dropping older entries with the same content.

        Read-modify-write; concurrent writers on other devices can lose
        an entry.
        """
        history = await self.get_search_history()
        history = [h for h in history if h.get("content") != item.get("content")]
        history.insert(0, item)
        history = history[:SEARCH_HISTORY_LIMIT]
        await self.save_search_history(history)
        return history

    async def clear_search_history(self) -> bool:
        deleted = await self.store.delete(self.collection_key(CollectionKind.SEARCH_HISTORY))
        return deleted > 0

    # === Settings ===

    async def save_settings(self, settings: Dict[str, Any]) -> bool:
        return await self.store.set(self.collection_key(CollectionKind.SETTINGS), settings)

    async def get_settings(self) -> Optional[Dict[str, Any]]:
        value = await self.store.get(self.collection_key(CollectionKind.SETTINGS))
        return _expect_dict(value, "settings")

    # === Search cache ===

    async def save_search_cache(self, cache: Dict[str, Any]) -> bool:
        return await self.store.set(self.collection_key(CollectionKind.SEARCH_CACHE), cache)

    async def get_search_cache(self) -> Optional[Dict[str, Any]]:
        value = await self.store.get(self.collection_key(CollectionKind.SEARCH_CACHE))
        return _expect_dict(value, "search cache")

    # === Dispatch ===

    async def fetch(self, kind: CollectionKind) -> Any:
        """Read one collection's remote snapshot, decoded and shape-checked."""
        if kind == CollectionKind.VIDEO_SOURCES:
            return await self.get_video_sources()
        if kind == CollectionKind.VIEWING_HISTORY:
            return await self.get_all_play_records()
        if kind == CollectionKind.SEARCH_HISTORY:
            return await self.get_search_history()
        if kind == CollectionKind.SETTINGS:
            return await self.get_settings()
        if kind == CollectionKind.SEARCH_CACHE:
            return await self.get_search_cache()
        raise ValueError(f"Unknown collection: {kind}")
