"""Pull policies: how a remote snapshot is folded into local state.

Pure functions, no I/O. The reconciliation engine fetches, these decide,
and the result is written back with a direct ``replace_snapshot``.
"""

from typing import Any, Dict, Iterable, List, Optional

from tvsync.types import SETTINGS_GROUPS


def _source_id(source: Dict[str, Any]) -> Any:
    return source.get("id")


def merge_video_sources(
    local: Iterable[Dict[str, Any]], remote: Optional[Iterable[Dict[str, Any]]]
) -> List[Dict[str, Any]]:
    """Union of remote and local sources; remote wins on id collision.

    Remote entries come first in remote order, followed by local entries
    whose id is not present remotely. Entries removed on another device
    are never removed here: there are no tombstones.

    Args:
        local: Current local source list.
        remote: Remote source list, or None when nothing is stored.

    Returns:
        The merged list. With no remote entries this is the local list.
    """
    local_list = list(local or [])
    if not remote:
        return local_list

    merged: List[Dict[str, Any]] = []
    seen = set()
    for source in remote:
        sid = _source_id(source)
        if sid is not None:
            if sid in seen:
                continue
            seen.add(sid)
        merged.append(source)

    for source in local_list:
        sid = _source_id(source)
        if sid is not None and sid in seen:
            continue
        if sid is not None:
            seen.add(sid)
        merged.append(source)
    return merged


def has_content(value: Any) -> bool:
    """True when a remote snapshot holds something worth restoring.

    An empty remote value means "nothing to restore", never "clear local".
    """
    if value is None:
        return False
    if isinstance(value, (list, dict, str)):
        return len(value) > 0
    return True


def apply_settings_groups(
    local: Optional[Dict[str, Any]], remote: Optional[Dict[str, Any]]
) -> Dict[str, Any]:
    """Overwrite only the settings groups present in *remote*.

    Groups are replaced whole (no per-field merge). Groups absent or null
    remotely keep their local value; unknown remote keys are ignored.
    """
    result = dict(local or {})
    if not remote:
        return result
    for group in SETTINGS_GROUPS:
        value = remote.get(group)
        if value is not None:
            result[group] = value
    return result


def settings_payload(settings: Dict[str, Any]) -> Dict[str, Any]:
    """The subset of a local settings object that is synced."""
    return {group: settings.get(group) for group in SETTINGS_GROUPS if group in settings}
