"""User identity derivation for tvsync.

The user id only namespaces remote keys; it is not an authentication
credential. With a configured credential pair the id is a deterministic
32-bit rolling hash, so every device sharing the same credentials lands
in the same namespace. Collisions are possible and accepted.
"""

import json
import logging
import secrets
from pathlib import Path
from typing import Any, Dict, Optional

from tvsync.types import Credentials
from tvsync.utils import get_tvsync_home

logger = logging.getLogger(__name__)

USER_ID_PREFIX = "user_"
RANDOM_ID_LENGTH = 13
_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def _to_int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value & 0x80000000 else value


def rolling_hash(text: str) -> int:
    """Signed 32-bit ``h = h * 31 + unit`` over the UTF-16 code units of *text*."""
    data = text.encode("utf-16-le")
    h = 0
    for i in range(0, len(data), 2):
        unit = int.from_bytes(data[i : i + 2], "little")
        h = _to_int32((h << 5) - h + unit)
    return h


def hash_user_id(username: str, secret: str) -> str:
    """Derive the deterministic user id for a credential pair."""
    return f"{USER_ID_PREFIX}{abs(rolling_hash(f'{username}:{secret}')):x}"


def random_user_id() -> str:
    """Generate a fresh ``user_<base36>`` identifier."""
    return USER_ID_PREFIX + "".join(secrets.choice(_BASE36) for _ in range(RANDOM_ID_LENGTH))


class IdentityStore:
    """Small JSON file holding locally persisted identity state.

    Keeps the random user id (when no credentials exist) and whether the
    one-time "connected" notice has been shown.
    """

    def __init__(self, path: Optional[Path] = None):
        self.path = path or (get_tvsync_home() / "identity.json")

    def _load(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path) as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(f"Identity file unreadable, starting fresh: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def _save(self, data: Dict[str, Any]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "w") as f:
                json.dump(data, f, indent=2)
        except OSError as e:
            logger.warning(f"Could not persist identity state: {e}")

    def get(self, key: str) -> Any:
        return self._load().get(key)

    def set(self, key: str, value: Any) -> None:
        data = self._load()
        data[key] = value
        self._save(data)


def derive_user_id(
    credentials: Optional[Credentials] = None,
    store: Optional[IdentityStore] = None,
) -> str:
    """Return the user id for this instance.

    Args:
        credentials: Optional credential pair. Used only when both fields
            are non-empty.
        store: Where a random id is persisted when there are no
            credentials (default: ``identity.json`` in the data dir).

    Returns:
        ``user_<hex>`` for credentials, otherwise the persisted (or newly
        generated and persisted) ``user_<base36>`` id.
    """
    if credentials is not None and credentials.complete:
        user_id = hash_user_id(credentials.username, credentials.secret)
        logger.info(f"Derived user id from credentials: {user_id}")
        return user_id

    store = store or IdentityStore()
    user_id = store.get("user_id")
    if isinstance(user_id, str) and user_id.startswith(USER_ID_PREFIX):
        return user_id

    user_id = random_user_id()
    store.set("user_id", user_id)
    logger.info(f"Generated random user id: {user_id}")
    return user_id
