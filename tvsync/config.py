"""Configuration loading for tvsync.

Configuration is read once at startup; there is no hot reload.

Priority (later wins):
1. <data dir>/credentials.json
2. Environment variables (``TVSYNC_*``, ``.env`` honoured)
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic_settings import BaseSettings

from tvsync.protocols import ConfigurationError
from tvsync.types import DEFAULT_KEY_PREFIX, Credentials
from tvsync.utils import get_tvsync_home
from tvsync.validation import validate_key_prefix, validate_rest_url

logger = logging.getLogger(__name__)


class SyncSettings(BaseSettings):
    """Settings loaded from environment."""

    rest_url: Optional[str] = None
    rest_token: Optional[str] = None
    # Used only to derive a stable user id, never sent anywhere
    username: Optional[str] = None
    secret: Optional[str] = None
    key_prefix: Optional[str] = None
    sync_search_cache: Optional[bool] = None
    log_level: Optional[str] = None

    class Config:
        env_prefix = "TVSYNC_"
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


@dataclass
class SyncConfig:
    """Resolved configuration for one coordinator."""

    rest_url: Optional[str] = None
    rest_token: Optional[str] = None
    credentials: Credentials = field(default_factory=Credentials)
    key_prefix: str = DEFAULT_KEY_PREFIX
    sync_search_cache: bool = False
    log_level: str = "INFO"
    request_timeout: float = 10.0

    @property
    def is_configured(self) -> bool:
        """True when both the endpoint and the token are present."""
        return bool(self.rest_url) and bool(self.rest_token)

    def require_remote(self) -> None:
        """Raise ConfigurationError unless a remote store is configured."""
        if not self.rest_url:
            raise ConfigurationError("No remote store URL configured")
        if not self.rest_token:
            raise ConfigurationError("No remote store token configured")

    def describe(self) -> Dict[str, Any]:
        """Loggable summary; never includes the token or secret."""
        return {
            "configured": self.is_configured,
            "has_url": bool(self.rest_url),
            "has_token": bool(self.rest_token),
            "url": (self.rest_url[:20] + "...") if self.rest_url else None,
            "key_prefix": self.key_prefix,
            "has_credentials": self.credentials.complete,
        }


def _read_json(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        with open(path) as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        logger.debug(f"Failed to load {path.name}: {e}")
        return {}
    return data if isinstance(data, dict) else {}


def load_sync_config(home: Optional[Path] = None) -> SyncConfig:
    """Load configuration from credentials.json and the environment.

    Args:
        home: Data directory to read ``credentials.json`` from
            (default: ``get_tvsync_home()``).

    Returns:
        A SyncConfig. An invalid URL is dropped (leaving sync disabled)
        rather than raised.
    """
    home = home or get_tvsync_home()
    file_values = _read_json(home / "credentials.json")
    env = SyncSettings()

    def pick(name: str, *aliases: str) -> Any:
        value = getattr(env, name)
        if value is not None and value != "":
            return value
        for key in (name,) + aliases:
            if file_values.get(key) not in (None, ""):
                return file_values[key]
        return None

    rest_url = pick("rest_url", "url")
    # Accept "token" as an alias for "rest_token"
    rest_token = pick("rest_token", "token")
    if rest_url:
        rest_url = validate_rest_url(rest_url)

    sync_search_cache = pick("sync_search_cache")
    if isinstance(sync_search_cache, str):
        sync_search_cache = sync_search_cache.strip().lower() in {"1", "true", "yes", "on"}

    config = SyncConfig(
        rest_url=rest_url,
        rest_token=rest_token,
        credentials=Credentials(
            username=pick("username") or "",
            secret=pick("secret", "password") or "",
        ),
        key_prefix=validate_key_prefix(pick("key_prefix"), DEFAULT_KEY_PREFIX),
        sync_search_cache=bool(sync_search_cache) if sync_search_cache is not None else False,
        log_level=str(pick("log_level") or "INFO"),
    )
    logger.debug(f"Loaded sync config: {config.describe()}")
    return config
