"""Input validation helpers for tvsync configuration."""

import logging
import re
from typing import Any, Optional
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

_KEY_PREFIX_RE = re.compile(r"^[A-Za-z0-9_.-]{1,64}$")


def validate_rest_url(url: Optional[str]) -> Optional[str]:
    """Validate a remote store URL before a bearer token is sent to it.

    Plain HTTP is only accepted for ``localhost`` and ``127.0.0.1``.

    Returns:
        The URL without a trailing slash if valid, or ``None`` if rejected
        (with a warning logged for the rejection reason).
    """
    if not url:
        return None

    parsed = urlparse(url)
    if parsed.scheme not in {"https", "http"}:
        logger.warning("Invalid rest_url scheme; only http/https allowed.")
        return None
    if not parsed.netloc:
        logger.warning("Invalid rest_url; missing host.")
        return None
    if parsed.scheme == "http" and (parsed.hostname or "") not in {"localhost", "127.0.0.1"}:
        logger.warning("Refusing non-local http rest_url.")
        return None
    return url.rstrip("/")


def validate_key_prefix(value: Any, default: str) -> str:
    """Return *value* if it is a usable key prefix, else *default*."""
    if isinstance(value, str) and _KEY_PREFIX_RE.match(value):
        return value
    if value:
        logger.warning(f"Ignoring invalid key prefix {value!r}; using {default!r}")
    return default
