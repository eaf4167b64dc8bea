"""Bounded, classified retry for remote calls.

Only transient connection failures are retried. Backoff is linear
(``attempt * base_delay``): the workload is a handful of small writes per
minute, so there is nothing to gain from exponential growth.
"""

import asyncio
import errno
import logging
import socket
from typing import Awaitable, Callable, Optional, TypeVar

import httpx

from tvsync.protocols import RemoteStoreError, SerializationError, SyncConnectionError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY = 1.0

_TRANSIENT_ERRNOS = frozenset({errno.ECONNREFUSED, errno.ECONNRESET, errno.EPIPE})

_TRANSIENT_MARKERS = (
    "connection",
    "econnrefused",
    "enotfound",
    "econnreset",
    "epipe",
    "name or service not known",
    "nodename nor servname",
)


def is_transient_error(error: BaseException) -> bool:
    """Classify *error* as transient (retry) or terminal (re-raise now).

    Transient: connection refused, host not found, connection reset,
    broken pipe, httpx network errors, or a message that names a
    connection problem. Protocol, auth and decode errors are terminal.
    """
    if isinstance(error, (RemoteStoreError, SerializationError)):
        return False
    if isinstance(error, SyncConnectionError):
        return True
    if isinstance(error, (httpx.NetworkError, httpx.ConnectTimeout)):
        return True
    if isinstance(
        error, (ConnectionRefusedError, ConnectionResetError, BrokenPipeError, socket.gaierror)
    ):
        return True
    if isinstance(error, OSError) and error.errno in _TRANSIENT_ERRNOS:
        return True

    message = str(error).lower()
    return any(marker in message for marker in _TRANSIENT_MARKERS)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    *,
    base_delay: float = DEFAULT_BASE_DELAY,
    label: Optional[str] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run *operation*, retrying transient failures.

    Args:
        operation: Zero-argument callable returning a fresh awaitable on
            each call.
        max_attempts: Total tries, including the first.
        base_delay: Seconds; the wait after attempt ``n`` is ``n * base_delay``.
        label: Name used in log lines.
        sleep: Awaitable sleep, injectable for tests.

    Returns:
        Whatever *operation* resolves to.

    Raises:
        The last error, when it is terminal or attempts are exhausted.
    """
    max_attempts = max(1, max_attempts)
    name = label or getattr(operation, "__name__", "operation")

    for attempt in range(1, max_attempts + 1):
        try:
            return await operation()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if not is_transient_error(e):
                raise
            if attempt >= max_attempts:
                logger.warning(f"{name} failed after {attempt} attempts: {e}")
                raise
            delay = attempt * base_delay
            logger.info(
                f"{name} failed with a connection error, retrying in {delay:.1f}s "
                f"({attempt}/{max_attempts}): {e}"
            )
            await sleep(delay)

    # Unreachable: the loop either returns or raises
    raise SyncConnectionError(f"{name}: retry attempts exhausted")
