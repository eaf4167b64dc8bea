"""Remote key-value store adapter (Upstash-style Redis over REST).

Zero knowledge of collections; pure key/value commands. Every command is
a JSON array POSTed to the endpoint (``["SET", key, value]``); a pipeline
is an array of such arrays POSTed to ``<url>/pipeline``. Responses are
``{"result": ...}`` or ``{"error": "..."}``.

Values are JSON-encoded on write. On read, some proxies hand back already
decoded structures and others the raw JSON text, so every read goes
through ``decode_value``.
"""

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

import httpx

from tvsync.protocols import PipelineError, RemoteStoreError, SerializationError
from tvsync.retry import DEFAULT_BASE_DELAY, DEFAULT_MAX_ATTEMPTS, with_retry

logger = logging.getLogger(__name__)

Command = List[Any]


# === Keys ===


def user_key(prefix: str, user_id: str, collection: str, sub_id: Optional[str] = None) -> str:
    """Build ``<prefix>:u:<userId>:<collection>[:<subId>]``."""
    key = f"{prefix}:u:{user_id}:{collection}"
    if sub_id is not None:
        key = f"{key}:{sub_id}"
    return key


# === Payload codec ===


def encode_value(value: Any) -> str:
    """Serialize *value* to JSON text for storage."""
    try:
        return json.dumps(value, ensure_ascii=False, separators=(",", ":"))
    except (TypeError, ValueError) as e:
        raise SerializationError(f"Value is not JSON-serializable: {e}") from e


def decode_value(raw: Any, *, key: Optional[str] = None) -> Any:
    """Decode a stored value into a single well-typed shape.

    Structured values pass through unchanged. Strings are parsed as JSON.
    Anything undecodable is logged and treated as absent (``None``).
    """
    if raw is None:
        return None
    if not isinstance(raw, (str, bytes)):
        return raw
    try:
        return json.loads(raw)
    except ValueError as e:
        err = SerializationError(f"Malformed payload at {key or '<unknown>'}: {e}")
        logger.warning(str(err))
        return None


def set_command(key: str, value: Any) -> Command:
    return ["SET", key, encode_value(value)]


def del_command(key: str) -> Command:
    return ["DEL", key]


# === Adapter ===


class RemoteStore:
    """Async adapter over the REST key-value API.

    All operations go through ``with_retry``. One instance (and one
    underlying ``httpx.AsyncClient``) is shared by every engine component.

    Args:
        rest_url: Endpoint base URL.
        rest_token: Bearer token.
        client: Optional pre-built client (tests pass one backed by
            ``httpx.MockTransport``). A passed client is not closed by
            ``aclose``.
        timeout: Per-request timeout in seconds.
        max_attempts: Retry budget per operation.
        base_delay: Linear backoff step in seconds.
        sleep: Awaitable sleep used for backoff.
    """

    def __init__(
        self,
        rest_url: str,
        rest_token: str,
        *,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        base_delay: float = DEFAULT_BASE_DELAY,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.rest_url = rest_url.rstrip("/")
        self._rest_token = rest_token
        self._client = client
        self._owns_client = client is None
        self._timeout = timeout
        self._max_attempts = max_attempts
        self._base_delay = base_delay
        self._sleep = sleep

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout),
                limits=httpx.Limits(max_keepalive_connections=5, max_connections=10),
            )
            self._owns_client = True
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client and not self._client.is_closed:
            await self._client.aclose()

    # ---- transport ----

    async def _post(self, path: str, payload: Any) -> Any:
        """POST one request and return the decoded JSON body."""
        url = f"{self.rest_url}{path}"
        response = await self._get_client().post(
            url,
            json=payload,
            headers={"Authorization": f"Bearer {self._rest_token}"},
        )

        if response.status_code in (401, 403):
            raise RemoteStoreError(
                f"Remote store rejected credentials (HTTP {response.status_code})",
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError as e:
            raise RemoteStoreError(
                f"Malformed response from remote store (HTTP {response.status_code})",
                status_code=response.status_code,
            ) from e

        if isinstance(body, dict) and body.get("error"):
            raise RemoteStoreError(str(body["error"]), status_code=response.status_code)
        if response.status_code >= 400:
            raise RemoteStoreError(
                f"Remote store returned HTTP {response.status_code}",
                status_code=response.status_code,
            )
        return body

    async def _command(self, command: Command) -> Any:
        body = await self._post("", command)
        if not isinstance(body, dict) or "result" not in body:
            raise RemoteStoreError(f"Unexpected response shape for {command[0]}")
        return body["result"]

    async def _run(self, command: Command) -> Any:
        return await with_retry(
            lambda: self._command(command),
            self._max_attempts,
            base_delay=self._base_delay,
            label=f"remote {command[0]}",
            sleep=self._sleep,
        )

    # ---- key/value operations ----

    async def ping(self) -> Any:
        """Liveness probe; healthy stores answer ``"PONG"``."""
        return await self._run(["PING"])

    async def get(self, key: str) -> Any:
        """Return the decoded value at *key*, or None if absent/undecodable."""
        raw = await self._run(["GET", key])
        return decode_value(raw, key=key)

    async def set(self, key: str, value: Any) -> bool:
        result = await self._run(set_command(key, value))
        return result == "OK"

    async def delete(self, *keys: str) -> int:
        """Delete *keys*; return how many existed."""
        if not keys:
            return 0
        result = await self._run(["DEL", *keys])
        return int(result or 0)

    async def list_keys(self, pattern: str) -> List[str]:
        """Glob-style key enumeration (``*`` wildcard)."""
        result = await self._run(["KEYS", pattern])
        if not isinstance(result, list):
            raise RemoteStoreError("KEYS returned a non-list result")
        return [str(k) for k in result]

    async def multi_get(self, keys: Sequence[str]) -> List[Any]:
        """Decoded values for *keys*, in order; missing entries are None."""
        if not keys:
            return []
        result = await self._run(["MGET", *keys])
        if not isinstance(result, list):
            raise RemoteStoreError("MGET returned a non-list result")
        return [decode_value(raw, key=k) for k, raw in zip(keys, result)]

    async def pipeline(self, commands: Sequence[Command]) -> List[Any]:
        """Send independent commands in one round trip.

        Not transactional. If any command fails, the others may already
        have been applied; a PipelineError carries every per-command entry.

        Returns:
            The ``result`` of each command in request order.
        """
        if not commands:
            return []
        payload = [list(c) for c in commands]

        async def send() -> List[Any]:
            body = await self._post("/pipeline", payload)
            if not isinstance(body, list) or len(body) != len(payload):
                raise RemoteStoreError("Pipeline response does not match request length")
            return body

        entries: List[Dict[str, Any]] = await with_retry(
            send,
            self._max_attempts,
            base_delay=self._base_delay,
            label="remote pipeline",
            sleep=self._sleep,
        )

        failed = [e for e in entries if isinstance(e, dict) and e.get("error")]
        if failed:
            raise PipelineError(
                f"{len(failed)}/{len(entries)} pipeline commands failed: {failed[0]['error']}",
                results=entries,
            )
        return [e.get("result") if isinstance(e, dict) else e for e in entries]
