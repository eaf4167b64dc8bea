"""
Pytest fixtures and test configuration for tvsync tests.

The remote store is an in-memory fake speaking the REST key-value
protocol, mounted on ``httpx.MockTransport`` so the real RemoteStore code
path (encoding, status handling, retry) runs end to end.
"""

import fnmatch
import json
import os
from typing import Any, Dict, List, Set

import httpx
import pytest

from tvsync.config import SyncConfig
from tvsync.identity import IdentityStore
from tvsync.remote import RemoteStore
from tvsync.state import SyncCollections
from tvsync.types import CollectionKind

REST_URL = "https://fake-store.example.com"
REST_TOKEN = "test-token"

FAST_DELAYS = {kind: 0.05 for kind in CollectionKind}


class FakeUpstash:
    """Tiny Redis-over-REST server backed by a dict."""

    def __init__(self):
        self.data: Dict[str, str] = {}
        self.requests: List[Any] = []
        self.commands: List[List[Any]] = []
        # Keys whose SET answers with a per-command error
        self.fail_keys: Set[str] = set()
        # Substrings: any command whose first key contains one errors
        self.fail_patterns: Set[str] = set()
        # Number of upcoming requests that fail at the connection level
        self.connection_failures = 0
        self.down = False
        self.token = REST_TOKEN

    # ---- helpers for assertions ----

    def value(self, key: str) -> Any:
        raw = self.data.get(key)
        return json.loads(raw) if raw is not None else None

    def put(self, key: str, value: Any) -> None:
        self.data[key] = json.dumps(value)

    def set_commands(self, key_fragment: str = "") -> List[List[Any]]:
        return [c for c in self.commands if c[0] == "SET" and key_fragment in c[1]]

    # ---- protocol ----

    def _execute(self, command: List[Any]) -> Dict[str, Any]:
        self.commands.append(command)
        name = str(command[0]).upper()
        args = command[1:]

        first = args[0] if args and isinstance(args[0], str) else ""
        for pattern in self.fail_patterns:
            if pattern in first:
                return {"error": f"ERR injected failure for {args[0]}"}

        if name == "PING":
            return {"result": "PONG"}
        if name == "GET":
            return {"result": self.data.get(args[0])}
        if name == "SET":
            if args[0] in self.fail_keys:
                return {"error": f"ERR injected failure for {args[0]}"}
            self.data[args[0]] = args[1]
            return {"result": "OK"}
        if name == "DEL":
            count = 0
            for key in args:
                if self.data.pop(key, None) is not None:
                    count += 1
            return {"result": count}
        if name == "KEYS":
            return {"result": [k for k in self.data if fnmatch.fnmatchcase(k, args[0])]}
        if name == "MGET":
            return {"result": [self.data.get(k) for k in args]}
        return {"error": f"ERR unknown command '{name}'"}

    def handler(self, request: httpx.Request) -> httpx.Response:
        if self.down or self.connection_failures > 0:
            if self.connection_failures > 0:
                self.connection_failures -= 1
            raise httpx.ConnectError("Connection refused", request=request)

        if request.headers.get("Authorization") != f"Bearer {self.token}":
            return httpx.Response(401, json={"error": "Unauthorized"})

        payload = json.loads(request.content)
        self.requests.append(payload)

        if request.url.path.endswith("/pipeline"):
            return httpx.Response(200, json=[self._execute(c) for c in payload])

        body = self._execute(payload)
        return httpx.Response(400 if "error" in body else 200, json=body)


async def no_sleep(_delay: float) -> None:
    return None


@pytest.fixture(autouse=True)
def tvsync_home(tmp_path, monkeypatch):
    """Isolate the data directory and strip TVSYNC_* settings from the env."""
    for name in list(os.environ):
        if name.startswith("TVSYNC_"):
            monkeypatch.delenv(name, raising=False)
    home = tmp_path / "tvsync-home"
    home.mkdir()
    monkeypatch.setenv("TVSYNC_DATA_DIR", str(home))
    # Keep a stray .env in the working directory out of the tests
    monkeypatch.chdir(tmp_path)
    return home


@pytest.fixture
def fake_upstash():
    return FakeUpstash()


def make_store(fake: FakeUpstash, max_attempts: int = 3) -> RemoteStore:
    client = httpx.AsyncClient(transport=httpx.MockTransport(fake.handler))
    return RemoteStore(
        REST_URL,
        REST_TOKEN,
        client=client,
        max_attempts=max_attempts,
        base_delay=0,
        sleep=no_sleep,
    )


@pytest.fixture
def store(fake_upstash):
    return make_store(fake_upstash)


@pytest.fixture
def sync_config():
    return SyncConfig(rest_url=REST_URL, rest_token=REST_TOKEN)


@pytest.fixture
def identity_store(tvsync_home):
    return IdentityStore(tvsync_home / "identity.json")


@pytest.fixture
def collections():
    return SyncCollections.in_memory()


@pytest.fixture
def store_factory(fake_upstash):
    """Build extra stores against the same fake (e.g. a different retry budget)."""

    def factory(max_attempts: int = 3) -> RemoteStore:
        return make_store(fake_upstash, max_attempts=max_attempts)

    return factory


@pytest.fixture
def fast_delays():
    return dict(FAST_DELAYS)
