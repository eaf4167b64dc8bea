"""
tvsync CLI - inspect and test cloud sync configuration.

Usage:
    tvsync whoami [--json]
    tvsync check [--json]
    tvsync test
    tvsync dump [--collection NAME]
"""

import argparse
import asyncio
import json
import logging
import sys
import uuid
from typing import List, Optional

from tvsync.config import SyncConfig, load_sync_config
from tvsync.identity import derive_user_id
from tvsync.logging_config import setup_tvsync_logging
from tvsync.monitor import ConnectionMonitor
from tvsync.protocols import ConfigurationError, TvSyncError
from tvsync.remote import RemoteStore
from tvsync.repository import SyncRepository
from tvsync.types import CollectionKind

logger = logging.getLogger(__name__)


def _make_store(config: SyncConfig) -> RemoteStore:
    config.require_remote()
    return RemoteStore(config.rest_url, config.rest_token, timeout=config.request_timeout)


def cmd_whoami(args, config: SyncConfig) -> int:
    """Show the derived user id and what is configured."""
    user_id = derive_user_id(config.credentials)
    if args.json:
        print(json.dumps({"user_id": user_id, **config.describe()}, indent=2))
        return 0

    print(f"User ID: {user_id}")
    source = "credentials" if config.credentials.complete else "random (persisted locally)"
    print(f"  Derived from: {source}")
    if config.is_configured:
        print(f"✓ Remote store: {config.rest_url}")
    else:
        print("✗ Remote store not configured")
        print("  Set TVSYNC_REST_URL and TVSYNC_REST_TOKEN or add credentials.json")
    print(f"  Key prefix: {config.key_prefix}")
    return 0


async def _check(config: SyncConfig):
    store = _make_store(config) if config.is_configured else None
    monitor = ConnectionMonitor(store)
    try:
        await monitor.check_connection()
    finally:
        if store is not None:
            await store.aclose()
    return monitor.state


def cmd_check(args, config: SyncConfig) -> int:
    """Ping the remote store once."""
    state = asyncio.run(_check(config))
    if args.json:
        print(
            json.dumps(
                {
                    "status": state.status.value,
                    "last_checked_at": state.last_checked_at,
                    "error": state.last_error,
                },
                indent=2,
                default=str,
            )
        )
    elif state.is_connected:
        print("✓ Connected to remote store")
    else:
        print(f"✗ Not connected: {state.last_error or 'unknown error'}")
    return 0 if state.is_connected else 1


async def _round_trip(config: SyncConfig) -> None:
    store = _make_store(config)
    key = f"{config.key_prefix}:test:{uuid.uuid4().hex[:12]}"
    value = {"test": True, "message": "tvsync round-trip"}
    try:
        if not await store.set(key, value):
            raise TvSyncError("SET was not acknowledged")
        print(f"✓ Wrote {key}")
        read_back = await store.get(key)
        if read_back != value:
            raise TvSyncError(f"Read back {read_back!r}, expected {value!r}")
        print("✓ Read back matches")
    finally:
        try:
            if await store.delete(key):
                print("✓ Deleted test key")
        finally:
            await store.aclose()


def cmd_test(args, config: SyncConfig) -> int:
    """Write, read and delete a scratch key."""
    try:
        asyncio.run(_round_trip(config))
    except ConfigurationError as e:
        print(f"✗ {e}")
        return 1
    except Exception as e:
        print(f"✗ Round-trip failed: {e}")
        return 1
    print("✓ Remote store round-trip OK")
    return 0


async def _dump(config: SyncConfig, kinds: List[CollectionKind]) -> dict:
    store = _make_store(config)
    repository = SyncRepository(store, derive_user_id(config.credentials), config.key_prefix)
    try:
        snapshot = {}
        for kind in kinds:
            try:
                snapshot[kind.value] = await repository.fetch(kind)
            except TvSyncError as e:
                snapshot[kind.value] = {"error": str(e)}
        return snapshot
    finally:
        await store.aclose()


def cmd_dump(args, config: SyncConfig) -> int:
    """Print the decoded remote snapshots as JSON."""
    kinds = [CollectionKind(args.collection)] if args.collection else list(CollectionKind)
    try:
        snapshot = asyncio.run(_dump(config, kinds))
    except ConfigurationError as e:
        print(f"✗ {e}")
        return 1
    except Exception as e:
        print(f"✗ Dump failed: {e}")
        return 1
    print(json.dumps(snapshot, indent=2, ensure_ascii=False, default=str))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tvsync",
        description="Cloud sync for streaming client state",
    )
    parser.add_argument("--log-level", default=None, help="Override the configured log level")

    subparsers = parser.add_subparsers(dest="command", required=True)

    p_whoami = subparsers.add_parser("whoami", help="Show user id and configuration")
    p_whoami.add_argument("--json", "-j", action="store_true")

    p_check = subparsers.add_parser("check", help="Ping the remote store")
    p_check.add_argument("--json", "-j", action="store_true")

    subparsers.add_parser("test", help="Write/read/delete round-trip on a scratch key")

    p_dump = subparsers.add_parser("dump", help="Print remote snapshots as JSON")
    p_dump.add_argument(
        "--collection",
        "-c",
        choices=[kind.value for kind in CollectionKind],
        help="Only this collection",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    config = load_sync_config()
    setup_tvsync_logging(level=args.log_level or config.log_level)

    if args.command == "whoami":
        return cmd_whoami(args, config)
    elif args.command == "check":
        return cmd_check(args, config)
    elif args.command == "test":
        return cmd_test(args, config)
    elif args.command == "dump":
        return cmd_dump(args, config)

    parser.print_help()
    return 2


if __name__ == "__main__":
    sys.exit(main())
