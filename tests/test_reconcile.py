"""Tests for tvsync.reconcile.ReconciliationEngine."""

import contextlib
from unittest.mock import AsyncMock, MagicMock

import pytest

from tvsync.reconcile import ReconciliationEngine
from tvsync.repository import SyncRepository
from tvsync.state import InMemoryCollection, SyncCollections
from tvsync.types import CollectionKind

USER = "user_abc"


def rkey(collection):
    return f"ouonnki-tv:u:{USER}:{collection}"


@pytest.fixture
def repo(store):
    return SyncRepository(store, USER)


class TestPull:
    @pytest.mark.asyncio
    async def test_empty_remote_changes_nothing(self, repo, collections):
        """Should leave local state alone when remote is empty."""
        collections.video_sources.replace_snapshot([{"id": "local"}])
        collections.search_history.replace_snapshot([{"content": "q"}])

        result = await ReconciliationEngine(repo, collections).pull()

        assert result.success
        assert result.applied == []
        assert collections.video_sources.get_snapshot() == [{"id": "local"}]
        assert collections.search_history.get_snapshot() == [{"content": "q"}]

    @pytest.mark.asyncio
    async def test_applies_each_policy(self, repo, collections, fake_upstash):
        """Should apply each collection's merge policy."""
        collections.video_sources.replace_snapshot([{"id": "a", "v": 1}, {"id": "l"}])
        collections.settings.replace_snapshot({"network": {"n": 1}, "theme": "dark"})
        collections.viewing_history.replace_snapshot([{"sourceCode": "s", "vodId": "old"}])

        fake_upstash.put(rkey("sources"), [{"id": "a", "v": 2}, {"id": "r"}])
        fake_upstash.put(rkey("pr:s_1"), {"sourceCode": "s", "vodId": "1", "timestamp": 1})
        fake_upstash.put(rkey("pr:s_2"), {"sourceCode": "s", "vodId": "2", "timestamp": 2})
        fake_upstash.put(rkey("search:history"), [{"content": "remote"}])
        fake_upstash.put(rkey("settings"), {"playback": {"p": 1}})
        fake_upstash.put(rkey("search:cache"), {"q": [1]})

        result = await ReconciliationEngine(repo, collections).pull()

        assert set(result.applied) == set(CollectionKind)
        assert result.pulled == 5
        assert collections.video_sources.get_snapshot() == [
            {"id": "a", "v": 2},
            {"id": "r"},
            {"id": "l"},
        ]
        assert [r["vodId"] for r in collections.viewing_history.get_snapshot()] == ["2", "1"]
        assert collections.search_history.get_snapshot() == [{"content": "remote"}]
        assert collections.settings.get_snapshot() == {
            "network": {"n": 1},
            "playback": {"p": 1},
            "theme": "dark",
        }
        assert collections.search_cache.get_snapshot() == {"q": [1]}

    @pytest.mark.asyncio
    async def test_settings_without_groups_skipped(self, repo, collections, fake_upstash):
        """Should skip settings with no known groups."""
        collections.settings.replace_snapshot({"system": {"s": 1}})
        fake_upstash.put(rkey("settings"), {"unknown": 1})

        result = await ReconciliationEngine(repo, collections).pull()

        assert CollectionKind.SETTINGS in result.skipped
        assert collections.settings.get_snapshot() == {"system": {"s": 1}}

    @pytest.mark.asyncio
    async def test_pull_is_idempotent(self, repo, collections, fake_upstash):
        """Should give the same state when pulled twice."""
        collections.video_sources.replace_snapshot([{"id": "l"}])
        fake_upstash.put(rkey("sources"), [{"id": "r"}])
        engine = ReconciliationEngine(repo, collections)

        await engine.pull()
        first = collections.video_sources.get_snapshot()
        await engine.pull()
        assert collections.video_sources.get_snapshot() == first

    @pytest.mark.asyncio
    async def test_one_failure_does_not_block_others(self, repo, collections, fake_upstash):
        """Should apply the other collections when one fetch fails."""
        fake_upstash.put(rkey("sources"), {"not": "a list"})
        fake_upstash.put(rkey("search:history"), [{"content": "remote"}])

        result = await ReconciliationEngine(repo, collections).pull()

        assert not result.success
        assert CollectionKind.VIDEO_SOURCES in result.errors
        assert collections.search_history.get_snapshot() == [{"content": "remote"}]

    @pytest.mark.asyncio
    async def test_malformed_payload_treated_as_absent(self, repo, collections, fake_upstash):
        """Should treat an undecodable payload as absent."""
        collections.search_history.replace_snapshot([{"content": "local"}])
        fake_upstash.data[rkey("search:history")] = "{broken"

        result = await ReconciliationEngine(repo, collections).pull()

        assert result.success
        assert collections.search_history.get_snapshot() == [{"content": "local"}]

    @pytest.mark.asyncio
    async def test_only_present_collections_fetched(self):
        """Should fetch only the collections that were supplied."""
        repo = MagicMock(spec=SyncRepository)
        repo.fetch = AsyncMock(return_value=[{"content": "x"}])
        collections = SyncCollections(search_history=InMemoryCollection("search_history", []))

        result = await ReconciliationEngine(repo, collections).pull()

        repo.fetch.assert_awaited_once_with(CollectionKind.SEARCH_HISTORY)
        assert result.applied == [CollectionKind.SEARCH_HISTORY]

    @pytest.mark.asyncio
    async def test_no_collections(self, repo):
        """Should return an empty result with no collections."""
        result = await ReconciliationEngine(repo, SyncCollections()).pull()
        assert result.success
        assert result.pulled == 0


class TestSuppression:
    @pytest.mark.asyncio
    async def test_apply_runs_inside_suppress_block(self, repo, collections, fake_upstash):
        """Should apply remote state inside the suppress block."""
        fake_upstash.put(rkey("search:history"), [{"content": "remote"}])
        active = []
        seen_while_notifying = []

        @contextlib.contextmanager
        def suppress():
            active.append(True)
            try:
                yield
            finally:
                active.pop()

        collections.search_history.subscribe(lambda _: seen_while_notifying.append(bool(active)))

        await ReconciliationEngine(repo, collections, suppress=suppress).pull()

        assert seen_while_notifying == [True]
        assert active == []
