"""Tests for the tvsync command-line interface."""

import json
from unittest.mock import MagicMock

import pytest

from tvsync.cli import __main__ as cli_main
from tvsync.identity import hash_user_id


@pytest.fixture(autouse=True)
def quiet_logging(monkeypatch):
    monkeypatch.setattr(cli_main, "setup_tvsync_logging", MagicMock())


@pytest.fixture
def configured(monkeypatch, store_factory):
    monkeypatch.setenv("TVSYNC_REST_URL", "https://fake-store.example.com")
    monkeypatch.setenv("TVSYNC_REST_TOKEN", "test-token")
    monkeypatch.setattr(cli_main, "_make_store", lambda config: store_factory())


class TestWhoami:
    def test_unconfigured(self, capsys):
        """Should print a random user id and say no remote store is set."""
        assert cli_main.main(["whoami"]) == 0
        out = capsys.readouterr().out
        assert "User ID: user_" in out
        assert "Remote store not configured" in out

    def test_json_with_credentials(self, capsys, monkeypatch):
        """Should emit the hashed user id as JSON without leaking the secret."""
        monkeypatch.setenv("TVSYNC_USERNAME", "alice")
        monkeypatch.setenv("TVSYNC_SECRET", "pw")
        assert cli_main.main(["whoami", "--json"]) == 0
        data = json.loads(capsys.readouterr().out)
        assert data["user_id"] == hash_user_id("alice", "pw")
        assert data["configured"] is False
        assert "secret" not in data


class TestCheck:
    def test_unconfigured_fails(self, capsys):
        """Should exit non-zero when nothing is configured."""
        assert cli_main.main(["check"]) == 1
        assert "Not connected" in capsys.readouterr().out

    def test_connected(self, configured, capsys):
        """Should report a healthy store and exit zero."""
        assert cli_main.main(["check"]) == 0
        assert "Connected to remote store" in capsys.readouterr().out

    def test_json(self, configured, capsys):
        """Should print the connection state as JSON."""
        assert cli_main.main(["check", "--json"]) == 0
        data = json.loads(capsys.readouterr().out)
        assert data["status"] == "connected"
        assert data["error"] is None

    def test_store_down(self, configured, fake_upstash, capsys):
        """Should exit non-zero when the store is unreachable."""
        fake_upstash.down = True
        assert cli_main.main(["check"]) == 1


class TestRoundTrip:
    def test_success_leaves_no_keys(self, configured, fake_upstash, capsys):
        """Should write, read and delete the scratch key."""
        assert cli_main.main(["test"]) == 0
        out = capsys.readouterr().out
        assert "round-trip OK" in out
        assert fake_upstash.data == {}
        assert [c[0] for c in fake_upstash.commands] == ["SET", "GET", "DEL"]

    def test_unconfigured(self, capsys):
        """Should fail fast without a configured store."""
        assert cli_main.main(["test"]) == 1
        assert "configured" in capsys.readouterr().out

    def test_write_rejected(self, configured, fake_upstash, capsys):
        """Should report a rejected write as a failed round trip."""
        fake_upstash.fail_patterns.add("ouonnki-tv:test:")
        assert cli_main.main(["test"]) == 1
        assert "Round-trip failed" in capsys.readouterr().out


class TestDump:
    def test_dump_all(self, configured, fake_upstash, capsys):
        """Should print every collection keyed by name."""
        user_id = cli_main.derive_user_id(cli_main.load_sync_config().credentials)
        fake_upstash.put(f"ouonnki-tv:u:{user_id}:sources", [{"id": "a"}])

        assert cli_main.main(["dump"]) == 0
        data = json.loads(capsys.readouterr().out)
        assert data["video_sources"] == [{"id": "a"}]
        assert data["viewing_history"] == []
        assert set(data) == {
            "video_sources",
            "viewing_history",
            "search_history",
            "settings",
            "search_cache",
        }

    def test_dump_single_collection(self, configured, capsys):
        """Should limit output to the requested collection."""
        assert cli_main.main(["dump", "--collection", "settings"]) == 0
        assert json.loads(capsys.readouterr().out) == {"settings": None}

    def test_shape_error_reported_inline(self, configured, fake_upstash, capsys):
        """Should report a malformed collection inline and keep going."""
        user_id = cli_main.derive_user_id(cli_main.load_sync_config().credentials)
        fake_upstash.put(f"ouonnki-tv:u:{user_id}:settings", ["not", "an", "object"])

        assert cli_main.main(["dump", "-c", "settings"]) == 0
        data = json.loads(capsys.readouterr().out)
        assert "error" in data["settings"]

    def test_unconfigured(self, capsys):
        """Should exit non-zero without a configured store."""
        assert cli_main.main(["dump"]) == 1

    def test_store_down(self, configured, fake_upstash, capsys):
        """Should print a failure instead of a traceback when the store is unreachable."""
        fake_upstash.down = True
        assert cli_main.main(["dump"]) == 1
        assert "Dump failed" in capsys.readouterr().out


def test_requires_command():
    """Should exit through argparse when no subcommand is given."""
    with pytest.raises(SystemExit):
        cli_main.main([])
