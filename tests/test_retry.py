"""Tests for tvsync.retry module."""

import asyncio
import errno
import socket
from unittest.mock import AsyncMock

import httpx
import pytest

from tvsync.protocols import RemoteStoreError, SerializationError, SyncConnectionError
from tvsync.retry import is_transient_error, with_retry


class TestIsTransientError:
    @pytest.mark.parametrize(
        "error",
        [
            SyncConnectionError("down"),
            httpx.ConnectError("refused"),
            httpx.ConnectTimeout("slow"),
            ConnectionRefusedError(),
            ConnectionResetError(),
            BrokenPipeError(),
            socket.gaierror("Name or service not known"),
            OSError(errno.ECONNREFUSED, "refused"),
            Exception("getaddrinfo ENOTFOUND example.com"),
            Exception("Connection closed by peer"),
        ],
    )
    def test_transient(self, error):
        """Should classify connection failures as transient."""
        assert is_transient_error(error) is True

    @pytest.mark.parametrize(
        "error",
        [
            RemoteStoreError("Unauthorized connection", status_code=401),
            SerializationError("bad connection payload"),
            ValueError("bad input"),
            KeyError("missing"),
        ],
    )
    def test_terminal(self, error):
        """Should classify other errors as terminal."""
        assert is_transient_error(error) is False


class TestWithRetry:
    @pytest.mark.asyncio
    async def test_returns_first_success(self):
        """Should return at once on success."""
        op = AsyncMock(return_value="ok")
        sleep = AsyncMock()
        assert await with_retry(op, 3, sleep=sleep) == "ok"
        assert op.await_count == 1
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_succeeds_after_two_transient_failures(self):
        """Should succeed after two transient failures."""
        op = AsyncMock(
            side_effect=[SyncConnectionError("refused"), SyncConnectionError("refused"), "ok"]
        )
        sleep = AsyncMock()

        assert await with_retry(op, 3, sleep=sleep) == "ok"
        assert op.await_count == 3

    @pytest.mark.asyncio
    async def test_linear_backoff(self):
        """Should back off linearly between attempts."""
        op = AsyncMock(side_effect=[SyncConnectionError("x"), SyncConnectionError("x"), "ok"])
        sleep = AsyncMock()

        await with_retry(op, 3, base_delay=1.0, sleep=sleep)

        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_exhaustion_raises_last_error(self):
        """Should raise the last error after the final attempt."""
        errors = [SyncConnectionError(f"attempt {i}") for i in range(1, 4)]
        op = AsyncMock(side_effect=errors)

        with pytest.raises(SyncConnectionError, match="attempt 3"):
            await with_retry(op, 3, sleep=AsyncMock())
        assert op.await_count == 3

    @pytest.mark.asyncio
    async def test_terminal_error_not_retried(self):
        """Should not retry a terminal error."""
        op = AsyncMock(side_effect=RemoteStoreError("forbidden", status_code=403))
        sleep = AsyncMock()

        with pytest.raises(RemoteStoreError):
            await with_retry(op, 5, sleep=sleep)
        assert op.await_count == 1
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_max_attempts_below_one_still_tries_once(self):
        """Should still try once when max_attempts is below one."""
        op = AsyncMock(return_value=1)
        assert await with_retry(op, 0, sleep=AsyncMock()) == 1
        assert op.await_count == 1

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self):
        """Should let cancellation through without retrying."""
        op = AsyncMock(side_effect=asyncio.CancelledError())
        with pytest.raises(asyncio.CancelledError):
            await with_retry(op, 3, sleep=AsyncMock())
        assert op.await_count == 1
