"""Tests for mcp_auto_install.utils.retry."""

from unittest.mock import AsyncMock, patch

import pytest

from mcp_auto_install.utils.retry import async_retry


class TestAsyncRetry:
    """Tests for the fixed-delay retry decorator."""

    @pytest.mark.asyncio
    async def test_succeeds_first_try(self):
        calls = AsyncMock(return_value="ok")

        @async_retry(max_attempts=3, delay=0)
        async def operation():
            return await calls()

        assert await operation() == "ok"
        assert calls.await_count == 1

    @pytest.mark.asyncio
    async def test_retries_with_fixed_delay(self):
        """Test the same delay is used between every attempt."""
        calls = AsyncMock(side_effect=[ValueError("1"), ValueError("2"), "ok"])

        @async_retry(max_attempts=3, delay=1.0, exceptions=(ValueError,))
        async def operation():
            return await calls()

        with patch("mcp_auto_install.utils.retry.asyncio.sleep", new=AsyncMock()) as sleep:
            assert await operation() == "ok"

        assert [call.args[0] for call in sleep.await_args_list] == [1.0, 1.0]

    @pytest.mark.asyncio
    async def test_raises_last_error(self):
        calls = AsyncMock(side_effect=[ValueError("first"), ValueError("last")])

        @async_retry(max_attempts=2, delay=0, exceptions=(ValueError,))
        async def operation():
            return await calls()

        with pytest.raises(ValueError, match="last"):
            await operation()

    @pytest.mark.asyncio
    async def test_other_exceptions_propagate_immediately(self):
        calls = AsyncMock(side_effect=KeyError("nope"))

        @async_retry(max_attempts=3, delay=0, exceptions=(ValueError,))
        async def operation():
            return await calls()

        with pytest.raises(KeyError):
            await operation()
        assert calls.await_count == 1
