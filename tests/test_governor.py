"""
Unit tests for the RPC governor.

Tests:
- Exponential backoff on rate-limit errors
- Error counter reset on success
- Non-rate-limit errors propagate without retry
- Cooldown spacing between calls
"""

import asyncio
import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

# Add parent to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from copytx.rpc.governor import RPCError, RPCExhausted, RPCGovernor, is_rate_limit_error


class RateLimited(Exception):
    pass


class HTTPStatusError(Exception):
    """Stand-in for an HTTP client error carrying a response."""

    def __init__(self, status_code):
        super().__init__(f"HTTP error {status_code}")
        self.response = MagicMock(status_code=status_code)


class TestRateLimitDetection:
    """Test recognition of rate-limit errors."""

    def test_429_in_message(self):
        assert is_rate_limit_error(Exception("HTTP 429 Too Many Requests"))

    def test_rate_limit_text(self):
        assert is_rate_limit_error(Exception("Rate limit exceeded"))

    def test_wrapped_cause(self):
        """Client libraries wrap the HTTP error; the cause is checked too."""
        try:
            try:
                raise HTTPStatusError(429)
            except HTTPStatusError as inner:
                raise RPCError("getBalance failed") from inner
        except RPCError as e:
            assert is_rate_limit_error(e)

    def test_status_code_on_rpc_error(self):
        assert is_rate_limit_error(RPCError("getTransaction RPC error (429): slow down", status_code=429))

    def test_digits_in_signature_not_rate_limit(self):
        """A signature containing 429 in an on-chain failure is not a rate limit."""
        error = RPCError("Transaction 3xK429Fq7mZ failed on-chain: InstructionError")
        assert not is_rate_limit_error(error)

    def test_other_http_status(self):
        assert not is_rate_limit_error(HTTPStatusError(503))

    def test_other_error(self):
        assert not is_rate_limit_error(ValueError("invalid signature"))


class TestBackoff:
    """Test exponential backoff on rate-limit errors."""

    def test_backoff_capped(self):
        governor = RPCGovernor(backoff_base=1.0, backoff_cap=30.0)
        assert governor.backoff_for(1) == 2.0
        assert governor.backoff_for(4) == 16.0
        assert governor.backoff_for(5) == 30.0
        assert governor.backoff_for(10) == 30.0

    def test_retries_then_exhausted(self):
        """Waits 0.2, 0.4, 0.8 then raises after the fourth failure."""
        governor = RPCGovernor(cooldown=0, backoff_base=0.1, max_retries=3)
        operation = AsyncMock(side_effect=RateLimited("429 Too Many Requests"))

        with patch("copytx.rpc.governor.asyncio.sleep", new=AsyncMock()) as sleep:
            with pytest.raises(RPCExhausted) as exc_info:
                asyncio.run(governor.call(operation))

        waits = [c.args[0] for c in sleep.await_args_list]
        assert waits == pytest.approx([0.2, 0.4, 0.8])
        assert operation.await_count == 4
        assert exc_info.value.attempts == 4

    def test_success_resets_error_count(self):
        governor = RPCGovernor(cooldown=0, backoff_base=0.1, max_retries=3)
        operation = AsyncMock(side_effect=[RateLimited("Too Many Requests"), RateLimited("Too Many Requests"), "ok"])

        with patch("copytx.rpc.governor.asyncio.sleep", new=AsyncMock()):
            result = asyncio.run(governor.call(operation))

        assert result == "ok"
        assert governor.state.consecutive_error_count == 0

    def test_other_errors_not_retried(self):
        governor = RPCGovernor(cooldown=0)
        operation = AsyncMock(side_effect=ValueError("bad params"))

        with patch("copytx.rpc.governor.asyncio.sleep", new=AsyncMock()) as sleep:
            with pytest.raises(ValueError):
                asyncio.run(governor.call(operation))

        assert operation.await_count == 1
        assert governor.state.consecutive_error_count == 0
        sleep.assert_not_awaited()

    def test_sync_operation(self):
        governor = RPCGovernor(cooldown=0)
        assert asyncio.run(governor.call(lambda x: x * 2, 21)) == 42


class TestCooldown:
    """Test minimum spacing between calls."""

    def test_second_call_waits_for_cooldown(self):
        now = [100.0]
        governor = RPCGovernor(cooldown=2.0, clock=lambda: now[0])
        operation = AsyncMock(return_value="ok")

        async def two_calls():
            await governor.call(operation)
            now[0] += 0.5
            await governor.call(operation)

        with patch("copytx.rpc.governor.asyncio.sleep", new=AsyncMock()) as sleep:
            asyncio.run(two_calls())

        sleep.assert_awaited_once()
        assert sleep.await_args.args[0] == pytest.approx(1.5)
        assert governor.total_calls == 2

    def test_no_wait_after_cooldown_elapsed(self):
        now = [100.0]
        governor = RPCGovernor(cooldown=2.0, clock=lambda: now[0])
        operation = AsyncMock(return_value="ok")

        async def two_calls():
            await governor.call(operation)
            now[0] += 5.0
            await governor.call(operation)

        with patch("copytx.rpc.governor.asyncio.sleep", new=AsyncMock()) as sleep:
            asyncio.run(two_calls())

        sleep.assert_not_awaited()

    def test_concurrent_callers_share_cooldown(self):
        """Callers racing for the same slot are spaced one cooldown apart."""
        now = [100.0]
        waits = []
        call_times = []
        real_sleep = asyncio.sleep

        async def fake_sleep(delay):
            waits.append(delay)
            now[0] += delay
            await real_sleep(0)

        governor = RPCGovernor(cooldown=2.0, clock=lambda: now[0])

        async def operation():
            call_times.append(now[0])
            await real_sleep(0)
            return "ok"

        async def three_calls():
            return await asyncio.gather(
                governor.call(operation),
                governor.call(operation),
                governor.call(operation),
            )

        with patch("copytx.rpc.governor.asyncio.sleep", new=fake_sleep):
            results = asyncio.run(three_calls())

        assert results == ["ok", "ok", "ok"]
        assert call_times == [100.0, 102.0, 104.0]
        assert waits == [2.0, 2.0]
