"""
RPC governor for the trading path.

Every ledger read/write made by the trading components goes through one
shared RPCGovernor instance, which enforces a minimum interval between calls
and retries rate-limited calls with exponential backoff.
"""

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

RATE_LIMIT_MARKERS = ("too many requests", "rate limit", "rate-limit")
HTTP_TOO_MANY_REQUESTS = 429


class RPCError(Exception):
    """Ledger RPC call failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RPCExhausted(RPCError):
    """Rate-limited call still failing after the maximum number of retries."""

    def __init__(self, operation: str, attempts: int, last_error: Optional[BaseException] = None):
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"{operation} rate-limited after {attempts} attempts: {last_error}")


@dataclass
class RateState:
    """Throttle state shared by every caller of a governor."""
    last_call_at: float = 0.0
    consecutive_error_count: int = 0


def is_rate_limit_error(error: BaseException) -> bool:
    """
    Check whether an exception signals an RPC rate limit.

    Walks the cause chain, since client libraries often wrap the
    underlying HTTP error. An HTTP 429 status matches anywhere in the
    chain; message text only matches on an explicit phrase, never on a
    bare "429" (signatures and addresses can contain those digits).
    """
    current: Optional[BaseException] = error
    while current is not None:
        if getattr(current, "status_code", None) == HTTP_TOO_MANY_REQUESTS:
            return True
        status = getattr(getattr(current, "response", None), "status_code", None)
        if status == HTTP_TOO_MANY_REQUESTS:
            return True

        text = str(current).lower()
        if any(marker in text for marker in RATE_LIMIT_MARKERS):
            return True

        current = current.__cause__

    return False


class RPCGovernor:
    """
    Throttles and retries RPC calls.

    - Calls are spaced by at least `cooldown` seconds; callers wait in turn.
    - Rate-limit errors are retried after min(base * 2^n, cap) seconds, where
      n is the shared consecutive error count, up to `max_retries` retries.
    - Any other error propagates immediately.
    """

    def __init__(
        self,
        cooldown: float = 2.0,
        backoff_base: float = 1.0,
        backoff_cap: float = 30.0,
        max_retries: int = 10,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize governor.

        Args:
            cooldown: Minimum seconds between calls
            backoff_base: Base backoff in seconds
            backoff_cap: Maximum backoff in seconds
            max_retries: Retries allowed for a rate-limited call
            clock: Monotonic clock (injectable for tests)
        """
        self.cooldown = cooldown
        self.backoff_base = backoff_base
        self.backoff_cap = backoff_cap
        self.max_retries = max_retries
        self.state = RateState()
        self._clock = clock
        self._lock = asyncio.Lock()
        self.total_calls = 0

    @classmethod
    def from_config(cls, config) -> "RPCGovernor":
        return cls(
            cooldown=config.rpc_cooldown,
            backoff_base=config.rpc_backoff_base,
            backoff_cap=config.rpc_backoff_cap,
            max_retries=config.rpc_max_retries,
        )

    def backoff_for(self, error_count: int) -> float:
        return min(self.backoff_base * (2 ** error_count), self.backoff_cap)

    async def _wait_for_slot(self) -> None:
        # Lock is held across the sleep so that two callers cannot both pass
        # the cooldown check for the same slot.
        async with self._lock:
            elapsed = self._clock() - self.state.last_call_at
            if elapsed < self.cooldown:
                await asyncio.sleep(self.cooldown - elapsed)
            self.state.last_call_at = self._clock()
            self.total_calls += 1

    async def call(self, operation: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """
        Run an RPC operation under the throttle.

        Args:
            operation: Callable returning an awaitable (or a plain value)
            *args, **kwargs: Passed through to the operation

        Returns:
            The operation's result

        Raises:
            RPCExhausted: Rate-limited beyond max_retries
        """
        name = getattr(operation, "__name__", repr(operation))
        retries = 0

        while True:
            await self._wait_for_slot()

            try:
                result = operation(*args, **kwargs)
                if inspect.isawaitable(result):
                    result = await result
            except Exception as e:
                if not is_rate_limit_error(e):
                    raise

                async with self._lock:
                    self.state.consecutive_error_count += 1
                    error_count = self.state.consecutive_error_count

                if retries >= self.max_retries:
                    logger.error(f"[RPC] {name} exhausted {self.max_retries} retries: {e}")
                    raise RPCExhausted(name, retries + 1, e) from e

                delay = self.backoff_for(error_count)
                logger.warning(
                    f"[RPC] Rate limit hit on {name}. Backing off for {delay * 1000:.0f}ms "
                    f"(retry {retries + 1}/{self.max_retries})"
                )
                await asyncio.sleep(delay)
                retries += 1
                continue

            async with self._lock:
                self.state.consecutive_error_count = 0
            return result
