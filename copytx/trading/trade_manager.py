"""
Copy-trading pipeline.

Watches the target account's log stream and mirrors each qualifying swap
with a proportionally sized trade from the operator wallet.
"""

import asyncio
import logging
from collections import OrderedDict
from decimal import Decimal
from enum import Enum
from typing import AsyncIterable, Callable, Optional

from copytx.core.events import EventChannel, EventType
from copytx.core.models import ExecutionResult, TradeOrder, TradingStats
from copytx.core.utils import short_sig
from copytx.ingest.subscriptions import AccountLogStream, LogNotification
from copytx.ingest.transaction_parser import TransactionParser
from copytx.rpc.governor import RPCError
from copytx.trading.executor import ExecutionOptions, TransactionExecutor
from copytx.trading.jupiter import JupiterSwap, SwapBuildError
from copytx.trading.position_manager import PositionManager
from copytx.trading.wallet import WalletState

logger = logging.getLogger(__name__)

StreamFactory = Callable[[str], AsyncIterable[LogNotification]]


class MonitorState(str, Enum):
    IDLE = "idle"
    MONITORING = "monitoring"


def observed_price(order: TradeOrder) -> Optional[Decimal]:
    """Price of token_out in token_in units, as seen in the copied swap."""
    if order.token_out.amount == 0:
        return None
    return order.token_in.amount / order.token_out.amount


class TradeManager:
    """
    Turns target-account activity into trades.

    A reader task pulls notifications off the subscription into a queue; a
    worker task processes them one by one in arrival order, so a slow trade
    never stalls the subscription. Failures are isolated per event.
    """

    def __init__(
        self,
        parser: TransactionParser,
        wallet: WalletState,
        executor: TransactionExecutor,
        swap_builder: JupiterSwap,
        position_manager: Optional[PositionManager] = None,
        events: Optional[EventChannel] = None,
        stream_factory: Optional[StreamFactory] = None,
        ws_url: Optional[str] = None,
        max_retries: int = 10,
        retry_delay: float = 2.0,
        slippage_tolerance: Decimal = Decimal("0.005"),
        min_balance_to_copy: Decimal = Decimal("0.005"),
        confirm: bool = True,
        shutdown_timeout: float = 30.0,
        dedup_cache_size: int = 1000,
    ):
        self.parser = parser
        self.wallet = wallet
        self.executor = executor
        self.swap_builder = swap_builder
        self.position_manager = position_manager
        self.events = events or EventChannel("trades")
        self.stream_factory = stream_factory or (lambda account: AccountLogStream(ws_url, account))
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.slippage_tolerance = Decimal(slippage_tolerance)
        self.min_balance_to_copy = Decimal(min_balance_to_copy)
        self.confirm = confirm
        self.shutdown_timeout = shutdown_timeout

        self.state = MonitorState.IDLE
        self.target_account: Optional[str] = None
        self.stats = TradingStats()

        self._queue: Optional[asyncio.Queue] = None
        self._reader: Optional[asyncio.Task] = None
        self._worker: Optional[asyncio.Task] = None

        # Signature deduplication cache
        self._seen: "OrderedDict[str, None]" = OrderedDict()
        self._dedup_cache_size = dedup_cache_size

    @classmethod
    def from_config(cls, config, **components) -> "TradeManager":
        return cls(
            ws_url=config.ws_url,
            max_retries=config.max_retries,
            retry_delay=config.retry_delay,
            slippage_tolerance=config.slippage_tolerance,
            min_balance_to_copy=config.min_balance_to_copy,
            confirm=config.confirm_transactions,
            shutdown_timeout=config.shutdown_timeout,
            **components,
        )

    @property
    def is_monitoring(self) -> bool:
        return self.state == MonitorState.MONITORING

    async def start_monitoring(self, target_account: str) -> None:
        """Subscribe to the target's activity. Starting twice is a no-op."""
        if self.is_monitoring:
            logger.info("[TRADE] Already monitoring transactions")
            return

        self.target_account = target_account
        stream = self.stream_factory(target_account)
        queue: asyncio.Queue = asyncio.Queue()

        self._queue = queue
        self.state = MonitorState.MONITORING
        self._reader = asyncio.create_task(self._read(stream, queue), name="trade-reader")
        self._worker = asyncio.create_task(self._work(queue), name="trade-worker")

        logger.info(f"[TRADE] Starting to monitor wallet: {target_account}")
        self._emit_status()

    async def stop_monitoring(self) -> None:
        """
        Unsubscribe and stop processing. Idempotent.

        Queued events are dropped. An event already being executed is
        allowed to finish; if it outlasts shutdown_timeout a warning is logged.
        """
        if not self.is_monitoring:
            return

        self.state = MonitorState.IDLE

        reader, self._reader = self._reader, None
        if reader is not None:
            reader.cancel()
            await asyncio.gather(reader, return_exceptions=True)

        queue, self._queue = self._queue, None
        if queue is not None:
            queue.put_nowait(None)

        worker, self._worker = self._worker, None
        if worker is not None:
            _, pending = await asyncio.wait({worker}, timeout=self.shutdown_timeout)
            if pending:
                logger.warning(
                    f"[TRADE] In-flight trade still running after {self.shutdown_timeout}s; "
                    f"leaving it to finish in the background"
                )

        logger.info("[TRADE] Stopped monitoring transactions")
        self._emit_status()

    def _remember(self, signature: str) -> bool:
        """Record a signature. Returns False if it was already seen."""
        if signature in self._seen:
            return False
        self._seen[signature] = None
        if len(self._seen) > self._dedup_cache_size:
            self._seen.popitem(last=False)
        return True

    async def _read(self, stream: AsyncIterable[LogNotification], queue: asyncio.Queue) -> None:
        try:
            async for notification in stream:
                if notification.err is not None:
                    continue
                if not self._remember(notification.signature):
                    logger.info(f"[TRADE] Skipping duplicate signature: {short_sig(notification.signature)}")
                    continue
                queue.put_nowait(notification.signature)
        except Exception as e:
            logger.error(f"[TRADE] Subscription stream failed: {e}", exc_info=True)

    async def _work(self, queue: asyncio.Queue) -> None:
        while True:
            signature = await queue.get()
            if signature is None or queue is not self._queue:
                return

            try:
                await self.handle_event(signature)
            except Exception as e:
                logger.error(f"[TRADE] Error handling {short_sig(signature)}: {e}", exc_info=True)
                self._emit_failure(None, str(e), signature)

    async def handle_event(self, signature: str) -> Optional[ExecutionResult]:
        """
        Process one observed transaction.

        Returns:
            ExecutionResult if a trade was attempted, None if skipped
        """
        try:
            parsed = await self.parser.parse(signature)
        except RPCError as e:
            logger.error(f"[TRADE] Could not fetch {short_sig(signature)}: {e}")
            self._emit_failure(None, str(e), signature)
            return None

        swap = self.parser.classify_swap(parsed, owner=self.target_account)
        if swap is None:
            logger.debug(f"[TRADE] Not a swap: {short_sig(signature)}")
            return None

        if swap.token_in.amount < self.min_balance_to_copy:
            logger.info(f"[TRADE] Observed amount {swap.token_in.amount} below copy threshold, skipping")
            return None

        try:
            await self.wallet.refresh_balance()
            amount = self.wallet.size_trade(swap.token_in.amount)

            if amount < self.wallet.min_trade_size:
                logger.info(f"[TRADE] Balance cap {amount} below minimum trade size, skipping")
                return None

            viable = await self.wallet.check_trade(amount)
        except RPCError as e:
            logger.error(f"[TRADE] Balance check failed for {short_sig(signature)}: {e}")
            self._emit_failure(None, str(e), signature)
            return None

        if not viable:
            logger.info(f"[TRADE] Insufficient balance for trade: {amount}")
            return None

        order = TradeOrder(
            token_in=swap.token_in,
            token_out=swap.token_out,
            amount=amount,
            slippage_tolerance=self.slippage_tolerance,
            source_signature=signature,
        )
        logger.info(
            f"[TRADE] Copying {short_sig(signature)}: {amount} of "
            f"{short_sig(order.token_in.mint, 8)} -> {short_sig(order.token_out.mint, 8)}"
        )
        return await self.execute_with_retry(order)

    async def execute_with_retry(self, order: TradeOrder) -> ExecutionResult:
        """
        Execute an order, retrying with a fixed delay.

        Viability is re-checked before every retry. Final failure is
        published as a trade_failed event, never raised.
        """
        result = ExecutionResult(success=False, error="Not attempted", attempts=0)

        for attempt in range(1, self.max_retries + 1):
            if attempt > 1:
                await asyncio.sleep(self.retry_delay)

            try:
                if attempt > 1 and not await self.wallet.check_trade(order.amount):
                    result = ExecutionResult(success=False, error="Insufficient balance", attempts=attempt)
                    break

                instructions, signers = await self.swap_builder.build(order, self.wallet.keypair)
            except (SwapBuildError, RPCError) as e:
                logger.warning(f"[TRADE] Attempt {attempt}/{self.max_retries} could not build trade: {e}")
                result = ExecutionResult(success=False, error=str(e), attempts=attempt)
                continue

            result = await self.executor.execute(instructions, signers, ExecutionOptions(confirm=self.confirm))
            result.attempts = attempt

            if result.success:
                await self._on_success(order, result)
                return result

            logger.warning(f"[TRADE] Attempt {attempt}/{self.max_retries} failed: {result.error}")

        self.stats.total_trades += 1
        self.stats.failed_trades += 1
        self._emit_failure(order, result.error, order.source_signature, result.attempts)
        return result

    async def _on_success(self, order: TradeOrder, result: ExecutionResult) -> None:
        self.stats.total_trades += 1
        self.stats.successful_trades += 1
        self.stats.total_volume += order.amount

        try:
            await self.wallet.refresh_balance()
        except RPCError as e:
            logger.warning(f"[TRADE] Could not refresh balance after trade: {e}")

        logger.info(f"[TRADE] ✓ Trade executed: {result.signature} ({order.amount})")
        self.events.emit(EventType.TRADE_EXECUTED, {
            "signature": result.signature,
            "source_signature": order.source_signature,
            "token_in": order.token_in.mint,
            "token_out": order.token_out.mint,
            "amount": str(order.amount),
            "attempts": result.attempts,
            "stats": self.stats.to_dict(),
        })

        price = observed_price(order)
        if self.position_manager is not None and price is not None:
            try:
                self.position_manager.open(order.token_out.mint, order.amount, price, quote_mint=order.token_in.mint)
            except ValueError as e:
                logger.error(f"[TRADE] Could not open position for {short_sig(order.token_out.mint)}: {e}")

    def _emit_failure(
        self,
        order: Optional[TradeOrder],
        error: Optional[str],
        source_signature: Optional[str],
        attempts: int = 0,
    ) -> None:
        logger.error(f"[TRADE] ❌ Trade failed for {short_sig(source_signature or '')}: {error}")
        self.events.emit(EventType.TRADE_FAILED, {
            "source_signature": source_signature,
            "token_in": order.token_in.mint if order else None,
            "token_out": order.token_out.mint if order else None,
            "amount": str(order.amount) if order else None,
            "attempts": attempts,
            "error": error,
            "stats": self.stats.to_dict(),
        })

    def status(self) -> dict:
        return {
            "status": "running" if self.is_monitoring else "stopped",
            "target_wallet": self.target_account,
            "bot_wallet": str(self.wallet.pubkey),
            "pending_events": self._queue.qsize() if self._queue else 0,
            "stats": self.stats.to_dict(),
        }

    def _emit_status(self) -> None:
        self.events.emit(EventType.STATUS, self.status())
