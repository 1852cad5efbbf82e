"""
Position tracking with take-profit / stop-loss monitoring.

Each open position has its own periodic task that re-prices it and closes
it once a threshold is crossed.
"""

import asyncio
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional

from copytx.core.events import EventChannel, EventType
from copytx.core.models import CloseReason, Position, PositionStatus
from copytx.core.utils import short_sig
from copytx.trading.prices import JupiterPriceFeed

logger = logging.getLogger(__name__)


class PositionManager:
    """
    Tracks open positions keyed by token mint.

    Positions are mutated only by their monitoring task and by close().
    Closing removes the position from the open set and stops its task.
    """

    def __init__(
        self,
        price_feed: JupiterPriceFeed,
        take_profit: Decimal = Decimal("0.4"),
        stop_loss: Decimal = Decimal("0.2"),
        check_interval: float = 2.0,
        events: Optional[EventChannel] = None,
    ):
        """
        Initialize position manager.

        Args:
            price_feed: Source of current token prices
            take_profit: Close when price change >= this ratio
            stop_loss: Close when price change <= -this ratio
            check_interval: Seconds between price checks
            events: Channel for position_updated events
        """
        self.price_feed = price_feed
        self.take_profit = Decimal(take_profit)
        self.stop_loss = Decimal(stop_loss)
        self.check_interval = check_interval
        self.events = events or EventChannel("positions")

        self._positions: Dict[str, Position] = {}
        self._tasks: Dict[str, asyncio.Task] = {}

    @classmethod
    def from_config(cls, config, price_feed: JupiterPriceFeed, events: Optional[EventChannel] = None) -> "PositionManager":
        return cls(
            price_feed=price_feed,
            take_profit=config.take_profit,
            stop_loss=config.stop_loss,
            check_interval=config.price_check_interval,
            events=events,
        )

    def open(
        self,
        token_mint: str,
        amount: Decimal,
        entry_price: Decimal,
        quote_mint: Optional[str] = None,
    ) -> Position:
        """
        Open a position and start monitoring it.

        Opening a mint that is already open averages into the existing
        position: amounts add and the entry price is weighted by quantity.

        Raises:
            ValueError: entry_price is not positive
        """
        amount = Decimal(amount)
        entry_price = Decimal(entry_price)
        if entry_price <= 0:
            raise ValueError(f"Entry price must be positive, got {entry_price}")

        existing = self._positions.get(token_mint)
        if existing is not None:
            quantity = existing.amount / existing.entry_price + amount / entry_price
            existing.amount += amount
            existing.entry_price = existing.amount / quantity
            existing.mark(existing.current_price)
            logger.info(
                f"[POSITION] Added to {short_sig(token_mint)}: amount={existing.amount} "
                f"avg entry={existing.entry_price:.10f}"
            )
            self._publish(existing)
            return existing

        position = Position(
            token_mint=token_mint,
            quote_mint=quote_mint,
            amount=amount,
            entry_price=entry_price,
            current_price=entry_price,
            opened_at=datetime.now(timezone.utc),
        )
        self._positions[token_mint] = position
        self._tasks[token_mint] = asyncio.create_task(
            self._monitor(token_mint), name=f"position-{token_mint[:8]}"
        )

        logger.info(f"[POSITION] Opened {short_sig(token_mint)}: amount={amount} entry={entry_price}")
        self._publish(position)
        return position

    def close(
        self,
        token_mint: str,
        exit_price: Decimal,
        reason: CloseReason = CloseReason.MANUAL,
    ) -> Optional[Position]:
        """
        Close a position.

        Returns:
            Closed snapshot, or None if no such open position
        """
        position = self._positions.pop(token_mint, None)
        if position is None:
            return None

        position.mark(Decimal(exit_price))
        position.exit_price = Decimal(exit_price)
        position.status = PositionStatus.CLOSED
        position.close_reason = reason
        position.closed_at = datetime.now(timezone.utc)

        task = self._tasks.pop(token_mint, None)
        if task is not None and task is not asyncio.current_task():
            task.cancel()

        logger.info(
            f"[POSITION] Closed {short_sig(token_mint)} ({reason.value}): "
            f"exit={exit_price} pnl={position.pnl:.6f}"
        )
        self._publish(position)
        return position.snapshot()

    def evaluate(self, token_mint: str, price: Decimal) -> Optional[Position]:
        """
        Re-price a position and apply take-profit / stop-loss.

        Returns:
            Closed snapshot if a threshold was crossed, else None
        """
        position = self._positions.get(token_mint)
        if position is None:
            return None

        price_change = position.mark(Decimal(price))

        if price_change >= self.take_profit:
            return self.close(token_mint, price, CloseReason.TAKE_PROFIT)
        if price_change <= -self.stop_loss:
            return self.close(token_mint, price, CloseReason.STOP_LOSS)

        self._publish(position)
        return None

    async def _monitor(self, token_mint: str) -> None:
        while True:
            await asyncio.sleep(self.check_interval)

            position = self._positions.get(token_mint)
            if position is None:
                return

            try:
                price = await self.price_feed.get_price(token_mint, position.quote_mint)
                if price is None or price <= 0:
                    logger.debug(f"[POSITION] No price for {short_sig(token_mint)}, skipping tick")
                    continue

                if self.evaluate(token_mint, price) is not None:
                    return

            except Exception as e:
                logger.error(f"[POSITION] Error monitoring {short_sig(token_mint)}: {e}", exc_info=True)

    def _publish(self, position: Position) -> None:
        self.events.emit(EventType.POSITION_UPDATED, position.to_dict())

    def get(self, token_mint: str) -> Optional[Position]:
        return self._positions.get(token_mint)

    def list_open(self) -> List[Position]:
        return [p.snapshot() for p in self._positions.values()]

    def open_count(self) -> int:
        return len(self._positions)

    def total_pnl(self) -> Decimal:
        return sum((p.pnl for p in self._positions.values()), Decimal("0"))

    def close_all(self, reason: CloseReason = CloseReason.MANUAL) -> List[Position]:
        """Close every open position at its last seen price."""
        return [
            self.close(mint, position.current_price, reason)
            for mint, position in list(self._positions.items())
        ]

    async def stop(self) -> None:
        """Stop all monitoring tasks. Positions stay open in memory."""
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
