"""
Copy-trading bot assembly.

Wires the governor, ledger client, parser, wallet, executor and managers
together and owns their lifecycle.
"""

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional

from solders.keypair import Keypair

from copytx.core.config import Config
from copytx.core.events import EventChannel
from copytx.ingest.transaction_parser import SwapLegPolicy, TransactionParser
from copytx.rpc.client import LedgerClient
from copytx.rpc.governor import RPCGovernor
from copytx.trading.executor import TransactionExecutor
from copytx.trading.jupiter import JupiterSwap
from copytx.trading.position_manager import PositionManager
from copytx.trading.prices import JupiterPriceFeed
from copytx.trading.trade_manager import TradeManager
from copytx.trading.wallet import WalletState, load_keypair

logger = logging.getLogger(__name__)

EventConsumer = Callable[[asyncio.Queue], Awaitable[None]]


class CopyTradingBot:
    """
    Owns one instance of every trading component.

    All components share a single RPCGovernor.
    """

    def __init__(self, config: Config, keypair: Optional[Keypair] = None):
        self.config = config

        if keypair is None:
            keypair = load_keypair(config.wallet_private_key, config.wallet_encryption_key)

        self.governor = RPCGovernor.from_config(config)
        self.ledger = LedgerClient(config.rpc_url)
        self.parser = TransactionParser(self.ledger, self.governor, SwapLegPolicy(config.swap_leg_policy))
        self.wallet = WalletState.from_config(config, keypair, self.ledger, self.governor)
        self.executor = TransactionExecutor.from_config(config, self.ledger, self.governor)
        self.swap_builder = JupiterSwap()
        self.price_feed = JupiterPriceFeed()
        self.position_manager = PositionManager.from_config(config, self.price_feed)
        self.trade_manager = TradeManager.from_config(
            config,
            parser=self.parser,
            wallet=self.wallet,
            executor=self.executor,
            swap_builder=self.swap_builder,
            position_manager=self.position_manager,
        )

        self._consumers: List[asyncio.Task] = []

    @property
    def channels(self) -> List[EventChannel]:
        return [self.trade_manager.events, self.position_manager.events]

    def add_consumer(self, consumer: EventConsumer) -> None:
        """Subscribe a consumer coroutine to every component's events."""
        for channel in self.channels:
            queue = channel.subscribe()
            self._consumers.append(asyncio.create_task(consumer(queue)))

    async def start(self, target_account: str) -> None:
        balance = await self.wallet.refresh_balance()
        logger.info(f"Wallet {self.wallet.pubkey} balance: {balance} SOL")
        await self.trade_manager.start_monitoring(target_account)

    async def stop(self) -> None:
        """
        Stop monitoring and background tasks.

        Open positions are left open. An in-flight submission is waited for
        up to shutdown_timeout.
        """
        await self.trade_manager.stop_monitoring()
        await self.position_manager.stop()
        await self.executor.wait_idle(self.config.shutdown_timeout)

        consumers, self._consumers = self._consumers, []
        for task in consumers:
            task.cancel()
        await asyncio.gather(*consumers, return_exceptions=True)

        await self.ledger.close()
        self.swap_builder.close()
        self.price_feed.close()

    def status(self) -> dict:
        status = self.trade_manager.status()
        status.update({
            "balance": str(self.wallet.balance),
            "open_positions": self.position_manager.open_count(),
            "unrealized_pnl": str(self.position_manager.total_pnl()),
            "rpc_calls": self.governor.total_calls,
        })
        return status
