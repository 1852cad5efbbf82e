"""
Trading module for CopyTX.

Handles wallet state, Jupiter swaps, transaction execution, trade
mirroring and position tracking.
"""

from copytx.trading.wallet import WalletState
from copytx.trading.jupiter import JupiterSwap
from copytx.trading.executor import TransactionExecutor
from copytx.trading.position_manager import PositionManager
from copytx.trading.trade_manager import TradeManager

__all__ = ["WalletState", "JupiterSwap", "TransactionExecutor", "PositionManager", "TradeManager"]
