"""
Configuration management for CopyTX.

Loads settings from a .env file and environment variables.
"""

import os
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional

from dotenv import load_dotenv

DEFAULT_RPC_URL = "https://api.mainnet-beta.solana.com"


def _get_decimal(name: str, default: str) -> Decimal:
    value = os.getenv(name)
    return Decimal(value) if value else Decimal(default)


def _get_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value else default


def _get_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if not value:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def derive_ws_url(rpc_url: str) -> str:
    """Derive the websocket endpoint from an HTTP RPC URL."""
    if rpc_url.startswith("https://"):
        return "wss://" + rpc_url[len("https://"):]
    if rpc_url.startswith("http://"):
        return "ws://" + rpc_url[len("http://"):]
    return rpc_url


@dataclass
class Config:
    """Application configuration."""

    # Endpoints
    rpc_url: str = DEFAULT_RPC_URL
    ws_url: Optional[str] = None

    # Wallets
    wallet_private_key: Optional[str] = None
    wallet_encryption_key: Optional[str] = None
    target_wallet: Optional[str] = None

    # Trade sizing
    scaling_factor: Decimal = Decimal("0.01")
    min_trade_size: Decimal = Decimal("0.001")
    min_balance_to_copy: Decimal = Decimal("0.005")
    max_transaction_size: Optional[Decimal] = None  # None means no absolute cap
    max_balance_percentage: Decimal = Decimal("0.5")
    fee_buffer_ratio: Decimal = Decimal("0.01")
    slippage_tolerance: Decimal = Decimal("0.005")

    # Position thresholds
    take_profit: Decimal = Decimal("0.4")
    stop_loss: Decimal = Decimal("0.2")
    price_check_interval_ms: int = 2000

    # RPC governor
    rpc_cooldown_ms: int = 2000
    rpc_backoff_base_ms: int = 1000
    rpc_backoff_cap_ms: int = 30000
    rpc_max_retries: int = 10

    # Execution
    max_retries: int = 10
    retry_delay_ms: int = 2000
    compute_unit_price: int = 421197  # micro-lamports
    compute_unit_limit: int = 101337
    confirm_transactions: bool = True
    swap_leg_policy: str = "first"
    shutdown_timeout: float = 30.0

    # Telegram
    telegram_bot_token: Optional[str] = None
    telegram_chat_id: Optional[str] = None

    # Mode: LIVE or TEST
    mode: str = "TEST"

    def __post_init__(self):
        if not self.ws_url:
            self.ws_url = derive_ws_url(self.rpc_url)

    @property
    def rpc_cooldown(self) -> float:
        return self.rpc_cooldown_ms / 1000

    @property
    def rpc_backoff_base(self) -> float:
        return self.rpc_backoff_base_ms / 1000

    @property
    def rpc_backoff_cap(self) -> float:
        return self.rpc_backoff_cap_ms / 1000

    @property
    def retry_delay(self) -> float:
        return self.retry_delay_ms / 1000

    @property
    def price_check_interval(self) -> float:
        return self.price_check_interval_ms / 1000

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from .env + environment variables."""
        load_dotenv()

        rpc_url = os.getenv("SOLANA_RPC_URL", DEFAULT_RPC_URL)
        rpc_cooldown_ms = _get_int("RPC_COOLDOWN", 2000)
        max_retries = _get_int("MAX_RETRIES", 10)
        max_tx = os.getenv("MAX_TRANSACTION_SIZE")

        return cls(
            rpc_url=rpc_url,
            ws_url=os.getenv("SOLANA_WS_URL") or derive_ws_url(rpc_url),
            wallet_private_key=os.getenv("WALLET_PRIVATE_KEY"),
            wallet_encryption_key=os.getenv("WALLET_ENCRYPTION_KEY"),
            target_wallet=os.getenv("TARGET_WALLET"),

            scaling_factor=_get_decimal("SCALING_FACTOR", "0.01"),
            min_trade_size=_get_decimal("MIN_TRADE_SIZE", "0.001"),
            min_balance_to_copy=_get_decimal("MIN_BALANCE_TO_COPY", "0.005"),
            max_transaction_size=Decimal(max_tx) if max_tx else None,
            max_balance_percentage=_get_decimal("MAX_BALANCE_PERCENTAGE", "0.5"),
            fee_buffer_ratio=_get_decimal("FEE_BUFFER_RATIO", "0.01"),
            slippage_tolerance=_get_decimal("SLIPPAGE_TOLERANCE", "0.005"),

            take_profit=_get_decimal("TAKE_PROFIT", "0.4"),
            stop_loss=_get_decimal("STOP_LOSS", "0.2"),
            price_check_interval_ms=_get_int("PRICE_CHECK_INTERVAL", 2000),

            rpc_cooldown_ms=rpc_cooldown_ms,
            rpc_backoff_base_ms=_get_int("RPC_BACKOFF_BASE", 1000),
            rpc_backoff_cap_ms=_get_int("RPC_BACKOFF_CAP", 30000),
            rpc_max_retries=_get_int("RPC_MAX_RETRIES", max_retries),

            max_retries=max_retries,
            retry_delay_ms=_get_int("RETRY_DELAY", rpc_cooldown_ms),
            compute_unit_price=_get_int("COMPUTE_UNIT_PRICE", 421197),
            compute_unit_limit=_get_int("COMPUTE_UNIT_LIMIT", 101337),
            confirm_transactions=_get_bool("CONFIRM_TRANSACTIONS", True),
            swap_leg_policy=os.getenv("SWAP_LEG_POLICY", "first").lower(),
            shutdown_timeout=float(os.getenv("SHUTDOWN_TIMEOUT", "30")),

            telegram_bot_token=os.getenv("TELEGRAM_BOT_TOKEN"),
            telegram_chat_id=os.getenv("TELEGRAM_CHAT_ID"),

            mode=os.getenv("MODE", "TEST").upper(),
        )

    def validate(self) -> List[str]:
        """Return a list of configuration problems (empty when valid)."""
        problems = []

        if not self.wallet_private_key:
            problems.append("WALLET_PRIVATE_KEY is required")
        if self.scaling_factor <= 0:
            problems.append("SCALING_FACTOR must be positive")
        if self.min_trade_size <= 0:
            problems.append("MIN_TRADE_SIZE must be positive")
        if not Decimal("0") < self.max_balance_percentage <= Decimal("1"):
            problems.append("MAX_BALANCE_PERCENTAGE must be in (0, 1]")
        if not Decimal("0") <= self.slippage_tolerance <= Decimal("1"):
            problems.append("SLIPPAGE_TOLERANCE must be in [0, 1]")
        if self.fee_buffer_ratio < 0:
            problems.append("FEE_BUFFER_RATIO must not be negative")
        if self.max_transaction_size is not None and self.max_transaction_size < self.min_trade_size:
            problems.append("MAX_TRANSACTION_SIZE must not be below MIN_TRADE_SIZE")
        if self.swap_leg_policy not in ("first", "largest"):
            problems.append("SWAP_LEG_POLICY must be 'first' or 'largest'")
        if self.max_retries < 1:
            problems.append("MAX_RETRIES must be at least 1")

        return problems

    def get_summary(self) -> str:
        """Get a summary of current settings."""
        max_tx = f"{self.max_transaction_size} SOL" if self.max_transaction_size else "none"
        return f"""Mode: {self.mode}

Trade Sizing:
  Scaling Factor: {self.scaling_factor}
  Min Trade Size: {self.min_trade_size} SOL
  Min Observed Amount: {self.min_balance_to_copy}
  Max Transaction Size: {max_tx}
  Max Balance Share: {self.max_balance_percentage * 100:.0f}%
  Fee Buffer: {self.fee_buffer_ratio * 100:.1f}%
  Slippage: {self.slippage_tolerance * 100:.2f}%

Positions:
  Take Profit: +{self.take_profit * 100:.0f}%
  Stop Loss: -{self.stop_loss * 100:.0f}%
  Price Check: every {self.price_check_interval:.1f}s

Execution:
  RPC Cooldown: {self.rpc_cooldown:.1f}s
  Max Retries: {self.max_retries}
  Compute Unit Price: {self.compute_unit_price} micro-lamports
  Compute Unit Limit: {self.compute_unit_limit}
  Swap Leg Policy: {self.swap_leg_policy}
"""
