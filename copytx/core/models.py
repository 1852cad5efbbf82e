"""
Domain models for CopyTX.

Models: Transfer, ParsedTransaction, SwapDetails, TradeOrder,
ExecutionResult, Position.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, Tuple


class TransferKind(str, Enum):
    """Kind of asset moved by a transfer."""
    TOKEN = "token"
    NATIVE = "native"


class Direction(str, Enum):
    """Direction of a balance delta, from the account's point of view."""
    IN = "in"
    OUT = "out"


class PositionStatus(str, Enum):
    """Lifecycle of a position. Only OPEN -> CLOSED is allowed."""
    OPEN = "open"
    CLOSED = "closed"


class CloseReason(str, Enum):
    """Why a position was closed."""
    TAKE_PROFIT = "take_profit"
    STOP_LOSS = "stop_loss"
    MANUAL = "manual"
    SHUTDOWN = "shutdown"


@dataclass(frozen=True)
class Transfer:
    """A single normalized balance delta."""
    kind: TransferKind
    amount: Decimal
    direction: Direction
    mint: Optional[str] = None
    source: Optional[str] = None
    destination: Optional[str] = None
    decimals: Optional[int] = None
    owner: Optional[str] = None


@dataclass(frozen=True)
class ParsedTransaction:
    """Transaction reduced to its ordered transfers."""
    signature: str
    timestamp: datetime
    success: bool
    transfers: Tuple[Transfer, ...] = ()

    @property
    def token_transfers(self) -> Tuple[Transfer, ...]:
        return tuple(t for t in self.transfers if t.kind == TransferKind.TOKEN)


@dataclass(frozen=True)
class TokenAmount:
    """Mint, UI amount and decimals for one side of a swap."""
    mint: str
    amount: Decimal
    decimals: int


@dataclass(frozen=True)
class SwapDetails:
    """
    Swap observed in a parsed transaction.

    token_in is what the trader gave up, token_out is what they received.
    """
    token_in: TokenAmount
    token_out: TokenAmount
    timestamp: datetime
    signature: Optional[str] = None

    @property
    def price(self) -> Optional[Decimal]:
        """Execution price of token_out, quoted in token_in units."""
        if self.token_out.amount == 0:
            return None
        return self.token_in.amount / self.token_out.amount


@dataclass(frozen=True)
class TradeOrder:
    """Order derived from an observed swap, consumed once by the executor."""
    token_in: TokenAmount
    token_out: TokenAmount
    amount: Decimal
    slippage_tolerance: Decimal
    source_signature: Optional[str] = None


@dataclass
class ExecutionResult:
    """Result of a transaction execution attempt."""
    success: bool
    signature: Optional[str] = None
    error: Optional[str] = None
    attempts: int = 1


def calculate_pnl(amount: Decimal, entry_price: Decimal, current_price: Decimal) -> Decimal:
    """P&L of a notional amount entered at entry_price, marked at current_price."""
    return amount * (current_price - entry_price) / entry_price


def calculate_price_change(entry_price: Decimal, current_price: Decimal) -> Decimal:
    return (current_price - entry_price) / entry_price


@dataclass
class Position:
    """
    Open exposure to a token.

    amount is the notional spent (in quote units). pnl is always recomputed
    from amount and prices, never accumulated.
    """
    token_mint: str
    amount: Decimal
    entry_price: Decimal
    current_price: Decimal
    opened_at: datetime
    quote_mint: Optional[str] = None
    pnl: Decimal = Decimal("0")
    status: PositionStatus = PositionStatus.OPEN
    close_reason: Optional[CloseReason] = None
    closed_at: Optional[datetime] = None
    exit_price: Optional[Decimal] = None

    def mark(self, price: Decimal) -> Decimal:
        """Update current price and recompute pnl. Returns the price change ratio."""
        self.current_price = price
        self.pnl = calculate_pnl(self.amount, self.entry_price, price)
        return calculate_price_change(self.entry_price, price)

    def snapshot(self) -> "Position":
        return replace(self)

    def to_dict(self) -> dict:
        return {
            "token_mint": self.token_mint,
            "quote_mint": self.quote_mint,
            "amount": str(self.amount),
            "entry_price": str(self.entry_price),
            "current_price": str(self.current_price),
            "pnl": str(self.pnl),
            "status": self.status.value,
            "close_reason": self.close_reason.value if self.close_reason else None,
            "opened_at": self.opened_at.isoformat(),
            "closed_at": self.closed_at.isoformat() if self.closed_at else None,
        }

    def __repr__(self) -> str:
        return f"<Position {self.token_mint[:8]} {self.status.value} pnl={self.pnl:.6f}>"


@dataclass
class TradingStats:
    """Running counters for executed trades."""
    total_trades: int = 0
    successful_trades: int = 0
    failed_trades: int = 0
    total_volume: Decimal = field(default_factory=lambda: Decimal("0"))

    def to_dict(self) -> dict:
        return {
            "total_trades": self.total_trades,
            "successful_trades": self.successful_trades,
            "failed_trades": self.failed_trades,
            "total_volume": str(self.total_volume),
        }
