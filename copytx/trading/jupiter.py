"""
Jupiter V6 swap integration for CopyTX.

Turns a TradeOrder into swap instructions via the Jupiter aggregator.
"""

import asyncio
import base64
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

import requests
from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from copytx.core.models import TradeOrder
from copytx.core.utils import short_sig, to_base_units

logger = logging.getLogger(__name__)

# Jupiter API endpoints
JUPITER_QUOTE_API = "https://quote-api.jup.ag/v6/quote"
JUPITER_SWAP_INSTRUCTIONS_API = "https://quote-api.jup.ag/v6/swap-instructions"

# SOL mint address
SOL_MINT = "So11111111111111111111111111111111111111112"


class SwapBuildError(Exception):
    """Jupiter could not produce a quote or swap instructions."""


@dataclass
class SwapQuote:
    """Quote from Jupiter for a swap."""
    input_mint: str
    output_mint: str
    in_amount: int  # smallest unit of input token
    out_amount: int  # smallest unit of output token
    price_impact_pct: float
    slippage_bps: int
    raw_quote: dict  # Full quote response for the swap-instructions request


def slippage_to_bps(slippage: Decimal) -> int:
    """0.005 -> 50"""
    return int(Decimal(slippage) * 10_000)


def decode_instruction(data: Dict[str, Any]) -> Instruction:
    """Convert a Jupiter JSON instruction into a solders Instruction."""
    accounts = [
        AccountMeta(
            pubkey=Pubkey.from_string(account["pubkey"]),
            is_signer=account["isSigner"],
            is_writable=account["isWritable"],
        )
        for account in data.get("accounts", [])
    ]
    return Instruction(
        program_id=Pubkey.from_string(data["programId"]),
        data=base64.b64decode(data["data"]),
        accounts=accounts,
    )


class JupiterSwap:
    """
    Jupiter V6 swap client.

    Handles quote fetching and swap instruction building. HTTP calls run in
    a worker thread so the event loop is never blocked.
    """

    def __init__(self, timeout: int = 10):
        self.timeout = timeout
        self.session = requests.Session()

    def get_quote(self, input_mint: str, output_mint: str, amount: int, slippage_bps: int) -> SwapQuote:
        """
        Get a swap quote from Jupiter.

        Args:
            input_mint: Input token mint address
            output_mint: Output token mint address
            amount: Amount in smallest unit of the input token
            slippage_bps: Slippage tolerance in basis points

        Raises:
            SwapBuildError: No route or API failure
        """
        params = {
            "inputMint": input_mint,
            "outputMint": output_mint,
            "amount": str(amount),
            "slippageBps": slippage_bps,
            "onlyDirectRoutes": "false",
            "asLegacyTransaction": "true",
        }

        try:
            response = self.session.get(JUPITER_QUOTE_API, params=params, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as e:
            raise SwapBuildError(f"Jupiter quote failed: {e}") from e

        if "error" in data:
            raise SwapBuildError(f"Jupiter quote error: {data['error']}")

        return SwapQuote(
            input_mint=data["inputMint"],
            output_mint=data["outputMint"],
            in_amount=int(data["inAmount"]),
            out_amount=int(data["outAmount"]),
            price_impact_pct=float(data.get("priceImpactPct", 0)),
            slippage_bps=slippage_bps,
            raw_quote=data,
        )

    def get_swap_instructions(self, quote: SwapQuote, user_pubkey: str) -> List[Instruction]:
        """
        Get swap instructions for a quote.

        Jupiter's own compute budget instructions are dropped; the executor
        prepends ours.

        Raises:
            SwapBuildError: API failure
        """
        payload = {
            "quoteResponse": quote.raw_quote,
            "userPublicKey": user_pubkey,
            "wrapAndUnwrapSol": True,
            "asLegacyTransaction": True,
        }

        try:
            response = self.session.post(JUPITER_SWAP_INSTRUCTIONS_API, json=payload, timeout=self.timeout * 3)
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as e:
            raise SwapBuildError(f"Jupiter swap-instructions failed: {e}") from e

        if "error" in data:
            raise SwapBuildError(f"Jupiter swap error: {data['error']}")

        raw = list(data.get("setupInstructions") or [])
        raw.append(data["swapInstruction"])
        if data.get("cleanupInstruction"):
            raw.append(data["cleanupInstruction"])

        return [decode_instruction(ix) for ix in raw]

    def _build(self, order: TradeOrder, owner: Keypair) -> Tuple[List[Instruction], List[Keypair]]:
        amount = to_base_units(order.amount, order.token_in.decimals)
        if amount <= 0:
            raise SwapBuildError(f"Trade amount rounds to zero base units: {order.amount}")

        quote = self.get_quote(
            input_mint=order.token_in.mint,
            output_mint=order.token_out.mint,
            amount=amount,
            slippage_bps=slippage_to_bps(order.slippage_tolerance),
        )
        logger.info(
            f"[JUPITER] Quote {short_sig(quote.input_mint, 8)} -> {short_sig(quote.output_mint, 8)}: "
            f"{quote.in_amount} -> {quote.out_amount} (impact {quote.price_impact_pct:.2f}%)"
        )

        instructions = self.get_swap_instructions(quote, str(owner.pubkey()))
        return instructions, [owner]

    async def build(self, order: TradeOrder, owner: Keypair) -> Tuple[List[Instruction], List[Keypair]]:
        """
        Build swap instructions for an order.

        Args:
            order: Trade order (amount in token_in units)
            owner: Operator keypair (fee payer and token owner)

        Returns:
            Tuple of (instructions, signers)
        """
        return await asyncio.to_thread(self._build, order, owner)

    def close(self) -> None:
        self.session.close()
