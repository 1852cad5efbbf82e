"""
Parse Solana transactions into ordered transfers and classify swaps.

Token transfers come from pre/post token balance deltas; native SOL
transfers come from parsed System Program transfer instructions.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from copytx.core.models import (
    Direction,
    ParsedTransaction,
    SwapDetails,
    TokenAmount,
    Transfer,
    TransferKind,
)
from copytx.core.utils import lamports_to_sol, short_sig
from copytx.rpc.client import LedgerClient
from copytx.rpc.governor import RPCGovernor

logger = logging.getLogger(__name__)


class SwapLegPolicy(str, Enum):
    """
    How to pick the primary legs when a transaction has several token transfers.

    FIRST: first `out` transfer is token_in, first `in` transfer is token_out.
    LARGEST: largest `out` and largest `in` transfers by amount.
    """
    FIRST = "first"
    LARGEST = "largest"


def _ui_amount(balance: Dict[str, Any]) -> Decimal:
    ui = balance.get("uiTokenAmount", {})
    if ui.get("uiAmountString") is not None:
        return Decimal(ui["uiAmountString"])
    if ui.get("amount") is not None and ui.get("decimals") is not None:
        return Decimal(ui["amount"]) / (Decimal(10) ** int(ui["decimals"]))
    if ui.get("uiAmount") is not None:
        return Decimal(str(ui["uiAmount"]))
    return Decimal("0")


def _get_account_keys(message: Dict[str, Any]) -> List[str]:
    """Extract account keys from transaction message (legacy or jsonParsed)."""
    account_keys = message.get("accountKeys", [])

    if not account_keys:
        return []

    if isinstance(account_keys[0], dict):
        return [acc.get("pubkey", "") for acc in account_keys]
    return list(account_keys)


def calculate_token_transfers(meta: Dict[str, Any]) -> List[Transfer]:
    """
    Compute token balance deltas per token account.

    Accounts missing from preTokenBalances (created in this transaction) or
    from postTokenBalances (closed in this transaction) count as zero on the
    missing side. Zero deltas are discarded.
    """
    pre_balances = {b["accountIndex"]: b for b in meta.get("preTokenBalances") or []}
    post_balances = {b["accountIndex"]: b for b in meta.get("postTokenBalances") or []}

    # Post order first, then accounts that only appear before (closed)
    indexes = list(post_balances.keys())
    indexes += [i for i in pre_balances.keys() if i not in post_balances]

    transfers = []
    for index in indexes:
        post = post_balances.get(index)
        pre = pre_balances.get(index)
        reference = post or pre

        post_amount = _ui_amount(post) if post else Decimal("0")
        pre_amount = _ui_amount(pre) if pre else Decimal("0")
        delta = post_amount - pre_amount

        if delta == 0:
            continue

        transfers.append(Transfer(
            kind=TransferKind.TOKEN,
            mint=reference["mint"],
            amount=abs(delta),
            direction=Direction.IN if delta > 0 else Direction.OUT,
            decimals=reference.get("uiTokenAmount", {}).get("decimals"),
            owner=reference.get("owner"),
        ))

    return transfers


def _iter_parsed_instructions(transaction: Dict[str, Any]) -> Iterable[Dict[str, Any]]:
    message = transaction.get("transaction", {}).get("message", {})
    for ix in message.get("instructions", []):
        yield ix

    meta = transaction.get("meta") or {}
    for inner in meta.get("innerInstructions") or []:
        for ix in inner.get("instructions", []):
            yield ix


def calculate_native_transfers(transaction: Dict[str, Any], perspective: Optional[str]) -> List[Transfer]:
    """
    Collect System Program transfers from top-level and inner instructions.

    Direction is relative to `perspective` (normally the fee payer): `out`
    when it is the source, `in` otherwise.
    """
    transfers = []

    for ix in _iter_parsed_instructions(transaction):
        if ix.get("program") != "system":
            continue
        parsed = ix.get("parsed")
        if not isinstance(parsed, dict) or parsed.get("type") != "transfer":
            continue

        info = parsed.get("info", {})
        lamports = int(info.get("lamports", 0))
        if lamports == 0:
            continue

        source = info.get("source")
        transfers.append(Transfer(
            kind=TransferKind.NATIVE,
            amount=lamports_to_sol(lamports),
            direction=Direction.OUT if source == perspective else Direction.IN,
            source=source,
            destination=info.get("destination"),
            decimals=9,
        ))

    return transfers


def extract_transaction(transaction: Dict[str, Any]) -> ParsedTransaction:
    """
    Normalize a jsonParsed getTransaction result.

    Raises:
        KeyError, ValueError, TypeError, InvalidOperation: malformed payload
    """
    meta = transaction.get("meta") or {}
    tx = transaction["transaction"]
    signatures = tx.get("signatures", [])
    account_keys = _get_account_keys(tx.get("message", {}))
    fee_payer = account_keys[0] if account_keys else None

    block_time = transaction.get("blockTime")
    timestamp = (
        datetime.fromtimestamp(block_time, tz=timezone.utc)
        if block_time
        else datetime.now(timezone.utc)
    )

    transfers = calculate_token_transfers(meta)
    transfers += calculate_native_transfers(transaction, fee_payer)

    return ParsedTransaction(
        signature=signatures[0] if signatures else "",
        timestamp=timestamp,
        success=meta.get("err") is None,
        transfers=tuple(transfers),
    )


def _pick(transfers: List[Transfer], policy: SwapLegPolicy) -> Transfer:
    if policy == SwapLegPolicy.LARGEST:
        return max(transfers, key=lambda t: t.amount)
    return transfers[0]


def classify_swap(
    parsed: Optional[ParsedTransaction],
    policy: SwapLegPolicy = SwapLegPolicy.FIRST,
    owner: Optional[str] = None,
) -> Optional[SwapDetails]:
    """
    Classify a parsed transaction as a swap.

    Requires at least two token transfers with at least one `in` and one
    `out`. The `out` leg is what the trader sold (token_in), the `in` leg what
    they bought (token_out). Multi-hop transactions are resolved by `policy`
    without further disambiguation.

    Args:
        parsed: Parsed transaction
        policy: Leg selection policy
        owner: If set, only token accounts owned by this address are considered

    Returns:
        SwapDetails, or None if this is not a swap
    """
    if parsed is None:
        return None

    token_transfers = list(parsed.token_transfers)
    if owner is not None:
        token_transfers = [t for t in token_transfers if t.owner == owner]

    if len(token_transfers) < 2:
        return None

    outgoing = [t for t in token_transfers if t.direction == Direction.OUT]
    incoming = [t for t in token_transfers if t.direction == Direction.IN]
    if not outgoing or not incoming:
        return None

    sold = _pick(outgoing, policy)
    bought = _pick(incoming, policy)

    if sold.mint == bought.mint:
        logger.debug(f"[PARSE] Same mint on both legs ({short_sig(sold.mint)}), not a swap")
        return None

    return SwapDetails(
        token_in=TokenAmount(mint=sold.mint, amount=sold.amount, decimals=sold.decimals or 0),
        token_out=TokenAmount(mint=bought.mint, amount=bought.amount, decimals=bought.decimals or 0),
        timestamp=parsed.timestamp,
        signature=parsed.signature,
    )


class TransactionParser:
    """
    Fetch and parse transactions through the RPC governor.

    Malformed payloads are logged and yield None so one bad transaction
    never stops the monitoring stream.
    """

    def __init__(
        self,
        ledger: LedgerClient,
        governor: RPCGovernor,
        policy: SwapLegPolicy = SwapLegPolicy.FIRST,
    ):
        self.ledger = ledger
        self.governor = governor
        self.policy = policy

    async def parse(self, signature: str) -> Optional[ParsedTransaction]:
        """
        Fetch and parse a transaction.

        Returns:
            ParsedTransaction, or None if not found, failed or malformed

        Raises:
            RPCError: The fetch itself failed
        """
        transaction = await self.governor.call(self.ledger.get_transaction, signature)

        if not transaction:
            logger.info(f"[PARSE] Transaction not found: {short_sig(signature)}")
            return None

        try:
            parsed = extract_transaction(transaction)
        except (KeyError, ValueError, TypeError, AttributeError, InvalidOperation) as e:
            logger.error(f"[PARSE] Malformed transaction {short_sig(signature)}: {e}")
            return None

        if not parsed.success:
            logger.info(f"[PARSE] Ignoring failed transaction: {short_sig(signature)}")
            return None

        logger.debug(f"[PARSE] {short_sig(signature)}: {len(parsed.transfers)} transfers")
        return parsed

    def classify_swap(self, parsed: Optional[ParsedTransaction], owner: Optional[str] = None) -> Optional[SwapDetails]:
        return classify_swap(parsed, self.policy, owner)
