"""
Transaction executor for CopyTX trading.

Builds, signs, submits and optionally confirms transactions. Submission is
serialized per executor so two trades never race on the same fee payer.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

from solders.compute_budget import set_compute_unit_limit, set_compute_unit_price
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.message import Message
from solders.transaction import Transaction

from copytx.core.models import ExecutionResult
from copytx.core.utils import short_sig
from copytx.rpc.client import LedgerClient
from copytx.rpc.governor import RPCGovernor

logger = logging.getLogger(__name__)


@dataclass
class ExecutionOptions:
    """Per-call execution options."""
    confirm: bool = True
    skip_preflight: bool = True


class TransactionExecutor:
    """
    Executes Solana transactions.

    The execution lock covers transaction construction, the blockhash fetch
    and submission. Confirmation happens after the lock is released.
    """

    def __init__(
        self,
        ledger: LedgerClient,
        governor: RPCGovernor,
        compute_unit_price: int = 421197,
        compute_unit_limit: int = 101337,
    ):
        """
        Initialize transaction executor.

        Args:
            ledger: Ledger RPC client
            governor: Shared RPC governor
            compute_unit_price: Priority fee in micro-lamports per compute unit
            compute_unit_limit: Compute unit limit per transaction
        """
        self.ledger = ledger
        self.governor = governor
        self.compute_unit_price = compute_unit_price
        self.compute_unit_limit = compute_unit_limit
        self._lock = asyncio.Lock()

    @classmethod
    def from_config(cls, config, ledger: LedgerClient, governor: RPCGovernor) -> "TransactionExecutor":
        return cls(
            ledger=ledger,
            governor=governor,
            compute_unit_price=config.compute_unit_price,
            compute_unit_limit=config.compute_unit_limit,
        )

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    def compute_budget_instructions(self) -> List[Instruction]:
        return [
            set_compute_unit_price(self.compute_unit_price),
            set_compute_unit_limit(self.compute_unit_limit),
        ]

    async def execute(
        self,
        instructions: Sequence[Instruction],
        signers: Sequence[Keypair],
        options: Optional[ExecutionOptions] = None,
    ) -> ExecutionResult:
        """
        Build, sign, submit and optionally confirm a transaction.

        The first signer pays fees. Never raises on build/sign/submit/confirm
        failures; they are returned as ExecutionResult(success=False).

        Args:
            instructions: Caller instructions (compute budget is prepended)
            signers: Keypairs that must sign
            options: Execution options

        Returns:
            ExecutionResult with signature or error
        """
        options = options or ExecutionOptions()

        if not signers:
            return ExecutionResult(success=False, error="No signers supplied")

        try:
            async with self._lock:
                all_instructions = self.compute_budget_instructions() + list(instructions)
                payer = signers[0].pubkey()

                # Fresh blockhash right before signing
                blockhash = await self.governor.call(self.ledger.get_latest_blockhash)
                message = Message.new_with_blockhash(all_instructions, payer, blockhash)
                transaction = Transaction(list(signers), message, blockhash)

                signature = await self.governor.call(
                    self.ledger.send_transaction, transaction, options.skip_preflight
                )
                logger.info(f"[EXEC] Transaction sent: {signature}")

        except Exception as e:
            logger.error(f"[EXEC] Transaction execution error: {e}")
            return ExecutionResult(success=False, error=str(e))

        if options.confirm:
            try:
                await self.governor.call(self.ledger.confirm_transaction, signature)
                logger.info(f"[EXEC] ✓ Transaction confirmed: {short_sig(signature)}")
            except Exception as e:
                logger.error(f"[EXEC] Confirmation failed for {short_sig(signature)}: {e}")
                return ExecutionResult(success=False, signature=signature, error=f"Confirmation failed: {e}")

        return ExecutionResult(success=True, signature=signature)

    async def wait_idle(self, timeout: float) -> bool:
        """
        Wait for any in-flight submission to finish.

        Returns:
            True if the executor became idle, False on timeout
        """
        try:
            await asyncio.wait_for(self._lock.acquire(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"[EXEC] In-flight transaction still running after {timeout}s, not waiting further")
            return False
        self._lock.release()
        return True
