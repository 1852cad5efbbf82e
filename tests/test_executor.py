"""
Unit tests for the transaction executor.

Tests:
- Compute budget instructions prepended
- Errors returned as results, never raised
- Execution lock released after failures
- Confirmation failures
"""

import asyncio
import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest
from solders.hash import Hash
from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.pubkey import Pubkey

# Add parent to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from copytx.rpc.governor import RPCError, RPCGovernor
from copytx.trading.executor import ExecutionOptions, TransactionExecutor

COMPUTE_BUDGET_PROGRAM = Pubkey.from_string("ComputeBudget111111111111111111111111111111")
MEMO_PROGRAM = Pubkey.from_string("MemoSq4gqABAXKb96qnH8TysNcWxMyWCqXgDLGmfcHr")


@pytest.fixture
def ledger():
    return MagicMock(
        get_latest_blockhash=AsyncMock(return_value=Hash.default()),
        send_transaction=AsyncMock(return_value="5sig"),
        confirm_transaction=AsyncMock(return_value=None),
    )


@pytest.fixture
def executor(ledger):
    return TransactionExecutor(ledger, RPCGovernor(cooldown=0))


def memo_instruction(signer: Keypair) -> Instruction:
    return Instruction(MEMO_PROGRAM, b"copy", [AccountMeta(signer.pubkey(), True, False)])


class TestExecute:
    """Test transaction execution."""

    def test_success(self, executor, ledger):
        signer = Keypair()
        result = asyncio.run(executor.execute([memo_instruction(signer)], [signer]))

        assert result.success is True
        assert result.signature == "5sig"
        ledger.confirm_transaction.assert_awaited_once_with("5sig")

    def test_compute_budget_prepended(self, executor, ledger):
        signer = Keypair()
        asyncio.run(executor.execute([memo_instruction(signer)], [signer], ExecutionOptions(confirm=False)))

        transaction = ledger.send_transaction.await_args.args[0]
        message = transaction.message
        programs = [message.account_keys[ix.program_id_index] for ix in message.instructions]

        assert programs == [COMPUTE_BUDGET_PROGRAM, COMPUTE_BUDGET_PROGRAM, MEMO_PROGRAM]
        assert message.account_keys[0] == signer.pubkey()
        ledger.confirm_transaction.assert_not_awaited()

    def test_no_signers(self, executor, ledger):
        result = asyncio.run(executor.execute([], []))

        assert result.success is False
        ledger.send_transaction.assert_not_awaited()

    def test_send_error_returned(self, executor, ledger):
        ledger.send_transaction.side_effect = RPCError("blockhash not found")
        signer = Keypair()

        result = asyncio.run(executor.execute([memo_instruction(signer)], [signer]))

        assert result.success is False
        assert "blockhash not found" in result.error
        assert result.signature is None

    def test_lock_released_after_error(self, executor, ledger):
        ledger.get_latest_blockhash.side_effect = [RPCError("node unhealthy"), Hash.default()]
        signer = Keypair()

        async def run_twice():
            first = await executor.execute([memo_instruction(signer)], [signer])
            assert not executor.busy
            second = await executor.execute([memo_instruction(signer)], [signer])
            return first, second

        first, second = asyncio.run(run_twice())

        assert first.success is False
        assert second.success is True

    def test_confirmation_failure(self, executor, ledger):
        ledger.confirm_transaction.side_effect = RPCError("failed on-chain")
        signer = Keypair()

        result = asyncio.run(executor.execute([memo_instruction(signer)], [signer]))

        assert result.success is False
        assert result.signature == "5sig"
        assert "Confirmation failed" in result.error


class TestWaitIdle:
    """Test shutdown waiting."""

    def test_idle(self, executor):
        assert asyncio.run(executor.wait_idle(0.1)) is True

    def test_timeout_while_busy(self, executor):
        async def busy_wait():
            await executor._lock.acquire()
            try:
                return await executor.wait_idle(0.01)
            finally:
                executor._lock.release()

        assert asyncio.run(busy_wait()) is False


class TestConcurrency:
    """Test serialization of submissions on one executor."""

    def test_one_submission_in_flight(self):
        """The second blockhash fetch starts only after the first send finishes."""
        calls = []

        async def get_latest_blockhash():
            calls.append("blockhash")
            await asyncio.sleep(0)
            return Hash.default()

        async def send_transaction(transaction, skip_preflight=True):
            calls.append("send-start")
            await asyncio.sleep(0)
            await asyncio.sleep(0)
            calls.append("send-end")
            return f"sig{calls.count('send-end')}"

        ledger = MagicMock(
            get_latest_blockhash=get_latest_blockhash,
            send_transaction=send_transaction,
        )
        executor = TransactionExecutor(ledger, RPCGovernor(cooldown=0))
        first, second = Keypair(), Keypair()
        options = ExecutionOptions(confirm=False)

        async def submit_both():
            return await asyncio.gather(
                executor.execute([memo_instruction(first)], [first], options),
                executor.execute([memo_instruction(second)], [second], options),
            )

        results = asyncio.run(submit_both())

        assert [r.success for r in results] == [True, True]
        assert calls == ["blockhash", "send-start", "send-end"] * 2
        assert not executor.busy
