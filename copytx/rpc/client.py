"""
Solana ledger RPC client.

Thin async facade over the Solana JSON-RPC API exposing just the calls the
trading path needs. Callers wrap each method in RPCGovernor.call().
"""

import asyncio
import logging
from contextlib import contextmanager
from typing import Any, Dict, List, Optional

import requests
from solana.exceptions import SolanaRpcException
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed
from solana.rpc.core import RPCException
from solana.rpc.types import TxOpts
from solders.hash import Hash
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import Transaction

from copytx.rpc.governor import HTTP_TOO_MANY_REQUESTS, RPCError

logger = logging.getLogger(__name__)


class LedgerClient:
    """
    Ledger RPC facade.

    getTransaction is issued as raw JSON-RPC (jsonParsed encoding) so the
    parser works on plain dicts; everything else goes through solana-py.
    """

    def __init__(self, rpc_url: str, timeout: int = 15):
        """
        Initialize ledger client.

        Args:
            rpc_url: Solana HTTP RPC endpoint
            timeout: HTTP timeout in seconds
        """
        self.rpc_url = rpc_url
        self.timeout = timeout
        self.session = requests.Session()
        self.client = AsyncClient(rpc_url, commitment=Confirmed, timeout=timeout)

    @contextmanager
    def _wrap_errors(self, method: str):
        """Re-raise transport and JSON-RPC failures from solana-py as RPCError."""
        try:
            yield
        except (SolanaRpcException, RPCException, OSError) as e:
            raise RPCError(f"{method} failed: {e}") from e

    def _post(self, method: str, params: List[Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": 1, "method": method, "params": params}

        try:
            response = self.session.post(self.rpc_url, json=payload, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except requests.HTTPError as e:
            raise RPCError(f"{method} failed: {e}", status_code=e.response.status_code) from e
        except (requests.RequestException, ValueError) as e:
            raise RPCError(f"{method} failed: {e}") from e

        if data.get("error"):
            error = data["error"]
            code = error.get("code")
            raise RPCError(
                f"{method} RPC error ({code}): {error.get('message')}",
                status_code=HTTP_TOO_MANY_REQUESTS if code == HTTP_TOO_MANY_REQUESTS else None,
            )

        return data.get("result")

    async def get_transaction(self, signature: str) -> Optional[Dict[str, Any]]:
        """
        Fetch a transaction by signature.

        Returns:
            The jsonParsed transaction result, or None if the ledger has no such transaction

        Raises:
            RPCError: Transport, HTTP or JSON-RPC failure
        """
        params = [
            signature,
            {
                "encoding": "jsonParsed",
                "maxSupportedTransactionVersion": 0,
                "commitment": "confirmed",
            },
        ]
        return await asyncio.to_thread(self._post, "getTransaction", params)

    async def get_balance(self, pubkey: Pubkey) -> int:
        """Get native balance in lamports."""
        with self._wrap_errors("getBalance"):
            response = await self.client.get_balance(pubkey, commitment=Confirmed)
        return response.value

    async def get_latest_blockhash(self) -> Hash:
        with self._wrap_errors("getLatestBlockhash"):
            response = await self.client.get_latest_blockhash(commitment=Confirmed)
        return response.value.blockhash

    async def send_transaction(self, transaction: Transaction, skip_preflight: bool = True) -> str:
        """Submit a signed transaction. Returns the signature string."""
        opts = TxOpts(skip_preflight=skip_preflight, preflight_commitment=Confirmed)
        with self._wrap_errors("sendTransaction"):
            response = await self.client.send_raw_transaction(bytes(transaction), opts=opts)
        return str(response.value)

    async def confirm_transaction(self, signature: str) -> None:
        """
        Wait for confirmation.

        Raises:
            RPCError: Transaction landed with an error, or the status query failed
        """
        with self._wrap_errors("confirmTransaction"):
            response = await self.client.confirm_transaction(
                Signature.from_string(signature), commitment=Confirmed
            )
        statuses = response.value
        if statuses and statuses[0] is not None and statuses[0].err is not None:
            raise RPCError(f"Transaction {signature} failed on-chain: {statuses[0].err}")

    async def close(self) -> None:
        await self.client.close()
        self.session.close()
