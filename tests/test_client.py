"""
Unit tests for the ledger RPC client.

Tests:
- Transport and HTTP failures surface as RPCError
- HTTP 429 keeps its status for rate-limit detection
- solana-py failures are wrapped
"""

import asyncio
import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest
import requests
from solana.exceptions import SolanaRpcException
from solders.pubkey import Pubkey

# Add parent to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from copytx.rpc.client import LedgerClient
from copytx.rpc.governor import RPCError, is_rate_limit_error


def http_response(status_code=200, body=None):
    response = requests.Response()
    response.status_code = status_code
    response._content = b"{}" if body is None else body
    response.url = "http://localhost:8899"
    return response


def run_with_client(body):
    """Run body(ledger) against a client whose HTTP session is mocked."""
    async def wrapper():
        ledger = LedgerClient("http://localhost:8899")
        ledger.session = MagicMock()
        try:
            return await body(ledger)
        finally:
            await ledger.close()

    return asyncio.run(wrapper())


class TestGetTransaction:
    """Test the raw JSON-RPC path."""

    def test_result(self):
        async def body(ledger):
            ledger.session.post.return_value = http_response(body=b'{"jsonrpc": "2.0", "id": 1, "result": {"slot": 7}}')
            return await ledger.get_transaction("sig1")

        assert run_with_client(body) == {"slot": 7}

    def test_not_found(self):
        async def body(ledger):
            ledger.session.post.return_value = http_response(body=b'{"jsonrpc": "2.0", "id": 1, "result": null}')
            return await ledger.get_transaction("sig1")

        assert run_with_client(body) is None

    def test_connection_error(self):
        async def body(ledger):
            ledger.session.post.side_effect = requests.ConnectionError("connection refused")
            await ledger.get_transaction("sig1")

        with pytest.raises(RPCError) as exc_info:
            run_with_client(body)
        assert "connection refused" in str(exc_info.value)
        assert not is_rate_limit_error(exc_info.value)

    def test_timeout(self):
        async def body(ledger):
            ledger.session.post.side_effect = requests.Timeout("read timed out")
            await ledger.get_transaction("sig1")

        with pytest.raises(RPCError):
            run_with_client(body)

    def test_http_429_is_rate_limit(self):
        async def body(ledger):
            ledger.session.post.return_value = http_response(status_code=429)
            await ledger.get_transaction("sig1")

        with pytest.raises(RPCError) as exc_info:
            run_with_client(body)
        assert exc_info.value.status_code == 429
        assert is_rate_limit_error(exc_info.value)

    def test_json_rpc_error(self):
        async def body(ledger):
            ledger.session.post.return_value = http_response(
                body=b'{"jsonrpc": "2.0", "id": 1, "error": {"code": -32602, "message": "Invalid param"}}'
            )
            await ledger.get_transaction("sig1")

        with pytest.raises(RPCError) as exc_info:
            run_with_client(body)
        assert not is_rate_limit_error(exc_info.value)

    def test_invalid_json(self):
        async def body(ledger):
            ledger.session.post.return_value = http_response(body=b"<html>bad gateway</html>")
            await ledger.get_transaction("sig1")

        with pytest.raises(RPCError):
            run_with_client(body)


class TestSolanaClientCalls:
    """Test wrapping of solana-py failures."""

    def test_balance_transport_error(self):
        async def body(ledger):
            ledger.client.get_balance = AsyncMock(side_effect=SolanaRpcException("connection reset"))
            await ledger.get_balance(Pubkey.default())

        with pytest.raises(RPCError) as exc_info:
            run_with_client(body)
        assert isinstance(exc_info.value.__cause__, SolanaRpcException)

    def test_balance(self):
        async def body(ledger):
            ledger.client.get_balance = AsyncMock(return_value=MagicMock(value=5_000_000_000))
            return await ledger.get_balance(Pubkey.default())

        assert run_with_client(body) == 5_000_000_000

    def test_blockhash_os_error(self):
        async def body(ledger):
            ledger.client.get_latest_blockhash = AsyncMock(side_effect=ConnectionResetError("reset by peer"))
            await ledger.get_latest_blockhash()

        with pytest.raises(RPCError):
            run_with_client(body)
