"""
Unit tests for websocket log subscriptions.
"""

import asyncio
import json
import sys
from pathlib import Path
from unittest.mock import AsyncMock, patch

# Add parent to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from copytx.ingest.subscriptions import (
    AccountLogStream,
    extract_log_notification,
    get_logs_subscription,
    get_logs_unsubscribe,
)

ACCOUNT = "Target11111111111111111111111111111111111111"


def notification(signature="sig1", err=None):
    return {
        "jsonrpc": "2.0",
        "method": "logsNotification",
        "params": {
            "subscription": 42,
            "result": {
                "context": {"slot": 5208469},
                "value": {"signature": signature, "err": err, "logs": ["Program log: Instruction: Swap"]},
            },
        },
    }


class TestPayloads:
    """Test subscription request payloads."""

    def test_logs_subscribe(self):
        payload = get_logs_subscription(ACCOUNT)
        assert payload["method"] == "logsSubscribe"
        assert payload["params"][0] == {"mentions": [ACCOUNT]}
        assert payload["params"][1] == {"commitment": "confirmed"}

    def test_logs_unsubscribe(self):
        payload = get_logs_unsubscribe(42)
        assert payload["method"] == "logsUnsubscribe"
        assert payload["params"] == [42]


class TestExtractNotification:
    """Test notification extraction."""

    def test_notification(self):
        result = extract_log_notification(notification())
        assert result.signature == "sig1"
        assert result.err is None
        assert result.slot == 5208469
        assert result.logs == ["Program log: Instruction: Swap"]

    def test_other_method(self):
        assert extract_log_notification({"jsonrpc": "2.0", "id": 1, "result": 42}) is None

    def test_missing_signature(self):
        data = notification()
        del data["params"]["result"]["value"]["signature"]
        assert extract_log_notification(data) is None


class TestHandleMessage:
    """Test message handling in the stream."""

    def test_subscription_confirmation_resets_backoff(self):
        stream = AccountLogStream("wss://example.invalid", ACCOUNT)
        stream.reconnect_delay = 16.0

        assert stream._handle_message(json.dumps({"jsonrpc": "2.0", "id": 1, "result": 42})) is None
        assert stream.subscription_id == 42
        assert stream.reconnect_delay == 1.0

    def test_successful_transaction_yielded(self):
        stream = AccountLogStream("wss://example.invalid", ACCOUNT)
        assert stream._handle_message(json.dumps(notification())).signature == "sig1"

    def test_failed_transaction_skipped(self):
        stream = AccountLogStream("wss://example.invalid", ACCOUNT)
        message = json.dumps(notification(err={"InstructionError": [0, {"Custom": 1}]}))
        assert stream._handle_message(message) is None

    def test_invalid_json(self):
        stream = AccountLogStream("wss://example.invalid", ACCOUNT)
        assert stream._handle_message("not json") is None

    def test_rpc_error(self):
        stream = AccountLogStream("wss://example.invalid", ACCOUNT)
        message = json.dumps({"jsonrpc": "2.0", "id": 1, "error": {"code": -32602, "message": "Invalid params"}})
        assert stream._handle_message(message) is None


class FakeSocket:
    """Websocket connection that replays a fixed list of messages."""

    def __init__(self, messages):
        self.messages = list(messages)
        self.sent = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False

    async def send(self, message):
        self.sent.append(json.loads(message))

    def __aiter__(self):
        return self._replay()

    async def _replay(self):
        for message in self.messages:
            yield message


class TestReconnect:
    """Test the reconnect loop."""

    def test_reconnects_after_open_timeout(self):
        """An opening-handshake timeout is retried instead of ending the stream."""
        socket = FakeSocket([
            json.dumps({"jsonrpc": "2.0", "id": 1, "result": 42}),
            json.dumps(notification("sig-after-timeout")),
        ])
        stream = AccountLogStream("wss://example.invalid", ACCOUNT)

        async def first_notification():
            iterator = stream.__aiter__()
            try:
                return await iterator.__anext__()
            finally:
                await iterator.aclose()

        with patch("copytx.ingest.subscriptions.websockets.connect",
                   side_effect=[asyncio.TimeoutError(), socket]) as connect, \
                patch("copytx.ingest.subscriptions.asyncio.sleep", new=AsyncMock()) as sleep:
            result = asyncio.run(first_notification())

        assert result.signature == "sig-after-timeout"
        assert connect.call_count == 2
        sleep.assert_awaited_once_with(1.0)
        assert socket.sent[0]["method"] == "logsSubscribe"
        assert socket.sent[-1] == {"jsonrpc": "2.0", "id": 2, "method": "logsUnsubscribe", "params": [42]}

    def test_reconnects_after_connection_error(self):
        socket = FakeSocket([json.dumps(notification("sig2"))])
        stream = AccountLogStream("wss://example.invalid", ACCOUNT)

        async def first_notification():
            iterator = stream.__aiter__()
            try:
                return await iterator.__anext__()
            finally:
                await iterator.aclose()

        with patch("copytx.ingest.subscriptions.websockets.connect",
                   side_effect=[ConnectionRefusedError("refused"), socket]), \
                patch("copytx.ingest.subscriptions.asyncio.sleep", new=AsyncMock()):
            assert asyncio.run(first_notification()).signature == "sig2"

        assert stream.reconnect_delay == 2.0
