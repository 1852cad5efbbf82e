"""
Unit tests for event channels and the Telegram sink.
"""

import asyncio
import sys
from pathlib import Path
from unittest.mock import MagicMock, patch

import requests

# Add parent to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from copytx.core.config import Config
from copytx.core.events import Event, EventChannel, EventType
from copytx.notify.telegram import TelegramNotifier


class TestEventChannel:
    """Test fan-out to subscribers."""

    def test_fan_out(self):
        async def body():
            channel = EventChannel("test")
            first, second = channel.subscribe(), channel.subscribe()
            channel.emit(EventType.STATUS, {"status": "running"})
            return first.get_nowait(), second.get_nowait()

        a, b = asyncio.run(body())
        assert a is b
        assert a.type == EventType.STATUS

    def test_full_queue_drops_oldest(self):
        async def body():
            channel = EventChannel("test", maxsize=2)
            queue = channel.subscribe()
            for i in range(3):
                channel.emit(EventType.STATUS, {"n": i})
            return [queue.get_nowait().data["n"] for _ in range(queue.qsize())]

        assert asyncio.run(body()) == [1, 2]

    def test_unsubscribe(self):
        async def body():
            channel = EventChannel("test")
            queue = channel.subscribe()
            channel.unsubscribe(queue)
            channel.emit(EventType.STATUS, {})
            return channel.subscriber_count, queue.qsize()

        assert asyncio.run(body()) == (0, 0)

    def test_to_dict(self):
        event = Event(EventType.TRADE_FAILED, {"error": "x"})
        assert event.to_dict() == {"type": "trade_failed", "data": {"error": "x"}}


class TestTelegramNotifier:
    """Test Telegram formatting and delivery."""

    def make_notifier(self):
        return TelegramNotifier(Config(telegram_bot_token="token", telegram_chat_id="123"))

    def test_disabled_without_credentials(self):
        notifier = TelegramNotifier(Config())
        assert not notifier.enabled
        assert notifier.send_message("hi") is False

    def test_format_trade_executed(self):
        event = Event(EventType.TRADE_EXECUTED, {
            "signature": "copysig",
            "source_signature": "sourcesig",
            "token_in": "MintA111111111111111111111111111111111111111",
            "token_out": "MintB111111111111111111111111111111111111111",
            "amount": "0.1",
        })
        text = self.make_notifier().format_event(event)
        assert "Trade executed" in text
        assert "solscan.io/tx/copysig" in text

    def test_open_position_update_not_sent(self):
        event = Event(EventType.POSITION_UPDATED, {"status": "open", "token_mint": "MintB"})
        assert self.make_notifier().format_event(event) is None

    def test_closed_position_sent(self):
        event = Event(EventType.POSITION_UPDATED, {
            "status": "closed",
            "close_reason": "take_profit",
            "token_mint": "MintB",
            "entry_price": "10",
            "current_price": "14.5",
            "pnl": "0.45",
        })
        assert "take_profit" in self.make_notifier().format_event(event)

    @patch("copytx.notify.telegram.requests.post")
    def test_send_message(self, mock_post):
        mock_post.return_value = MagicMock(raise_for_status=MagicMock())
        assert self.make_notifier().send_message("hello") is True

        _, kwargs = mock_post.call_args
        assert kwargs["json"]["chat_id"] == "123"
        assert kwargs["json"]["parse_mode"] == "HTML"

    @patch("copytx.notify.telegram.requests.post")
    def test_send_message_failure(self, mock_post):
        mock_post.side_effect = requests.ConnectionError("down")
        assert self.make_notifier().send_message("hello") is False
