"""
Telegram notification sink.

Forwards trade and closed-position events to a Telegram chat.
"""

import asyncio
import logging
from typing import Optional

import requests

from copytx.core.config import Config
from copytx.core.events import Event, EventType
from copytx.core.utils import short_sig

logger = logging.getLogger(__name__)


class TelegramNotifier:
    """
    Sends event notifications to a Telegram bot chat.

    Open-position price updates are not forwarded; only fills, failures
    and closes.
    """

    def __init__(self, config: Config):
        self.config = config
        self.bot_token = config.telegram_bot_token
        self.chat_id = config.telegram_chat_id

    @property
    def enabled(self) -> bool:
        return bool(self.bot_token and self.chat_id)

    def format_event(self, event: Event) -> Optional[str]:
        """Render an event as HTML, or None if it should not be sent."""
        data = event.data

        if event.type == EventType.TRADE_EXECUTED:
            return (
                "<b>Trade executed</b>\n"
                f"Amount: {data['amount']}\n"
                f"{short_sig(data['token_in'], 8)} → {short_sig(data['token_out'], 8)}\n"
                f"Copied: <code>{short_sig(data.get('source_signature') or '', 16)}</code>\n"
                f"<a href=\"https://solscan.io/tx/{data['signature']}\">View on Solscan</a>"
            )

        if event.type == EventType.TRADE_FAILED:
            return (
                "<b>Trade failed</b>\n"
                f"Copied: <code>{short_sig(data.get('source_signature') or '', 16)}</code>\n"
                f"Attempts: {data.get('attempts', 0)}\n"
                f"Error: {data.get('error')}"
            )

        if event.type == EventType.POSITION_UPDATED and data.get("status") == "closed":
            return (
                f"<b>Position closed ({data.get('close_reason')})</b>\n"
                f"Token: <code>{data['token_mint']}</code>\n"
                f"Entry: {data['entry_price']} | Exit: {data['current_price']}\n"
                f"PnL: {data['pnl']}"
            )

        if event.type == EventType.STATUS:
            return f"CopyTX {data.get('status')} | target: {short_sig(data.get('target_wallet') or '', 8)}"

        return None

    def send_message(self, text: str) -> bool:
        """
        Send a message to Telegram. Supports HTML formatting.
        """
        if not self.enabled:
            logger.warning("Telegram not configured, skipping notification")
            return False

        url = f"https://api.telegram.org/bot{self.bot_token}/sendMessage"

        try:
            response = requests.post(
                url,
                json={
                    "chat_id": self.chat_id,
                    "text": text,
                    "parse_mode": "HTML",
                    "disable_web_page_preview": True,
                },
                timeout=10,
            )
            response.raise_for_status()

            logger.info("Telegram message sent")
            return True

        except requests.RequestException as e:
            logger.error(f"Telegram message failed: {e}")
            return False

    async def run(self, queue: asyncio.Queue) -> None:
        """Consume events from a subscriber queue until cancelled."""
        while True:
            event = await queue.get()
            text = self.format_event(event)
            if text:
                await asyncio.to_thread(self.send_message, text)
