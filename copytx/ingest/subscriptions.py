"""
WebSocket log subscriptions for the target account.

Subscribes to logs mentioning an account and yields one notification per
successful transaction, reconnecting with exponential backoff.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional

import websockets

from copytx.core.utils import mask_url, short_sig

logger = logging.getLogger(__name__)


@dataclass
class LogNotification:
    """A logsNotification for one transaction."""
    signature: str
    err: Optional[Any] = None
    logs: List[str] = field(default_factory=list)
    slot: Optional[int] = None


def get_logs_subscription(account: str, request_id: int = 1, commitment: str = "confirmed") -> Dict[str, Any]:
    """
    Get logsSubscribe payload for transactions mentioning an account.

    Solana logsSubscribe format:
    - params[0]: filter ({"mentions": [address]})
    - params[1]: config object with commitment level
    """
    return {
        "jsonrpc": "2.0",
        "id": request_id,
        "method": "logsSubscribe",
        "params": [
            {"mentions": [account]},
            {"commitment": commitment},
        ],
    }


def get_logs_unsubscribe(subscription_id: int, request_id: int = 2) -> Dict[str, Any]:
    return {
        "jsonrpc": "2.0",
        "id": request_id,
        "method": "logsUnsubscribe",
        "params": [subscription_id],
    }


def extract_log_notification(data: Dict[str, Any]) -> Optional[LogNotification]:
    """
    Extract a log notification from a websocket message.

    Returns:
        LogNotification, or None for confirmations, errors and other messages
    """
    if data.get("method") != "logsNotification":
        return None

    result = data.get("params", {}).get("result", {})
    value = result.get("value", result)
    signature = value.get("signature")
    if not signature:
        return None

    return LogNotification(
        signature=signature,
        err=value.get("err"),
        logs=value.get("logs") or [],
        slot=result.get("context", {}).get("slot"),
    )


class AccountLogStream:
    """
    Async iterator over log notifications for one account.

    Implements automatic reconnection with exponential backoff.
    Failed transactions (err != null) are not yielded.
    """

    def __init__(
        self,
        ws_url: str,
        account: str,
        commitment: str = "confirmed",
        max_reconnect_delay: float = 60.0,
    ):
        self.ws_url = ws_url
        self.account = account
        self.commitment = commitment
        self.reconnect_delay = 1.0
        self.max_reconnect_delay = max_reconnect_delay
        self.subscription_id: Optional[int] = None
        self.message_count = 0

    def __aiter__(self) -> AsyncIterator[LogNotification]:
        return self._listen()

    async def _listen(self) -> AsyncIterator[LogNotification]:
        while True:
            try:
                logger.info(f"[WS] Connecting to {mask_url(self.ws_url)}")

                async with websockets.connect(
                    self.ws_url,
                    ping_interval=30,
                    ping_timeout=10,
                    close_timeout=5,
                ) as ws:
                    await ws.send(json.dumps(get_logs_subscription(self.account, commitment=self.commitment)))
                    logger.info(f"[WS] Sent logsSubscribe for {short_sig(self.account)}")

                    try:
                        async for message in ws:
                            self.message_count += 1
                            notification = self._handle_message(message)
                            if notification is not None:
                                yield notification
                    finally:
                        await self._unsubscribe(ws)

            except websockets.ConnectionClosed as e:
                logger.warning(f"[WS] Connection closed: {e}")
            except asyncio.TimeoutError:
                logger.error(f"[WS] Connection timed out: {mask_url(self.ws_url)}")
            except (OSError, websockets.WebSocketException) as e:
                logger.error(f"[WS] Connection error: {e}")

            logger.info(f"[WS] Reconnecting in {self.reconnect_delay:.0f}s...")
            await asyncio.sleep(self.reconnect_delay)
            self.reconnect_delay = min(self.reconnect_delay * 2, self.max_reconnect_delay)

    def _handle_message(self, message: str) -> Optional[LogNotification]:
        try:
            data = json.loads(message)
        except json.JSONDecodeError as e:
            logger.error(f"[WS] Invalid JSON: {e}")
            return None

        if "error" in data:
            error = data["error"]
            logger.error(f"[WS] RPC Error ({error.get('code', 0)}): {error.get('message', 'Unknown error')}")
            return None

        # Subscription confirmation
        if "result" in data and isinstance(data["result"], int):
            self.subscription_id = data["result"]
            self.reconnect_delay = 1.0
            logger.info(f"[WS] ✓ Subscription confirmed: ID {self.subscription_id}")
            return None

        notification = extract_log_notification(data)
        if notification is None:
            return None

        if notification.err is not None:
            logger.info(f"[WS] Ignoring failed transaction {short_sig(notification.signature)}: {notification.err}")
            return None

        return notification

    async def _unsubscribe(self, ws) -> None:
        if self.subscription_id is None:
            return
        subscription_id, self.subscription_id = self.subscription_id, None
        try:
            await ws.send(json.dumps(get_logs_unsubscribe(subscription_id)))
            logger.info(f"[WS] Unsubscribed {subscription_id}")
        except websockets.ConnectionClosed:
            pass
