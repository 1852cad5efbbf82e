"""
Token price feed for position monitoring.

Uses the Jupiter price API (free, no auth required).
"""

import asyncio
import logging
from decimal import Decimal, InvalidOperation
from typing import Optional

import requests

from copytx.core.utils import short_sig

logger = logging.getLogger(__name__)

JUPITER_PRICE_API = "https://api.jup.ag/price/v2"


class JupiterPriceFeed:
    """
    Current market price for a token, optionally quoted in another token.

    Returns None when no price is available; callers skip that tick.
    """

    def __init__(self, timeout: int = 10):
        self.timeout = timeout
        self.session = requests.Session()

    def _fetch(self, mint: str, vs_mint: Optional[str]) -> Optional[Decimal]:
        params = {"ids": mint}
        if vs_mint:
            params["vsToken"] = vs_mint

        try:
            response = self.session.get(JUPITER_PRICE_API, params=params, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as e:
            logger.debug(f"Failed to get price for {short_sig(mint)}: {e}")
            return None

        token_data = (data.get("data") or {}).get(mint) or {}
        price = token_data.get("price")
        if price is None:
            return None

        try:
            return Decimal(str(price))
        except InvalidOperation:
            logger.debug(f"Unparseable price for {short_sig(mint)}: {price!r}")
            return None

    async def get_price(self, mint: str, vs_mint: Optional[str] = None) -> Optional[Decimal]:
        return await asyncio.to_thread(self._fetch, mint, vs_mint)

    def close(self) -> None:
        self.session.close()
