"""
Utility functions for CopyTX.
"""

from decimal import Decimal
from urllib.parse import urlparse

LAMPORTS_PER_SOL = Decimal(1_000_000_000)


def lamports_to_sol(lamports: int) -> Decimal:
    return Decimal(lamports) / LAMPORTS_PER_SOL


def to_base_units(amount: Decimal, decimals: int) -> int:
    """
    Convert a UI amount to integer base units.

    Examples:
        (Decimal("0.1"), 9) -> 100000000
        (Decimal("1.5"), 6) -> 1500000
    """
    return int(amount * (Decimal(10) ** decimals))


def short_sig(signature: str, length: int = 12) -> str:
    """Shorten a signature or address for log lines."""
    if not signature:
        return "unknown"
    if len(signature) <= length:
        return signature
    return f"{signature[:length]}..."


def mask_url(url: str) -> str:
    """Mask sensitive parts of a URL (API keys in path/query) for safe logging."""
    if not url:
        return "Not configured"

    try:
        parsed = urlparse(url)
        if parsed.path in ("", "/") and not parsed.query:
            return f"{parsed.scheme}://{parsed.netloc}"
        return f"{parsed.scheme}://{parsed.netloc}/***MASKED***"
    except ValueError:
        return "***MASKED***"
