"""
Operator wallet state for CopyTX trading.

Handles key loading, balance tracking, trade sizing and viability checks.
"""

import logging
import os
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

import base58
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from copytx.core.utils import lamports_to_sol
from copytx.rpc.client import LedgerClient
from copytx.rpc.governor import RPCGovernor

logger = logging.getLogger(__name__)

NONCE_SIZE = 12


def _aesgcm(encryption_key: str) -> AESGCM:
    key = bytes.fromhex(encryption_key)
    if len(key) != 32:
        raise ValueError("WALLET_ENCRYPTION_KEY must be 32 bytes (64 hex chars)")
    return AESGCM(key)


def encrypt_private_key(private_key: str, encryption_key: str) -> str:
    """
    Encrypt a private key for storage.

    Args:
        private_key: Private key in any format accepted by load_keypair
        encryption_key: 32-byte hex-encoded key

    Returns:
        Hex string of nonce || ciphertext
    """
    nonce = os.urandom(NONCE_SIZE)
    ciphertext = _aesgcm(encryption_key).encrypt(nonce, private_key.encode("utf-8"), None)
    return (nonce + ciphertext).hex()


def decrypt_private_key(encrypted: str, encryption_key: str) -> str:
    blob = bytes.fromhex(encrypted)
    plaintext = _aesgcm(encryption_key).decrypt(blob[:NONCE_SIZE], blob[NONCE_SIZE:], None)
    return plaintext.decode("utf-8")


def load_keypair(secret: str, encryption_key: Optional[str] = None) -> Keypair:
    """
    Load a Keypair.

    Accepts base58 (64-byte secret key or 32-byte seed) or a comma-separated
    byte array. When encryption_key is set, `secret` is first decrypted.

    Raises:
        ValueError: Key cannot be decoded
    """
    if encryption_key:
        secret = decrypt_private_key(secret, encryption_key)

    secret = secret.strip()
    if "," in secret or secret.startswith("["):
        key_bytes = bytes(int(part) for part in secret.strip("[]").split(","))
    else:
        key_bytes = base58.b58decode(secret)

    # Solana private keys are 64 bytes (32 private + 32 public)
    # or 32 bytes (private only, public derived)
    if len(key_bytes) == 64:
        return Keypair.from_bytes(key_bytes)
    if len(key_bytes) == 32:
        return Keypair.from_seed(key_bytes)
    raise ValueError(f"Invalid key length: {len(key_bytes)} bytes")


class WalletState:
    """
    Tracks the operator wallet's balance and sizes trades against it.

    Balances are in SOL. Every ledger read goes through the governor.
    """

    def __init__(
        self,
        keypair: Keypair,
        ledger: LedgerClient,
        governor: RPCGovernor,
        scaling_factor: Decimal = Decimal("0.01"),
        min_trade_size: Decimal = Decimal("0.001"),
        max_balance_percentage: Decimal = Decimal("0.5"),
        fee_buffer_ratio: Decimal = Decimal("0.01"),
        max_transaction_size: Optional[Decimal] = None,
    ):
        """
        Initialize wallet state.

        Args:
            keypair: Operator keypair (fee payer and signer)
            ledger: Ledger RPC client
            governor: Shared RPC governor
            scaling_factor: Ratio applied to observed trade sizes
            min_trade_size: Smallest trade we place, in SOL
            max_balance_percentage: Largest share of balance per trade
            fee_buffer_ratio: Extra balance required on top of the trade for fees
            max_transaction_size: Optional absolute cap per trade, in SOL
        """
        self.keypair = keypair
        self.ledger = ledger
        self.governor = governor
        self.scaling_factor = Decimal(scaling_factor)
        self.min_trade_size = Decimal(min_trade_size)
        self.max_balance_percentage = Decimal(max_balance_percentage)
        self.fee_buffer_ratio = Decimal(fee_buffer_ratio)
        self.max_transaction_size = Decimal(max_transaction_size) if max_transaction_size is not None else None

        self.balance = Decimal("0")
        self.last_refreshed_at: Optional[datetime] = None

    @classmethod
    def from_config(cls, config, keypair: Keypair, ledger: LedgerClient, governor: RPCGovernor) -> "WalletState":
        return cls(
            keypair=keypair,
            ledger=ledger,
            governor=governor,
            scaling_factor=config.scaling_factor,
            min_trade_size=config.min_trade_size,
            max_balance_percentage=config.max_balance_percentage,
            fee_buffer_ratio=config.fee_buffer_ratio,
            max_transaction_size=config.max_transaction_size,
        )

    @property
    def pubkey(self) -> Pubkey:
        return self.keypair.pubkey()

    async def refresh_balance(self) -> Decimal:
        """Query the current balance and overwrite the cached value."""
        lamports = await self.governor.call(self.ledger.get_balance, self.pubkey)
        self.balance = lamports_to_sol(lamports)
        self.last_refreshed_at = datetime.now(timezone.utc)
        logger.debug(f"[WALLET] Balance: {self.balance} SOL")
        return self.balance

    @property
    def max_trade_size(self) -> Decimal:
        return self.balance * self.max_balance_percentage

    def size_trade(self, observed_amount: Decimal) -> Decimal:
        """
        Scale an observed trade to our size.

        scaled = observed * scaling_factor, capped by max_transaction_size,
        clamped up to min_trade_size, then down to balance * max_balance_percentage.
        """
        scaled = Decimal(observed_amount) * self.scaling_factor

        if self.max_transaction_size is not None and scaled > self.max_transaction_size:
            scaled = self.max_transaction_size

        if scaled < self.min_trade_size:
            scaled = self.min_trade_size

        if scaled > self.max_trade_size:
            scaled = self.max_trade_size

        return scaled

    async def check_viability(self, trade_amount: Decimal) -> bool:
        """
        Refresh balance and check it covers the trade plus fee buffer.

        Returns False (not an error) when the balance is insufficient.
        """
        await self.refresh_balance()

        required = Decimal(trade_amount) * (1 + self.fee_buffer_ratio)
        viable = self.balance >= required

        if not viable:
            logger.info(f"[WALLET] Insufficient balance: {self.balance} SOL < {required} SOL required")

        return viable

    def within_balance_share(self, trade_amount: Decimal) -> bool:
        """Check trade_amount against balance * max_balance_percentage at the cached balance."""
        return Decimal(trade_amount) <= self.max_trade_size

    async def check_trade(self, trade_amount: Decimal) -> bool:
        """
        Refresh balance and check a sized trade is still allowed.

        Requires both the fee-buffered viability check and the balance-share
        cap to hold against the fresh balance. A trade sized against an
        earlier, larger balance fails here instead of being submitted.
        """
        if not await self.check_viability(trade_amount):
            return False

        if not self.within_balance_share(trade_amount):
            logger.info(
                f"[WALLET] Trade {trade_amount} SOL exceeds balance share "
                f"{self.max_trade_size} SOL at current balance"
            )
            return False

        return True
