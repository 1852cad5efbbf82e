"""
CopyTX - Solana Copy-Trading Bot

Watches a target wallet, mirrors its swaps at a proportional size from
an operator wallet, and manages the resulting positions with
take-profit / stop-loss exits.
"""

__version__ = "0.1.0"
