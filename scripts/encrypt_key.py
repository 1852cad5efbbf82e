#!/usr/bin/env python3
"""
Encrypt the operator wallet key for storage in .env.

Prints the encrypted value to use as WALLET_PRIVATE_KEY together with
WALLET_ENCRYPTION_KEY.
"""

import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

import secrets

import typer
from rich.console import Console
from rich.prompt import Prompt

from copytx.core.config import Config
from copytx.trading.wallet import encrypt_private_key, load_keypair

app = typer.Typer(help="Encrypt a wallet private key")
console = Console()


@app.command()
def main(
    generate_key: bool = typer.Option(False, "--generate-key", "-g", help="Generate a new encryption key"),
):
    """Encrypt a base58 private key with AES-256-GCM."""
    config = Config.from_env()
    encryption_key = config.wallet_encryption_key

    if generate_key or not encryption_key:
        encryption_key = secrets.token_hex(32)
        console.print(f"[yellow]New WALLET_ENCRYPTION_KEY:[/yellow] {encryption_key}")

    private_key = Prompt.ask("Private key (base58)", password=True, console=console)

    try:
        keypair = load_keypair(private_key)
    except ValueError as e:
        console.print(f"[red]Invalid private key: {e}[/red]")
        raise typer.Exit(1)

    encrypted = encrypt_private_key(private_key, encryption_key)

    console.print(f"\n[green]Wallet:[/green] {keypair.pubkey()}")
    console.print(f"[green]WALLET_PRIVATE_KEY=[/green]{encrypted}")


if __name__ == "__main__":
    app()
