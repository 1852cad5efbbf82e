#!/usr/bin/env python3
"""
Inspect a transaction: show its transfers and the detected swap.
"""

import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

import asyncio

import typer
from rich.console import Console
from rich.table import Table

from copytx.core.config import Config
from copytx.ingest.transaction_parser import SwapLegPolicy, TransactionParser
from copytx.rpc.client import LedgerClient
from copytx.rpc.governor import RPCGovernor

app = typer.Typer(help="Inspect a Solana transaction")
console = Console()


@app.command()
def main(
    signature: str = typer.Argument(..., help="Transaction signature"),
    owner: str = typer.Option(None, "--owner", "-o", help="Only consider token accounts owned by this wallet"),
    policy: str = typer.Option("first", "--policy", "-p", help="Swap leg policy: first or largest"),
):
    """Parse a transaction and classify it as a swap."""
    config = Config.from_env()

    async def inspect():
        ledger = LedgerClient(config.rpc_url)
        parser = TransactionParser(ledger, RPCGovernor(cooldown=0), SwapLegPolicy(policy))
        try:
            parsed = await parser.parse(signature)
        finally:
            await ledger.close()
        return parsed, parser.classify_swap(parsed, owner=owner)

    parsed, swap = asyncio.run(inspect())

    if parsed is None:
        console.print("[red]Transaction not found, failed, or malformed[/red]")
        raise typer.Exit(1)

    table = Table(title=f"Transfers ({parsed.timestamp:%Y-%m-%d %H:%M:%S})")
    table.add_column("Kind", style="cyan")
    table.add_column("Dir")
    table.add_column("Amount", justify="right")
    table.add_column("Mint / Route")
    table.add_column("Owner", style="dim")

    for transfer in parsed.transfers:
        route = transfer.mint or f"{transfer.source} → {transfer.destination}"
        table.add_row(
            transfer.kind.value,
            transfer.direction.value,
            f"{transfer.amount}",
            route,
            transfer.owner or "",
        )

    console.print(table)

    if swap:
        console.print(
            f"\n[bold green]Swap:[/bold green] {swap.token_in.amount} {swap.token_in.mint} → "
            f"{swap.token_out.amount} {swap.token_out.mint} (price {swap.price})"
        )
    else:
        console.print("\n[yellow]Not a swap[/yellow]")


if __name__ == "__main__":
    app()
