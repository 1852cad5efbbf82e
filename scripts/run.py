#!/usr/bin/env python3
"""
Run the copy-trading bot against a target wallet.

- Subscribes to the target wallet's logs via WebSocket
- Parses each transaction and detects swaps from balance deltas
- Mirrors swaps at a scaled size through Jupiter
- Tracks resulting positions with take-profit / stop-loss
"""

import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

import asyncio
import logging
import signal
from datetime import datetime

import typer
from typer import Option, Typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from copytx.bot import CopyTradingBot
from copytx.core.config import Config
from copytx.core.events import EventType
from copytx.core.utils import mask_url, short_sig
from copytx.notify.telegram import TelegramNotifier

app = Typer(help="Solana copy-trading bot")
console = Console()

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("run")


def print_status(config: Config, bot: CopyTradingBot, target: str, telegram: bool):
    """Print current configuration status."""
    table = Table(title="CopyTX", show_header=False)
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Mode", config.mode)
    table.add_row("RPC", mask_url(config.rpc_url))
    table.add_row("Bot Wallet", str(bot.wallet.pubkey))
    table.add_row("Balance", f"{bot.wallet.balance} SOL")
    table.add_row("Target Wallet", target)
    table.add_row("Scaling Factor", str(config.scaling_factor))
    table.add_row("Max Balance Share", f"{config.max_balance_percentage * 100:.0f}%")
    table.add_row("Take Profit / Stop Loss", f"+{config.take_profit * 100:.0f}% / -{config.stop_loss * 100:.0f}%")
    table.add_row("Telegram", "Enabled" if telegram else "Disabled")

    console.print(table)
    console.print("\n[green]Listening for target wallet activity...[/green]")
    console.print("[dim]Press Ctrl+C to stop[/dim]\n")


async def print_events(queue: asyncio.Queue):
    """Print events to the console."""
    while True:
        event = await queue.get()
        data = event.data

        if event.type == EventType.TRADE_EXECUTED:
            console.print(
                f"[bold green]TRADE[/bold green] {data['amount']} "
                f"{short_sig(data['token_in'], 8)} → {short_sig(data['token_out'], 8)} | {data['signature']}"
            )
        elif event.type == EventType.TRADE_FAILED:
            console.print(f"[bold red]FAILED[/bold red] {short_sig(data.get('source_signature') or '')}: {data['error']}")
        elif event.type == EventType.POSITION_UPDATED:
            style = "yellow" if data["status"] == "closed" else "dim"
            reason = f" ({data['close_reason']})" if data.get("close_reason") else ""
            console.print(
                f"[{style}]POSITION {short_sig(data['token_mint'], 8)} {data['status']}{reason} | "
                f"price {data['current_price']} | pnl {data['pnl']}[/{style}]"
            )
        elif event.type == EventType.STATUS:
            console.print(f"[cyan]STATUS[/cyan] {data['status']}")


@app.command()
def main(
    target: str = Option(None, "--target", "-t", help="Target wallet to copy (defaults to TARGET_WALLET)"),
    verbose: bool = Option(False, "--verbose", "-v", help="Verbose logging"),
):
    """
    Start copy trading.

    Requires WALLET_PRIVATE_KEY and SOLANA_RPC_URL in .env
    """
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    config = Config.from_env()
    target = target or config.target_wallet

    problems = config.validate()
    if not target:
        problems.append("Target wallet not specified (--target or TARGET_WALLET)")
    if problems:
        for problem in problems:
            console.print(f"[red]ERROR: {problem}[/red]")
        raise typer.Exit(1)

    try:
        bot = CopyTradingBot(config)
    except ValueError as e:
        console.print(f"[red]ERROR: could not load wallet: {e}[/red]")
        raise typer.Exit(1)

    telegram = TelegramNotifier(config)

    console.print(Panel(
        "[bold]CopyTX - Solana Copy Trading[/bold]\n\n"
        f"{config.get_summary()}",
        title="Starting",
        border_style="blue"
    ))

    start_time = datetime.now()

    async def run_all():
        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()

        # Handle graceful shutdown
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop_event.set)

        bot.add_consumer(print_events)
        if telegram.enabled:
            bot.add_consumer(telegram.run)

        await bot.start(target)
        print_status(config, bot, target, telegram.enabled)

        await stop_event.wait()
        console.print("\n[yellow]Shutting down...[/yellow]")
        await bot.stop()

    asyncio.run(run_all())

    status = bot.status()
    stats = status["stats"]
    runtime = str(datetime.now() - start_time).split(".")[0]
    console.print(
        f"\n[bold]Session Summary:[/bold]\n"
        f"  Runtime: {runtime}\n"
        f"  Trades: {stats['total_trades']} "
        f"({stats['successful_trades']} ok, {stats['failed_trades']} failed)\n"
        f"  Volume: {stats['total_volume']}\n"
        f"  Open positions: {status['open_positions']} (unrealized PnL {status['unrealized_pnl']})\n"
        f"  RPC calls: {status['rpc_calls']}"
    )


if __name__ == "__main__":
    app()
