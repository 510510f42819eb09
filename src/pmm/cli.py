"""Command-line interface for pmm."""

import asyncio
import os
import sys
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from pmm import __version__
from pmm.config import get_settings, reload_settings
from pmm.market_maker.errors import ConfigurationError
from pmm.utils.logging import setup_logging

console = Console()


def _fmt(value: Optional[float], digits: int = 4) -> str:
    return "-" if value is None else f"{value:.{digits}f}"


@click.group()
@click.version_option(version=__version__)
def cli() -> None:
    """pmm - Polymarket binary market maker."""
    pass


@cli.command()
@click.option("--market", "markets", multiple=True, help="Market ID to quote at startup (repeatable)")
@click.option("--dry-run/--live", default=True, help="Dry run mode (no real orders)")
@click.option("--host", type=str, help="Control API bind address")
@click.option("--port", type=int, help="Control API port")
@click.option("--log-level", type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]), default="INFO")
def run(
    markets: tuple[str, ...],
    dry_run: bool,
    host: Optional[str],
    port: Optional[int],
    log_level: str,
) -> None:
    """Run the market maker and its control API."""
    import json

    # Override settings from CLI
    os.environ["DRY_RUN"] = str(dry_run).lower()
    if markets:
        os.environ["MM_MARKET_IDS"] = json.dumps(list(markets))
    if host:
        os.environ["DASHBOARD_HOST"] = host
    if port is not None:
        os.environ["DASHBOARD_PORT"] = str(port)
    os.environ["LOG_LEVEL"] = log_level

    settings = reload_settings()
    setup_logging(settings.log_level, json_logs=settings.log_json)

    mode = "[yellow]DRY RUN[/yellow]" if settings.dry_run else "[red]LIVE TRADING[/red]"
    console.print(f"\n[bold]pmm Market Maker[/bold] - {mode}")
    console.print(f"[dim]Spread:[/dim] {settings.mm_spread_bps:g} bps")
    console.print(f"[dim]Order size:[/dim] ${settings.mm_order_size_usd:g}")
    console.print(f"[dim]Max imbalance:[/dim] {settings.mm_max_inventory_imbalance:g}")
    console.print(f"[dim]Control API:[/dim] http://{settings.dashboard_host}:{settings.dashboard_port}/api")
    if settings.mm_market_ids:
        console.print(f"[dim]Markets:[/dim] {', '.join(settings.mm_market_ids)}")
    console.print()

    from pmm.market_maker.bot import run_market_maker

    try:
        asyncio.run(run_market_maker(settings))
    except ConfigurationError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted[/yellow]")


@cli.command()
@click.argument("token_id")
@click.option("--depth", default=20, help="Levels to request")
def book(token_id: str, depth: int) -> None:
    """Fetch one orderbook and show its top of book."""
    setup_logging("WARNING")

    async def _book() -> None:
        from pmm.executor.exchange import PolymarketExchange
        from pmm.market_maker.orderbook import OrderbookStateTracker

        exchange = PolymarketExchange.from_settings(get_settings())
        try:
            tracker = OrderbookStateTracker(exchange, depth=depth)
            await tracker.poll([token_id])
            snapshot = tracker.get_snapshot(token_id)
        finally:
            await exchange.close()

        if snapshot is None:
            console.print(f"[yellow]No orderbook for token {token_id}[/yellow]")
            return

        table = Table(title=f"Orderbook {token_id[:20]}...")
        table.add_column("Best Bid", justify="right")
        table.add_column("Best Ask", justify="right")
        table.add_column("Mid", justify="right")
        table.add_column("Spread", justify="right")
        table.add_column("Spread bps", justify="right", style="cyan")
        table.add_column("Levels (b/a)", justify="right")
        table.add_row(
            _fmt(snapshot.best_bid),
            _fmt(snapshot.best_ask),
            _fmt(snapshot.mid_price),
            _fmt(snapshot.spread),
            _fmt(snapshot.spread_bps, 1),
            f"{snapshot.bid_depth}/{snapshot.ask_depth}",
        )
        console.print(table)

    asyncio.run(_book())


@cli.command()
@click.argument("market_id")
def market(market_id: str) -> None:
    """Show market metadata."""
    setup_logging("WARNING")

    async def _market() -> None:
        from pmm.api.gamma import GammaClient

        async with GammaClient(get_settings().gamma_base_url) as gamma:
            data = await gamma.get_market(market_id)
            parsed = gamma.parse_market(data) if data else None

        if parsed is None:
            console.print(f"[yellow]Market {market_id} not found[/yellow]")
            return

        table = Table(title=parsed.question[:60] or market_id, show_header=False)
        table.add_column("Field", style="dim")
        table.add_column("Value")
        table.add_row("ID", parsed.id)
        table.add_row("Condition", parsed.condition_id)
        table.add_row("Slug", parsed.slug)
        table.add_row("Active", str(parsed.active))
        table.add_row("Closed", str(parsed.closed))
        table.add_row("End date", parsed.end_date.isoformat() if parsed.end_date else "-")
        for i, token_id in enumerate(parsed.clob_token_ids):
            label = parsed.outcomes[i] if i < len(parsed.outcomes) else f"Outcome {i}"
            table.add_row(f"Token ({label})", token_id)
        console.print(table)

    asyncio.run(_market())


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
