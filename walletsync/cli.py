"""Command-line interface for walletsync."""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from .app import Services, build_services
from .catalog import find_quote
from .config import load_config
from .errors import InvalidAssetError, NoSessionError, WalletSyncError
from .logging_setup import configure_logging
from .models import AssetClass, AssetQuote, PortfolioSnapshot
from .stores import seed_default_portfolio

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse CLI parser."""
    parser = argparse.ArgumentParser(
        prog="walletsync",
        description="Cross-asset portfolio sync and exchange engine",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: config.yaml in project root)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )

    sub = parser.add_subparsers(dest="command")

    refresh_parser = sub.add_parser("refresh", help="Refresh and print portfolio snapshots")
    refresh_parser.add_argument(
        "asset_class",
        nargs="?",
        choices=[c.value for c in AssetClass] + ["all"],
        default="all",
        help="Asset class to refresh (default: all)",
    )

    watch_parser = sub.add_parser("watch", help="Auto-refresh and follow ledger changes")
    watch_parser.add_argument(
        "interval",
        nargs="?",
        type=int,
        default=None,
        help="Refresh interval in seconds (overrides config)",
    )

    quote_parser = sub.add_parser("quote", help="Quote an exchange between two coins")
    quote_parser.add_argument("from_symbol", metavar="FROM")
    quote_parser.add_argument("to_symbol", metavar="TO")
    quote_parser.add_argument("amount", nargs="?", type=float, default=0.0)

    exchange_parser = sub.add_parser("exchange", help="Exchange one coin for another")
    exchange_parser.add_argument("from_symbol", metavar="FROM")
    exchange_parser.add_argument("to_symbol", metavar="TO")
    exchange_parser.add_argument("amount", type=float)

    sub.add_parser("pairs", help="List exchangeable coins with balances")

    market_parser = sub.add_parser(
        "market", help="List trending, top-gaining or high-volume coins"
    )
    market_parser.add_argument(
        "view",
        choices=["trending", "gainers", "volume"],
        help="Which market list to show",
    )
    market_parser.add_argument("limit", nargs="?", type=int, default=10)

    news_parser = sub.add_parser("news", help="Show latest crypto news")
    news_parser.add_argument("limit", nargs="?", type=int, default=None)

    sub.add_parser("seed", help="Create the starter portfolio for the session user")

    return parser


# ---------------------------------------------------------------------------
# Output helpers
# ---------------------------------------------------------------------------


def format_snapshot(snapshot: PortfolioSnapshot) -> str:
    flags = []
    if snapshot.is_fallback:
        flags.append("demo data")
    if snapshot.is_stale:
        flags.append("stale")
    header = f"━━ {snapshot.asset_class.value.upper()} ━━"
    if flags:
        header += f" ({', '.join(flags)})"

    lines = [header]
    for holding in snapshot.holdings:
        if not holding.is_held:
            continue
        q = holding.quote
        lines.append(
            f"  {q.display_symbol:<8} {holding.quantity:>14.6f} × ${q.price_usd:,.2f}"
            f" = ${holding.value_usd:,.2f} ({q.change_percent_24h:+.2f}%)"
        )
    if snapshot.unpriced:
        lines.append(f"  No price for: {', '.join(snapshot.unpriced)}")
    lines.append(
        f"  Total: ${snapshot.total_value_usd:,.2f} "
        f"({snapshot.weighted_change_percent:+.2f}% 24h) · "
        f"{snapshot.held_count} held of {len(snapshot.holdings)} listed"
    )
    if snapshot.error:
        lines.append(f"  Last error: {snapshot.error}")
    return "\n".join(lines)


def _print_snapshot(snapshot: PortfolioSnapshot) -> None:
    print(format_snapshot(snapshot))


async def _resolve_pair(
    services: Services, from_symbol: str, to_symbol: str
) -> tuple[AssetQuote, AssetQuote]:
    batch = await services.catalog.fetch(AssetClass.CRYPTO)
    quotes = []
    for symbol in (from_symbol, to_symbol):
        asset_id = services.exchange.resolve_asset_id(symbol)
        quote = find_quote(batch.quotes, asset_id) or find_quote(batch.quotes, symbol)
        if quote is None:
            raise InvalidAssetError(f"No market data for '{symbol}'")
        quotes.append(quote)
    return quotes[0], quotes[1]


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


async def _refresh(services: Services, asset_class: str) -> None:
    if asset_class == "all":
        outcomes = list((await services.portfolio.refresh_all(manual=True)).values())
    else:
        outcomes = [await services.portfolio.refresh(AssetClass(asset_class), manual=True)]

    for outcome in outcomes:
        if outcome.snapshot is not None:
            _print_snapshot(outcome.snapshot)
        elif outcome.skipped:
            print(f"{outcome.asset_class.value}: skipped ({outcome.skipped})")


async def _watch(services: Services, interval: int | None) -> None:
    services.portfolio.subscribe(_print_snapshot)
    tasks = [services.portfolio.run_auto_refresh(interval)]
    if services.identity.current_user_id():
        tasks.append(services.portfolio.watch_ledger())
    await asyncio.gather(*tasks)


async def _quote(services: Services, from_symbol: str, to_symbol: str, amount: float) -> None:
    from_asset, to_asset = await _resolve_pair(services, from_symbol, to_symbol)
    quote = services.exchange.quote(from_asset, to_asset, amount)
    print(
        f"1 {from_asset.display_symbol} = {quote.rate:.8f} {to_asset.display_symbol}"
    )
    if amount:
        print(
            f"{amount} {from_asset.display_symbol} → {quote.to_amount:.8f} "
            f"{to_asset.display_symbol} (fee {quote.fee_amount:.8f} "
            f"{from_asset.display_symbol})"
        )
    print(
        f"Minimum: {services.exchange.minimum_amount(from_asset.display_symbol)} "
        f"{from_asset.display_symbol}"
    )


async def _reprice(services: Services, asset: AssetQuote) -> AssetQuote:
    fresh = await services.catalog.fetch_single_crypto(asset.identifier)
    if fresh is None:
        raise InvalidAssetError(f"No current price for '{asset.display_symbol}'")
    return fresh


async def _exchange(
    services: Services, from_symbol: str, to_symbol: str, amount: float
) -> None:
    from_asset, to_asset = await _resolve_pair(services, from_symbol, to_symbol)
    from_asset = await _reprice(services, from_asset)
    to_asset = await _reprice(services, to_asset)
    quote = services.exchange.quote(from_asset, to_asset, amount)
    receipt = await services.exchange.execute(
        from_asset,
        to_asset,
        quote.from_amount,
        quote.to_amount,
        quote.rate,
        quote.fee_amount,
    )
    print(
        f"Exchanged {receipt.from_amount:.8f} {from_asset.display_symbol} "
        f"(+{receipt.fee_amount:.8f} fee) for {receipt.to_amount:.8f} "
        f"{to_asset.display_symbol}"
    )
    print(
        f"Balances: {receipt.from_balance_after:.8f} {from_asset.display_symbol}, "
        f"{receipt.to_balance_after:.8f} {to_asset.display_symbol}"
    )


async def _pairs(services: Services) -> None:
    batch = await services.catalog.fetch(AssetClass.CRYPTO)
    for pair in await services.exchange.list_pairs(batch.quotes):
        q = pair.quote
        print(f"{q.display_symbol:<8} ${q.price_usd:>14,.4f}  balance {pair.balance:.6f}")


async def _market(services: Services, view: str, limit: int) -> None:
    if view == "trending":
        batch = await services.catalog.fetch_trending(limit)
    elif view == "gainers":
        batch = await services.catalog.fetch_top_gainers(limit)
    else:
        batch = await services.catalog.fetch_trending_by_volume(limit)
    if batch.is_fallback:
        print("(demo data)")
    for q in batch.quotes:
        print(
            f"{q.display_symbol:<8} ${q.price_usd:>14,.4f} {q.change_percent_24h:+7.2f}%"
            f"  vol ${q.volume_24h_usd:,.0f}"
        )


async def _news(services: Services, limit: int | None) -> None:
    for article in await services.catalog.fetch_news(limit):
        published = (
            article.published_at.strftime("%Y-%m-%d %H:%M") if article.published_at else "—"
        )
        print(f"[{published}] {article.source}: {article.title}")
        if article.url:
            print(f"    {article.url}")


async def _seed(services: Services) -> None:
    user_id = services.identity.current_user_id()
    if not user_id:
        raise NoSessionError("Set session.user_id before seeding a portfolio")
    if await seed_default_portfolio(services.store, user_id):
        print(f"Seeded starter portfolio for {user_id}")
    else:
        print(f"{user_id} already has a portfolio")


async def _run(args: argparse.Namespace) -> None:
    """Execute the selected command."""
    configure_logging(args.log_level)
    config = load_config(args.config)
    services = build_services(config)

    if args.command == "refresh":
        await _refresh(services, args.asset_class)
    elif args.command == "watch":
        await _watch(services, args.interval)
    elif args.command == "quote":
        await _quote(services, args.from_symbol, args.to_symbol, args.amount)
    elif args.command == "exchange":
        await _exchange(services, args.from_symbol, args.to_symbol, args.amount)
    elif args.command == "pairs":
        await _pairs(services)
    elif args.command == "market":
        await _market(services, args.view, args.limit)
    elif args.command == "news":
        await _news(services, args.limit)
    elif args.command == "seed":
        await _seed(services)
    else:
        build_parser().print_help()
        sys.exit(1)


def main() -> None:
    """Entry point."""
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        asyncio.run(_run(args))
    except WalletSyncError as e:
        logger.error("%s", e)
        sys.exit(1)
