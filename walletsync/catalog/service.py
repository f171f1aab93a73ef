"""Asset catalog — fetches and normalizes crypto, stock and NFT market data."""
from __future__ import annotations

import asyncio
import logging
from typing import Any

from ..clients import MarketDataClient
from ..config import AppConfig
from ..errors import MalformedDataError, MarketDataError, RateLimitError
from ..interfaces.market_data import MarketDataSource
from ..models import AssetClass, AssetQuote, CatalogBatch, NewsArticle
from . import parser

logger = logging.getLogger(__name__)


class AssetCatalog:
    """Normalized market data for every supported asset class.

    CoinGecko serves crypto and NFT data; stocks and news come from their
    own providers. Each provider gets its own client so throttling is
    tracked per provider.
    """

    def __init__(
        self,
        config: AppConfig,
        coingecko_client: MarketDataSource | None = None,
        stocks_client: MarketDataSource | None = None,
        news_client: MarketDataSource | None = None,
    ) -> None:
        self._coingecko = config.coingecko
        self._stocks = config.stocks
        self._nft = config.nft
        self._news = config.news

        cg_headers = {}
        if self._coingecko.api_key:
            cg_headers[self._coingecko.api_key_header] = self._coingecko.api_key

        self._cg_client = coingecko_client or MarketDataClient(
            config.market_data, name="coingecko", headers=cg_headers
        )
        self._stocks_client = stocks_client or MarketDataClient(
            config.market_data, name="stocks"
        )
        self._news_client = news_client or MarketDataClient(
            config.market_data, name="news"
        )

    async def fetch(self, asset_class: AssetClass) -> CatalogBatch:
        """Fetch the full batch for one asset class."""
        if asset_class is AssetClass.CRYPTO:
            return await self.fetch_crypto()
        if asset_class is AssetClass.STOCK:
            return await self.fetch_stocks()
        if asset_class is AssetClass.NFT:
            return await self.fetch_nfts()
        raise ValueError(f"Unsupported asset class: {asset_class!r}")

    # ------------------------------------------------------------------
    # Crypto
    # ------------------------------------------------------------------

    async def fetch_crypto(self, limit: int | None = None) -> CatalogBatch:
        """Top coins by market cap."""
        raw = await self._cg_client.fetch(
            f"{self._coingecko.base_url}/coins/markets",
            {
                "vs_currency": "usd",
                "order": "market_cap_desc",
                "per_page": limit or self._coingecko.crypto_limit,
                "page": 1,
                "sparkline": "false",
                "price_change_percentage": "24h",
            },
        )
        batch = parser.parse(raw, AssetClass.CRYPTO)
        logger.info(
            "Fetched %d crypto quotes%s",
            len(batch.quotes), " (fallback)" if batch.is_fallback else "",
        )
        return batch

    async def fetch_single_crypto(self, coin_id: str) -> AssetQuote | None:
        """Current market row for one coin, or None if CoinGecko has no such id."""
        coin_id = coin_id.strip().lower()
        raw = await self._cg_client.fetch(
            f"{self._coingecko.base_url}/coins/markets",
            {
                "vs_currency": "usd",
                "ids": coin_id,
                "price_change_percentage": "24h",
            },
        )
        if not isinstance(raw, list):
            raise MalformedDataError("markets payload is not a list", raw)
        for item in raw:
            try:
                return parser.parse_crypto_item(item)
            except MalformedDataError as e:
                logger.warning("Skipping malformed row for '%s': %s", coin_id, e.reason)
        logger.warning("No market data for coin '%s'", coin_id)
        return None

    async def fetch_trending_by_volume(self, limit: int = 10) -> CatalogBatch:
        """Coins with the highest 24h trading volume."""
        raw = await self._cg_client.fetch(
            f"{self._coingecko.base_url}/coins/markets",
            {
                "vs_currency": "usd",
                "order": "volume_desc",
                "per_page": limit,
                "page": 1,
                "sparkline": "false",
                "price_change_percentage": "24h",
            },
        )
        return parser.parse(raw, AssetClass.CRYPTO)

    async def fetch_trending(self, limit: int | None = None) -> CatalogBatch:
        """Trending coins: ids from ``/search/trending``, then their market rows."""
        limit = limit or self._coingecko.trending_limit
        raw = await self._cg_client.fetch(f"{self._coingecko.base_url}/search/trending")
        ids = parser.parse_trending_ids(raw)[:limit]
        if not ids:
            logger.warning("No trending coins returned, using fallback data")
            return parser.fallback_batch(AssetClass.CRYPTO)

        raw = await self._cg_client.fetch(
            f"{self._coingecko.base_url}/coins/markets",
            {
                "vs_currency": "usd",
                "ids": ",".join(ids),
                "order": "market_cap_desc",
                "sparkline": "false",
                "price_change_percentage": "24h",
            },
        )
        return parser.parse(raw, AssetClass.CRYPTO)

    async def fetch_top_gainers(self, limit: int = 10) -> CatalogBatch:
        """Coins with a positive 24h change, biggest movers first."""
        batch = await self.fetch_crypto()
        gainers = sorted(
            (q for q in batch.quotes if q.change_percent_24h > 0),
            key=lambda q: q.change_percent_24h,
            reverse=True,
        )
        return CatalogBatch(
            asset_class=AssetClass.CRYPTO,
            quotes=tuple(gainers[:limit]),
            is_fallback=batch.is_fallback,
            skipped=batch.skipped,
        )

    # ------------------------------------------------------------------
    # Stocks
    # ------------------------------------------------------------------

    async def fetch_stocks(self) -> CatalogBatch:
        """Quotes for the configured tickers."""
        params: dict[str, Any] = {}
        if self._stocks.api_key:
            params["apikey"] = self._stocks.api_key
        raw = await self._stocks_client.fetch(
            f"{self._stocks.base_url}/quote/{','.join(self._stocks.symbols)}",
            params or None,
        )
        batch = parser.parse(raw, AssetClass.STOCK)
        logger.info(
            "Fetched %d stock quotes%s",
            len(batch.quotes), " (fallback)" if batch.is_fallback else "",
        )
        return batch

    # ------------------------------------------------------------------
    # NFTs
    # ------------------------------------------------------------------

    async def fetch_nfts(self, limit: int | None = None) -> CatalogBatch:
        """NFT collections with floor prices.

        The list endpoint has no prices, so each collection needs a detail
        call. At most ``detail_cap`` details are fetched, spaced by
        ``detail_delay_seconds``. Failed details are left out; a rate limit
        ends the loop early and only propagates when nothing was fetched.
        """
        raw = await self._cg_client.fetch(
            f"{self._coingecko.base_url}/nfts/list",
            {"per_page": limit or self._nft.list_limit, "page": 1},
        )
        ids = parser.parse_nft_list_ids(raw)
        if not ids:
            logger.warning("Empty NFT list, using fallback data")
            return parser.fallback_batch(AssetClass.NFT)

        details: list[Any] = []
        for index, nft_id in enumerate(ids[: self._nft.detail_cap]):
            if index > 0 and self._nft.detail_delay_seconds > 0:
                await asyncio.sleep(self._nft.detail_delay_seconds)
            try:
                details.append(
                    await self._cg_client.fetch(f"{self._coingecko.base_url}/nfts/{nft_id}")
                )
            except RateLimitError:
                if not details:
                    raise
                logger.warning(
                    "Rate limited after %d NFT details, stopping early", len(details)
                )
                break
            except MarketDataError as e:
                logger.warning("Skipping NFT '%s': %s", nft_id, e)

        batch = parser.parse(details, AssetClass.NFT)
        logger.info(
            "Fetched %d NFT collections%s",
            len(batch.quotes), " (fallback)" if batch.is_fallback else "",
        )
        return batch

    # ------------------------------------------------------------------
    # News
    # ------------------------------------------------------------------

    async def fetch_news(self, limit: int | None = None) -> list[NewsArticle]:
        """Latest crypto news; missing fields get defaults."""
        params: dict[str, Any] = {"lang": "EN"}
        if self._news.api_key:
            params["api_key"] = self._news.api_key
        raw = await self._news_client.fetch(self._news.url, params)
        articles = parser.parse_news(raw)
        return articles[: limit or self._news.limit]


def find_quote(quotes: tuple[AssetQuote, ...], identifier: str) -> AssetQuote | None:
    """Look up a quote by identifier or display symbol, case-insensitively."""
    wanted = identifier.strip().lower()
    for quote in quotes:
        if quote.identifier.lower() == wanted or quote.display_symbol.lower() == wanted:
            return quote
    return None
