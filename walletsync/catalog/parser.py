"""Pure parsing functions for market data payloads — no I/O."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable

from ..errors import MalformedDataError
from ..models import AssetClass, AssetQuote, CatalogBatch, NewsArticle
from .fallback import load_fallback_items

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Field helpers
# ---------------------------------------------------------------------------


def _require_str(item: dict[str, Any], key: str) -> str:
    value = item.get(key)
    if not isinstance(value, str) or not value.strip():
        raise MalformedDataError(f"missing or empty '{key}'", item)
    return value.strip()


def _usd(value: Any) -> Any:
    """Unwrap CoinGecko's ``{"usd": x, "native_currency": y}`` shape."""
    if isinstance(value, dict):
        return value.get("usd")
    return value


def _to_float(item: dict[str, Any], key: str, value: Any) -> float:
    if isinstance(value, bool):
        raise MalformedDataError(f"'{key}' is not numeric", item)
    try:
        return float(value)
    except (TypeError, ValueError):
        raise MalformedDataError(f"'{key}' is not numeric: {value!r}", item) from None


def _price(item: dict[str, Any], key: str, value: Any) -> float:
    if value is None:
        raise MalformedDataError(f"missing '{key}'", item)
    price = _to_float(item, key, value)
    if price < 0:
        raise MalformedDataError(f"negative '{key}': {price}", item)
    return price


def _number(item: dict[str, Any], key: str) -> float:
    """Numeric field that the APIs report as null when unknown; null means 0."""
    value = _usd(item.get(key))
    if value is None:
        return 0.0
    return _to_float(item, key, value)


def _image(value: Any) -> str | None:
    if isinstance(value, dict):
        return value.get("small") or value.get("thumb") or value.get("large")
    if isinstance(value, str) and value:
        return value
    return None


# ---------------------------------------------------------------------------
# Per-item parsers
# ---------------------------------------------------------------------------


def parse_crypto_item(item: Any) -> AssetQuote:
    """Parse one ``/coins/markets`` row.

    Example:
        {"id": "bitcoin", "symbol": "btc", "name": "Bitcoin",
         "current_price": 50000, ...} → AssetQuote("bitcoin", "BTC", ...)
    """
    if not isinstance(item, dict):
        raise MalformedDataError("item is not an object", item)
    identifier = _require_str(item, "id").lower()
    symbol = _require_str(item, "symbol").upper()
    return AssetQuote(
        identifier=identifier,
        display_symbol=symbol,
        display_name=item.get("name") or symbol,
        price_usd=_price(item, "current_price", item.get("current_price")),
        change_percent_24h=_number(item, "price_change_percentage_24h"),
        market_cap_usd=max(0.0, _number(item, "market_cap")),
        volume_24h_usd=max(0.0, _number(item, "total_volume")),
        image_ref=_image(item.get("image")),
        asset_class=AssetClass.CRYPTO,
    )


def parse_stock_item(item: Any) -> AssetQuote:
    """Parse one stock quote row (``symbol``, ``price``, ``changesPercentage``...)."""
    if not isinstance(item, dict):
        raise MalformedDataError("item is not an object", item)
    symbol = _require_str(item, "symbol").upper()
    return AssetQuote(
        identifier=symbol,
        display_symbol=symbol,
        display_name=item.get("name") or symbol,
        price_usd=_price(item, "price", item.get("price")),
        change_percent_24h=_number(item, "changesPercentage"),
        market_cap_usd=max(0.0, _number(item, "marketCap")),
        volume_24h_usd=max(0.0, _number(item, "volume")),
        image_ref=_image(item.get("image")),
        asset_class=AssetClass.STOCK,
    )


def parse_nft_item(item: Any) -> AssetQuote:
    """Parse one ``/nfts/{id}`` collection detail.

    Floor price is read from ``floor_price_in_usd`` or ``floor_price.usd``.
    """
    if not isinstance(item, dict):
        raise MalformedDataError("item is not an object", item)
    identifier = _require_str(item, "id").lower()
    name = item.get("name") or identifier

    floor = item.get("floor_price_in_usd")
    if floor is None:
        floor = _usd(item.get("floor_price"))

    symbol = item.get("symbol")
    if not isinstance(symbol, str) or not symbol:
        symbol = identifier
    return AssetQuote(
        identifier=identifier,
        display_symbol=symbol.upper(),
        display_name=name,
        price_usd=_price(item, "floor_price", floor),
        change_percent_24h=_number(item, "floor_price_24h_percentage_change"),
        market_cap_usd=max(0.0, _number(item, "market_cap")),
        volume_24h_usd=max(0.0, _number(item, "volume_24h")),
        image_ref=_image(item.get("image")),
        asset_class=AssetClass.NFT,
    )


_ITEM_PARSERS: dict[AssetClass, Callable[[Any], AssetQuote]] = {
    AssetClass.CRYPTO: parse_crypto_item,
    AssetClass.STOCK: parse_stock_item,
    AssetClass.NFT: parse_nft_item,
}


# ---------------------------------------------------------------------------
# Batch parsing
# ---------------------------------------------------------------------------


def fallback_batch(
    asset_class: AssetClass,
    skipped: tuple[MalformedDataError, ...] = (),
) -> CatalogBatch:
    """Bundled demo dataset for an asset class, flagged ``is_fallback``."""
    item_parser = _ITEM_PARSERS[asset_class]
    quotes = tuple(item_parser(item) for item in load_fallback_items(asset_class))
    return CatalogBatch(
        asset_class=asset_class, quotes=quotes, is_fallback=True, skipped=skipped
    )


def parse(raw_payload: Any, asset_class: AssetClass) -> CatalogBatch:
    """Normalize a raw API payload into a batch of quotes.

    Malformed items are logged and skipped. An empty payload, or one with no
    usable item at all, yields the fallback dataset instead.
    """
    if raw_payload is None:
        raw_payload = []
    if not isinstance(raw_payload, list):
        raise MalformedDataError(
            f"expected a list of {asset_class.value} items, got "
            f"{type(raw_payload).__name__}",
            raw_payload,
        )

    if not raw_payload:
        logger.warning("Empty %s payload, using fallback data", asset_class.value)
        return fallback_batch(asset_class)

    item_parser = _ITEM_PARSERS[asset_class]
    quotes: list[AssetQuote] = []
    skipped: list[MalformedDataError] = []
    for item in raw_payload:
        try:
            quotes.append(item_parser(item))
        except MalformedDataError as e:
            logger.warning("Skipping malformed %s item: %s", asset_class.value, e.reason)
            skipped.append(e)

    if not quotes:
        logger.warning(
            "All %d %s items malformed, using fallback data",
            len(skipped), asset_class.value,
        )
        return fallback_batch(asset_class, tuple(skipped))

    return CatalogBatch(
        asset_class=asset_class,
        quotes=tuple(quotes),
        is_fallback=False,
        skipped=tuple(skipped),
    )


def parse_trending_ids(raw_payload: Any) -> list[str]:
    """Extract coin ids from a ``/search/trending`` response."""
    if not isinstance(raw_payload, dict):
        raise MalformedDataError("trending payload is not an object", raw_payload)
    ids: list[str] = []
    for coin in raw_payload.get("coins") or []:
        coin_id = (coin.get("item") or {}).get("id") if isinstance(coin, dict) else None
        if isinstance(coin_id, str) and coin_id:
            ids.append(coin_id.lower())
        else:
            logger.warning("Skipping trending entry without id: %r", coin)
    return ids


def parse_nft_list_ids(raw_payload: Any) -> list[str]:
    """Extract collection ids from ``/nfts/list``."""
    if not isinstance(raw_payload, list):
        raise MalformedDataError("NFT list payload is not a list", raw_payload)
    return [
        entry["id"]
        for entry in raw_payload
        if isinstance(entry, dict) and isinstance(entry.get("id"), str) and entry["id"]
    ]


# ---------------------------------------------------------------------------
# News
# ---------------------------------------------------------------------------


def _published_at(value: Any) -> datetime | None:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    if isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


def parse_news_item(item: dict[str, Any]) -> NewsArticle:
    source_info = item.get("source_info")
    source = source_info.get("name") if isinstance(source_info, dict) else None
    categories = item.get("categories") or item.get("category") or ""
    category = categories.split("|")[0] if isinstance(categories, str) else ""
    return NewsArticle(
        title=str(item.get("title") or ""),
        description=str(item.get("body") or item.get("description") or ""),
        url=str(item.get("url") or ""),
        image_url=item.get("imageurl") or item.get("image_url") or None,
        source=str(source or item.get("source") or "Unknown"),
        published_at=_published_at(item.get("published_on") or item.get("published_at")),
        category=category or "General",
    )


def parse_news(raw_payload: Any) -> list[NewsArticle]:
    """Parse a news response; missing fields fall back to defaults."""
    if isinstance(raw_payload, dict):
        raw_payload = raw_payload.get("Data") or raw_payload.get("articles") or []
    if not isinstance(raw_payload, list):
        return []
    articles = [parse_news_item(item) for item in raw_payload if isinstance(item, dict)]
    return [a for a in articles if a.title]
