"""Unit tests for data models."""
from __future__ import annotations

from datetime import datetime, timezone

import pytest

from walletsync.models import (
    AssetClass,
    AssetQuote,
    CryptoHolding,
    LedgerEntry,
    NewsArticle,
    NftHolding,
    StockHolding,
    holding_for,
)


class TestAssetQuote:
    def test_frozen(self, btc: AssetQuote) -> None:
        with pytest.raises(AttributeError):
            btc.price_usd = 1.0  # type: ignore[misc]

    def test_equality(self, quote_factory) -> None:
        assert quote_factory("bitcoin", "BTC", 1.0) == quote_factory("bitcoin", "BTC", 1.0)

    def test_defaults(self) -> None:
        q = AssetQuote("bitcoin", "BTC", "Bitcoin", 1.0)
        assert q.change_percent_24h == 0.0
        assert q.image_ref is None
        assert q.asset_class is AssetClass.CRYPTO


class TestLedgerEntry:
    def test_negative_quantity_rejected(self) -> None:
        with pytest.raises(ValueError, match="cannot be negative"):
            LedgerEntry("bitcoin", -0.1)

    def test_negative_cost_rejected(self) -> None:
        with pytest.raises(ValueError, match="cannot be negative"):
            LedgerEntry("bitcoin", 1.0, average_cost_usd=-5.0)

    def test_zero_quantity_allowed(self) -> None:
        assert LedgerEntry("bitcoin", 0.0).quantity == 0.0

    def test_to_dict_document_shape(self) -> None:
        ts = datetime(2024, 5, 1, 8, 30, tzinfo=timezone.utc)
        entry = LedgerEntry("AAPL", 3.0, 180.0, ts, AssetClass.STOCK)
        assert entry.to_dict() == {
            "amount": 3.0,
            "averagePrice": 180.0,
            "lastUpdated": "2024-05-01T08:30:00+00:00",
            "assetClass": "stock",
        }

    def test_from_dict_restores_entry(self) -> None:
        ts = datetime(2024, 5, 1, 8, 30, tzinfo=timezone.utc)
        entry = LedgerEntry("AAPL", 3.0, 180.0, ts, AssetClass.STOCK)
        assert LedgerEntry.from_dict("AAPL", entry.to_dict()) == entry

    def test_from_dict_missing_fields(self) -> None:
        entry = LedgerEntry.from_dict("bitcoin", {"amount": 0.25})
        assert entry.quantity == 0.25
        assert entry.average_cost_usd == 0.0
        assert entry.asset_class is AssetClass.CRYPTO
        assert entry.last_updated.tzinfo is not None


class TestHoldings:
    def test_value_and_held(self, btc: AssetQuote) -> None:
        h = holding_for(btc, 0.5)
        assert h.value_usd == 25000.0
        assert h.is_held

    def test_zero_quantity_not_held(self, btc: AssetQuote) -> None:
        h = holding_for(btc)
        assert h.value_usd == 0.0
        assert not h.is_held

    @pytest.mark.parametrize(
        ("asset_class", "holding_type"),
        [
            (AssetClass.CRYPTO, CryptoHolding),
            (AssetClass.STOCK, StockHolding),
            (AssetClass.NFT, NftHolding),
        ],
    )
    def test_variant_follows_asset_class(
        self, quote_factory, asset_class: AssetClass, holding_type: type
    ) -> None:
        quote = quote_factory("x", "X", 1.0, asset_class=asset_class)
        assert type(holding_for(quote, 1.0)) is holding_type


class TestNewsArticle:
    def test_defaults(self) -> None:
        a = NewsArticle()
        assert a.title == ""
        assert a.source == "Unknown"
        assert a.category == "General"
        assert a.published_at is None
