"""Shared test fixtures and sample data."""
from __future__ import annotations

import textwrap
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import pytest

from walletsync.config import AppConfig, FailureConfig, MarketDataConfig, NftConfig
from walletsync.failure_tracker import FailureTracker
from walletsync.models import AssetClass, AssetQuote, LedgerEntry
from walletsync.session import StaticIdentityProvider
from walletsync.stores import InMemoryLedgerStore


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def tracker(clock: FakeClock) -> FailureTracker:
    return FailureTracker(FailureConfig(), clock=clock)


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def fast_market_config() -> MarketDataConfig:
    """No throttling or backoff delays."""
    return MarketDataConfig(
        timeout_seconds=5,
        min_request_interval_seconds=0,
        max_retries=3,
        backoff_base_seconds=0,
    )


@pytest.fixture()
def sample_app_config(fast_market_config: MarketDataConfig) -> AppConfig:
    return AppConfig(
        market_data=fast_market_config,
        nft=NftConfig(list_limit=15, detail_cap=10, detail_delay_seconds=0),
    )


# ---------------------------------------------------------------------------
# Model fixtures
# ---------------------------------------------------------------------------


def make_quote(
    identifier: str,
    symbol: str,
    price: float,
    change: float = 0.0,
    asset_class: AssetClass = AssetClass.CRYPTO,
) -> AssetQuote:
    return AssetQuote(
        identifier=identifier,
        display_symbol=symbol,
        display_name=symbol,
        price_usd=price,
        change_percent_24h=change,
        asset_class=asset_class,
    )


@pytest.fixture()
def quote_factory():
    return make_quote


@pytest.fixture()
def btc() -> AssetQuote:
    return make_quote("bitcoin", "BTC", 50000.0, change=2.0)


@pytest.fixture()
def eth() -> AssetQuote:
    return make_quote("ethereum", "ETH", 2500.0, change=-4.0)


@pytest.fixture()
def xrp() -> AssetQuote:
    return make_quote("ripple", "XRP", 0.5, change=10.0)


@pytest.fixture()
def identity() -> StaticIdentityProvider:
    return StaticIdentityProvider("user-1")


@pytest.fixture()
def store() -> InMemoryLedgerStore:
    return InMemoryLedgerStore(
        {"user-1": {"bitcoin": LedgerEntry("bitcoin", 0.5, average_cost_usd=40000.0)}}
    )


# ---------------------------------------------------------------------------
# Raw API payloads
# ---------------------------------------------------------------------------


@pytest.fixture()
def coin_markets_payload() -> list[dict[str, Any]]:
    return [
        {
            "id": "bitcoin",
            "symbol": "btc",
            "name": "Bitcoin",
            "current_price": 50000,
            "price_change_percentage_24h": 2.0,
            "market_cap": 980000000000,
            "total_volume": 25000000000,
            "image": "https://img.example.com/btc.png",
        },
        {
            "id": "ethereum",
            "symbol": "eth",
            "name": "Ethereum",
            "current_price": 2500,
            "price_change_percentage_24h": -4.0,
            "market_cap": 300000000000,
            "total_volume": None,
            "image": "https://img.example.com/eth.png",
        },
    ]


@pytest.fixture()
def stock_quote_payload() -> list[dict[str, Any]]:
    return [
        {
            "symbol": "AAPL",
            "name": "Apple Inc.",
            "price": 190.5,
            "changesPercentage": 1.2,
            "marketCap": 2900000000000,
            "volume": 50000000,
        },
        {
            "symbol": "msft",
            "name": "Microsoft Corporation",
            "price": 410.0,
            "changesPercentage": -0.5,
            "marketCap": 3000000000000,
            "volume": 20000000,
        },
    ]


@pytest.fixture()
def nft_detail_payload() -> dict[str, Any]:
    return {
        "id": "cryptopunks",
        "name": "CryptoPunks",
        "symbol": "PUNK",
        "floor_price": {"native_currency": 30.5, "usd": 98750.0},
        "floor_price_24h_percentage_change": {"usd": -2.15, "native_currency": -1.0},
        "volume_24h": {"usd": 3400000, "native_currency": 1000},
        "image": {"small": "https://img.example.com/punk.png"},
    }


# ---------------------------------------------------------------------------
# Config YAML fixture
# ---------------------------------------------------------------------------

SAMPLE_YAML = textwrap.dedent("""\
    market_data:
      timeout_seconds: 10
      min_request_interval_seconds: 1.5
      max_retries: 2
    coingecko:
      api_key: "cg-key"
      crypto_limit: 25
    stocks:
      symbols: [aapl, msft]
    failure:
      max_consecutive_errors: 3
      error_reset_minutes: 5
      rate_limit_cooldown_seconds: 60
    refresh:
      asset_classes: [crypto, stock]
    exchange:
      fee_rate: 0.002
      minimum_amounts: {sol: 0.05}
    ledger:
      backend: memory
    session:
      user_id: alice
""")


@pytest.fixture()
def sample_yaml_path(tmp_path: Path) -> Path:
    cfg_file = tmp_path / "config.yaml"
    cfg_file.write_text(SAMPLE_YAML)
    return cfg_file
