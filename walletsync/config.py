"""Configuration loader — reads config.yaml, interpolates env vars, validates."""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from .models import AssetClass

logger = logging.getLogger(__name__)

DEFAULT_MINIMUM_AMOUNTS: dict[str, float] = {
    "BTC": 0.0001,
    "ETH": 0.001,
    "BNB": 0.01,
}

DEFAULT_SYMBOL_IDS: dict[str, str] = {
    "BTC": "bitcoin",
    "ETH": "ethereum",
    "XRP": "ripple",
    "BNB": "binancecoin",
    "ADA": "cardano",
    "SOL": "solana",
    "USDT": "tether",
    "USDC": "usd-coin",
    "DOGE": "dogecoin",
    "DOT": "polkadot",
    "MATIC": "matic-network",
    "AVAX": "avalanche-2",
    "SHIB": "shiba-inu",
    "LTC": "litecoin",
    "LINK": "chainlink",
}

DEFAULT_STOCK_SYMBOLS: tuple[str, ...] = (
    "AAPL", "MSFT", "GOOGL", "AMZN", "NVDA", "META", "TSLA", "BRK-B",
    "JPM", "V", "JNJ", "WMT", "PG", "MA", "HD", "DIS", "NFLX", "ADBE",
    "CRM", "INTC",
)

_LEDGER_BACKENDS = ("memory", "json")

# ---------------------------------------------------------------------------
# Frozen config dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MarketDataConfig:
    timeout_seconds: float = 15.0
    min_request_interval_seconds: float = 1.5
    max_retries: int = 3
    backoff_base_seconds: float = 2.0


@dataclass(frozen=True)
class CoinGeckoConfig:
    base_url: str = "https://api.coingecko.com/api/v3"
    api_key: str = ""
    api_key_header: str = "x-cg-demo-api-key"
    crypto_limit: int = 50
    trending_limit: int = 7


@dataclass(frozen=True)
class StocksConfig:
    base_url: str = "https://financialmodelingprep.com/api/v3"
    api_key: str = ""
    symbols: tuple[str, ...] = DEFAULT_STOCK_SYMBOLS


@dataclass(frozen=True)
class NftConfig:
    list_limit: int = 15
    detail_cap: int = 10
    detail_delay_seconds: float = 0.3


@dataclass(frozen=True)
class NewsConfig:
    url: str = "https://min-api.cryptocompare.com/data/v2/news/"
    api_key: str = ""
    limit: int = 20


@dataclass(frozen=True)
class FailureConfig:
    max_consecutive_errors: int = 3
    error_reset_minutes: float = 5.0
    rate_limit_cooldown_seconds: float = 60.0


@dataclass(frozen=True)
class RefreshConfig:
    auto_refresh_interval_seconds: int = 30
    asset_classes: tuple[AssetClass, ...] = (
        AssetClass.CRYPTO,
        AssetClass.STOCK,
        AssetClass.NFT,
    )


@dataclass(frozen=True)
class ExchangeConfig:
    fee_rate: float = 0.001
    default_minimum: float = 0.1
    minimum_amounts: dict[str, float] = field(
        default_factory=lambda: dict(DEFAULT_MINIMUM_AMOUNTS)
    )
    symbol_ids: dict[str, str] = field(
        default_factory=lambda: dict(DEFAULT_SYMBOL_IDS)
    )


@dataclass(frozen=True)
class LedgerConfig:
    backend: str = "memory"
    path: str = ""


@dataclass(frozen=True)
class SessionConfig:
    user_id: str = ""


@dataclass(frozen=True)
class AppConfig:
    market_data: MarketDataConfig = field(default_factory=MarketDataConfig)
    coingecko: CoinGeckoConfig = field(default_factory=CoinGeckoConfig)
    stocks: StocksConfig = field(default_factory=StocksConfig)
    nft: NftConfig = field(default_factory=NftConfig)
    news: NewsConfig = field(default_factory=NewsConfig)
    failure: FailureConfig = field(default_factory=FailureConfig)
    refresh: RefreshConfig = field(default_factory=RefreshConfig)
    exchange: ExchangeConfig = field(default_factory=ExchangeConfig)
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    session: SessionConfig = field(default_factory=SessionConfig)


# ---------------------------------------------------------------------------
# Env interpolation
# ---------------------------------------------------------------------------

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)}")


def _interpolate_env(value: Any) -> Any:
    """Recursively replace ${VAR} references with environment variable values."""
    if isinstance(value, str):
        return _ENV_VAR_RE.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, dict):
        return {k: _interpolate_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_interpolate_env(item) for item in value]
    return value


# ---------------------------------------------------------------------------
# YAML → dataclass builders
# ---------------------------------------------------------------------------


def _build_market_data(raw: dict[str, Any]) -> MarketDataConfig:
    return MarketDataConfig(
        timeout_seconds=float(raw.get("timeout_seconds", 15.0)),
        min_request_interval_seconds=float(
            raw.get("min_request_interval_seconds", 1.5)
        ),
        max_retries=int(raw.get("max_retries", 3)),
        backoff_base_seconds=float(raw.get("backoff_base_seconds", 2.0)),
    )


def _build_coingecko(raw: dict[str, Any]) -> CoinGeckoConfig:
    return CoinGeckoConfig(
        base_url=raw.get("base_url", CoinGeckoConfig.base_url),
        api_key=raw.get("api_key", ""),
        api_key_header=raw.get("api_key_header", CoinGeckoConfig.api_key_header),
        crypto_limit=int(raw.get("crypto_limit", 50)),
        trending_limit=int(raw.get("trending_limit", 7)),
    )


def _build_stocks(raw: dict[str, Any]) -> StocksConfig:
    symbols = raw.get("symbols")
    return StocksConfig(
        base_url=raw.get("base_url", StocksConfig.base_url),
        api_key=raw.get("api_key", ""),
        symbols=tuple(s.upper() for s in symbols) if symbols else DEFAULT_STOCK_SYMBOLS,
    )


def _build_nft(raw: dict[str, Any]) -> NftConfig:
    return NftConfig(
        list_limit=int(raw.get("list_limit", 15)),
        detail_cap=int(raw.get("detail_cap", 10)),
        detail_delay_seconds=float(raw.get("detail_delay_seconds", 0.3)),
    )


def _build_news(raw: dict[str, Any]) -> NewsConfig:
    return NewsConfig(
        url=raw.get("url", NewsConfig.url),
        api_key=raw.get("api_key", ""),
        limit=int(raw.get("limit", 20)),
    )


def _build_failure(raw: dict[str, Any]) -> FailureConfig:
    return FailureConfig(
        max_consecutive_errors=int(raw.get("max_consecutive_errors", 3)),
        error_reset_minutes=float(raw.get("error_reset_minutes", 5.0)),
        rate_limit_cooldown_seconds=float(raw.get("rate_limit_cooldown_seconds", 60.0)),
    )


def _build_refresh(raw: dict[str, Any]) -> RefreshConfig:
    classes = raw.get("asset_classes")
    return RefreshConfig(
        auto_refresh_interval_seconds=int(raw.get("auto_refresh_interval_seconds", 30)),
        asset_classes=(
            tuple(AssetClass(c) for c in classes)
            if classes
            else RefreshConfig.asset_classes
        ),
    )


def _build_exchange(raw: dict[str, Any]) -> ExchangeConfig:
    minimums = dict(DEFAULT_MINIMUM_AMOUNTS)
    minimums.update(
        {k.upper(): float(v) for k, v in (raw.get("minimum_amounts") or {}).items()}
    )
    symbol_ids = dict(DEFAULT_SYMBOL_IDS)
    symbol_ids.update(
        {k.upper(): str(v).lower() for k, v in (raw.get("symbol_ids") or {}).items()}
    )
    return ExchangeConfig(
        fee_rate=float(raw.get("fee_rate", 0.001)),
        default_minimum=float(raw.get("default_minimum", 0.1)),
        minimum_amounts=minimums,
        symbol_ids=symbol_ids,
    )


def _build_ledger(raw: dict[str, Any]) -> LedgerConfig:
    return LedgerConfig(
        backend=raw.get("backend", "memory"),
        path=raw.get("path", ""),
    )


def _build_session(raw: dict[str, Any]) -> SessionConfig:
    return SessionConfig(user_id=str(raw.get("user_id", "") or ""))


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(config_path: str | Path | None = None) -> AppConfig:
    """Load and validate application configuration from YAML + .env.

    Args:
        config_path: Path to config.yaml. Defaults to ``config.yaml`` in the
            project root (one level up from this package).
    """
    load_dotenv()

    if config_path is None:
        config_path = Path(__file__).resolve().parent.parent / "config.yaml"
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    raw = _interpolate_env(raw)

    cfg = AppConfig(
        market_data=_build_market_data(raw.get("market_data") or {}),
        coingecko=_build_coingecko(raw.get("coingecko") or {}),
        stocks=_build_stocks(raw.get("stocks") or {}),
        nft=_build_nft(raw.get("nft") or {}),
        news=_build_news(raw.get("news") or {}),
        failure=_build_failure(raw.get("failure") or {}),
        refresh=_build_refresh(raw.get("refresh") or {}),
        exchange=_build_exchange(raw.get("exchange") or {}),
        ledger=_build_ledger(raw.get("ledger") or {}),
        session=_build_session(raw.get("session") or {}),
    )

    _validate(cfg)
    logger.info("Configuration loaded from %s", config_path)
    return cfg


def _validate(cfg: AppConfig) -> None:
    """Raise on invalid configuration."""
    md = cfg.market_data
    if md.timeout_seconds <= 0:
        raise ValueError("market_data.timeout_seconds must be positive")
    if md.max_retries < 0:
        raise ValueError("market_data.max_retries cannot be negative")
    if md.min_request_interval_seconds < 0 or md.backoff_base_seconds < 0:
        raise ValueError("market_data intervals cannot be negative")

    if cfg.nft.detail_cap < 1:
        raise ValueError("nft.detail_cap must be at least 1")

    if cfg.failure.max_consecutive_errors < 1:
        raise ValueError("failure.max_consecutive_errors must be at least 1")

    if not 0 <= cfg.exchange.fee_rate < 1:
        raise ValueError("exchange.fee_rate must be in [0, 1)")
    for symbol, minimum in cfg.exchange.minimum_amounts.items():
        if minimum <= 0:
            raise ValueError(f"Minimum exchange amount for '{symbol}' must be positive")

    if cfg.ledger.backend not in _LEDGER_BACKENDS:
        raise ValueError(f"Unknown ledger backend '{cfg.ledger.backend}'")
    if cfg.ledger.backend == "json" and not cfg.ledger.path:
        raise ValueError("Ledger backend 'json' requires a path")
