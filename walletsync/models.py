"""Data models — all frozen (immutable)."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Union

if TYPE_CHECKING:
    from .errors import MalformedDataError
    from .failure_tracker import FailureState


class AssetClass(str, Enum):
    CRYPTO = "crypto"
    STOCK = "stock"
    NFT = "nft"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class AssetQuote:
    """Market data for one asset, derived fresh on every fetch."""

    identifier: str
    display_symbol: str
    display_name: str
    price_usd: float
    change_percent_24h: float = 0.0
    market_cap_usd: float = 0.0
    volume_24h_usd: float = 0.0
    image_ref: str | None = None
    asset_class: AssetClass = AssetClass.CRYPTO


@dataclass(frozen=True)
class LedgerEntry:
    """Quantity and cost basis of one asset in a user's ledger."""

    asset_identifier: str
    quantity: float
    average_cost_usd: float = 0.0
    last_updated: datetime = field(default_factory=utcnow)
    asset_class: AssetClass = AssetClass.CRYPTO

    def __post_init__(self) -> None:
        if self.quantity < 0:
            raise ValueError(
                f"Ledger quantity for '{self.asset_identifier}' cannot be negative"
            )
        if self.average_cost_usd < 0:
            raise ValueError(
                f"Average cost for '{self.asset_identifier}' cannot be negative"
            )

    def to_dict(self) -> dict[str, Any]:
        """Document shape stored per asset in the user's portfolio collection."""
        return {
            "amount": self.quantity,
            "averagePrice": self.average_cost_usd,
            "lastUpdated": self.last_updated.isoformat(),
            "assetClass": self.asset_class.value,
        }

    @classmethod
    def from_dict(cls, asset_identifier: str, raw: dict[str, Any]) -> LedgerEntry:
        last_updated = raw.get("lastUpdated")
        if isinstance(last_updated, str):
            last_updated = datetime.fromisoformat(last_updated)
        elif not isinstance(last_updated, datetime):
            last_updated = utcnow()
        return cls(
            asset_identifier=asset_identifier,
            quantity=float(raw.get("amount", 0.0)),
            average_cost_usd=float(raw.get("averagePrice", 0.0)),
            last_updated=last_updated,
            asset_class=AssetClass(raw.get("assetClass", AssetClass.CRYPTO.value)),
        )


# ---------------------------------------------------------------------------
# Holdings (tagged union over asset classes)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ValuedHolding:
    quote: AssetQuote
    quantity: float = 0.0

    @property
    def value_usd(self) -> float:
        return self.quantity * self.quote.price_usd

    @property
    def is_held(self) -> bool:
        return self.quantity > 0


@dataclass(frozen=True)
class CryptoHolding(ValuedHolding):
    pass


@dataclass(frozen=True)
class StockHolding(ValuedHolding):
    pass


@dataclass(frozen=True)
class NftHolding(ValuedHolding):
    pass


Holding = Union[CryptoHolding, StockHolding, NftHolding]

_HOLDING_TYPES: dict[AssetClass, type[ValuedHolding]] = {
    AssetClass.CRYPTO: CryptoHolding,
    AssetClass.STOCK: StockHolding,
    AssetClass.NFT: NftHolding,
}


def holding_for(quote: AssetQuote, quantity: float = 0.0) -> ValuedHolding:
    """Build the holding variant matching the quote's asset class."""
    return _HOLDING_TYPES[quote.asset_class](quote=quote, quantity=quantity)


# ---------------------------------------------------------------------------
# Catalog / snapshots
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CatalogBatch:
    """Parsed quotes for one asset class.

    ``is_fallback`` marks bundled demo data; ``skipped`` lists the items that
    were dropped as malformed.
    """

    asset_class: AssetClass
    quotes: tuple[AssetQuote, ...] = ()
    is_fallback: bool = False
    skipped: tuple[MalformedDataError, ...] = ()


@dataclass(frozen=True)
class PortfolioSnapshot:
    asset_class: AssetClass
    holdings: tuple[ValuedHolding, ...]
    total_value_usd: float
    weighted_change_percent: float
    held_count: int
    health: FailureState
    unpriced: tuple[str, ...] = ()
    is_fallback: bool = False
    is_stale: bool = False
    error: str | None = None
    generated_at: datetime = field(default_factory=utcnow)


# ---------------------------------------------------------------------------
# Exchange
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ExchangeQuote:
    from_asset: AssetQuote
    to_asset: AssetQuote
    rate: float
    from_amount: float = 0.0
    to_amount: float = 0.0
    fee_amount: float = 0.0
    fee_asset_identifier: str = ""


@dataclass(frozen=True)
class ExchangePair:
    """A quotable asset together with the user's balance of it."""

    quote: AssetQuote
    balance: float = 0.0


@dataclass(frozen=True)
class ExchangeReceipt:
    exchange_id: str
    user_id: str
    from_asset_id: str
    to_asset_id: str
    from_amount: float
    to_amount: float
    fee_amount: float
    rate: float
    from_balance_after: float
    to_balance_after: float
    executed_at: datetime = field(default_factory=utcnow)


# ---------------------------------------------------------------------------
# News
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class NewsArticle:
    title: str = ""
    description: str = ""
    url: str = ""
    image_url: str | None = None
    source: str = "Unknown"
    published_at: datetime | None = None
    category: str = "General"
