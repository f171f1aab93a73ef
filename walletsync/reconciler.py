"""Pure reconciliation of market quotes against a user's ledger."""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Iterable, Mapping

from .models import (
    AssetClass,
    AssetQuote,
    CatalogBatch,
    LedgerEntry,
    PortfolioSnapshot,
    ValuedHolding,
    holding_for,
)

if TYPE_CHECKING:
    from .failure_tracker import FailureState

logger = logging.getLogger(__name__)


def normalize_key(asset_class: AssetClass, identifier: str) -> str:
    """Canonical join key: stock tickers upper-case, catalog ids lower-case."""
    identifier = identifier.strip()
    if asset_class is AssetClass.STOCK:
        return identifier.upper()
    return identifier.lower()


def _quantities(
    ledger: Mapping[str, LedgerEntry], asset_class: AssetClass
) -> dict[str, float]:
    quantities: dict[str, float] = {}
    for asset_id, entry in ledger.items():
        if entry.asset_class is not asset_class:
            continue
        key = normalize_key(asset_class, asset_id)
        quantities[key] = quantities.get(key, 0.0) + entry.quantity
    return quantities


def reconcile(
    quotes: Iterable[AssetQuote], ledger: Mapping[str, LedgerEntry]
) -> list[ValuedHolding]:
    """One holding per quote, in quote order. Unowned assets get quantity 0."""
    by_class: dict[AssetClass, dict[str, float]] = {}
    holdings: list[ValuedHolding] = []
    for quote in quotes:
        if quote.asset_class not in by_class:
            by_class[quote.asset_class] = _quantities(ledger, quote.asset_class)
        key = normalize_key(quote.asset_class, quote.identifier)
        holdings.append(holding_for(quote, by_class[quote.asset_class].get(key, 0.0)))
    return holdings


def find_unpriced(
    quotes: Iterable[AssetQuote],
    ledger: Mapping[str, LedgerEntry],
    asset_class: AssetClass,
) -> list[str]:
    """Held ledger entries of ``asset_class`` that have no quote in the batch."""
    priced = {
        normalize_key(asset_class, q.identifier)
        for q in quotes
        if q.asset_class is asset_class
    }
    return sorted(
        key
        for key, quantity in _quantities(ledger, asset_class).items()
        if quantity > 0 and key not in priced
    )


def total_value(holdings: Iterable[ValuedHolding]) -> float:
    return sum(h.value_usd for h in holdings if h.is_held)


def weighted_change_percent(holdings: Iterable[ValuedHolding]) -> float:
    """Value-weighted 24h change over held assets; 0 when nothing is held."""
    held = [h for h in holdings if h.is_held]
    total = sum(h.value_usd for h in held)
    if total <= 0:
        return 0.0
    return sum(h.value_usd * h.quote.change_percent_24h for h in held) / total


def build_snapshot(
    batch: CatalogBatch,
    ledger: Mapping[str, LedgerEntry],
    health: FailureState,
    is_stale: bool = False,
    error: str | None = None,
) -> PortfolioSnapshot:
    """Reconcile a catalog batch with the ledger into a snapshot."""
    holdings = reconcile(batch.quotes, ledger)
    unpriced = find_unpriced(batch.quotes, ledger, batch.asset_class)
    if unpriced:
        logger.warning(
            "%d held %s asset(s) have no quote: %s",
            len(unpriced), batch.asset_class.value, ", ".join(unpriced),
        )
    return PortfolioSnapshot(
        asset_class=batch.asset_class,
        holdings=tuple(holdings),
        total_value_usd=total_value(holdings),
        weighted_change_percent=weighted_change_percent(holdings),
        held_count=sum(1 for h in holdings if h.is_held),
        health=health,
        unpriced=tuple(unpriced),
        is_fallback=batch.is_fallback,
        is_stale=is_stale,
        error=error,
    )
