"""Cross-asset exchange: quoting, fees, validation and ledger swaps."""
from __future__ import annotations

import asyncio
import logging
import math
import uuid
from typing import Iterable, Mapping

from ..config import ExchangeConfig
from ..errors import (
    ExchangeBlockedError,
    InsufficientBalanceError,
    InvalidAmountError,
    InvalidAssetError,
    LedgerInconsistencyError,
    NoSessionError,
)
from ..interfaces.identity import IdentityProvider
from ..interfaces.ledger_store import LedgerStore
from ..models import (
    AssetQuote,
    ExchangePair,
    ExchangeQuote,
    ExchangeReceipt,
    LedgerEntry,
    utcnow,
)
from ..reconciler import normalize_key

logger = logging.getLogger(__name__)

# Relative slack for float comparisons of balances
_TOLERANCE = 1e-9


def _covers(required: float, available: float) -> bool:
    return required - available <= _TOLERANCE * max(1.0, abs(available))


def _find_entry(
    ledger: Mapping[str, LedgerEntry], asset: AssetQuote
) -> tuple[str, LedgerEntry | None]:
    """Ledger key and entry for ``asset``, matching keys the way reconciliation does."""
    wanted = normalize_key(asset.asset_class, asset.identifier)
    for key, entry in ledger.items():
        if (
            entry.asset_class is asset.asset_class
            and normalize_key(asset.asset_class, key) == wanted
        ):
            return key, entry
    return wanted, None


def _ensure_key_free(
    ledger: Mapping[str, LedgerEntry], key: str, asset: AssetQuote
) -> None:
    """Refuse to reuse a ledger key that belongs to an asset of another class."""
    existing = ledger.get(key)
    if existing is not None and existing.asset_class is not asset.asset_class:
        raise InvalidAssetError(
            f"Ledger key '{key}' already holds a {existing.asset_class.value} asset, "
            f"cannot credit {asset.display_symbol} ({asset.asset_class.value}) to it"
        )


class ExchangeEngine:
    """Quotes and executes swaps between two assets in a user's ledger.

    Both sides of a swap are committed with a single ``write_many`` and read
    back. If the ledger does not show the written balances, the engine
    raises ``LedgerInconsistencyError`` and refuses further swaps until
    ``acknowledge_inconsistency()`` is called.
    """

    def __init__(
        self,
        store: LedgerStore,
        identity: IdentityProvider,
        config: ExchangeConfig | None = None,
    ) -> None:
        self._store = store
        self._identity = identity
        self._config = config or ExchangeConfig()
        self._blocked_by: LedgerInconsistencyError | None = None
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Pure helpers
    # ------------------------------------------------------------------

    def quote(
        self,
        from_asset: AssetQuote,
        to_asset: AssetQuote,
        from_amount: float = 0.0,
    ) -> ExchangeQuote:
        """Rate is ``from_price / to_price``; amounts are in asset units."""
        for asset in (from_asset, to_asset):
            if not asset.price_usd > 0:
                raise InvalidAssetError(
                    f"Cannot quote {asset.display_symbol}: price is {asset.price_usd}"
                )
        if from_asset.identifier == to_asset.identifier:
            raise InvalidAssetError(
                f"Cannot exchange {from_asset.display_symbol} for itself"
            )
        if from_amount < 0 or not math.isfinite(from_amount):
            raise InvalidAmountError(f"Invalid amount: {from_amount}")

        rate = from_asset.price_usd / to_asset.price_usd
        return ExchangeQuote(
            from_asset=from_asset,
            to_asset=to_asset,
            rate=rate,
            from_amount=from_amount,
            to_amount=from_amount * rate,
            fee_amount=self.fee(from_amount, from_asset.price_usd),
            fee_asset_identifier=from_asset.identifier,
        )

    def fee(self, amount: float, price_usd: float) -> float:
        """Network fee in units of the source asset."""
        return amount * self._config.fee_rate

    @staticmethod
    def validate(from_amount: float, balance: float, fee: float) -> bool:
        if not from_amount > 0:
            return False
        return _covers(from_amount + fee, balance)

    def minimum_amount(self, symbol: str) -> float:
        return self._config.minimum_amounts.get(
            symbol.upper(), self._config.default_minimum
        )

    def resolve_asset_id(self, symbol: str) -> str:
        """Catalog id for a ticker symbol, e.g. ``BTC`` -> ``bitcoin``."""
        symbol = symbol.strip()
        return self._config.symbol_ids.get(symbol.upper(), symbol.lower())

    async def list_pairs(self, quotes: Iterable[AssetQuote]) -> list[ExchangePair]:
        """Tradeable assets with balances: held first, then by price descending."""
        user_id = self._identity.current_user_id()
        ledger = await self._store.read(user_id) if user_id else {}
        pairs = []
        for quote in quotes:
            if quote.price_usd <= 0:
                continue
            _, entry = _find_entry(ledger, quote)
            pairs.append(ExchangePair(quote=quote, balance=entry.quantity if entry else 0.0))
        pairs.sort(key=lambda p: (p.balance <= 0, -p.quote.price_usd))
        return pairs

    # ------------------------------------------------------------------
    # Inconsistency gate
    # ------------------------------------------------------------------

    @property
    def is_blocked(self) -> bool:
        return self._blocked_by is not None

    def acknowledge_inconsistency(self) -> LedgerInconsistencyError | None:
        """Lift the block after an inconsistency has been corrected by hand."""
        error, self._blocked_by = self._blocked_by, None
        if error is not None:
            logger.warning("Ledger inconsistency for %s acknowledged", error.user_id)
        return error

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute(
        self,
        from_asset: AssetQuote,
        to_asset: AssetQuote,
        from_amount: float,
        to_amount: float,
        rate: float,
        fee: float,
    ) -> ExchangeReceipt:
        """Debit ``from_amount + fee`` and credit ``to_amount`` in one commit."""
        user_id = self._identity.current_user_id()
        if not user_id:
            raise NoSessionError("Sign in before exchanging assets")
        if self._blocked_by is not None:
            raise ExchangeBlockedError(
                "Exchanges are blocked until the ledger inconsistency is acknowledged"
            )

        self.quote(from_asset, to_asset)
        amounts = {"from_amount": from_amount, "to_amount": to_amount, "rate": rate}
        for name, value in amounts.items():
            if not (math.isfinite(value) and value > 0):
                raise InvalidAmountError(f"{name} must be positive, got {value}")
        if not (math.isfinite(fee) and fee >= 0):
            raise InvalidAmountError(f"fee cannot be negative, got {fee}")

        minimum = self.minimum_amount(from_asset.display_symbol)
        if not _covers(minimum, from_amount):
            raise InvalidAmountError(
                f"Minimum exchange amount for {from_asset.display_symbol} is {minimum}"
            )

        async with self._lock:
            ledger = await self._store.read(user_id)
            from_key, from_entry = _find_entry(ledger, from_asset)
            to_key, to_entry = _find_entry(ledger, to_asset)
            if to_entry is None:
                _ensure_key_free(ledger, to_key, to_asset)

            balance = from_entry.quantity if from_entry else 0.0
            if not self.validate(from_amount, balance, fee):
                raise InsufficientBalanceError(
                    from_asset.identifier, from_amount + fee, balance
                )

            now = utcnow()
            new_from = LedgerEntry(
                asset_identifier=from_key,
                quantity=max(0.0, balance - (from_amount + fee)),
                average_cost_usd=from_entry.average_cost_usd if from_entry else 0.0,
                last_updated=now,
                asset_class=from_asset.asset_class,
            )

            held = to_entry.quantity if to_entry else 0.0
            held_cost = held * (to_entry.average_cost_usd if to_entry else 0.0)
            new_to = LedgerEntry(
                asset_identifier=to_key,
                quantity=held + to_amount,
                average_cost_usd=(held_cost + to_amount * to_asset.price_usd)
                / (held + to_amount),
                last_updated=now,
                asset_class=to_asset.asset_class,
            )

            logger.info(
                "Exchanging %.8f %s (+%.8f fee) for %.8f %s at %.8f",
                from_amount, from_asset.display_symbol, fee,
                to_amount, to_asset.display_symbol, rate,
            )
            await self._store.write_many(user_id, {from_key: new_from, to_key: new_to})
            await self._verify(user_id, {from_key: new_from, to_key: new_to})

        receipt = ExchangeReceipt(
            exchange_id=uuid.uuid4().hex,
            user_id=user_id,
            from_asset_id=from_key,
            to_asset_id=to_key,
            from_amount=from_amount,
            to_amount=to_amount,
            fee_amount=fee,
            rate=rate,
            from_balance_after=new_from.quantity,
            to_balance_after=new_to.quantity,
            executed_at=now,
        )
        logger.info("Exchange %s committed for %s", receipt.exchange_id, user_id)
        return receipt

    async def _verify(self, user_id: str, expected: dict[str, LedgerEntry]) -> None:
        observed = await self._store.read(user_id)
        mismatched = {
            key: entry
            for key, entry in expected.items()
            if key not in observed
            or not math.isclose(
                observed[key].quantity, entry.quantity, rel_tol=_TOLERANCE, abs_tol=1e-12
            )
        }
        if not mismatched:
            return

        error = LedgerInconsistencyError(
            f"Ledger for {user_id} does not reflect the committed exchange",
            user_id=user_id,
            expected={k: e.quantity for k, e in expected.items()},
            observed={
                k: observed[k].quantity if k in observed else None for k in expected
            },
        )
        self._blocked_by = error
        logger.critical(
            "Ledger inconsistency for %s: expected %s, observed %s",
            user_id, error.expected, error.observed,
        )
        raise error
