"""Unit tests for ExchangeEngine quoting, validation and swap execution."""
from __future__ import annotations

import math
from unittest.mock import AsyncMock, MagicMock

import pytest

from walletsync.config import ExchangeConfig
from walletsync.errors import (
    ExchangeBlockedError,
    InsufficientBalanceError,
    InvalidAmountError,
    InvalidAssetError,
    LedgerInconsistencyError,
    NoSessionError,
)
from walletsync.models import AssetClass, AssetQuote, LedgerEntry
from walletsync.services import ExchangeEngine
from walletsync.session import StaticIdentityProvider
from walletsync.stores import InMemoryLedgerStore


class DroppingLedgerStore(InMemoryLedgerStore):
    """Commits only the first entry of a batch."""

    async def write_many(self, user_id: str, entries: dict[str, LedgerEntry]) -> None:
        first = next(iter(entries))
        await super().write_many(user_id, {first: entries[first]})


@pytest.fixture()
def engine(store: InMemoryLedgerStore, identity: StaticIdentityProvider) -> ExchangeEngine:
    return ExchangeEngine(store, identity, ExchangeConfig())


async def _swap(engine: ExchangeEngine, from_asset: AssetQuote, to_asset: AssetQuote, amount: float):
    q = engine.quote(from_asset, to_asset, amount)
    return await engine.execute(
        from_asset, to_asset, q.from_amount, q.to_amount, q.rate, q.fee_amount
    )


class TestQuote:
    def test_rate_and_amounts(
        self, engine: ExchangeEngine, btc: AssetQuote, eth: AssetQuote
    ) -> None:
        q = engine.quote(btc, eth, 0.1)
        assert q.rate == pytest.approx(20.0)
        assert q.to_amount == pytest.approx(2.0)
        assert q.fee_amount == pytest.approx(0.0001)
        assert q.fee_asset_identifier == "bitcoin"

    def test_zero_target_price_rejected(
        self, engine: ExchangeEngine, btc: AssetQuote, quote_factory
    ) -> None:
        dead = quote_factory("deadcoin", "DEAD", 0.0)
        with pytest.raises(InvalidAssetError):
            engine.quote(btc, dead)

    def test_same_asset_rejected(self, engine: ExchangeEngine, btc: AssetQuote) -> None:
        with pytest.raises(InvalidAssetError):
            engine.quote(btc, btc, 1.0)

    @pytest.mark.parametrize("amount", [-1.0, math.inf, math.nan])
    def test_bad_amount_rejected(
        self, engine: ExchangeEngine, btc: AssetQuote, eth: AssetQuote, amount: float
    ) -> None:
        with pytest.raises(InvalidAmountError):
            engine.quote(btc, eth, amount)

    def test_fee_uses_configured_rate(
        self, store: InMemoryLedgerStore, identity: StaticIdentityProvider
    ) -> None:
        engine = ExchangeEngine(store, identity, ExchangeConfig(fee_rate=0.01))
        assert engine.fee(2.0, 50000.0) == pytest.approx(0.02)


class TestValidate:
    def test_exact_cover(self) -> None:
        assert ExchangeEngine.validate(1.0, 1.0005, 0.0005)

    def test_short_by_a_fraction(self) -> None:
        assert not ExchangeEngine.validate(1.0, 1.0004, 0.0005)

    @pytest.mark.parametrize("amount", [0.0, -0.5])
    def test_non_positive_amount(self, amount: float) -> None:
        assert not ExchangeEngine.validate(amount, 10.0, 0.0)


class TestLookups:
    def test_minimum_amounts(self, engine: ExchangeEngine) -> None:
        assert engine.minimum_amount("BTC") == 0.0001
        assert engine.minimum_amount("eth") == 0.001
        assert engine.minimum_amount("BNB") == 0.01
        assert engine.minimum_amount("XRP") == 0.1

    def test_resolve_asset_id(self, engine: ExchangeEngine) -> None:
        assert engine.resolve_asset_id("btc") == "bitcoin"
        assert engine.resolve_asset_id("ETH") == "ethereum"
        assert engine.resolve_asset_id(" Pepe ") == "pepe"


class TestListPairs:
    @pytest.mark.asyncio
    async def test_held_first_then_by_price(
        self,
        engine: ExchangeEngine,
        btc: AssetQuote,
        eth: AssetQuote,
        xrp: AssetQuote,
        quote_factory,
    ) -> None:
        dead = quote_factory("deadcoin", "DEAD", 0.0)
        pairs = await engine.list_pairs([xrp, eth, dead, btc])
        assert [p.quote.identifier for p in pairs] == ["bitcoin", "ethereum", "ripple"]
        assert pairs[0].balance == 0.5
        assert pairs[1].balance == 0.0

    @pytest.mark.asyncio
    async def test_no_session_lists_zero_balances(
        self, store: InMemoryLedgerStore, btc: AssetQuote
    ) -> None:
        engine = ExchangeEngine(store, StaticIdentityProvider())
        [pair] = await engine.list_pairs([btc])
        assert pair.balance == 0.0


class TestExecute:
    @pytest.mark.asyncio
    async def test_swap_debits_and_credits(
        self,
        engine: ExchangeEngine,
        store: InMemoryLedgerStore,
        btc: AssetQuote,
        eth: AssetQuote,
    ) -> None:
        receipt = await _swap(engine, btc, eth, 0.1)

        ledger = await store.read("user-1")
        assert ledger["bitcoin"].quantity == pytest.approx(0.3999)
        assert ledger["bitcoin"].average_cost_usd == 40000.0
        assert ledger["ethereum"].quantity == pytest.approx(2.0)
        assert ledger["ethereum"].average_cost_usd == pytest.approx(2500.0)
        assert receipt.from_balance_after == pytest.approx(0.3999)
        assert receipt.to_balance_after == pytest.approx(2.0)
        assert receipt.user_id == "user-1"
        assert len(receipt.exchange_id) == 32

    @pytest.mark.asyncio
    async def test_credit_averages_cost_basis(
        self, identity: StaticIdentityProvider, btc: AssetQuote, eth: AssetQuote
    ) -> None:
        store = InMemoryLedgerStore(
            {
                "user-1": {
                    "bitcoin": LedgerEntry("bitcoin", 1.0, average_cost_usd=40000.0),
                    "ethereum": LedgerEntry("ethereum", 2.0, average_cost_usd=1500.0),
                }
            }
        )
        engine = ExchangeEngine(store, identity, ExchangeConfig(fee_rate=0.0))
        await _swap(engine, btc, eth, 0.1)

        eth_entry = (await store.read("user-1"))["ethereum"]
        assert eth_entry.quantity == pytest.approx(4.0)
        assert eth_entry.average_cost_usd == pytest.approx(2000.0)

    @pytest.mark.asyncio
    async def test_whole_balance_can_be_spent(
        self, identity: StaticIdentityProvider, btc: AssetQuote, eth: AssetQuote
    ) -> None:
        store = InMemoryLedgerStore(
            {"user-1": {"bitcoin": LedgerEntry("bitcoin", 1.001)}}
        )
        engine = ExchangeEngine(store, identity)
        await _swap(engine, btc, eth, 1.0)
        assert (await store.read("user-1"))["bitcoin"].quantity == pytest.approx(0.0, abs=1e-12)

    @pytest.mark.asyncio
    async def test_stock_keys_are_upper_case(
        self, identity: StaticIdentityProvider, btc: AssetQuote, quote_factory
    ) -> None:
        aapl = quote_factory("aapl", "AAPL", 200.0, asset_class=AssetClass.STOCK)
        store = InMemoryLedgerStore(
            {"user-1": {"bitcoin": LedgerEntry("bitcoin", 1.0)}}
        )
        engine = ExchangeEngine(store, identity)
        await _swap(engine, btc, aapl, 0.01)

        ledger = await store.read("user-1")
        assert ledger["AAPL"].quantity == pytest.approx(2.5)
        assert ledger["AAPL"].asset_class is AssetClass.STOCK

    @pytest.mark.asyncio
    async def test_key_held_by_other_class_is_not_overwritten(
        self, identity: StaticIdentityProvider, btc: AssetQuote, quote_factory
    ) -> None:
        pengu_coin = quote_factory("pudgy-penguins", "PENGU", 0.03)
        store = InMemoryLedgerStore(
            {
                "user-1": {
                    "bitcoin": LedgerEntry("bitcoin", 1.0),
                    "pudgy-penguins": LedgerEntry(
                        "pudgy-penguins", 2.0, asset_class=AssetClass.NFT
                    ),
                }
            }
        )
        engine = ExchangeEngine(store, identity)
        before = await store.read("user-1")

        with pytest.raises(InvalidAssetError, match="pudgy-penguins"):
            await _swap(engine, btc, pengu_coin, 0.01)

        assert await store.read("user-1") == before
        assert not engine.is_blocked

    @pytest.mark.asyncio
    async def test_insufficient_balance_writes_nothing(
        self, identity: StaticIdentityProvider, btc: AssetQuote, eth: AssetQuote
    ) -> None:
        store = MagicMock()
        store.read = AsyncMock(return_value={"bitcoin": LedgerEntry("bitcoin", 0.05)})
        store.write_many = AsyncMock()
        engine = ExchangeEngine(store, identity)

        with pytest.raises(InsufficientBalanceError) as exc_info:
            await _swap(engine, btc, eth, 0.05)

        assert exc_info.value.required == pytest.approx(0.05005)
        assert exc_info.value.available == 0.05
        store.write_many.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_source_entry_is_insufficient(
        self, engine: ExchangeEngine, eth: AssetQuote, btc: AssetQuote
    ) -> None:
        with pytest.raises(InsufficientBalanceError):
            await _swap(engine, eth, btc, 1.0)

    @pytest.mark.asyncio
    async def test_below_minimum_rejected(
        self, engine: ExchangeEngine, btc: AssetQuote, eth: AssetQuote
    ) -> None:
        with pytest.raises(InvalidAmountError, match="Minimum"):
            await _swap(engine, btc, eth, 0.00005)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "to_amount,rate,fee",
        [(0.0, 20.0, 0.0), (2.0, 0.0, 0.0), (2.0, 20.0, -0.1), (math.nan, 20.0, 0.0)],
    )
    async def test_invalid_execution_arguments(
        self,
        engine: ExchangeEngine,
        btc: AssetQuote,
        eth: AssetQuote,
        to_amount: float,
        rate: float,
        fee: float,
    ) -> None:
        with pytest.raises(InvalidAmountError):
            await engine.execute(btc, eth, 0.1, to_amount, rate, fee)

    @pytest.mark.asyncio
    async def test_no_session(
        self, store: InMemoryLedgerStore, btc: AssetQuote, eth: AssetQuote
    ) -> None:
        engine = ExchangeEngine(store, StaticIdentityProvider())
        with pytest.raises(NoSessionError):
            await engine.execute(btc, eth, 0.1, 2.0, 20.0, 0.0001)


class TestInconsistency:
    @pytest.mark.asyncio
    async def test_read_back_mismatch_blocks_until_acknowledged(
        self, identity: StaticIdentityProvider, btc: AssetQuote, eth: AssetQuote
    ) -> None:
        store = DroppingLedgerStore(
            {"user-1": {"bitcoin": LedgerEntry("bitcoin", 1.0)}}
        )
        engine = ExchangeEngine(store, identity)

        with pytest.raises(LedgerInconsistencyError) as exc_info:
            await _swap(engine, btc, eth, 0.1)

        assert exc_info.value.user_id == "user-1"
        assert exc_info.value.observed["ethereum"] is None
        assert engine.is_blocked

        with pytest.raises(ExchangeBlockedError):
            await _swap(engine, btc, eth, 0.1)

        assert engine.acknowledge_inconsistency() is exc_info.value
        assert not engine.is_blocked
        assert engine.acknowledge_inconsistency() is None
