"""Portfolio reconciliation engine — refreshes quotes and emits snapshots."""
from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Union

from ..catalog import AssetCatalog, fallback_batch
from ..config import RefreshConfig
from ..errors import MarketDataError, NoSessionError
from ..failure_tracker import FailureState, FailureTracker
from ..interfaces.identity import IdentityProvider
from ..interfaces.ledger_store import LedgerStore
from ..models import AssetClass, CatalogBatch, LedgerEntry, PortfolioSnapshot
from ..reconciler import build_snapshot

logger = logging.getLogger(__name__)

SnapshotListener = Callable[[PortfolioSnapshot], Union[None, Awaitable[None]]]


@dataclass(frozen=True)
class RefreshOutcome:
    """Result of one refresh attempt for an asset class.

    Expected failures are reported here instead of raised: ``skipped`` is
    set when the failure tracker refused the attempt, ``error`` when the
    fetch failed, and ``superseded`` when a newer refresh finished first.
    """

    asset_class: AssetClass
    snapshot: PortfolioSnapshot | None = None
    error: MarketDataError | None = None
    skipped: str | None = None
    superseded: bool = False

    @property
    def ok(self) -> bool:
        return (
            self.snapshot is not None
            and self.error is None
            and self.skipped is None
            and not self.superseded
        )


class PortfolioService:
    """Keeps a reconciled snapshot per asset class and notifies subscribers.

    Each refresh fetches the full catalog batch, records the outcome with
    the failure tracker, re-reads the ledger and reconciles. When a fetch
    fails, the last good snapshot is re-emitted marked stale, or the bundled
    fallback data is shown if there is none yet.
    """

    def __init__(
        self,
        catalog: AssetCatalog,
        store: LedgerStore,
        identity: IdentityProvider,
        tracker: FailureTracker,
        config: RefreshConfig | None = None,
    ) -> None:
        self._catalog = catalog
        self._store = store
        self._identity = identity
        self._tracker = tracker
        self._config = config or RefreshConfig()

        self._generations: dict[AssetClass, int] = {}
        self._batches: dict[AssetClass, CatalogBatch] = {}
        self._snapshots: dict[AssetClass, PortfolioSnapshot] = {}
        self._listeners: list[SnapshotListener] = []

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        """Register a listener; returns a function that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def _emit(self, snapshot: PortfolioSnapshot) -> None:
        for listener in list(self._listeners):
            try:
                result = listener(snapshot)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error("Snapshot listener failed: %s", e)

    def snapshot(self, asset_class: AssetClass) -> PortfolioSnapshot | None:
        return self._snapshots.get(asset_class)

    @property
    def health(self) -> FailureState:
        return self._tracker.state()

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    async def _read_ledger(self) -> dict[str, LedgerEntry]:
        user_id = self._identity.current_user_id()
        if not user_id:
            logger.debug("No session, reconciling against an empty ledger")
            return {}
        return await self._store.read(user_id)

    def _is_current(self, asset_class: AssetClass, generation: int) -> bool:
        return self._generations.get(asset_class) == generation

    def _gate(self, manual: bool) -> str | None:
        if not self._tracker.is_manual_refresh_allowed():
            return f"rate limited for {self._tracker.rate_limit_remaining():.0f}s"
        if not manual and not self._tracker.is_auto_refresh_eligible():
            return (
                f"{self._tracker.state().consecutive_errors} consecutive errors, "
                "waiting for a manual refresh"
            )
        return None

    async def refresh(self, asset_class: AssetClass, manual: bool = False) -> RefreshOutcome:
        """Fetch, reconcile and emit one asset class."""
        reason = self._gate(manual)
        if reason:
            logger.info("Skipping %s refresh: %s", asset_class.value, reason)
            return RefreshOutcome(
                asset_class, snapshot=self._snapshots.get(asset_class), skipped=reason
            )

        generation = self._generations.get(asset_class, 0) + 1
        self._generations[asset_class] = generation

        try:
            batch = await self._catalog.fetch(asset_class)
        except MarketDataError as e:
            health = await self._tracker.record_failure(e)
            if not self._is_current(asset_class, generation):
                logger.debug("Discarding superseded %s failure", asset_class.value)
                return RefreshOutcome(asset_class, error=e, superseded=True)
            snapshot = await self._degraded_snapshot(asset_class, e, health)
            self._snapshots[asset_class] = snapshot
            await self._emit(snapshot)
            return RefreshOutcome(asset_class, snapshot=snapshot, error=e)

        health = await self._tracker.record_success()
        ledger = await self._read_ledger()
        if not self._is_current(asset_class, generation):
            logger.debug("Discarding superseded %s result", asset_class.value)
            return RefreshOutcome(asset_class, superseded=True)

        snapshot = build_snapshot(batch, ledger, health)
        self._batches[asset_class] = batch
        self._snapshots[asset_class] = snapshot
        logger.info(
            "%s: %d held, total $%.2f (%+.2f%%)%s",
            asset_class.value,
            snapshot.held_count,
            snapshot.total_value_usd,
            snapshot.weighted_change_percent,
            " [fallback]" if snapshot.is_fallback else "",
        )
        await self._emit(snapshot)
        return RefreshOutcome(asset_class, snapshot=snapshot)

    async def _degraded_snapshot(
        self, asset_class: AssetClass, error: MarketDataError, health: FailureState
    ) -> PortfolioSnapshot:
        ledger = await self._read_ledger()
        previous = self._batches.get(asset_class)
        if previous is not None:
            return build_snapshot(previous, ledger, health, is_stale=True, error=str(error))

        logger.warning("No %s data yet, showing fallback data", asset_class.value)
        batch = fallback_batch(asset_class)
        self._batches[asset_class] = batch
        return build_snapshot(batch, ledger, health, error=str(error))

    async def refresh_all(self, manual: bool = False) -> dict[AssetClass, RefreshOutcome]:
        """Refresh every configured asset class concurrently."""
        classes = self._config.asset_classes
        outcomes = await asyncio.gather(*(self.refresh(ac, manual) for ac in classes))
        return dict(zip(classes, outcomes))

    # ------------------------------------------------------------------
    # Background loops
    # ------------------------------------------------------------------

    async def watch_ledger(self) -> None:
        """Re-reconcile the latest batches whenever the ledger changes."""
        user_id = self._identity.current_user_id()
        if not user_id:
            raise NoSessionError("Cannot watch a ledger without a signed-in user")

        async for ledger in self._store.stream(user_id):
            for asset_class, batch in list(self._batches.items()):
                previous = self._snapshots.get(asset_class)
                snapshot = build_snapshot(
                    batch,
                    ledger,
                    self._tracker.state(),
                    is_stale=previous.is_stale if previous else False,
                    error=previous.error if previous else None,
                )
                self._snapshots[asset_class] = snapshot
                await self._emit(snapshot)

    async def run_auto_refresh(
        self, interval_seconds: float | None = None, iterations: int | None = None
    ) -> None:
        """Periodically refresh all asset classes while the tracker allows it."""
        interval = interval_seconds or self._config.auto_refresh_interval_seconds
        logger.info("Starting auto refresh (every %.0f seconds)", interval)

        count = 0
        while iterations is None or count < iterations:
            count += 1
            try:
                await self.refresh_all(manual=False)
            except Exception as e:
                logger.error("Error in auto refresh loop: %s", e)
            await asyncio.sleep(interval)

