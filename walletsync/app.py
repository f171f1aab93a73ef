"""Builds the service graph from configuration."""
from __future__ import annotations

import logging
from dataclasses import dataclass

from .catalog import AssetCatalog
from .config import AppConfig, LedgerConfig
from .failure_tracker import FailureTracker
from .interfaces.ledger_store import LedgerStore
from .services import ExchangeEngine, PortfolioService
from .session import StaticIdentityProvider
from .stores import InMemoryLedgerStore, JsonFileLedgerStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Services:
    catalog: AssetCatalog
    store: LedgerStore
    identity: StaticIdentityProvider
    tracker: FailureTracker
    portfolio: PortfolioService
    exchange: ExchangeEngine


def build_store(config: LedgerConfig) -> LedgerStore:
    if config.backend == "json":
        logger.info("Using JSON ledger at %s", config.path)
        return JsonFileLedgerStore(config.path)
    return InMemoryLedgerStore()


def build_services(config: AppConfig) -> Services:
    """Wire every service explicitly; nothing is shared through module globals."""
    catalog = AssetCatalog(config)
    store = build_store(config.ledger)
    identity = StaticIdentityProvider.from_config(config.session)
    tracker = FailureTracker(config.failure)
    return Services(
        catalog=catalog,
        store=store,
        identity=identity,
        tracker=tracker,
        portfolio=PortfolioService(catalog, store, identity, tracker, config.refresh),
        exchange=ExchangeEngine(store, identity, config.exchange),
    )
