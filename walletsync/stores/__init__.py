"""Ledger store backends."""
from .memory import (
    DEFAULT_PORTFOLIO,
    InMemoryLedgerStore,
    JsonFileLedgerStore,
    seed_default_portfolio,
)

__all__ = [
    "DEFAULT_PORTFOLIO",
    "InMemoryLedgerStore",
    "JsonFileLedgerStore",
    "seed_default_portfolio",
]
