"""Protocol interfaces for walletsync boundaries."""
from .identity import IdentityProvider
from .ledger_store import LedgerStore
from .market_data import MarketDataSource

__all__ = ["IdentityProvider", "LedgerStore", "MarketDataSource"]
