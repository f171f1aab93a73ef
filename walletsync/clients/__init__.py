"""HTTP clients for external market data APIs."""
from .market_data import MarketDataClient

__all__ = ["MarketDataClient"]
