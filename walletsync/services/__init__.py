"""Service modules"""
from .exchange import ExchangeEngine
from .portfolio import PortfolioService, RefreshOutcome

__all__ = ["ExchangeEngine", "PortfolioService", "RefreshOutcome"]
