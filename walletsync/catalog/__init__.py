"""Market data catalog: parsing, fallback data and provider fetches."""
from .parser import fallback_batch, parse, parse_news
from .service import AssetCatalog, find_quote

__all__ = ["AssetCatalog", "fallback_batch", "find_quote", "parse", "parse_news"]
