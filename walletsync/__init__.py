"""Cross-asset portfolio sync and exchange engine."""

__version__ = "0.1.0"
