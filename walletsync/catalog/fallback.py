"""Bundled demo datasets used when a live fetch returns nothing."""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml

from ..models import AssetClass

FALLBACK_PATH = Path(__file__).resolve().parent / "fallback.yaml"


@lru_cache(maxsize=None)
def _load_all() -> dict[str, Any]:
    with open(FALLBACK_PATH) as f:
        return yaml.safe_load(f) or {}


def load_fallback_items(asset_class: AssetClass) -> tuple[dict[str, Any], ...]:
    """Raw items for ``asset_class``, in the same shape the live API returns."""
    items = _load_all().get(asset_class.value) or []
    if not items:
        raise RuntimeError(f"Bundled fallback dataset for '{asset_class.value}' is empty")
    return tuple(dict(item) for item in items)
