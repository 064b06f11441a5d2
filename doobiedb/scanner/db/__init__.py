"""SQLite persistence for the product cache and the operator catalog."""

from .catalog import CatalogDB
from .product_cache import ProductCacheDB, cache_key_for
from .schema import ensure_schema

__all__ = [
    "CatalogDB",
    "ProductCacheDB",
    "cache_key_for",
    "ensure_schema",
]
