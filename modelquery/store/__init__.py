"""Store and cache backends for modelquery."""

from .cache import MemoryCache, RenderedView, cache_key, fingerprint
from .memory import MemoryStore, matches, new_id
from .protocol import Cache, Store

__all__ = [
    "Cache",
    "Store",
    "MemoryCache",
    "MemoryStore",
    "RenderedView",
    "cache_key",
    "fingerprint",
    "matches",
    "new_id",
]
