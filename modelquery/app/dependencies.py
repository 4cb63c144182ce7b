"""
Dependency Injection for modelquery.

Provides the process-wide QueryEngine used by the HTTP layer.
"""
from __future__ import annotations

import logging
from typing import Optional

from modelquery.config import get_settings
from modelquery.models import get_model_registry
from modelquery.query import QueryEngine
from modelquery.store import MemoryCache, MemoryStore

logger = logging.getLogger(__name__)

# Global instance (initialized on first access)
_engine: Optional[QueryEngine] = None


def get_engine() -> QueryEngine:
    """
    Get the query engine.

    The default engine runs against an in-memory store, with a MemoryCache
    attached when caching is enabled in settings.
    """
    global _engine
    if _engine is None:
        settings = get_settings()
        cache = None
        if settings.cache_enabled:
            cache = MemoryCache(
                ttl_seconds=settings.cache_ttl_seconds, maxsize=settings.cache_maxsize
            )
        _engine = QueryEngine(
            get_model_registry(),
            MemoryStore(),
            cache=cache,
            settings=settings,
        )
        logger.info(
            f"Query engine initialized (cache={'on' if cache is not None else 'off'})"
        )
    return _engine


def set_engine(engine: QueryEngine) -> None:
    """Replace the engine (for embedding and testing)."""
    global _engine
    _engine = engine


def reset_engine() -> None:
    """Drop the engine (for testing)."""
    global _engine
    _engine = None


async def shutdown_engine() -> None:
    """Wait for background cache writes before shutdown."""
    if _engine is not None:
        await _engine.wait_background()
