"""
Query cache for modelquery.

MemoryCache keeps query rows and rendered view results in a cachetools
TTLCache bounded by `maxsize`. Keys are stable fingerprints, so two
requests that normalize to the same arguments under the same access
decision share an entry:

    <model>:<columns_id>:select:<fingerprint>
    <model>:<columns_id>:view:<fingerprint>

Entries are deep-copied on the way in and on the way out; callers are free
to mutate what they get back.
"""
from __future__ import annotations

import copy
import hashlib
import json
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable

from cachetools import TTLCache

if TYPE_CHECKING:
    from modelquery.query.executor import Query

logger = logging.getLogger(__name__)


def fingerprint(value: Any) -> str:
    """Stable 32-char hex digest of a JSON-compatible value."""
    encoded = json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.md5(encoded.encode("utf-8")).hexdigest()


def cache_key(query: Query, kind: str = "select") -> str:
    """Cache key for a query; `view` keys also cover the selected view names."""
    model = query.model
    parts: dict[str, Any] = {
        "args": query.request.to_args(),
        "access": query.access.to_dict() if query.access is not None else None,
    }
    if kind == "view":
        parts["views"] = query.view_names
    return f"{model.name}:{model.columns_id}:{kind}:{fingerprint(parts)}"


@dataclass
class RenderedView:
    """A cached view result, returned by the cache in place of rows."""

    result: Any


class MemoryCache:
    """
    In-process query cache.

    Attributes:
        hits: Lookups answered from cache
        misses: Lookups that ran the query
    """

    def __init__(
        self,
        ttl_seconds: int = 300,
        maxsize: int = 10000,
        timer: Callable[[], float] | None = None,
    ):
        # expired entries are purged on write; the oldest go first once full
        self._cache: TTLCache = TTLCache(maxsize=maxsize, ttl=ttl_seconds, timer=timer or time.monotonic)
        self.hits = 0
        self.misses = 0
        logger.debug(f"[cache] Using TTLCache (maxsize={maxsize}, ttl={ttl_seconds}s)")

    def __len__(self) -> int:
        return len(self._cache)

    async def query(self, query: Query) -> list[dict[str, Any]] | RenderedView:
        if query.view_engine is not None and query.view_engine.cacheable:
            rendered = self._cache.get(cache_key(query, "view"))
            if rendered is not None:
                self.hits += 1
                logger.debug(f"[cache] View hit for {query.model.name}")
                return RenderedView(copy.deepcopy(rendered))

        key = cache_key(query, "select")
        rows = self._cache.get(key)
        if rows is not None:
            self.hits += 1
            logger.debug(f"[cache] Hit for {query.model.name}: {key}")
            return copy.deepcopy(rows)

        self.misses += 1
        logger.debug(f"[cache] Miss for {query.model.name}: {key}")
        rows = await query.execute_direct()
        self._cache[key] = copy.deepcopy(rows)
        return rows

    async def store_view(self, query: Query, result: Any) -> None:
        # a cached None would read back as a miss
        if result is None:
            return
        key = cache_key(query, "view")
        self._cache[key] = copy.deepcopy(result)
        logger.debug(f"[cache] Stored view for {query.model.name}: {key}")

    def clear(self) -> None:
        self._cache.clear()
        self.hits = 0
        self.misses = 0
