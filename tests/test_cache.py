"""
Tests for query caching.
"""
import logging

import pytest

from modelquery.query import FunctionView, QueryEngine, RoleAccessPolicy
from modelquery.session import Session
from modelquery.store import MemoryCache, cache_key, fingerprint


@pytest.fixture
def cache() -> MemoryCache:
    return MemoryCache()


@pytest.fixture
def cached_engine(registry, store, views, settings, cache) -> QueryEngine:
    return QueryEngine(registry, store, cache=cache, views=views, settings=settings)


class FakeClock:
    """Manually advanced timer."""

    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class FailingViewCache(MemoryCache):
    """Cache that cannot store rendered views."""

    async def store_view(self, query, result):
        raise RuntimeError("view store offline")


# =============================================================================
# Keys
# =============================================================================


class TestKeys:
    def test_fingerprint_ignores_key_order(self):
        assert fingerprint({"a": 1, "b": [1, 2]}) == fingerprint({"b": [1, 2], "a": 1})
        assert fingerprint({"a": 1}) != fingerprint({"a": 2})

    @pytest.mark.asyncio
    async def test_key_covers_model_and_args(self, cached_engine, session):
        first = cached_engine.new_query("post", {"all": True}, session)
        second = cached_engine.new_query("post", {"all": True, "limit": 5}, session)
        model = first.model

        assert cache_key(first).startswith(f"post:{model.columns_id}:select:")
        assert cache_key(first) != cache_key(second)
        assert ":view:" in cache_key(first, "view")


# =============================================================================
# Expiry and Size
# =============================================================================


class TestCacheBounds:
    """Entries expire after the TTL and the cache never exceeds maxsize."""

    @pytest.mark.asyncio
    async def test_entries_expire(self, registry, store, views, settings, session, make):
        clock = FakeClock()
        cache = MemoryCache(ttl_seconds=10, timer=clock)
        engine = QueryEngine(registry, store, cache=cache, views=views, settings=settings)
        user = make("user", {"name": "ann"})
        args = {"where": {"id": user["id"]}, "one": True}

        await engine.query("user", args, session)
        clock.now = 5
        await engine.query("user", args, session)
        clock.now = 11
        await engine.query("user", args, session)

        assert len(store.calls) == 2
        assert cache.hits == 1
        assert cache.misses == 2

    @pytest.mark.asyncio
    async def test_maxsize_bounds_entries(self, registry, store, views, settings, session, make):
        cache = MemoryCache(maxsize=2)
        engine = QueryEngine(registry, store, cache=cache, views=views, settings=settings)
        users = [make("user", {"n": i}) for i in range(3)]

        for user in users:
            await engine.query("user", {"where": {"id": user["id"]}, "one": True}, session)

        assert len(cache) == 2


# =============================================================================
# Row Cache
# =============================================================================


class TestRowCache:
    """Rows served from cache."""

    @pytest.mark.asyncio
    async def test_repeat_query_hits_cache(self, cached_engine, store, cache, session, make):
        user = make("user", {"name": "ann"})
        args = {"where": {"id": user["id"]}, "one": True}

        first = await cached_engine.query("user", args, session)
        second = await cached_engine.query("user", args, session)

        assert first.id == second.id == user["id"]
        assert len(store.calls) == 1
        assert cache.hits == 1
        assert cache.misses == 1

    @pytest.mark.asyncio
    async def test_results_are_copies(self, cached_engine, session, make):
        user = make("user", {"name": "ann"})
        args = {"where": {"id": user["id"]}, "one": True}

        first = await cached_engine.query("user", args, session)
        first.data["name"] = "changed"
        second = await cached_engine.query("user", args, session)

        assert second.get("name") == "ann"

    @pytest.mark.asyncio
    async def test_cache_false_bypasses(self, cached_engine, store, cache, session, make):
        user = make("user", {"name": "ann"})
        args = {"where": {"id": user["id"]}, "one": True, "cache": False}

        await cached_engine.query("user", args, session)
        await cached_engine.query("user", args, session)

        assert len(store.calls) == 2
        assert cache.hits == cache.misses == 0

    @pytest.mark.asyncio
    async def test_model_cache_disabled(self, cached_engine, registry, store, session, make):
        registry.load_definitions([{"name": "event", "cache": False}])
        event = make("event", {"kind": "login"})
        args = {"where": {"id": event["id"]}, "one": True}

        await cached_engine.query("event", args, session)
        await cached_engine.query("event", args, session)

        assert len(store.calls) == 2

    @pytest.mark.asyncio
    async def test_cached_all_query_pages_by_id(self, cached_engine, store, session, make):
        users = [make("user", {"n": i}) for i in range(3)]

        records = await cached_engine.query("user", {"all": True}, session)

        assert [r.id for r in records] == [u["id"] for u in users]
        assert store.calls[0].only_ids
        assert store.calls[1].by_id

    @pytest.mark.asyncio
    async def test_sessions_with_different_scope_do_not_share(self, registry, store, views, settings, cache, make):
        policy = RoleAccessPolicy([{"role": "all", "scope": "own"}])
        engine = QueryEngine(registry, store, access_control=policy, cache=cache, views=views, settings=settings)
        mine = make("user", {"name": "mine"}, account_id="acct-1")
        make("user", {"name": "theirs"}, account_id="acct-2")

        first = await engine.query("user", {"all": True}, Session(account_id="acct-1"))
        second = await engine.query("user", {"all": True}, Session(account_id="acct-2"))

        assert [u.id for u in first] == [mine["id"]]
        assert [u.get("name") for u in second] == ["theirs"]


# =============================================================================
# View Cache
# =============================================================================


class TestViewCache:
    """Rendered view results served from cache."""

    @pytest.mark.asyncio
    async def test_rendered_view_cached(self, cached_engine, registry, store, session, make):
        calls = []

        def apply(data, session):
            calls.append(data["title"])
            data["title"] = data["title"].upper()

        registry.load_definitions(
            [{"name": "article", "views": {"upper": FunctionView("upper", apply=apply, synchronous=True)}}]
        )
        article = make("article", {"title": "hello"})
        args = {"where": {"id": article["id"]}, "one": True, "view": "upper"}

        first = await cached_engine.query("article", args, session)
        await cached_engine.wait_background()
        second = await cached_engine.query("article", args, session)

        assert first.get("title") == second.get("title") == "HELLO"
        assert calls == ["hello"]
        assert len(store.calls) == 1

    @pytest.mark.asyncio
    async def test_uncacheable_view_skips_cache(self, cached_engine, registry, store, cache, session, make):
        view = FunctionView("stamp", apply=lambda data, session: None, synchronous=True, cache=False)
        registry.load_definitions([{"name": "article", "views": {"stamp": view}}])
        article = make("article", {"title": "hello"})
        args = {"where": {"id": article["id"]}, "one": True, "view": "stamp"}

        await cached_engine.query("article", args, session)
        await cached_engine.query("article", args, session)

        assert len(store.calls) == 2
        assert cache.misses == 0
        assert cached_engine.pending_background == 0

    @pytest.mark.asyncio
    async def test_view_store_failure_logged(self, registry, store, views, settings, session, make, caplog):
        engine = QueryEngine(registry, store, cache=FailingViewCache(), views=views, settings=settings)
        view = FunctionView("noop", apply=lambda data, session: None, synchronous=True)
        registry.load_definitions([{"name": "article", "views": {"noop": view}}])
        article = make("article", {"title": "hello"})

        with caplog.at_level(logging.WARNING):
            record = await engine.query(
                "article", {"where": {"id": article["id"]}, "one": True, "view": "noop"}, session
            )
            await engine.wait_background()

        assert record.get("title") == "hello"
        assert "view store offline" in caplog.text
