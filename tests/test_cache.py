import asyncio

import pytest

from moku_explore.cache import CacheKeys, CacheStore, PageSetRegistry


def test_concurrent_gets_share_one_computation():
    calls = []

    async def scenario():
        cache = CacheStore()
        gate = asyncio.Event()

        async def compute():
            calls.append(1)
            await gate.wait()
            return ["a", "b"]

        first = cache.get("library", compute)
        second = cache.get("library", compute)
        assert first is second
        gate.set()
        return await asyncio.gather(first, second), cache.stats()

    (a, b), stats = asyncio.run(scenario())
    assert a == b == ["a", "b"]
    assert len(calls) == 1
    assert stats["hits"] == 1
    assert stats["misses"] == 1


def test_resolved_value_is_reused_until_cleared():
    async def scenario():
        cache = CacheStore()
        counter = {"n": 0}

        async def compute():
            counter["n"] += 1
            return counter["n"]

        first = await cache.get("popular", compute)
        again = await cache.get("popular", compute)
        cache.clear("popular")
        fresh = await cache.get("popular", compute)
        return first, again, fresh, await cache.get("popular", compute)

    assert asyncio.run(scenario()) == (1, 1, 2, 2)


def test_failed_computation_is_not_retained():
    async def scenario():
        cache = CacheStore()
        attempts = []

        async def compute():
            attempts.append(1)
            if len(attempts) == 1:
                raise RuntimeError("server down")
            return "ok"

        with pytest.raises(RuntimeError):
            await cache.get("library", compute)
        assert not cache.has("library")
        return await cache.get("library", compute), len(attempts)

    assert asyncio.run(scenario()) == ("ok", 2)


def test_clear_while_pending_starts_a_new_computation():
    async def scenario():
        cache = CacheStore()
        gate = asyncio.Event()
        values = iter(["stale", "fresh"])

        async def compute():
            value = next(values)
            if value == "stale":
                await gate.wait()
            return value

        pending = cache.get("library", compute)
        cache.clear("library")
        replacement = cache.get("library", compute)
        gate.set()
        old = await pending
        new = await replacement
        # The superseded computation must not overwrite the replacement
        return old, new, await cache.get("library", compute)

    assert asyncio.run(scenario()) == ("stale", "fresh", "fresh")


def test_stats_count_pending_entries():
    async def scenario():
        cache = CacheStore()
        gate = asyncio.Event()

        async def compute():
            await gate.wait()
            return 1

        future = cache.get("sources", compute)
        pending_stats = cache.stats()
        gate.set()
        await future
        return pending_stats["pending"], cache.stats()["pending"], cache.stats()["size"]

    assert asyncio.run(scenario()) == (1, 0, 1)


def test_clear_prefix_drops_only_matching_keys():
    async def scenario():
        cache = CacheStore()

        async def compute():
            return []

        for key in ("library", CacheKeys.category("Action"), CacheKeys.genre_drill("Action"), "popular"):
            await cache.get(key, compute)
        dropped = cache.clear_prefix(CacheKeys.CATEGORY_PREFIX)
        return sorted(dropped), sorted(cache.keys())

    dropped, remaining = asyncio.run(scenario())
    assert dropped == ["category:Action", "category:Action:drill"]
    assert remaining == ["library", "popular"]


def test_cache_keys():
    assert CacheKeys.category("Action") == "category:Action"
    assert CacheKeys.genre_drill("Action") == "category:Action:drill"
    assert CacheKeys.source_manga_page("12", "SEARCH", 2, ["Romance", "Action"]) == \
        CacheKeys.source_manga_page("12", "SEARCH", 2, ["Action", "Romance"])
    assert CacheKeys.source_manga_pages("12", "POPULAR") == "pages:12:POPULAR:"


def test_page_set_tracks_next_page():
    registry = PageSetRegistry()
    pages = registry.page_set("12", "SEARCH", "Action")
    assert pages.next() == 1
    pages.add(1)
    pages.add(2)
    assert pages.next() == 3
    # Same session, different handle
    assert registry.page_set("12", "SEARCH", "Action").pages() == {1, 2}
    assert registry.page_set("12", "SEARCH", "Romance").next() == 1
    pages.clear()
    assert pages.next() == 1
