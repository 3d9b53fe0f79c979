"""
================================================================================
Moku Explore - Request Cache
================================================================================
Process-wide, key-addressed cache of in-flight and completed computations.

Design:
  - Stores the Future itself, so concurrent callers of the same key share ONE
    computation (single-flight, no thundering herd)
  - No TTL: entries live until someone who knows the data is stale clears them
  - A computation that fails (or is cancelled) is evicted, so the next get()
    recomputes instead of replaying the failure

The store is created once by the runtime and injected into every component.
It is not thread-safe: all access happens on the runtime's event loop.

Usage:
    cache = CacheStore()
    records = await cache.get(CacheKeys.LIBRARY, catalog.fetch_library)
    cache.clear(CacheKeys.LIBRARY)
================================================================================
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Set, Union

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    """One cached computation."""
    key: str
    future: "asyncio.Future[Any]"
    resolved: bool = False
    value: Any = None


class CacheStore:
    """Single-flight async cache with manual invalidation."""

    def __init__(self):
        self._entries: Dict[str, CacheEntry] = {}
        self._hits = 0
        self._misses = 0

    def get(self, key: str, compute: Callable[[], Awaitable[Any]]) -> "asyncio.Future[Any]":
        """
        Return the shared future for `key`, starting `compute()` on a miss.

        Must be called from inside a running event loop. Callers whose own
        task may be cancelled should await through asyncio.shield() so the
        shared computation is not cancelled on their behalf.
        """
        entry = self._entries.get(key)
        if entry is not None:
            self._hits += 1
            return entry.future

        self._misses += 1
        future = asyncio.ensure_future(compute())
        entry = CacheEntry(key=key, future=future)
        self._entries[key] = entry
        future.add_done_callback(lambda f, e=entry: self._settle(e))
        return future

    def _settle(self, entry: CacheEntry) -> None:
        future = entry.future
        if future.cancelled():
            failed = True
            reason = "cancelled"
        else:
            error = future.exception()
            failed = error is not None
            reason = repr(error)

        if failed:
            # Only evict if the entry was not replaced after a clear()
            if self._entries.get(entry.key) is entry:
                del self._entries[entry.key]
            logger.debug(f"Cache evicted '{entry.key}': {reason}")
            return

        entry.resolved = True
        entry.value = future.result()

    def has(self, key: str) -> bool:
        return key in self._entries

    def keys(self) -> List[str]:
        return list(self._entries.keys())

    def clear(self, key: str) -> None:
        """Drop `key` unconditionally, pending or not."""
        self._entries.pop(key, None)

    def clear_prefix(self, prefix: str) -> List[str]:
        """Drop every key starting with `prefix`. Returns the dropped keys."""
        dropped = [key for key in self._entries if key.startswith(prefix)]
        for key in dropped:
            del self._entries[key]
        return dropped

    def stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        total_requests = self._hits + self._misses
        hit_rate = (self._hits / total_requests * 100) if total_requests > 0 else 0.0
        pending = sum(1 for e in self._entries.values() if not e.resolved)

        return {
            'size': len(self._entries),
            'pending': pending,
            'hits': self._hits,
            'misses': self._misses,
            'hit_rate': round(hit_rate, 2)
        }


# =============================================================================
# CACHE KEYS
# =============================================================================

def _query_part(query: Union[str, List[str], None]) -> str:
    # Tag lists are order-insensitive: ["Action","Romance"] == ["Romance","Action"]
    if isinstance(query, (list, tuple)):
        return "+".join(sorted(query))
    return query or ""


class CacheKeys:
    """Deterministic cache keys: namespace + stable parameters."""

    LIBRARY = "library"
    SOURCES = "sources"
    POPULAR = "popular"
    CATEGORY_PREFIX = "category:"

    @staticmethod
    def category(name: str) -> str:
        return f"{CacheKeys.CATEGORY_PREFIX}{name}"

    @staticmethod
    def genre_drill(name: str) -> str:
        return f"{CacheKeys.CATEGORY_PREFIX}{name}:drill"

    @staticmethod
    def source_manga_pages(source_id: str, browse_type: str, query: Union[str, List[str], None] = None) -> str:
        """Key for a browse session's page-number set."""
        return f"pages:{source_id}:{browse_type}:{_query_part(query)}"

    @staticmethod
    def source_manga_page(
        source_id: str, browse_type: str, page: int, query: Union[str, List[str], None] = None
    ) -> str:
        """Per-page result key. Always pair with source_manga_pages()."""
        return f"page:{source_id}:{browse_type}:{page}:{_query_part(query)}"


# =============================================================================
# PAGE SETS
# =============================================================================

class PageSet:
    """
    Tracks which page numbers a browse session already fetched.

    Lives outside the cache entries so clearing results never loses the
    pagination cursor of a session that is still paginating.
    """

    def __init__(self, registry: Dict[str, Set[int]], key: str):
        self._registry = registry
        self.key = key

    def add(self, page: int) -> None:
        self._registry.setdefault(self.key, set()).add(page)

    def pages(self) -> Set[int]:
        return set(self._registry.get(self.key, ()))

    def next(self) -> int:
        """Next page to fetch: max fetched + 1, or 1 if nothing fetched yet."""
        fetched = self._registry.get(self.key)
        return max(fetched) + 1 if fetched else 1

    def clear(self) -> None:
        self._registry.pop(self.key, None)


class PageSetRegistry:
    """Owner of every PageSet; inject alongside the CacheStore."""

    def __init__(self):
        self._pages: Dict[str, Set[int]] = {}

    def page_set(self, source_id: str, browse_type: str, query: Union[str, List[str], None] = None) -> PageSet:
        return PageSet(self._pages, CacheKeys.source_manga_pages(source_id, browse_type, query))
