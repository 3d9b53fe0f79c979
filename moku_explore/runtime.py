"""
================================================================================
Moku Explore - Feed Runtime
================================================================================
Wires the engine together and runs it on one asyncio loop.

The Cache Store, cancellation scopes and the feed state are only ever
touched from a single event loop running on a background thread. Flask
views are synchronous, so they hand coroutines to that loop and wait on
the returned concurrent future.

  Flask thread                     loop thread
  ------------                     -----------
  runtime.call(coro) ---------->   coro runs, touches cache / feed
       <-- result / exception ---

History owners may signal changes from any thread; the re-derive is
scheduled onto the loop.
================================================================================
"""

import asyncio
import threading
from concurrent.futures import Future
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from sources import SourceCatalog, SuwayomiClient
from sources.base import set_log_callback

from .cache import CacheStore, PageSetRegistry
from .config import ExploreConfig
from .frecency import SourceFrecency
from .log import log
from .models import FeedSnapshot
from .search.genre_search import GenreSearch
from .services import FeedAssembler, LibraryActions, RequestOrchestrator
from .stores import HistoryStore, MemoryHistoryStore, MemorySettingsStore, SettingsStore

DEFAULT_CALL_TIMEOUT = 120.0


class FeedRuntime:
    """
    Owns the engine components and the loop they live on.

    Usage:
        runtime = FeedRuntime(ExploreConfig.from_env())
        runtime.start()
        snapshot = runtime.load()
        runtime.stop()
    """

    def __init__(
        self,
        config: Optional[ExploreConfig] = None,
        client: Any = None,
        history: Optional[HistoryStore] = None,
        settings: Optional[SettingsStore] = None,
        source_frecency: Optional[SourceFrecency] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.config = config or ExploreConfig.from_env()
        self.client = client or SuwayomiClient(
            self.config.server_url,
            retries=self.config.query_retries,
            retry_delay=self.config.query_retry_delay,
            timeout=self.config.query_timeout,
        )
        self.catalog = SourceCatalog(self.client, fallback_lang=self.config.fallback_lang)
        self.cache = CacheStore()
        self.orchestrator = RequestOrchestrator(self.cache)
        self.history = history or MemoryHistoryStore()
        self.settings = settings or MemorySettingsStore(self.config.preferred_lang)
        self.source_frecency = source_frecency or SourceFrecency()
        self.page_sets = PageSetRegistry()

        self.feed = FeedAssembler(
            self.catalog,
            self.cache,
            self.orchestrator,
            self.history,
            self.settings,
            source_frecency=self.source_frecency,
            popular_source_limit=self.config.popular_source_limit,
            category_source_limit=self.config.category_source_limit,
            clock=clock,
        )
        self.genre_search = GenreSearch(
            self.catalog,
            self.cache,
            self.orchestrator,
            self.settings,
            page_sets=self.page_sets,
            source_limit=self.config.genre_drill_source_limit,
            pages=self.config.genre_drill_pages,
        )
        self.library = LibraryActions(self.catalog, self.cache, self.feed, drills=[self.genre_search])

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.RLock()
        self._load_future: Optional[Future] = None
        self._tasks: Set[asyncio.Task] = set()
        self._unsubscribe_history: Optional[Callable[[], None]] = None

    # =========================================================================
    # LOOP
    # =========================================================================

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        with self._lock:
            if self.running:
                return
            set_log_callback(log)
            self._loop = asyncio.new_event_loop()
            self._thread = threading.Thread(target=self._run, name="moku-explore-loop", daemon=True)
            self._thread.start()
            self._unsubscribe_history = self.history.subscribe(self._history_changed)
            log(f"Explore runtime started ({self.config.server_url})")

    def _run(self) -> None:
        asyncio.set_event_loop(self._loop)
        self._loop.run_forever()

    def stop(self) -> None:
        with self._lock:
            if not self.running:
                return
            if self._unsubscribe_history:
                self._unsubscribe_history()
                self._unsubscribe_history = None
            close = getattr(self.client, "close", None)
            if close is not None:
                asyncio.run_coroutine_threadsafe(self._shutdown(), self._loop).result(DEFAULT_CALL_TIMEOUT)
            self._loop.call_soon_threadsafe(self._loop.stop)
            self._thread.join()
            self._loop.close()
            self._thread = None
            self._loop = None
            self._load_future = None
            log("Explore runtime stopped")

    async def _shutdown(self) -> None:
        self.orchestrator.cancel_all()
        await self.client.close()

    def submit(self, coro: Awaitable[Any]) -> Future:
        """Schedule `coro` on the loop without waiting."""
        self.start()
        return asyncio.run_coroutine_threadsafe(coro, self._loop)

    def call(self, coro: Awaitable[Any], timeout: Optional[float] = DEFAULT_CALL_TIMEOUT) -> Any:
        """Run `coro` on the loop and wait for its result."""
        return self.submit(coro).result(timeout)

    def _history_changed(self) -> None:
        if not self.running:
            return
        self._loop.call_soon_threadsafe(self._spawn, self.feed.on_history_changed)

    def _spawn(self, factory: Callable[[], Awaitable[Any]]) -> None:
        task = self._loop.create_task(factory())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # =========================================================================
    # FEED OPERATIONS
    # =========================================================================

    async def _snapshot(self) -> FeedSnapshot:
        return self.feed.snapshot()

    def snapshot(self) -> FeedSnapshot:
        return self.call(self._snapshot())

    def load(self, wait: bool = True, timeout: Optional[float] = DEFAULT_CALL_TIMEOUT) -> FeedSnapshot:
        """Start the first load if needed; optionally wait for it to settle."""
        with self._lock:
            if self._load_future is None:
                self._load_future = self.submit(self.feed.load())
            future = self._load_future
        if wait:
            future.result(timeout)
        return self.snapshot()

    def retry(self, timeout: Optional[float] = DEFAULT_CALL_TIMEOUT) -> FeedSnapshot:
        with self._lock:
            self._load_future = self.submit(self.feed.retry())
            future = self._load_future
        future.result(timeout)
        return self.snapshot()

    def open_genre(self, genre: str, timeout: Optional[float] = DEFAULT_CALL_TIMEOUT) -> Dict[str, Any]:
        async def run() -> Dict[str, Any]:
            await self.genre_search.open(genre)
            return self.genre_search.to_dict()

        return self.call(run(), timeout)

    def load_more_genre(self, timeout: Optional[float] = DEFAULT_CALL_TIMEOUT) -> Dict[str, Any]:
        async def run() -> Dict[str, Any]:
            await self.genre_search.load_more()
            return self.genre_search.to_dict()

        return self.call(run(), timeout)

    def add_to_library(self, record_id: int, timeout: Optional[float] = DEFAULT_CALL_TIMEOUT) -> bool:
        return self.call(self.library.add_to_library(record_id), timeout)

    def record_source_access(self, source_id: str) -> None:
        async def run() -> None:
            self.source_frecency.record_access(source_id)

        self.call(run())

    def cache_stats(self) -> Dict[str, Any]:
        async def run() -> Dict[str, Any]:
            return self.cache.stats()

        return self.call(run())

    def cache_keys(self) -> List[str]:
        async def run() -> List[str]:
            return self.cache.keys()

        return self.call(run())
