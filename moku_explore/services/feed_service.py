"""
Feed Service - the Explore feed state machine.

Sequences the pipeline into named sections, each moving independently
through LOADING -> READY | EMPTY | ERROR:

  - Continue Reading: newest history entry per manga, resolved against the
    local record set
  - Recommended: library records sharing a ranked category
  - Popular: POPULAR page 1 from the two most-used catalogs, title-deduped
  - One row per ranked category: local genre query plus a SEARCH on the
    most-used catalogs, streamed in as each category resolves

Pipeline:
  library + catalog list (parallel, cached)
    -> rank categories (pure)
    -> category rows (fan-out, cancellable) + popular (cached)

Only the library and catalog-list loads can put the feed in an error state.
A failed category or catalog just leaves its row empty.

Retry bumps the attempt counter, clears the library / sources / popular
cache entries and reruns the whole pipeline.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Set

from sources import SourceCatalog
from sources.base import MangaRecord, SourceDescriptor

from ..cache import CacheKeys, CacheStore
from ..cancellation import CancellationScope
from ..frecency import SourceFrecency, rank_categories
from ..models import (
    FeedItem, FeedSection, FeedSnapshot, FeedStatus, HistoryEntry, SectionKind, SectionState,
)
from ..search.deduplicator import dedupe_by_id, dedupe_by_title
from ..stores import HistoryStore, SettingsStore
from .orchestrator import RequestOrchestrator

logger = logging.getLogger(__name__)

ROW_CAP = 25
CONTINUE_READING_CAP = 12
RECOMMENDED_CAP = 20
POPULAR_CAP = 30
PROGRESS_PAGES = 20

POPULAR_SOURCE_LIMIT = 2
CATEGORY_SOURCE_LIMIT = 2

LOAD_SHAPE = "feed-load"
LIBRARY_RELOAD_SHAPE = "library-reload"
POPULAR_SHAPE = "popular"
CATEGORY_SHAPE = "category-rows"

NO_SOURCES_MESSAGE = "No sources installed. Add extensions first."
ERROR_MESSAGE = "Could not reach Suwayomi"
ERROR_HINT = "Make sure the server is running, then try again."
EMPTY_MESSAGE = "Nothing to explore yet"
EMPTY_HINT = "Add manga to your library or install sources to get started."


def reading_progress(page_number: int) -> float:
    """Fraction of a chapter read, assuming PROGRESS_PAGES pages."""
    if page_number <= 0:
        return 0.0
    return min(page_number / PROGRESS_PAGES, 1.0)


def continue_reading(history: List[HistoryEntry], records: List[MangaRecord]) -> List[FeedItem]:
    """Newest entry per manga, in history order, for manga we have a record of."""
    by_id = {r.id: r for r in records}
    seen: Set[int] = set()
    items: List[FeedItem] = []
    for entry in history:
        if entry.manga_id in seen:
            continue
        seen.add(entry.manga_id)
        record = by_id.get(entry.manga_id)
        if record is None:
            continue
        items.append(FeedItem(
            record=record,
            subtitle=entry.chapter_name,
            progress=reading_progress(entry.page_number),
        ))
        if len(items) >= CONTINUE_READING_CAP:
            break
    return items


def recommended(records: List[MangaRecord], categories: List[str], exclude: Set[int]) -> List[MangaRecord]:
    """Library records in a ranked category, minus what is already in progress."""
    if not records or not categories:
        return []
    wanted = set(categories)
    picks = [
        r for r in records
        if r.in_library and r.id not in exclude and wanted.intersection(r.genre)
    ]
    return picks[:RECOMMENDED_CAP]


def popular_title(sources: List[SourceDescriptor]) -> str:
    if len(sources) == 1:
        return f"Popular on {sources[0].display_name}"
    if len(sources) > 1:
        return f"Popular across {len(sources)} sources"
    return "Popular"


class FeedAssembler:
    """
    Owns the Explore feed state and republishes it on every change.

    Usage:
        feed = FeedAssembler(catalog, cache, orchestrator, history, settings)
        feed.subscribe(lambda snapshot: render(snapshot))
        await feed.load()
        ...
        await feed.retry()
    """

    def __init__(
        self,
        catalog: SourceCatalog,
        cache: CacheStore,
        orchestrator: RequestOrchestrator,
        history: HistoryStore,
        settings: SettingsStore,
        source_frecency: Optional[SourceFrecency] = None,
        popular_source_limit: int = POPULAR_SOURCE_LIMIT,
        category_source_limit: int = CATEGORY_SOURCE_LIMIT,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.catalog = catalog
        self.cache = cache
        self.orchestrator = orchestrator
        self.history = history
        self.settings = settings
        self.source_frecency = source_frecency or SourceFrecency()
        self.popular_source_limit = popular_source_limit
        self.category_source_limit = category_source_limit
        self.clock = clock or (lambda: datetime.now(timezone.utc))

        self.attempt = 0
        self._listeners: List[Callable[[FeedSnapshot], None]] = []

        # Foundational loads
        self._records: List[MangaRecord] = []
        self._library_loaded = False
        self._library_failed = False
        self._loading_library = True
        self._sources: List[SourceDescriptor] = []
        self._sources_loaded = False
        self._sources_failed = False

        # Popular
        self._popular: List[MangaRecord] = []
        self._loading_popular = True

        # Derived + category rows
        self._categories: List[str] = []
        self._continue: List[FeedItem] = []
        self._recommended: List[MangaRecord] = []
        self._category_rows: Dict[str, List[MangaRecord]] = {}
        self._category_states: Dict[str, SectionState] = {}

    # =========================================================================
    # PUBLICATION
    # =========================================================================

    def subscribe(self, callback: Callable[[FeedSnapshot], None]) -> Callable[[], None]:
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def _publish(self) -> None:
        snapshot = self.snapshot()
        for callback in list(self._listeners):
            callback(snapshot)

    @property
    def load_error(self) -> bool:
        return self._library_failed or self._sources_failed

    @property
    def records(self) -> List[MangaRecord]:
        return list(self._records)

    @property
    def categories(self) -> List[str]:
        return list(self._categories)

    # =========================================================================
    # PIPELINE
    # =========================================================================

    async def load(self) -> None:
        """Run the full pipeline for the current attempt."""
        scope = self.orchestrator.open_scope(LOAD_SHAPE)
        logger.info(f"Loading explore feed (attempt {self.attempt})")

        self._loading_library = True
        self._loading_popular = True
        self._library_failed = False
        self._sources_failed = False
        self._publish()

        await asyncio.gather(self._load_library(scope), self._load_sources(scope))
        if scope.cancelled:
            return

        await asyncio.gather(self._load_popular(scope), self.refresh_categories())

    async def retry(self) -> None:
        """Clear the foundations and every catalog-backed row, then rerun everything."""
        self.attempt += 1
        logger.info(f"Retrying explore feed (attempt {self.attempt})")
        self.cache.clear(CacheKeys.LIBRARY)
        self.cache.clear(CacheKeys.SOURCES)
        self.cache.clear(CacheKeys.POPULAR)
        # Rows were merged from whatever catalogs had resolved at the time
        self.cache.clear_prefix(CacheKeys.CATEGORY_PREFIX)
        self.orchestrator.forget(CATEGORY_SHAPE)
        await self.load()

    async def _load_library(self, scope: CancellationScope) -> None:
        try:
            records = await asyncio.shield(
                self.cache.get(CacheKeys.LIBRARY, self.catalog.fetch_library)
            )
        except Exception as e:
            if scope.alive:
                logger.error(f"Library load failed: {e}")
                self._library_failed = True
        else:
            if scope.alive:
                self._records = list(records)
                self._library_loaded = True
                self._library_failed = False
                self._derive()
        finally:
            if scope.alive:
                self._loading_library = False
                self._publish()

    async def _load_sources(self, scope: CancellationScope) -> None:
        preferred_lang = self.settings.preferred_lang or "en"
        try:
            sources = await asyncio.shield(
                self.cache.get(CacheKeys.SOURCES, lambda: self.catalog.resolved_sources(preferred_lang))
            )
        except Exception as e:
            if scope.alive:
                logger.error(f"Catalog list load failed: {e}")
                self._sources_failed = True
                self._loading_popular = False
                self._publish()
            return

        if scope.alive:
            self._sources = list(sources)
            self._sources_loaded = True
            if not self._sources:
                self._loading_popular = False
            self._publish()

    async def _load_popular(self, scope: CancellationScope) -> None:
        if not self._sources:
            return
        top = self.source_frecency.top_sources(self._sources)[: self.popular_source_limit]
        try:
            popular = await asyncio.shield(
                self.cache.get(CacheKeys.POPULAR, lambda: self._compute_popular(top))
            )
        except Exception as e:
            if scope.alive:
                logger.warning(f"Popular load failed: {e}")
        else:
            if scope.alive:
                self._popular = list(popular)
        finally:
            if scope.alive:
                self._loading_popular = False
                self._publish()

    async def _compute_popular(self, top: List[SourceDescriptor]) -> List[MangaRecord]:
        scope = self.orchestrator.open_scope(POPULAR_SHAPE)

        async def fetch(source: SourceDescriptor, token: CancellationScope):
            page = await self.catalog.browse(source.id, "POPULAR", 1, token=token)
            return page.mangas

        fulfilled = await self.orchestrator.gather_settled(top, fetch, scope, label="popular")
        merged = [record for _, mangas in fulfilled for record in mangas]
        return dedupe_by_title(merged)[:POPULAR_CAP]

    # =========================================================================
    # DERIVATION
    # =========================================================================

    def _derive(self) -> None:
        """Recompute everything that is a pure function of history + records."""
        history = self.history.entries()
        if self._library_loaded:
            self._categories = rank_categories(history, self._records, now=self.clock())
        else:
            self._categories = []
        self._continue = continue_reading(history, self._records)
        self._recommended = recommended(
            self._records, self._categories, {item.record.id for item in self._continue}
        )

    async def refresh_categories(self) -> None:
        """Fan out one fetch per ranked category unless the set is unchanged."""
        if not self._library_loaded:
            return
        categories = list(self._categories)
        signature = ",".join(categories)
        if self.orchestrator.signature(CATEGORY_SHAPE) == signature:
            return

        self._category_rows = {}
        self._category_states = {c: SectionState.LOADING for c in categories}
        self._publish()

        def on_result(category: str, records: List[MangaRecord], results: Dict[str, List[MangaRecord]]) -> None:
            self._category_rows = dict(results)
            self._category_states[category] = SectionState.READY if records else SectionState.EMPTY
            self._publish()

        def on_failure(category: str, error: BaseException) -> None:
            self._category_states[category] = SectionState.EMPTY
            self._publish()

        outcome = await self.orchestrator.stream(
            CATEGORY_SHAPE,
            categories,
            self._fetch_category,
            on_result=on_result,
            on_failure=on_failure,
            signature=signature,
        )
        if outcome.skipped or outcome.cancelled:
            return

        # Items cancelled by a superseded shared computation and never refetched
        settled = False
        for category, state in self._category_states.items():
            if state is SectionState.LOADING:
                self._category_states[category] = SectionState.EMPTY
                settled = True
        if settled:
            self._publish()

    async def _fetch_category(self, category: str, scope: CancellationScope) -> List[MangaRecord]:
        return await self.orchestrator.cached(
            CacheKeys.category(category),
            lambda token: self._compute_category(category, token),
            scope,
        )

    async def _compute_category(self, category: str, scope: CancellationScope) -> List[MangaRecord]:
        catalogs = self.source_frecency.top_sources(self._sources)[: self.category_source_limit]
        work = [None] + list(catalogs)

        async def fetch(source: Optional[SourceDescriptor], token: CancellationScope) -> List[MangaRecord]:
            if source is None:
                return await self.catalog.fetch_genre(category, ROW_CAP, token=token)
            page = await self.catalog.browse(source.id, "SEARCH", 1, query=category, token=token)
            return page.mangas

        fulfilled = await self.orchestrator.gather_settled(work, fetch, scope, label=f"category:{category}")
        merged = [record for _, mangas in fulfilled for record in mangas]
        return dedupe_by_title(dedupe_by_id(merged))

    # =========================================================================
    # CHANGE NOTIFICATIONS
    # =========================================================================

    async def on_history_changed(self) -> None:
        """History owner signalled a change: re-derive, refetch rows if needed."""
        self._derive()
        self._publish()
        await self.refresh_categories()

    async def on_library_changed(self) -> bool:
        """
        A record's library flag changed server-side: reload the record set.

        Returns True if the reload landed, so `records` is the server's view.
        """
        self.cache.clear(CacheKeys.LIBRARY)
        scope = self.orchestrator.open_scope(LIBRARY_RELOAD_SHAPE)
        self._loading_library = True
        self._publish()
        await self._load_library(scope)
        if not scope.alive:
            return False
        reloaded = not self._library_failed
        await self.refresh_categories()
        return reloaded

    def apply_local_update(self, record_id: int, in_library: bool) -> bool:
        """Speculatively flip a record's library flag. Returns False if unknown."""
        changed = False
        for i, record in enumerate(self._records):
            if record.id == record_id:
                self._records[i] = record.with_library_flag(in_library)
                changed = True
        self._popular = [
            r.with_library_flag(in_library) if r.id == record_id else r for r in self._popular
        ]
        self._category_rows = {
            c: [r.with_library_flag(in_library) if r.id == record_id else r for r in rows]
            for c, rows in self._category_rows.items()
        }
        if changed:
            self._derive()
        self._publish()
        return changed

    # =========================================================================
    # SNAPSHOT
    # =========================================================================

    def _library_section(self, kind: SectionKind, title: str, items: List[FeedItem]) -> FeedSection:
        section = FeedSection(kind=kind, title=title, items=items)
        if self._loading_library:
            section.state = SectionState.LOADING
        elif self._library_failed and not self._library_loaded:
            section.state = SectionState.ERROR
            section.message = ERROR_MESSAGE
        else:
            section.state = SectionState.READY if items else SectionState.EMPTY
        return section

    def _popular_section(self) -> FeedSection:
        section = FeedSection(
            kind=SectionKind.POPULAR,
            title=popular_title(self._sources),
            items=[FeedItem(record=r) for r in self._popular],
        )
        if self._loading_popular:
            section.state = SectionState.LOADING
        elif self._sources_failed and not self._sources_loaded:
            section.state = SectionState.ERROR
            section.message = ERROR_MESSAGE
        elif not self._sources:
            section.state = SectionState.EMPTY
            section.message = NO_SOURCES_MESSAGE
        else:
            section.state = SectionState.READY if self._popular else SectionState.EMPTY
        section.has_more = len(self._popular) > ROW_CAP
        return section

    def _category_sections(self) -> List[FeedSection]:
        sections = []
        for category in self._categories:
            rows = self._category_rows.get(category, [])
            state = self._category_states.get(category, SectionState.LOADING)
            if state is SectionState.READY and not rows:
                state = SectionState.EMPTY
            sections.append(FeedSection(
                kind=SectionKind.CATEGORY,
                title=category,
                category=category,
                state=state,
                items=[FeedItem(record=r) for r in rows],
                has_more=len(rows) >= ROW_CAP,
            ))
        return sections

    def snapshot(self) -> FeedSnapshot:
        """Current feed, with global status derived from the sections."""
        sections = [
            self._library_section(SectionKind.CONTINUE_READING, "Continue Reading", list(self._continue)),
            self._library_section(
                SectionKind.RECOMMENDED, "Recommended for You",
                [FeedItem(record=r) for r in self._recommended],
            ),
            self._popular_section(),
        ] + self._category_sections()

        snapshot = FeedSnapshot(
            status=FeedStatus.READY,
            sections=sections,
            categories=list(self._categories),
            attempt=self.attempt,
        )
        if any(s.state is SectionState.READY for s in sections):
            return snapshot
        if any(s.state is SectionState.LOADING for s in sections):
            snapshot.status = FeedStatus.LOADING
            return snapshot

        if self.load_error:
            snapshot.status = FeedStatus.ERROR
            snapshot.message = ERROR_MESSAGE
            snapshot.hint = ERROR_HINT
            snapshot.retryable = True
        else:
            snapshot.status = FeedStatus.EMPTY
            snapshot.message = EMPTY_MESSAGE
            snapshot.hint = EMPTY_HINT
        return snapshot
