"""
================================================================================
Moku Explore - Genre Drill-Down
================================================================================
"See all" page for one genre.

Sources of results:
  1. Library records tagged with the genre (full metadata, listed first)
  2. SEARCH for the genre across up to 8 resolved catalogs, pages 1..2,
     every request settled independently

Catalog results usually come back without genre tags, so they are taken
as-is and only deduplicated (fuzzy title, then against library ids).

open() replaces the current genre; anything still in flight for the old
genre is cancelled and its late results dropped. load_more() asks every
catalog that still reports a next page for its following page.
================================================================================
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from sources import SourceCatalog
from sources.base import MangaRecord, SourceDescriptor

from ..cache import CacheKeys, CacheStore, PageSetRegistry
from ..cancellation import CancellationScope
from ..services.orchestrator import RequestOrchestrator
from ..stores import SettingsStore
from .deduplicator import TitleDeduplicator, dedupe_by_id

logger = logging.getLogger(__name__)

DRILL_SOURCE_LIMIT = 8
DRILL_PAGES = 2

OPEN_SHAPE = "genre-drill"
MORE_SHAPE = "genre-drill-more"


@dataclass
class CatalogSweep:
    """Merged catalog results for one genre, plus which catalogs have more."""
    records: List[MangaRecord] = field(default_factory=list)
    has_next_page: Dict[str, bool] = field(default_factory=dict)


class GenreSearch:
    """
    Drill-down state for a single genre at a time.

    Usage:
        drill = GenreSearch(catalog, cache, orchestrator, settings)
        await drill.open("Action")
        drill.results        # library matches first, then catalogs
        await drill.load_more()
    """

    def __init__(
        self,
        catalog: SourceCatalog,
        cache: CacheStore,
        orchestrator: RequestOrchestrator,
        settings: SettingsStore,
        page_sets: Optional[PageSetRegistry] = None,
        source_limit: int = DRILL_SOURCE_LIMIT,
        pages: int = DRILL_PAGES,
        deduplicator: Optional[TitleDeduplicator] = None,
    ):
        self.catalog = catalog
        self.cache = cache
        self.orchestrator = orchestrator
        self.settings = settings
        self.page_sets = page_sets or PageSetRegistry()
        self.source_limit = source_limit
        self.pages = pages
        self.deduplicator = deduplicator or TitleDeduplicator()

        self.genre: Optional[str] = None
        self.loading_library = False
        self.loading_sources = False
        self._scope: Optional[CancellationScope] = None
        self._library: List[MangaRecord] = []
        self._catalog_records: List[MangaRecord] = []
        self._catalogs: List[SourceDescriptor] = []
        self._has_next: Dict[str, bool] = {}

    @property
    def results(self) -> List[MangaRecord]:
        if not self.genre:
            return []
        wanted = self.genre.casefold()
        matches = [r for r in self._library if any(g.casefold() == wanted for g in r.genre)]
        library_ids = {r.id for r in matches}
        rest = [r for r in self._catalog_records if r.id not in library_ids]
        return dedupe_by_id(matches + rest)

    @property
    def has_more(self) -> bool:
        return any(self._has_next.get(s.id) for s in self._catalogs)

    def to_dict(self) -> Dict:
        return {
            "genre": self.genre,
            "loadingLibrary": self.loading_library,
            "loadingSources": self.loading_sources,
            "hasMore": self.has_more,
            "results": [r.to_dict() for r in self.results],
        }

    # =========================================================================
    # OPEN
    # =========================================================================

    async def open(self, genre: str) -> List[MangaRecord]:
        """Switch to `genre` and load library matches + catalog results."""
        scope = self.orchestrator.open_scope(OPEN_SHAPE)
        self.orchestrator.cancel(MORE_SHAPE)
        self._scope = scope

        self.genre = genre
        self.loading_library = True
        self.loading_sources = True
        self._catalog_records = []
        self._catalogs = []
        self._has_next = {}

        await asyncio.gather(self._load_library(scope), self._load_catalogs(scope, genre))
        return self.results

    async def _load_library(self, scope: CancellationScope) -> None:
        try:
            records = await asyncio.shield(
                self.cache.get(CacheKeys.LIBRARY, self.catalog.fetch_library)
            )
        except Exception as e:
            if scope.alive:
                logger.error(f"Genre drill library load failed: {e}")
        else:
            if scope.alive:
                self._library = list(records)
        finally:
            if scope.alive:
                self.loading_library = False

    async def _load_catalogs(self, scope: CancellationScope, genre: str) -> None:
        preferred_lang = self.settings.preferred_lang or "en"
        try:
            sources = await asyncio.shield(
                self.cache.get(CacheKeys.SOURCES, lambda: self.catalog.resolved_sources(preferred_lang))
            )
            catalogs = list(sources)[: self.source_limit]
            sweep = await self.orchestrator.cached(
                CacheKeys.genre_drill(genre),
                lambda token: self._sweep(genre, catalogs, token),
                scope,
            )
        except Exception as e:
            if scope.alive:
                logger.warning(f"Genre drill '{genre}' catalog search failed: {e}")
        else:
            if scope.alive:
                self._catalogs = catalogs
                self._catalog_records = list(sweep.records)
                self._has_next = dict(sweep.has_next_page)
                for source in catalogs:
                    page_set = self.page_sets.page_set(source.id, "SEARCH", genre)
                    page_set.clear()
                    for page in range(1, self.pages + 1):
                        page_set.add(page)
        finally:
            if scope.alive:
                self.loading_sources = False

    async def _sweep(
        self, genre: str, catalogs: List[SourceDescriptor], scope: CancellationScope
    ) -> CatalogSweep:
        work: List[Tuple[SourceDescriptor, int]] = [
            (source, page) for source in catalogs for page in range(1, self.pages + 1)
        ]

        async def fetch(item: Tuple[SourceDescriptor, int], token: CancellationScope):
            source, page = item
            return await self.catalog.browse(source.id, "SEARCH", page, query=genre, token=token)

        fulfilled = await self.orchestrator.gather_settled(work, fetch, scope, label=f"drill:{genre}")

        sweep = CatalogSweep()
        merged: List[MangaRecord] = []
        for (source, page), result in fulfilled:
            merged.extend(result.mangas)
            if page == self.pages:
                sweep.has_next_page[source.id] = result.has_next_page
        sweep.records = self.deduplicator.deduplicate(merged)
        logger.info(f"Genre drill '{genre}': {len(sweep.records)} records from {len(catalogs)} catalogs")
        return sweep

    # =========================================================================
    # PAGINATION
    # =========================================================================

    async def load_more(self) -> List[MangaRecord]:
        """Fetch the next page from every catalog that has one; returns new records."""
        genre = self.genre
        open_scope = self._scope
        if not genre or open_scope is None or open_scope.cancelled:
            return []

        pending = [s for s in self._catalogs if self._has_next.get(s.id)]
        if not pending:
            return []

        scope = self.orchestrator.open_scope(MORE_SHAPE)
        work = [(s, self.page_sets.page_set(s.id, "SEARCH", genre).next()) for s in pending]

        async def fetch(item: Tuple[SourceDescriptor, int], token: CancellationScope):
            source, page = item
            return await self.orchestrator.cached(
                CacheKeys.source_manga_page(source.id, "SEARCH", page, genre),
                lambda t: self.catalog.browse(source.id, "SEARCH", page, query=genre, token=t),
                token,
            )

        try:
            fulfilled = await self.orchestrator.gather_settled(work, fetch, scope, label=f"drill-more:{genre}")
        except Exception as e:
            if scope.alive and open_scope.alive:
                logger.warning(f"Genre drill '{genre}' load more failed: {e}")
            return []

        if scope.cancelled or open_scope.cancelled:
            return []

        merged: List[MangaRecord] = []
        for (source, page), result in fulfilled:
            self.page_sets.page_set(source.id, "SEARCH", genre).add(page)
            self._has_next[source.id] = result.has_next_page
            merged.extend(result.mangas)

        before = {r.id for r in self._catalog_records}
        self._catalog_records = self.deduplicator.deduplicate(self._catalog_records + merged)
        added = [r for r in self._catalog_records if r.id not in before]
        logger.debug(f"Genre drill '{genre}': load more added {len(added)} records")
        return added

    def apply_local_update(self, record_id: int, in_library: bool) -> None:
        """Mirror a library flag change into the drill results."""
        def update(records: List[MangaRecord]) -> List[MangaRecord]:
            return [r.with_library_flag(in_library) if r.id == record_id else r for r in records]

        self._library = update(self._library)
        self._catalog_records = update(self._catalog_records)
