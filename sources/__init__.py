"""
================================================================================
Moku Explore - Source Catalog
================================================================================
Access to the Suwayomi server's library and installed catalogs.

THIS IS THE CATALOG SIDE OF THE FEED:
  - Loads the local record set (library flag included)
  - Lists installed catalogs and resolves one variant per catalog family
  - Browses a catalog (POPULAR / LATEST / SEARCH pages)
  - Toggles the library flag on a record

HOW RESOLUTION WORKS:
  MangaDex EN, MangaDex ES and MangaDex FR are one family ("MangaDex").
  For each family, in order of first appearance, pick:
    1. the variant in the preferred language
    2. else the variant in the fallback language
    3. else the variant with the lexicographically-first language code
  The built-in local source (id "0") is never a catalog.
================================================================================
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Iterable

from .base import (
    MangaRecord, SourceDescriptor, SourceRef, LOCAL_SOURCE_ID,
    records_from_nodes, set_log_callback, source_log,
)
from .client import (
    SuwayomiClient, QueryError, QueryCancelled, QueryTransportError, QueryResponseError,
)
from . import queries

__all__ = [
    "MangaRecord", "SourceDescriptor", "SourceRef", "LOCAL_SOURCE_ID",
    "SuwayomiClient", "QueryError", "QueryCancelled", "QueryTransportError",
    "QueryResponseError", "SourceCatalog", "BrowsePage", "resolve_sources",
    "set_log_callback", "source_log",
]

BROWSE_TYPES = ("POPULAR", "LATEST", "SEARCH")


def resolve_sources(
    sources: Iterable[SourceDescriptor],
    preferred_lang: str,
    fallback_lang: str = "en",
) -> List[SourceDescriptor]:
    """
    Pick one descriptor per catalog family.

    Args:
        sources: Installed catalog variants, in server order
        preferred_lang: User's preferred language code
        fallback_lang: Used when a family has no preferred variant

    Returns:
        One descriptor per family, ordered by the family's first appearance
    """
    families: Dict[str, List[SourceDescriptor]] = {}
    for source in sources:
        if source.is_local:
            continue
        families.setdefault(source.name, []).append(source)

    picked = []
    for group in families.values():
        choice = next((s for s in group if s.lang == preferred_lang), None)
        if choice is None:
            choice = next((s for s in group if s.lang == fallback_lang), None)
        if choice is None:
            choice = min(group, key=lambda s: s.lang)
        picked.append(choice)
    return picked


@dataclass
class BrowsePage:
    """One page of catalog browse results."""
    source_id: str
    mangas: List[MangaRecord] = field(default_factory=list)
    has_next_page: bool = False


class SourceCatalog:
    """
    Typed access to the server's library and catalogs.

    Usage:
        catalog = SourceCatalog(SuwayomiClient())
        records = await catalog.fetch_library()
        sources = await catalog.resolved_sources("en")
        page = await catalog.browse(sources[0].id, "POPULAR", token=scope)
    """

    def __init__(self, client: SuwayomiClient, fallback_lang: str = "en"):
        self.client = client
        self.fallback_lang = fallback_lang

    # =========================================================================
    # LIBRARY
    # =========================================================================

    async def fetch_library(self, token: Any = None) -> List[MangaRecord]:
        """All known records, library entries first."""
        data = await self.client.execute(
            queries.EXPLORE_ALL_MANGA, token=token, operation="ExploreAllManga"
        )
        return records_from_nodes(_nodes(data, "mangas"))

    async def fetch_genre(self, genre: str, first: int = 25, token: Any = None) -> List[MangaRecord]:
        """Local records whose genre list contains `genre` (case-insensitive)."""
        data = await self.client.execute(
            queries.MANGAS_BY_GENRE_EXPLORE,
            {"genre": genre, "first": first},
            token=token,
            operation="MangasByGenreExplore",
        )
        return records_from_nodes(_nodes(data, "mangas"))

    async def set_in_library(self, manga_id: int, in_library: bool = True) -> bool:
        """Update the library flag; returns the server's value."""
        data = await self.client.execute(
            queries.UPDATE_MANGA,
            {"id": manga_id, "inLibrary": in_library},
            operation="UpdateManga",
        )
        manga = ((data.get("updateManga") or {}).get("manga") or {})
        if "inLibrary" not in manga:
            raise QueryResponseError("updateManga returned no manga", "UpdateManga")
        return bool(manga["inLibrary"])

    # =========================================================================
    # CATALOGS
    # =========================================================================

    async def fetch_sources(self, token: Any = None) -> List[SourceDescriptor]:
        """Every installed catalog variant, unresolved."""
        data = await self.client.execute(queries.GET_SOURCES, token=token, operation="GetSources")
        return [SourceDescriptor.from_node(n) for n in _nodes(data, "sources") if n.get("id") is not None]

    async def resolved_sources(self, preferred_lang: str, token: Any = None) -> List[SourceDescriptor]:
        """Installed catalogs, one variant per family."""
        sources = await self.fetch_sources(token=token)
        resolved = resolve_sources(sources, preferred_lang, self.fallback_lang)
        source_log(f"[Catalog] {len(sources)} variants -> {len(resolved)} catalogs ({preferred_lang})")
        return resolved

    async def browse(
        self,
        source_id: str,
        browse_type: str = "POPULAR",
        page: int = 1,
        query: Optional[str] = None,
        token: Any = None,
    ) -> BrowsePage:
        """
        Fetch one page from a catalog.

        Args:
            source_id: Catalog id
            browse_type: POPULAR, LATEST or SEARCH
            page: 1-based page number
            query: Search text (SEARCH only)
            token: Optional cancellation token
        """
        if browse_type not in BROWSE_TYPES:
            raise ValueError(f"Unknown browse type: {browse_type}")

        data = await self.client.execute(
            queries.FETCH_SOURCE_MANGA,
            {"source": source_id, "type": browse_type, "page": page, "query": query},
            token=token,
            operation=f"FetchSourceManga:{browse_type}",
        )
        payload = data.get("fetchSourceManga") or {}
        return BrowsePage(
            source_id=source_id,
            mangas=records_from_nodes(payload.get("mangas") or []),
            has_next_page=bool(payload.get("hasNextPage", False)),
        )


def _nodes(data: Dict[str, Any], root: str) -> List[Dict[str, Any]]:
    """Extract `root.nodes` from a connection payload."""
    connection = data.get(root)
    if not isinstance(connection, dict):
        raise QueryResponseError(f"Missing '{root}' connection")
    return connection.get("nodes") or []
