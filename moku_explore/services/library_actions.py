"""
Library actions from the Explore surface.

Adding a record flips its flag locally first so every row shows it as
saved right away. The server's answer then wins: on success the record is
reconciled with the returned flag, on failure the library is refetched and
the record falls back to its pre-action flag if that refetch fails as well.
"""

import logging
from typing import List, Optional

from sources import SourceCatalog
from sources.client import QueryError

from ..cache import CacheKeys, CacheStore
from .feed_service import FeedAssembler

logger = logging.getLogger(__name__)


class LibraryActions:
    def __init__(
        self,
        catalog: SourceCatalog,
        cache: CacheStore,
        feed: FeedAssembler,
        drills: Optional[List] = None,
    ):
        self.catalog = catalog
        self.cache = cache
        self.feed = feed
        self.drills = list(drills or [])

    def _apply(self, record_id: int, in_library: bool) -> None:
        self.feed.apply_local_update(record_id, in_library)
        for drill in self.drills:
            drill.apply_local_update(record_id, in_library)

    async def add_to_library(self, record_id: int) -> bool:
        """
        Add a record to the library.

        Returns:
            The server's resulting in-library flag

        Raises:
            QueryError: If the update failed (the library is resynced first)
        """
        previous = next((r.in_library for r in self.feed.records if r.id == record_id), False)
        self._apply(record_id, True)
        try:
            in_library = await self.catalog.set_in_library(record_id, True)
        except QueryError as e:
            logger.error(f"Add to library failed for {record_id}: {e}")
            restored = previous
            if await self.feed.on_library_changed():
                restored = next(
                    (r.in_library for r in self.feed.records if r.id == record_id), previous
                )
            # Never leave the speculative flag behind, even if the resync failed too
            self._apply(record_id, restored)
            raise

        self._apply(record_id, in_library)
        self.cache.clear(CacheKeys.LIBRARY)
        logger.info(f"Record {record_id} in library: {in_library}")
        return in_library
