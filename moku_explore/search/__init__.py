"""
================================================================================
Moku Explore - Search Package
================================================================================
Record deduplication and genre drill-down search.

Components:
  - deduplicator.py - id / title / fuzzy-title dedup of merged record lists
  - genre_search.py - "see all" page for one genre across library + catalogs
================================================================================
"""

from .deduplicator import TitleDeduplicator, dedupe_by_id, dedupe_by_title, normalize_title
from .genre_search import GenreSearch

__all__ = ['TitleDeduplicator', 'dedupe_by_id', 'dedupe_by_title', 'normalize_title', 'GenreSearch']
