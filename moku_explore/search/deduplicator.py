"""
================================================================================
Moku Explore - Record Deduplicator
================================================================================
Merges record lists that may reference the same manga.

Problem:
  The library, the genre query and two or three catalogs all answer for
  "Action" -> the same series shows up several times in one row.

Policies:
  1. By id     - same Suwayomi id means same manga. Lossless.
  2. By title  - ids from different catalogs are not comparable, so fall
                 back to the case-folded, trimmed title.
  3. Fuzzy     - TitleDeduplicator groups near-identical spellings
                 ("Solo Leveling" / "Solo Leveling.") with rapidfuzz.

All three keep the FIRST occurrence, preserve input order and are
idempotent: deduplicating a deduplicated list returns it unchanged.
================================================================================
"""

import logging
import re
from typing import Iterable, List, Set, TypeVar

from rapidfuzz import fuzz

from sources.base import MangaRecord

logger = logging.getLogger(__name__)

R = TypeVar("R", bound=MangaRecord)


def normalize_title(title: str) -> str:
    """Case-fold and trim; the exact-title dedup key."""
    return (title or "").casefold().strip()


def dedupe_by_id(records: Iterable[R]) -> List[R]:
    """Keep the first record per id, in merge order."""
    seen: Set[int] = set()
    out: List[R] = []
    for record in records:
        if record.id in seen:
            continue
        seen.add(record.id)
        out.append(record)
    return out


def dedupe_by_title(records: Iterable[R]) -> List[R]:
    """Keep the first record per normalized title, in merge order."""
    seen: Set[str] = set()
    out: List[R] = []
    for record in records:
        key = normalize_title(record.title)
        if key in seen:
            continue
        seen.add(key)
        out.append(record)
    return out


class TitleDeduplicator:
    """
    Fuzzy title grouping for catalog search results.

    Algorithm:
      1. Normalize all titles (lowercase, drop articles and punctuation)
      2. Walk the list; each record not yet grouped seeds a new group
      3. Later records at or above the similarity threshold join that group
      4. Return the seed of every group, in original order

    Seeds are pairwise below the threshold, so a second pass keeps them all.
    """

    def __init__(self, similarity_threshold: float = 90.0):
        """
        Args:
            similarity_threshold: Minimum similarity for grouping (0-100)
        """
        self.similarity_threshold = similarity_threshold

    def fuzzy_key(self, title: str) -> str:
        title = (title or "").lower()
        title = re.sub(r'\b(the|a|an)\b', '', title)
        title = re.sub(r'[^\w\s]', '', title)
        title = re.sub(r'\s+', ' ', title)
        return title.strip()

    def calculate_similarity(self, title1: str, title2: str) -> float:
        """
        Highest of ratio / token-sort / token-set over normalized titles.

        Returns:
            Similarity score (0-100)
        """
        norm1 = self.fuzzy_key(title1)
        norm2 = self.fuzzy_key(title2)
        if not norm1 or not norm2:
            return 100.0 if norm1 == norm2 else 0.0

        basic = fuzz.ratio(norm1, norm2)
        token_sort = fuzz.token_sort_ratio(norm1, norm2)
        token_set = fuzz.token_set_ratio(norm1, norm2)
        return max(basic, token_sort, token_set)

    def deduplicate(self, records: Iterable[R]) -> List[R]:
        items = dedupe_by_title(records)
        grouped: Set[int] = set()
        seeds: List[R] = []

        for i, record in enumerate(items):
            if i in grouped:
                continue
            grouped.add(i)
            seeds.append(record)

            for j in range(i + 1, len(items)):
                if j in grouped:
                    continue
                similarity = self.calculate_similarity(record.title, items[j].title)
                if similarity >= self.similarity_threshold:
                    grouped.add(j)
                    logger.debug(
                        f"Grouped '{items[j].title}' with '{record.title}' "
                        f"(similarity: {similarity:.1f}%)"
                    )

        if len(seeds) != len(items):
            logger.info(f"Deduplicated {len(items)} records into {len(seeds)} unique manga")
        return seeds
