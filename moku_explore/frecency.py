"""
Frecency Ranking

Turns reading history into a small ordered set of interest categories
(genres), and keeps per-catalog access counts for picking which catalogs to
query first. No remote calls; everything here is a pure function of its
inputs plus an injected clock.

Score per manga:
    score = count / ln(hours_since_last_read + 2)

The +2 keeps the denominator >= ln(2) so same-hour reads stay finite.
"""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Dict, Iterable, List, MutableMapping, Optional, Sequence, TypeVar

from sources.base import LOCAL_SOURCE_ID, MangaRecord, SourceDescriptor

from .models import HistoryEntry

FOUNDATIONAL_GENRES = ["Action", "Romance", "Fantasy", "Adventure", "Comedy", "Drama"]
CATEGORY_LIMIT = 3
MAX_FRECENCY_SOURCES = 4


def _utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def frecency_score(read_at: datetime, count: int, now: Optional[datetime] = None) -> float:
    """Blend how often and how recently a manga was read."""
    now = _utc(now or datetime.now(timezone.utc))
    hours_since = (now - _utc(read_at)).total_seconds() / 3600
    # Clock skew can put read_at in the future; treat it as "just now"
    hours_since = max(hours_since, 0.0)
    return count / math.log(hours_since + 2)


def category_weights(
    history: Iterable[HistoryEntry],
    records: Sequence[MangaRecord],
    now: Optional[datetime] = None,
) -> Dict[str, float]:
    """
    Weight every category by the frecency of the manga that carry it.

    Falls back to counting genres across library records (weight 1 each)
    when history yields nothing. Dict order is first-seen order.
    """
    counts: Dict[int, int] = {}
    last_read: Dict[int, datetime] = {}
    for entry in history:
        counts[entry.manga_id] = counts.get(entry.manga_id, 0) + 1
        read_at = _utc(entry.read_at)
        if entry.manga_id not in last_read or read_at > last_read[entry.manga_id]:
            last_read[entry.manga_id] = read_at

    by_id = {r.id: r for r in records}
    weights: Dict[str, float] = {}
    for manga_id, count in counts.items():
        record = by_id.get(manga_id)
        if record is None:
            continue
        score = frecency_score(last_read[manga_id], count, now)
        for genre in record.genre:
            weights[genre] = weights.get(genre, 0.0) + score

    if not weights:
        for record in records:
            if not record.in_library:
                continue
            for genre in record.genre:
                weights[genre] = weights.get(genre, 0.0) + 1

    return weights


def rank_categories(
    history: Iterable[HistoryEntry],
    records: Sequence[MangaRecord],
    now: Optional[datetime] = None,
    limit: int = CATEGORY_LIMIT,
) -> List[str]:
    """
    Top categories by descending weight; ties keep first-seen order.

    Empty history and no library genres yields the first `limit`
    foundational genres.
    """
    weights = category_weights(history, records, now)
    if not weights:
        return FOUNDATIONAL_GENRES[:limit]
    # sorted() is stable, so equal weights keep dict (first-seen) order
    ranked = sorted(weights.items(), key=lambda item: item[1], reverse=True)
    return [genre for genre, _ in ranked[:limit]]


# =============================================================================
# SOURCE FRECENCY
# =============================================================================

S = TypeVar("S", bound=SourceDescriptor)


class SourceFrecency:
    """
    Per-catalog access counts.

    The counts mapping is owned (and persisted, if at all) by the caller;
    pass a dict loaded from wherever the application keeps it.
    """

    def __init__(self, counts: Optional[MutableMapping[str, int]] = None):
        self._counts: MutableMapping[str, int] = counts if counts is not None else {}

    def record_access(self, source_id: str) -> None:
        if not source_id or source_id == LOCAL_SOURCE_ID:
            return
        self._counts[source_id] = self._counts.get(source_id, 0) + 1

    def count(self, source_id: str) -> int:
        return self._counts.get(source_id, 0)

    def top_sources(self, sources: Sequence[S], limit: int = MAX_FRECENCY_SOURCES) -> List[S]:
        """Most-used catalogs first; server order when nothing was used yet."""
        scored = [(source, self._counts.get(source.id, 0)) for source in sources]
        if any(score > 0 for _, score in scored):
            scored.sort(key=lambda item: item[1], reverse=True)
            return [source for source, _ in scored[:limit]]
        return list(sources[:limit])
