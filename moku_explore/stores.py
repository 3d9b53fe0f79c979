"""
Read contracts for state owned by the surrounding application.

The feed never persists history or settings; it reads them here and
re-derives its output when the owner signals a change.
"""

from typing import Callable, List, Optional, Set

from .models import HistoryEntry

HISTORY_LIMIT = 300


class HistoryStore:
    """Ordered reading history, newest first."""

    def entries(self) -> List[HistoryEntry]:
        raise NotImplementedError

    def subscribe(self, callback: Callable[[], None]) -> Callable[[], None]:
        raise NotImplementedError


class SettingsStore:
    """Read-only user settings the feed depends on."""

    @property
    def preferred_lang(self) -> str:
        raise NotImplementedError


class MemoryHistoryStore(HistoryStore):
    """In-process history with the reader's add semantics."""

    def __init__(self, entries: Optional[List[HistoryEntry]] = None, limit: int = HISTORY_LIMIT):
        self._entries: List[HistoryEntry] = list(entries or [])
        self._limit = limit
        self._subscribers: Set[Callable[[], None]] = set()

    def entries(self) -> List[HistoryEntry]:
        return list(self._entries)

    def add(self, entry: HistoryEntry) -> None:
        """
        Record a reading session.

        Re-reading the newest chapter updates its page and time in place;
        any other chapter moves to the front. Entries without a chapter id
        are always prepended.
        """
        if entry.chapter_id is not None:
            if self._entries and self._entries[0].chapter_id == entry.chapter_id:
                head = self._entries[0]
                self._entries[0] = HistoryEntry(
                    manga_id=head.manga_id,
                    read_at=entry.read_at,
                    chapter_name=head.chapter_name,
                    page_number=entry.page_number,
                    chapter_id=head.chapter_id,
                    manga_title=head.manga_title,
                    thumbnail_url=head.thumbnail_url,
                )
                self._notify()
                return
            self._entries = [e for e in self._entries if e.chapter_id != entry.chapter_id]

        self._entries = [entry] + self._entries[: self._limit - 1]
        self._notify()

    def clear(self) -> None:
        self._entries = []
        self._notify()

    def subscribe(self, callback: Callable[[], None]) -> Callable[[], None]:
        self._subscribers.add(callback)
        return lambda: self._subscribers.discard(callback)

    def _notify(self) -> None:
        for callback in list(self._subscribers):
            callback()


class MemorySettingsStore(SettingsStore):
    def __init__(self, preferred_lang: str = "en"):
        self._preferred_lang = preferred_lang

    @property
    def preferred_lang(self) -> str:
        return self._preferred_lang or "en"
