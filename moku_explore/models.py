"""
Feed models: history input and the sections published to the display layer.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from sources.base import MangaRecord


@dataclass(frozen=True)
class HistoryEntry:
    """One reading session. Owned by the surrounding application."""
    manga_id: int
    read_at: datetime
    chapter_name: str = ""
    page_number: int = 0
    chapter_id: Optional[int] = None
    manga_title: str = ""
    thumbnail_url: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mangaId": self.manga_id,
            "readAt": self.read_at.isoformat(),
            "chapterName": self.chapter_name,
            "pageNumber": self.page_number,
            "chapterId": self.chapter_id,
            "mangaTitle": self.manga_title,
            "thumbnailUrl": self.thumbnail_url,
        }


class SectionState(Enum):
    """Lifecycle of one feed section: LOADING -> READY | EMPTY | ERROR."""
    LOADING = "loading"
    READY = "ready"
    EMPTY = "empty"
    ERROR = "error"


class SectionKind(Enum):
    CONTINUE_READING = "continue_reading"
    RECOMMENDED = "recommended"
    POPULAR = "popular"
    CATEGORY = "category"


class FeedStatus(Enum):
    """Global feed state; EMPTY and ERROR only when no section has content."""
    LOADING = "loading"
    READY = "ready"
    EMPTY = "empty"
    ERROR = "error"


@dataclass(frozen=True)
class FeedItem:
    """A record as shown in a row, with optional reading context."""
    record: MangaRecord
    subtitle: Optional[str] = None
    progress: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        data = self.record.to_dict()
        data["subtitle"] = self.subtitle
        data["progress"] = self.progress
        return data


@dataclass
class FeedSection:
    kind: SectionKind
    title: str
    state: SectionState = SectionState.LOADING
    items: List[FeedItem] = field(default_factory=list)
    has_more: bool = False
    message: Optional[str] = None
    category: Optional[str] = None

    @property
    def key(self) -> str:
        if self.kind is SectionKind.CATEGORY:
            return f"category:{self.category}"
        return self.kind.value

    def to_dict(self, row_cap: Optional[int] = None) -> Dict[str, Any]:
        items = self.items if row_cap is None else self.items[:row_cap]
        return {
            "key": self.key,
            "kind": self.kind.value,
            "title": self.title,
            "state": self.state.value,
            "items": [item.to_dict() for item in items],
            "hasMore": self.has_more,
            "message": self.message,
            "category": self.category,
        }


@dataclass
class FeedSnapshot:
    """Immutable-by-convention view of the whole feed at one instant."""
    status: FeedStatus
    sections: List[FeedSection]
    categories: List[str]
    attempt: int = 0
    message: Optional[str] = None
    hint: Optional[str] = None
    retryable: bool = False

    def section(self, key: str) -> Optional[FeedSection]:
        return next((s for s in self.sections if s.key == key), None)

    def to_dict(self, row_cap: Optional[int] = None) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "message": self.message,
            "hint": self.hint,
            "retryable": self.retryable,
            "attempt": self.attempt,
            "categories": list(self.categories),
            "sections": [s.to_dict(row_cap) for s in self.sections],
        }
