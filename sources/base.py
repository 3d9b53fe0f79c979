"""
================================================================================
Moku Explore - Catalog Records
================================================================================
Standard record types shared by every catalog and by the local library.

Suwayomi answers GraphQL queries with camelCase nodes; everything past the
transport works with the dataclasses below:
  1. MangaRecord      -> one manga, local or from a catalog
  2. SourceDescriptor -> one installed catalog (one language variant)
  3. SourceRef        -> the brief source block attached to a manga node

IDENTITY:
  Two records with the same numeric id are the same manga, whichever query
  produced them. Titles only make them dedup candidates.
================================================================================
"""

from dataclasses import dataclass, field, replace
from typing import List, Optional, Dict, Any, Callable, Iterable


# =============================================================================
# LOGGING CALLBACK (avoids circular imports)
# =============================================================================

# Global logger callback - set by the app factory on startup
_log_callback: Optional[Callable[[str], None]] = None


def set_log_callback(callback: Optional[Callable[[str], None]]) -> None:
    """Set the logging callback function. Called by create_app() on startup."""
    global _log_callback
    _log_callback = callback


def source_log(msg: str) -> None:
    """Log a message using the registered callback or fallback to print."""
    if _log_callback:
        _log_callback(msg)
    else:
        print(msg)


# Suwayomi's built-in "Local source" - never a real catalog
LOCAL_SOURCE_ID = "0"


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass(frozen=True)
class SourceRef:
    """Source block embedded in a manga node."""
    id: str
    display_name: str = ""
    name: str = ""

    @classmethod
    def from_node(cls, node: Optional[Dict[str, Any]]) -> Optional["SourceRef"]:
        if not node:
            return None
        return cls(
            id=str(node.get("id", "")),
            display_name=node.get("displayName") or "",
            name=node.get("name") or "",
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "displayName": self.display_name, "name": self.name}


@dataclass
class MangaRecord:
    """
    Standardized manga record that works across the library and ALL catalogs.

    Catalog browse payloads are brief (no genre, no source), so every field
    except id and title is optional.
    """
    id: int                                  # Stable Suwayomi manga id
    title: str
    thumbnail_url: str = ""
    in_library: bool = False
    genre: List[str] = field(default_factory=list)
    status: Optional[str] = None
    source: Optional[SourceRef] = None

    @classmethod
    def from_node(cls, node: Dict[str, Any]) -> "MangaRecord":
        """Parse a GraphQL manga node."""
        return cls(
            id=int(node["id"]),
            title=node.get("title") or "",
            thumbnail_url=node.get("thumbnailUrl") or "",
            in_library=bool(node.get("inLibrary", False)),
            genre=list(node.get("genre") or []),
            status=node.get("status"),
            source=SourceRef.from_node(node.get("source")),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to JSON-serializable dictionary for API responses."""
        return {
            "id": self.id,
            "title": self.title,
            "thumbnailUrl": self.thumbnail_url,
            "inLibrary": self.in_library,
            "genre": list(self.genre),
            "status": self.status,
            "source": self.source.to_dict() if self.source else None,
        }

    def with_library_flag(self, in_library: bool) -> "MangaRecord":
        """Copy with the library flag set; returns self if unchanged."""
        if self.in_library == in_library:
            return self
        return replace(self, in_library=in_library, genre=list(self.genre))


@dataclass(frozen=True)
class SourceDescriptor:
    """
    One installed catalog variant.

    `name` is the family name shared by every language variant
    (e.g. "MangaDex" for MangaDex EN / ES / FR); `lang` is the variant.
    """
    id: str
    name: str
    lang: str
    display_name: str = ""
    icon_url: str = ""
    is_nsfw: bool = False

    @classmethod
    def from_node(cls, node: Dict[str, Any]) -> "SourceDescriptor":
        return cls(
            id=str(node["id"]),
            name=node.get("name") or "",
            lang=node.get("lang") or "",
            display_name=node.get("displayName") or node.get("name") or "",
            icon_url=node.get("iconUrl") or "",
            is_nsfw=bool(node.get("isNsfw", False)),
        )

    @property
    def is_local(self) -> bool:
        return self.id == LOCAL_SOURCE_ID

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "lang": self.lang,
            "displayName": self.display_name,
            "iconUrl": self.icon_url,
            "isNsfw": self.is_nsfw,
        }


def records_from_nodes(nodes: Iterable[Dict[str, Any]]) -> List[MangaRecord]:
    """Parse a list of manga nodes, skipping nodes without an id."""
    records = []
    for node in nodes or []:
        if node.get("id") is None:
            continue
        records.append(MangaRecord.from_node(node))
    return records
