import asyncio
import os
from datetime import datetime, timedelta, timezone

import pytest

os.environ.setdefault("DEBUG_LOGGING", "false")

from sources import SourceCatalog
from sources.client import QueryCancelled, QueryResponseError
from moku_explore.cache import CacheStore
from moku_explore.models import HistoryEntry
from moku_explore.services import FeedAssembler, RequestOrchestrator
from moku_explore.stores import MemoryHistoryStore, MemorySettingsStore


NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Payload builders (server response shapes)
# ---------------------------------------------------------------------------

def manga_node(manga_id, title, genre=(), in_library=False):
    return {
        "id": manga_id,
        "title": title,
        "thumbnailUrl": f"/api/v1/manga/{manga_id}/thumbnail",
        "inLibrary": in_library,
        "genre": list(genre),
        "status": "ONGOING",
    }


def source_node(source_id, name, lang="en", display_name=None):
    return {
        "id": source_id,
        "name": name,
        "lang": lang,
        "displayName": display_name or f"{name} ({lang.upper()})",
        "iconUrl": "",
        "isNsfw": False,
    }


def mangas_payload(nodes):
    return {"mangas": {"nodes": list(nodes)}}


def sources_payload(nodes):
    return {"sources": {"nodes": list(nodes)}}


def browse_payload(nodes, has_next_page=False):
    return {"fetchSourceManga": {"mangas": list(nodes), "hasNextPage": has_next_page}}


def history_entry(manga_id, hours_ago=1.0, chapter_id=None, chapter_name="Chapter 1", page_number=0):
    return HistoryEntry(
        manga_id=manga_id,
        read_at=NOW - timedelta(hours=hours_ago),
        chapter_name=chapter_name,
        page_number=page_number,
        chapter_id=chapter_id,
    )


# ---------------------------------------------------------------------------
# Scripted query client
# ---------------------------------------------------------------------------

class FakeClient:
    """
    Stand-in for SuwayomiClient.execute().

    Handlers are registered per operation name and receive the variables;
    they may be sync or async, and may return an Exception to raise it.
    """

    def __init__(self):
        self.handlers = {}
        self.calls = []

    def on(self, operation, handler):
        self.handlers[operation] = handler
        return self

    def count(self, operation):
        return sum(1 for op, _ in self.calls if op == operation)

    async def execute(self, query, variables=None, token=None, operation=None):
        self.calls.append((operation, dict(variables or {})))
        if token is not None and token.cancelled:
            raise QueryCancelled(operation)

        handler = self.handlers.get(operation)
        if handler is None:
            raise QueryResponseError(f"no handler for {operation}", operation)

        result = handler(dict(variables or {}))
        if asyncio.iscoroutine(result):
            result = await result
        if token is not None and token.cancelled:
            raise QueryCancelled(operation)
        if isinstance(result, Exception):
            raise result
        return result

    async def close(self):
        pass


def static(value):
    return lambda variables: value


def by_genre(rows):
    """Handler answering the local genre query from a {genre: [nodes]} map."""
    return lambda variables: mangas_payload(rows.get(variables["genre"], []))


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def client():
    return FakeClient()


@pytest.fixture
def history():
    return MemoryHistoryStore()


@pytest.fixture
def settings():
    return MemorySettingsStore("en")


@pytest.fixture
def make_feed(client, history, settings):
    """Build a FeedAssembler over the fake client. Call inside a running loop."""
    def factory(**kwargs):
        cache = CacheStore()
        feed = FeedAssembler(
            SourceCatalog(client),
            cache,
            RequestOrchestrator(cache),
            history,
            settings,
            clock=lambda: NOW,
            **kwargs,
        )
        return feed

    return factory
