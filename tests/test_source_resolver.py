import asyncio

import pytest

from sources import SourceCatalog, resolve_sources
from sources.base import SourceDescriptor
from sources.client import QueryResponseError

from conftest import FakeClient, browse_payload, manga_node, mangas_payload, source_node, sources_payload, static


def descriptor(source_id, name, lang):
    return SourceDescriptor(id=source_id, name=name, lang=lang, display_name=f"{name} {lang}")


def test_prefers_preferred_language_variant():
    sources = [
        descriptor("1", "MangaDex", "es"),
        descriptor("2", "MangaDex", "fr"),
        descriptor("3", "MangaDex", "fr-CA"),
    ]
    assert resolve_sources(sources, "fr") == [sources[1]]


def test_falls_back_then_lexicographic():
    sources = [
        descriptor("1", "Comick", "ja"),
        descriptor("2", "Comick", "en"),
        descriptor("3", "Bato", "pt"),
        descriptor("4", "Bato", "es"),
    ]
    resolved = resolve_sources(sources, "de", fallback_lang="en")
    assert [s.id for s in resolved] == ["2", "4"]


def test_one_per_family_in_first_appearance_order_without_local():
    sources = [
        descriptor("0", "Local source", "localsourcelang"),
        descriptor("7", "Zeta", "en"),
        descriptor("8", "Alpha", "en"),
        descriptor("9", "Zeta", "es"),
    ]
    resolved = resolve_sources(sources, "en")
    assert [s.name for s in resolved] == ["Zeta", "Alpha"]
    assert all(not s.is_local for s in resolved)


def test_resolution_is_idempotent():
    sources = [descriptor("1", "A", "en"), descriptor("2", "A", "es"), descriptor("3", "B", "ja")]
    once = resolve_sources(sources, "es")
    assert resolve_sources(once, "es") == once


def test_catalog_parses_library_and_sources():
    client = FakeClient()
    client.on("ExploreAllManga", static(mangas_payload([
        manga_node(1, "Berserk", ["Action"], in_library=True),
        {"title": "missing id"},
    ])))
    client.on("GetSources", static(sources_payload([
        source_node("0", "Local source", "localsourcelang"),
        source_node("11", "MangaDex", "en", "MangaDex"),
        source_node("12", "MangaDex", "es"),
    ])))
    catalog = SourceCatalog(client)

    async def scenario():
        return await catalog.fetch_library(), await catalog.resolved_sources("en")

    records, sources = asyncio.run(scenario())
    assert [(r.id, r.title, r.in_library, r.genre) for r in records] == [(1, "Berserk", True, ["Action"])]
    assert [(s.id, s.display_name) for s in sources] == [("11", "MangaDex")]


def test_catalog_browse_and_update():
    client = FakeClient()
    client.on("FetchSourceManga:SEARCH", static(browse_payload([manga_node(4, "Monster")], has_next_page=True)))
    client.on("UpdateManga", static({"updateManga": {"manga": {"id": 4, "inLibrary": True}}}))
    catalog = SourceCatalog(client)

    async def scenario():
        page = await catalog.browse("11", "SEARCH", 2, query="Thriller")
        saved = await catalog.set_in_library(4)
        return page, saved

    page, saved = asyncio.run(scenario())
    assert page.has_next_page
    assert [r.title for r in page.mangas] == ["Monster"]
    assert saved is True
    assert client.calls[0] == (
        "FetchSourceManga:SEARCH", {"source": "11", "type": "SEARCH", "page": 2, "query": "Thriller"}
    )


def test_catalog_rejects_unknown_browse_type():
    catalog = SourceCatalog(FakeClient())
    with pytest.raises(ValueError):
        asyncio.run(catalog.browse("11", "RANDOM"))


def test_catalog_missing_connection_is_response_error():
    client = FakeClient().on("ExploreAllManga", static({"mangas": None}))
    with pytest.raises(QueryResponseError):
        asyncio.run(SourceCatalog(client).fetch_library())
