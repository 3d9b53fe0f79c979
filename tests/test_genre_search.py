import asyncio

from sources import SourceCatalog
from sources.client import QueryTransportError
from moku_explore.cache import CacheKeys, CacheStore, PageSetRegistry
from moku_explore.search import GenreSearch
from moku_explore.services import RequestOrchestrator

from conftest import (
    browse_payload, manga_node, mangas_payload, source_node, sources_payload, static,
)

DEX = {1: "Monster", 2: "Pluto"}
KAKALOT = {1: "Vinland Saga", 2: "Dorohedoro", 3: "Blame!"}


def make_drill(client, settings, **kwargs):
    cache = CacheStore()
    return GenreSearch(SourceCatalog(client), cache, RequestOrchestrator(cache), settings, **kwargs)


def setup_server(client, search):
    client.on("ExploreAllManga", static(mangas_payload([
        manga_node(1, "Library Action", ["Action"], in_library=True),
        manga_node(2, "Library Romance", ["Romance"], in_library=True),
    ])))
    client.on("GetSources", static(sources_payload([
        source_node("11", "Dex"),
        source_node("12", "Kakalot"),
    ])))
    client.on("FetchSourceManga:SEARCH", search)


def test_open_lists_library_matches_first(client, settings):
    def search(v):
        if v["source"] == "11":
            return browse_payload([manga_node(1, "Library Action"), manga_node(100 + v["page"], DEX[v["page"]])])
        return browse_payload([manga_node(200 + v["page"], KAKALOT[v["page"]])], has_next_page=True)

    setup_server(client, search)

    async def scenario():
        drill = make_drill(client, settings)
        results = await drill.open("Action")
        return drill, results

    drill, results = asyncio.run(scenario())
    assert [r.title for r in results] == [
        "Library Action", "Monster", "Pluto", "Vinland Saga", "Dorohedoro",
    ]
    assert not drill.loading_library
    assert not drill.loading_sources
    assert drill.has_more
    assert client.count("FetchSourceManga:SEARCH") == 4
    assert drill.cache.has(CacheKeys.genre_drill("Action"))


def test_open_tolerates_failing_catalog(client, settings):
    def search(v):
        if v["source"] == "11":
            return QueryTransportError("Suwayomi HTTP 500", "FetchSourceManga:SEARCH", 500)
        return browse_payload([manga_node(300, "Survivor")])

    setup_server(client, search)

    async def scenario():
        drill = make_drill(client, settings)
        return await drill.open("Romance")

    results = asyncio.run(scenario())
    assert [r.title for r in results] == ["Library Romance", "Survivor"]


def test_fuzzy_duplicates_across_catalogs_collapse(client, settings):
    def search(v):
        if v["page"] > 1:
            return browse_payload([])
        if v["source"] == "11":
            return browse_payload([manga_node(100, "The Beginning After The End")])
        return browse_payload([manga_node(200, "Beginning After the End")])

    setup_server(client, search)

    async def scenario():
        return await make_drill(client, settings).open("Fantasy")

    assert [r.id for r in asyncio.run(scenario())] == [100]


def test_load_more_fetches_next_page_from_catalogs_with_more(client, settings):
    def search(v):
        if v["source"] == "11":
            return browse_payload([manga_node(100 + v["page"], DEX[v["page"]])], has_next_page=False)
        return browse_payload([manga_node(200 + v["page"], KAKALOT[v["page"]])], has_next_page=v["page"] < 3)

    setup_server(client, search)
    page_sets = PageSetRegistry()

    async def scenario():
        drill = make_drill(client, settings, page_sets=page_sets)
        await drill.open("Action")
        added = await drill.load_more()
        nothing = await drill.load_more()
        return drill, added, nothing

    drill, added, nothing = asyncio.run(scenario())
    assert [r.title for r in added] == ["Blame!"]
    assert nothing == []
    assert not drill.has_more
    assert page_sets.page_set("12", "SEARCH", "Action").pages() == {1, 2, 3}
    assert [call[1]["page"] for call in client.calls if call[1].get("source") == "11"] == [1, 2]


def test_reopening_discards_stale_results(client, settings):
    gate = asyncio.Event()

    async def search(v):
        if v["query"] == "Action":
            await gate.wait()
            return browse_payload([manga_node(900, "Stale")])
        return browse_payload([manga_node(901, "Fresh")])

    setup_server(client, search)

    async def scenario():
        drill = make_drill(client, settings)
        first = asyncio.ensure_future(drill.open("Action"))
        await asyncio.sleep(0.01)
        second = await drill.open("Romance")
        gate.set()
        await first
        return drill, second

    drill, second = asyncio.run(scenario())
    assert drill.genre == "Romance"
    assert [r.title for r in drill.results] == ["Library Romance", "Fresh"]
    assert [r.title for r in second] == ["Library Romance", "Fresh"]
    assert not drill.cache.has(CacheKeys.genre_drill("Action"))


def test_drill_source_limit(client, settings):
    client.on("ExploreAllManga", static(mangas_payload([])))
    client.on("GetSources", static(sources_payload([source_node(str(i), f"Src{i}") for i in range(10, 20)])))
    client.on("FetchSourceManga:SEARCH", static(browse_payload([])))

    async def scenario():
        return await make_drill(client, settings, source_limit=8, pages=2).open("Action")

    assert asyncio.run(scenario()) == []
    assert client.count("FetchSourceManga:SEARCH") == 16


def test_library_matches_ignore_genre_case(client, settings):
    setup_server(client, static(browse_payload([])))

    async def scenario():
        drill = make_drill(client, settings)
        return await drill.open("action")

    results = asyncio.run(scenario())
    assert [r.title for r in results] == ["Library Action"]
