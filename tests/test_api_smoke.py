import pytest

from moku_explore import create_app
from moku_explore.config import ExploreConfig
from moku_explore.runtime import FeedRuntime

from conftest import (
    FakeClient, browse_payload, by_genre, manga_node, mangas_payload, source_node, sources_payload,
)


def fake_server():
    saved = {2: False}
    client = FakeClient()
    client.on("ExploreAllManga", lambda v: mangas_payload([
        manga_node(1, "Alpha", ["Action"], in_library=True),
        manga_node(2, "Beta", ["Action"], in_library=saved[2]),
    ]))
    client.on("MangasByGenreExplore", by_genre({"Action": [manga_node(2, "Beta", ["Action"])]}))
    client.on("GetSources", lambda v: sources_payload([source_node("11", "Dex", display_name="Dex")]))
    client.on("FetchSourceManga:POPULAR", lambda v: browse_payload([manga_node(50, "Hot")]))
    client.on("FetchSourceManga:SEARCH", lambda v: browse_payload([manga_node(60, f"Found {v['page']}")]))

    def update(v):
        saved[v["id"]] = v["inLibrary"]
        return {"updateManga": {"manga": {"id": v["id"], "inLibrary": v["inLibrary"]}}}

    client.on("UpdateManga", update)
    return client


@pytest.fixture(scope="module")
def client():
    runtime = FeedRuntime(config=ExploreConfig(), client=fake_server())
    app = create_app(runtime=runtime)
    with app.test_client() as test_client:
        yield test_client
    runtime.stop()


def test_feed_snapshot(client):
    resp = client.get("/api/explore")
    assert resp.status_code == 200
    data = resp.get_json()
    assert data["status"] == "ready"
    assert data["categories"] == ["Action"]
    sections = {s["key"]: s for s in data["sections"]}
    assert sections["popular"]["title"] == "Popular on Dex"
    assert [i["title"] for i in sections["popular"]["items"]] == ["Hot"]
    assert sections["category:Action"]["state"] == "ready"


def test_retry_increments_attempt(client):
    before = client.get("/api/explore").get_json()["attempt"]
    resp = client.post("/api/explore/retry")
    assert resp.status_code == 200
    assert resp.get_json()["attempt"] == before + 1


def test_genre_drill(client):
    resp = client.get("/api/explore/genre/Action")
    assert resp.status_code == 200
    data = resp.get_json()
    assert data["genre"] == "Action"
    assert data["results"][0]["title"] == "Alpha"


def test_genre_drill_rejects_bad_genre(client):
    resp = client.get("/api/explore/genre/%3Cscript%3E")
    assert resp.status_code == 400
    assert "error" in resp.get_json()


def test_add_to_library(client):
    resp = client.post("/api/explore/library", json={"id": 2})
    assert resp.status_code == 200
    assert resp.get_json() == {"status": "ok", "id": 2, "inLibrary": True}


def test_add_to_library_validates_payload(client):
    assert client.post("/api/explore/library", json={"id": "2"}).status_code == 400
    assert client.post("/api/explore/library", json={}).status_code == 400


def test_record_source_access(client):
    resp = client.post("/api/explore/sources/11/access")
    assert resp.status_code == 200


def test_cache_stats(client):
    resp = client.get("/api/explore/cache")
    assert resp.status_code == 200
    data = resp.get_json()
    assert "hit_rate" in data["stats"]
    assert isinstance(data["keys"], list)


def test_logs(client):
    resp = client.get("/api/explore/logs")
    assert resp.status_code == 200
    assert isinstance(resp.get_json()["logs"], list)
