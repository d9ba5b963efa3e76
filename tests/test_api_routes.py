from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

fastapi = pytest.importorskip("fastapi")
from fastapi.testclient import TestClient

import api.main as api_main
from engine.audio_service import AudioService
from engine.paths import build_engine_paths
from engine.search_service import SearchService
from engine.search_store import SearchStore
from media.acquirer import OutputMissingError, ToolFailedError
from media.cache_store import CacheStore, Tier
from media.thumbnail import ThumbnailService
from piped.client import ProviderError
from piped.selector import ProbeResult, ProviderEndpoint
from spotify.search import SpotifySearchService


class _FakeAcquirer:
    def __init__(self, cache_store: CacheStore, payload: bytes = b"", error: Exception | None = None):
        self.cache_store = cache_store
        self.payload = payload
        self.error = error
        self.calls: list[tuple[str, Tier]] = []

    async def fetch(self, identifier: str, tier: Tier) -> Path:
        self.calls.append((identifier, tier))
        await asyncio.sleep(0.01)
        if self.error is not None:
            raise self.error
        path = self.cache_store.resolve_path(identifier, tier)
        path.write_bytes(self.payload)
        return path


class _FakePipedClient:
    def __init__(self, failing=False):
        self.failing = failing

    def search(self, query, kind):
        if self.failing:
            raise ProviderError("down")
        if kind == "songs":
            return [{"url": "/watch?v=abc123", "title": "Song", "uploaderName": "Artist", "duration": 61}]
        return []

    def playlist(self, playlist_id):
        return {"relatedStreams": []}

    def channel_avatar(self, uploader_url):
        return ""


class _FakeSelector:
    def __init__(self):
        self.refreshes = 0

    def current(self):
        return "https://piped.example"

    def candidates(self):
        return [ProbeResult(ProviderEndpoint("piped.example", "https://piped.example"), 12.34)]

    def refresh(self):
        self.refreshes += 1
        return self.current()


class _FakeSpotifyClient:
    def search_tracks(self, query):
        return {"t1": {"id": "t1", "title": "T", "artist": "A", "thumbnailUrl": "", "duration": 3}}


def _install(tmp_path, *, acquirer_payload=b"", acquirer_error=None, piped_failing=False):
    paths = build_engine_paths(cache_dir=tmp_path / "cache")
    cache_store = CacheStore(paths)
    acquirer = _FakeAcquirer(cache_store, acquirer_payload, acquirer_error)
    selector = _FakeSelector()
    services = api_main.Services(
        paths=paths,
        cache_store=cache_store,
        audio=AudioService(cache_store, acquirer),
        search=SearchService(
            SearchStore(paths.search_cache_path, paths.search_weights_path),
            _FakePipedClient(failing=piped_failing),
        ),
        selector=selector,
        thumbnails=ThumbnailService(cache_store),
        spotify=SpotifySearchService(_FakeSpotifyClient(), paths.spotify_cache_path),
    )
    api_main.app.state.services = services
    return TestClient(api_main.app), services, acquirer


def test_index_is_alive(tmp_path) -> None:
    client, _, _ = _install(tmp_path)

    response = client.get("/")

    assert response.status_code == 200
    assert "tunecache" in response.text


@pytest.mark.parametrize(
    "url",
    [
        "/download",
        "/download?id=abc123",
        "/download?id=abc123&quality=hifi",
        "/stream?quality=compressed",
        "/download?id=%20&quality=compressed",
        "/download?id=" + "a" * 246 + "&quality=compressed",
        "/thumbnail?id=" + "%C3%A9" * 41,
    ],
)
def test_invalid_params_are_rejected(tmp_path, url) -> None:
    client, _, acquirer = _install(tmp_path)

    response = client.get(url)

    assert response.status_code == 400
    assert acquirer.calls == []


def test_download_serves_cached_file_without_acquiring(tmp_path) -> None:
    client, services, acquirer = _install(tmp_path)
    path = services.cache_store.resolve_path("abc123", Tier.COMPRESSED)
    path.write_bytes(b"x" * 1000)

    response = client.get("/download?id=abc123&quality=compressed")

    assert response.status_code == 200
    assert response.content == b"x" * 1000
    assert response.headers["content-type"] == "audio/mpeg"
    assert response.headers["content-length"] == "1000"
    assert "attachment" in response.headers["content-disposition"]
    assert acquirer.calls == []


def test_download_acquires_on_miss(tmp_path) -> None:
    client, _, acquirer = _install(tmp_path, acquirer_payload=b"flac-bytes")

    response = client.get("/download?id=abc123&quality=lossless")

    assert response.status_code == 200
    assert response.content == b"flac-bytes"
    assert response.headers["content-type"] == "audio/flac"
    assert acquirer.calls == [("abc123", Tier.LOSSLESS)]


@pytest.mark.parametrize("error", [ToolFailedError("ERROR: unavailable"), OutputMissingError("nothing")])
def test_acquisition_failure_is_a_generic_500(tmp_path, error) -> None:
    client, services, _ = _install(tmp_path, acquirer_error=error)

    response = client.get("/download?id=gone&quality=compressed")

    assert response.status_code == 500
    assert "unavailable" not in response.text
    assert not services.cache_store.resolve_path("gone", Tier.COMPRESSED).exists()


def test_stream_serves_requested_range(tmp_path) -> None:
    client, services, _ = _install(tmp_path)
    services.cache_store.resolve_path("abc123", Tier.COMPRESSED).write_bytes(bytes(range(100)) * 10)

    response = client.get("/stream?id=abc123&quality=compressed", headers={"Range": "bytes=0-499"})

    assert response.status_code == 206
    assert response.headers["content-range"] == "bytes 0-499/1000"
    assert response.headers["content-length"] == "500"
    assert response.headers["accept-ranges"] == "bytes"
    assert response.content == (bytes(range(100)) * 10)[:500]


def test_stream_without_range_returns_first_chunk(tmp_path, monkeypatch) -> None:
    client, services, _ = _install(tmp_path)
    monkeypatch.setattr(api_main, "STREAM_CHUNK_SIZE", 300)
    services.cache_store.resolve_path("abc123", Tier.COMPRESSED).write_bytes(b"y" * 1000)

    response = client.get("/stream?id=abc123&quality=compressed")

    assert response.status_code == 206
    assert response.headers["content-range"] == "bytes 0-299/1000"
    assert len(response.content) == 300


def test_stream_unsatisfiable_range_is_416(tmp_path) -> None:
    client, services, _ = _install(tmp_path)
    services.cache_store.resolve_path("abc123", Tier.COMPRESSED).write_bytes(b"z" * 1000)

    response = client.get("/stream?id=abc123&quality=compressed", headers={"Range": "bytes=2000-"})

    assert response.status_code == 416
    assert response.headers["content-range"] == "bytes */1000"
    assert response.content == b""


def test_search_route_and_weight_update(tmp_path) -> None:
    client, _, _ = _install(tmp_path)

    missing = client.get("/search")
    bad_filter = client.get("/search?query=q&filter=videos")
    response = client.get("/search?query=q&filter=songs")

    assert missing.status_code == 400
    assert bad_filter.status_code == 400
    assert response.status_code == 200
    body = response.json()
    assert set(body) == {"albums", "playlists", "songs"}
    assert list(body["songs"]) == ["abc123"]
    assert body["songs"]["abc123"]["duration"] == 61

    weight = client.post("/search/update-weight", json={"query": "q", "selectedId": "abc123"})
    assert weight.status_code == 200
    assert weight.json() == {"success": True}
    assert client.post("/search/update-weight", json={"query": "q"}).status_code == 400


@pytest.mark.parametrize(
    "kwargs",
    [
        {"json": {"query": 5, "selectedId": "abc123"}},
        {"json": {"query": "q", "selectedId": ["abc123"]}},
        {"json": ["q", "abc123"]},
        {"content": b"not json", "headers": {"Content-Type": "application/json"}},
    ],
)
def test_malformed_weight_update_is_rejected(tmp_path, kwargs) -> None:
    client, _, _ = _install(tmp_path)

    response = client.post("/search/update-weight", **kwargs)

    assert response.status_code == 400


def test_search_with_every_kind_failing_is_500(tmp_path) -> None:
    client, _, _ = _install(tmp_path, piped_failing=True)

    response = client.get("/search?query=q")

    assert response.status_code == 500


def test_instances_listing_and_refresh(tmp_path) -> None:
    client, services, _ = _install(tmp_path)

    listing = client.get("/instances")
    refreshed = client.post("/instances/refresh")

    assert listing.json() == {
        "active": "https://piped.example",
        "instances": [{"name": "piped.example", "api_url": "https://piped.example", "latency_ms": 12.3}],
    }
    assert refreshed.status_code == 200
    assert services.selector.refreshes == 1


def test_search_spotify_route(tmp_path) -> None:
    client, _, _ = _install(tmp_path)

    assert client.get("/search-spotify").status_code == 400
    response = client.get("/search-spotify?query=rick")
    assert response.status_code == 200
    assert list(response.json()) == ["t1"]


def test_concurrent_downloads_invoke_acquirer_once(tmp_path) -> None:
    paths = build_engine_paths(cache_dir=tmp_path / "cache")
    cache_store = CacheStore(paths)
    acquirer = _FakeAcquirer(cache_store, payload=b"audio")
    service = AudioService(cache_store, acquirer)

    async def run():
        return await asyncio.gather(*(service.get_audio("abc123", Tier.COMPRESSED) for _ in range(8)))

    results = asyncio.run(run())

    assert len(set(results)) == 1
    assert acquirer.calls == [("abc123", Tier.COMPRESSED)]
    assert service.coordinator.pending_count() == 0
