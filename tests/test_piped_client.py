from __future__ import annotations

import pytest
import requests

from piped.client import PipedClient, ProviderError


class _FakeResponse:
    def __init__(self, payload, status_code=200, content_type="application/json"):
        self._payload = payload
        self.status_code = status_code
        self.headers = {"Content-Type": content_type}

    def json(self):
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


def _client(monkeypatch, response) -> tuple[PipedClient, list]:
    client = PipedClient(lambda: "https://piped.example/")
    calls: list = []

    def fake_get(url, params=None, headers=None, timeout=None):
        calls.append((url, params))
        if isinstance(response, Exception):
            raise response
        return response

    monkeypatch.setattr(client._session, "get", fake_get)
    return client, calls


def test_search_sends_provider_filter(monkeypatch) -> None:
    client, calls = _client(monkeypatch, _FakeResponse({"items": [{"url": "/watch?v=a"}]}))

    items = client.search("daft punk", "songs")

    assert items == [{"url": "/watch?v=a"}]
    assert calls == [("https://piped.example/search", {"q": "daft punk", "filter": "music_songs"})]


@pytest.mark.parametrize(
    "response",
    [
        _FakeResponse({"error": "busy"}, status_code=503),
        _FakeResponse("<html>", content_type="text/html"),
        _FakeResponse(ValueError("bad json")),
        _FakeResponse({"nextpage": None}),
        requests.ReadTimeout("slow"),
    ],
)
def test_unusable_responses_raise_provider_error(monkeypatch, response) -> None:
    client, _ = _client(monkeypatch, response)

    with pytest.raises(ProviderError):
        client.search("q", "albums")


def test_channel_avatar_uses_last_url_segment(monkeypatch) -> None:
    client, calls = _client(monkeypatch, _FakeResponse({"avatarUrl": "https://img/avatar.jpg"}))

    assert client.channel_avatar("/channel/UCdp") == "https://img/avatar.jpg"
    assert calls[0][0] == "https://piped.example/channel/UCdp"
    assert client.channel_avatar("") == ""
