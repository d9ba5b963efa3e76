"""Spotify Web API client for track search with client-credentials auth."""

from __future__ import annotations

import base64
import time
from typing import Any, TypedDict

import requests

from config.settings import SPOTIFY_CLIENT_ID, SPOTIFY_CLIENT_SECRET, SPOTIFY_SEARCH_LIMIT, SPOTIFY_TIMEOUT_SECONDS


class MinifiedTrack(TypedDict):
    """Track record returned by the search route."""

    id: str
    title: str
    artist: str
    thumbnailUrl: str
    duration: int


class SpotifyClientError(RuntimeError):
    """Credentials are missing or the Spotify API refused a request."""


def minify_track(track: dict[str, Any]) -> MinifiedTrack | None:
    """Reduce a Spotify track object to the search-route shape, or ``None`` without an id."""
    track_id = track.get("id")
    if not track_id:
        return None
    artists = track.get("artists") or []
    first_artist = artists[0].get("name") if artists and isinstance(artists[0], dict) else None
    album = track.get("album") or {}
    images = album.get("images") or []
    thumbnail = images[0].get("url") if images and isinstance(images[0], dict) else None
    try:
        duration_ms = float(track.get("duration_ms") or 0)
    except (TypeError, ValueError):
        duration_ms = 0
    return {
        "id": str(track_id),
        "title": str(track.get("name") or ""),
        "artist": str(first_artist or ""),
        "thumbnailUrl": str(thumbnail or ""),
        "duration": int(round(duration_ms / 1000)),
    }


class SpotifySearchClient:
    """Client for the Spotify track search endpoint."""

    _TOKEN_URL = "https://accounts.spotify.com/api/token"
    _SEARCH_URL = "https://api.spotify.com/v1/search"

    def __init__(
        self,
        *,
        client_id: str | None = None,
        client_secret: str | None = None,
        timeout_sec: int = SPOTIFY_TIMEOUT_SECONDS,
        limit: int = SPOTIFY_SEARCH_LIMIT,
        session: requests.Session | None = None,
    ) -> None:
        self.client_id = client_id or SPOTIFY_CLIENT_ID
        self.client_secret = client_secret or SPOTIFY_CLIENT_SECRET
        self.timeout_sec = timeout_sec
        self.limit = limit
        self._session = session or requests.Session()
        self._access_token: str | None = None
        self._access_token_expire_at: float = 0.0

    def _get_access_token(self) -> str:
        if not self.client_id or not self.client_secret:
            raise SpotifyClientError("Spotify credentials are required")

        now = time.time()
        if self._access_token and now < self._access_token_expire_at:
            return self._access_token

        auth_payload = f"{self.client_id}:{self.client_secret}".encode("utf-8")
        auth_header = base64.b64encode(auth_payload).decode("ascii")
        try:
            response = self._session.post(
                self._TOKEN_URL,
                data={"grant_type": "client_credentials"},
                headers={"Authorization": f"Basic {auth_header}"},
                timeout=self.timeout_sec,
            )
        except requests.RequestException as exc:
            raise SpotifyClientError(f"Spotify token request failed: {exc}") from exc
        if response.status_code != 200:
            raise SpotifyClientError(f"Spotify token request failed ({response.status_code})")

        try:
            payload = response.json()
        except ValueError as exc:
            raise SpotifyClientError("Spotify token response is not JSON") from exc
        if not isinstance(payload, dict):
            raise SpotifyClientError("Spotify token response is not an object")
        token = payload.get("access_token")
        if not token:
            raise SpotifyClientError("Spotify token response missing access_token")

        try:
            expires_in = int(payload.get("expires_in") or 0)
        except (TypeError, ValueError):
            expires_in = 0
        self._access_token = token
        self._access_token_expire_at = now + max(0, expires_in - 30)
        return token

    def _get(self, url: str, params: dict[str, Any] | None, token: str) -> requests.Response:
        try:
            return self._session.get(
                url,
                params=params,
                headers={"Authorization": f"Bearer {token}"},
                timeout=self.timeout_sec,
            )
        except requests.RequestException as exc:
            raise SpotifyClientError(f"Spotify request failed: {exc}") from exc

    def _request_json(self, url: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        response = self._get(url, params, self._get_access_token())
        if response.status_code == 401:
            self._access_token = None
            response = self._get(url, params, self._get_access_token())
        if response.status_code != 200:
            raise SpotifyClientError(f"Spotify request failed ({response.status_code})")
        try:
            payload = response.json()
        except ValueError as exc:
            raise SpotifyClientError("Spotify returned malformed JSON") from exc
        if not isinstance(payload, dict):
            raise SpotifyClientError("Spotify returned a non-object payload")
        return payload

    def search_tracks(self, query: str) -> dict[str, MinifiedTrack]:
        """Search tracks and return ``{track_id: MinifiedTrack}`` in Spotify's order."""
        query = (query or "").strip()
        if not query:
            raise ValueError("query is required")
        payload = self._request_json(self._SEARCH_URL, params={"q": query, "type": "track", "limit": self.limit})
        items = (payload.get("tracks") or {}).get("items") or []
        results: dict[str, MinifiedTrack] = {}
        for raw in items:
            if not isinstance(raw, dict):
                continue
            track = minify_track(raw)
            if track is not None:
                results[track["id"]] = track
        return results
