"""Cached Spotify track search."""

from __future__ import annotations

import copy
import logging
import time
from pathlib import Path
from typing import Any

import anyio

from engine.json_store import JsonDocument
from engine.json_utils import log_event
from engine.search_store import normalize_query
from spotify.client import SpotifyClientError, SpotifySearchClient

logger = logging.getLogger(__name__)


class SpotifySearchError(RuntimeError):
    """Spotify search could not produce results."""


class SpotifySearchService:
    def __init__(self, client: SpotifySearchClient, cache_path: str | Path) -> None:
        self.client = client
        self._cache = JsonDocument(cache_path)

    async def search(self, query: str) -> dict[str, Any]:
        query = normalize_query(query)
        if not query:
            raise ValueError("query is required")
        started = time.monotonic()
        cached = await anyio.to_thread.run_sync(self._cache.get, query)
        if isinstance(cached, dict):
            log_event(
                logging.INFO,
                "spotify_search_completed",
                query=query,
                cached=True,
                count=len(cached),
                duration_ms=int((time.monotonic() - started) * 1000),
            )
            return copy.deepcopy(cached)

        try:
            results = await anyio.to_thread.run_sync(self.client.search_tracks, query)
        except SpotifyClientError as exc:
            log_event(logging.ERROR, "spotify_search_failed", query=query, error=str(exc))
            raise SpotifySearchError(str(exc)) from exc
        await anyio.to_thread.run_sync(self._cache.set, query, results)
        log_event(
            logging.INFO,
            "spotify_search_completed",
            query=query,
            cached=False,
            count=len(results),
            duration_ms=int((time.monotonic() - started) * 1000),
        )
        return dict(results)
