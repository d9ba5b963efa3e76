"""Catalog search with a persisted per-query cache and selection weighting."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Iterable

import anyio

from engine.json_utils import log_event
from engine.results import (
    ALL_KINDS,
    KIND_ALBUMS,
    Album,
    IdentifierExtractor,
    Playlist,
    Result,
    extract_identifier,
    normalize_items,
    serialize_results,
    songs_from_related_streams,
)
from engine.search_store import SearchStore, apply_weights, normalize_query
from piped.client import PipedClient, ProviderError

logger = logging.getLogger(__name__)

MODE_FULL = "full"
MODE_MINIMAL = "minimal"


class ProviderUnavailable(RuntimeError):
    """Every result kind that had to be fetched failed and nothing cached could stand in."""


class SearchService:
    def __init__(self, store: SearchStore, client: PipedClient, *, extractor: IdentifierExtractor = extract_identifier) -> None:
        self.store = store
        self.client = client
        self.extractor = extractor

    async def search(self, query: str, kinds: Iterable[str] | None = None, mode: str = MODE_FULL) -> dict[str, dict[str, Any]]:
        """Return ``{albums, playlists, songs}``, each an ordered ``{id: item}`` map.

        Kinds that are missing or empty in the stored record are fetched from
        the provider and merged in; the rest come from the store. Kinds outside
        ``kinds`` are returned empty. A kind whose fetch fails comes back empty
        unless every fetched kind failed with nothing cached to show.
        """
        query = normalize_query(query)
        if not query:
            raise ValueError("query is required")
        requested = [kind for kind in ALL_KINDS if kind in set(kinds or ALL_KINDS)]
        full = mode != MODE_MINIMAL
        started = time.monotonic()

        missing = await anyio.to_thread.run_sync(self.store.missing_kinds, query, requested)
        fetched: dict[str, dict[str, Any]] = {}
        failed: list[str] = []
        if missing:
            outcomes = await asyncio.gather(*(self._fetch_kind(query, kind, full) for kind in missing))
            for kind, outcome in zip(missing, outcomes):
                if outcome is None:
                    failed.append(kind)
                else:
                    fetched[kind] = outcome
        if fetched:
            record = await anyio.to_thread.run_sync(self.store.merge, query, fetched)
        else:
            record = await anyio.to_thread.run_sync(self.store.get_record, query) or {}
        stored = record.get("results") or {}

        if failed and not fetched and not any(stored.get(kind) for kind in requested):
            log_event(logging.ERROR, "search_failed", query=query, kinds=requested, failed=failed)
            raise ProviderUnavailable(f"all provider requests failed for {query!r}")

        weights = await anyio.to_thread.run_sync(self.store.weights_for, query)
        response = {
            kind: apply_weights(stored.get(kind) or {}, weights) if kind in requested else {}
            for kind in ALL_KINDS
        }
        log_event(
            logging.INFO,
            "search_completed",
            query=query,
            kinds=requested,
            mode=MODE_FULL if full else MODE_MINIMAL,
            cached=not missing,
            fetched=sorted(fetched),
            failed=failed,
            counts={kind: len(response[kind]) for kind in ALL_KINDS},
            duration_ms=int((time.monotonic() - started) * 1000),
        )
        return response

    async def record_selection(self, query: str, identifier: str) -> int:
        return await anyio.to_thread.run_sync(self.store.record_selection, query, identifier)

    async def _fetch_kind(self, query: str, kind: str, full: bool) -> dict[str, Any] | None:
        try:
            items = await anyio.to_thread.run_sync(self.client.search, query, kind)
        except ProviderError as exc:
            log_event(logging.WARNING, "provider_kind_failed", query=query, kind=kind, error=str(exc))
            return None
        results = normalize_items(kind, items, self.extractor)
        if full:
            await asyncio.gather(*(self._expand(result) for result in results if isinstance(result, (Album, Playlist))))
        return serialize_results(results)

    async def _expand(self, container: Result) -> None:
        tasks = [self._fill_songs(container)]
        if isinstance(container, Album) and container.uploader_url:
            tasks.append(self._fill_avatar(container))
        await asyncio.gather(*tasks)

    async def _fill_songs(self, container: Album | Playlist) -> None:
        try:
            payload = await anyio.to_thread.run_sync(self.client.playlist, container.id)
        except ProviderError as exc:
            logger.warning("Error fetching songs for %s %s: %s", container.kind, container.id, exc)
            return
        album_name = ""
        if container.kind == KIND_ALBUMS:
            album_name = payload.get("name") if isinstance(payload.get("name"), str) else container.name
        container.songs = songs_from_related_streams(payload, album_name=album_name, extractor=self.extractor)

    async def _fill_avatar(self, album: Album) -> None:
        try:
            album.artist_cover = await anyio.to_thread.run_sync(self.client.channel_avatar, album.uploader_url)
        except ProviderError as exc:
            logger.warning("Error fetching avatar for album %s: %s", album.id, exc)
