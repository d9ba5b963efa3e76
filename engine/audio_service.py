"""Resolve a track to a cached audio file, acquiring it on a cache miss."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Protocol

import anyio

from engine.acquisition import AcquisitionCoordinator
from engine.json_utils import log_event
from media.cache_store import CacheStore, Tier, TrackKey

logger = logging.getLogger(__name__)


class _Acquirer(Protocol):
    async def fetch(self, identifier: str, tier: Tier) -> Path:
        """Produce the cache file for ``identifier`` at ``tier`` and return its path."""


class AudioService:
    def __init__(self, cache_store: CacheStore, acquirer: _Acquirer, coordinator: AcquisitionCoordinator | None = None) -> None:
        self.cache_store = cache_store
        self.acquirer = acquirer
        self.coordinator = coordinator or AcquisitionCoordinator()

    async def get_audio(self, identifier: str, tier: Tier) -> Path:
        """Return the path of a complete cache entry for the track.

        Raises:
            AcquisitionError: when the track is not cached and acquiring it fails.
        """
        key = TrackKey(identifier, tier)
        path = self.cache_store.resolve_key(key)
        if await anyio.to_thread.run_sync(self.cache_store.exists, path):
            log_event(logging.INFO, "cache_hit", identifier=identifier, tier=tier.value, path=path)
            return path
        log_event(logging.INFO, "cache_miss", identifier=identifier, tier=tier.value)
        return await self.coordinator.acquire(key, lambda: self._acquire(key))

    async def _acquire(self, key: TrackKey) -> Path:
        # Another request may have finished this key between our miss and this task starting.
        path = self.cache_store.resolve_key(key)
        if await anyio.to_thread.run_sync(self.cache_store.exists, path):
            return path
        await anyio.to_thread.run_sync(self.cache_store.ensure_directories, key.tier)
        return await self.acquirer.fetch(key.identifier, key.tier)
