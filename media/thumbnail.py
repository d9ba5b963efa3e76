"""Square WebP thumbnails cropped from upstream video artwork."""

from __future__ import annotations

import io
import logging
import os
import tempfile
from pathlib import Path

import anyio
import requests
from PIL import Image, UnidentifiedImageError

from config.settings import HTTP_USER_AGENT, THUMBNAIL_TIMEOUT_SECONDS, THUMBNAIL_URL_TEMPLATE
from engine.acquisition import AcquisitionCoordinator
from engine.json_utils import log_event
from media.cache_store import CacheStore

logger = logging.getLogger(__name__)


class ThumbnailError(RuntimeError):
    """The artwork could not be fetched or decoded."""


def crop_center_square(image: Image.Image) -> Image.Image:
    width, height = image.size
    side = min(width, height)
    left = (width - side) // 2
    top = (height - side) // 2
    return image.crop((left, top, left + side, top + side))


def render_square_webp(data: bytes) -> bytes:
    try:
        image = Image.open(io.BytesIO(data))
        image.load()
    except (UnidentifiedImageError, OSError) as exc:
        raise ThumbnailError(f"artwork is not a readable image: {exc}") from exc
    if image.mode not in ("RGB", "RGBA"):
        image = image.convert("RGB")
    output = io.BytesIO()
    crop_center_square(image).save(output, format="WEBP")
    return output.getvalue()


class ThumbnailService:
    def __init__(
        self,
        cache_store: CacheStore,
        coordinator: AcquisitionCoordinator | None = None,
        *,
        session: requests.Session | None = None,
        url_template: str = THUMBNAIL_URL_TEMPLATE,
        timeout_seconds: float = THUMBNAIL_TIMEOUT_SECONDS,
    ) -> None:
        self.cache_store = cache_store
        self.coordinator = coordinator or AcquisitionCoordinator()
        self.url_template = url_template
        self.timeout_seconds = timeout_seconds
        self._session = session or requests.Session()

    async def get_thumbnail(self, identifier: str) -> Path:
        path = self.cache_store.thumbnail_path(identifier)
        if await anyio.to_thread.run_sync(self.cache_store.exists, path):
            return path
        return await self.coordinator.acquire(("thumbnail", identifier), lambda: self._produce(identifier))

    async def _produce(self, identifier: str) -> Path:
        return await anyio.to_thread.run_sync(self.produce_sync, identifier)

    def produce_sync(self, identifier: str) -> Path:
        path = self.cache_store.thumbnail_path(identifier)
        if self.cache_store.exists(path):
            return path
        url = self.url_template.format(id=identifier)
        try:
            resp = self._session.get(url, headers={"User-Agent": HTTP_USER_AGENT}, timeout=self.timeout_seconds)
        except requests.RequestException as exc:
            raise ThumbnailError(f"artwork request failed: {exc}") from exc
        if resp.status_code != 200 or not resp.content:
            raise ThumbnailError(f"artwork request returned status {resp.status_code}")

        payload = render_square_webp(resp.content)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, suffix=".part")
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(payload)
            os.replace(tmp_name, path)
        except OSError:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        log_event(logging.INFO, "thumbnail_cached", identifier=identifier, path=path, size=len(payload))
        return path
