"""Audio acquisition through yt-dlp.

The acquirer is the only writer of audio cache entries. yt-dlp downloads and
extracts into a private temporary directory; the finished file is then moved
onto the deterministic cache path in one ``os.replace`` so a reader can never
observe a partial file there.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
import time
from pathlib import Path
from typing import Any

import anyio
from yt_dlp import YoutubeDL
from yt_dlp.utils import DownloadError

from config.settings import SOURCE_URL_TEMPLATE
from engine.json_utils import log_event
from media.cache_store import TIER_FORMATS, CacheStore, Tier

logger = logging.getLogger(__name__)

# Prefer audio-only formats first; fall back to any best format only if needed.
_FORMAT_AUDIO = "bestaudio/best"


class AcquisitionError(Exception):
    """Raised when an audio file could not be obtained for a track."""


class ToolFailedError(AcquisitionError):
    """The extraction tool itself reported a failure."""

    def __init__(self, details: str) -> None:
        super().__init__(details)
        self.details = details


class OutputMissingError(AcquisitionError):
    """The extraction tool finished but left no usable output file."""


def build_source_url(identifier: str, template: str = SOURCE_URL_TEMPLATE) -> str:
    return template.format(id=identifier)


def build_ytdlp_opts(tier: Tier, output_template: str) -> dict[str, Any]:
    fmt = TIER_FORMATS[tier]
    return {
        "quiet": True,
        "no_warnings": True,
        "noplaylist": True,
        "outtmpl": output_template,
        "format": _FORMAT_AUDIO,
        "retries": 3,
        "fragment_retries": 3,
        "overwrites": True,
        "cachedir": False,
        "postprocessors": [
            {
                "key": "FFmpegExtractAudio",
                "preferredcodec": fmt.codec,
                "preferredquality": "0",
            }
        ],
    }


def atomic_move(src, dst):
    try:
        os.replace(src, dst)
    except OSError:
        # Different filesystem: stage next to the destination, then swap in.
        staging = f"{dst}.part"
        try:
            shutil.copy2(src, staging)
            os.replace(staging, dst)
        except OSError:
            if os.path.exists(staging):
                os.remove(staging)
            raise
        os.remove(src)


def _find_output(work_dir: Path, extension: str) -> Path | None:
    candidates = [
        path
        for path in work_dir.glob(f"*.{extension}")
        if path.is_file() and path.stat().st_size > 0
    ]
    if not candidates:
        return None
    return max(candidates, key=lambda path: path.stat().st_size)


class YtDlpAcquirer:
    """Fetch a track's audio into the cache with yt-dlp."""

    def __init__(self, cache_store: CacheStore, tmp_dir: str | Path, *, source_url_template: str = SOURCE_URL_TEMPLATE) -> None:
        self._cache_store = cache_store
        self._tmp_dir = Path(tmp_dir)
        self._source_url_template = source_url_template

    async def fetch(self, identifier: str, tier: Tier) -> Path:
        return await anyio.to_thread.run_sync(self.fetch_sync, identifier, tier)

    def _run_ytdlp(self, url: str, opts: dict[str, Any]) -> None:
        with YoutubeDL(opts) as ydl:
            retcode = ydl.download([url])
        if retcode:
            raise ToolFailedError(f"yt-dlp exited with code {retcode}")

    def fetch_sync(self, identifier: str, tier: Tier) -> Path:
        fmt = TIER_FORMATS[tier]
        destination = self._cache_store.resolve_path(identifier, tier)
        self._cache_store.ensure_directories(tier)
        self._tmp_dir.mkdir(parents=True, exist_ok=True)
        url = build_source_url(identifier, self._source_url_template)
        work_dir = Path(tempfile.mkdtemp(prefix=f"{tier.value}-", dir=self._tmp_dir))
        started = time.monotonic()
        log_event(logging.INFO, "acquisition_started", identifier=identifier, tier=tier.value, url=url)
        try:
            opts = build_ytdlp_opts(tier, os.path.join(str(work_dir), "%(id)s.%(ext)s"))
            try:
                self._run_ytdlp(url, opts)
            except ToolFailedError:
                raise
            except DownloadError as exc:
                raise ToolFailedError(str(exc)) from exc
            except Exception as exc:
                raise ToolFailedError(f"{type(exc).__name__}: {exc}") from exc

            output = _find_output(work_dir, fmt.extension)
            if output is None:
                raise OutputMissingError(f"no {fmt.extension} output produced for {identifier}")
            try:
                atomic_move(str(output), str(destination))
            except OSError as exc:
                raise AcquisitionError(f"could not place output for {identifier}: {exc}") from exc
        except AcquisitionError as exc:
            self._discard_debris(destination)
            log_event(
                logging.ERROR,
                "acquisition_failed",
                identifier=identifier,
                tier=tier.value,
                error=str(exc),
                error_type=type(exc).__name__,
                duration_ms=int((time.monotonic() - started) * 1000),
            )
            raise
        finally:
            shutil.rmtree(work_dir, ignore_errors=True)

        size = destination.stat().st_size
        log_event(
            logging.INFO,
            "acquisition_completed",
            identifier=identifier,
            tier=tier.value,
            path=destination,
            size_mb=round(size / (1024 * 1024), 2),
            duration_ms=int((time.monotonic() - started) * 1000),
        )
        return destination

    @staticmethod
    def _discard_debris(destination: Path) -> None:
        try:
            if destination.exists() and destination.stat().st_size == 0:
                destination.unlink()
        except OSError:
            logger.exception("Failed to remove empty cache file path=%s", destination)
