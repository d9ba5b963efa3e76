"""HTTP byte-range planning and streaming for cached audio files."""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator

import anyio
from fastapi.responses import StreamingResponse

from config.settings import STREAM_CHUNK_SIZE, STREAM_READ_BLOCK_SIZE

logger = logging.getLogger(__name__)

_RANGE_RE = re.compile(r"^\s*bytes\s*=\s*(\d+)\s*-\s*(\d*)\s*$", re.IGNORECASE)


class RangeNotSatisfiable(Exception):
    """The requested byte range cannot be served from a file of ``file_size`` bytes."""

    def __init__(self, file_size: int, range_header: str | None = None) -> None:
        super().__init__(f"range {range_header!r} not satisfiable for size {file_size}")
        self.file_size = file_size
        self.range_header = range_header


@dataclass(frozen=True)
class RangePlan:
    start: int
    end: int
    file_size: int
    status: int = 206

    @property
    def length(self) -> int:
        return self.end - self.start + 1

    def headers(self, mime_type: str) -> dict[str, str]:
        headers = {
            "Accept-Ranges": "bytes",
            "Content-Length": str(self.length),
            "Content-Type": mime_type,
        }
        if self.status == 206:
            headers["Content-Range"] = f"bytes {self.start}-{self.end}/{self.file_size}"
        return headers


def plan_range(range_header: str | None, file_size: int, chunk_size: int = STREAM_CHUNK_SIZE) -> RangePlan:
    """Work out which slice of the file to send.

    Without a header the first ``chunk_size`` bytes are planned as a 206 so
    players keep asking for ranges. ``bytes=<start>-`` is bounded to one
    chunk. Anything else that does not satisfy ``0 <= start <= end < size``,
    including suffix and multi-range forms, raises ``RangeNotSatisfiable``.
    """
    if file_size <= 0:
        raise RangeNotSatisfiable(file_size, range_header)
    if range_header is None or not range_header.strip():
        return RangePlan(start=0, end=min(chunk_size, file_size) - 1, file_size=file_size)

    match = _RANGE_RE.match(range_header)
    if not match:
        raise RangeNotSatisfiable(file_size, range_header)
    start = int(match.group(1))
    end_raw = match.group(2)
    end = int(end_raw) if end_raw else min(start + chunk_size - 1, file_size - 1)
    if not (0 <= start <= end < file_size):
        raise RangeNotSatisfiable(file_size, range_header)
    return RangePlan(start=start, end=end, file_size=file_size)


def plan_full(file_size: int) -> RangePlan:
    return RangePlan(start=0, end=file_size - 1, file_size=file_size, status=200)


async def iter_file_range(
    path: str | Path,
    start: int,
    end: int,
    block_size: int = STREAM_READ_BLOCK_SIZE,
) -> AsyncIterator[bytes]:
    """Yield bytes ``start..end`` inclusive.

    Cancellation (the client disconnected) closes the handle on the way out.
    """
    remaining = end - start + 1
    try:
        async with await anyio.open_file(path, "rb") as handle:
            await handle.seek(start)
            while remaining > 0:
                chunk = await handle.read(min(block_size, remaining))
                if not chunk:
                    break
                remaining -= len(chunk)
                yield chunk
    finally:
        if remaining > 0:
            logger.info("Stream stopped early path=%s unsent_bytes=%d", path, remaining)


async def _file_size(path: str | Path) -> int:
    return await anyio.to_thread.run_sync(os.path.getsize, path)


async def range_response(
    path: str | Path,
    mime_type: str,
    range_header: str | None,
    chunk_size: int = STREAM_CHUNK_SIZE,
) -> StreamingResponse:
    file_size = await _file_size(path)
    plan = plan_range(range_header, file_size, chunk_size)
    logger.info(
        "Streaming %s | Size: %.2f MB | Range: %d-%d",
        Path(path).name,
        file_size / (1024 * 1024),
        plan.start,
        plan.end,
    )
    return StreamingResponse(
        iter_file_range(path, plan.start, plan.end),
        status_code=plan.status,
        media_type=mime_type,
        headers=plan.headers(mime_type),
    )


async def full_file_response(path: str | Path, mime_type: str, filename: str | None = None) -> StreamingResponse:
    file_size = await _file_size(path)
    plan = plan_full(file_size)
    headers = plan.headers(mime_type)
    if filename:
        headers["Content-Disposition"] = f'attachment; filename="{filename}"'
    return StreamingResponse(
        iter_file_range(path, plan.start, plan.end),
        status_code=plan.status,
        media_type=mime_type,
        headers=headers,
    )
