from __future__ import annotations

import asyncio

import pytest

from media.range_server import RangeNotSatisfiable, iter_file_range, plan_full, plan_range


def test_explicit_range_is_served_exactly() -> None:
    plan = plan_range("bytes=0-499", 1000, 500_000)

    assert (plan.start, plan.end, plan.status) == (0, 499, 206)
    assert plan.headers("audio/mpeg") == {
        "Accept-Ranges": "bytes",
        "Content-Length": "500",
        "Content-Type": "audio/mpeg",
        "Content-Range": "bytes 0-499/1000",
    }


def test_open_ended_range_is_bounded_to_one_chunk() -> None:
    assert (plan_range("bytes=100-", 10_000, 1000).start, plan_range("bytes=100-", 10_000, 1000).end) == (100, 1099)
    assert plan_range("bytes=9500-", 10_000, 1000).end == 9999


def test_missing_header_serves_first_chunk_as_partial() -> None:
    plan = plan_range(None, 1_200_000, 500_000)

    assert (plan.start, plan.end, plan.status) == (0, 499_999, 206)
    assert plan_range("", 1000, 500_000).end == 999


def test_last_byte_is_satisfiable() -> None:
    plan = plan_range("bytes=999-999", 1000, 500_000)

    assert plan.length == 1


@pytest.mark.parametrize(
    "header",
    [
        "bytes=1000-",
        "bytes=0-1000",
        "bytes=600-500",
        "bytes=-500",
        "bytes=0-1,5-6",
        "items=0-10",
        "bytes=abc-",
    ],
)
def test_unsatisfiable_ranges(header) -> None:
    with pytest.raises(RangeNotSatisfiable) as excinfo:
        plan_range(header, 1000, 500_000)

    assert excinfo.value.file_size == 1000


def test_empty_file_is_never_satisfiable() -> None:
    with pytest.raises(RangeNotSatisfiable):
        plan_range(None, 0, 500_000)


def test_full_plan_has_no_content_range() -> None:
    headers = plan_full(42).headers("audio/flac")

    assert "Content-Range" not in headers
    assert headers["Content-Length"] == "42"


def test_iter_file_range_yields_requested_slice(tmp_path) -> None:
    path = tmp_path / "track.mp3"
    path.write_bytes(bytes(range(256)) * 4)

    async def collect():
        return b"".join([chunk async for chunk in iter_file_range(path, 10, 300, block_size=64)])

    assert asyncio.run(collect()) == (bytes(range(256)) * 4)[10:301]
