"""Application settings constants."""

from __future__ import annotations

import os


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_list(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return tuple(part.strip() for part in raw.split(",") if part.strip())


def _parse_named_endpoints(values: tuple[str, ...]) -> tuple[tuple[str, str], ...]:
    endpoints = []
    for value in values:
        name, sep, url = value.partition("=")
        if not sep:
            url = name
            name = url.split("//", 1)[-1]
        endpoints.append((name.strip(), url.strip().rstrip("/")))
    return tuple(endpoints)


HOST = os.environ.get("TUNECACHE_HOST", "0.0.0.0")
PORT = _env_int("TUNECACHE_PORT", 3001)

# Bytes served per open-ended range request and for the first chunk of /stream.
STREAM_CHUNK_SIZE = max(1, _env_int("TUNECACHE_STREAM_CHUNK_SIZE", 500_000))
# Read block size used while streaming a slice to the client.
STREAM_READ_BLOCK_SIZE = 64 * 1024

SOURCE_URL_TEMPLATE = os.environ.get(
    "TUNECACHE_SOURCE_URL_TEMPLATE",
    "https://www.youtube.com/watch?v={id}",
)
THUMBNAIL_URL_TEMPLATE = os.environ.get(
    "TUNECACHE_THUMBNAIL_URL_TEMPLATE",
    "https://i3.ytimg.com/vi/{id}/maxresdefault.jpg",
)

PROVIDER_INSTANCES_URL = os.environ.get(
    "TUNECACHE_INSTANCES_URL",
    "https://piped-instances.kavin.rocks/",
)
FALLBACK_PROVIDER_URL = os.environ.get(
    "TUNECACHE_FALLBACK_PROVIDER",
    "https://pipedapi.kavin.rocks",
).rstrip("/")
EXTRA_PROVIDERS = _parse_named_endpoints(
    _env_list("TUNECACHE_EXTRA_PROVIDERS", ("wireway.ch=https://pipedapi.wireway.ch",))
)
EXCLUDED_PROVIDER_NAMES = frozenset(
    _env_list(
        "TUNECACHE_EXCLUDED_PROVIDERS",
        (
            "adminforge.de",
            "ehwurscht.at",
            "ggtyler.dev",
            "phoenixthrush.com",
            "piped.yt",
            "private.coffee",
            "privacydev.net",
            "projectsegfau.lt",
        ),
    )
)
# Endpoints hosted by the registry itself are rate limited; never select them from the list.
EXCLUDED_PROVIDER_HOST_MARKER = "kavin.rocks"

PROVIDER_TIMEOUT_SECONDS = _env_float("TUNECACHE_PROVIDER_TIMEOUT_SECONDS", 5.0)
PROBE_TIMEOUT_SECONDS = _env_float("TUNECACHE_PROBE_TIMEOUT_SECONDS", 5.0)
MAX_PARALLEL_PROBES = 16
PROVIDER_REFRESH_MINUTES = _env_int("TUNECACHE_PROVIDER_REFRESH_MINUTES", 60)

HTTP_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/129.0.0.0 Safari/537.36"
)

CORS_ORIGINS = _env_list("TUNECACHE_CORS_ORIGINS", ("http://localhost:3000",))

THUMBNAIL_TIMEOUT_SECONDS = _env_float("TUNECACHE_THUMBNAIL_TIMEOUT_SECONDS", 10.0)

SPOTIFY_CLIENT_ID = os.environ.get("SPOTIFY_CLIENT_ID")
SPOTIFY_CLIENT_SECRET = os.environ.get("SPOTIFY_CLIENT_SECRET")
SPOTIFY_TIMEOUT_SECONDS = _env_int("TUNECACHE_SPOTIFY_TIMEOUT_SECONDS", 20)
SPOTIFY_SEARCH_LIMIT = _env_int("TUNECACHE_SPOTIFY_SEARCH_LIMIT", 20)
