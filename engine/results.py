"""Search result variants and provider item normalization."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar
from urllib.parse import urlparse

KIND_SONGS = "songs"
KIND_ALBUMS = "albums"
KIND_PLAYLISTS = "playlists"
ALL_KINDS = (KIND_ALBUMS, KIND_PLAYLISTS, KIND_SONGS)

# Provider-side filter value for each result kind.
PROVIDER_FILTERS = {
    KIND_ALBUMS: "music_albums",
    KIND_PLAYLISTS: "music_playlists",
    KIND_SONGS: "music_songs",
}


class IdentifierExtractor:
    """Pull a stable identifier out of a provider item URL.

    Markers are tried in order (playlist marker first, then video marker); the
    value runs to the next ``&``. Without a marker the last path segment is used.
    """

    DEFAULT_MARKERS: ClassVar[tuple[str, ...]] = ("list=", "v=")

    def __init__(self, markers: tuple[str, ...] | None = None) -> None:
        self.markers = tuple(markers) if markers else self.DEFAULT_MARKERS

    def __call__(self, url: str | None) -> str:
        url = str(url or "").strip()
        if not url:
            return ""
        for marker in self.markers:
            if marker in url:
                value = url.split(marker, 1)[1]
                return value.split("&", 1)[0].split("#", 1)[0]
        path = urlparse(url).path if "://" in url else url.split("?", 1)[0]
        return path.rstrip("/").split("/")[-1]


extract_identifier = IdentifierExtractor()


def _text(item: dict[str, Any], key: str) -> str:
    value = item.get(key)
    return value if isinstance(value, str) else ""


def _int(item: dict[str, Any], key: str) -> int:
    value = item.get(key)
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return int(value)
    return 0


@dataclass
class Song:
    id: str
    title: str = ""
    artist: str = ""
    artist_cover: str = ""
    album: str = ""
    cover: str = ""
    duration: int = 0

    kind: ClassVar[str] = KIND_SONGS

    @classmethod
    def from_provider(cls, item: dict[str, Any], identifier: str, *, album: str = "") -> "Song":
        return cls(
            id=identifier,
            title=_text(item, "title"),
            artist=_text(item, "uploaderName"),
            artist_cover=_text(item, "artistCover"),
            album=album,
            cover=_text(item, "thumbnail"),
            duration=_int(item, "duration"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "artist": self.artist,
            "artistCover": self.artist_cover,
            "album": self.album,
            "cover": self.cover,
            "duration": self.duration,
        }


@dataclass
class Album:
    id: str
    name: str = ""
    artist: str = ""
    artist_cover: str = ""
    cover: str = ""
    songs: list[Song] = field(default_factory=list)
    uploader_url: str = ""

    kind: ClassVar[str] = KIND_ALBUMS

    @classmethod
    def from_provider(cls, item: dict[str, Any], identifier: str) -> "Album":
        return cls(
            id=identifier,
            name=_text(item, "name"),
            artist=_text(item, "uploaderName"),
            cover=_text(item, "thumbnail"),
            uploader_url=_text(item, "uploaderUrl"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "artist": self.artist,
            "artistCover": self.artist_cover,
            "cover": self.cover,
            "songs": [song.to_dict() for song in self.songs],
        }


@dataclass
class Playlist:
    id: str
    name: str = ""
    artist: str = ""
    artist_cover: str = ""
    cover: str = ""
    songs: list[Song] = field(default_factory=list)

    kind: ClassVar[str] = KIND_PLAYLISTS

    @classmethod
    def from_provider(cls, item: dict[str, Any], identifier: str) -> "Playlist":
        return cls(
            id=identifier,
            name=_text(item, "name"),
            artist=_text(item, "uploaderName"),
            artist_cover=_text(item, "artistCover"),
            cover=_text(item, "thumbnail"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "artist": self.artist,
            "artistCover": self.artist_cover,
            "cover": self.cover,
            "songs": [song.to_dict() for song in self.songs],
        }


Result = Song | Album | Playlist

_VARIANTS: dict[str, type] = {KIND_SONGS: Song, KIND_ALBUMS: Album, KIND_PLAYLISTS: Playlist}


def normalize_items(
    kind: str,
    items: list[dict[str, Any]],
    extractor: IdentifierExtractor = extract_identifier,
) -> list[Result]:
    """Convert raw provider items of one kind into result variants, in provider order."""
    variant = _VARIANTS[kind]
    results: list[Result] = []
    seen: set[str] = set()
    for item in items:
        if not isinstance(item, dict):
            continue
        identifier = extractor(item.get("url"))
        if not identifier or identifier in seen:
            continue
        seen.add(identifier)
        results.append(variant.from_provider(item, identifier))
    return results


def songs_from_related_streams(
    payload: dict[str, Any],
    *,
    album_name: str = "",
    extractor: IdentifierExtractor = extract_identifier,
) -> list[Song]:
    songs = []
    for stream in payload.get("relatedStreams") or []:
        if not isinstance(stream, dict):
            continue
        identifier = extractor(stream.get("url"))
        if not identifier:
            continue
        songs.append(Song.from_provider(stream, identifier, album=album_name))
    return songs


def serialize_results(results: list[Result]) -> dict[str, dict[str, Any]]:
    """Ordered ``{id: item}`` mapping, the persisted and wire shape of one kind."""
    return {result.id: result.to_dict() for result in results}
