"""On-disk audio cache layout keyed by (track identifier, quality tier)."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from urllib.parse import quote

from engine.paths import COMPRESSED_DIRNAME, LOSSLESS_DIRNAME, EnginePaths

logger = logging.getLogger(__name__)


class Tier(str, Enum):
    COMPRESSED = "compressed"
    LOSSLESS = "lossless"

    @classmethod
    def parse(cls, value: str | None) -> "Tier | None":
        """Return the tier named by ``value`` or ``None`` when it is not a known tier."""
        try:
            return cls(str(value or "").strip().lower())
        except ValueError:
            return None


@dataclass(frozen=True)
class TierFormat:
    dirname: str
    extension: str
    codec: str
    mime_type: str


TIER_FORMATS: dict[Tier, TierFormat] = {
    Tier.COMPRESSED: TierFormat(dirname=COMPRESSED_DIRNAME, extension="mp3", codec="mp3", mime_type="audio/mpeg"),
    Tier.LOSSLESS: TierFormat(dirname=LOSSLESS_DIRNAME, extension="flac", codec="flac", mime_type="audio/flac"),
}


@dataclass(frozen=True)
class TrackKey:
    identifier: str
    tier: Tier

    def __str__(self) -> str:
        return f"{self.tier.value}:{self.identifier}"


def encode_identifier(identifier: str) -> str:
    """Turn an opaque identifier into a single, collision-free file name stem.

    Percent-encoding with no safe characters keeps path separators out of the
    name and maps distinct identifiers to distinct stems.
    """
    return quote(str(identifier), safe="")


# Bytes most filesystems allow in one file name.
MAX_FILENAME_BYTES = 255
# Longest suffix a cache file name can carry, staging suffix included.
_LONGEST_SUFFIX = ".flac.part"


def identifier_fits(identifier: str) -> bool:
    """True when every cache file name derived from ``identifier`` stays within ``MAX_FILENAME_BYTES``."""
    return len(encode_identifier(identifier)) + len(_LONGEST_SUFFIX) <= MAX_FILENAME_BYTES


class CacheStore:
    def __init__(self, paths: EnginePaths) -> None:
        self._paths = paths

    def tier_dir(self, tier: Tier) -> Path:
        return self._paths.cache_dir / TIER_FORMATS[tier].dirname

    def resolve_path(self, identifier: str, tier: Tier) -> Path:
        fmt = TIER_FORMATS[tier]
        return self.tier_dir(tier) / f"{encode_identifier(identifier)}.{fmt.extension}"

    def resolve_key(self, key: TrackKey) -> Path:
        return self.resolve_path(key.identifier, key.tier)

    def thumbnail_path(self, identifier: str) -> Path:
        return self._paths.thumbnails_dir / f"{encode_identifier(identifier)}.webp"

    @staticmethod
    def exists(path: Path) -> bool:
        """A cache entry counts only when the file is present and non-empty."""
        try:
            return path.is_file() and path.stat().st_size > 0
        except OSError:
            logger.warning("Cache stat failed path=%s", path)
            return False

    def ensure_directories(self, tier: Tier) -> Path:
        directory = self.tier_dir(tier)
        directory.mkdir(parents=True, exist_ok=True)
        return directory

    @staticmethod
    def mime_type(tier: Tier) -> str:
        return TIER_FORMATS[tier].mime_type
