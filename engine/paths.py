import os
from dataclasses import dataclass
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parent.parent

CACHE_DIR = Path(os.environ.get("TUNECACHE_CACHE_DIR", Path.cwd() / "cache")).resolve()
LOG_DIR = Path(os.environ.get("TUNECACHE_LOG_DIR", CACHE_DIR / "logs")).resolve()

COMPRESSED_DIRNAME = "compressed"
LOSSLESS_DIRNAME = "lossless"
THUMBNAILS_DIRNAME = "thumbnails"
TMP_DIRNAME = "tmp"
SEARCH_CACHE_FILENAME = "search_cache.json"
SEARCH_WEIGHTS_FILENAME = "search_weights.json"
SPOTIFY_CACHE_FILENAME = "spotify_search_cache.json"


@dataclass(frozen=True)
class EnginePaths:
    cache_dir: Path
    log_dir: Path
    compressed_dir: Path
    lossless_dir: Path
    thumbnails_dir: Path
    tmp_dir: Path
    search_cache_path: Path
    search_weights_path: Path
    spotify_cache_path: Path


def ensure_dir(path):
    if path:
        os.makedirs(path, exist_ok=True)


def build_engine_paths(cache_dir=None, log_dir=None):
    root = Path(cache_dir).resolve() if cache_dir else CACHE_DIR
    logs = Path(log_dir).resolve() if log_dir else (LOG_DIR if not cache_dir else root / "logs")
    paths = EnginePaths(
        cache_dir=root,
        log_dir=logs,
        compressed_dir=root / COMPRESSED_DIRNAME,
        lossless_dir=root / LOSSLESS_DIRNAME,
        thumbnails_dir=root / THUMBNAILS_DIRNAME,
        tmp_dir=root / TMP_DIRNAME,
        search_cache_path=root / SEARCH_CACHE_FILENAME,
        search_weights_path=root / SEARCH_WEIGHTS_FILENAME,
        spotify_cache_path=root / SPOTIFY_CACHE_FILENAME,
    )

    # Ensure required directories exist
    for d in (
        paths.cache_dir,
        paths.log_dir,
        paths.compressed_dir,
        paths.lossless_dir,
        paths.thumbnails_dir,
        paths.tmp_dir,
    ):
        ensure_dir(d)

    return paths
