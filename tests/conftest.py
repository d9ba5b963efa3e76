import sys
from pathlib import Path

import pytest


# Ensure tests can import project packages regardless of how pytest is invoked.
ROOT = Path(__file__).resolve().parents[1]
ROOT_STR = str(ROOT)
if ROOT_STR not in sys.path:
    sys.path.insert(0, ROOT_STR)


@pytest.fixture
def engine_paths(tmp_path):
    from engine.paths import build_engine_paths

    return build_engine_paths(cache_dir=tmp_path / "cache")


@pytest.fixture
def cache_store(engine_paths):
    from media.cache_store import CacheStore

    return CacheStore(engine_paths)
