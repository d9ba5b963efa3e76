from .acquisition import AcquisitionCoordinator
from .json_store import JsonDocument
from .paths import EnginePaths, build_engine_paths

__all__ = [
    "AcquisitionCoordinator",
    "EnginePaths",
    "JsonDocument",
    "build_engine_paths",
]
