import json
import logging
import threading
from pathlib import Path
from typing import Any, Callable

logger = logging.getLogger(__name__)


class JsonDocument:
    """A dict persisted whole-file as JSON, rewritten on every mutation.

    Every read-modify-persist sequence runs under ``lock`` so two concurrent
    updates of the same document cannot lose each other's writes.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self.lock = threading.RLock()
        self._data: dict[str, Any] = {}
        self._loaded = False

    @property
    def path(self) -> Path:
        return self._path

    def _load_locked(self) -> None:
        if self._loaded:
            return
        self._loaded = True
        try:
            if self._path.exists():
                payload = json.loads(self._path.read_text(encoding="utf-8"))
                if isinstance(payload, dict):
                    self._data = payload
        except Exception:
            logger.warning("Ignoring unreadable JSON document path=%s", self._path)
            self._data = {}

    def _persist_locked(self) -> bool:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self._path.with_suffix(f"{self._path.suffix}.tmp")
            tmp_path.write_text(json.dumps(self._data, ensure_ascii=False, separators=(",", ":")), encoding="utf-8")
            tmp_path.replace(self._path)
        except OSError:
            # The in-memory document stays authoritative for this process.
            logger.exception("Failed to persist JSON document path=%s", self._path)
            return False
        return True

    def get(self, key: str, default: Any = None) -> Any:
        with self.lock:
            self._load_locked()
            return self._data.get(key, default)

    def update(self, key: str, mutate: Callable[[Any], Any]) -> Any:
        """Apply ``mutate`` to the current value of ``key``, store and persist the result."""
        with self.lock:
            self._load_locked()
            value = mutate(self._data.get(key))
            self._data[key] = value
            self._persist_locked()
            return value

    def set(self, key: str, value: Any) -> None:
        with self.lock:
            self._load_locked()
            self._data[key] = value
            self._persist_locked()
