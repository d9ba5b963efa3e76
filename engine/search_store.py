import copy
import time
from pathlib import Path
from typing import Any, Iterable

from engine.json_store import JsonDocument
from engine.results import ALL_KINDS


def normalize_query(query: str | None) -> str:
    return " ".join(str(query or "").split())


def _empty_record() -> dict[str, Any]:
    return {"results": {kind: {} for kind in ALL_KINDS}, "timestamp": 0}


def apply_weights(items: dict[str, Any], weights: dict[str, int]) -> dict[str, Any]:
    """Reorder ``{id: item}`` by descending weight; equal weights keep their order."""
    ordered = sorted(items.items(), key=lambda pair: -int(weights.get(pair[0], 0)))
    return dict(ordered)


class SearchStore:
    """Persisted query records and per-query selection counters."""

    def __init__(self, cache_path: str | Path, weights_path: str | Path) -> None:
        self._records = JsonDocument(cache_path)
        self._weights = JsonDocument(weights_path)

    def get_record(self, query: str) -> dict[str, Any] | None:
        record = self._records.get(normalize_query(query))
        if not isinstance(record, dict):
            return None
        return copy.deepcopy(record)

    def missing_kinds(self, query: str, kinds: Iterable[str]) -> list[str]:
        """Kinds that are absent or empty in the stored record for ``query``."""
        record = self.get_record(query) or _empty_record()
        results = record.get("results") or {}
        return [kind for kind in kinds if not results.get(kind)]

    def merge(self, query: str, fetched: dict[str, dict[str, Any]]) -> dict[str, Any]:
        """Fold freshly fetched kinds into the stored record and persist it.

        Kinds not present in ``fetched`` are left as they are.
        """

        def _mutate(current):
            record = current if isinstance(current, dict) else _empty_record()
            results = record.setdefault("results", {})
            for kind in ALL_KINDS:
                results.setdefault(kind, {})
            for kind, items in fetched.items():
                results[kind] = dict(items)
            record["timestamp"] = int(time.time())
            return record

        return copy.deepcopy(self._records.update(normalize_query(query), _mutate))

    def record_selection(self, query: str, identifier: str) -> int:
        counts: dict[str, int] = {}

        def _mutate(current):
            weights = dict(current) if isinstance(current, dict) else {}
            weights[identifier] = int(weights.get(identifier, 0)) + 1
            counts["value"] = weights[identifier]
            return weights

        self._weights.update(normalize_query(query), _mutate)
        return counts["value"]

    def weights_for(self, query: str) -> dict[str, int]:
        weights = self._weights.get(normalize_query(query))
        return dict(weights) if isinstance(weights, dict) else {}
