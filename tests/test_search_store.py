from __future__ import annotations

import json
import threading

from engine.search_store import SearchStore, apply_weights, normalize_query


def _store(tmp_path) -> SearchStore:
    return SearchStore(tmp_path / "search_cache.json", tmp_path / "search_weights.json")


def test_normalize_query_collapses_whitespace() -> None:
    assert normalize_query("  daft   punk \n") == "daft punk"
    assert normalize_query(None) == ""


def test_merge_adds_kinds_without_replacing_others(tmp_path) -> None:
    store = _store(tmp_path)

    store.merge("q", {"songs": {"s1": {"id": "s1"}}})
    record = store.merge("q", {"albums": {"a1": {"id": "a1"}}})

    assert record["results"]["songs"] == {"s1": {"id": "s1"}}
    assert record["results"]["albums"] == {"a1": {"id": "a1"}}
    assert record["timestamp"] > 0
    persisted = json.loads((tmp_path / "search_cache.json").read_text(encoding="utf-8"))
    assert set(persisted["q"]["results"]) == {"albums", "playlists", "songs"}


def test_missing_kinds_treats_empty_as_missing(tmp_path) -> None:
    store = _store(tmp_path)
    store.merge("q", {"songs": {"s1": {"id": "s1"}}, "albums": {}})

    assert store.missing_kinds("q", ["albums", "songs"]) == ["albums"]
    assert store.missing_kinds("other", ["songs"]) == ["songs"]


def test_record_selection_increments_and_persists(tmp_path) -> None:
    store = _store(tmp_path)

    assert store.record_selection("q", "x") == 1
    assert store.record_selection(" q ", "x") == 2

    reloaded = _store(tmp_path)
    assert reloaded.weights_for("q") == {"x": 2}


def test_concurrent_selections_are_not_lost(tmp_path) -> None:
    store = _store(tmp_path)

    threads = [threading.Thread(target=store.record_selection, args=("q", "x")) for _ in range(20)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert store.weights_for("q") == {"x": 20}


def test_apply_weights_is_stable_descending() -> None:
    items = {"a": {}, "b": {}, "c": {}, "d": {}}

    ordered = apply_weights(items, {"c": 3, "b": 1, "d": 1})

    assert list(ordered) == ["c", "b", "d", "a"]
    assert list(apply_weights(items, {})) == ["a", "b", "c", "d"]


def test_persistence_failure_keeps_in_memory_record(tmp_path, monkeypatch) -> None:
    store = _store(tmp_path)

    def _refuse(self, *args, **kwargs):
        raise OSError("disk full")

    monkeypatch.setattr("pathlib.Path.write_text", _refuse)

    record = store.merge("q", {"songs": {"s1": {"id": "s1"}}})

    assert record["results"]["songs"] == {"s1": {"id": "s1"}}
    assert store.get_record("q")["results"]["songs"] == {"s1": {"id": "s1"}}
    assert not (tmp_path / "search_cache.json").exists()


def test_concurrent_merges_of_different_kinds_keep_both(tmp_path) -> None:
    store = _store(tmp_path)
    barrier = threading.Barrier(2)

    def merge(fetched):
        barrier.wait()
        store.merge("q", fetched)

    threads = [
        threading.Thread(target=merge, args=({"songs": {"s1": {"id": "s1"}}},)),
        threading.Thread(target=merge, args=({"albums": {"a1": {"id": "a1"}}},)),
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    record = store.get_record("q")
    assert record["results"]["songs"] == {"s1": {"id": "s1"}}
    assert record["results"]["albums"] == {"a1": {"id": "a1"}}
    reloaded = _store(tmp_path).get_record("q")
    assert reloaded["results"]["songs"] == {"s1": {"id": "s1"}}
    assert reloaded["results"]["albums"] == {"a1": {"id": "a1"}}
