"""Tests for the JSON-file state storage used by store hydration."""

from __future__ import annotations

from dexbit.utils.state_storage import LocalStateStorage


class TestLocalStateStorage:
    def test_missing_file_reads_none(self, tmp_path) -> None:
        storage = LocalStateStorage(tmp_path / "nope.json")
        assert storage.get_item("watchlist-store") is None

    def test_set_get_remove(self, tmp_path) -> None:
        storage = LocalStateStorage(tmp_path / "state" / "u1.json")
        storage.set_item("watchlist-store", {"watchlist": [], "lastPriceFetch": None})
        storage.set_item("other", 1)

        reopened = LocalStateStorage(tmp_path / "state" / "u1.json")
        assert reopened.get_item("watchlist-store") == {"watchlist": [], "lastPriceFetch": None}

        reopened.remove_item("other")
        assert reopened.get_item("other") is None
        assert reopened.get_item("watchlist-store") is not None

    def test_corrupt_file_is_treated_as_empty(self, tmp_path) -> None:
        path = tmp_path / "u1.json"
        path.write_text("{not json", encoding="utf-8")
        storage = LocalStateStorage(path)
        assert storage.get_item("watchlist-store") is None
        storage.set_item("watchlist-store", {"watchlist": []})
        assert storage.get_item("watchlist-store") == {"watchlist": []}
