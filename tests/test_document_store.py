"""Tests for the DuckDB-backed document store.

Each test gets an isolated in-memory database (``memory_db`` fixture).
"""

from __future__ import annotations

import asyncio

import pytest

from dexbit.db.document_store import (
    SERVER_TIMESTAMP,
    DocumentStore,
    OrderBy,
    QueryOptions,
    WhereCondition,
)


def _run(coro):
    return asyncio.run(coro)


class TestCrud:
    def test_add_assigns_id_and_get_returns_it(self, memory_db) -> None:
        store = DocumentStore(memory_db)
        doc_id = _run(store.add("things", {"name": "a"}))
        assert doc_id
        doc = _run(store.get("things", doc_id))
        assert doc == {"id": doc_id, "name": "a"}

    def test_server_timestamp_is_resolved(self, memory_db) -> None:
        store = DocumentStore(memory_db)
        doc_id = _run(store.add("things", {"at": SERVER_TIMESTAMP}))
        doc = _run(store.get("things", doc_id))
        assert isinstance(doc["at"], str)
        assert doc["at"].endswith("+00:00")

    def test_get_missing_returns_none(self, memory_db) -> None:
        store = DocumentStore(memory_db)
        assert _run(store.get("things", "nope")) is None
        assert _run(store.exists("things", "nope")) is False

    def test_set_overwrites_and_merges(self, memory_db) -> None:
        store = DocumentStore(memory_db)
        _run(store.set("users", "u1", {"a": 1, "b": 2}))
        _run(store.set("users", "u1", {"b": 3}, merge=True))
        assert _run(store.get("users", "u1")) == {"id": "u1", "a": 1, "b": 3}
        _run(store.set("users", "u1", {"c": 4}))
        assert _run(store.get("users", "u1")) == {"id": "u1", "c": 4}

    def test_update_merges_fields(self, memory_db) -> None:
        store = DocumentStore(memory_db)
        _run(store.set("users", "u1", {"a": 1}))
        _run(store.update("users", "u1", {"b": 2}))
        assert _run(store.get("users", "u1")) == {"id": "u1", "a": 1, "b": 2}

    def test_update_missing_raises_key_error(self, memory_db) -> None:
        store = DocumentStore(memory_db)
        with pytest.raises(KeyError):
            _run(store.update("users", "ghost", {"a": 1}))

    def test_delete(self, memory_db) -> None:
        store = DocumentStore(memory_db)
        doc_id = _run(store.add("things", {"x": 1}))
        _run(store.delete("things", doc_id))
        assert _run(store.get("things", doc_id)) is None

    def test_collections_are_isolated(self, memory_db) -> None:
        store = DocumentStore(memory_db)
        _run(store.set("a", "same", {"v": 1}))
        _run(store.set("b", "same", {"v": 2}))
        assert _run(store.get("a", "same"))["v"] == 1
        assert _run(store.get("b", "same"))["v"] == 2


class TestQueries:
    def _seed(self, store: DocumentStore) -> None:
        rows = [
            {"userId": "u1", "symbol": "AAPL", "rank": 3},
            {"userId": "u1", "symbol": "MSFT", "rank": 1},
            {"userId": "u2", "symbol": "AAPL", "rank": 2},
            {"userId": "u1", "symbol": "TSLA"},
        ]
        for row in rows:
            _run(store.add("watchlists", row))

    def test_equality_filter(self, memory_db) -> None:
        store = DocumentStore(memory_db)
        self._seed(store)
        opts = QueryOptions(where=[WhereCondition(field="userId", value="u1")])
        docs = _run(store.query("watchlists", opts))
        assert {d["symbol"] for d in docs} == {"AAPL", "MSFT", "TSLA"}

    def test_combined_filters(self, memory_db) -> None:
        store = DocumentStore(memory_db)
        self._seed(store)
        opts = QueryOptions(
            where=[
                WhereCondition(field="userId", value="u1"),
                WhereCondition(field="symbol", value="AAPL"),
            ]
        )
        assert _run(store.count("watchlists", opts)) == 1

    def test_range_and_in_operators(self, memory_db) -> None:
        store = DocumentStore(memory_db)
        self._seed(store)
        ranked = QueryOptions(where=[WhereCondition(field="rank", op=">=", value=2)])
        assert _run(store.count("watchlists", ranked)) == 2
        in_opts = QueryOptions(
            where=[WhereCondition(field="symbol", op="in", value=["MSFT", "TSLA"])]
        )
        assert _run(store.count("watchlists", in_opts)) == 2

    def test_missing_field_never_matches(self, memory_db) -> None:
        store = DocumentStore(memory_db)
        self._seed(store)
        opts = QueryOptions(where=[WhereCondition(field="rank", op="!=", value=99)])
        # TSLA has no rank field
        assert _run(store.count("watchlists", opts)) == 3

    def test_order_and_limit(self, memory_db) -> None:
        store = DocumentStore(memory_db)
        self._seed(store)
        opts = QueryOptions(order_by=[OrderBy(field="rank", direction="desc")], limit=2)
        docs = _run(store.query("watchlists", opts))
        assert [d["rank"] for d in docs] == [3, 2]

    def test_invalid_field_name_rejected(self, memory_db) -> None:
        store = DocumentStore(memory_db)
        opts = QueryOptions(where=[WhereCondition(field="a'; DROP", value="x")])
        with pytest.raises(ValueError):
            _run(store.query("watchlists", opts))

    def test_unknown_operator_rejected(self, memory_db) -> None:
        store = DocumentStore(memory_db)
        opts = QueryOptions(where=[WhereCondition(field="rank", op="~", value=1)])
        with pytest.raises(ValueError):
            _run(store.query("watchlists", opts))

    def test_delete_by_query_returns_count(self, memory_db) -> None:
        store = DocumentStore(memory_db)
        self._seed(store)
        opts = QueryOptions(where=[WhereCondition(field="userId", value="u1")])
        assert _run(store.delete_by_query("watchlists", opts)) == 3
        assert _run(store.count("watchlists")) == 1


class TestSubscriptions:
    def test_initial_snapshot_and_updates(self, memory_db) -> None:
        store = DocumentStore(memory_db)
        snapshots: list[list[dict]] = []
        opts = QueryOptions(where=[WhereCondition(field="userId", value="u1")])
        unsubscribe = store.subscribe("watchlists", opts, snapshots.append)

        assert snapshots == [[]]
        _run(store.add("watchlists", {"userId": "u1", "symbol": "AAPL"}))
        _run(store.add("watchlists", {"userId": "u1", "symbol": "MSFT"}))
        assert [len(s) for s in snapshots] == [0, 1, 2]

        unsubscribe()
        _run(store.add("watchlists", {"userId": "u1", "symbol": "TSLA"}))
        assert len(snapshots) == 3
        assert store.listener_count == 0

    def test_writes_only_reach_matching_listeners(self, memory_db) -> None:
        """A write for one user does not re-run another user's query."""
        store = DocumentStore(memory_db)
        seen: dict[str, int] = {"u1": 0, "u2": 0}

        def listen(uid: str) -> None:
            opts = QueryOptions(where=[WhereCondition(field="userId", value=uid)])
            store.subscribe("watchlists", opts, lambda _d: seen.__setitem__(uid, seen[uid] + 1))

        listen("u1")
        listen("u2")
        assert seen == {"u1": 1, "u2": 1}

        doc_id = _run(store.add("watchlists", {"userId": "u1", "symbol": "AAPL"}))
        assert seen == {"u1": 2, "u2": 1}

        opts = QueryOptions(where=[WhereCondition(field="userId", value="u1")])
        _run(store.delete_by_query("watchlists", opts))
        assert seen == {"u1": 3, "u2": 1}
        assert _run(store.exists("watchlists", doc_id)) is False

    def test_update_moving_a_document_notifies_both_sides(self, memory_db) -> None:
        store = DocumentStore(memory_db)
        snapshots: dict[str, list[int]] = {"u1": [], "u2": []}
        for uid in ("u1", "u2"):
            opts = QueryOptions(where=[WhereCondition(field="userId", value=uid)])
            store.subscribe("watchlists", opts, lambda d, u=uid: snapshots[u].append(len(d)))

        doc_id = _run(store.add("watchlists", {"userId": "u1", "symbol": "AAPL"}))
        _run(store.update("watchlists", doc_id, {"userId": "u2"}))

        assert snapshots["u1"] == [0, 1, 0]
        assert snapshots["u2"] == [0, 1]

    def test_unfiltered_listener_sees_every_write(self, memory_db) -> None:
        store = DocumentStore(memory_db)
        snapshots: list = []
        store.subscribe("watchlists", None, snapshots.append)
        _run(store.add("watchlists", {"userId": "u1"}))
        _run(store.add("watchlists", {"userId": "u2"}))
        assert [len(s) for s in snapshots] == [0, 1, 2]

    def test_other_collections_do_not_notify(self, memory_db) -> None:
        store = DocumentStore(memory_db)
        snapshots: list = []
        store.subscribe("watchlists", None, snapshots.append)
        _run(store.set("users", "u1", {"a": 1}))
        assert len(snapshots) == 1

    def test_callback_errors_are_contained(self, memory_db) -> None:
        store = DocumentStore(memory_db)

        def boom(_docs: list) -> None:
            raise RuntimeError("listener failed")

        store.subscribe("watchlists", None, boom)
        doc_id = _run(store.add("watchlists", {"userId": "u1"}))
        assert _run(store.exists("watchlists", doc_id)) is True

    def test_query_error_goes_to_on_error(self, memory_db) -> None:
        store = DocumentStore(memory_db)
        errors: list[Exception] = []
        store.subscribe("watchlists", None, lambda d: None, errors.append)
        memory_db.execute("DROP TABLE documents")
        store._notify("watchlists")
        assert len(errors) == 1
