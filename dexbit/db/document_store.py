"""Document store: schemaless collections on top of DuckDB.

Records ("documents") are JSON blobs grouped in named collections and keyed
by an opaque id. Supports equality/range filters, multi-field ordering,
limits, and live query subscriptions: a subscriber receives the full query
result immediately and again after every write to its collection.

Usage:
    store = DocumentStore()
    doc_id = await store.add("watchlists", {"userId": uid, "addedAt": SERVER_TIMESTAMP})
    opts = QueryOptions(where=[WhereCondition(field="userId", value=uid)])
    unsubscribe = store.subscribe("watchlists", opts, on_data=print)
"""

from __future__ import annotations

import json
import operator
import re
import uuid
from datetime import date, datetime, timezone
from typing import Any, Callable, Literal

import duckdb
from pydantic import BaseModel, Field

from dexbit.database import get_db
from dexbit.utils.logger import logger

_FIELD_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

_OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
    "==": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "in": lambda field_value, options: field_value in options,
}

_MISSING = object()


class _ServerTimestamp:
    """Placeholder replaced by the write time when a document is stored."""

    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP = _ServerTimestamp()


def server_now() -> str:
    """Current UTC time as a fixed-width ISO string (sorts lexicographically)."""
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


class WhereCondition(BaseModel):
    field: str
    op: str = "=="
    value: Any = None


class OrderBy(BaseModel):
    field: str
    direction: Literal["asc", "desc"] = "asc"


class QueryOptions(BaseModel):
    """Filters, ordering and limit for a collection query."""

    where: list[WhereCondition] = Field(default_factory=list)
    order_by: list[OrderBy] = Field(default_factory=list)
    limit: int | None = None


class _Listener:
    __slots__ = ("collection", "options", "on_data", "on_error")

    def __init__(
        self,
        collection: str,
        options: QueryOptions,
        on_data: Callable[[list[dict]], None],
        on_error: Callable[[Exception], None] | None,
    ) -> None:
        self.collection = collection
        self.options = options
        self.on_data = on_data
        self.on_error = on_error


class DocumentStore:
    """CRUD, queries and live subscriptions over the ``documents`` table."""

    def __init__(self, conn: duckdb.DuckDBPyConnection | None = None) -> None:
        self._conn = conn
        self._listeners: dict[str, _Listener] = {}

    @property
    def db(self) -> duckdb.DuckDBPyConnection:
        return self._conn if self._conn is not None else get_db()

    # ── Create ────────────────────────────────────────────────────

    async def add(self, collection: str, data: dict[str, Any]) -> str:
        """Insert a document with an auto-generated id and return the id."""
        doc_id = uuid.uuid4().hex
        self.db.execute(
            "INSERT INTO documents (collection, id, data) VALUES (?, ?, ?)",
            [collection, doc_id, self._encode(data)],
        )
        logger.debug("[DocumentStore] add %s/%s", collection, doc_id)
        self._notify(collection, [data])
        return doc_id

    async def set(
        self,
        collection: str,
        doc_id: str,
        data: dict[str, Any],
        merge: bool = False,
    ) -> None:
        """Create or overwrite a document under a caller-chosen id."""
        previous = self._fetch_one(collection, doc_id)
        if merge:
            existing = dict(previous or {})
            existing.pop("id", None)
            data = {**existing, **data}
        self.db.execute(
            """
            INSERT INTO documents (collection, id, data) VALUES (?, ?, ?)
            ON CONFLICT (collection, id) DO UPDATE
            SET data = excluded.data, updated_at = CURRENT_TIMESTAMP
            """,
            [collection, doc_id, self._encode(data)],
        )
        self._notify(collection, [d for d in (previous, data) if d is not None])

    # ── Read ──────────────────────────────────────────────────────

    async def get(self, collection: str, doc_id: str) -> dict | None:
        """Return one document (with its ``id``) or None."""
        return self._fetch_one(collection, doc_id)

    async def exists(self, collection: str, doc_id: str) -> bool:
        return self._fetch_one(collection, doc_id) is not None

    async def query(
        self, collection: str, options: QueryOptions | None = None
    ) -> list[dict]:
        """Run a filtered/ordered query and return matching documents."""
        return self._run_query(collection, options or QueryOptions())

    async def count(
        self, collection: str, options: QueryOptions | None = None
    ) -> int:
        return len(self._run_query(collection, options or QueryOptions()))

    # ── Update ────────────────────────────────────────────────────

    async def update(
        self, collection: str, doc_id: str, data: dict[str, Any]
    ) -> None:
        """Merge fields into an existing document. KeyError if it is missing."""
        existing = self._fetch_one(collection, doc_id)
        if existing is None:
            msg = f"No document {collection}/{doc_id}"
            raise KeyError(msg)
        existing.pop("id", None)
        self.db.execute(
            """
            UPDATE documents SET data = ?, updated_at = CURRENT_TIMESTAMP
            WHERE collection = ? AND id = ?
            """,
            [self._encode({**existing, **data}), collection, doc_id],
        )
        self._notify(collection, [existing, {**existing, **data}])

    # ── Delete ────────────────────────────────────────────────────

    async def delete(self, collection: str, doc_id: str) -> None:
        previous = self._fetch_one(collection, doc_id)
        if previous is None:
            return
        self.db.execute(
            "DELETE FROM documents WHERE collection = ? AND id = ?",
            [collection, doc_id],
        )
        self._notify(collection, [previous])

    async def delete_by_query(
        self, collection: str, options: QueryOptions
    ) -> int:
        """Delete every document matching the query; return how many."""
        docs = self._run_query(collection, options)
        doc_ids = [d["id"] for d in docs]
        if doc_ids:
            self.db.executemany(
                "DELETE FROM documents WHERE collection = ? AND id = ?",
                [[collection, doc_id] for doc_id in doc_ids],
            )
            logger.debug(
                "[DocumentStore] deleted %d from %s", len(doc_ids), collection
            )
            self._notify(collection, docs)
        return len(doc_ids)

    # ── Realtime ──────────────────────────────────────────────────

    def subscribe(
        self,
        collection: str,
        options: QueryOptions | None,
        on_data: Callable[[list[dict]], None],
        on_error: Callable[[Exception], None] | None = None,
    ) -> Callable[[], None]:
        """Listen to a query. Returns a function that removes the listener.

        The current result is delivered before this returns.
        """
        options = options or QueryOptions()
        self._validate(options)
        listener_id = uuid.uuid4().hex[:8]
        listener = _Listener(collection, options, on_data, on_error)
        self._listeners[listener_id] = listener
        logger.debug("[DocumentStore] listener %s on %s", listener_id, collection)
        self._deliver(listener)

        def unsubscribe() -> None:
            if self._listeners.pop(listener_id, None) is not None:
                logger.debug("[DocumentStore] listener %s removed", listener_id)

        return unsubscribe

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def _notify(self, collection: str, touched: list[dict] | None = None) -> None:
        """Re-deliver to listeners on ``collection``.

        With ``touched`` (the before/after images of the written documents),
        only listeners whose equality filters match one of them are re-run.
        """
        for listener in list(self._listeners.values()):
            if listener.collection != collection:
                continue
            if touched is not None and not any(
                self._could_match(listener.options, doc) for doc in touched
            ):
                continue
            self._deliver(listener)

    @classmethod
    def _could_match(cls, options: QueryOptions, doc: dict) -> bool:
        return all(cls._matches(doc, c) for c in options.where if c.op == "==")

    def _deliver(self, listener: _Listener) -> None:
        try:
            docs = self._run_query(listener.collection, listener.options)
        except Exception as e:
            logger.error(
                "[DocumentStore] Query subscription on %s failed: %s",
                listener.collection,
                e,
            )
            if listener.on_error:
                listener.on_error(e)
            return
        try:
            listener.on_data(docs)
        except Exception:
            logger.exception(
                "[DocumentStore] Listener callback on %s raised",
                listener.collection,
            )

    # ── Private helpers ───────────────────────────────────────────

    def _fetch_one(self, collection: str, doc_id: str) -> dict | None:
        row = self.db.execute(
            "SELECT id, data FROM documents WHERE collection = ? AND id = ?",
            [collection, doc_id],
        ).fetchone()
        return self._decode(row) if row else None

    def _run_query(self, collection: str, options: QueryOptions) -> list[dict]:
        self._validate(options)

        # String equality filters are pushed down to DuckDB; everything
        # else is evaluated on the decoded documents.
        sql = "SELECT id, data FROM documents WHERE collection = ?"
        params: list[Any] = [collection]
        for cond in options.where:
            if cond.op == "==" and isinstance(cond.value, str):
                sql += " AND json_extract_string(data, ?) = ?"
                params.extend([f"$.{cond.field}", cond.value])

        docs = [self._decode(r) for r in self.db.execute(sql, params).fetchall()]
        docs = [d for d in docs if all(self._matches(d, c) for c in options.where)]

        for order in reversed(options.order_by):
            # Documents lacking an ordering field are excluded
            docs = [d for d in docs if order.field in d]
            docs.sort(
                key=lambda d, f=order.field: d[f],
                reverse=order.direction == "desc",
            )

        if options.limit is not None:
            docs = docs[: options.limit]
        return docs

    @staticmethod
    def _matches(doc: dict, cond: WhereCondition) -> bool:
        value = doc.get(cond.field, _MISSING)
        if value is _MISSING:
            return False
        try:
            return bool(_OPERATORS[cond.op](value, cond.value))
        except TypeError:
            return False

    @staticmethod
    def _validate(options: QueryOptions) -> None:
        fields = [c.field for c in options.where] + [o.field for o in options.order_by]
        for name in fields:
            if not _FIELD_RE.match(name):
                msg = f"Invalid field name: {name!r}"
                raise ValueError(msg)
        for cond in options.where:
            if cond.op not in _OPERATORS:
                msg = f"Unsupported operator: {cond.op!r}"
                raise ValueError(msg)

    @staticmethod
    def _encode(data: dict[str, Any]) -> str:
        stamp = server_now()
        resolved = {
            k: (stamp if v is SERVER_TIMESTAMP else v) for k, v in data.items()
        }
        resolved.pop("id", None)
        return json.dumps(resolved, default=_json_serial)

    @staticmethod
    def _decode(row: Any) -> dict:
        return {"id": row[0], **json.loads(row[1])}


def _json_serial(obj: object) -> str:
    """JSON serializer for objects not serializable by default."""
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    msg = f"Type {type(obj)} not serializable"
    raise TypeError(msg)
