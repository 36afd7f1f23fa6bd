"""WatchlistStore: the signed-in user's watchlist, kept in sync.

Holds the canonical in-memory view of one user's watchlist and mediates
between the document store (persisted ``watchlists`` records) and the
market-data client (live price overlay).

State lives in a single ``WatchlistState`` snapshot behind a small
get/set/subscribe interface. The ``watchlist`` list and the last price-pass
timestamp are written to local state storage on every change and restored
by ``hydrate()`` before any live subscription is allowed.

Usage:
    store = WatchlistStore(DocumentStore(), MarketDataClient(), storage)
    store.hydrate()
    store.subscribe_to_watchlist(uid)
    await store.add_to_watchlist("aapl", "Apple Inc", uid)
    ...
    store.clear_watchlist()  # on sign-out
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Callable, Coroutine

from pydantic import ValidationError

from dexbit.collectors.finnhub_client import MarketDataClient
from dexbit.config import settings
from dexbit.db.document_store import (
    SERVER_TIMESTAMP,
    DocumentStore,
    OrderBy,
    QueryOptions,
    WhereCondition,
    server_now,
)
from dexbit.models.watchlist import (
    WatchlistItemWithPrice,
    WatchlistState,
    WatchlistSummary,
)
from dexbit.utils.logger import logger
from dexbit.utils.state_storage import LocalStateStorage

WATCHLIST_COLLECTION = "watchlists"
STORE_NAMESPACE = "watchlist-store"

_OVERLAY_FIELDS = ("current_price", "change", "change_percent", "last_updated")

StateListener = Callable[[WatchlistState], None]


def _parse_fetch_time(value: Any) -> datetime | None:
    """Aware UTC datetime from a stored ISO timestamp, or None if unusable."""
    if not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class WatchlistStore:
    """Per-user watchlist state, persistence sync and price enrichment."""

    def __init__(
        self,
        documents: DocumentStore,
        market_data: MarketDataClient,
        storage: LocalStateStorage | None = None,
        refresh_interval_s: int | None = None,
        max_concurrency: int | None = None,
    ) -> None:
        self._documents = documents
        self._market_data = market_data
        self._storage = storage
        self.refresh_interval_s = (
            settings.PRICE_REFRESH_INTERVAL_S
            if refresh_interval_s is None
            else refresh_interval_s
        )
        self._semaphore = asyncio.Semaphore(
            max_concurrency or settings.PRICE_FETCH_CONCURRENCY
        )

        self._state = WatchlistState()
        self._listeners: dict[int, StateListener] = {}
        self._next_listener_id = 0
        self._unsubscribe: Callable[[], None] | None = None
        self._price_pass_running = False
        self._background: set[asyncio.Task] = set()
        # Bumped by clear_watchlist; a pass started before a clear is dropped
        self._generation = 0

    # ── State holder ──────────────────────────────────────────────

    @property
    def state(self) -> WatchlistState:
        return self._state

    @property
    def watchlist(self) -> list[WatchlistItemWithPrice]:
        return self._state.watchlist

    @property
    def is_subscribed(self) -> bool:
        return self._unsubscribe is not None

    def get_state(self) -> WatchlistState:
        return self._state

    def set_state(self, **changes: Any) -> None:
        """Replace the state snapshot, persist, and notify listeners."""
        self._state = self._state.model_copy(update=changes)
        if "watchlist" in changes or "last_price_fetch" in changes:
            self._persist()
        for listener in list(self._listeners.values()):
            listener(self._state)

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register a change listener. Returns a function that removes it."""
        listener_id = self._next_listener_id
        self._next_listener_id += 1
        self._listeners[listener_id] = listener

        def unsubscribe() -> None:
            self._listeners.pop(listener_id, None)

        return unsubscribe

    def clear_error(self) -> None:
        self.set_state(error=None)

    # ── Persistence ───────────────────────────────────────────────

    def hydrate(self) -> None:
        """Restore the persisted watchlist snapshot and mark the store ready."""
        restored: dict[str, Any] = {}
        raw = self._storage.get_item(STORE_NAMESPACE) if self._storage else None
        if isinstance(raw, dict):
            try:
                restored["watchlist"] = [
                    WatchlistItemWithPrice.model_validate(item)
                    for item in raw.get("watchlist") or []
                ]
                last_fetch = raw.get("lastPriceFetch")
                if last_fetch is not None and _parse_fetch_time(last_fetch) is None:
                    logger.warning(
                        "[Watchlist] Ignoring unreadable lastPriceFetch %r", last_fetch
                    )
                    last_fetch = None
                restored["last_price_fetch"] = last_fetch
            except ValidationError as e:
                logger.warning("[Watchlist] Discarding unreadable snapshot: %s", e)
                restored = {}

        self._state = self._state.model_copy(update={**restored, "is_hydrated": True})
        logger.info(
            "[Watchlist] Hydrated %d items", len(self._state.watchlist)
        )
        for listener in list(self._listeners.values()):
            listener(self._state)

    def _persist(self) -> None:
        if self._storage is None:
            return
        self._storage.set_item(
            STORE_NAMESPACE,
            {
                "watchlist": [
                    item.model_dump(mode="json", by_alias=True)
                    for item in self._state.watchlist
                ],
                "lastPriceFetch": self._state.last_price_fetch,
            },
        )

    # ── Write operations ──────────────────────────────────────────

    async def add_to_watchlist(
        self, symbol: str, company_name: str, user_id: str
    ) -> WatchlistItemWithPrice | None:
        """Persist a new watchlist record and overlay its first quote.

        Returns the new item, or None when the symbol is already tracked.
        """
        if not user_id:
            msg = "User ID is required to add to watchlist"
            raise ValueError(msg)
        symbol_upper = symbol.strip().upper()
        if not symbol_upper:
            msg = "Symbol is required"
            raise ValueError(msg)

        self.set_state(is_loading=True, error=None)

        try:
            if self.is_in_watchlist(symbol_upper):
                logger.info(
                    "[Watchlist] op=add symbol=%s user=%s outcome=already_exists",
                    symbol_upper,
                    user_id,
                )
                self.set_state(is_loading=False)
                return None

            record = {
                "userId": user_id,
                "symbol": symbol_upper,
                "companyName": company_name,
                "addedAt": SERVER_TIMESTAMP,
            }
            doc_id = await self._documents.add(WATCHLIST_COLLECTION, record)
            stored = await self._documents.get(WATCHLIST_COLLECTION, doc_id)
            new_item = WatchlistItemWithPrice.model_validate(
                stored or {**record, "id": doc_id, "addedAt": server_now()}
            )

            # A live snapshot may already have delivered the new record
            current = self._state.watchlist
            if not any(item.id == new_item.id for item in current):
                current = [*current, new_item]
            self.set_state(watchlist=current, is_loading=False, error=None)
        except Exception as e:
            self.set_state(error=str(e) or "Failed to add to watchlist", is_loading=False)
            logger.error(
                "[Watchlist] op=add symbol=%s user=%s outcome=error: %s",
                symbol_upper,
                user_id,
                e,
            )
            raise

        try:
            quote = await self._market_data.get_quote(symbol_upper)
            if quote is not None and quote.c is not None:
                self.update_item_price(symbol_upper, quote.c, quote.d, quote.dp)
        except Exception as e:
            logger.warning(
                "[Watchlist] Price for new item %s unavailable: %s", symbol_upper, e
            )

        logger.info(
            "[Watchlist] op=add symbol=%s user=%s outcome=added id=%s",
            symbol_upper,
            user_id,
            new_item.id,
        )
        return self.get_watchlist_item(symbol_upper) or new_item

    async def remove_from_watchlist(self, symbol: str, user_id: str) -> int:
        """Delete every record for (user, symbol). Returns how many went."""
        if not user_id:
            msg = "User ID is required to remove from watchlist"
            raise ValueError(msg)
        symbol_upper = symbol.strip().upper()

        self.set_state(is_loading=True, error=None)

        try:
            deleted = await self._documents.delete_by_query(
                WATCHLIST_COLLECTION,
                QueryOptions(
                    where=[
                        WhereCondition(field="userId", value=user_id),
                        WhereCondition(field="symbol", value=symbol_upper),
                    ]
                ),
            )
            self.set_state(
                watchlist=[i for i in self._state.watchlist if i.symbol != symbol_upper],
                is_loading=False,
                error=None,
            )
        except Exception as e:
            self.set_state(
                error=str(e) or "Failed to remove from watchlist", is_loading=False
            )
            logger.error(
                "[Watchlist] op=remove symbol=%s user=%s outcome=error: %s",
                symbol_upper,
                user_id,
                e,
            )
            raise

        logger.info(
            "[Watchlist] op=remove symbol=%s user=%s outcome=removed count=%d",
            symbol_upper,
            user_id,
            deleted,
        )
        return deleted

    # ── Read / sync operations ────────────────────────────────────

    async def fetch_watchlist(self, user_id: str) -> None:
        """Replace local state from a one-shot query, then refresh prices."""
        if not user_id:
            self.set_state(watchlist=[], is_loading=False)
            return

        self.set_state(is_loading=True, error=None)

        try:
            docs = await self._documents.query(
                WATCHLIST_COLLECTION, self._user_query(user_id)
            )
            self.set_state(
                watchlist=self._from_documents(docs), is_loading=False, error=None
            )
        except Exception as e:
            self.set_state(error=str(e) or "Failed to fetch watchlist", is_loading=False)
            logger.error(
                "[Watchlist] op=fetch user=%s outcome=error: %s", user_id, e
            )
            raise

        logger.info(
            "[Watchlist] op=fetch user=%s outcome=ok count=%d",
            user_id,
            len(self._state.watchlist),
        )
        await self.fetch_prices_for_watchlist()

    def subscribe_to_watchlist(self, user_id: str) -> None:
        """Start (or restart) the live query on this user's records."""
        if not self._state.is_hydrated:
            msg = "Watchlist store must be hydrated before subscribing"
            raise RuntimeError(msg)

        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

        if not user_id:
            self.set_state(watchlist=[])
            return

        def on_data(docs: list[dict]) -> None:
            self.set_state(watchlist=self._from_documents(docs), error=None)
            self._spawn(self.fetch_prices_for_watchlist())

        def on_error(error: Exception) -> None:
            logger.error(
                "[Watchlist] Subscription error for user=%s: %s", user_id, error
            )
            self.set_state(error="Real-time updates failed")

        try:
            self._unsubscribe = self._documents.subscribe(
                WATCHLIST_COLLECTION, self._user_query(user_id), on_data, on_error
            )
        except Exception as e:
            logger.error(
                "[Watchlist] op=subscribe user=%s outcome=error: %s", user_id, e
            )
            self.set_state(error="Failed to set up real-time updates")
            return

        logger.info("[Watchlist] op=subscribe user=%s outcome=subscribed", user_id)

    def unsubscribe_from_watchlist(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
            logger.info("[Watchlist] op=unsubscribe outcome=unsubscribed")

    # ── Price operations ──────────────────────────────────────────

    async def fetch_prices_for_watchlist(self) -> bool:
        """Overlay fresh quotes on every item. True if a pass actually ran.

        Skipped when the last pass finished less than ``refresh_interval_s``
        ago, when the list is empty, or while another pass is in flight.
        """
        state = self._state
        last = _parse_fetch_time(state.last_price_fetch)
        if last is not None:
            elapsed = (datetime.now(timezone.utc) - last).total_seconds()
            if elapsed < self.refresh_interval_s:
                return False

        if not state.watchlist or self._price_pass_running:
            return False

        generation = self._generation
        self._price_pass_running = True
        try:
            symbols = [item.symbol for item in state.watchlist]
            results = await asyncio.gather(
                *[self._fetch_price(symbol) for symbol in symbols]
            )
        finally:
            self._price_pass_running = False

        if generation != self._generation:
            logger.info("[Watchlist] op=prices outcome=discarded (store cleared)")
            return False

        now = datetime.now(timezone.utc).isoformat()
        prices = {r["symbol"]: r for r in results if r is not None}

        # Merge onto whatever the list looks like now; items removed while
        # the quotes were in flight are simply not found.
        updated = [
            item.model_copy(
                update={
                    "current_price": prices[item.symbol]["current_price"],
                    "change": prices[item.symbol]["change"],
                    "change_percent": prices[item.symbol]["change_percent"],
                    "last_updated": now,
                }
            )
            if item.symbol in prices
            else item
            for item in self._state.watchlist
        ]
        self.set_state(watchlist=updated, last_price_fetch=now)

        logger.info(
            "[Watchlist] op=prices outcome=updated priced=%d of %d",
            len(prices),
            len(symbols),
        )
        return True

    async def _fetch_price(self, symbol: str) -> dict | None:
        async with self._semaphore:
            try:
                quote = await self._market_data.get_quote(symbol)
            except Exception as e:
                logger.warning("[Watchlist] Failed to fetch price for %s: %s", symbol, e)
                return None
        if quote is None or quote.c is None:
            return None
        return {
            "symbol": symbol,
            "current_price": quote.c,
            "change": quote.d,
            "change_percent": quote.dp,
        }

    def update_item_price(
        self,
        symbol: str,
        price: float,
        change: float | None = None,
        change_percent: float | None = None,
    ) -> None:
        """Overlay a price on one symbol right away."""
        symbol_upper = symbol.strip().upper()
        now = datetime.now(timezone.utc).isoformat()
        self.set_state(
            watchlist=[
                item.model_copy(
                    update={
                        "current_price": price,
                        "change": change,
                        "change_percent": change_percent,
                        "last_updated": now,
                    }
                )
                if item.symbol == symbol_upper
                else item
                for item in self._state.watchlist
            ]
        )

    # ── Utility ───────────────────────────────────────────────────

    def is_in_watchlist(self, symbol: str) -> bool:
        return self.get_watchlist_item(symbol) is not None

    def get_watchlist_item(self, symbol: str) -> WatchlistItemWithPrice | None:
        symbol_upper = symbol.strip().upper()
        for item in self._state.watchlist:
            if item.symbol == symbol_upper:
                return item
        return None

    def get_summary(self) -> WatchlistSummary:
        """Aggregate stats for the watchlist header."""
        items = self._state.watchlist
        priced = [i for i in items if i.has_price]
        movers = [i for i in priced if i.change_percent is not None]
        top = max(movers, key=lambda i: abs(i.change_percent or 0.0), default=None)
        return WatchlistSummary(
            total=len(items),
            priced=len(priced),
            gainers=sum(1 for i in movers if (i.change_percent or 0.0) > 0),
            losers=sum(1 for i in movers if (i.change_percent or 0.0) < 0),
            last_price_fetch=self._state.last_price_fetch,
            top_mover=(
                {"symbol": top.symbol, "change_percent": top.change_percent}
                if top
                else {}
            ),
        )

    def clear_watchlist(self) -> None:
        """Drop the live subscription and reset all state (sign-out)."""
        if self._unsubscribe is not None:
            self._unsubscribe()
        self._unsubscribe = None
        self._generation += 1
        for task in list(self._background):
            task.cancel()
        self.set_state(watchlist=[], error=None, last_price_fetch=None, is_loading=False)
        logger.info("[Watchlist] op=clear outcome=cleared")

    # ── Private helpers ───────────────────────────────────────────

    @staticmethod
    def _user_query(user_id: str) -> QueryOptions:
        return QueryOptions(
            where=[WhereCondition(field="userId", value=user_id)],
            order_by=[OrderBy(field="addedAt", direction="desc")],
        )

    def _from_documents(self, docs: list[dict]) -> list[WatchlistItemWithPrice]:
        """Map records to items, keeping the price overlay of known symbols."""
        overlay = {
            item.symbol: {f: getattr(item, f) for f in _OVERLAY_FIELDS}
            for item in self._state.watchlist
            if item.has_price
        }
        items: list[WatchlistItemWithPrice] = []
        for doc in docs:
            item = WatchlistItemWithPrice.model_validate(
                {
                    "id": doc["id"],
                    "userId": doc.get("userId", ""),
                    "symbol": doc.get("symbol", ""),
                    "companyName": doc.get("companyName", ""),
                    "addedAt": doc.get("addedAt"),
                }
            )
            if item.symbol in overlay:
                item = item.model_copy(update=overlay[item.symbol])
            items.append(item)
        return items

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        """Run a coroutine in the background, keeping a reference to it."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            logger.debug("[Watchlist] No running loop; price pass skipped")
            return
        task = loop.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def wait_for_background(self) -> None:
        """Await price passes spawned by live snapshots."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
