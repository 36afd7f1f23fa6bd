"""StoreRegistry: one live WatchlistStore per signed-in user.

A store is created on first use, hydrated from the user's state file in
``settings.STATE_DIR`` and subscribed to the user's watchlist records.
Signing out releases it; application shutdown releases them all.

Usage (from main.py):
    registry = StoreRegistry(documents, market_data)
    store = registry.get_store(user.uid)
    ...
    registry.release(user.uid)
"""

from __future__ import annotations

from pathlib import Path

from dexbit.collectors.finnhub_client import MarketDataClient
from dexbit.config import settings
from dexbit.db.document_store import DocumentStore
from dexbit.services.watchlist_store import WatchlistStore
from dexbit.utils.logger import logger
from dexbit.utils.state_storage import LocalStateStorage


class StoreRegistry:
    """Creates, caches and tears down per-user watchlist stores."""

    def __init__(
        self,
        documents: DocumentStore,
        market_data: MarketDataClient,
        state_dir: Path | None = None,
    ) -> None:
        self._documents = documents
        self._market_data = market_data
        self._state_dir = state_dir
        self._stores: dict[str, WatchlistStore] = {}

    def get_store(self, uid: str) -> WatchlistStore:
        """Return the user's store, creating and subscribing it if needed."""
        store = self._stores.get(uid)
        if store is not None:
            return store

        state_dir = self._state_dir or settings.STATE_DIR
        storage = LocalStateStorage(state_dir / f"{uid}.json")
        store = WatchlistStore(self._documents, self._market_data, storage)
        store.hydrate()
        store.subscribe_to_watchlist(uid)
        self._stores[uid] = store
        logger.info("[Registry] Store created for user=%s", uid)
        return store

    def has_store(self, uid: str) -> bool:
        return uid in self._stores

    def release(self, uid: str) -> None:
        """Sign-out: clear the user's store and forget it."""
        store = self._stores.pop(uid, None)
        if store is None:
            return
        store.clear_watchlist()
        logger.info("[Registry] Store released for user=%s", uid)

    def shutdown_all(self) -> None:
        """Drop every live subscription but keep persisted state."""
        for store in self._stores.values():
            store.unsubscribe_from_watchlist()
        count = len(self._stores)
        self._stores.clear()
        logger.info("[Registry] Shut down %d stores", count)

    @property
    def active_users(self) -> list[str]:
        return list(self._stores)
