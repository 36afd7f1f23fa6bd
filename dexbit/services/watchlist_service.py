"""Server-side watchlist helpers that work on records directly.

Used where no live store is involved: account deletion and the daily
digest, which reads every user's tracked symbols.
"""

from __future__ import annotations

from dexbit.db.document_store import (
    DocumentStore,
    OrderBy,
    QueryOptions,
    WhereCondition,
)
from dexbit.models.watchlist import WatchlistItem
from dexbit.services.watchlist_store import WATCHLIST_COLLECTION
from dexbit.utils.logger import logger


class WatchlistService:
    def __init__(self, documents: DocumentStore) -> None:
        self._documents = documents

    @staticmethod
    def _for_user(uid: str) -> QueryOptions:
        return QueryOptions(
            where=[WhereCondition(field="userId", value=uid)],
            order_by=[OrderBy(field="addedAt", direction="desc")],
        )

    async def get_user_watchlist(self, uid: str) -> list[WatchlistItem]:
        docs = await self._documents.query(WATCHLIST_COLLECTION, self._for_user(uid))
        return [WatchlistItem.model_validate(d) for d in docs]

    async def get_user_symbols(self, uid: str) -> list[str]:
        return [item.symbol for item in await self.get_user_watchlist(uid)]

    async def get_watchlist_count(self, uid: str) -> int:
        return await self._documents.count(
            WATCHLIST_COLLECTION,
            QueryOptions(where=[WhereCondition(field="userId", value=uid)]),
        )

    async def is_stock_in_watchlist(self, uid: str, symbol: str) -> bool:
        count = await self._documents.count(
            WATCHLIST_COLLECTION,
            QueryOptions(
                where=[
                    WhereCondition(field="userId", value=uid),
                    WhereCondition(field="symbol", value=symbol.strip().upper()),
                ]
            ),
        )
        return count > 0

    async def clear_user_watchlist(self, uid: str) -> int:
        """Delete every watchlist record the user owns."""
        deleted = await self._documents.delete_by_query(
            WATCHLIST_COLLECTION,
            QueryOptions(where=[WhereCondition(field="userId", value=uid)]),
        )
        logger.info(
            "[Watchlist] op=clear_all user=%s outcome=removed count=%d", uid, deleted
        )
        return deleted
