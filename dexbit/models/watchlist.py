"""Pydantic models for the watchlist.

WatchlistItem           one persisted (user, symbol) tracking record.
WatchlistItemWithPrice  the record plus the client-side price overlay.
WatchlistState          everything the per-user watchlist store holds.
WatchlistSummary        aggregate stats for the watchlist header.

Field aliases are the camelCase names used in stored documents and in the
JSON API.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator


class WatchlistItem(BaseModel):
    """One tracked symbol as stored in the ``watchlists`` collection."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    user_id: str = Field(alias="userId")
    symbol: str
    company_name: str = Field(default="", alias="companyName")
    added_at: datetime | None = Field(default=None, alias="addedAt")

    @field_validator("symbol")
    @classmethod
    def _upper_symbol(cls, v: str) -> str:
        return v.strip().upper()


class WatchlistItemWithPrice(WatchlistItem):
    """Watchlist record plus overlay data that is never written back."""

    current_price: float | None = Field(default=None, alias="currentPrice")
    change: float | None = None
    change_percent: float | None = Field(default=None, alias="changePercent")
    last_updated: str | None = Field(default=None, alias="lastUpdated")

    @property
    def has_price(self) -> bool:
        return self.current_price is not None


class WatchlistState(BaseModel):
    """Snapshot of a watchlist store. Replaced wholesale on every change."""

    watchlist: list[WatchlistItemWithPrice] = Field(default_factory=list)
    is_loading: bool = False
    error: str | None = None
    is_hydrated: bool = False
    last_price_fetch: str | None = None


class WatchlistSummary(BaseModel):
    """Aggregate stats for the watchlist header."""

    total: int = 0
    priced: int = 0
    gainers: int = 0
    losers: int = 0
    last_price_fetch: str | None = None
    top_mover: dict = Field(default_factory=dict)
