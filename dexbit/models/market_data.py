"""Market data models: quotes, company profiles, search results, news, crypto.

Quote/profile/news mirror Finnhub's response field names; the rest are the
dashboard's own shapes.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class Quote(BaseModel):
    """Finnhub /quote payload. Every field may be absent."""

    c: float | None = None  # current price
    d: float | None = None  # change
    dp: float | None = None  # change percent
    h: float | None = None  # high
    l: float | None = None  # low  # noqa: E741
    o: float | None = None  # open
    pc: float | None = None  # previous close
    t: int | None = None  # timestamp


class CompanyProfile(BaseModel):
    """Finnhub /stock/profile2 payload."""

    model_config = ConfigDict(extra="ignore")

    name: str | None = None
    ticker: str | None = None
    exchange: str | None = None
    marketCapitalization: float | None = None
    shareOutstanding: float | None = None
    logo: str | None = None
    weburl: str | None = None
    country: str | None = None
    currency: str | None = None
    ipo: str | None = None
    finnhubIndustry: str | None = None


class StockSearchResult(BaseModel):
    """One row of the stock search command palette."""

    model_config = ConfigDict(populate_by_name=True)

    symbol: str
    name: str
    exchange: str = "US"
    type: str = "Stock"
    is_in_watchlist: bool = Field(default=False, alias="isInWatchlist")


class NewsArticle(BaseModel):
    """Finnhub news article (general or company news)."""

    model_config = ConfigDict(extra="ignore")

    id: int | None = None
    category: str = ""
    datetime: int = 0  # unix seconds
    headline: str = ""
    image: str = ""
    related: str = ""
    source: str = ""
    summary: str = ""
    url: str = ""


class CryptoTicker(BaseModel):
    """Crypto row for the gainers / losers / trending lists."""

    model_config = ConfigDict(populate_by_name=True)

    symbol: str
    name: str
    price: float
    change: float = 0.0
    change_percent: float = Field(default=0.0, alias="changePercent")
    high_24h: float | None = Field(default=None, alias="high24h")
    low_24h: float | None = Field(default=None, alias="low24h")
