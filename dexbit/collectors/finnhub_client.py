"""Finnhub market-data client: quotes, profiles, symbol search, news, crypto.

Uses a module-level shared httpx.AsyncClient for connection pooling; the
watchlist price pass fires one quote request per symbol at once, and they
all share the same pool.

Responses are cached in-process per URL for a revalidation window chosen by
each call (quotes 5 min, profiles 1 h, search 30 min), so repeated page
loads do not burn API quota.

Lookups never raise: a missing API key or a failed request is logged and
returns None / [] so callers can degrade gracefully.
"""

from __future__ import annotations

import asyncio
import time
from datetime import date, timedelta
from typing import Any

import httpx

from dexbit.config import settings
from dexbit.models.market_data import (
    CompanyProfile,
    CryptoTicker,
    NewsArticle,
    Quote,
    StockSearchResult,
)
from dexbit.utils.logger import logger

POPULAR_STOCK_SYMBOLS: list[str] = [
    "AAPL", "MSFT", "GOOGL", "AMZN", "TSLA", "META", "NVDA", "NFLX",
    "ORCL", "CRM", "ADBE", "INTC", "AMD", "PYPL", "UBER", "SHOP",
    "JPM", "V", "MA", "DIS", "KO", "PEP", "WMT", "COST",
]

POPULAR_CRYPTO_SYMBOLS: list[str] = [
    "BINANCE:BTCUSDT", "BINANCE:ETHUSDT", "BINANCE:BNBUSDT",
    "BINANCE:SOLUSDT", "BINANCE:XRPUSDT", "BINANCE:ADAUSDT",
    "BINANCE:DOGEUSDT", "BINANCE:AVAXUSDT", "BINANCE:DOTUSDT",
    "BINANCE:LINKUSDT", "BINANCE:MATICUSDT", "BINANCE:LTCUSDT",
    "BINANCE:TRXUSDT", "BINANCE:ATOMUSDT", "BINANCE:UNIUSDT",
]

NEWS_CATEGORIES: list[str] = ["general", "forex", "crypto", "merger"]

# Revalidation windows (seconds)
QUOTE_TTL = 300
PROFILE_TTL = 3600
SEARCH_TTL = 1800
NEWS_TTL = 300

# Search text and news date ranges are part of the cache key, so the
# cache is bounded: expired entries go first, then the oldest.
CACHE_MAX_ENTRIES = 512

# Shared async HTTP client, created lazily, lives for the app lifecycle.
_shared_client: httpx.AsyncClient | None = None


async def _get_shared_client() -> httpx.AsyncClient:
    """Get or create the shared httpx.AsyncClient."""
    global _shared_client  # noqa: PLW0603
    if _shared_client is None or _shared_client.is_closed:
        _shared_client = httpx.AsyncClient(
            timeout=httpx.Timeout(10.0, connect=5.0),
            limits=httpx.Limits(
                max_connections=20,
                max_keepalive_connections=10,
            ),
        )
    return _shared_client


async def close_shared_client() -> None:
    global _shared_client  # noqa: PLW0603
    if _shared_client is not None and not _shared_client.is_closed:
        await _shared_client.aclose()
    _shared_client = None


class MarketDataClient:
    """Thin async wrapper over the Finnhub REST API."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        cache_max_entries: int = CACHE_MAX_ENTRIES,
    ) -> None:
        self.api_key = settings.FINNHUB_API_KEY if api_key is None else api_key
        self.base_url = (base_url or settings.FINNHUB_BASE_URL).rstrip("/")
        self._http = http_client
        self.cache_max_entries = cache_max_entries
        # key -> (expiry on the monotonic clock, decoded body), oldest first
        self._cache: dict[str, tuple[float, Any]] = {}

    # ── Transport ────────────────────────────────────────────────

    async def fetch_json(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        revalidate_s: int | None = None,
    ) -> Any:
        """GET ``path`` and decode JSON. Raises httpx errors on failure.

        With ``revalidate_s`` the decoded body is reused until the window
        expires.
        """
        query = {**(params or {}), "token": self.api_key}
        url = f"{self.base_url}{path}"
        cache_key = f"{url}?{sorted((k, str(v)) for k, v in query.items())}"

        if revalidate_s:
            cached = self._cache.get(cache_key)
            if cached is not None:
                if cached[0] > time.monotonic():
                    return cached[1]
                del self._cache[cache_key]

        client = self._http or await _get_shared_client()
        resp = await client.get(url, params=query)
        resp.raise_for_status()
        data = resp.json()

        if revalidate_s:
            self._remember(cache_key, data, revalidate_s)
        return data

    def _remember(self, key: str, data: Any, ttl: int) -> None:
        now = time.monotonic()
        self._cache.pop(key, None)
        self._cache[key] = (now + ttl, data)
        if len(self._cache) <= self.cache_max_entries:
            return

        for stale in [k for k, (expiry, _) in self._cache.items() if expiry <= now]:
            del self._cache[stale]
        while len(self._cache) > self.cache_max_entries:
            del self._cache[next(iter(self._cache))]

    @property
    def cache_size(self) -> int:
        return len(self._cache)

    def clear_cache(self) -> None:
        self._cache.clear()

    def _has_key(self, what: str) -> bool:
        if not self.api_key:
            logger.error("[Finnhub] API key is not configured (%s)", what)
            return False
        return True

    # ── Quotes & profiles ────────────────────────────────────────

    async def get_quote(self, symbol: str) -> Quote | None:
        """Latest quote for a symbol, or None when unavailable."""
        if not self._has_key("quote"):
            return None
        try:
            data = await self.fetch_json(
                "/quote", {"symbol": symbol}, revalidate_s=QUOTE_TTL
            )
            return Quote.model_validate(data)
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("[Finnhub] Quote for %s failed: %s", symbol, e)
            return None

    async def get_profile(self, symbol: str) -> CompanyProfile | None:
        if not self._has_key("profile"):
            return None
        try:
            data = await self.fetch_json(
                "/stock/profile2", {"symbol": symbol}, revalidate_s=PROFILE_TTL
            )
            return CompanyProfile.model_validate(data or {})
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("[Finnhub] Profile for %s failed: %s", symbol, e)
            return None

    # ── Search ───────────────────────────────────────────────────

    async def search_stocks(self, query: str | None = None) -> list[StockSearchResult]:
        """Symbol search. An empty query lists popular stocks instead."""
        if not self._has_key("search"):
            return []

        trimmed = (query or "").strip()
        try:
            if not trimmed:
                return await self._popular_stocks()

            data = await self.fetch_json(
                "/search", {"q": trimmed}, revalidate_s=SEARCH_TTL
            )
            raw = data.get("result") if isinstance(data, dict) else None
            results: list[StockSearchResult] = []
            for r in raw if isinstance(raw, list) else []:
                symbol = str(r.get("symbol") or "").upper()
                if not symbol:
                    continue
                results.append(
                    StockSearchResult(
                        symbol=symbol,
                        name=r.get("description") or symbol,
                        exchange=r.get("displaySymbol") or "US",
                        type=r.get("type") or "Stock",
                    )
                )
            return results[:15]
        except (httpx.HTTPError, ValueError) as e:
            logger.error("[Finnhub] Stock search failed for %r: %s", trimmed, e)
            return []

    async def _popular_stocks(self) -> list[StockSearchResult]:
        top = POPULAR_STOCK_SYMBOLS[:10]
        profiles = await asyncio.gather(*[self.get_profile(s) for s in top])

        results: list[StockSearchResult] = []
        for sym, profile in zip(top, profiles):
            name = profile.name or profile.ticker if profile else None
            if not name:
                continue
            results.append(
                StockSearchResult(
                    symbol=sym.upper(),
                    name=name,
                    exchange=profile.exchange or "US",
                    type="Common Stock",
                )
            )
        return results

    # ── News ─────────────────────────────────────────────────────

    async def get_general_news(self, category: str | None = None) -> list[NewsArticle]:
        """Top 20 market news articles for a category (default: general)."""
        if not self._has_key("news"):
            return []
        try:
            data = await self.fetch_json(
                "/news",
                {"category": category or "general"},
                revalidate_s=NEWS_TTL,
            )
            return self._to_articles(data)[:20]
        except (httpx.HTTPError, ValueError) as e:
            logger.error("[Finnhub] General news (%s) failed: %s", category, e)
            return []

    async def get_company_news(
        self,
        symbol: str,
        from_date: str | None = None,
        to_date: str | None = None,
    ) -> list[NewsArticle]:
        """Top 10 articles about one company; defaults to the last 7 days."""
        if not self._has_key("company news"):
            return []
        today = date.today()
        params = {
            "symbol": symbol.upper(),
            "from": from_date or (today - timedelta(days=7)).isoformat(),
            "to": to_date or today.isoformat(),
        }
        try:
            data = await self.fetch_json(
                "/company-news", params, revalidate_s=NEWS_TTL
            )
            return self._to_articles(data)[:10]
        except (httpx.HTTPError, ValueError) as e:
            logger.error("[Finnhub] Company news for %s failed: %s", symbol, e)
            return []

    async def get_trending_news(self) -> list[NewsArticle]:
        """Merge several categories, drop duplicate headlines, newest first."""
        if not self._has_key("trending news"):
            return []

        async def _category(cat: str) -> list[NewsArticle]:
            try:
                data = await self.fetch_json(
                    "/news", {"category": cat}, revalidate_s=NEWS_TTL
                )
                return self._to_articles(data)
            except (httpx.HTTPError, ValueError) as e:
                logger.warning("[Finnhub] News category %s failed: %s", cat, e)
                return []

        batches = await asyncio.gather(*[_category(c) for c in NEWS_CATEGORIES])

        seen: set[str] = set()
        unique: list[NewsArticle] = []
        for article in (a for batch in batches for a in batch):
            if article.headline in seen:
                continue
            seen.add(article.headline)
            unique.append(article)

        unique.sort(key=lambda a: a.datetime or 0, reverse=True)
        return unique[:50]

    @staticmethod
    def _to_articles(data: Any) -> list[NewsArticle]:
        if not isinstance(data, list):
            return []
        return [NewsArticle.model_validate(item) for item in data if isinstance(item, dict)]

    # ── Crypto ───────────────────────────────────────────────────

    async def get_crypto_quote(self, symbol: str) -> Quote | None:
        return await self.get_quote(symbol)

    async def _crypto_tickers(self) -> list[CryptoTicker]:
        quotes = await asyncio.gather(
            *[self.get_crypto_quote(s) for s in POPULAR_CRYPTO_SYMBOLS]
        )
        tickers: list[CryptoTicker] = []
        for symbol, quote in zip(POPULAR_CRYPTO_SYMBOLS, quotes):
            if quote is None or not quote.c:
                continue
            name = symbol.replace("BINANCE:", "").replace("USDT", "")
            tickers.append(
                CryptoTicker(
                    symbol=name,
                    name=name,
                    price=quote.c,
                    change=quote.d or 0.0,
                    change_percent=quote.dp or 0.0,
                    high_24h=quote.h,
                    low_24h=quote.l,
                )
            )
        return tickers

    async def get_top_crypto_gainers(self) -> list[CryptoTicker]:
        if not self._has_key("crypto"):
            return []
        tickers = await self._crypto_tickers()
        return sorted(tickers, key=lambda t: t.change_percent, reverse=True)[:10]

    async def get_top_crypto_losers(self) -> list[CryptoTicker]:
        if not self._has_key("crypto"):
            return []
        tickers = await self._crypto_tickers()
        return sorted(tickers, key=lambda t: t.change_percent)[:10]

    async def get_trending_crypto(self) -> list[CryptoTicker]:
        """Most volatile coins (largest absolute move) first."""
        if not self._has_key("crypto"):
            return []
        tickers = await self._crypto_tickers()
        return sorted(tickers, key=lambda t: abs(t.change_percent), reverse=True)[:15]
