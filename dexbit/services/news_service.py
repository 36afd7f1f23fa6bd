"""News page backend: pick a feed by category, then filter and sort it."""

from __future__ import annotations

from dexbit.collectors.finnhub_client import MarketDataClient
from dexbit.models.market_data import NewsArticle

NEWS_PAGE_CATEGORIES: list[dict[str, str]] = [
    {"value": "all", "label": "All News"},
    {"value": "general", "label": "General"},
    {"value": "forex", "label": "Forex"},
    {"value": "crypto", "label": "Crypto"},
    {"value": "merger", "label": "M&A"},
]

SORT_OPTIONS: list[dict[str, str]] = [
    {"value": "newest", "label": "Newest First"},
    {"value": "oldest", "label": "Oldest First"},
    {"value": "relevance", "label": "Most Relevant"},
]


def filter_articles(articles: list[NewsArticle], query: str) -> list[NewsArticle]:
    """Case-insensitive match on headline, summary or source."""
    q = query.strip().lower()
    if not q:
        return list(articles)
    return [
        a
        for a in articles
        if q in a.headline.lower() or q in a.summary.lower() or q in a.source.lower()
    ]


def sort_articles(articles: list[NewsArticle], sort_by: str) -> list[NewsArticle]:
    if sort_by == "oldest":
        return sorted(articles, key=lambda a: a.datetime or 0)
    if sort_by == "relevance":
        # Headline length stands in for relevance
        return sorted(articles, key=lambda a: len(a.headline), reverse=True)
    return sorted(articles, key=lambda a: a.datetime or 0, reverse=True)


class NewsService:
    def __init__(self, market_data: MarketDataClient) -> None:
        self._market_data = market_data

    async def get_news(
        self,
        category: str = "all",
        query: str = "",
        sort_by: str = "newest",
    ) -> dict:
        """Articles for the news page plus the counts shown above the list."""
        if category == "all":
            articles = await self._market_data.get_trending_news()
        else:
            articles = await self._market_data.get_general_news(category)

        shown = sort_articles(filter_articles(articles, query), sort_by)
        return {
            "category": category,
            "query": query,
            "sort_by": sort_by,
            "total": len(articles),
            "count": len(shown),
            "articles": shown,
        }
