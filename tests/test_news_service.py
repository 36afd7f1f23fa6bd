"""Tests for news page filtering and sorting."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

from dexbit.models.market_data import NewsArticle
from dexbit.services.news_service import NewsService, filter_articles, sort_articles

ARTICLES = [
    NewsArticle(headline="Fed holds rates", summary="Policy unchanged", source="Reuters", datetime=300),
    NewsArticle(headline="Apple beats on earnings again", summary="iPhone strong", source="CNBC", datetime=100),
    NewsArticle(headline="Oil slips", summary="Crude lower as Fed weighs", source="Bloomberg", datetime=200),
]


class TestFilter:
    def test_matches_headline_summary_and_source(self) -> None:
        assert {a.headline for a in filter_articles(ARTICLES, "fed")} == {
            "Fed holds rates",
            "Oil slips",
        }
        assert [a.source for a in filter_articles(ARTICLES, "CNBC")] == ["CNBC"]

    def test_blank_query_keeps_everything(self) -> None:
        assert len(filter_articles(ARTICLES, "   ")) == 3


class TestSort:
    def test_newest_and_oldest(self) -> None:
        assert [a.datetime for a in sort_articles(ARTICLES, "newest")] == [300, 200, 100]
        assert [a.datetime for a in sort_articles(ARTICLES, "oldest")] == [100, 200, 300]

    def test_relevance_is_longest_headline_first(self) -> None:
        assert sort_articles(ARTICLES, "relevance")[0].headline == "Apple beats on earnings again"

    def test_unknown_sort_falls_back_to_newest(self) -> None:
        assert [a.datetime for a in sort_articles(ARTICLES, "bogus")] == [300, 200, 100]


class TestNewsService:
    def _service(self):
        market = MagicMock()
        market.get_trending_news = AsyncMock(return_value=ARTICLES)
        market.get_general_news = AsyncMock(return_value=ARTICLES[:1])
        return NewsService(market), market

    def test_all_uses_trending(self) -> None:
        service, market = self._service()
        result = asyncio.run(service.get_news("all", "fed", "oldest"))
        market.get_trending_news.assert_awaited_once()
        assert result["total"] == 3
        assert result["count"] == 2
        assert [a.datetime for a in result["articles"]] == [200, 300]

    def test_category_uses_general_news(self) -> None:
        service, market = self._service()
        result = asyncio.run(service.get_news("forex"))
        market.get_general_news.assert_awaited_once_with("forex")
        assert result["count"] == 1
