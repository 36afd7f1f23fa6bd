"""Tests for the daily news digest scheduler.

Tests:
  1. NewsDigestScheduler start/stop lifecycle (APScheduler mocked)
  2. The digest job end to end with mocked collaborators
  3. Run history in the scheduler_runs table
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from dexbit.models.market_data import NewsArticle
from dexbit.models.user import SessionUser
from dexbit.services.scheduler import DIGEST_JOB_ID, NewsDigestScheduler


def _make_scheduler(users=None, symbols=None, send_ok=True):
    market = MagicMock()
    market.get_trending_news = AsyncMock(
        return_value=[NewsArticle(headline=f"H{i}", datetime=i) for i in range(10)]
    )
    market.get_company_news = AsyncMock(
        return_value=[NewsArticle(headline="AAPL news"), NewsArticle(headline="more"), NewsArticle(headline="extra")]
    )

    auth = MagicMock()
    auth.list_users.return_value = users if users is not None else [
        SessionUser(uid="u1", email="ada@example.com"),
        SessionUser(uid="u2", email="grace@example.com"),
    ]

    watchlists = MagicMock()
    watchlists.get_user_symbols = AsyncMock(return_value=symbols or [])

    email = MagicMock()
    email.is_configured.return_value = True
    email.render_news_content.return_value = "<p>digest</p>"
    email.send_news_summary_email = AsyncMock(return_value=send_ok)

    return NewsDigestScheduler(market, auth, watchlists, email), market, email


# ──────────────────────────────────────────────────────────────
# Lifecycle
# ──────────────────────────────────────────────────────────────

class TestLifecycle:
    def test_get_status_when_stopped(self) -> None:
        sched, _, _ = _make_scheduler()
        status = sched.get_status()
        assert status["is_running"] is False
        assert status["job_count"] == 0
        assert status["email_configured"] is True

    @pytest.fixture()
    def _mock_apscheduler(self):
        """Patch AsyncIOScheduler so start() doesn't need an event loop."""
        mock_cls = MagicMock()
        mock_instance = MagicMock()
        mock_instance.get_jobs.return_value = []
        mock_cls.return_value = mock_instance
        with patch("dexbit.services.scheduler.AsyncIOScheduler", mock_cls):
            yield mock_instance

    def test_start_registers_digest_job(self, _mock_apscheduler) -> None:
        sched, _, _ = _make_scheduler()
        result = sched.start()
        assert result["status"] == "started"
        assert sched.is_running

        kwargs = _mock_apscheduler.add_job.call_args.kwargs
        assert kwargs["id"] == DIGEST_JOB_ID
        _mock_apscheduler.start.assert_called_once()

        assert sched.stop()["status"] == "stopped"
        assert not sched.is_running

    @pytest.mark.usefixtures("_mock_apscheduler")
    def test_double_start_returns_already(self) -> None:
        sched, _, _ = _make_scheduler()
        sched.start()
        assert sched.start()["status"] == "already_running"
        sched.stop()

    def test_stop_when_not_running(self) -> None:
        sched, _, _ = _make_scheduler()
        assert sched.stop()["status"] == "not_running"


# ──────────────────────────────────────────────────────────────
# Digest job
# ──────────────────────────────────────────────────────────────

class TestDigestJob:
    def test_sends_to_every_user(self) -> None:
        sched, _, email = _make_scheduler()
        result = asyncio.run(sched.run_job(DIGEST_JOB_ID))

        assert result == {"status": "completed", "job": DIGEST_JOB_ID}
        assert email.send_news_summary_email.await_count == 2

        history = sched.get_history()
        assert history[0]["job_name"] == DIGEST_JOB_ID
        assert history[0]["status"] == "success"
        assert "2 of 2" in history[0]["summary"]

    def test_sections_include_watchlist_symbols(self) -> None:
        sched, market, _ = _make_scheduler(symbols=["AAPL", "MSFT", "TSLA", "NVDA"])
        headlines = [NewsArticle(headline="Top")]
        sections = asyncio.run(sched.build_sections("u1", headlines))

        assert [s["title"] for s in sections] == ["Market Headlines", "AAPL", "MSFT", "TSLA"]
        assert len(sections[1]["articles"]) == 2
        assert market.get_company_news.await_count == 3

    def test_failure_is_recorded(self) -> None:
        sched, market, _ = _make_scheduler()
        market.get_trending_news.side_effect = RuntimeError("feed down")
        asyncio.run(sched.run_job(DIGEST_JOB_ID))

        run = sched.get_history()[0]
        assert run["status"] == "error"
        assert "feed down" in run["error"]

    def test_unknown_job(self) -> None:
        sched, _, _ = _make_scheduler()
        result = asyncio.run(sched.run_job("nope"))
        assert "error" in result
