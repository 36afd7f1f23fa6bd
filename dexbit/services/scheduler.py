"""News digest scheduler: a daily market news email per registered user.

Runs on APScheduler's AsyncIOScheduler inside the app's event loop. The one
cron job fires at ``settings.DIGEST_HOUR``:00 America/New_York every day and
mails each user the top headlines plus a couple of stories for the first few
symbols on their watchlist.

Runs (scheduled or manual) are recorded in ``scheduler_runs``.
"""

from __future__ import annotations

import uuid
from contextlib import contextmanager
from datetime import date, datetime, timezone
from typing import Iterator

from apscheduler.job import Job
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from dexbit.collectors.finnhub_client import MarketDataClient
from dexbit.config import settings
from dexbit.database import get_db
from dexbit.models.market_data import NewsArticle
from dexbit.services.auth_service import AuthService
from dexbit.services.email_service import EmailService
from dexbit.services.watchlist_service import WatchlistService
from dexbit.utils.logger import logger

_ET = "America/New_York"

DIGEST_JOB_ID = "daily_news_summary"
HEADLINES_PER_DIGEST = 6
SYMBOLS_PER_DIGEST = 3
ARTICLES_PER_SYMBOL = 2


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class _RunRecord:
    """Outcome of one job run, filled in by the job body."""

    def __init__(self, run_id: str) -> None:
        self.run_id = run_id
        self.summary = ""


@contextmanager
def _recorded_run(job_name: str) -> Iterator[_RunRecord]:
    """Insert a 'running' row, then close it as success or error.

    A failing job body is recorded and logged here and does not propagate
    into APScheduler.
    """
    record = _RunRecord(uuid.uuid4().hex[:8])
    db = get_db()
    db.execute(
        "INSERT INTO scheduler_runs (id, job_name, started_at, status) VALUES (?, ?, ?, 'running')",
        [record.run_id, job_name, _utcnow()],
    )
    status, error = "success", ""
    try:
        yield record
    except Exception as e:
        status, error = "error", str(e)
        logger.exception("[Scheduler] %s failed (run=%s)", job_name, record.run_id)
    db.execute(
        "UPDATE scheduler_runs SET completed_at = ?, status = ?, summary = ?, error = ? WHERE id = ?",
        [_utcnow(), status, record.summary, error, record.run_id],
    )


def _describe(job: Job) -> dict:
    next_run = job.next_run_time
    return {
        "id": job.id,
        "name": job.name,
        "next_run": next_run.isoformat() if next_run else None,
        "next_run_human": next_run.strftime("%I:%M %p ET") if next_run else "-",
    }


class NewsDigestScheduler:
    """Owns the daily news summary schedule."""

    def __init__(
        self,
        market_data: MarketDataClient,
        auth: AuthService,
        watchlists: WatchlistService,
        email: EmailService,
    ) -> None:
        self._market_data = market_data
        self._auth = auth
        self._watchlists = watchlists
        self._email = email
        self._scheduler: AsyncIOScheduler | None = None

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None

    # ── Lifecycle ─────────────────────────────────────────────────

    def start(self) -> dict:
        if self._scheduler is not None:
            return {"status": "already_running"}

        scheduler = AsyncIOScheduler(timezone=_ET)
        scheduler.add_job(
            self._daily_news_summary,
            CronTrigger(hour=settings.DIGEST_HOUR, minute=0, timezone=_ET),
            id=DIGEST_JOB_ID,
            name="Daily News Summary",
            replace_existing=True,
        )
        scheduler.start()
        self._scheduler = scheduler
        logger.info("[Scheduler] Started, digest at %02d:00 ET", settings.DIGEST_HOUR)
        return {"status": "started", "jobs": len(scheduler.get_jobs())}

    def stop(self) -> dict:
        if self._scheduler is None:
            return {"status": "not_running"}
        self._scheduler.shutdown(wait=False)
        self._scheduler = None
        logger.info("[Scheduler] Stopped")
        return {"status": "stopped"}

    # ── Status & history ──────────────────────────────────────────

    def get_status(self) -> dict:
        jobs = [_describe(j) for j in self._scheduler.get_jobs()] if self._scheduler else []
        return {
            "is_running": self.is_running,
            "jobs": jobs,
            "job_count": len(jobs),
            "email_configured": self._email.is_configured(),
        }

    @staticmethod
    def get_history(limit: int = 20) -> list[dict]:
        """Most recent runs first."""
        cursor = get_db().execute(
            "SELECT id, job_name, started_at, completed_at, status, summary, error "
            "FROM scheduler_runs ORDER BY started_at DESC LIMIT ?",
            [limit],
        )
        columns = [c[0] for c in cursor.description]
        runs = []
        for row in cursor.fetchall():
            run = dict(zip(columns, row))
            for key in ("started_at", "completed_at"):
                run[key] = str(run[key]) if run[key] else None
            runs.append(run)
        return runs

    async def run_job(self, job_name: str) -> dict:
        """Run a job now, outside its schedule."""
        if job_name != DIGEST_JOB_ID:
            return {"error": f"Unknown job: {job_name}"}
        await self._daily_news_summary()
        return {"status": "completed", "job": job_name}

    # ── Digest ────────────────────────────────────────────────────

    async def _daily_news_summary(self) -> None:
        with _recorded_run(DIGEST_JOB_ID) as run:
            trending = await self._market_data.get_trending_news()
            headlines = trending[:HEADLINES_PER_DIGEST]
            today = date.today().strftime("%B %d, %Y")

            users = self._auth.list_users()
            sent = 0
            for user in users:
                sections = await self.build_sections(user.uid, headlines)
                if not sections:
                    continue
                content = self._email.render_news_content(sections)
                if await self._email.send_news_summary_email(user.email, today, content):
                    sent += 1

            run.summary = f"Digest sent to {sent} of {len(users)} users."
            logger.info("[Scheduler] Daily news summary: %s", run.summary)

    async def build_sections(self, uid: str, headlines: list[NewsArticle]) -> list[dict]:
        """Market headlines followed by news on the user's first few symbols."""
        sections: list[dict] = []
        if headlines:
            sections.append({"title": "Market Headlines", "articles": headlines})

        symbols = await self._watchlists.get_user_symbols(uid)
        for symbol in symbols[:SYMBOLS_PER_DIGEST]:
            articles = await self._market_data.get_company_news(symbol)
            if articles:
                sections.append({"title": symbol, "articles": articles[:ARTICLES_PER_SYMBOL]})
        return sections
