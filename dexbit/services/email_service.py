"""EmailService: transactional emails over SMTP.

Bodies are Jinja2 templates under ``dexbit/templates/email/``. Sending uses
``smtplib`` with STARTTLS inside a worker thread so the event loop is never
blocked.

Sends never raise: an unconfigured SMTP setup or a delivery failure is
logged and reported as ``False``.
"""

from __future__ import annotations

import asyncio
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr
from typing import Any

from jinja2 import Environment, FileSystemLoader, select_autoescape

from dexbit.config import settings
from dexbit.utils.logger import logger

WELCOME_SUBJECT = "Welcome to Dexbit - your trading toolkit is ready!"
DEFAULT_WELCOME_INTRO = (
    "Thanks for joining Dexbit! You now have the tools to track markets "
    "and follow the stocks you care about."
)


class EmailService:
    """Render and send the welcome and daily news emails."""

    def __init__(self) -> None:
        self._env = Environment(
            loader=FileSystemLoader(str(settings.TEMPLATES_DIR / "email")),
            autoescape=select_autoescape(["html"]),
        )

    def is_configured(self) -> bool:
        return settings.is_email_configured

    def render(self, template_name: str, **context: Any) -> str:
        return self._env.get_template(template_name).render(**context)

    # ── Transport ────────────────────────────────────────────────

    async def send_email(
        self,
        to_email: str,
        subject: str,
        html_content: str,
        plain_text: str | None = None,
        sender_name: str = "Dexbit",
    ) -> bool:
        """Send one HTML email. Returns True on success."""
        if not self.is_configured():
            logger.warning("[Email] SMTP not configured; skipping %r", subject)
            return False
        if not to_email:
            logger.error("[Email] Recipient address is required")
            return False

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = formataddr((sender_name, settings.sender_address))
        msg["To"] = to_email
        if plain_text:
            msg.attach(MIMEText(plain_text, "plain"))
        msg.attach(MIMEText(html_content, "html"))

        try:
            await asyncio.to_thread(self._deliver, msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("[Email] Failed to send %r to %s: %s", subject, to_email, e)
            return False

        logger.info("[Email] Sent %r to %s", subject, to_email)
        return True

    @staticmethod
    def _deliver(msg: MIMEMultipart) -> None:
        with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=30) as server:
            server.starttls()
            server.login(settings.SMTP_USER, settings.SMTP_PASS)
            server.send_message(msg)

    # ── Messages ─────────────────────────────────────────────────

    async def send_welcome_email(
        self, email: str, name: str, intro: str | None = None
    ) -> bool:
        html = self.render(
            "welcome.html", name=name, intro=intro or DEFAULT_WELCOME_INTRO
        )
        return await self.send_email(
            email, WELCOME_SUBJECT, html, plain_text="Thanks for joining Dexbit"
        )

    async def send_news_summary_email(
        self, email: str, date: str, news_content: str
    ) -> bool:
        """``news_content`` is pre-rendered HTML (see ``render_news_content``)."""
        html = self.render("news_summary.html", date=date, news_content=news_content)
        return await self.send_email(
            email,
            f"Market News Summary Today - {date}",
            html,
            plain_text="Today's market news summary from Dexbit",
            sender_name="Dexbit News",
        )

    def render_news_content(self, sections: list[dict]) -> str:
        """Render ``[{"title": ..., "articles": [NewsArticle, ...]}, ...]``."""
        return self.render("news_items.html", sections=sections)
