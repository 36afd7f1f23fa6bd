"""Tests for EmailService. SMTP is always mocked."""

from __future__ import annotations

import asyncio
import smtplib
from unittest.mock import MagicMock, patch

import pytest

from dexbit.config import settings
from dexbit.models.market_data import NewsArticle
from dexbit.services.email_service import EmailService


@pytest.fixture
def smtp_configured(monkeypatch):
    monkeypatch.setattr(settings, "SMTP_HOST", "smtp.test")
    monkeypatch.setattr(settings, "SMTP_USER", "bot@dexbit.test")
    monkeypatch.setattr(settings, "SMTP_PASS", "secret")


class TestRendering:
    def test_welcome_template(self) -> None:
        html = EmailService().render("welcome.html", name="Ada", intro="Hello there")
        assert "Welcome aboard Ada" in html
        assert "Hello there" in html

    def test_user_text_is_escaped(self) -> None:
        html = EmailService().render("welcome.html", name="<b>x</b>", intro="")
        assert "<b>x</b>" not in html
        assert "&lt;b&gt;" in html

    def test_news_content_sections(self) -> None:
        sections = [{
            "title": "Market Headlines",
            "articles": [NewsArticle(headline="Stocks rally", source="Reuters", url="https://x.test/1")],
        }]
        content = EmailService().render_news_content(sections)
        assert "Market Headlines" in content
        assert "Stocks rally" in content
        assert "https://x.test/1" in content


class TestSending:
    def test_unconfigured_skips_send(self, monkeypatch) -> None:
        monkeypatch.setattr(settings, "SMTP_HOST", "")
        with patch("dexbit.services.email_service.smtplib.SMTP") as smtp:
            sent = asyncio.run(EmailService().send_welcome_email("ada@example.com", "Ada"))
        assert sent is False
        smtp.assert_not_called()

    def test_welcome_email_sent(self, smtp_configured) -> None:
        with patch("dexbit.services.email_service.smtplib.SMTP") as smtp:
            server = MagicMock()
            smtp.return_value.__enter__.return_value = server
            sent = asyncio.run(EmailService().send_welcome_email("ada@example.com", "Ada"))

        assert sent is True
        server.starttls.assert_called_once()
        server.login.assert_called_once_with("bot@dexbit.test", "secret")
        msg = server.send_message.call_args[0][0]
        assert msg["To"] == "ada@example.com"
        assert "Welcome to Dexbit" in msg["Subject"]

    def test_news_summary_subject(self, smtp_configured) -> None:
        with patch("dexbit.services.email_service.smtplib.SMTP") as smtp:
            server = MagicMock()
            smtp.return_value.__enter__.return_value = server
            sent = asyncio.run(
                EmailService().send_news_summary_email("ada@example.com", "May 01, 2025", "<p>hi</p>")
            )
        assert sent is True
        msg = server.send_message.call_args[0][0]
        assert msg["Subject"] == "Market News Summary Today - May 01, 2025"

    def test_smtp_failure_returns_false(self, smtp_configured) -> None:
        with patch("dexbit.services.email_service.smtplib.SMTP") as smtp:
            smtp.side_effect = smtplib.SMTPConnectError(421, "unavailable")
            sent = asyncio.run(EmailService().send_welcome_email("ada@example.com", "Ada"))
        assert sent is False

    def test_missing_recipient(self, smtp_configured) -> None:
        assert asyncio.run(EmailService().send_email("", "s", "<p></p>")) is False
