"""Application configuration: environment variables and defaults.

Every external service (Finnhub, SMTP) and every tunable of the watchlist
store lives HERE. Change them once, affects everything.
"""

import os
from pathlib import Path
from typing import Any

_VALID_ENVS = ("development", "production", "test")


class Settings:
    """Central configuration pulled from environment with safe defaults."""

    # Paths
    BASE_DIR: Path = Path(__file__).resolve().parent.parent
    DATA_DIR: Path = Path(os.getenv("DEXBIT_DATA_DIR", str(BASE_DIR / "data")))
    STATE_DIR: Path = DATA_DIR / "state"
    LOGS_DIR: Path = BASE_DIR / "logs"
    TEMPLATES_DIR: Path = Path(__file__).resolve().parent / "templates"
    STATIC_DIR: Path = Path(__file__).resolve().parent / "static"

    # Database
    DB_PATH: Path = DATA_DIR / "dexbit.duckdb"

    # ── Market data (Finnhub) ──────────────────────────────────────
    FINNHUB_API_KEY: str = os.getenv(
        "FINNHUB_API_KEY", os.getenv("NEXT_PUBLIC_FINNHUB_API_KEY", "")
    )
    FINNHUB_BASE_URL: str = os.getenv(
        "FINNHUB_BASE_URL", "https://finnhub.io/api/v1"
    )

    # ── Watchlist store ────────────────────────────────────────────
    # Minimum gap between two price-enrichment passes
    PRICE_REFRESH_INTERVAL_S: int = int(os.getenv("PRICE_REFRESH_INTERVAL_S", "60"))
    # Upper bound on simultaneous quote requests in one pass
    PRICE_FETCH_CONCURRENCY: int = int(os.getenv("PRICE_FETCH_CONCURRENCY", "8"))

    # ── Auth ───────────────────────────────────────────────────────
    SESSION_TTL_S: int = int(os.getenv("SESSION_TTL_S", "3600"))
    AUTH_COOKIE_NAME: str = os.getenv("AUTH_COOKIE_NAME", "dexbit-auth-token")

    # ── Email (SMTP) ───────────────────────────────────────────────
    SMTP_HOST: str = os.getenv("SMTP_HOST", "")
    SMTP_PORT: int = int(os.getenv("SMTP_PORT", "587"))
    SMTP_USER: str = os.getenv("SMTP_USER", "")
    SMTP_PASS: str = os.getenv("SMTP_PASS", "")
    EMAIL_FROM: str = os.getenv("EMAIL_FROM", "")

    # Daily news digest (hour in America/New_York)
    DIGEST_HOUR: int = int(os.getenv("DIGEST_HOUR", "12"))

    # Server
    APP_ENV: str = os.getenv("APP_ENV", "development")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
    HOST: str = os.getenv("HOST", "0.0.0.0")
    PORT: int = int(os.getenv("PORT", "8000"))

    @property
    def is_email_configured(self) -> bool:
        """Computed: True only when every SMTP setting is present."""
        return all((self.SMTP_HOST, self.SMTP_USER, self.SMTP_PASS))

    @property
    def sender_address(self) -> str:
        return self.EMAIL_FROM or self.SMTP_USER

    def __init__(self) -> None:
        """Ensure runtime directories exist."""
        self.DATA_DIR.mkdir(parents=True, exist_ok=True)
        self.STATE_DIR.mkdir(parents=True, exist_ok=True)
        self.LOGS_DIR.mkdir(parents=True, exist_ok=True)

    # ── Validation ────────────────────────────────────────────────

    def validate_environment(self) -> dict[str, Any]:
        """Check the configuration a running dashboard depends on.

        Raises ValueError for an unknown APP_ENV. Missing API keys and a
        partial SMTP setup are reported, not raised, so the dashboard can
        still boot in a degraded mode.
        """
        if self.APP_ENV not in _VALID_ENVS:
            msg = (
                f"Invalid APP_ENV: {self.APP_ENV}. "
                f"Must be one of {', '.join(_VALID_ENVS)}"
            )
            raise ValueError(msg)

        missing: list[str] = []
        if not self.FINNHUB_API_KEY:
            missing.append("FINNHUB_API_KEY")

        smtp = {
            "SMTP_HOST": self.SMTP_HOST,
            "SMTP_USER": self.SMTP_USER,
            "SMTP_PASS": self.SMTP_PASS,
        }
        provided = [k for k, v in smtp.items() if v]
        incomplete_email = [k for k, v in smtp.items() if not v] if provided else []

        return {
            "app_env": self.APP_ENV,
            "missing": missing,
            "has_email_config": self.is_email_configured,
            "incomplete_email": incomplete_email,
        }


settings = Settings()
