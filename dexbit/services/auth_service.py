"""AuthService: email/password accounts and session tokens.

Credentials live in the DuckDB ``users`` table (bcrypt hashes), sessions in
``sessions`` with an expiry of ``settings.SESSION_TTL_S``. Each account also
has a profile document in the ``users`` collection keyed by uid, holding the
display name and investment preferences.

Usage (from main.py):
    auth = AuthService(documents, WatchlistService(documents), EmailService())
    user, token = await auth.sign_up("a@b.co", "password1", "Ada")
    user = auth.verify_token(token)
"""

from __future__ import annotations

import asyncio
import re
import secrets
import uuid
from datetime import datetime, timedelta, timezone

import bcrypt
import duckdb

from dexbit.config import settings
from dexbit.database import get_db
from dexbit.db.document_store import SERVER_TIMESTAMP, DocumentStore
from dexbit.models.user import SessionUser, UserPreferences, UserProfile
from dexbit.services.email_service import EmailService
from dexbit.services.watchlist_service import WatchlistService
from dexbit.utils.logger import logger

USERS_COLLECTION = "users"
MIN_PASSWORD_LENGTH = 8

_EMAIL_RE = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed stored hash
        return False


def validate_email(email: str) -> bool:
    return _EMAIL_RE.match(email) is not None


def _utcnow() -> datetime:
    # DuckDB TIMESTAMP columns are naive; everything is stored as UTC
    return datetime.now(timezone.utc).replace(tzinfo=None)


class AuthService:
    """Sign-up, sign-in, token verification and profile management."""

    def __init__(
        self,
        documents: DocumentStore,
        watchlists: WatchlistService,
        email: EmailService | None = None,
        conn: duckdb.DuckDBPyConnection | None = None,
    ) -> None:
        self._documents = documents
        self._watchlists = watchlists
        self._email = email
        self._conn = conn

    @property
    def db(self) -> duckdb.DuckDBPyConnection:
        return self._conn if self._conn is not None else get_db()

    # ── Accounts ──────────────────────────────────────────────────

    async def sign_up(
        self,
        email: str,
        password: str,
        display_name: str | None = None,
        preferences: UserPreferences | None = None,
    ) -> tuple[SessionUser, str]:
        """Create an account, its profile document and a first session."""
        email = email.strip().lower()
        if not validate_email(email):
            msg = "Invalid email address"
            raise ValueError(msg)
        if len(password) < MIN_PASSWORD_LENGTH:
            msg = f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
            raise ValueError(msg)
        if self._find_by_email(email) is not None:
            msg = "An account with this email already exists"
            raise ValueError(msg)

        uid = uuid.uuid4().hex
        name = (display_name or "").strip() or email.split("@")[0]
        # Hashing runs in a worker thread
        password_hash = await asyncio.to_thread(hash_password, password)
        try:
            self.db.execute(
                "INSERT INTO users (uid, email, password_hash, display_name) "
                "VALUES (?, ?, ?, ?)",
                [uid, email, password_hash, name],
            )
        except duckdb.ConstraintException as e:
            # Lost a race with a concurrent sign-up for the same email
            msg = "An account with this email already exists"
            raise ValueError(msg) from e

        prefs = preferences or UserPreferences()
        await self._documents.set(
            USERS_COLLECTION,
            uid,
            {
                "email": email,
                "displayName": name,
                "photoURL": None,
                "preferences": prefs.model_dump(by_alias=True),
                "createdAt": SERVER_TIMESTAMP,
                "updatedAt": SERVER_TIMESTAMP,
            },
        )

        user = SessionUser(uid=uid, email=email, display_name=name)
        token = self._create_session(uid)
        logger.info("[Auth] op=sign_up user=%s outcome=created", uid)

        if self._email is not None:
            sent = await self._email.send_welcome_email(email, name)
            if not sent:
                logger.warning("[Auth] Welcome email not sent for user=%s", uid)

        return user, token

    async def sign_in(self, email: str, password: str) -> tuple[SessionUser, str]:
        """Check credentials and open a session. PermissionError if wrong."""
        row = self._find_by_email(email.strip().lower())
        valid = row is not None and await asyncio.to_thread(
            verify_password, password, row[2]
        )
        if not valid:
            logger.warning("[Auth] op=sign_in email=%s outcome=rejected", email)
            msg = "Invalid email or password"
            raise PermissionError(msg)

        uid, user_email, _, display_name = row
        token = self._create_session(uid)
        logger.info("[Auth] op=sign_in user=%s outcome=ok", uid)
        return SessionUser(uid=uid, email=user_email, display_name=display_name or ""), token

    def sign_out(self, token: str) -> None:
        self.db.execute("DELETE FROM sessions WHERE token = ?", [token])
        logger.info("[Auth] op=sign_out outcome=ok")

    async def delete_account(self, uid: str) -> None:
        """Remove the user's watchlist records, profile, sessions and login."""
        await self._watchlists.clear_user_watchlist(uid)
        await self._documents.delete(USERS_COLLECTION, uid)
        self.db.execute("DELETE FROM sessions WHERE uid = ?", [uid])
        self.db.execute("DELETE FROM users WHERE uid = ?", [uid])
        logger.info("[Auth] op=delete_account user=%s outcome=deleted", uid)

    # ── Sessions ──────────────────────────────────────────────────

    def verify_token(self, token: str | None) -> SessionUser | None:
        """Resolve a session token to its user, or None if invalid/expired."""
        if not token:
            return None
        row = self.db.execute(
            """
            SELECT s.uid, s.expires_at, u.email, u.display_name
            FROM sessions s JOIN users u ON u.uid = s.uid
            WHERE s.token = ?
            """,
            [token],
        ).fetchone()
        if row is None:
            return None

        uid, expires_at, email, display_name = row
        if expires_at <= _utcnow():
            self.db.execute("DELETE FROM sessions WHERE token = ?", [token])
            logger.info("[Auth] Session expired for user=%s", uid)
            return None
        return SessionUser(uid=uid, email=email, display_name=display_name or "")

    def purge_expired_sessions(self) -> int:
        before = self.db.execute("SELECT COUNT(*) FROM sessions").fetchone()[0]
        self.db.execute("DELETE FROM sessions WHERE expires_at <= ?", [_utcnow()])
        after = self.db.execute("SELECT COUNT(*) FROM sessions").fetchone()[0]
        return before - after

    def _create_session(self, uid: str) -> str:
        token = secrets.token_urlsafe(32)
        self.db.execute(
            "INSERT INTO sessions (token, uid, expires_at) VALUES (?, ?, ?)",
            [token, uid, _utcnow() + timedelta(seconds=settings.SESSION_TTL_S)],
        )
        return token

    # ── Profiles ──────────────────────────────────────────────────

    async def get_profile(self, uid: str) -> UserProfile | None:
        doc = await self._documents.get(USERS_COLLECTION, uid)
        if doc is None:
            return None
        doc["uid"] = doc.pop("id")
        return UserProfile.model_validate(doc)

    async def update_preferences(
        self, uid: str, preferences: UserPreferences
    ) -> UserProfile | None:
        """Replace the stored preferences. KeyError if there is no profile."""
        await self._documents.update(
            USERS_COLLECTION,
            uid,
            {
                "preferences": preferences.model_dump(by_alias=True),
                "updatedAt": SERVER_TIMESTAMP,
            },
        )
        logger.info("[Auth] op=update_preferences user=%s outcome=ok", uid)
        return await self.get_profile(uid)

    def list_users(self) -> list[SessionUser]:
        rows = self.db.execute(
            "SELECT uid, email, display_name FROM users ORDER BY created_at"
        ).fetchall()
        return [SessionUser(uid=r[0], email=r[1], display_name=r[2] or "") for r in rows]

    # ── Private helpers ───────────────────────────────────────────

    def _find_by_email(self, email: str) -> tuple | None:
        return self.db.execute(
            "SELECT uid, email, password_hash, display_name FROM users WHERE email = ?",
            [email],
        ).fetchone()
