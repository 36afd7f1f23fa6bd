"""DuckDB session management and table initialization."""

from __future__ import annotations

import duckdb

from dexbit.config import settings
from dexbit.utils.logger import logger

_connection: duckdb.DuckDBPyConnection | None = None


def get_db() -> duckdb.DuckDBPyConnection:
    """Return the singleton DuckDB connection, creating tables on first call."""
    global _connection  # noqa: PLW0603
    if _connection is None:
        db_path = str(settings.DB_PATH)
        logger.info("Opening DuckDB at %s", db_path)
        _connection = duckdb.connect(db_path)
        init_tables(_connection)
    return _connection


def close_db() -> None:
    """Close the singleton connection (next get_db() reopens it)."""
    global _connection  # noqa: PLW0603
    if _connection is not None:
        _connection.close()
        _connection = None


def init_tables(conn: duckdb.DuckDBPyConnection) -> None:
    """Create tables if they don't exist."""
    # Schemaless documents, one row per (collection, id)
    conn.execute("""
        CREATE TABLE IF NOT EXISTS documents (
            collection  VARCHAR NOT NULL,
            id          VARCHAR NOT NULL,
            data        VARCHAR NOT NULL,
            created_at  TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at  TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            PRIMARY KEY (collection, id)
        );
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS users (
            uid            VARCHAR PRIMARY KEY,
            email          VARCHAR NOT NULL UNIQUE,
            password_hash  VARCHAR NOT NULL,
            display_name   VARCHAR,
            created_at     TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        );
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS sessions (
            token       VARCHAR PRIMARY KEY,
            uid         VARCHAR NOT NULL,
            created_at  TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            expires_at  TIMESTAMP NOT NULL
        );
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS scheduler_runs (
            id            VARCHAR PRIMARY KEY,
            job_name      VARCHAR NOT NULL,
            started_at    TIMESTAMP NOT NULL,
            completed_at  TIMESTAMP,
            status        VARCHAR DEFAULT 'running',
            summary       VARCHAR,
            error         VARCHAR
        );
    """)
