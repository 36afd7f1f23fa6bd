import os
import tempfile

# Keep test runs away from the real data directory and scheduler
os.environ.setdefault("DEXBIT_DATA_DIR", tempfile.mkdtemp(prefix="dexbit_test_"))
os.environ["APP_ENV"] = "test"

import duckdb  # noqa: E402
import pytest  # noqa: E402

from dexbit.config import settings  # noqa: E402
from dexbit.database import close_db, init_tables  # noqa: E402


@pytest.fixture(autouse=True)
def use_test_db(tmp_path, monkeypatch):
    # Route every get_db() call in a test to a fresh DuckDB file
    close_db()
    monkeypatch.setattr(settings, "DB_PATH", tmp_path / "test_dexbit.duckdb")
    monkeypatch.setattr(settings, "STATE_DIR", tmp_path / "state")
    yield
    close_db()


@pytest.fixture
def memory_db():
    """An isolated in-memory DuckDB with all tables created."""
    conn = duckdb.connect(":memory:")
    init_tables(conn)
    yield conn
    conn.close()
