"""
Global pytest configuration for the portfolio analysis engine.
Pins the testing environment and provides throwaway SQLite databases.
"""

from functools import partial

import pytest

from utils.config import Config
from utils.database import get_db_connection, init_database


@pytest.fixture(autouse=True)
def setup_test_environment(monkeypatch):
    """Set up test environment for all tests."""
    # Ensure we're in testing mode
    monkeypatch.setenv('PORTFOLIO_ANALYSIS_ENV', 'testing')
    Config.reset()

    yield

    Config.reset()


@pytest.fixture
def db_path(tmp_path, monkeypatch):
    """A fresh database file with the analysis schema, exported as DATABASE_PATH."""
    path = str(tmp_path / "test_portfolio_analysis.db")
    monkeypatch.setenv('DATABASE_PATH', path)
    init_database(path)
    return path


@pytest.fixture
def connection_factory(db_path):
    """Connection factory for repositories bound to the test database."""
    return partial(get_db_connection, db_path)


@pytest.fixture
def seed_rows(connection_factory):
    """Insert raw rows: seed_rows('projects', {'id': 'p1', ...}, ...)."""
    def _seed(table, *rows):
        conn = connection_factory()
        try:
            for row in rows:
                columns = ', '.join(row.keys())
                placeholders = ', '.join('?' for _ in row)
                conn.execute(f"INSERT INTO {table} ({columns}) VALUES ({placeholders})", tuple(row.values()))
            conn.commit()
        finally:
            conn.close()
    return _seed
