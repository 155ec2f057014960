"""
Database configuration and connection management.
Provides environment-isolated database connections and the analysis schema.
"""

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Optional

from utils.config import config

logger = logging.getLogger(__name__)

TABLES = ('creators', 'portfolios', 'projects', 'images', 'videos', 'analysis_jobs')

# Analysis columns shared by every analyzable entity table
_ANALYSIS_COLUMNS = '''
                ai_analysis TEXT,
                embedding TEXT,           -- JSON array of floats
                analysis_status TEXT DEFAULT 'pending',  -- pending, processing, success, failed
                analysis_error TEXT,
                analyzed_at TIMESTAMP
'''

_CONNECTION_SETTINGS: Dict[str, Dict[str, Any]] = {
    'development': {
        'timeout': 30.0,
        'pragma_settings': {'journal_mode': 'WAL', 'synchronous': 'NORMAL'},
    },
    'testing': {
        'timeout': 10.0,
        'pragma_settings': {'journal_mode': 'MEMORY', 'synchronous': 'OFF'},
    },
    'production': {
        'timeout': 60.0,
        'pragma_settings': {'journal_mode': 'WAL', 'synchronous': 'NORMAL'},
    },
}


def create_schema(conn: sqlite3.Connection) -> None:
    """Create the analysis tables on an open connection if they do not exist."""
    c = conn.cursor()
    try:
        c.execute('''
            CREATE TABLE IF NOT EXISTS creators (
                id TEXT PRIMARY KEY,
                username TEXT NOT NULL,
                primary_role TEXT,
                bio TEXT
            )
        ''')

        c.execute(f'''
            CREATE TABLE IF NOT EXISTS portfolios (
                id TEXT PRIMARY KEY,
                creator_id TEXT NOT NULL REFERENCES creators(id),
                {_ANALYSIS_COLUMNS}
            )
        ''')

        c.execute(f'''
            CREATE TABLE IF NOT EXISTS projects (
                id TEXT PRIMARY KEY,
                portfolio_id TEXT NOT NULL REFERENCES portfolios(id),
                title TEXT NOT NULL DEFAULT '',
                description TEXT,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                {_ANALYSIS_COLUMNS}
            )
        ''')

        c.execute(f'''
            CREATE TABLE IF NOT EXISTS images (
                id TEXT PRIMARY KEY,
                project_id TEXT NOT NULL REFERENCES projects(id),
                creator_id TEXT,
                url TEXT,
                resolutions TEXT,         -- JSON object: size -> URL
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                {_ANALYSIS_COLUMNS}
            )
        ''')

        c.execute(f'''
            CREATE TABLE IF NOT EXISTS videos (
                id TEXT PRIMARY KEY,
                project_id TEXT NOT NULL REFERENCES projects(id),
                creator_id TEXT,
                url TEXT,
                vimeo_id TEXT,
                youtube_id TEXT,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                {_ANALYSIS_COLUMNS}
            )
        ''')

        c.execute('''
            CREATE TABLE IF NOT EXISTS analysis_jobs (
                id TEXT PRIMARY KEY,
                portfolio_id TEXT NOT NULL,
                creator_id TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'pending',  -- pending, processing, completed, failed
                progress REAL NOT NULL DEFAULT 0,
                error TEXT,
                created_at TIMESTAMP NOT NULL,
                updated_at TIMESTAMP NOT NULL,
                completed_at TIMESTAMP
            )
        ''')

        indexes = [
            ('idx_projects_portfolio', 'projects', 'portfolio_id'),
            ('idx_images_project', 'images', 'project_id'),
            ('idx_videos_project', 'videos', 'project_id'),
            ('idx_jobs_portfolio_created', 'analysis_jobs', 'portfolio_id, created_at'),
            ('idx_jobs_status_updated', 'analysis_jobs', 'status, updated_at'),
        ]
        for idx_name, table, columns in indexes:
            c.execute(f'CREATE INDEX IF NOT EXISTS {idx_name} ON {table}({columns})')

        conn.commit()
        logger.info(f"Analysis schema ready ({len(TABLES)} tables, {len(indexes)} indexes)")
    except sqlite3.Error as e:
        conn.rollback()
        logger.error(f"❌ Database schema creation failed: {e}")
        raise


def get_db_connection(db_path: Optional[str] = None) -> sqlite3.Connection:
    """
    Get a database connection using automatic environment detection.

    Args:
        db_path: Explicit database file; defaults to the environment's database

    Returns:
        SQLite database connection with dict-like rows
    """
    settings = _CONNECTION_SETTINGS[config.get_environment()]
    final_db_path = db_path or config.get_database_path()

    if final_db_path != ':memory:':
        Path(final_db_path).parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(final_db_path, timeout=settings['timeout'], check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    # Concurrent analyzers write from executor threads
    conn.execute("PRAGMA busy_timeout = 30000")

    for pragma_name, pragma_value in settings['pragma_settings'].items():
        conn.execute(f"PRAGMA {pragma_name} = {pragma_value}")

    return conn


@contextmanager
def get_db_connection_context(db_path: Optional[str] = None):
    """
    Context manager for database connections.

    Rolls back on error and always closes the connection.
    """
    conn = get_db_connection(db_path)
    try:
        yield conn
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def init_database(db_path: Optional[str] = None) -> str:
    """Create the schema in the given (or environment) database and return its path."""
    final_db_path = db_path or config.get_database_path()
    with get_db_connection_context(final_db_path) as conn:
        create_schema(conn)
    return final_db_path
