"""
SQLite implementations of repository interfaces.
Concrete implementations using SQLite database.
"""

import json
import logging
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from analysis.constants import AnalysisStatus, JobStatus, MediaKind
from analysis.models import AnalysisJob, CreatorContext, MediaItem, Portfolio, Project

from .interfaces import (
    JobRepositoryInterface,
    MediaRepositoryInterface,
    PortfolioRepositoryInterface,
    ProjectRepositoryInterface
)

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = '%Y-%m-%d %H:%M:%S.%f'


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Fixed-width UTC text so timestamps compare correctly as strings."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.strptime(value, TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)


def _load_embedding(value: Optional[str]) -> Optional[List[float]]:
    return json.loads(value) if value else None


class SQLiteRepositoryBase:
    """Base class for SQLite repositories."""

    def __init__(self, connection_factory=None):
        """Initialize with connection factory."""
        self._connection_factory = connection_factory or self._default_connection_factory

    def _default_connection_factory(self):
        """Default connection factory - import utils.database."""
        from utils.database import get_db_connection
        return get_db_connection()

    @contextmanager
    def get_connection(self):
        """Get database connection context manager."""
        conn = self._connection_factory()
        try:
            yield conn
        finally:
            conn.close()

    def _row_to_dict(self, row) -> Dict[str, Any]:
        """Convert SQLite Row to dictionary."""
        if hasattr(row, 'keys'):
            return dict(row)
        return row


class SQLiteAnalyzableRepository(SQLiteRepositoryBase):
    """Shared status and analysis writes for portfolio, project, image and video tables."""

    table: str = ''

    def update_status(self, entity_id: str, status: AnalysisStatus, error: Optional[str] = None) -> bool:
        """Set status and error; stored analysis text is left untouched."""
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(f"""
                UPDATE {self.table}
                SET analysis_status = ?, analysis_error = ?
                WHERE id = ?
            """, (status.value, error, entity_id))
            conn.commit()
            return cursor.rowcount > 0

    def update_analysis(self, entity_id: str, text: str, embedding: List[float]) -> bool:
        """Store text and embedding, mark success and clear the error in one write."""
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(f"""
                UPDATE {self.table}
                SET ai_analysis = ?, embedding = ?, analysis_status = ?,
                    analysis_error = NULL, analyzed_at = ?
                WHERE id = ?
            """, (text, json.dumps(embedding), AnalysisStatus.SUCCESS.value,
                  format_timestamp(utcnow()), entity_id))
            conn.commit()
            return cursor.rowcount > 0

    @staticmethod
    def _analysis_fields(row: Dict[str, Any]) -> Dict[str, Any]:
        return {
            'ai_analysis': row.get('ai_analysis'),
            'embedding': _load_embedding(row.get('embedding')),
            'analysis_status': AnalysisStatus(row.get('analysis_status') or AnalysisStatus.PENDING.value),
            'analysis_error': row.get('analysis_error'),
        }


class SQLiteMediaRepository(SQLiteAnalyzableRepository, MediaRepositoryInterface):
    """SQLite implementation of MediaRepositoryInterface for one media kind."""

    def __init__(self, kind: MediaKind, connection_factory=None):
        super().__init__(connection_factory)
        self.kind = kind
        self.table = 'videos' if kind is MediaKind.VIDEO else 'images'

    def get_by_id(self, media_id: str) -> Optional[MediaItem]:
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(f"SELECT * FROM {self.table} WHERE id = ?", (media_id,))
            result = cursor.fetchone()
            return self._to_model(self._row_to_dict(result)) if result else None

    def get_all_for_project(self, project_id: str) -> List[MediaItem]:
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(f"""
                SELECT * FROM {self.table} WHERE project_id = ?
                ORDER BY created_at, id
            """, (project_id,))
            return [self._to_model(self._row_to_dict(row)) for row in cursor.fetchall()]

    def get_successful_for_project(self, project_id: str) -> List[MediaItem]:
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(f"""
                SELECT * FROM {self.table}
                WHERE project_id = ? AND analysis_status = ?
                  AND ai_analysis IS NOT NULL AND TRIM(ai_analysis) != ''
                ORDER BY created_at, id
            """, (project_id, AnalysisStatus.SUCCESS.value))
            return [self._to_model(self._row_to_dict(row)) for row in cursor.fetchall()]

    def _to_model(self, row: Dict[str, Any]) -> MediaItem:
        resolutions = row.get('resolutions')
        return MediaItem(
            id=row['id'],
            project_id=row['project_id'],
            kind=self.kind,
            url=row.get('url'),
            creator_id=row.get('creator_id'),
            resolutions=json.loads(resolutions) if resolutions else {},
            vimeo_id=row.get('vimeo_id'),
            youtube_id=row.get('youtube_id'),
            **self._analysis_fields(row)
        )


class SQLiteProjectRepository(SQLiteAnalyzableRepository, ProjectRepositoryInterface):
    """SQLite implementation of ProjectRepositoryInterface."""

    table = 'projects'

    def get_by_id(self, project_id: str) -> Optional[Project]:
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT * FROM projects WHERE id = ?", (project_id,))
            result = cursor.fetchone()
            return self._to_model(self._row_to_dict(result)) if result else None

    def get_for_portfolio(self, portfolio_id: str) -> List[Project]:
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("""
                SELECT * FROM projects WHERE portfolio_id = ?
                ORDER BY created_at, id
            """, (portfolio_id,))
            return [self._to_model(self._row_to_dict(row)) for row in cursor.fetchall()]

    def get_successful_for_portfolio(self, portfolio_id: str) -> List[Project]:
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("""
                SELECT * FROM projects
                WHERE portfolio_id = ? AND analysis_status = ?
                  AND ai_analysis IS NOT NULL AND TRIM(ai_analysis) != ''
                ORDER BY created_at, id
            """, (portfolio_id, AnalysisStatus.SUCCESS.value))
            return [self._to_model(self._row_to_dict(row)) for row in cursor.fetchall()]

    def _to_model(self, row: Dict[str, Any]) -> Project:
        return Project(
            id=row['id'],
            portfolio_id=row['portfolio_id'],
            title=row.get('title') or '',
            description=row.get('description'),
            **self._analysis_fields(row)
        )


class SQLitePortfolioRepository(SQLiteAnalyzableRepository, PortfolioRepositoryInterface):
    """SQLite implementation of PortfolioRepositoryInterface."""

    table = 'portfolios'

    def get_by_id(self, portfolio_id: str) -> Optional[Portfolio]:
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT * FROM portfolios WHERE id = ?", (portfolio_id,))
            result = cursor.fetchone()
            if not result:
                return None
            row = self._row_to_dict(result)
            return Portfolio(id=row['id'], creator_id=row['creator_id'], **self._analysis_fields(row))

    def get_creator_context(self, creator_id: str) -> Optional[CreatorContext]:
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("""
                SELECT username, primary_role, bio FROM creators WHERE id = ?
            """, (creator_id,))
            result = cursor.fetchone()
            if not result:
                return None
            row = self._row_to_dict(result)
            return CreatorContext(
                username=row['username'],
                primary_role=row.get('primary_role'),
                bio=row.get('bio')
            )


class SQLiteJobRepository(SQLiteRepositoryBase, JobRepositoryInterface):
    """SQLite implementation of JobRepositoryInterface."""

    def create(self, portfolio_id: str, creator_id: str, job_id: Optional[str] = None) -> AnalysisJob:
        job_id = job_id or str(uuid.uuid4())
        now = format_timestamp(utcnow())
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("""
                INSERT INTO analysis_jobs
                    (id, portfolio_id, creator_id, status, progress, created_at, updated_at)
                VALUES (?, ?, ?, ?, 0, ?, ?)
            """, (job_id, portfolio_id, creator_id, JobStatus.PENDING.value, now, now))
            conn.commit()
        logger.info(f"Created analysis job {job_id} for portfolio {portfolio_id}")
        return self.get_by_id(job_id)

    def get_by_id(self, job_id: str) -> Optional[AnalysisJob]:
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT * FROM analysis_jobs WHERE id = ?", (job_id,))
            result = cursor.fetchone()
            return self._to_model(self._row_to_dict(result)) if result else None

    def update_status(self, job_id: str, status: JobStatus, error: Optional[str] = None) -> bool:
        now = format_timestamp(utcnow())
        completed_at = now if status.is_terminal else None
        terminal = [JobStatus.COMPLETED.value, JobStatus.FAILED.value]
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("""
                UPDATE analysis_jobs
                SET status = ?, error = ?, updated_at = ?, completed_at = ?
                WHERE id = ? AND status NOT IN (?, ?)
            """, (status.value, error, now, completed_at, job_id, *terminal))
            conn.commit()
            updated = cursor.rowcount > 0
        if not updated:
            logger.warning(f"Job {job_id} not moved to {status.value}: missing or already terminal")
        return updated

    def update_progress(self, job_id: str, progress: float) -> bool:
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("""
                UPDATE analysis_jobs SET progress = ?, updated_at = ?
                WHERE id = ?
            """, (progress, format_timestamp(utcnow()), job_id))
            conn.commit()
            return cursor.rowcount > 0

    def touch(self, job_id: str) -> bool:
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("""
                UPDATE analysis_jobs SET updated_at = ?
                WHERE id = ? AND status = ?
            """, (format_timestamp(utcnow()), job_id, JobStatus.PROCESSING.value))
            conn.commit()
            return cursor.rowcount > 0

    def get_last_job_for_portfolio(self, portfolio_id: str) -> Optional[AnalysisJob]:
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("""
                SELECT * FROM analysis_jobs WHERE portfolio_id = ?
                ORDER BY created_at DESC
                LIMIT 1
            """, (portfolio_id,))
            result = cursor.fetchone()
            return self._to_model(self._row_to_dict(result)) if result else None

    def count_jobs_in_last_n_days(self, portfolio_id: str, days: int, now: Optional[datetime] = None) -> int:
        cutoff = (now or utcnow()) - timedelta(days=days)
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("""
                SELECT COUNT(*) FROM analysis_jobs
                WHERE portfolio_id = ? AND created_at >= ?
            """, (portfolio_id, format_timestamp(cutoff)))
            return cursor.fetchone()[0]

    def get_stale_jobs(self, updated_before: datetime) -> List[AnalysisJob]:
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("""
                SELECT * FROM analysis_jobs
                WHERE status = ? AND updated_at < ?
                ORDER BY updated_at
            """, (JobStatus.PROCESSING.value, format_timestamp(updated_before)))
            return [self._to_model(self._row_to_dict(row)) for row in cursor.fetchall()]

    def _to_model(self, row: Dict[str, Any]) -> AnalysisJob:
        return AnalysisJob(
            id=row['id'],
            portfolio_id=row['portfolio_id'],
            creator_id=row['creator_id'],
            status=JobStatus(row['status']),
            progress=float(row['progress'] or 0),
            error=row.get('error'),
            created_at=parse_timestamp(row.get('created_at')),
            updated_at=parse_timestamp(row.get('updated_at')),
            completed_at=parse_timestamp(row.get('completed_at'))
        )
