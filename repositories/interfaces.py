"""
Repository pattern interfaces for database abstraction.
Collaborator interfaces consumed by the analysis engine.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from analysis.constants import AnalysisStatus, JobStatus
from analysis.models import AnalysisJob, CreatorContext, MediaItem, Portfolio, Project


class JobRepositoryInterface(ABC):
    """Interface for analysis job lifecycle operations."""

    @abstractmethod
    def create(self, portfolio_id: str, creator_id: str, job_id: Optional[str] = None) -> AnalysisJob:
        """Create a pending job."""
        pass

    @abstractmethod
    def get_by_id(self, job_id: str) -> Optional[AnalysisJob]:
        pass

    @abstractmethod
    def update_status(self, job_id: str, status: JobStatus, error: Optional[str] = None) -> bool:
        """
        Move a job to a new status.

        Sets completed_at iff the new status is terminal. A job that is already
        terminal is never moved again; returns False in that case.
        """
        pass

    @abstractmethod
    def update_progress(self, job_id: str, progress: float) -> bool:
        """Store progress (0-100) and refresh updated_at."""
        pass

    @abstractmethod
    def touch(self, job_id: str) -> bool:
        """Refresh updated_at without changing progress; the lease heartbeat for long stages."""
        pass

    @abstractmethod
    def get_last_job_for_portfolio(self, portfolio_id: str) -> Optional[AnalysisJob]:
        """Most recently created job for a portfolio."""
        pass

    @abstractmethod
    def count_jobs_in_last_n_days(self, portfolio_id: str, days: int, now: Optional[datetime] = None) -> int:
        pass

    @abstractmethod
    def get_stale_jobs(self, updated_before: datetime) -> List[AnalysisJob]:
        """Processing jobs whose updated_at is older than the cutoff."""
        pass


class MediaRepositoryInterface(ABC):
    """Interface for image or video rows."""

    @abstractmethod
    def get_by_id(self, media_id: str) -> Optional[MediaItem]:
        pass

    @abstractmethod
    def get_all_for_project(self, project_id: str) -> List[MediaItem]:
        pass

    @abstractmethod
    def get_successful_for_project(self, project_id: str) -> List[MediaItem]:
        """Items with status success and analysis text present."""
        pass

    @abstractmethod
    def update_status(self, media_id: str, status: AnalysisStatus, error: Optional[str] = None) -> bool:
        """Set status and error; stored analysis text is left untouched."""
        pass

    @abstractmethod
    def update_analysis(self, media_id: str, text: str, embedding: List[float]) -> bool:
        """Store text and embedding, mark success and clear the error in one write."""
        pass


class ProjectRepositoryInterface(ABC):
    """Interface for project rows."""

    @abstractmethod
    def get_by_id(self, project_id: str) -> Optional[Project]:
        pass

    @abstractmethod
    def get_for_portfolio(self, portfolio_id: str) -> List[Project]:
        pass

    @abstractmethod
    def get_successful_for_portfolio(self, portfolio_id: str) -> List[Project]:
        pass

    @abstractmethod
    def update_status(self, project_id: str, status: AnalysisStatus, error: Optional[str] = None) -> bool:
        pass

    @abstractmethod
    def update_analysis(self, project_id: str, text: str, embedding: List[float]) -> bool:
        pass


class PortfolioRepositoryInterface(ABC):
    """Interface for portfolio rows and their creator."""

    @abstractmethod
    def get_by_id(self, portfolio_id: str) -> Optional[Portfolio]:
        pass

    @abstractmethod
    def update_status(self, portfolio_id: str, status: AnalysisStatus, error: Optional[str] = None) -> bool:
        pass

    @abstractmethod
    def update_analysis(self, portfolio_id: str, text: str, embedding: List[float]) -> bool:
        pass

    @abstractmethod
    def get_creator_context(self, creator_id: str) -> Optional[CreatorContext]:
        """Username, primary role and bio of the portfolio's creator."""
        pass
