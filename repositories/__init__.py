"""
Repository factory and dependency injection container.
Provides centralized access to repository instances.
"""

from typing import Optional

from analysis.constants import MediaKind

from .interfaces import (
    JobRepositoryInterface,
    MediaRepositoryInterface,
    PortfolioRepositoryInterface,
    ProjectRepositoryInterface
)
from .sqlite_impl import (
    SQLiteJobRepository,
    SQLiteMediaRepository,
    SQLitePortfolioRepository,
    SQLiteProjectRepository
)


class RepositoryFactory:
    """Factory for creating repository instances."""

    def __init__(self, connection_factory=None):
        """Initialize with optional connection factory."""
        self._connection_factory = connection_factory
        self._job_repo: Optional[JobRepositoryInterface] = None
        self._image_repo: Optional[MediaRepositoryInterface] = None
        self._video_repo: Optional[MediaRepositoryInterface] = None
        self._project_repo: Optional[ProjectRepositoryInterface] = None
        self._portfolio_repo: Optional[PortfolioRepositoryInterface] = None

    def get_job_repository(self) -> JobRepositoryInterface:
        """Get analysis job repository instance."""
        if self._job_repo is None:
            self._job_repo = SQLiteJobRepository(self._connection_factory)
        return self._job_repo

    def get_image_repository(self) -> MediaRepositoryInterface:
        """Get image repository instance."""
        if self._image_repo is None:
            self._image_repo = SQLiteMediaRepository(MediaKind.IMAGE, self._connection_factory)
        return self._image_repo

    def get_video_repository(self) -> MediaRepositoryInterface:
        """Get video repository instance."""
        if self._video_repo is None:
            self._video_repo = SQLiteMediaRepository(MediaKind.VIDEO, self._connection_factory)
        return self._video_repo

    def get_project_repository(self) -> ProjectRepositoryInterface:
        """Get project repository instance."""
        if self._project_repo is None:
            self._project_repo = SQLiteProjectRepository(self._connection_factory)
        return self._project_repo

    def get_portfolio_repository(self) -> PortfolioRepositoryInterface:
        """Get portfolio repository instance."""
        if self._portfolio_repo is None:
            self._portfolio_repo = SQLitePortfolioRepository(self._connection_factory)
        return self._portfolio_repo

