"""
Data models for the analysis engine.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional

from .constants import AnalysisStatus, JobStatus, MediaKind


class AnalysisStateMixin:
    """Shared skip-if-done logic for analyzable entities."""

    ai_analysis: Optional[str]
    embedding: Optional[List[float]]
    analysis_status: AnalysisStatus

    @property
    def has_analysis(self) -> bool:
        """Both the analysis text and its embedding are stored."""
        return bool(self.ai_analysis and self.ai_analysis.strip()) and bool(self.embedding)

    @property
    def is_analyzed(self) -> bool:
        """
        Skip-if-done check.

        A row marked success must also carry both fields; rows written before
        status tracking count as done when both fields are present. A failed
        row is never done.
        """
        if self.analysis_status is AnalysisStatus.FAILED:
            return False
        return self.has_analysis


@dataclass
class MediaItem(AnalysisStateMixin):
    """Leaf content unit: an image or a video."""
    id: str
    project_id: str
    kind: MediaKind
    url: Optional[str] = None
    creator_id: Optional[str] = None
    resolutions: Optional[Dict[str, str]] = None
    vimeo_id: Optional[str] = None
    youtube_id: Optional[str] = None
    ai_analysis: Optional[str] = None
    embedding: Optional[List[float]] = None
    analysis_status: AnalysisStatus = AnalysisStatus.PENDING
    analysis_error: Optional[str] = None

    def __post_init__(self):
        if self.resolutions is None:
            self.resolutions = {}

    @property
    def is_video(self) -> bool:
        return self.kind is MediaKind.VIDEO


@dataclass
class Project(AnalysisStateMixin):
    """Mid-level aggregate owning media items."""
    id: str
    portfolio_id: str
    title: str = ""
    description: Optional[str] = None
    ai_analysis: Optional[str] = None
    embedding: Optional[List[float]] = None
    analysis_status: AnalysisStatus = AnalysisStatus.PENDING
    analysis_error: Optional[str] = None


@dataclass
class Portfolio(AnalysisStateMixin):
    """Root aggregate owning projects, belonging to one creator."""
    id: str
    creator_id: str
    ai_analysis: Optional[str] = None
    embedding: Optional[List[float]] = None
    analysis_status: AnalysisStatus = AnalysisStatus.PENDING
    analysis_error: Optional[str] = None


@dataclass
class CreatorContext:
    """Creator details blended into the portfolio synthesis."""
    username: str
    primary_role: Optional[str] = None
    bio: Optional[str] = None


@dataclass
class AnalysisJob:
    """One portfolio-level analysis run."""
    id: str
    portfolio_id: str
    creator_id: str
    status: JobStatus = JobStatus.PENDING
    progress: float = 0.0
    error: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


@dataclass
class ReanalysisDecision:
    """Outcome of the reanalysis gate consulted before creating a job."""
    allowed: bool
    message: str
    next_available_time: Optional[datetime] = None


@dataclass
class JobRunResult:
    """Final state reported by the orchestrator for one job run."""
    job_id: str
    status: JobStatus
    progress: float
    message: str = ""
    media_analyzed: int = 0
    media_failed: int = 0
    projects_analyzed: int = 0
    projects_failed: int = 0
