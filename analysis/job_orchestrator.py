"""
Portfolio analysis job orchestration.

Drives one job top-down in three barrier-separated stages: media items of
every project, then projects, then the portfolio itself. Leaf and project
failures are recorded on the entity and do not stop the job; only the
portfolio synthesis decides the job's outcome.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple

from .constants import ErrorMessages, JobStatus
from .entity_analyzer import EntityAnalyzer
from .error_handler import EntityNotFound, error_message
from .models import JobRunResult, Project
from repositories.interfaces import (
    JobRepositoryInterface,
    MediaRepositoryInterface,
    PortfolioRepositoryInterface,
    ProjectRepositoryInterface
)


class ProgressTracker:
    """Writes job progress, never letting it go backwards."""

    def __init__(self, job_repository: JobRepositoryInterface, job_id: str,
                 logger: Optional[logging.Logger] = None):
        self.job_repository = job_repository
        self.job_id = job_id
        self.logger = logger or logging.getLogger(__name__)
        self.progress = 0.0

    def update(self, percent: float) -> float:
        percent = min(max(percent, 0.0), 100.0)
        if percent <= self.progress:
            return self.progress
        self.progress = percent
        self.job_repository.update_progress(self.job_id, percent)
        self.logger.info(f"📊 Job {self.job_id} progress: {percent:.1f}%")
        return percent


class JobOrchestrator:
    """
    Runs portfolio analysis jobs.

    Concurrency inside each stage is bounded by the rate limiter shared by the
    analyzers, not by the orchestrator.
    """

    def __init__(self,
                 job_repository: JobRepositoryInterface,
                 portfolio_repository: PortfolioRepositoryInterface,
                 project_repository: ProjectRepositoryInterface,
                 image_repository: MediaRepositoryInterface,
                 video_repository: MediaRepositoryInterface,
                 image_analyzer: EntityAnalyzer,
                 video_analyzer: EntityAnalyzer,
                 project_analyzer: EntityAnalyzer,
                 portfolio_analyzer: EntityAnalyzer,
                 settle_delay: float = 5.0,
                 logger: Optional[logging.Logger] = None):
        self.job_repository = job_repository
        self.portfolio_repository = portfolio_repository
        self.project_repository = project_repository
        self.image_repository = image_repository
        self.video_repository = video_repository
        self.image_analyzer = image_analyzer
        self.video_analyzer = video_analyzer
        self.project_analyzer = project_analyzer
        self.portfolio_analyzer = portfolio_analyzer
        self.settle_delay = settle_delay
        self.logger = logger or logging.getLogger(__name__)

    async def run_portfolio_job(self, job_id: str, portfolio_id: str, creator_id: str) -> JobRunResult:
        """
        Run one portfolio analysis job to a terminal state.

        A job that is missing, already running or already finished is left
        alone and reported as-is.
        """
        job = self.job_repository.get_by_id(job_id)
        if job is None:
            self.logger.error(f"❌ Job {job_id} not found")
            return JobRunResult(job_id, JobStatus.FAILED, 0.0, f"Job {job_id} not found")
        if job.status is not JobStatus.PENDING:
            self.logger.warning(f"Job {job_id} is {job.status.value}; not starting it again")
            return JobRunResult(job_id, job.status, job.progress, f"Job already {job.status.value}")

        tracker = ProgressTracker(self.job_repository, job_id, self.logger)
        result = JobRunResult(job_id, JobStatus.PROCESSING, 0.0)

        try:
            self.job_repository.update_status(job_id, JobStatus.PROCESSING)
            self.logger.info(f"🚀 Job {job_id}: analyzing portfolio {portfolio_id} (creator {creator_id})")

            projects = self.project_repository.get_for_portfolio(portfolio_id)
            if not projects:
                self.logger.info(f"Job {job_id}: {ErrorMessages.NO_PROJECTS}")
                tracker.update(100.0)
                return self._finish(result, tracker, JobStatus.COMPLETED, ErrorMessages.NO_PROJECTS)

            total_steps = 2 * len(projects) + 1

            # Stage A: media of every project
            self.logger.info(f"Job {job_id}: stage media ({len(projects)} projects)")
            media_counts = await asyncio.gather(*(self._analyze_project_media(job_id, p) for p in projects))
            result.media_analyzed = sum(ok for ok, _ in media_counts)
            result.media_failed = sum(failed for _, failed in media_counts)
            tracker.update(len(projects) / total_steps * 100)

            # Stage B: projects not already analyzed
            pending_projects = [p for p in projects if not p.is_analyzed]
            self.logger.info(f"Job {job_id}: stage projects ({len(pending_projects)} to analyze)")
            outcomes = await asyncio.gather(
                *(self._settle(job_id, self.project_analyzer.analyze(p)) for p in pending_projects),
                return_exceptions=True
            )
            for project, outcome in zip(pending_projects, outcomes):
                if isinstance(outcome, Exception):
                    result.projects_failed += 1
                    self.logger.warning(f"Project {project.id} failed: {error_message(outcome)}")
                elif outcome is not None:
                    result.projects_analyzed += 1
            tracker.update(2 * len(projects) / total_steps * 100)

            if self.settle_delay > 0:
                await asyncio.sleep(self.settle_delay)
            successful_projects = self.project_repository.get_successful_for_portfolio(portfolio_id)

            # Stage C: the portfolio itself
            self.logger.info(f"Job {job_id}: stage portfolio ({len(successful_projects)} analyzed projects)")
            text, reason = await self._analyze_portfolio(portfolio_id, successful_projects)
            if text is None:
                message = f"{ErrorMessages.PORTFOLIO_FAILED}: {reason}"
                self.logger.error(f"❌ Job {job_id}: {message}")
                return self._finish(result, tracker, JobStatus.FAILED, message)

            tracker.update(100.0)
            self.logger.info(f"✅ Job {job_id} completed")
            return self._finish(result, tracker, JobStatus.COMPLETED)

        except Exception as e:
            message = error_message(e)
            self.logger.error(f"❌ Job {job_id} failed: {message}")
            try:
                self.job_repository.update_status(job_id, JobStatus.FAILED, message)
            except Exception as write_error:
                self.logger.error(f"❌ Could not mark job {job_id} failed: {write_error}")
            result.status = JobStatus.FAILED
            result.progress = tracker.progress
            result.message = message
            return result

    def _finish(self, result: JobRunResult, tracker: ProgressTracker,
                status: JobStatus, message: str = "") -> JobRunResult:
        error = message or None
        self.job_repository.update_status(result.job_id, status, error)
        result.status = status
        result.progress = tracker.progress
        result.message = message
        return result

    async def _settle(self, job_id: str, analysis):
        """Await one entity analysis, then refresh the job lease."""
        try:
            return await analysis
        finally:
            self._touch(job_id)

    def _touch(self, job_id: str) -> None:
        try:
            self.job_repository.touch(job_id)
        except Exception as e:
            self.logger.warning(f"⚠️ Could not refresh lease for job {job_id}: {e}")

    async def _analyze_project_media(self, job_id: str, project: Project) -> Tuple[int, int]:
        """Analyze every not-yet-analyzed image and video of a project."""
        try:
            images = self.image_repository.get_all_for_project(project.id)
            videos = self.video_repository.get_all_for_project(project.id)
        except Exception as e:
            self.logger.error(f"❌ Could not load media for project {project.id}: {e}")
            return 0, 0

        work = [(self.image_analyzer, m) for m in images if not m.is_analyzed]
        work += [(self.video_analyzer, m) for m in videos if not m.is_analyzed]
        if not work:
            return 0, 0

        outcomes = await asyncio.gather(
            *(self._settle(job_id, analyzer.analyze(media)) for analyzer, media in work),
            return_exceptions=True
        )

        analyzed = failed = 0
        for (_, media), outcome in zip(work, outcomes):
            if isinstance(outcome, Exception):
                failed += 1
                self.logger.warning(f"{media.kind.value.capitalize()} {media.id} failed: {error_message(outcome)}")
            elif outcome is not None:
                analyzed += 1
        self.logger.info(f"Project {project.id}: {analyzed} media analyzed, {failed} failed")
        return analyzed, failed

    async def _analyze_portfolio(self, portfolio_id: str,
                                 projects: List[Project]) -> Tuple[Optional[str], str]:
        """Returns (text, reason); text is None when the portfolio produced no analysis."""
        portfolio = self.portfolio_repository.get_by_id(portfolio_id)
        if portfolio is None:
            raise EntityNotFound(f"Portfolio {portfolio_id} not found")

        try:
            text = await self.portfolio_analyzer.analyze(portfolio, children=projects)
        except Exception as e:
            return None, error_message(e)

        if text is None:
            return None, ErrorMessages.PORTFOLIO_NOTHING_TO_ANALYZE
        return text, ""


def sweep_stale_jobs(job_repository: JobRepositoryInterface, stale_minutes: float,
                     now: Optional[datetime] = None,
                     logger: Optional[logging.Logger] = None) -> List[str]:
    """
    Fail processing jobs whose progress lease has expired.

    Returns:
        Ids of the jobs marked failed
    """
    logger = logger or logging.getLogger(__name__)
    cutoff = (now or datetime.now(timezone.utc)) - timedelta(minutes=stale_minutes)
    message = ErrorMessages.JOB_LEASE_EXPIRED.format(minutes=stale_minutes)

    swept = []
    for job in job_repository.get_stale_jobs(cutoff):
        if job_repository.update_status(job.id, JobStatus.FAILED, message):
            logger.warning(f"🧹 Job {job.id} for portfolio {job.portfolio_id}: {message}")
            swept.append(job.id)
    if swept:
        logger.info(f"Swept {len(swept)} stale jobs")
    return swept
