"""
Analysis service: the entrypoint that wires repositories, provider client,
rate limiter and analyzers together.
"""

import logging
from typing import List, Optional, Tuple

from .config import AnalysisConfig
from .entity_analyzer import ImageAnalyzer, PortfolioAnalyzer, ProjectAnalyzer, VideoAnalyzer
from .error_handler import EntityNotFound
from .gemini_client import GeminiClient
from .job_orchestrator import JobOrchestrator, sweep_stale_jobs
from .media_fetcher import AsyncAIOHTTPClient, MediaFetcher
from .models import AnalysisJob, JobRunResult, ReanalysisDecision
from .rate_limiter import RateLimiter
from .reanalysis import ReanalysisPolicy
from repositories import RepositoryFactory


class AnalysisService:
    """Operations exposed to the CLI and to any API layer."""

    def __init__(self,
                 config: AnalysisConfig,
                 repositories: RepositoryFactory,
                 orchestrator: JobOrchestrator,
                 reanalysis_policy: ReanalysisPolicy,
                 logger: Optional[logging.Logger] = None):
        self.config = config
        self.repositories = repositories
        self.orchestrator = orchestrator
        self.reanalysis_policy = reanalysis_policy
        self.logger = logger or logging.getLogger(__name__)

    def can_reanalyze(self, portfolio_id: str) -> ReanalysisDecision:
        return self.reanalysis_policy.check(portfolio_id)

    def start_portfolio_analysis(self, portfolio_id: str,
                                 creator_id: str) -> Tuple[Optional[AnalysisJob], ReanalysisDecision]:
        """
        Create a pending job if the reanalysis policy allows it.

        Returns:
            Tuple of (job or None when refused, decision)
        """
        if self.repositories.get_portfolio_repository().get_by_id(portfolio_id) is None:
            raise EntityNotFound(f"Portfolio {portfolio_id} not found")

        decision = self.can_reanalyze(portfolio_id)
        if not decision.allowed:
            self.logger.info(f"Analysis of portfolio {portfolio_id} refused: {decision.message}")
            return None, decision

        job = self.repositories.get_job_repository().create(portfolio_id, creator_id)
        return job, decision

    async def run_portfolio_job(self, job_id: str, portfolio_id: str, creator_id: str) -> JobRunResult:
        return await self.orchestrator.run_portfolio_job(job_id, portfolio_id, creator_id)

    def get_job_status(self, job_id: str) -> AnalysisJob:
        job = self.repositories.get_job_repository().get_by_id(job_id)
        if job is None:
            raise EntityNotFound(f"Analysis job {job_id} not found")
        return job

    async def analyze_image(self, image_id: str) -> Optional[str]:
        return await self.orchestrator.image_analyzer.analyze_by_id(image_id)

    async def analyze_video(self, video_id: str) -> Optional[str]:
        return await self.orchestrator.video_analyzer.analyze_by_id(video_id)

    def sweep_stale_jobs(self) -> List[str]:
        return sweep_stale_jobs(self.repositories.get_job_repository(), self.config.stale_job_minutes,
                                logger=self.logger)


def create_analysis_service(config: Optional[AnalysisConfig] = None,
                            repositories: Optional[RepositoryFactory] = None,
                            client: Optional[GeminiClient] = None,
                            fetcher: Optional[MediaFetcher] = None,
                            rate_limiter: Optional[RateLimiter] = None,
                            logger: Optional[logging.Logger] = None) -> AnalysisService:
    """Build a fully wired service; any collaborator may be supplied instead."""
    config = config or AnalysisConfig.from_env()
    logger = logger or logging.getLogger(__name__)
    repositories = repositories or RepositoryFactory()
    client = client or GeminiClient.from_config(config)
    fetcher = fetcher or MediaFetcher(config, async_http_client=AsyncAIOHTTPClient())
    rate_limiter = rate_limiter or RateLimiter.from_config(config)

    image_repo = repositories.get_image_repository()
    video_repo = repositories.get_video_repository()
    project_repo = repositories.get_project_repository()
    portfolio_repo = repositories.get_portfolio_repository()
    job_repo = repositories.get_job_repository()

    orchestrator = JobOrchestrator(
        job_repository=job_repo,
        portfolio_repository=portfolio_repo,
        project_repository=project_repo,
        image_repository=image_repo,
        video_repository=video_repo,
        image_analyzer=ImageAnalyzer(image_repo, client, rate_limiter, fetcher),
        video_analyzer=VideoAnalyzer(video_repo, client, rate_limiter, fetcher),
        project_analyzer=ProjectAnalyzer(project_repo, client, rate_limiter, image_repo, video_repo),
        portfolio_analyzer=PortfolioAnalyzer(portfolio_repo, client, rate_limiter, project_repo),
        settle_delay=config.settle_delay
    )

    return AnalysisService(
        config=config,
        repositories=repositories,
        orchestrator=orchestrator,
        reanalysis_policy=ReanalysisPolicy.from_config(job_repo, config),
        logger=logger
    )
