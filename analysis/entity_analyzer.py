"""
Per-entity analysis for images, videos, projects and portfolios.

Every analyzer runs the same state machine: skip entities that are already
analyzed, mark the entity processing, generate text under a rate limiter slot
for its content type, embed the text, then persist text and embedding
together. Any failure is written to the entity before it propagates.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, List, Optional, Union

from .constants import AnalysisStatus, ContentType
from .error_handler import EntityNotFound, error_message
from .gemini_client import GeminiClient
from .media_fetcher import MediaFetcher, MediaSource, detect_image_mime_type
from .models import MediaItem, Portfolio, Project
from .prompts import (
    IMAGE_ANALYSIS_PROMPT,
    PORTFOLIO_ANALYSIS_PROMPT,
    PROJECT_ANALYSIS_PROMPT,
    VIDEO_ANALYSIS_PROMPT,
    PromptBuilder
)
from .rate_limiter import RateLimiter
from repositories.interfaces import (
    MediaRepositoryInterface,
    PortfolioRepositoryInterface,
    ProjectRepositoryInterface
)

Entity = Union[MediaItem, Project, Portfolio]


class EntityAnalyzer(ABC):
    """Template for analyzing one entity and persisting the outcome."""

    content_type: ContentType
    label: str

    def __init__(self, repository, client: GeminiClient, rate_limiter: RateLimiter,
                 logger: Optional[logging.Logger] = None):
        self.repository = repository
        self.client = client
        self.rate_limiter = rate_limiter
        self.logger = logger or logging.getLogger(__name__)

    async def analyze(self, entity: Entity, children: Optional[List[Any]] = None) -> Optional[str]:
        """
        Analyze one entity.

        Args:
            entity: Row to analyze
            children: Already-loaded child rows for aggregate entities

        Returns:
            The analysis text, the stored text when the entity was already
            analyzed, or None when there was nothing to analyze yet

        Raises:
            AnalysisError or provider exceptions after the failure is persisted
        """
        if entity.is_analyzed:
            self.logger.info(f"⏭️ Skipping {self.label} {entity.id}: already analyzed")
            return entity.ai_analysis

        try:
            prepared = await self._prepare_input(entity, children)
            if prepared is None:
                self.logger.info(f"No input to analyze for {self.label} {entity.id} yet")
                return None

            self.repository.update_status(entity.id, AnalysisStatus.PROCESSING)
            self.logger.info(f"🔍 Analyzing {self.label} {entity.id}")

            async with self.rate_limiter.slot(self.content_type):
                text = await self._generate(entity, prepared)

            embedding = await self._embed(text)
            self.repository.update_analysis(entity.id, text, embedding)
        except Exception as e:
            message = error_message(e)
            self.logger.error(f"❌ {self.label.capitalize()} {entity.id} analysis failed: {message}")
            self._mark_failed(entity.id, message)
            raise

        self.logger.info(f"✅ {self.label.capitalize()} {entity.id} analyzed ({len(text)} chars)")
        return text

    async def analyze_by_id(self, entity_id: str) -> Optional[str]:
        entity = self.repository.get_by_id(entity_id)
        if entity is None:
            raise EntityNotFound(f"{self.label.capitalize()} {entity_id} not found")
        return await self.analyze(entity)

    def _mark_failed(self, entity_id: str, message: str) -> None:
        try:
            self.repository.update_status(entity_id, AnalysisStatus.FAILED, message)
        except Exception as write_error:
            self.logger.error(f"❌ Could not record failure for {self.label} {entity_id}: {write_error}")

    async def _embed(self, text: str) -> List[float]:
        async with self.rate_limiter.slot(ContentType.TEXT):
            return await self.client.embed(text)

    @abstractmethod
    async def _prepare_input(self, entity: Entity, children: Optional[List[Any]]) -> Optional[Any]:
        """Build the provider input, or return None when there is nothing to analyze."""

    @abstractmethod
    async def _generate(self, entity: Entity, prepared: Any) -> str:
        """Call the provider; runs while the content-type slot is held."""


class ImageAnalyzer(EntityAnalyzer):
    """Analyzes one image from its resolved source URL."""

    content_type = ContentType.IMAGE
    label = "image"

    def __init__(self, repository: MediaRepositoryInterface, client: GeminiClient,
                 rate_limiter: RateLimiter, fetcher: MediaFetcher,
                 logger: Optional[logging.Logger] = None):
        super().__init__(repository, client, rate_limiter, logger)
        self.fetcher = fetcher

    async def _prepare_input(self, entity: MediaItem, children=None) -> MediaSource:
        return self.fetcher.require_source(entity)

    async def _generate(self, entity: MediaItem, prepared: MediaSource) -> str:
        data, content_type = await self.fetcher.fetch_bytes(prepared.url)
        mime_type = detect_image_mime_type(data, content_type)
        return await self.client.analyze_image(data, mime_type, IMAGE_ANALYSIS_PROMPT)


class VideoAnalyzer(EntityAnalyzer):
    """Downloads one video to scratch storage and analyzes it."""

    content_type = ContentType.VIDEO
    label = "video"

    def __init__(self, repository: MediaRepositoryInterface, client: GeminiClient,
                 rate_limiter: RateLimiter, fetcher: MediaFetcher,
                 logger: Optional[logging.Logger] = None):
        super().__init__(repository, client, rate_limiter, logger)
        self.fetcher = fetcher

    async def _prepare_input(self, entity: MediaItem, children=None) -> MediaSource:
        return self.fetcher.require_source(entity)

    async def _generate(self, entity: MediaItem, prepared: MediaSource) -> str:
        # The scratch file is removed when the block exits, whatever the outcome
        async with self.fetcher.scratch_file(prepared) as path:
            return await self.client.analyze_video(path, VIDEO_ANALYSIS_PROMPT)


class ProjectAnalyzer(EntityAnalyzer):
    """Synthesizes a project analysis from its successfully analyzed media."""

    content_type = ContentType.PROJECT
    label = "project"

    def __init__(self, repository: ProjectRepositoryInterface, client: GeminiClient,
                 rate_limiter: RateLimiter, image_repository: MediaRepositoryInterface,
                 video_repository: MediaRepositoryInterface,
                 logger: Optional[logging.Logger] = None):
        super().__init__(repository, client, rate_limiter, logger)
        self.image_repository = image_repository
        self.video_repository = video_repository

    async def _prepare_input(self, entity: Project, children: Optional[List[MediaItem]] = None) -> Optional[str]:
        if children is None:
            children = (self.image_repository.get_successful_for_project(entity.id)
                        + self.video_repository.get_successful_for_project(entity.id))
        analyses = PromptBuilder.combine_analyses(child.ai_analysis for child in children)
        if not analyses:
            return None
        return PromptBuilder.build_project_context(entity, analyses)

    async def _generate(self, entity: Project, prepared: str) -> str:
        return await self.client.analyze_text(PromptBuilder.with_context(PROJECT_ANALYSIS_PROMPT, prepared))


class PortfolioAnalyzer(EntityAnalyzer):
    """Synthesizes a portfolio analysis from its analyzed projects and creator details."""

    content_type = ContentType.PORTFOLIO
    label = "portfolio"

    def __init__(self, repository: PortfolioRepositoryInterface, client: GeminiClient,
                 rate_limiter: RateLimiter, project_repository: ProjectRepositoryInterface,
                 logger: Optional[logging.Logger] = None):
        super().__init__(repository, client, rate_limiter, logger)
        self.project_repository = project_repository

    async def _prepare_input(self, entity: Portfolio, children: Optional[List[Project]] = None) -> Optional[str]:
        if children is None:
            children = self.project_repository.get_successful_for_portfolio(entity.id)
        projects = [p for p in children if p.ai_analysis and p.ai_analysis.strip()]
        if not projects:
            return None
        creator = self.repository.get_creator_context(entity.creator_id)
        if creator is None:
            self.logger.warning(f"Creator {entity.creator_id} not found for portfolio {entity.id}")
        return PromptBuilder.build_portfolio_context(projects, creator)

    async def _generate(self, entity: Portfolio, prepared: str) -> str:
        return await self.client.analyze_text(PromptBuilder.with_context(PORTFOLIO_ANALYSIS_PROMPT, prepared))
