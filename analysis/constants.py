"""
Constants and enums for the analysis module.

This module contains the status values, content types and default limits used
throughout the orchestration engine.
"""

from enum import Enum
from typing import Final


class ContentType(Enum):
    """Rate limiter bucket keys."""
    IMAGE = "image"
    VIDEO = "video"
    TEXT = "text"
    PROJECT = "project"
    PORTFOLIO = "portfolio"


class AnalysisStatus(Enum):
    """Per-entity analysis status."""
    PENDING = "pending"
    PROCESSING = "processing"
    SUCCESS = "success"
    FAILED = "failed"


class JobStatus(Enum):
    """Analysis job lifecycle status."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class MediaKind(Enum):
    """Leaf media classifications."""
    IMAGE = "image"
    VIDEO = "video"


class ModelNames(Enum):
    """Model name constants."""
    GEMINI_2_0_FLASH = "gemini-2.0-flash"
    TEXT_EMBEDDING_004 = "models/text-embedding-004"


class ConfigDefaults:
    """Default configuration values."""
    # Requests per minute, per content type
    RATE_LIMITS: Final[dict] = {
        ContentType.IMAGE: 15,
        ContentType.VIDEO: 15,
        ContentType.TEXT: 15,
        ContentType.PROJECT: 15,
        ContentType.PORTFOLIO: 15,
    }
    # Concurrently held slots, per content type
    CONCURRENCY_LIMITS: Final[dict] = {
        ContentType.IMAGE: 5,
        ContentType.VIDEO: 3,
        ContentType.TEXT: 5,
        ContentType.PROJECT: 3,
        ContentType.PORTFOLIO: 2,
    }
    RATE_WINDOW_SECONDS: Final[float] = 60.0
    ACQUIRE_POLL_INTERVAL: Final[float] = 1.0
    ACQUIRE_MAX_WAIT: Final[float] = 300.0

    REQUEST_TIMEOUT: Final[float] = 120.0
    EMBEDDING_DIMENSIONS: Final[int] = 768

    INLINE_VIDEO_MAX_BYTES: Final[int] = 18 * 1024 * 1024
    FILE_API_MAX_BYTES: Final[int] = 2 * 1024 * 1024 * 1024
    FILE_POLL_INTERVAL: Final[float] = 10.0
    FILE_POLL_MAX_ATTEMPTS: Final[int] = 60

    DOWNLOAD_TIMEOUT: Final[float] = 180.0
    DOWNLOAD_SOCKET_TIMEOUT: Final[int] = 30
    MAX_VIDEO_HEIGHT: Final[int] = 480
    STORAGE_URL_MARKERS: Final[tuple] = (".supabase.co/", ".supabase.in/")

    SETTLE_DELAY: Final[float] = 5.0
    STALE_JOB_MINUTES: Final[float] = 30.0

    MIN_HOURS_BETWEEN_ANALYSES: Final[float] = 0.0
    MAX_ANALYSES_PER_MONTH: Final[int] = 100
    MONTHLY_WINDOW_DAYS: Final[int] = 30


class ErrorMessages:
    """Persisted error and status message templates."""
    NO_PROJECTS = "No projects found to analyze"
    PORTFOLIO_FAILED = "Failed to generate portfolio analysis"
    PORTFOLIO_NOTHING_TO_ANALYZE = "No analyzed projects available for portfolio analysis"
    EMBEDDING_FAILED = "Embedding generation failed"
    EMPTY_ANALYSIS = "{label} analysis returned empty text"
    JOB_LEASE_EXPIRED = "Job lease expired after {minutes:.0f} minutes without progress"
    NO_SOURCE_URL = "No valid source URL found for {kind} {media_id}"


class PlatformURLs:
    """External platform URL templates."""
    VIMEO = "https://vimeo.com/{video_id}"
    YOUTUBE = "https://www.youtube.com/watch?v={video_id}"


# Separator placed between child analyses when synthesizing a parent context
ANALYSIS_SEPARATOR: Final[str] = "\n\n---\n\n"

VIDEO_MIME_TYPE: Final[str] = "video/mp4"
DEFAULT_IMAGE_MIME_TYPE: Final[str] = "image/jpeg"
