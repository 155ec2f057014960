"""
Configuration management for the analysis module.
"""

import tempfile
from dataclasses import dataclass, field, fields
from typing import Dict, Optional, Tuple

from utils.config import config as env_config

from .constants import ConfigDefaults, ContentType, ModelNames

ENV_PREFIX = 'ANALYSIS_'


@dataclass
class AnalysisConfig:
    """
    Configuration for the orchestration engine and its components.

    Centralizes provider, rate limiter, download and reanalysis settings
    so every component can be constructed from a single object in tests.
    """

    # Provider settings
    gemini_api_key: Optional[str] = None
    model_name: str = ModelNames.GEMINI_2_0_FLASH.value
    embedding_model: str = ModelNames.TEXT_EMBEDDING_004.value
    embedding_dimensions: int = ConfigDefaults.EMBEDDING_DIMENSIONS
    request_timeout: float = ConfigDefaults.REQUEST_TIMEOUT

    # Rate limiter settings
    rate_limits: Dict[ContentType, int] = field(default_factory=lambda: dict(ConfigDefaults.RATE_LIMITS))
    concurrency_limits: Dict[ContentType, int] = field(default_factory=lambda: dict(ConfigDefaults.CONCURRENCY_LIMITS))
    rate_window_seconds: float = ConfigDefaults.RATE_WINDOW_SECONDS
    acquire_poll_interval: float = ConfigDefaults.ACQUIRE_POLL_INTERVAL
    acquire_max_wait: float = ConfigDefaults.ACQUIRE_MAX_WAIT

    # Video settings
    inline_video_max_bytes: int = ConfigDefaults.INLINE_VIDEO_MAX_BYTES
    file_api_max_bytes: int = ConfigDefaults.FILE_API_MAX_BYTES
    file_poll_interval: float = ConfigDefaults.FILE_POLL_INTERVAL
    file_poll_max_attempts: int = ConfigDefaults.FILE_POLL_MAX_ATTEMPTS

    # Download settings
    download_timeout: float = ConfigDefaults.DOWNLOAD_TIMEOUT
    download_socket_timeout: int = ConfigDefaults.DOWNLOAD_SOCKET_TIMEOUT
    max_video_height: int = ConfigDefaults.MAX_VIDEO_HEIGHT
    scratch_dir: str = field(default_factory=tempfile.gettempdir)
    storage_url_markers: Tuple[str, ...] = ConfigDefaults.STORAGE_URL_MARKERS

    # Orchestrator settings
    settle_delay: float = ConfigDefaults.SETTLE_DELAY
    stale_job_minutes: float = ConfigDefaults.STALE_JOB_MINUTES

    # Reanalysis settings
    min_hours_between_analyses: float = ConfigDefaults.MIN_HOURS_BETWEEN_ANALYSES
    max_analyses_per_month: int = ConfigDefaults.MAX_ANALYSES_PER_MONTH
    monthly_window_days: int = ConfigDefaults.MONTHLY_WINDOW_DAYS

    def __post_init__(self):
        """Validate configuration after initialization."""
        self._validate_config()

    def _validate_config(self):
        """Validate configuration values."""
        for name in ('request_timeout', 'rate_window_seconds', 'acquire_poll_interval',
                     'acquire_max_wait', 'file_poll_interval', 'download_timeout'):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")

        for name in ('embedding_dimensions', 'inline_video_max_bytes', 'file_api_max_bytes',
                     'file_poll_max_attempts', 'download_socket_timeout', 'max_video_height',
                     'max_analyses_per_month', 'monthly_window_days'):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")

        if self.inline_video_max_bytes >= self.file_api_max_bytes:
            raise ValueError("inline_video_max_bytes must be below file_api_max_bytes")

        if self.settle_delay < 0:
            raise ValueError("settle_delay must be non-negative")
        if self.stale_job_minutes <= 0:
            raise ValueError("stale_job_minutes must be positive")
        if self.min_hours_between_analyses < 0:
            raise ValueError("min_hours_between_analyses must be non-negative")

        for content_type in ContentType:
            if self.rate_limits.get(content_type, 0) <= 0:
                raise ValueError(f"rate limit for {content_type.value} must be positive")
            if self.concurrency_limits.get(content_type, 0) <= 0:
                raise ValueError(f"concurrency limit for {content_type.value} must be positive")

    def require_api_key(self) -> str:
        """Return the Gemini API key or raise if it is not configured."""
        if not self.gemini_api_key:
            raise ValueError("GEMINI_API_KEY is required for analysis")
        return self.gemini_api_key

    @classmethod
    def from_dict(cls, config_dict: dict) -> 'AnalysisConfig':
        """Create configuration from dictionary."""
        values = dict(config_dict)
        for key in ('rate_limits', 'concurrency_limits'):
            if key in values:
                values[key] = {ContentType(k) if not isinstance(k, ContentType) else k: int(v)
                               for k, v in values[key].items()}
        if 'storage_url_markers' in values:
            values['storage_url_markers'] = tuple(values['storage_url_markers'])
        return cls(**values)

    @classmethod
    def from_env(cls, **overrides) -> 'AnalysisConfig':
        """
        Build configuration from the environment.

        GEMINI_API_KEY supplies the key; any scalar field may be overridden with
        ANALYSIS_<FIELD>, and per-type limits with ANALYSIS_RATE_LIMIT_<TYPE> or
        ANALYSIS_CONCURRENCY_<TYPE>.
        """
        values = {'gemini_api_key': env_config.get_env_var('GEMINI_API_KEY')}

        for f in fields(cls):
            if f.name in ('gemini_api_key', 'rate_limits', 'concurrency_limits', 'storage_url_markers'):
                continue
            raw = env_config.get_env_var(f"{ENV_PREFIX}{f.name.upper()}")
            if raw is not None:
                values[f.name] = _coerce(f.type, raw)

        markers = env_config.get_env_var(f"{ENV_PREFIX}STORAGE_URL_MARKERS")
        if markers:
            values['storage_url_markers'] = tuple(m.strip() for m in markers.split(',') if m.strip())

        for key, env_name in (('rate_limits', 'RATE_LIMIT'), ('concurrency_limits', 'CONCURRENCY')):
            defaults = dict(ConfigDefaults.RATE_LIMITS if key == 'rate_limits' else ConfigDefaults.CONCURRENCY_LIMITS)
            for content_type in ContentType:
                raw = env_config.get_env_var(f"{ENV_PREFIX}{env_name}_{content_type.name}")
                if raw is not None:
                    defaults[content_type] = int(raw)
            values[key] = defaults

        values.update(overrides)
        return cls(**values)

    def to_dict(self) -> dict:
        """Convert configuration to dictionary."""
        result = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, dict):
                value = {k.value: v for k, v in value.items()}
            elif isinstance(value, tuple):
                value = list(value)
            result[f.name] = value
        # Never expose the key itself
        result['gemini_api_key'] = '***' if self.gemini_api_key else None
        return result

    def __str__(self) -> str:
        """String representation of configuration."""
        return f"AnalysisConfig({self.to_dict()})"


def _coerce(field_type, raw: str):
    """Convert an environment string to the field's scalar type."""
    if field_type in (int, 'int'):
        return int(raw)
    if field_type in (float, 'float'):
        return float(raw)
    return raw
