"""
Reanalysis gating consulted before a new portfolio job is created.
"""

import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from .config import AnalysisConfig
from .constants import ConfigDefaults
from .models import ReanalysisDecision
from repositories.interfaces import JobRepositoryInterface


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReanalysisPolicy:
    """
    Decides whether a portfolio may be analyzed again.

    Two rules: a minimum interval since the last job (disabled when zero) and
    a ceiling on jobs created in a trailing window of days.
    """

    def __init__(self,
                 job_repository: JobRepositoryInterface,
                 min_hours_between_analyses: float = ConfigDefaults.MIN_HOURS_BETWEEN_ANALYSES,
                 max_analyses_per_month: int = ConfigDefaults.MAX_ANALYSES_PER_MONTH,
                 monthly_window_days: int = ConfigDefaults.MONTHLY_WINDOW_DAYS,
                 clock: Callable[[], datetime] = _utcnow,
                 logger: Optional[logging.Logger] = None):
        self.job_repository = job_repository
        self.min_hours_between_analyses = min_hours_between_analyses
        self.max_analyses_per_month = max_analyses_per_month
        self.monthly_window_days = monthly_window_days
        self._clock = clock
        self.logger = logger or logging.getLogger(__name__)

    @classmethod
    def from_config(cls, job_repository: JobRepositoryInterface, config: AnalysisConfig,
                    logger: Optional[logging.Logger] = None) -> 'ReanalysisPolicy':
        return cls(
            job_repository,
            min_hours_between_analyses=config.min_hours_between_analyses,
            max_analyses_per_month=config.max_analyses_per_month,
            monthly_window_days=config.monthly_window_days,
            logger=logger
        )

    def check(self, portfolio_id: str) -> ReanalysisDecision:
        now = self._clock()
        last_job = self.job_repository.get_last_job_for_portfolio(portfolio_id)
        if last_job is None:
            return ReanalysisDecision(True, "First analysis")

        if self.min_hours_between_analyses > 0 and last_job.created_at is not None:
            next_available = last_job.created_at + timedelta(hours=self.min_hours_between_analyses)
            if now < next_available:
                hours_left = math.ceil((next_available - now).total_seconds() / 3600)
                self.logger.info(f"Reanalysis of portfolio {portfolio_id} refused: interval not elapsed")
                return ReanalysisDecision(
                    False,
                    f"Too soon since last analysis. Please wait {hours_left} more hours.",
                    next_available
                )

        recent = self.job_repository.count_jobs_in_last_n_days(portfolio_id, self.monthly_window_days, now=now)
        if recent >= self.max_analyses_per_month:
            self.logger.info(f"Reanalysis of portfolio {portfolio_id} refused: {recent} jobs in window")
            return ReanalysisDecision(
                False,
                f"Monthly analysis limit reached ({self.max_analyses_per_month} per month). Please try again later."
            )

        return ReanalysisDecision(True, "Analysis allowed")
