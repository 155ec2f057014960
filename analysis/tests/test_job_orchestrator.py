"""
Tests for portfolio job orchestration.

Covers the three-stage run, partial failure isolation, progress
monotonicity, terminal-state handling and the stale-job sweep.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import pytest

from analysis.constants import AnalysisStatus, ContentType, JobStatus
from analysis.job_orchestrator import ProgressTracker, sweep_stale_jobs
from analysis.rate_limiter import RateLimiter
from analysis.tests.fakes import (
    FakeAsyncHTTPClient,
    FakeGeminiClient,
    InMemoryJobRepository,
    build_engine
)


@pytest.fixture
def portfolio_engine(scratch_dir, make_image, make_video, make_project, make_portfolio, creators):
    """Two projects: one with two images and a video, one with a single image."""
    def _build(**kwargs):
        kwargs.setdefault('images', [make_image("img-1", "proj-1"), make_image("img-2", "proj-1"),
                                     make_image("img-3", "proj-2")])
        kwargs.setdefault('videos', [make_video("vid-1", "proj-1")])
        kwargs.setdefault('projects', [make_project("proj-1"), make_project("proj-2")])
        kwargs.setdefault('portfolios', [make_portfolio()])
        kwargs.setdefault('creators', creators)
        engine = build_engine(scratch_dir, **kwargs)
        engine.job = engine.job_repo.create("port-1", "creator-1")
        return engine
    return _build


def assert_monotonic(history):
    assert all(b > a for a, b in zip(history, history[1:])), history


class TestProgressTracker:

    def test_progress_never_decreases(self):
        repo = InMemoryJobRepository()
        job = repo.create("port-1", "creator-1")
        tracker = ProgressTracker(repo, job.id)

        tracker.update(40)
        tracker.update(20)
        tracker.update(40)
        tracker.update(150)

        assert repo.progress_history[job.id] == [40, 100.0]
        assert tracker.progress == 100.0


class TestRunPortfolioJob:
    """End-to-end job runs over in-memory repositories."""

    @pytest.mark.asyncio
    async def test_happy_path_analyzes_every_level(self, portfolio_engine, scratch_dir):
        engine = portfolio_engine()

        result = await engine.orchestrator.run_portfolio_job(engine.job.id, "port-1", "creator-1")

        assert result.status is JobStatus.COMPLETED
        assert result.progress == 100.0
        assert result.media_analyzed == 4
        assert result.projects_analyzed == 2
        job = engine.job_repo.get_by_id(engine.job.id)
        assert job.status is JobStatus.COMPLETED
        assert job.completed_at is not None
        assert job.error is None
        assert engine.job_repo.status_history[job.id] == [JobStatus.PROCESSING, JobStatus.COMPLETED]
        assert engine.portfolio_repo.rows["port-1"].analysis_status is AnalysisStatus.SUCCESS
        assert all(p.analysis_status is AnalysisStatus.SUCCESS for p in engine.project_repo.rows.values())
        assert list(scratch_dir.iterdir()) == []

    @pytest.mark.asyncio
    async def test_progress_is_monotonic_and_ends_at_100(self, portfolio_engine):
        engine = portfolio_engine()

        await engine.orchestrator.run_portfolio_job(engine.job.id, "port-1", "creator-1")

        history = engine.job_repo.progress_history[engine.job.id]
        assert_monotonic(history)
        assert history[-1] == 100.0
        # Two projects: 2 of 5 steps after media, 4 of 5 after projects
        assert history[:2] == pytest.approx([40.0, 80.0])

    @pytest.mark.asyncio
    async def test_empty_portfolio_completes_without_provider_calls(self, scratch_dir, make_portfolio):
        engine = build_engine(scratch_dir, portfolios=[make_portfolio()])
        job = engine.job_repo.create("port-1", "creator-1")

        result = await engine.orchestrator.run_portfolio_job(job.id, "port-1", "creator-1")

        assert result.status is JobStatus.COMPLETED
        assert result.message == "No projects found to analyze"
        assert engine.job_repo.progress_history[job.id] == [100.0]
        stored = engine.job_repo.get_by_id(job.id)
        assert stored.status is JobStatus.COMPLETED
        assert stored.error == "No projects found to analyze"
        assert engine.client.calls == []

    @pytest.mark.asyncio
    async def test_already_analyzed_entities_are_not_reanalyzed(self, portfolio_engine, make_image, make_project):
        engine = portfolio_engine(
            images=[make_image("img-1", "proj-1", analyzed=True)],
            videos=[],
            projects=[make_project("proj-1", analyzed=True)]
        )

        result = await engine.orchestrator.run_portfolio_job(engine.job.id, "port-1", "creator-1")

        assert result.status is JobStatus.COMPLETED
        assert [kind for kind, _ in engine.client.calls] == ['text', 'embed']
        assert engine.image_repo.writes == []
        assert engine.project_repo.writes == []


class TestPartialFailure:
    """Leaf and project failures never abort the job."""

    @pytest.mark.asyncio
    async def test_one_failing_image_does_not_stop_the_rest(self, scratch_dir, make_image, make_project,
                                                            make_portfolio, creators):
        images = [make_image(f"img-{i}", "proj-1") for i in range(1, 6)]
        http = FakeAsyncHTTPClient(failing=["https://cdn.example.com/img-3.png"])
        engine = build_engine(scratch_dir, images=images, projects=[make_project("proj-1")],
                              portfolios=[make_portfolio()], creators=creators, http_client=http)
        job = engine.job_repo.create("port-1", "creator-1")

        result = await engine.orchestrator.run_portfolio_job(job.id, "port-1", "creator-1")

        statuses = {i: row.analysis_status for i, row in engine.image_repo.rows.items()}
        assert list(statuses.values()).count(AnalysisStatus.SUCCESS) == 4
        assert statuses["img-3"] is AnalysisStatus.FAILED
        assert engine.image_repo.rows["img-3"].analysis_error.startswith("Failed to fetch")
        assert result.media_analyzed == 4
        assert result.media_failed == 1
        project_prompt = next(p for kind, p in engine.client.calls if kind == 'text')
        assert "Number of analyzed media items: 4" in project_prompt
        assert result.status is JobStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_failed_project_is_excluded_from_portfolio(self, portfolio_engine):
        engine = portfolio_engine()
        # proj-2 has a single image; make it fail so proj-2 has nothing to synthesize
        engine.http_client.failing.add("https://cdn.example.com/img-3.png")

        result = await engine.orchestrator.run_portfolio_job(engine.job.id, "port-1", "creator-1")

        assert result.status is JobStatus.COMPLETED
        assert engine.project_repo.rows["proj-2"].analysis_status is AnalysisStatus.PENDING
        portfolio_prompt = engine.client.calls[-2][1]
        assert "Analyzing a professional portfolio of 1 projects:" in portfolio_prompt

    @pytest.mark.asyncio
    async def test_project_provider_failure_is_recorded(self, portfolio_engine):
        engine = portfolio_engine(client=FakeGeminiClient(errors={'project': RuntimeError("overloaded")}))

        result = await engine.orchestrator.run_portfolio_job(engine.job.id, "port-1", "creator-1")

        assert result.projects_failed == 2
        assert engine.project_repo.rows["proj-1"].analysis_error == "overloaded"
        assert result.status is JobStatus.FAILED
        assert engine.job_repo.get_by_id(engine.job.id).error == (
            "Failed to generate portfolio analysis: No analyzed projects available for portfolio analysis"
        )

    @pytest.mark.asyncio
    async def test_media_read_error_does_not_abort_run(self, portfolio_engine):
        engine = portfolio_engine()
        engine.image_repo.fail_reads_for.add("proj-1")

        result = await engine.orchestrator.run_portfolio_job(engine.job.id, "port-1", "creator-1")

        assert result.status is JobStatus.COMPLETED
        assert engine.image_repo.rows["img-3"].analysis_status is AnalysisStatus.SUCCESS
        assert engine.image_repo.rows["img-1"].analysis_status is AnalysisStatus.PENDING


class TestPortfolioFailure:
    """Only the portfolio synthesis decides the job outcome."""

    @pytest.mark.asyncio
    async def test_portfolio_error_fails_job_with_reason(self, portfolio_engine):
        engine = portfolio_engine(client=FakeGeminiClient(errors={'portfolio': RuntimeError("model overloaded")}))

        result = await engine.orchestrator.run_portfolio_job(engine.job.id, "port-1", "creator-1")

        job = engine.job_repo.get_by_id(engine.job.id)
        assert result.status is JobStatus.FAILED
        assert job.status is JobStatus.FAILED
        assert job.error == "Failed to generate portfolio analysis: model overloaded"
        assert job.completed_at is not None
        assert engine.portfolio_repo.rows["port-1"].analysis_status is AnalysisStatus.FAILED
        # Children keep their results
        assert engine.project_repo.rows["proj-1"].analysis_status is AnalysisStatus.SUCCESS
        assert engine.job_repo.progress_history[job.id][-1] < 100.0

    @pytest.mark.asyncio
    async def test_missing_portfolio_fails_job(self, portfolio_engine):
        engine = portfolio_engine(portfolios=[])

        result = await engine.orchestrator.run_portfolio_job(engine.job.id, "port-1", "creator-1")

        assert result.status is JobStatus.FAILED
        assert engine.job_repo.get_by_id(engine.job.id).error == "Portfolio port-1 not found"


class TestJobGuards:
    """Jobs only run once, from pending."""

    @pytest.mark.asyncio
    async def test_missing_job_is_reported_without_writes(self, portfolio_engine):
        engine = portfolio_engine()

        result = await engine.orchestrator.run_portfolio_job("job-404", "port-1", "creator-1")

        assert result.status is JobStatus.FAILED
        assert result.message == "Job job-404 not found"
        assert engine.client.calls == []

    @pytest.mark.asyncio
    async def test_finished_job_is_not_rerun(self, portfolio_engine):
        engine = portfolio_engine()
        await engine.orchestrator.run_portfolio_job(engine.job.id, "port-1", "creator-1")
        calls_after_first_run = len(engine.client.calls)

        result = await engine.orchestrator.run_portfolio_job(engine.job.id, "port-1", "creator-1")

        assert result.status is JobStatus.COMPLETED
        assert result.message == "Job already completed"
        assert len(engine.client.calls) == calls_after_first_run
        assert engine.job_repo.status_history[engine.job.id] == [JobStatus.PROCESSING, JobStatus.COMPLETED]

    @pytest.mark.asyncio
    async def test_status_write_failure_is_reported(self, portfolio_engine):
        engine = portfolio_engine()
        engine.job_repo.fail_status_writes = True

        result = await engine.orchestrator.run_portfolio_job(engine.job.id, "port-1", "creator-1")

        assert result.status is JobStatus.FAILED
        assert result.message == "database is locked"


class TestStageConcurrency:

    @pytest.mark.asyncio
    async def test_image_concurrency_is_bounded_by_rate_limiter(self, scratch_dir, make_image, make_project,
                                                                make_portfolio):
        limits = {ct: 10 for ct in ContentType}
        limits[ContentType.IMAGE] = 2
        limiter = RateLimiter(rate_limits={ct: 100 for ct in ContentType}, concurrency_limits=limits,
                              poll_interval=0.005, max_wait=5.0)

        class SlowClient(FakeGeminiClient):
            active = peak = 0

            async def analyze_image(self, data, mime_type, prompt):
                SlowClient.active += 1
                SlowClient.peak = max(SlowClient.peak, SlowClient.active)
                await asyncio.sleep(0.01)
                SlowClient.active -= 1
                return await super().analyze_image(data, mime_type, prompt)

        images = [make_image(f"img-{i}", "proj-1") for i in range(6)]
        engine = build_engine(scratch_dir, images=images, projects=[make_project("proj-1")],
                              portfolios=[make_portfolio()], client=SlowClient(), rate_limiter=limiter)
        job = engine.job_repo.create("port-1", "creator-1")

        result = await engine.orchestrator.run_portfolio_job(job.id, "port-1", "creator-1")

        assert result.media_analyzed == 6
        assert SlowClient.peak <= 2


class TestJobLease:
    """Long stages keep the job lease alive as each entity settles."""

    @pytest.mark.asyncio
    async def test_slow_media_stage_is_not_swept(self, scratch_dir, make_image, make_project, make_portfolio):
        limits = {ct: 10 for ct in ContentType}
        limits[ContentType.IMAGE] = 1
        limiter = RateLimiter(rate_limits={ct: 100 for ct in ContentType}, concurrency_limits=limits,
                              poll_interval=0.005, max_wait=5.0)
        sweeps = []

        class SlowClient(FakeGeminiClient):
            async def analyze_image(self, data, mime_type, prompt):
                # Each image takes 20 minutes; a sweep runs meanwhile
                later = engine.job_repo.clock() + timedelta(minutes=20)
                engine.job_repo.clock = lambda: later
                sweeps.append(sweep_stale_jobs(engine.job_repo, stale_minutes=30, now=later))
                return await super().analyze_image(data, mime_type, prompt)

        images = [make_image(f"img-{i}", "proj-1") for i in range(3)]
        engine = build_engine(scratch_dir, images=images, projects=[make_project("proj-1")],
                              portfolios=[make_portfolio()], client=SlowClient(), rate_limiter=limiter)
        start = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
        engine.job_repo.clock = lambda: start
        job = engine.job_repo.create("port-1", "creator-1")

        result = await engine.orchestrator.run_portfolio_job(job.id, "port-1", "creator-1")

        assert sweeps == [[], [], []]
        assert result.status is JobStatus.COMPLETED
        assert result.media_analyzed == 3
        stored = engine.job_repo.get_by_id(job.id)
        assert stored.status is JobStatus.COMPLETED
        assert stored.error is None
        # Three images plus the project
        assert engine.job_repo.touches[job.id] == 4

    @pytest.mark.asyncio
    async def test_lease_write_failure_does_not_fail_the_job(self, portfolio_engine):
        engine = portfolio_engine()
        engine.job_repo.touch = Mock(side_effect=RuntimeError("database is locked"))

        result = await engine.orchestrator.run_portfolio_job(engine.job.id, "port-1", "creator-1")

        assert result.status is JobStatus.COMPLETED
        assert engine.job_repo.touch.call_count == 6


class TestSweepStaleJobs:

    def test_only_expired_processing_jobs_are_failed(self):
        repo = InMemoryJobRepository()
        now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
        stale = repo.create("port-1", "creator-1")
        fresh = repo.create("port-2", "creator-1")
        pending = repo.create("port-3", "creator-1")
        repo.update_status(stale.id, JobStatus.PROCESSING)
        repo.update_status(fresh.id, JobStatus.PROCESSING)
        repo.jobs[stale.id].updated_at = now - timedelta(minutes=45)
        repo.jobs[fresh.id].updated_at = now - timedelta(minutes=5)
        repo.jobs[pending.id].updated_at = now - timedelta(hours=5)

        swept = sweep_stale_jobs(repo, stale_minutes=30, now=now)

        assert swept == [stale.id]
        assert repo.jobs[stale.id].status is JobStatus.FAILED
        assert repo.jobs[stale.id].error == "Job lease expired after 30 minutes without progress"
        assert repo.jobs[fresh.id].status is JobStatus.PROCESSING
        assert repo.jobs[pending.id].status is JobStatus.PENDING
