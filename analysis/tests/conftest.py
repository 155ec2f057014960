"""
Shared pytest fixtures for analysis tests.
Provides entity builders and a scratch directory for downloads.
"""

import pytest

from analysis.constants import AnalysisStatus, MediaKind
from analysis.models import CreatorContext, MediaItem, Portfolio, Project
from analysis.tests.fakes import EMBEDDING


@pytest.fixture
def scratch_dir(tmp_path):
    """Directory receiving scratch downloads; tests assert it ends up empty."""
    path = tmp_path / "scratch"
    path.mkdir()
    return path


@pytest.fixture
def make_image():
    def _make(image_id="img-1", project_id="proj-1", analyzed=False, **kwargs):
        kwargs.setdefault('url', f"https://cdn.example.com/{image_id}.png")
        if analyzed:
            kwargs.update(ai_analysis=f"stored analysis of {image_id}", embedding=list(EMBEDDING),
                          analysis_status=AnalysisStatus.SUCCESS)
        return MediaItem(id=image_id, project_id=project_id, kind=MediaKind.IMAGE, **kwargs)
    return _make


@pytest.fixture
def make_video():
    def _make(video_id="vid-1", project_id="proj-1", analyzed=False, **kwargs):
        if not any(k in kwargs for k in ('url', 'vimeo_id', 'youtube_id', 'resolutions')):
            kwargs['url'] = f"https://abc.supabase.co/storage/v1/{video_id}.mp4"
        if analyzed:
            kwargs.update(ai_analysis=f"stored analysis of {video_id}", embedding=list(EMBEDDING),
                          analysis_status=AnalysisStatus.SUCCESS)
        return MediaItem(id=video_id, project_id=project_id, kind=MediaKind.VIDEO, **kwargs)
    return _make


@pytest.fixture
def make_project():
    def _make(project_id="proj-1", portfolio_id="port-1", analyzed=False, **kwargs):
        kwargs.setdefault('title', f"Project {project_id}")
        if analyzed:
            kwargs.update(ai_analysis=f"stored analysis of {project_id}", embedding=list(EMBEDDING),
                          analysis_status=AnalysisStatus.SUCCESS)
        return Project(id=project_id, portfolio_id=portfolio_id, **kwargs)
    return _make


@pytest.fixture
def make_portfolio():
    def _make(portfolio_id="port-1", creator_id="creator-1", **kwargs):
        return Portfolio(id=portfolio_id, creator_id=creator_id, **kwargs)
    return _make


@pytest.fixture
def creators():
    return {'creator-1': CreatorContext(username="ana", primary_role="Director", bio="Commercials and music videos")}
