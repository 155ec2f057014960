"""
Tests for MediaFetcher, YtDlpDownloader and image MIME detection.
"""

import asyncio
import os
from io import BytesIO
from unittest.mock import AsyncMock, MagicMock, Mock, patch

import pytest
import requests
from PIL import Image

from analysis.config import AnalysisConfig
from analysis.error_handler import DownloadFailure, SourceNotFound
from analysis.media_fetcher import (
    DownloadResult,
    MediaFetcher,
    MediaSource,
    TempFileSystem,
    YtDlpDownloader,
    detect_image_mime_type,
    is_valid_url
)
from analysis.tests.fakes import FakeAsyncHTTPClient, FakeDownloader


class MockHTTPClient:
    """Mock synchronous HTTP client for testing."""
    def __init__(self, response_data=b"test content", error=None, content_type="image/jpeg", status_error=None):
        self.response_data = response_data
        self.error = error
        self.status_error = status_error
        self.content_type = content_type
        self.calls = []
        self.responses = []

    def get(self, url, timeout=30.0, **kwargs):
        self.calls.append((url, kwargs))
        if self.error:
            raise self.error
        response = MagicMock()
        response.__enter__.return_value = response
        response.__exit__.return_value = False
        response.raise_for_status = Mock(side_effect=self.status_error)
        self.responses.append(response)
        response.iter_content = Mock(return_value=[self.response_data])
        response.content = self.response_data
        response.headers = {'Content-Type': self.content_type}
        return response


@pytest.fixture
def fetcher_factory(scratch_dir):
    def _make(**kwargs):
        config = AnalysisConfig(scratch_dir=str(scratch_dir))
        kwargs.setdefault('file_system', TempFileSystem(str(scratch_dir)))
        return MediaFetcher(config, **kwargs)
    return _make


class TestResolveSourceURL:
    """Source priority: platform ids, resolutions, base URL."""

    def test_vimeo_id_wins(self, fetcher_factory, make_video):
        fetcher = fetcher_factory()
        video = make_video(vimeo_id="12345", youtube_id="abc", url="https://abc.supabase.co/v.mp4")

        source = fetcher.resolve_source_url(video)

        assert source == MediaSource("https://vimeo.com/12345", True)

    def test_youtube_id_when_no_vimeo(self, fetcher_factory, make_video):
        fetcher = fetcher_factory()

        source = fetcher.resolve_source_url(make_video(youtube_id="dQw4w9WgXcQ"))

        assert source.url == "https://www.youtube.com/watch?v=dQw4w9WgXcQ"
        assert source.is_external_platform

    def test_highest_numeric_resolution_skipping_malformed(self, fetcher_factory, make_image):
        fetcher = fetcher_factory()
        image = make_image(resolutions={
            "320": "https://cdn.example.com/320.jpg",
            "1920": "not a url",
            "1080": "https://cdn.example.com/1080.jpg",
            "max": "https://cdn.example.com/max.jpg",
        })

        source = fetcher.resolve_source_url(image)

        assert source.url == "https://cdn.example.com/1080.jpg"
        assert not source.is_external_platform

    def test_base_url_fallback(self, fetcher_factory, make_image):
        fetcher = fetcher_factory()

        source = fetcher.resolve_source_url(make_image(url="https://cdn.example.com/a.png"))

        assert source.url == "https://cdn.example.com/a.png"

    def test_storage_video_is_not_external(self, fetcher_factory, make_video):
        fetcher = fetcher_factory()

        source = fetcher.resolve_source_url(make_video(url="https://abc.supabase.co/storage/v1/v.mp4"))

        assert not source.is_external_platform

    def test_non_storage_video_url_uses_external_downloader(self, fetcher_factory, make_video):
        fetcher = fetcher_factory()

        source = fetcher.resolve_source_url(make_video(url="https://www.behance.net/gallery/123"))

        assert source.is_external_platform

    def test_nothing_usable_returns_none(self, fetcher_factory, make_image):
        fetcher = fetcher_factory()
        image = make_image(url="ftp://example.com/a.png", resolutions={"800": "broken"})

        assert fetcher.resolve_source_url(image) is None
        with pytest.raises(SourceNotFound, match="No valid source URL found for image img-1"):
            fetcher.require_source(image)

    def test_is_valid_url(self):
        assert is_valid_url("https://example.com/x")
        assert is_valid_url("http://example.com")
        assert not is_valid_url("example.com/x")
        assert not is_valid_url("")
        assert not is_valid_url(None)


class TestDownloadToScratch:
    """Scratch downloads always leave either a full file or nothing."""

    @pytest.mark.asyncio
    async def test_storage_download_uses_async_http_client(self, fetcher_factory, scratch_dir):
        http = FakeAsyncHTTPClient(payloads={"https://abc.supabase.co/v.mp4": b"video-bytes"})
        fetcher = fetcher_factory(async_http_client=http)

        path = await fetcher.download_to_scratch(MediaSource("https://abc.supabase.co/v.mp4"))

        assert os.path.dirname(path) == str(scratch_dir)
        with open(path, 'rb') as f:
            assert f.read() == b"video-bytes"
        fetcher.cleanup_file(path)
        assert not os.path.exists(path)

    @pytest.mark.asyncio
    async def test_storage_download_falls_back_to_requests(self, fetcher_factory):
        http = MockHTTPClient(response_data=b"sync-video")
        fetcher = fetcher_factory(http_client=http)

        path = await fetcher.download_to_scratch(MediaSource("https://abc.supabase.co/v.mp4"))

        with open(path, 'rb') as f:
            assert f.read() == b"sync-video"
        assert http.calls[0][1] == {'stream': True}
        http.responses[0].__exit__.assert_called_once()
        fetcher.cleanup_file(path)

    @pytest.mark.asyncio
    async def test_streamed_response_closed_on_http_error(self, fetcher_factory, scratch_dir):
        http = MockHTTPClient(status_error=requests.HTTPError("503 Service Unavailable"))
        fetcher = fetcher_factory(http_client=http)

        with pytest.raises(DownloadFailure, match="503"):
            await fetcher.download_to_scratch(MediaSource("https://abc.supabase.co/v.mp4"))

        http.responses[0].__exit__.assert_called_once()
        assert list(scratch_dir.iterdir()) == []

    @pytest.mark.asyncio
    async def test_platform_download_uses_external_downloader(self, fetcher_factory):
        downloader = FakeDownloader(content=b"from-platform")
        fetcher = fetcher_factory(downloader=downloader)

        path = await fetcher.download_to_scratch(MediaSource("https://vimeo.com/1", True))

        assert downloader.calls == [("https://vimeo.com/1", path)]
        fetcher.cleanup_file(path)

    @pytest.mark.asyncio
    async def test_downloader_failure_removes_partial_file(self, fetcher_factory, scratch_dir):
        fetcher = fetcher_factory(downloader=FakeDownloader(error="Exit code 1: ERROR: Unsupported URL"))

        with pytest.raises(DownloadFailure, match="Unsupported URL"):
            await fetcher.download_to_scratch(MediaSource("https://vimeo.com/1", True))

        assert os.listdir(scratch_dir) == []

    @pytest.mark.asyncio
    async def test_http_error_becomes_download_failure(self, fetcher_factory, scratch_dir):
        url = "https://abc.supabase.co/missing.mp4"
        fetcher = fetcher_factory(async_http_client=FakeAsyncHTTPClient(failing=[url]))

        with pytest.raises(DownloadFailure):
            await fetcher.download_to_scratch(MediaSource(url))

        assert os.listdir(scratch_dir) == []

    @pytest.mark.asyncio
    async def test_empty_download_is_a_failure(self, fetcher_factory, scratch_dir):
        url = "https://abc.supabase.co/empty.mp4"
        fetcher = fetcher_factory(async_http_client=FakeAsyncHTTPClient(payloads={url: b""}))

        with pytest.raises(DownloadFailure, match="empty"):
            await fetcher.download_to_scratch(MediaSource(url))

        assert os.listdir(scratch_dir) == []

    @pytest.mark.asyncio
    async def test_scratch_file_is_removed_when_block_raises(self, fetcher_factory, scratch_dir):
        fetcher = fetcher_factory(async_http_client=FakeAsyncHTTPClient())

        with pytest.raises(RuntimeError):
            async with fetcher.scratch_file(MediaSource("https://abc.supabase.co/v.mp4")) as path:
                assert os.path.exists(path)
                raise RuntimeError("analysis failed")

        assert os.listdir(scratch_dir) == []


class TestFetchBytes:
    """In-memory fetches for images."""

    @pytest.mark.asyncio
    async def test_returns_content_and_type(self, fetcher_factory):
        http = FakeAsyncHTTPClient(payloads={"https://cdn.example.com/a.png": b"png"}, content_type="image/png")
        fetcher = fetcher_factory(async_http_client=http)

        data, content_type = await fetcher.fetch_bytes("https://cdn.example.com/a.png")

        assert data == b"png"
        assert content_type == "image/png"

    @pytest.mark.asyncio
    async def test_requests_errors_become_download_failure(self, fetcher_factory):
        fetcher = fetcher_factory(http_client=MockHTTPClient(error=requests.ConnectionError("refused")))

        with pytest.raises(DownloadFailure, match="refused"):
            await fetcher.fetch_bytes("https://cdn.example.com/a.png")

    @pytest.mark.asyncio
    async def test_empty_body_is_a_failure(self, fetcher_factory):
        fetcher = fetcher_factory(http_client=MockHTTPClient(response_data=b""))

        with pytest.raises(DownloadFailure, match="empty"):
            await fetcher.fetch_bytes("https://cdn.example.com/a.png")


class TestDetectImageMimeType:
    """MIME detection from header or bytes."""

    def _png_bytes(self):
        buffer = BytesIO()
        Image.new("RGB", (2, 2), "red").save(buffer, format="PNG")
        return buffer.getvalue()

    def test_header_image_type_is_trusted(self):
        assert detect_image_mime_type(b"whatever", "image/webp; charset=binary") == "image/webp"

    def test_sniffs_bytes_when_header_is_generic(self):
        assert detect_image_mime_type(self._png_bytes(), "application/octet-stream") == "image/png"

    def test_unknown_bytes_fall_back_to_jpeg(self):
        assert detect_image_mime_type(b"not an image", None) == "image/jpeg"


class TestYtDlpDownloader:
    """Subprocess invocation of yt-dlp, without spawning real processes."""

    def _process(self, returncode=0, stderr=b""):
        process = Mock()
        process.returncode = returncode
        process.communicate = AsyncMock(return_value=(b"", stderr))
        process.wait = AsyncMock(return_value=returncode)
        return process

    def test_command_bounds_resolution_and_merges_to_mp4(self):
        downloader = YtDlpDownloader(max_height=480, socket_timeout=30)

        command = downloader.build_command("https://vimeo.com/1", "/tmp/out.mp4")

        assert command[0] == "yt-dlp"
        assert "bestvideo[height<=480]+bestaudio/best[height<=480]" in command
        assert command[command.index("--merge-output-format") + 1] == "mp4"
        assert command[command.index("--socket-timeout") + 1] == "30"
        assert command[command.index("-o") + 1] == "/tmp/out.mp4"
        assert command[-1] == "https://vimeo.com/1"

    @pytest.mark.asyncio
    async def test_success_requires_non_empty_file(self, tmp_path):
        output = tmp_path / "out.mp4"
        output.write_bytes(b"video")
        downloader = YtDlpDownloader()

        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=self._process())):
            result = await downloader.download("https://vimeo.com/1", str(output), timeout=5)

        assert result == DownloadResult(True)

    @pytest.mark.asyncio
    async def test_non_zero_exit_reports_stderr(self, tmp_path):
        downloader = YtDlpDownloader()
        process = self._process(returncode=1, stderr=b"ERROR: Private video")

        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=process)):
            result = await downloader.download("https://vimeo.com/1", str(tmp_path / "out.mp4"), timeout=5)

        assert not result.success
        assert result.error == "Exit code 1: ERROR: Private video"

    @pytest.mark.asyncio
    async def test_missing_output_with_format_error(self, tmp_path):
        downloader = YtDlpDownloader()
        process = self._process(stderr=b"ERROR: Requested format is not available")

        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=process)):
            result = await downloader.download("https://vimeo.com/1", str(tmp_path / "out.mp4"), timeout=5)

        assert result.error == "Requested format not available."

    @pytest.mark.asyncio
    async def test_missing_output_reports_empty_file(self, tmp_path):
        downloader = YtDlpDownloader()

        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=self._process(stderr=b"warning"))):
            result = await downloader.download("https://vimeo.com/1", str(tmp_path / "out.mp4"), timeout=5)

        assert result.error == "Downloaded file is empty or doesn't exist. Stderr: warning"

    @pytest.mark.asyncio
    async def test_spawn_failure(self, tmp_path):
        downloader = YtDlpDownloader()

        with patch("asyncio.create_subprocess_exec", AsyncMock(side_effect=FileNotFoundError("yt-dlp"))):
            result = await downloader.download("https://vimeo.com/1", str(tmp_path / "out.mp4"), timeout=5)

        assert not result.success
        assert result.error.startswith("Failed to spawn yt-dlp")

    @pytest.mark.asyncio
    async def test_timeout_kills_process(self, tmp_path):
        downloader = YtDlpDownloader()
        process = self._process()

        async def hang():
            await asyncio.sleep(10)

        process.communicate = hang
        process.kill = Mock()

        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=process)):
            result = await downloader.download("https://vimeo.com/1", str(tmp_path / "out.mp4"), timeout=0.05)

        process.kill.assert_called_once()
        assert "timed out" in result.error
