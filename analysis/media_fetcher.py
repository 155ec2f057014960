"""
Media source resolution and scratch-file downloads.

Resolves the canonical source of a media item, fetches image bytes, and
downloads videos to scratch storage either with a streamed HTTP GET
(storage-hosted files) or with an external downloader subprocess
(Vimeo/YouTube and other platform links). Scratch files are always removed
by the code that created them.
"""

import asyncio
import logging
import os
import re
import tempfile
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from io import BytesIO
from typing import Optional, Protocol, Tuple
from urllib.parse import urlparse

import aiohttp
import requests
from PIL import Image, UnidentifiedImageError

from .config import AnalysisConfig
from .constants import DEFAULT_IMAGE_MIME_TYPE, ErrorMessages, PlatformURLs
from .error_handler import DownloadFailure, SourceNotFound
from .models import MediaItem

CHUNK_SIZE = 8192


# Protocols for dependency injection
class HTTPClientProtocol(Protocol):
    """Protocol for synchronous HTTP clients."""
    def get(self, url: str, timeout: float = 30.0, **kwargs) -> requests.Response:
        ...


class AsyncHTTPClientProtocol(Protocol):
    """Protocol for async HTTP clients."""
    async def download_to_file(self, url: str, path: str, timeout: float = 30.0) -> int:
        ...

    async def fetch_bytes(self, url: str, timeout: float = 30.0) -> Tuple[bytes, Optional[str]]:
        ...


class FileSystemProtocol(Protocol):
    """Protocol for scratch file operations."""
    def scratch_path(self, suffix: str = "") -> str:
        ...

    def remove_file(self, file_path: str) -> None:
        ...

    def file_size(self, file_path: str) -> int:
        ...


@dataclass
class DownloadResult:
    """Outcome of an external downloader invocation."""
    success: bool
    error: Optional[str] = None


class ExternalDownloader(Protocol):
    """Protocol for platform video downloaders."""
    async def download(self, url: str, output_path: str, timeout: float) -> DownloadResult:
        ...


@dataclass
class MediaSource:
    """Resolved source for one media item."""
    url: str
    is_external_platform: bool = False


# Concrete Implementations
class RequestsHTTPClient:
    """Concrete HTTP client using requests library."""
    def get(self, url: str, timeout: float = 30.0, **kwargs) -> requests.Response:
        return requests.get(url, timeout=timeout, **kwargs)


class AsyncAIOHTTPClient:
    """
    Concrete async HTTP client using aiohttp library.

    Every call opens its own session so one instance can serve concurrent
    analyzers.
    """

    async def download_to_file(self, url: str, path: str, timeout: float = 30.0) -> int:
        written = 0
        async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=timeout)) as session:
            async with session.get(url) as response:
                response.raise_for_status()
                with open(path, 'wb') as f:
                    async for chunk in response.content.iter_chunked(CHUNK_SIZE):
                        if chunk:
                            f.write(chunk)
                            written += len(chunk)
        return written

    async def fetch_bytes(self, url: str, timeout: float = 30.0) -> Tuple[bytes, Optional[str]]:
        async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=timeout)) as session:
            async with session.get(url) as response:
                response.raise_for_status()
                return await response.read(), response.headers.get('Content-Type')


class TempFileSystem:
    """Concrete file system rooted in a scratch directory."""

    def __init__(self, scratch_dir: Optional[str] = None):
        self.scratch_dir = scratch_dir or tempfile.gettempdir()

    def scratch_path(self, suffix: str = "") -> str:
        """Unique path in the scratch directory; the file itself is not created."""
        os.makedirs(self.scratch_dir, exist_ok=True)
        return os.path.join(self.scratch_dir, f"analysis_{uuid.uuid4().hex}{suffix}")

    def remove_file(self, file_path: str) -> None:
        if os.path.exists(file_path):
            os.remove(file_path)

    def file_size(self, file_path: str) -> int:
        return os.path.getsize(file_path) if os.path.exists(file_path) else 0


class YtDlpDownloader:
    """ExternalDownloader backed by the yt-dlp command line tool."""

    def __init__(self, max_height: int = 480, socket_timeout: int = 30,
                 executable: str = "yt-dlp", logger: Optional[logging.Logger] = None):
        self.max_height = max_height
        self.socket_timeout = socket_timeout
        self.executable = executable
        self.logger = logger or logging.getLogger(__name__)

    def build_command(self, url: str, output_path: str) -> list:
        height = self.max_height
        return [
            self.executable,
            "--format", f"bestvideo[height<={height}]+bestaudio/best[height<={height}]",
            "--merge-output-format", "mp4",
            "--quiet",
            "--no-playlist",
            "--ignore-errors",
            "-o", output_path,
            "--socket-timeout", str(self.socket_timeout),
            url,
        ]

    async def download(self, url: str, output_path: str, timeout: float) -> DownloadResult:
        command = self.build_command(url, output_path)
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE
            )
        except OSError as e:
            return DownloadResult(False, f"Failed to spawn yt-dlp: {e}")

        try:
            _, stderr_bytes = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            return DownloadResult(False, f"yt-dlp timed out after {timeout:.0f}s")

        stderr = stderr_bytes.decode('utf-8', errors='replace').strip()

        if process.returncode != 0:
            return DownloadResult(False, f"Exit code {process.returncode}: {stderr}")

        if not os.path.exists(output_path) or os.path.getsize(output_path) == 0:
            if "Requested format is not available" in stderr:
                return DownloadResult(False, "Requested format not available.")
            return DownloadResult(False, f"Downloaded file is empty or doesn't exist. Stderr: {stderr}")

        return DownloadResult(True)


def is_valid_url(url: Optional[str]) -> bool:
    if not url or not isinstance(url, str):
        return False
    parsed = urlparse(url.strip())
    return parsed.scheme in ('http', 'https') and bool(parsed.netloc)


def _resolution_key(key: str) -> Optional[int]:
    match = re.search(r'\d+', str(key))
    return int(match.group()) if match else None


def detect_image_mime_type(data: bytes, content_type: Optional[str] = None) -> str:
    """MIME type from the HTTP header when it names an image, else sniffed with Pillow."""
    if content_type:
        mime = content_type.split(';')[0].strip().lower()
        if mime.startswith('image/'):
            return mime
    try:
        with Image.open(BytesIO(data)) as img:
            detected = Image.MIME.get(img.format or '')
    except (UnidentifiedImageError, OSError):
        detected = None
    return detected or DEFAULT_IMAGE_MIME_TYPE


class MediaFetcher:
    """
    Source resolution and scratch downloads for media items.

    All collaborators are injectable; the defaults talk to the network and the
    local temp directory.
    """

    def __init__(self,
                 config: Optional[AnalysisConfig] = None,
                 http_client: Optional[HTTPClientProtocol] = None,
                 async_http_client: Optional[AsyncHTTPClientProtocol] = None,
                 file_system: Optional[FileSystemProtocol] = None,
                 downloader: Optional[ExternalDownloader] = None,
                 logger: Optional[logging.Logger] = None):
        self.config = config or AnalysisConfig()
        self.logger = logger or logging.getLogger(__name__)
        self.http_client = http_client or RequestsHTTPClient()
        self.async_http_client = async_http_client
        self.file_system = file_system or TempFileSystem(self.config.scratch_dir)
        self.downloader = downloader or YtDlpDownloader(
            max_height=self.config.max_video_height,
            socket_timeout=self.config.download_socket_timeout,
            logger=self.logger
        )

    def _is_storage_url(self, url: str) -> bool:
        return any(marker in url for marker in self.config.storage_url_markers)

    def resolve_source_url(self, media: MediaItem) -> Optional[MediaSource]:
        """
        Pick the canonical source for a media item.

        Priority: Vimeo id, YouTube id, highest numeric entry in the
        resolutions map (malformed URLs skipped), then the base URL.
        Returns None when nothing usable exists.
        """
        if media.vimeo_id:
            return MediaSource(PlatformURLs.VIMEO.format(video_id=media.vimeo_id), True)
        if media.youtube_id:
            return MediaSource(PlatformURLs.YOUTUBE.format(video_id=media.youtube_id), True)

        candidates = []
        for key, url in (media.resolutions or {}).items():
            size = _resolution_key(key)
            if size is not None and is_valid_url(url):
                candidates.append((size, url))
        if candidates:
            _, url = max(candidates, key=lambda c: c[0])
            return MediaSource(url, media.is_video and not self._is_storage_url(url))

        if is_valid_url(media.url):
            url = media.url.strip()
            return MediaSource(url, media.is_video and not self._is_storage_url(url))

        return None

    def require_source(self, media: MediaItem) -> MediaSource:
        source = self.resolve_source_url(media)
        if source is None:
            raise SourceNotFound(ErrorMessages.NO_SOURCE_URL.format(kind=media.kind.value, media_id=media.id))
        return source

    async def download_to_scratch(self, source: MediaSource) -> str:
        """
        Download a video to a new scratch file and return its path.

        Raises:
            DownloadFailure: the download failed or produced an empty file;
                nothing is left on disk in that case
        """
        path = self.file_system.scratch_path(suffix='.mp4')
        start = time.time()
        self.logger.info(f"🔗 Downloading {'platform' if source.is_external_platform else 'storage'} video: {source.url}")

        try:
            if source.is_external_platform:
                result = await self.downloader.download(source.url, path, self.config.download_timeout)
                if not result.success:
                    raise DownloadFailure(f"Video download failed: {result.error}")
            elif self.async_http_client:
                await self.async_http_client.download_to_file(source.url, path, self.config.download_timeout)
            else:
                loop = asyncio.get_running_loop()
                await loop.run_in_executor(None, self._download_sync, source.url, path)

            size = self.file_system.file_size(path)
            if size == 0:
                raise DownloadFailure("Downloaded file is empty")
        except DownloadFailure:
            self.cleanup_file(path)
            raise
        except (aiohttp.ClientError, requests.RequestException, asyncio.TimeoutError, OSError) as e:
            self.cleanup_file(path)
            raise DownloadFailure(f"Video download failed: {e}") from e
        except BaseException:
            self.cleanup_file(path)
            raise

        self.logger.info(f"✅ Downloaded: {path} ({size / (1024 * 1024):.2f}MB) in {time.time() - start:.2f}s")
        return path

    def _download_sync(self, url: str, path: str) -> None:
        with self.http_client.get(url, timeout=self.config.download_timeout, stream=True) as response:
            response.raise_for_status()
            with open(path, 'wb') as f:
                for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                    if chunk:
                        f.write(chunk)

    @asynccontextmanager
    async def scratch_file(self, source: MediaSource):
        """Download to scratch for the duration of the block, then delete the file."""
        path = await self.download_to_scratch(source)
        try:
            yield path
        finally:
            self.cleanup_file(path)

    def cleanup_file(self, path: str) -> None:
        try:
            self.file_system.remove_file(path)
            self.logger.debug(f"🧹 Cleaned up scratch file: {path}")
        except OSError as e:
            self.logger.warning(f"⚠️ Failed to remove scratch file {path}: {e}")

    async def fetch_bytes(self, url: str) -> Tuple[bytes, Optional[str]]:
        """
        Fetch a small file (an image) into memory.

        Returns:
            Tuple of (content, content-type header)
        """
        try:
            if self.async_http_client:
                data, content_type = await self.async_http_client.fetch_bytes(url, self.config.download_timeout)
            else:
                loop = asyncio.get_running_loop()
                data, content_type = await loop.run_in_executor(None, self._fetch_bytes_sync, url)
        except (aiohttp.ClientError, requests.RequestException, asyncio.TimeoutError, OSError) as e:
            raise DownloadFailure(f"Failed to fetch {url}: {e}") from e

        if not data:
            raise DownloadFailure(f"Fetched empty content from {url}")
        return data, content_type

    def _fetch_bytes_sync(self, url: str) -> Tuple[bytes, Optional[str]]:
        response = self.http_client.get(url, timeout=self.config.download_timeout)
        response.raise_for_status()
        return response.content, response.headers.get('Content-Type')
