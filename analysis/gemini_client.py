"""
Gemini API client for the analysis engine.

Wraps text, image and video inference plus embedding generation. Blocking
SDK calls run in the default executor under a timeout; provider exceptions
are re-raised as classified AnalysisError instances.
"""

import asyncio
import logging
import os
from typing import Any, List, Optional

# Simple warning suppression for Google Cloud libraries
os.environ['GRPC_VERBOSITY'] = 'ERROR'
os.environ['GLOG_minloglevel'] = '2'

import google.generativeai as genai

from .config import AnalysisConfig
from .constants import VIDEO_MIME_TYPE, ConfigDefaults, ErrorMessages, ModelNames
from .error_handler import (
    EmbeddingFailure,
    EmptyAnalysisError,
    FileTooLarge,
    ProviderProcessingFailed,
    ProviderProcessingTimeout,
    classify_error
)


def _read_file(path: str) -> bytes:
    with open(path, 'rb') as f:
        return f.read()


class GeminiClient:
    """
    Gemini API client with error classification and large-file handling.
    """

    def __init__(self,
                 api_key: str,
                 model_name: str = ModelNames.GEMINI_2_0_FLASH.value,
                 embedding_model: str = ModelNames.TEXT_EMBEDDING_004.value,
                 embedding_dimensions: int = ConfigDefaults.EMBEDDING_DIMENSIONS,
                 request_timeout: float = ConfigDefaults.REQUEST_TIMEOUT,
                 inline_video_max_bytes: int = ConfigDefaults.INLINE_VIDEO_MAX_BYTES,
                 file_api_max_bytes: int = ConfigDefaults.FILE_API_MAX_BYTES,
                 file_poll_interval: float = ConfigDefaults.FILE_POLL_INTERVAL,
                 file_poll_max_attempts: int = ConfigDefaults.FILE_POLL_MAX_ATTEMPTS,
                 logger: Optional[logging.Logger] = None):
        """
        Initialize Gemini client with API key.

        Args:
            api_key: Gemini API key
            model_name: Generative model used for every analysis
            embedding_model: Model used for embeddings
            embedding_dimensions: Expected embedding length
            request_timeout: Timeout in seconds for one generate call
            logger: Optional logger instance
        """
        self.api_key = api_key
        self.model_name = model_name
        self.embedding_model = embedding_model
        self.embedding_dimensions = embedding_dimensions
        self.request_timeout = request_timeout
        self.inline_video_max_bytes = inline_video_max_bytes
        self.file_api_max_bytes = file_api_max_bytes
        self.file_poll_interval = file_poll_interval
        self.file_poll_max_attempts = file_poll_max_attempts
        self.logger = logger or logging.getLogger(__name__)
        self._model: Optional[genai.GenerativeModel] = None

    @classmethod
    def from_config(cls, config: AnalysisConfig, logger: Optional[logging.Logger] = None) -> 'GeminiClient':
        return cls(
            api_key=config.require_api_key(),
            model_name=config.model_name,
            embedding_model=config.embedding_model,
            embedding_dimensions=config.embedding_dimensions,
            request_timeout=config.request_timeout,
            inline_video_max_bytes=config.inline_video_max_bytes,
            file_api_max_bytes=config.file_api_max_bytes,
            file_poll_interval=config.file_poll_interval,
            file_poll_max_attempts=config.file_poll_max_attempts,
            logger=logger
        )

    def get_model(self) -> genai.GenerativeModel:
        """Configured generative model, created on first use."""
        if self._model is None:
            genai.configure(api_key=self.api_key)
            self._model = genai.GenerativeModel(self.model_name)
        return self._model

    async def _run_blocking(self, func, *args, **kwargs):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, lambda: func(*args, **kwargs))

    async def _generate(self, content: Any, label: str) -> str:
        """Run one generate call and return non-blank text."""
        try:
            model = self.get_model()
            response = await asyncio.wait_for(
                self._run_blocking(model.generate_content, content),
                timeout=self.request_timeout
            )
        except asyncio.TimeoutError as e:
            raise classify_error(TimeoutError(f"generation timed out after {self.request_timeout:.0f}s"),
                                 f"{label} analysis") from e
        except Exception as e:
            raise classify_error(e, f"{label} analysis") from e

        try:
            text = response.text if response else None
        except ValueError:
            # Raised by the SDK when the candidate carries no text parts (e.g. blocked)
            text = None

        if not text or not text.strip():
            self.logger.warning(f"⚠️ Model returned empty {label} response")
            raise EmptyAnalysisError(ErrorMessages.EMPTY_ANALYSIS.format(label=label.capitalize()))
        return text.strip()

    async def analyze_image(self, data: bytes, mime_type: str, prompt: str) -> str:
        """Analyze inline image bytes."""
        self.logger.info(f"🖼️ Analyzing image ({len(data) / 1024:.1f}KB, {mime_type})")
        return await self._generate([prompt, {"mime_type": mime_type, "data": data}], "image")

    async def analyze_text(self, prompt: str) -> str:
        """Analyze a text-only prompt."""
        return await self._generate(prompt, "text")

    async def analyze_video(self, path: str, prompt: str) -> str:
        """
        Analyze a local video file.

        Small files are sent inline; larger ones go through the file API and
        are deleted from the provider afterwards.

        Raises:
            FileTooLarge: the file is at or above the file API ceiling
            ProviderProcessingFailed: the uploaded file failed processing
            ProviderProcessingTimeout: the uploaded file never became active
        """
        size = os.path.getsize(path)
        size_mb = size / (1024 * 1024)

        if size >= self.file_api_max_bytes:
            raise FileTooLarge(
                f"Video file too large: {size_mb:.2f}MB "
                f"(max: {self.file_api_max_bytes / (1024 * 1024):.0f}MB)"
            )

        if size < self.inline_video_max_bytes:
            self.logger.info(f"🎬 Analyzing video inline ({size_mb:.2f}MB)")
            data = await self._run_blocking(_read_file, path)
            return await self._generate([prompt, {"mime_type": VIDEO_MIME_TYPE, "data": data}], "video")

        self.logger.info(f"📤 Uploading video to Gemini file API ({size_mb:.2f}MB)")
        media_file = await self._upload_and_wait(path)
        try:
            return await self._generate([prompt, media_file], "video")
        finally:
            await self._delete_remote_file(media_file)

    async def _upload_and_wait(self, path: str):
        try:
            genai.configure(api_key=self.api_key)
            media_file = await self._run_blocking(genai.upload_file, path, mime_type=VIDEO_MIME_TYPE)
        except Exception as e:
            raise classify_error(e, "video upload") from e

        for attempt in range(self.file_poll_max_attempts):
            state = media_file.state.name
            if state == "ACTIVE":
                self.logger.info(f"✅ Video processed by file API after {attempt} polls")
                return media_file
            if state == "FAILED":
                await self._delete_remote_file(media_file)
                raise ProviderProcessingFailed(f"Video processing failed on provider: {media_file.name}")

            await asyncio.sleep(self.file_poll_interval)
            try:
                media_file = await self._run_blocking(genai.get_file, media_file.name)
            except Exception as e:
                await self._delete_remote_file(media_file)
                raise classify_error(e, "video processing poll") from e

        if media_file.state.name == "ACTIVE":
            return media_file

        await self._delete_remote_file(media_file)
        raise ProviderProcessingTimeout(
            f"Video processing did not finish after {self.file_poll_max_attempts} polls "
            f"(state: {media_file.state.name})"
        )

    async def _delete_remote_file(self, media_file) -> None:
        try:
            await self._run_blocking(genai.delete_file, media_file.name)
            self.logger.debug(f"🧹 Deleted remote file {media_file.name}")
        except Exception as e:
            self.logger.warning(f"⚠️ Failed to delete remote file {media_file.name}: {e}")

    async def embed(self, text: str) -> List[float]:
        """
        Generate an embedding for analysis text.

        Raises:
            EmbeddingFailure: the provider failed or returned an unusable vector
        """
        try:
            genai.configure(api_key=self.api_key)
            result = await asyncio.wait_for(
                self._run_blocking(
                    genai.embed_content,
                    model=self.embedding_model,
                    content=text,
                    task_type="retrieval_document",
                    output_dimensionality=self.embedding_dimensions
                ),
                timeout=self.request_timeout
            )
        except asyncio.TimeoutError as e:
            raise EmbeddingFailure(f"{ErrorMessages.EMBEDDING_FAILED}: timed out", recoverable=True) from e
        except Exception as e:
            error = classify_error(e, "embedding")
            raise EmbeddingFailure(f"{ErrorMessages.EMBEDDING_FAILED}: {error.message}",
                                   recoverable=error.recoverable) from e

        embedding = result.get('embedding') if isinstance(result, dict) else getattr(result, 'embedding', None)
        if not embedding:
            raise EmbeddingFailure(f"{ErrorMessages.EMBEDDING_FAILED}: empty vector")
        if len(embedding) != self.embedding_dimensions:
            raise EmbeddingFailure(
                f"{ErrorMessages.EMBEDDING_FAILED}: expected {self.embedding_dimensions} dimensions, "
                f"got {len(embedding)}"
            )
        return [float(v) for v in embedding]
