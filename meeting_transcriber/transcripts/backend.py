"""Speech-to-text backend client and error classification"""

import asyncio
from abc import ABC, abstractmethod
from typing import Optional

import aiohttp
import openai
from openai import AsyncOpenAI

from ..config import TRANSCRIPTION_LANGUAGE, TRANSCRIPTION_MODEL
from ..errors import (
    NetworkError, OversizeError, PipelineError, RateLimitError,
    TranscriptionTimeoutError, ValidationError
)
from ..utils.helpers import RateLimiter, new_correlation_id
from ..utils.logging import get_logger
from .store import error_for_status, parse_retry_after

logger = get_logger(__name__)

OVERSIZE_MARKERS = ('too large', 'maximum content size', 'file size')


def classify_error(error: BaseException, segment_id: Optional[int] = None) -> PipelineError:
    """Translate a backend, transport or timeout exception into a PipelineError

    Unknown exceptions are treated as network failures so they are retried.
    """
    if isinstance(error, PipelineError):
        if error.segment_id is None:
            error.segment_id = segment_id
        return error

    message = str(error) or type(error).__name__
    lowered = message.lower()

    # APITimeoutError subclasses APIConnectionError, so it is checked first
    if isinstance(error, (openai.APITimeoutError, asyncio.TimeoutError)):
        return TranscriptionTimeoutError(f"Transcription request timed out: {message}", segment_id)

    if isinstance(error, openai.RateLimitError):
        retry_after = parse_retry_after(error.response.headers.get('retry-after'))
        return RateLimitError(f"Rate limited by transcription service: {message}", segment_id, retry_after)

    if isinstance(error, (openai.APIConnectionError, aiohttp.ClientError)):
        return NetworkError(f"Connection to transcription service failed: {message}", segment_id)

    if isinstance(error, openai.APIStatusError):
        if any(marker in lowered for marker in OVERSIZE_MARKERS):
            return OversizeError(f"Segment rejected as too large: {message}", segment_id)
        retry_after = parse_retry_after(error.response.headers.get('retry-after'))
        return error_for_status(error.status_code, f"Transcription service error: {message}",
                                segment_id, retry_after)

    if any(marker in lowered for marker in OVERSIZE_MARKERS):
        return OversizeError(message, segment_id)
    if 'timeout' in lowered or 'timed out' in lowered:
        return TranscriptionTimeoutError(message, segment_id)
    if 'rate limit' in lowered:
        return RateLimitError(message, segment_id)

    return NetworkError(f"Unexpected transcription failure ({type(error).__name__}): {message}", segment_id)


class TranscriptionBackend(ABC):
    """Remote call turning one audio segment into text"""

    name = "backend"

    @abstractmethod
    async def transcribe(self, data: bytes, file_name: str, model: str,
                         correlation_id: Optional[str] = None) -> str:
        """Transcribe ``data``; raises PipelineError subclasses on failure"""

    async def wait_ready(self, correlation_id: Optional[str] = None):
        """Block until the backend will accept another request"""


class WhisperBackend(TranscriptionBackend):
    """OpenAI audio transcription endpoint"""

    name = "whisper"

    def __init__(self, client: AsyncOpenAI, language: Optional[str] = TRANSCRIPTION_LANGUAGE,
                 rate_limiter: Optional[RateLimiter] = None):
        self.client = client
        self.language = language
        self.rate_limiter = rate_limiter

    async def wait_ready(self, correlation_id: Optional[str] = None):
        if self.rate_limiter:
            await self.rate_limiter.wait_for_slot(correlation_id or new_correlation_id())

    async def transcribe(self, data: bytes, file_name: str, model: str = TRANSCRIPTION_MODEL,
                         correlation_id: Optional[str] = None) -> str:
        cid = correlation_id or new_correlation_id()
        params = {
            'model': model,
            'file': (file_name, data, 'audio/mpeg'),
            'response_format': 'text',
        }
        if self.language:
            params['language'] = self.language

        logger.debug(f"[{cid}] Sending {file_name} ({len(data)} bytes) to {model}")
        try:
            response = await self.client.audio.transcriptions.create(**params)
        except (openai.OpenAIError, aiohttp.ClientError) as e:
            raise classify_error(e) from e

        text = response if isinstance(response, str) else getattr(response, 'text', '')
        return text.strip()
