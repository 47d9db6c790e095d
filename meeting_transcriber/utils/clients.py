"""API client construction"""

from typing import Optional

from openai import AsyncOpenAI

from ..config import OPENAI_API_KEY, WHISPER_REQUESTS_PER_MINUTE
from .helpers import RateLimiter
from .logging import get_logger

logger = get_logger(__name__)


def create_openai_client(api_key: Optional[str] = None, timeout: float = 300.0) -> AsyncOpenAI:
    """Create an AsyncOpenAI client for one pipeline run"""
    client = AsyncOpenAI(
        api_key=api_key or OPENAI_API_KEY,
        timeout=timeout,  # 5 minute ceiling, per-attempt budgets are tighter
        max_retries=0   # We handle retries ourselves for better control
    )
    logger.info("OpenAI client initialized (SDK retries disabled)")
    return client


def create_whisper_rate_limiter(requests_per_minute: int = WHISPER_REQUESTS_PER_MINUTE) -> RateLimiter:
    """Sliding-window limiter for the audio transcription endpoint"""
    return RateLimiter(max_requests_per_minute=requests_per_minute, buffer_percentage=0.1)
