"""Utility helper functions"""

import time
import uuid
import random
import asyncio
import threading
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from ..errors import ErrorKind, TranscriptionTimeoutError, is_retryable as default_is_retryable
from .logging import get_logger

logger = get_logger(__name__)


def new_correlation_id() -> str:
    """Short id used to tag log lines of one job"""
    return str(uuid.uuid4())[:8]


def format_bytes(num_bytes: float) -> str:
    """Format a byte count into a human readable string"""
    if num_bytes <= 0:
        return "0 Bytes"
    units = ['Bytes', 'KB', 'MB', 'GB']
    size = float(num_bytes)
    for unit in units:
        if size < 1024 or unit == units[-1]:
            return f"{size:.1f} {unit}" if unit != 'Bytes' else f"{int(size)} Bytes"
        size /= 1024
    return f"{size:.1f} GB"


def seconds_to_duration(seconds: float) -> str:
    """Convert seconds to a short duration string"""
    seconds = int(round(seconds))
    if seconds <= 0:
        return "0s"
    hours = seconds // 3600
    minutes = (seconds % 3600) // 60
    secs = seconds % 60
    if hours > 0:
        return f"{hours}h {minutes}m"
    if minutes > 0:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


def exponential_backoff_with_jitter(attempt: int, base_delay: float = 1.0, max_delay: float = 60.0) -> float:
    """
    Calculate exponential backoff delay with jitter.

    Args:
        attempt: The attempt number (0-based)
        base_delay: Base delay in seconds
        max_delay: Maximum delay in seconds

    Returns:
        Delay in seconds with jitter applied
    """
    # Calculate exponential delay: base * 2^attempt
    delay = min(base_delay * (2 ** attempt), max_delay)

    # Add jitter: ±25% randomization
    jitter = delay * 0.25
    delay_with_jitter = delay + random.uniform(-jitter, jitter)

    return max(0, delay_with_jitter)


@dataclass
class Backoff:
    """Delay policy between retry attempts

    ``exponential=False`` gives a fixed delay. Rate limit errors wait
    ``rate_limit_factor`` times longer, or exactly the server's
    ``retry_after`` when one was provided.
    """
    base_delay: float = 2.0
    max_delay: float = 30.0
    exponential: bool = True
    jitter: bool = True
    rate_limit_factor: float = 5.0

    @classmethod
    def fixed(cls, delay: float, rate_limit_factor: float = 5.0) -> 'Backoff':
        return cls(base_delay=delay, max_delay=delay, exponential=False, jitter=False,
                   rate_limit_factor=rate_limit_factor)

    def delay(self, attempt: int, error: Optional[BaseException] = None) -> float:
        """Delay before the attempt following ``attempt`` (1-based)"""
        rate_limited = getattr(error, 'kind', None) == ErrorKind.RATE_LIMIT
        retry_after = getattr(error, 'retry_after', None) if rate_limited else None
        if retry_after:
            return min(float(retry_after), self.max_delay * self.rate_limit_factor)

        if not self.exponential:
            delay = self.base_delay
        elif self.jitter:
            delay = exponential_backoff_with_jitter(attempt - 1, self.base_delay, self.max_delay)
        else:
            delay = min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)

        if rate_limited:
            delay *= self.rate_limit_factor
        return delay


async def with_retry(
    operation: Callable[[], Awaitable[Any]],
    max_attempts: int = 3,
    backoff: Optional[Backoff] = None,
    timeout: Optional[float] = None,
    is_retryable: Optional[Callable[[BaseException], bool]] = None,
    on_attempt: Optional[Callable[[int], None]] = None,
    correlation_id: Optional[str] = None,
    label: str = "operation"
) -> Any:
    """
    Run an async operation with a per-attempt timeout and retries.

    Each attempt is raced against ``timeout``; an attempt that runs over is
    cancelled and counts as a ``TranscriptionTimeoutError``. Errors the
    predicate rejects are raised after the attempt that produced them.

    Args:
        operation: Zero-argument coroutine factory, called once per attempt
        max_attempts: Attempt ceiling (>= 1)
        backoff: Delay policy between attempts
        timeout: Seconds allowed per attempt (None for no limit)
        is_retryable: Predicate deciding whether an error is retried
        on_attempt: Called with the 1-based attempt number before each attempt
        correlation_id: Optional correlation ID for logging
        label: Name used in log lines

    Returns:
        Result of the first successful attempt

    Raises:
        The last error once attempts are exhausted or a non-retryable error
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    cid = correlation_id or new_correlation_id()
    backoff = backoff or Backoff()
    is_retryable = is_retryable or default_is_retryable

    for attempt in range(1, max_attempts + 1):
        if on_attempt:
            on_attempt(attempt)
        logger.debug(f"[{cid}] Attempt {attempt}/{max_attempts} for {label}")

        try:
            if timeout is not None:
                result = await asyncio.wait_for(operation(), timeout)
            else:
                result = await operation()
            if attempt > 1:
                logger.info(f"[{cid}] {label} succeeded after {attempt} attempts")
            return result
        except asyncio.TimeoutError:
            budget = f" after {timeout:.0f}s" if timeout is not None else ""
            error = TranscriptionTimeoutError(f"{label} timed out{budget}")
        except Exception as e:
            error = e

        if not is_retryable(error):
            logger.warning(f"[{cid}] {label} failed with non-retryable error: {error}")
            raise error

        if attempt == max_attempts:
            logger.error(f"[{cid}] All {max_attempts} attempts failed for {label}: {error}")
            raise error

        delay = backoff.delay(attempt, error)
        logger.warning(f"[{cid}] Attempt {attempt} of {label} failed: {str(error)[:100]}. Retrying in {delay:.1f}s...")
        await asyncio.sleep(delay)


class RateLimiter:
    """Rate limiter with sliding window for API calls"""

    def __init__(self, max_requests_per_minute: int = 50, buffer_percentage: float = 0.1):
        """
        Initialize rate limiter.

        Args:
            max_requests_per_minute: Maximum requests allowed per minute
            buffer_percentage: Reserve buffer (0.1 = 10% buffer)
        """
        self.max_rpm = max(1, int(max_requests_per_minute * (1 - buffer_percentage)))
        self.window_size = 60  # seconds
        self.requests = deque()
        self._lock = threading.Lock()

        logger.info(f"Rate limiter initialized: {self.max_rpm} requests/minute (with {buffer_percentage*100}% buffer)")

    def _cleanup_old_requests(self):
        """Remove requests older than the window size"""
        cutoff_time = time.time() - self.window_size

        while self.requests and self.requests[0] < cutoff_time:
            self.requests.popleft()

    async def acquire(self, correlation_id: Optional[str] = None) -> float:
        """
        Try to take a request slot.

        Returns:
            Wait time in seconds (0 if the slot was taken)
        """
        cid = correlation_id or new_correlation_id()

        with self._lock:
            self._cleanup_old_requests()
            current_time = time.time()

            if len(self.requests) >= self.max_rpm:
                # Calculate wait time until oldest request expires
                oldest_request = self.requests[0]
                wait_time = (oldest_request + self.window_size) - current_time + 0.1
                logger.info(f"[{cid}] Rate limit reached. Waiting {wait_time:.1f}s")
                return wait_time

            self.requests.append(current_time)
            remaining = self.max_rpm - len(self.requests)
            logger.debug(f"[{cid}] Rate limit: {len(self.requests)}/{self.max_rpm} used, {remaining} remaining")
            return 0

    async def wait_for_slot(self, correlation_id: Optional[str] = None):
        """Block until a request slot is taken"""
        wait_time = await self.acquire(correlation_id)
        while wait_time > 0:
            await asyncio.sleep(wait_time)
            wait_time = await self.acquire(correlation_id)

    def get_current_usage(self) -> Dict[str, Any]:
        """Get current rate limiter usage statistics"""
        with self._lock:
            self._cleanup_old_requests()
            return {
                'current_requests': len(self.requests),
                'max_requests': self.max_rpm,
                'utilization': len(self.requests) / self.max_rpm * 100,
                'remaining': max(0, self.max_rpm - len(self.requests))
            }
