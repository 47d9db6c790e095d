"""Segment storage: an opaque put/get object store"""

import asyncio
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional
from urllib.parse import unquote, urlparse

import aiofiles
import aiohttp

from ..config import FETCH_TIMEOUT_SECONDS, SEGMENT_STORE_DIR
from ..errors import (
    NetworkError, OversizeError, PipelineError, RateLimitError,
    TranscriptionTimeoutError, ValidationError
)
from ..utils.logging import get_logger

logger = get_logger(__name__)


def error_for_status(status: int, message: str, segment_id: Optional[int] = None,
                     retry_after: Optional[float] = None) -> PipelineError:
    """Map an HTTP status to the pipeline error taxonomy"""
    if status == 429:
        return RateLimitError(message, segment_id, retry_after=retry_after)
    if status == 413:
        return OversizeError(message, segment_id)
    if status in (408, 504):
        return TranscriptionTimeoutError(message, segment_id)
    if status >= 500:
        return NetworkError(message, segment_id)
    return ValidationError(message, segment_id)


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


class SegmentStore(ABC):
    """put returns a URL that get accepts; writes are visible to the next read"""

    @abstractmethod
    async def put(self, name: str, data: bytes) -> str:
        ...

    @abstractmethod
    async def get(self, url: str) -> bytes:
        ...

    @abstractmethod
    async def delete(self, url: str):
        ...

    async def close(self):
        pass

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()


class LocalSegmentStore(SegmentStore):
    """Directory on disk addressed with file:// URLs"""

    def __init__(self, root: Optional[Path] = None):
        self.root = Path(root or SEGMENT_STORE_DIR)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path_from_url(self, url: str) -> Path:
        parsed = urlparse(url)
        if parsed.scheme != 'file':
            raise ValidationError(f"Not a local segment URL: {url}")
        return Path(unquote(parsed.path))

    async def put(self, name: str, data: bytes) -> str:
        target = self.root / name
        target.parent.mkdir(parents=True, exist_ok=True)
        async with aiofiles.open(target, 'wb') as f:
            await f.write(data)
        return target.resolve().as_uri()

    async def get(self, url: str) -> bytes:
        path = self._path_from_url(url)
        if not path.is_file():
            raise ValidationError(f"Segment not found: {url}")
        async with aiofiles.open(path, 'rb') as f:
            return await f.read()

    async def delete(self, url: str):
        self._path_from_url(url).unlink(missing_ok=True)


class HttpSegmentStore(SegmentStore):
    """Blob store reached over HTTP: PUT {base}/{name}, GET the returned URL"""

    def __init__(self, base_url: str, token: Optional[str] = None,
                 timeout: float = FETCH_TIMEOUT_SECONDS):
        self.base_url = base_url.rstrip('/')
        self.token = token
        self.timeout = timeout
        self.session: Optional[aiohttp.ClientSession] = None
        self._session_lock = asyncio.Lock()

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session with proper configuration"""
        async with self._session_lock:
            if self.session is None or self.session.closed:
                timeout = aiohttp.ClientTimeout(
                    total=self.timeout,
                    connect=min(10, self.timeout)
                )
                headers = {'Authorization': f'Bearer {self.token}'} if self.token else {}
                self.session = aiohttp.ClientSession(timeout=timeout, headers=headers)
            return self.session

    async def close(self):
        if self.session and not self.session.closed:
            await self.session.close()
        self.session = None

    async def _raise_for_status(self, response: aiohttp.ClientResponse, action: str):
        if response.status < 400:
            return
        body = (await response.text())[:200]
        raise error_for_status(
            response.status,
            f"{action} failed with HTTP {response.status}: {body}",
            retry_after=parse_retry_after(response.headers.get('Retry-After')),
        )

    async def put(self, name: str, data: bytes) -> str:
        session = await self._get_session()
        target = f"{self.base_url}/{name}"
        try:
            async with session.put(target, data=data,
                                   headers={'Content-Type': 'audio/mpeg'}) as response:
                await self._raise_for_status(response, f"Upload of {name}")
                if response.content_type == 'application/json':
                    payload = await response.json()
                    if isinstance(payload, dict) and payload.get('url'):
                        return payload['url']
                return response.headers.get('Location') or target
        except asyncio.TimeoutError as e:
            raise TranscriptionTimeoutError(f"Upload of {name} timed out after {self.timeout:.0f}s") from e
        except aiohttp.ClientError as e:
            raise NetworkError(f"Upload of {name} failed: {e}") from e

    async def get(self, url: str) -> bytes:
        session = await self._get_session()
        try:
            async with session.get(url) as response:
                await self._raise_for_status(response, "Segment fetch")
                return await response.read()
        except asyncio.TimeoutError as e:
            raise TranscriptionTimeoutError(f"Segment fetch timed out after {self.timeout:.0f}s") from e
        except aiohttp.ClientError as e:
            raise NetworkError(f"Segment fetch failed: {e}") from e

    async def delete(self, url: str):
        session = await self._get_session()
        try:
            async with session.delete(url) as response:
                if response.status not in (404, 410):
                    await self._raise_for_status(response, "Segment delete")
        except asyncio.TimeoutError as e:
            raise TranscriptionTimeoutError(f"Segment delete timed out after {self.timeout:.0f}s") from e
        except aiohttp.ClientError as e:
            raise NetworkError(f"Segment delete failed: {e}") from e


def create_store(url: Optional[str] = None, token: Optional[str] = None) -> SegmentStore:
    """HTTP store when a base URL is configured, local directory otherwise"""
    if url and url.startswith(('http://', 'https://')):
        logger.info(f"Using HTTP segment store at {url}")
        return HttpSegmentStore(url, token)
    root = Path(unquote(urlparse(url).path)) if url else None
    logger.info(f"Using local segment store at {root or SEGMENT_STORE_DIR}")
    return LocalSegmentStore(root)
