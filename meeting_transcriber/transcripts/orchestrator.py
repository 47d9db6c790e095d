"""Drive segments through upload and transcription"""

import asyncio
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..config import (
    FETCH_TIMEOUT_SECONDS, MAX_SEGMENT_ATTEMPTS, MAX_SEGMENT_BYTES, RATE_LIMIT_BACKOFF_FACTOR,
    RETRY_BASE_DELAY, RETRY_MAX_DELAY, SEGMENT_CONCURRENCY, TRANSCRIPTION_MODEL,
    TRANSCRIPTION_TIMEOUT_SECONDS
)
from ..errors import PipelineError, SegmentFailedError, TranscriptionTimeoutError, ValidationError
from ..models import Segment, SegmentRequest, SegmentResult, SegmentStatus, check_segment_size
from ..utils.helpers import Backoff, new_correlation_id, with_retry
from ..utils.logging import get_logger
from .backend import TranscriptionBackend, classify_error
from .store import SegmentStore

logger = get_logger(__name__)


def default_backoff() -> Backoff:
    return Backoff(base_delay=RETRY_BASE_DELAY, max_delay=RETRY_MAX_DELAY,
                   rate_limit_factor=RATE_LIMIT_BACKOFF_FACTOR)


class SegmentTranscriber:
    """Fetch one stored segment and transcribe it, with timeouts and retries"""

    def __init__(
        self,
        store: SegmentStore,
        backend: TranscriptionBackend,
        max_attempts: int = MAX_SEGMENT_ATTEMPTS,
        backoff: Optional[Backoff] = None,
        fetch_timeout: float = FETCH_TIMEOUT_SECONDS,
        transcription_timeout: float = TRANSCRIPTION_TIMEOUT_SECONDS,
        max_segment_bytes: int = MAX_SEGMENT_BYTES,
        correlation_id: Optional[str] = None
    ):
        self.store = store
        self.backend = backend
        self.max_attempts = max_attempts
        self.backoff = backoff or default_backoff()
        self.fetch_timeout = fetch_timeout
        self.transcription_timeout = transcription_timeout
        self.max_segment_bytes = max_segment_bytes
        self.correlation_id = correlation_id or new_correlation_id()

    async def _attempt(self, blob_url: Optional[str], segment_id: Any, model: str, file_name: str) -> str:
        if not blob_url:
            raise ValidationError("No blob URL provided", segment_id)
        if not isinstance(segment_id, int) or segment_id < 0:
            raise ValidationError(f"Invalid segment id: {segment_id!r}")

        try:
            try:
                data = await asyncio.wait_for(self.store.get(blob_url), self.fetch_timeout)
            except asyncio.TimeoutError:
                raise TranscriptionTimeoutError(
                    f"Fetching segment took longer than {self.fetch_timeout:.0f}s", segment_id
                )

            check_segment_size(len(data), segment_id, self.max_segment_bytes)

            # Queueing for a rate limit slot does not count against the timeout
            await self.backend.wait_ready(self.correlation_id)
            try:
                return await asyncio.wait_for(
                    self.backend.transcribe(data, file_name, model, self.correlation_id),
                    self.transcription_timeout
                )
            except asyncio.TimeoutError:
                raise TranscriptionTimeoutError(
                    f"Transcription took longer than {self.transcription_timeout:.0f}s", segment_id
                )
        except PipelineError as e:
            if e.segment_id is None:
                e.segment_id = segment_id
            raise
        except Exception as e:
            raise classify_error(e, segment_id) from e

    async def transcribe_segment(
        self,
        blob_url: Optional[str],
        segment_id: Any,
        model: str = TRANSCRIPTION_MODEL,
        file_name: Optional[str] = None
    ) -> SegmentResult:
        """Transcribe a stored segment; failures come back as a SegmentResult, never raised"""
        cid = self.correlation_id
        attempts = 0
        name = file_name or (f"segment_{segment_id:03d}.mp3" if isinstance(segment_id, int) else "segment.mp3")

        def count_attempt(attempt: int):
            nonlocal attempts
            attempts = attempt

        try:
            transcript = await with_retry(
                lambda: self._attempt(blob_url, segment_id, model, name),
                max_attempts=self.max_attempts,
                backoff=self.backoff,
                on_attempt=count_attempt,
                correlation_id=cid,
                label=f"segment {segment_id}"
            )
        except PipelineError as e:
            logger.error(f"[{cid}] ❌ Segment {segment_id} failed after {attempts} attempt(s): {e.kind.value}: {e.message}")
            return SegmentResult.from_error(segment_id, e, attempts)

        logger.info(f"[{cid}] ✅ Segment {segment_id} transcribed: {len(transcript)} characters")
        return SegmentResult(segment_id=segment_id, transcript=transcript, attempts=attempts)


class SegmentOrchestrator:
    """Bounded worker pool that uploads and transcribes segments

    Results are keyed by segment index, so completion order does not matter.
    A failed segment never cancels its siblings; cancelling ``run`` cancels
    every worker and the requests they have in flight.
    """

    def __init__(
        self,
        store: SegmentStore,
        transcriber: SegmentTranscriber,
        concurrency: int = SEGMENT_CONCURRENCY,
        on_segment_done: Optional[Callable[[Segment], None]] = None,
        keep_uploads: bool = False,
        correlation_id: Optional[str] = None
    ):
        self.store = store
        self.transcriber = transcriber
        self.concurrency = concurrency
        self.on_segment_done = on_segment_done
        self.keep_uploads = keep_uploads
        self.correlation_id = correlation_id or transcriber.correlation_id

    async def _upload(self, segment: Segment) -> str:
        if segment.data is None:
            raise ValidationError("Segment has no data to upload", segment.index)

        async def put():
            try:
                return await self.store.put(f"{self.correlation_id}/{segment.file_name}", segment.data)
            except PipelineError:
                raise
            except Exception as e:
                raise classify_error(e, segment.index) from e

        return await with_retry(
            put,
            max_attempts=self.transcriber.max_attempts,
            backoff=self.transcriber.backoff,
            correlation_id=self.correlation_id,
            label=f"upload of segment {segment.index}"
        )

    async def _process(self, segment: Segment, model: str) -> SegmentResult:
        cid = self.correlation_id
        try:
            if segment.blob_url is None:
                segment.blob_url = await self._upload(segment)
            segment.data = None
            segment.transition(SegmentStatus.UPLOADED)
        except PipelineError as e:
            if e.segment_id is None:
                e.segment_id = segment.index
            logger.error(f"[{cid}] ❌ Upload of segment {segment.index} failed: {e}")
            segment.mark_failed(e)
            self._notify(segment)
            return SegmentResult.from_error(segment.index, e)

        segment.transition(SegmentStatus.TRANSCRIBING)
        result = await self.transcriber.transcribe_segment(segment.blob_url, segment.index, model, segment.file_name)
        segment.attempts = result.attempts

        if result.success:
            segment.mark_done(result.transcript)
            await self._discard_upload(segment)
        else:
            segment.mark_failed(SegmentFailedError(segment.index, result.error_kind, result.error_message,
                                                   result.attempts))
        self._notify(segment)
        return result

    async def _discard_upload(self, segment: Segment):
        if self.keep_uploads or not segment.blob_url:
            return
        try:
            await self.store.delete(segment.blob_url)
        except PipelineError as e:
            logger.debug(f"[{self.correlation_id}] Could not delete segment {segment.index} upload: {e}")

    def _notify(self, segment: Segment):
        if self.on_segment_done:
            self.on_segment_done(segment)

    async def run(self, segments: List[Segment], model: str = TRANSCRIPTION_MODEL,
                  concurrency: Optional[int] = None) -> Dict[int, SegmentResult]:
        """Process every segment; returns results keyed by segment index"""
        cid = self.correlation_id
        limit = max(1, concurrency or self.concurrency)
        queue: asyncio.Queue = asyncio.Queue()
        for segment in sorted(segments, key=lambda s: s.index):
            queue.put_nowait(segment)

        results: Dict[int, SegmentResult] = {}

        async def worker(worker_id: int):
            while True:
                try:
                    segment = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                logger.info(f"[{cid}] Worker {worker_id} 📝 segment {segment.index + 1}/{len(segments)}")
                results[segment.index] = await self._process(segment, model)

        worker_count = min(limit, len(segments))
        logger.info(f"[{cid}] Transcribing {len(segments)} segments with {worker_count} worker(s)")
        workers = [asyncio.create_task(worker(i)) for i in range(worker_count)]
        try:
            await asyncio.gather(*workers)
        except BaseException:
            for task in workers:
                task.cancel()
            await asyncio.gather(*workers, return_exceptions=True)
            raise

        failed = [i for i, r in results.items() if not r.success]
        if failed:
            logger.warning(f"[{cid}] {len(failed)} segment(s) failed: {sorted(failed)}")
        return results


async def handle_segment_request(payload: Any, transcriber: SegmentTranscriber,
                                 default_model: str = TRANSCRIPTION_MODEL) -> Tuple[Dict[str, Any], int]:
    """Serve one ``{blobUrl, segmentId, fileName?, model}`` request

    Returns the response payload and its HTTP status code.
    """
    if not isinstance(payload, dict):
        error = ValidationError("Request body must be a JSON object")
        return SegmentResult.from_error(None, error).to_response()

    request = SegmentRequest.from_dict(payload, default_model)
    result = await transcriber.transcribe_segment(
        request.blob_url, request.segment_id, request.model, request.file_name
    )
    return result.to_response()
