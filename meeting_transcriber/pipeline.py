"""Job state machine and the end-to-end transcription pipeline"""

import asyncio
import time
from typing import Any, Callable, Dict, List, Optional

from .audio.engine import CodecEngine
from .audio.normalizer import FormatNormalizer
from .audio.segmenter import Segmenter
from .audio.tiers import TierPolicy
from .config import SEGMENT_CONCURRENCY, TRANSCRIPTION_MODEL
from .errors import InvalidTransitionError, JobCancelledError, PipelineError, SegmentFailedError
from .models import JobError, PipelineJob, PipelineStage, Segment, SegmentStatus, SourceMedia
from .processing.summarizer import Summarizer
from .progress import EstimateConstants, StageProgress, estimate_stage_seconds
from .transcripts.backend import TranscriptionBackend
from .transcripts.orchestrator import SegmentOrchestrator, SegmentTranscriber
from .transcripts.reassembler import assemble, salvage
from .transcripts.store import SegmentStore
from .utils.helpers import format_bytes, seconds_to_duration
from .utils.logging import get_logger

logger = get_logger(__name__)

STAGE_ORDER = [
    PipelineStage.UPLOADING,
    PipelineStage.PROCESSING,
    PipelineStage.CHUNKING,
    PipelineStage.TRANSCRIBING,
    PipelineStage.SUMMARIZING,
    PipelineStage.COMPLETED,
]

# Stages that may be passed over
OPTIONAL_STAGES = {PipelineStage.CHUNKING}

STAGE_MESSAGES = {
    PipelineStage.UPLOADING: "Uploading {file_name}...",
    PipelineStage.PROCESSING: "Optimizing audio for transcription...",
    PipelineStage.CHUNKING: "Splitting the recording into {total_segments} segments...",
    PipelineStage.TRANSCRIBING: "Transcribing segment audio ({completed_segments}/{total_segments})...",
    PipelineStage.SUMMARIZING: "Summarizing the transcript...",
    PipelineStage.COMPLETED: "All steps completed.",
    PipelineStage.ERROR: "Processing failed.",
}


class PipelineStateMachine:
    """Forward-only stage transitions of one PipelineJob

    ``uploading → processing → (chunking) → transcribing → summarizing →
    completed``; any non-terminal stage may move to ``error``. Terminal
    stages reject every transition.
    """

    def __init__(self, job: PipelineJob, model: str = TRANSCRIPTION_MODEL,
                 constants: Optional[EstimateConstants] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.job = job
        self.model = model
        self.constants = constants
        self.clock = clock
        self.progress = self._start_progress(job.stage)

    def _start_progress(self, stage: PipelineStage) -> StageProgress:
        estimate = estimate_stage_seconds(self.job.file_size, stage, self.model, self.constants)
        return StageProgress(stage, estimate, clock=self.clock)

    def _enter(self, stage: PipelineStage):
        self.job.stage = stage
        self.job.stage_started_at = self.clock()
        self.job.stage_history.append(stage)

    def can_advance(self, stage: PipelineStage) -> bool:
        if self.job.is_terminal or stage not in STAGE_ORDER:
            return False
        current = STAGE_ORDER.index(self.job.stage)
        target = STAGE_ORDER.index(stage)
        if target <= current:
            return False
        skipped = STAGE_ORDER[current + 1:target]
        return all(s in OPTIONAL_STAGES for s in skipped)

    def advance(self, stage: PipelineStage):
        if not self.can_advance(stage):
            raise InvalidTransitionError(f"Job {self.job.id}: cannot move from {self.job.stage.value} to {stage.value}")
        self.progress.complete()
        self._enter(stage)
        if stage == PipelineStage.COMPLETED:
            self.progress = StageProgress(stage, 0, clock=self.clock)
            self.progress.complete()
        else:
            self.progress = self._start_progress(stage)
        logger.info(f"[{self.job.id}] ➡️  Stage: {stage.value}")

    def fail(self, error: PipelineError, salvaged: Optional[Dict[int, str]] = None):
        if self.job.is_terminal:
            raise InvalidTransitionError(f"Job {self.job.id}: already {self.job.stage.value}")
        failed_stage = self.job.stage
        self.job.error = JobError.from_exception(error, salvaged)
        self._enter(PipelineStage.ERROR)
        logger.error(f"[{self.job.id}] ❌ Failed during {failed_stage.value}: {error.kind.value}: {error}")

    def segment_finished(self, segment: Segment):
        """Count a finished segment; counters are frozen outside the transcribing stage"""
        if self.job.stage != PipelineStage.TRANSCRIBING:
            return
        if segment.status == SegmentStatus.DONE:
            self.job.completed_segments += 1

    def status(self, now: Optional[float] = None) -> Dict[str, Any]:
        """Job view with progress percent and remaining seconds"""
        job = self.job
        floor = 0
        if job.stage == PipelineStage.TRANSCRIBING and job.total_segments:
            floor = round(job.completed_segments / job.total_segments * 100)

        if job.stage == PipelineStage.ERROR:
            percent, remaining = self.progress.percent, 0
        else:
            percent = self.progress.update(now, floor)
            remaining = self.progress.remaining_seconds(now)

        view = job.to_dict()
        view.update({
            'progress': percent,
            'estimatedSeconds': round(self.progress.estimated_seconds),
            'remainingSeconds': remaining,
            'message': STAGE_MESSAGES[job.stage].format(
                file_name=job.file_name,
                total_segments=job.total_segments,
                completed_segments=job.completed_segments,
            ),
        })
        return view


class TranscriptionPipeline:
    """Upload → normalize → segment → transcribe → summarize

    Classified failures put the job in the ``error`` stage and the job is
    returned. Cancellation marks the job cancelled and is re-raised.
    """

    def __init__(
        self,
        engine: CodecEngine,
        store: SegmentStore,
        backend: TranscriptionBackend,
        summarizer: Optional[Summarizer] = None,
        policy: Optional[TierPolicy] = None,
        constants: Optional[EstimateConstants] = None,
        model: str = TRANSCRIPTION_MODEL,
        concurrency: int = SEGMENT_CONCURRENCY,
        transcriber_options: Optional[Dict[str, Any]] = None
    ):
        self.engine = engine
        self.store = store
        self.backend = backend
        self.summarizer = summarizer
        self.policy = policy or TierPolicy()
        self.constants = constants
        self.model = model
        self.concurrency = concurrency
        self.transcriber_options = transcriber_options or {}
        self.machines: Dict[str, PipelineStateMachine] = {}

    def _new_job(self, file_name: str, file_size: int) -> PipelineStateMachine:
        job = PipelineJob(file_name=file_name, file_size=file_size)
        machine = PipelineStateMachine(job, self.model, self.constants)
        self.machines[job.id] = machine
        logger.info(f"[{job.id}] 📥 New job for {file_name} ({format_bytes(file_size)})")
        return machine

    def _machine(self, job_id: str) -> PipelineStateMachine:
        machine = self.machines.get(job_id)
        if machine is None:
            raise KeyError(f"Unknown job: {job_id}")
        return machine

    def status(self, job_id: str, consume: bool = False) -> Dict[str, Any]:
        """Status view of a job; ``consume`` also releases a finished job"""
        view = self._machine(job_id).status()
        if consume:
            self.release(job_id)
        return view

    def release(self, job_id: str) -> PipelineJob:
        """Drop a completed or failed job from the registry and return it"""
        job = self._machine(job_id).job
        if not job.is_terminal:
            raise InvalidTransitionError(f"Job {job_id} is still {job.stage.value}")
        del self.machines[job_id]
        logger.debug(f"[{job_id}] Released job ({len(self.machines)} still tracked)")
        return job

    async def process_upload(self, data: bytes, file_name: str, mime_type: Optional[str] = None) -> PipelineJob:
        """Validate raw upload bytes and run the pipeline on them"""
        machine = self._new_job(file_name, len(data))
        try:
            source = SourceMedia.accept(data, file_name, mime_type)
        except PipelineError as e:
            machine.fail(e)
            return machine.job
        return await self._execute(machine, source)

    async def run(self, source: SourceMedia) -> PipelineJob:
        machine = self._new_job(source.file_name, source.size)
        return await self._execute(machine, source)

    async def _execute(self, machine: PipelineStateMachine, source: SourceMedia) -> PipelineJob:
        job = machine.job
        cid = job.id
        started = time.monotonic()
        segments: List[Segment] = []

        try:
            machine.advance(PipelineStage.PROCESSING)
            audio = await FormatNormalizer(self.engine, self.policy, cid).normalize(source)

            segmenter = Segmenter(self.policy, cid)
            if segmenter.needs_chunking(audio):
                machine.advance(PipelineStage.CHUNKING)
            else:
                logger.info(f"[{cid}] ⏭️  Single segment, skipping chunking")
            segments = segmenter.segment(audio)
            del audio

            job.segments = segments
            job.total_segments = len(segments)
            machine.advance(PipelineStage.TRANSCRIBING)

            transcriber = SegmentTranscriber(self.store, self.backend, correlation_id=cid,
                                             **self.transcriber_options)
            orchestrator = SegmentOrchestrator(self.store, transcriber, self.concurrency,
                                               on_segment_done=machine.segment_finished,
                                               correlation_id=cid)
            await orchestrator.run(segments, self.model)

            failed = [s for s in segments if s.status == SegmentStatus.FAILED]
            if failed:
                first = failed[0]
                raise SegmentFailedError(first.index, first.last_error,
                                         f"{len(failed)} of {len(segments)} segments failed; "
                                         f"segment {first.index}: {first.error_message}",
                                         first.attempts)

            job.transcript = assemble(segments)

            machine.advance(PipelineStage.SUMMARIZING)
            if self.summarizer:
                job.summary = await self.summarizer.summarize(job.transcript)

            machine.advance(PipelineStage.COMPLETED)
            logger.info(f"[{cid}] ✅ Job completed in {seconds_to_duration(time.monotonic() - started)}")

        except PipelineError as e:
            machine.fail(e, salvage(segments))
        except asyncio.CancelledError:
            machine.fail(JobCancelledError("Processing was cancelled"), salvage(segments))
            raise

        return job
