"""Stage time estimates and progress display"""

import time
from dataclasses import dataclass, field, fields
from typing import Any, Callable, Dict, Optional, Union

from .config import MB
from .models import PipelineStage
from .utils.logging import get_logger

logger = get_logger(__name__)

# Dollars per audio minute
TRANSCRIPTION_COST_PER_MINUTE = {
    'whisper-1': 0.006,
}


@dataclass
class EstimateConstants:
    """Heuristics behind the per-stage estimates (seconds)

    Audio length is assumed to be about one minute per MB of upload.
    """
    upload_base: float = 5.0
    upload_per_mb: float = 0.2
    upload_cap: float = 300.0
    processing_base: float = 3.0
    processing_per_mb: float = 0.1
    processing_cap: float = 60.0
    chunking_min_mb: float = 25.0
    chunking_base: float = 5.0
    chunking_per_mb: float = 0.05
    chunking_cap: float = 60.0
    transcribing_cap: float = 600.0
    summarizing_base: float = 10.0
    words_per_audio_minute: float = 500.0
    words_per_second: float = 100.0
    summarizing_cap: float = 120.0
    optimism: float = 0.8
    # Processing seconds per audio minute
    realtime_seconds: Dict[str, float] = field(default_factory=lambda: {'whisper-1': 30.0})

    @classmethod
    def from_config(cls, overrides: Optional[Dict[str, Any]] = None) -> 'EstimateConstants':
        """Apply the ``estimates`` section of pipeline.yaml"""
        constants = cls()
        values = (overrides or {}).get('estimates') or {}
        known = {f.name for f in fields(cls)}
        for key, value in values.items():
            if key not in known:
                logger.warning(f"Ignoring unknown estimate constant '{key}'")
            elif key == 'realtime_seconds':
                constants.realtime_seconds.update({k: float(v) for k, v in value.items()})
            else:
                setattr(constants, key, float(value))
        return constants


DEFAULT_CONSTANTS = EstimateConstants()


def estimate_stage_seconds(
    file_size_bytes: int,
    stage: Union[PipelineStage, str],
    model: str = 'whisper-1',
    constants: Optional[EstimateConstants] = None
) -> int:
    """Estimated duration of ``stage`` for an upload of ``file_size_bytes``

    Returns 0 for stages without an estimate (completed, error).
    """
    c = constants or DEFAULT_CONSTANTS
    stage = PipelineStage(stage)
    size_mb = max(0, file_size_bytes) / MB
    audio_minutes = size_mb

    if stage == PipelineStage.UPLOADING:
        raw, cap = c.upload_base + size_mb * c.upload_per_mb, c.upload_cap
    elif stage == PipelineStage.PROCESSING:
        raw, cap = c.processing_base + size_mb * c.processing_per_mb, c.processing_cap
    elif stage == PipelineStage.CHUNKING:
        raw = c.chunking_base + size_mb * c.chunking_per_mb if size_mb > c.chunking_min_mb else 0.0
        cap = c.chunking_cap
    elif stage == PipelineStage.TRANSCRIBING:
        factor = c.realtime_seconds.get(model, c.realtime_seconds.get('whisper-1', 30.0))
        raw, cap = audio_minutes * factor, c.transcribing_cap
    elif stage == PipelineStage.SUMMARIZING:
        words = audio_minutes * c.words_per_audio_minute
        raw, cap = c.summarizing_base + words / c.words_per_second, c.summarizing_cap
    else:
        return 0

    return round(min(cap, raw * c.optimism))


def progress_percent(elapsed: float, estimated_total: float) -> int:
    """Percent of a running stage, never 100 before the stage completes"""
    if elapsed < 0:
        return 0
    if estimated_total <= 0:
        return 99
    return min(99, round(elapsed / estimated_total * 100))


def estimate_transcription_cost(duration_seconds: float, model: str = 'whisper-1') -> float:
    """Dollar cost of transcribing ``duration_seconds`` of audio"""
    rate = TRANSCRIPTION_COST_PER_MINUTE.get(model, TRANSCRIPTION_COST_PER_MINUTE['whisper-1'])
    return max(0.0, duration_seconds) / 60 * rate


class StageProgress:
    """Tracks the displayed progress of one stage

    The displayed percentage never goes down, stays at or below 99 until
    ``complete`` is called, and the remaining time never goes negative.
    """

    def __init__(self, stage: PipelineStage, estimated_seconds: float,
                 started_at: Optional[float] = None, clock: Callable[[], float] = time.monotonic):
        self.stage = stage
        self.estimated_seconds = max(0.0, float(estimated_seconds))
        self.clock = clock
        self.started_at = clock() if started_at is None else started_at
        self.completed = False
        self._shown = 0

    @property
    def percent(self) -> int:
        return self._shown

    def elapsed(self, now: Optional[float] = None) -> float:
        now = self.clock() if now is None else now
        return max(0.0, now - self.started_at)

    def update(self, now: Optional[float] = None, floor: int = 0) -> int:
        """Displayed percent; ``floor`` lets measured progress (finished segments) lead the clock"""
        if self.completed:
            return 100
        current = progress_percent(self.elapsed(now), self.estimated_seconds)
        self._shown = max(self._shown, current, min(99, floor))
        return self._shown

    def reestimate(self, estimated_seconds: float):
        """Replace the estimate; the displayed percentage does not move back"""
        self.estimated_seconds = max(0.0, float(estimated_seconds))

    def remaining_seconds(self, now: Optional[float] = None) -> int:
        if self.completed:
            return 0
        return max(0, round(self.estimated_seconds - self.elapsed(now)))

    def complete(self):
        self.completed = True
        self._shown = 100
