"""Data models for the meeting transcriber"""

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import PurePath
from typing import Any, Dict, List, Optional, Tuple

from .config import MAX_UPLOAD_BYTES, MAX_SEGMENT_BYTES
from .errors import (
    ErrorKind, InvalidTransitionError, OversizeError, PipelineError, ValidationError,
    STATUS_CODES, USER_MESSAGES
)
from .utils.helpers import format_bytes


# Extension -> accepted MIME types
SUPPORTED_MEDIA_TYPES: Dict[str, Tuple[str, ...]] = {
    'mp3': ('audio/mp3', 'audio/mpeg', 'audio/x-mpeg', 'audio/mpeg3'),
    'wav': ('audio/wav', 'audio/x-wav', 'audio/wave', 'audio/vnd.wave'),
    'ogg': ('audio/ogg', 'audio/x-ogg', 'audio/vorbis', 'audio/oga'),
    'flac': ('audio/flac', 'audio/x-flac'),
    'm4a': ('audio/m4a', 'audio/x-m4a', 'audio/aac', 'audio/mp4', 'audio/x-mp4'),
    'aac': ('audio/aac', 'audio/x-aac', 'audio/aacp'),
    'webm': ('audio/webm', 'video/webm'),
    'mp4': ('video/mp4', 'video/x-mp4', 'application/mp4'),
}

# Generic types browsers send when they do not know better
GENERIC_MIME_TYPES = ('', 'application/octet-stream')


@dataclass(frozen=True)
class SourceMedia:
    """An accepted upload. Use ``SourceMedia.accept`` to construct one."""
    data: bytes = field(repr=False)
    mime_type: str
    file_name: str
    size: int

    @property
    def extension(self) -> str:
        return PurePath(self.file_name).suffix.lower().lstrip('.')

    @classmethod
    def accept(cls, data: bytes, file_name: str, mime_type: Optional[str] = None) -> 'SourceMedia':
        """Validate an upload against the size ceiling and supported types"""
        if not file_name:
            raise ValidationError("No file name provided")

        size = len(data)
        if size == 0:
            raise ValidationError(f"File {file_name} is empty")
        if size > MAX_UPLOAD_BYTES:
            raise ValidationError(
                f"File {file_name} is {format_bytes(size)}, above the {format_bytes(MAX_UPLOAD_BYTES)} upload limit"
            )

        extension = PurePath(file_name).suffix.lower().lstrip('.')
        if extension not in SUPPORTED_MEDIA_TYPES:
            raise ValidationError(f"Unsupported file type '.{extension}' for {file_name}")

        mime = (mime_type or '').lower().split(';')[0].strip()
        if mime not in GENERIC_MIME_TYPES and mime not in SUPPORTED_MEDIA_TYPES[extension]:
            raise ValidationError(f"MIME type '{mime}' does not match extension '.{extension}'")

        return cls(data=data, mime_type=mime or SUPPORTED_MEDIA_TYPES[extension][0],
                   file_name=file_name, size=size)


@dataclass
class NormalizedAudio:
    """Mono, compressed audio derived from a SourceMedia"""
    data: bytes = field(repr=False)
    sample_rate: int
    bitrate_kbps: int
    duration_seconds: float
    source_size: int
    channels: int = 1
    passthrough: bool = False
    container: str = 'mp3'

    @property
    def size(self) -> int:
        return len(self.data)


class SegmentStatus(Enum):
    """Lifecycle of a segment"""
    PENDING = "pending"
    UPLOADED = "uploaded"
    TRANSCRIBING = "transcribing"
    DONE = "done"
    FAILED = "failed"


SEGMENT_TRANSITIONS = {
    SegmentStatus.PENDING: {SegmentStatus.UPLOADED, SegmentStatus.FAILED},
    SegmentStatus.UPLOADED: {SegmentStatus.TRANSCRIBING, SegmentStatus.FAILED},
    SegmentStatus.TRANSCRIBING: {SegmentStatus.DONE, SegmentStatus.FAILED},
    SegmentStatus.DONE: set(),
    SegmentStatus.FAILED: set(),
}


@dataclass
class Segment:
    """A contiguous, independently decodable slice of normalized audio"""
    index: int
    start_byte: int
    end_byte: int
    start_seconds: float
    end_seconds: float
    data: Optional[bytes] = field(default=None, repr=False)
    status: SegmentStatus = SegmentStatus.PENDING
    transcript: Optional[str] = None
    attempts: int = 0
    last_error: Optional[ErrorKind] = None
    error_message: Optional[str] = None
    blob_url: Optional[str] = None

    @property
    def size_bytes(self) -> int:
        return self.end_byte - self.start_byte

    @property
    def duration_seconds(self) -> float:
        return self.end_seconds - self.start_seconds

    @property
    def is_terminal(self) -> bool:
        return self.status in (SegmentStatus.DONE, SegmentStatus.FAILED)

    @property
    def file_name(self) -> str:
        return f"segment_{self.index:03d}.mp3"

    def transition(self, status: SegmentStatus):
        if status not in SEGMENT_TRANSITIONS[self.status]:
            raise InvalidTransitionError(f"Segment {self.index}: illegal transition {self.status.value} -> {status.value}")
        self.status = status

    def mark_done(self, transcript: str):
        self.transition(SegmentStatus.DONE)
        self.transcript = transcript
        self.last_error = None
        self.error_message = None

    def mark_failed(self, error: PipelineError):
        self.transition(SegmentStatus.FAILED)
        self.last_error = error.kind
        self.error_message = error.message

    def to_dict(self) -> dict:
        return {
            'index': self.index,
            'byte_range': [self.start_byte, self.end_byte],
            'time_range': [round(self.start_seconds, 3), round(self.end_seconds, 3)],
            'size_bytes': self.size_bytes,
            'status': self.status.value,
            'attempts': self.attempts,
            'last_error': self.last_error.value if self.last_error else None,
            'error_message': self.error_message,
            'has_transcript': self.transcript is not None,
        }


@dataclass
class SegmentRequest:
    """Wire request for transcribing a single stored segment"""
    blob_url: Optional[str]
    segment_id: Optional[int]
    model: str
    file_name: Optional[str] = None

    @classmethod
    def from_dict(cls, payload: Dict[str, Any], default_model: str = 'whisper-1') -> 'SegmentRequest':
        return cls(
            blob_url=payload.get('blobUrl'),
            segment_id=payload.get('segmentId', 0),
            model=payload.get('model') or default_model,
            file_name=payload.get('fileName'),
        )


@dataclass
class SegmentResult:
    """Outcome of transcribing one segment"""
    segment_id: int
    transcript: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    error_message: Optional[str] = None
    attempts: int = 0

    @property
    def success(self) -> bool:
        return self.error_kind is None

    @classmethod
    def from_error(cls, segment_id: int, error: PipelineError, attempts: int = 0) -> 'SegmentResult':
        return cls(segment_id=segment_id, error_kind=error.kind, error_message=error.message, attempts=attempts)

    def to_response(self) -> Tuple[Dict[str, Any], int]:
        """Payload and HTTP-style status code of the segment contract"""
        if self.success:
            return {'segmentId': self.segment_id, 'transcription': self.transcript, 'success': True}, 200
        return {
            'error': USER_MESSAGES[self.error_kind],
            'detail': self.error_message,
            'kind': self.error_kind.value,
            'segmentId': self.segment_id,
        }, STATUS_CODES[self.error_kind]


class PipelineStage(Enum):
    """Stages of a pipeline job"""
    UPLOADING = "uploading"
    PROCESSING = "processing"
    CHUNKING = "chunking"
    TRANSCRIBING = "transcribing"
    SUMMARIZING = "summarizing"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass
class JobError:
    """Classified failure attached to a job in the error stage"""
    kind: ErrorKind
    message: str
    segment_id: Optional[int] = None
    status_code: int = 500
    salvaged_transcripts: Dict[int, str] = field(default_factory=dict)

    @classmethod
    def from_exception(cls, error: PipelineError, salvaged: Optional[Dict[int, str]] = None) -> 'JobError':
        return cls(
            kind=error.kind,
            message=f"{error.user_message()} ({error.message})",
            segment_id=error.segment_id,
            status_code=error.status_code,
            salvaged_transcripts=dict(salvaged or {}),
        )

    def to_dict(self) -> dict:
        return {
            'kind': self.kind.value,
            'message': self.message,
            'segmentId': self.segment_id,
            'statusCode': self.status_code,
            'salvagedSegments': sorted(self.salvaged_transcripts),
        }


@dataclass
class PipelineJob:
    """Status record of one pipeline run"""
    file_name: str
    file_size: int
    id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    stage: PipelineStage = PipelineStage.UPLOADING
    stage_started_at: float = field(default_factory=time.monotonic)
    created_at: float = field(default_factory=time.time)
    total_segments: int = 0
    completed_segments: int = 0
    stage_history: List[PipelineStage] = field(default_factory=lambda: [PipelineStage.UPLOADING])
    error: Optional[JobError] = None
    transcript: Optional[str] = None
    summary: Optional[str] = None
    segments: List[Segment] = field(default_factory=list, repr=False)

    @property
    def is_terminal(self) -> bool:
        return self.stage in (PipelineStage.COMPLETED, PipelineStage.ERROR)

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'fileName': self.file_name,
            'fileSize': self.file_size,
            'stage': self.stage.value,
            'stageHistory': [s.value for s in self.stage_history],
            'totalSegments': self.total_segments,
            'completedSegments': self.completed_segments,
            'error': self.error.to_dict() if self.error else None,
            'hasTranscript': self.transcript is not None,
            'hasSummary': self.summary is not None,
        }


def check_segment_size(size_bytes: int, segment_id: int, limit: int = MAX_SEGMENT_BYTES):
    """Raise OversizeError when a segment is above the backend cap"""
    if size_bytes > limit:
        raise OversizeError(
            f"Segment {segment_id} is too large ({format_bytes(size_bytes)}). Maximum size is {format_bytes(limit)}.",
            segment_id
        )
