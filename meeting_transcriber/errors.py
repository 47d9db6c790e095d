"""Error taxonomy for the transcription pipeline"""

from enum import Enum
from typing import Optional


class ErrorKind(Enum):
    """Classified failure kinds reported to callers"""
    VALIDATION = "ValidationError"
    OVERSIZE = "OversizeError"
    TIMEOUT = "TimeoutError"
    RATE_LIMIT = "RateLimitError"
    NETWORK = "NetworkError"
    CONVERSION = "ConversionError"
    INCOMPLETE_ASSEMBLY = "IncompleteAssemblyError"
    INVALID_TRANSITION = "InvalidTransitionError"
    CANCELLED = "Cancelled"


# HTTP-style status codes for the segment transcription contract
STATUS_CODES = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.OVERSIZE: 400,
    ErrorKind.TIMEOUT: 504,
    ErrorKind.RATE_LIMIT: 429,
    ErrorKind.NETWORK: 502,
    ErrorKind.CONVERSION: 500,
    ErrorKind.INCOMPLETE_ASSEMBLY: 500,
    ErrorKind.INVALID_TRANSITION: 500,
    ErrorKind.CANCELLED: 499,
}

USER_MESSAGES = {
    ErrorKind.VALIDATION: "The segment reference is missing or invalid. Check the request and resubmit.",
    ErrorKind.OVERSIZE: "Audio segment is too large for the transcription service. Use a smaller segment size.",
    ErrorKind.TIMEOUT: "Timeout processing audio segment. Retry later or use shorter segments.",
    ErrorKind.RATE_LIMIT: "Transcription service rate limit reached. Wait a few moments and resubmit.",
    ErrorKind.NETWORK: "Network failure while talking to the transcription service. Resubmit the segment.",
    ErrorKind.CONVERSION: "The recording could not be converted to audio. Upload a different file.",
    ErrorKind.INCOMPLETE_ASSEMBLY: "The transcript could not be assembled because some segments are unfinished.",
    ErrorKind.INVALID_TRANSITION: "The job is in a state that does not allow this operation.",
    ErrorKind.CANCELLED: "Processing was cancelled.",
}


class PipelineError(Exception):
    """Base class for all classified pipeline failures"""

    kind = ErrorKind.NETWORK
    retryable = False

    def __init__(self, message: str, segment_id: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.segment_id = segment_id

    @property
    def status_code(self) -> int:
        return STATUS_CODES[self.kind]

    def user_message(self) -> str:
        """Human readable message specific to the failure class"""
        return USER_MESSAGES[self.kind]

    def __str__(self) -> str:
        if self.segment_id is not None:
            return f"[segment {self.segment_id}] {self.message}"
        return self.message


class ValidationError(PipelineError):
    """Missing or malformed input (never retried)"""
    kind = ErrorKind.VALIDATION


class OversizeError(PipelineError):
    """Segment exceeds the backend size cap (never retried)"""
    kind = ErrorKind.OVERSIZE


class TranscriptionTimeoutError(PipelineError):
    """Fetch or transcription exceeded its time budget"""
    kind = ErrorKind.TIMEOUT
    retryable = True


class RateLimitError(PipelineError):
    """Backend throttling; retried with a longer backoff"""
    kind = ErrorKind.RATE_LIMIT
    retryable = True

    def __init__(self, message: str, segment_id: Optional[int] = None, retry_after: Optional[float] = None):
        super().__init__(message, segment_id)
        self.retry_after = retry_after


class NetworkError(PipelineError):
    """Transport or upstream failure"""
    kind = ErrorKind.NETWORK
    retryable = True


class ConversionError(PipelineError):
    """The codec engine could not normalize the input (fatal to the job)"""
    kind = ErrorKind.CONVERSION


class IncompleteAssemblyError(PipelineError):
    """Reassembly requested before every segment finished (fatal to the job)"""
    kind = ErrorKind.INCOMPLETE_ASSEMBLY


class InvalidTransitionError(PipelineError):
    """Illegal state machine transition"""
    kind = ErrorKind.INVALID_TRANSITION


class SegmentFailedError(PipelineError):
    """A segment exhausted its attempts; carries the segment's last error kind"""

    def __init__(self, segment_id: int, last_kind: ErrorKind, message: str, attempts: int = 0):
        super().__init__(message, segment_id)
        self.kind = last_kind
        self.attempts = attempts


def is_retryable(error: BaseException) -> bool:
    """Default retry predicate: only classified retryable errors are retried"""
    return isinstance(error, PipelineError) and error.retryable


class JobCancelledError(PipelineError):
    """The pipeline task was cancelled"""
    kind = ErrorKind.CANCELLED
