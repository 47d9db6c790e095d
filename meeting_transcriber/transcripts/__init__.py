"""Segment storage, transcription and reassembly"""

from .backend import TranscriptionBackend, WhisperBackend, classify_error
from .orchestrator import SegmentOrchestrator, SegmentTranscriber, handle_segment_request
from .reassembler import assemble, salvage
from .store import HttpSegmentStore, LocalSegmentStore, SegmentStore, create_store

__all__ = [
    "TranscriptionBackend", "WhisperBackend", "classify_error",
    "SegmentOrchestrator", "SegmentTranscriber", "handle_segment_request",
    "assemble", "salvage",
    "HttpSegmentStore", "LocalSegmentStore", "SegmentStore", "create_store",
]
