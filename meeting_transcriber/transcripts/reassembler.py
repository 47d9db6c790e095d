"""Join segment transcripts back into one transcript"""

from typing import Dict, List

from ..errors import IncompleteAssemblyError
from ..models import Segment, SegmentStatus
from ..utils.logging import get_logger

logger = get_logger(__name__)


def assemble(segments: List[Segment], separator: str = " ") -> str:
    """Concatenate transcripts in index order

    Raises:
        IncompleteAssemblyError: empty input, a segment that is not done, or
            indices that are not exactly 0..N-1
    """
    if not segments:
        raise IncompleteAssemblyError("No segments to assemble")

    ordered = sorted(segments, key=lambda s: s.index)
    indices = [s.index for s in ordered]
    if indices != list(range(len(ordered))):
        raise IncompleteAssemblyError(f"Segment indices are not contiguous from 0: {indices}")

    unfinished = [s.index for s in ordered if s.status != SegmentStatus.DONE or s.transcript is None]
    if unfinished:
        raise IncompleteAssemblyError(f"Segments not done: {unfinished}", unfinished[0])

    text = separator.join(s.transcript.strip() for s in ordered)
    logger.info(f"Assembled {len(ordered)} segments into {len(text)} characters")
    return text


def salvage(segments: List[Segment]) -> Dict[int, str]:
    """Finished transcripts of a failed job, keyed by index, for manual recovery"""
    return {
        s.index: s.transcript
        for s in sorted(segments, key=lambda s: s.index)
        if s.status == SegmentStatus.DONE and s.transcript is not None
    }
