"""Split normalized audio into bounded segments"""

import math
from typing import List, Optional, Tuple

from ..errors import OversizeError, ValidationError
from ..models import NormalizedAudio, Segment
from ..utils.helpers import format_bytes, new_correlation_id
from ..utils.logging import get_logger
from .frames import FrameScan, scan_frames
from .tiers import TierPolicy

logger = get_logger(__name__)

# Byte slices used when the stream has no parseable mp3 frames
FALLBACK_SLICE_RATIO = 0.75

# Whisper rejects audio under 0.1 s
MIN_TAIL_SECONDS = 1.0


class Segmenter:
    """Cut normalized audio at frame boundaries into segments under the byte cap

    Segments are contiguous in bytes and seconds: the first starts at 0 and
    the last ends at the stream length. Any leading tag bytes go to the
    first segment and any trailing non-frame bytes to the last.
    """

    def __init__(self, policy: Optional[TierPolicy] = None, correlation_id: Optional[str] = None):
        self.policy = policy or TierPolicy()
        self.correlation_id = correlation_id or new_correlation_id()

    def target_duration(self, audio: NormalizedAudio, policy: Optional[TierPolicy] = None) -> float:
        policy = policy or self.policy
        return policy.target_duration(audio.source_size, audio.bitrate_kbps)

    def needs_chunking(self, audio: NormalizedAudio, policy: Optional[TierPolicy] = None) -> bool:
        """False when the whole stream fits in a single segment"""
        policy = policy or self.policy
        fits_duration = audio.duration_seconds <= self.target_duration(audio, policy)
        fits_size = audio.size <= policy.max_segment_bytes
        return not (fits_duration and fits_size)

    def estimate_segment_count(self, source_size: int, policy: Optional[TierPolicy] = None) -> int:
        """Rough segment count from the upload size, before normalization"""
        policy = policy or self.policy
        settings = policy.encoding_for(source_size)
        # Uploads are assumed to be about one MB per audio minute
        minutes = source_size / (1024 * 1024)
        target = policy.target_duration(source_size, settings.bitrate_kbps)
        return max(1, math.ceil(minutes * 60 / target))

    def segment(self, audio: NormalizedAudio, policy: Optional[TierPolicy] = None) -> List[Segment]:
        policy = policy or self.policy
        cid = self.correlation_id
        if audio.size == 0:
            raise ValidationError("Cannot segment empty audio")

        if not self.needs_chunking(audio, policy):
            logger.info(f"[{cid}] Audio fits one segment ({format_bytes(audio.size)}, {audio.duration_seconds:.0f}s)")
            return [Segment(index=0, start_byte=0, end_byte=audio.size, start_seconds=0.0,
                            end_seconds=audio.duration_seconds, data=audio.data)]

        target = self.target_duration(audio, policy)
        scan = scan_frames(audio.data)
        if scan is None:
            logger.warning(f"[{cid}] No mp3 frames found, slicing by bytes")
            segments = self._slice_bytes(audio, policy)
        else:
            segments = self._cut_at_frames(audio, scan, target, policy)

        logger.info(f"[{cid}] 🔪 Split {audio.duration_seconds / 60:.1f} min into {len(segments)} segments "
                    f"(target {target:.0f}s)")
        return segments

    def _cut_at_frames(self, audio: NormalizedAudio, scan: FrameScan, target: float,
                       policy: TierPolicy) -> List[Segment]:
        frames = scan.frames
        times = scan.start_times()

        # Frame indices where a new segment starts
        cuts = [0]
        acc = 0.0
        for i, frame in enumerate(frames):
            if i > 0 and acc >= target:
                cuts.append(i)
                acc = 0.0
            acc += frame.duration
        cuts.append(len(frames))

        def byte_at(cut: int) -> int:
            if cut == 0:
                return 0
            if cut == len(frames):
                return audio.size
            return frames[cut].offset

        # Fold a short tail into the previous segment while it still fits the cap
        if len(cuts) > 2:
            tail = times[cuts[-1]] - times[cuts[-2]]
            if tail < MIN_TAIL_SECONDS and byte_at(cuts[-1]) - byte_at(cuts[-3]) <= policy.max_segment_bytes:
                logger.debug(f"[{self.correlation_id}] Merged {tail:.2f}s tail into the previous segment")
                del cuts[-2]

        def split(lo: int, hi: int) -> List[Tuple[int, int]]:
            if byte_at(hi) - byte_at(lo) <= policy.max_segment_bytes:
                return [(lo, hi)]
            if hi - lo <= 1:
                raise OversizeError(
                    f"Cannot cut below {format_bytes(byte_at(hi) - byte_at(lo))} at frame {lo}"
                )
            mid = (lo + hi) // 2
            return split(lo, mid) + split(mid, hi)

        ranges: List[Tuple[int, int]] = []
        for lo, hi in zip(cuts, cuts[1:]):
            ranges.extend(split(lo, hi))

        if len(ranges) > len(cuts) - 1:
            logger.info(f"[{self.correlation_id}] Re-split oversized segments: {len(cuts) - 1} -> {len(ranges)}")

        segments = []
        for index, (lo, hi) in enumerate(ranges):
            start, end = byte_at(lo), byte_at(hi)
            segments.append(Segment(
                index=index,
                start_byte=start,
                end_byte=end,
                start_seconds=times[lo],
                end_seconds=times[hi],
                data=audio.data[start:end],
            ))
        return segments

    def _slice_bytes(self, audio: NormalizedAudio, policy: TierPolicy) -> List[Segment]:
        slice_size = max(1, int(policy.max_segment_bytes * FALLBACK_SLICE_RATIO))
        segments = []
        for index, start in enumerate(range(0, audio.size, slice_size)):
            end = min(start + slice_size, audio.size)
            segments.append(Segment(
                index=index,
                start_byte=start,
                end_byte=end,
                start_seconds=audio.duration_seconds * start / audio.size,
                end_seconds=audio.duration_seconds * end / audio.size,
                data=audio.data[start:end],
            ))
        # Pin the final boundary so times sum exactly
        segments[-1].end_seconds = audio.duration_seconds
        return segments
