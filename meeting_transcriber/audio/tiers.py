"""Size tiers that pick encode quality and segment length"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional

from ..config import (
    MB, MAX_SEGMENT_BYTES, LARGE_FILE_THRESHOLD_MB, HUGE_FILE_THRESHOLD_MB,
    PASSTHROUGH_THRESHOLD_MB
)
from ..utils.logging import get_logger

logger = get_logger(__name__)

# Share of the byte cap a planned segment may use
SEGMENT_CAP_HEADROOM = 0.9


class SizeTier(Enum):
    SMALL = "small"
    LARGE = "large"
    HUGE = "huge"


@dataclass(frozen=True)
class EncodeSettings:
    """Codec parameters for one tier (mono mp3, no video)"""
    sample_rate: int
    bitrate_kbps: int
    segment_seconds: Optional[int] = None  # ffmpeg segment muxer length, None for a single file

    def ffmpeg_args(self) -> List[str]:
        return [
            '-vn',
            '-ac', '1',
            '-ar', str(self.sample_rate),
            '-c:a', 'libmp3lame',
            '-b:a', f'{self.bitrate_kbps}k',
        ]


def _default_encodings() -> Dict[SizeTier, EncodeSettings]:
    return {
        SizeTier.SMALL: EncodeSettings(sample_rate=22050, bitrate_kbps=64),
        SizeTier.LARGE: EncodeSettings(sample_rate=22050, bitrate_kbps=48, segment_seconds=300),
        SizeTier.HUGE: EncodeSettings(sample_rate=16000, bitrate_kbps=32, segment_seconds=180),
    }


def _default_durations() -> Dict[SizeTier, float]:
    return {
        SizeTier.SMALL: 480.0,
        SizeTier.LARGE: 300.0,
        SizeTier.HUGE: 180.0,
    }


@dataclass
class TierPolicy:
    """Thresholds are measured on the original upload size, not the normalized size."""
    large_threshold: int = int(LARGE_FILE_THRESHOLD_MB * MB)
    huge_threshold: int = int(HUGE_FILE_THRESHOLD_MB * MB)
    passthrough_threshold: int = int(PASSTHROUGH_THRESHOLD_MB * MB)
    max_segment_bytes: int = MAX_SEGMENT_BYTES
    encodings: Dict[SizeTier, EncodeSettings] = field(default_factory=_default_encodings)
    target_durations: Dict[SizeTier, float] = field(default_factory=_default_durations)

    def __post_init__(self):
        if self.huge_threshold < self.large_threshold:
            raise ValueError("huge_threshold must not be below large_threshold")
        if self.max_segment_bytes <= 0:
            raise ValueError("max_segment_bytes must be positive")

    def tier_for(self, source_size: int) -> SizeTier:
        if source_size > self.huge_threshold:
            return SizeTier.HUGE
        if source_size > self.large_threshold:
            return SizeTier.LARGE
        return SizeTier.SMALL

    def encoding_for(self, source_size: int) -> EncodeSettings:
        return self.encodings[self.tier_for(source_size)]

    def cap_duration(self, bitrate_kbps: float) -> float:
        """Longest duration whose bytes stay under the headroom share of the cap"""
        if bitrate_kbps <= 0:
            return float('inf')
        return SEGMENT_CAP_HEADROOM * self.max_segment_bytes * 8 / (bitrate_kbps * 1000)

    def target_duration(self, source_size: int, bitrate_kbps: float) -> float:
        tier = self.tier_for(source_size)
        return min(self.target_durations[tier], self.cap_duration(bitrate_kbps))

    @classmethod
    def from_config(cls, overrides: Optional[Dict[str, Any]] = None) -> 'TierPolicy':
        """Build a policy from the ``tiers`` section of pipeline.yaml

        Example::

            tiers:
              large_threshold_mb: 60
              huge:
                bitrate_kbps: 24
                target_seconds: 150
        """
        policy = cls()
        tiers = (overrides or {}).get('tiers') or {}
        if not tiers:
            return policy

        if 'large_threshold_mb' in tiers:
            policy.large_threshold = int(float(tiers['large_threshold_mb']) * MB)
        if 'huge_threshold_mb' in tiers:
            policy.huge_threshold = int(float(tiers['huge_threshold_mb']) * MB)
        if 'max_segment_mb' in tiers:
            policy.max_segment_bytes = int(float(tiers['max_segment_mb']) * MB)

        for tier in SizeTier:
            section = tiers.get(tier.value)
            if not section:
                continue
            settings = policy.encodings[tier]
            changes = {k: int(section[k]) for k in ('sample_rate', 'bitrate_kbps', 'segment_seconds') if k in section}
            policy.encodings[tier] = replace(settings, **changes)
            if 'target_seconds' in section:
                policy.target_durations[tier] = float(section['target_seconds'])

        policy.__post_init__()
        logger.info(f"Tier policy overridden: large>{policy.large_threshold // MB}MB, huge>{policy.huge_threshold // MB}MB")
        return policy
