"""Audio normalization and segmentation"""

from .engine import CodecEngine, FFmpegEngine, PydubEngine, Workspace, default_engine
from .normalizer import FormatNormalizer
from .segmenter import Segmenter
from .tiers import EncodeSettings, SizeTier, TierPolicy

__all__ = [
    "CodecEngine", "FFmpegEngine", "PydubEngine", "Workspace", "default_engine",
    "FormatNormalizer", "Segmenter", "EncodeSettings", "SizeTier", "TierPolicy",
]
