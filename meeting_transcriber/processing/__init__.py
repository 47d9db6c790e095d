"""Post-transcription processing"""

from .summarizer import Summarizer

__all__ = ["Summarizer"]
