"""Meeting Transcriber - chunked speech-to-text for long recordings"""

__version__ = "1.0.0"
