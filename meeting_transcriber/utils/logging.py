"""Logging configuration for the meeting transcriber"""

import logging
from typing import Optional


def setup_logging(log_file: Optional[str] = "meeting_transcriber.log", level: int = logging.INFO) -> logging.Logger:
    """Set up logging configuration"""
    handlers = [logging.StreamHandler()]
    if log_file:
        handlers.insert(0, logging.FileHandler(log_file, encoding='utf-8'))

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(levelname)s - %(message)s',
        handlers=handlers
    )

    # Suppress verbose HTTP client logging from the OpenAI SDK and aiohttp
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("aiohttp").setLevel(logging.WARNING)
    logging.getLogger("pydub").setLevel(logging.WARNING)

    return logging.getLogger("meeting_transcriber")


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance"""
    return logging.getLogger(name)
