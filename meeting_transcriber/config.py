"""Configuration and constants for the meeting transcriber"""

import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

from .utils.logging import get_logger

# Load environment variables
load_dotenv()

logger = get_logger(__name__)

MB = 1024 * 1024

# Directories
BASE_DIR = Path.cwd()
TEMP_DIR = Path(os.getenv("TEMP_DIR", str(BASE_DIR / "temp")))
SEGMENT_STORE_DIR = Path(os.getenv("SEGMENT_STORE_DIR", str(BASE_DIR / "segments")))

# API Keys
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")

# Models
TRANSCRIPTION_MODEL = os.getenv("TRANSCRIPTION_MODEL", "whisper-1")
TRANSCRIPTION_LANGUAGE = os.getenv("TRANSCRIPTION_LANGUAGE", "nl")
SUMMARIZATION_MODEL = os.getenv("SUMMARIZATION_MODEL", "o3-mini")
SUMMARIZATION_TEMPERATURE = float(os.getenv("SUMMARIZATION_TEMPERATURE", "0.3"))

# Hard limits
MAX_UPLOAD_BYTES = 500 * MB
MAX_SEGMENT_BYTES = 20 * MB

# Tier thresholds measured on the original upload
LARGE_FILE_THRESHOLD_MB = float(os.getenv("LARGE_FILE_THRESHOLD_MB", "50"))
HUGE_FILE_THRESHOLD_MB = float(os.getenv("HUGE_FILE_THRESHOLD_MB", "125"))
# Already-compressed mp3 below this size skips normalization
PASSTHROUGH_THRESHOLD_MB = float(os.getenv("PASSTHROUGH_THRESHOLD_MB", "10"))

# Segment dispatch
SEGMENT_CONCURRENCY = int(os.getenv("SEGMENT_CONCURRENCY", "1"))
MAX_SEGMENT_ATTEMPTS = int(os.getenv("MAX_SEGMENT_ATTEMPTS", "3"))
FETCH_TIMEOUT_SECONDS = float(os.getenv("FETCH_TIMEOUT_SECONDS", "30"))
TRANSCRIPTION_TIMEOUT_SECONDS = float(os.getenv("TRANSCRIPTION_TIMEOUT_SECONDS", "120"))
RETRY_BASE_DELAY = float(os.getenv("RETRY_BASE_DELAY", "2.0"))
RETRY_MAX_DELAY = float(os.getenv("RETRY_MAX_DELAY", "30.0"))
RATE_LIMIT_BACKOFF_FACTOR = float(os.getenv("RATE_LIMIT_BACKOFF_FACTOR", "5.0"))
WHISPER_REQUESTS_PER_MINUTE = int(os.getenv("WHISPER_REQUESTS_PER_MINUTE", "50"))

# Segment store
SEGMENT_STORE_URL = os.getenv("SEGMENT_STORE_URL")
SEGMENT_STORE_TOKEN = os.getenv("SEGMENT_STORE_TOKEN")

# Optional YAML overrides for tier policy and time estimates
PIPELINE_CONFIG = os.getenv("PIPELINE_CONFIG", str(BASE_DIR / "pipeline.yaml"))


def load_pipeline_overrides(path: Optional[str] = None) -> Dict[str, Any]:
    """Load tier and estimate overrides from pipeline.yaml

    The file is optional. Recognised top-level keys are ``tiers`` and
    ``estimates``; anything else is ignored with a warning.
    """
    yaml_file = Path(path or PIPELINE_CONFIG)
    if not yaml_file.exists():
        return {}

    with open(yaml_file, 'r') as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ValueError(f"{yaml_file} must contain a mapping, got {type(data).__name__}")

    overrides = {}
    for key, value in data.items():
        if key in ('tiers', 'estimates'):
            overrides[key] = value or {}
        else:
            logger.warning(f"Ignoring unknown key '{key}' in {yaml_file}")

    logger.info(f"Loaded pipeline overrides from {yaml_file}: {', '.join(overrides) or 'none'}")
    return overrides
