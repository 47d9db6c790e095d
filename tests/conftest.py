"""Shared test configuration and fixtures for Meeting Transcriber tests"""

import sys
import tempfile
from pathlib import Path
from unittest.mock import MagicMock, AsyncMock

import pytest
from faker import Faker

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from meeting_transcriber.audio.tiers import TierPolicy
from meeting_transcriber.models import NormalizedAudio
from meeting_transcriber.transcripts.orchestrator import SegmentTranscriber
from meeting_transcriber.transcripts.store import LocalSegmentStore
from meeting_transcriber.utils.helpers import Backoff

from test_utils import MB, ScriptedBackend, build_mp3

# Initialize faker for test data generation
fake = Faker()


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast isolated tests")
    config.addinivalue_line("markers", "integration: several components wired together")
    config.addinivalue_line("markers", "e2e: full pipeline runs")


# ===== Configuration Fixtures =====

@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files"""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def mock_config(temp_dir, monkeypatch):
    """Point scratch and store directories at the temp dir"""
    scratch = temp_dir / 'temp'
    segments = temp_dir / 'segments'
    monkeypatch.setattr('meeting_transcriber.config.TEMP_DIR', scratch)
    monkeypatch.setattr('meeting_transcriber.audio.engine.TEMP_DIR', scratch)
    monkeypatch.setattr('meeting_transcriber.config.SEGMENT_STORE_DIR', segments)
    return {
        'temp_dir': scratch,
        'segment_dir': segments,
    }


@pytest.fixture
def no_wait():
    """Backoff without delays so retries run instantly"""
    return Backoff.fixed(0)


@pytest.fixture
def policy():
    return TierPolicy()


# ===== Store and Backend Fixtures =====

@pytest.fixture
def local_store(mock_config):
    return LocalSegmentStore(mock_config['segment_dir'])


@pytest.fixture
def scripted_backend():
    return ScriptedBackend()


@pytest.fixture
def transcriber_factory(local_store, no_wait):
    """Build SegmentTranscribers on the local store with instant retries"""
    def factory(backend, **kwargs):
        kwargs.setdefault('backoff', no_wait)
        return SegmentTranscriber(local_store, backend, **kwargs)
    return factory


@pytest.fixture
def mock_openai():
    """Mock AsyncOpenAI client"""
    mock = MagicMock()

    # Mock transcription (response_format="text" returns a plain string)
    mock.audio.transcriptions.create = AsyncMock(return_value="  Goedemorgen allemaal, welkom bij het overleg.  ")

    # Mock chat completion
    mock.chat.completions.create = AsyncMock(
        return_value=MagicMock(
            choices=[
                MagicMock(
                    message=MagicMock(
                        content="Overzicht: Wekelijks teamoverleg.\nActiepunten: Jan stuurt de planning."
                    )
                )
            ],
            usage=MagicMock(completion_tokens=42)
        )
    )
    mock.close = AsyncMock()
    return mock


# ===== Audio Fixtures =====

@pytest.fixture
def make_audio():
    """Factory for NormalizedAudio built from synthetic mp3 frames"""
    def factory(frame_count: int, bitrate_kbps: int = 48, sample_rate: int = 22050,
                source_size: int = 60 * MB, **kwargs) -> NormalizedAudio:
        from meeting_transcriber.audio.frames import scan_frames

        data = build_mp3(frame_count, bitrate_kbps, sample_rate, **kwargs)
        scan = scan_frames(data)
        return NormalizedAudio(
            data=data,
            sample_rate=sample_rate,
            bitrate_kbps=bitrate_kbps,
            duration_seconds=scan.duration,
            source_size=source_size,
        )
    return factory


# ===== Test Data Fixtures =====

@pytest.fixture
def sample_transcript():
    """Sample meeting transcript"""
    return " ".join(fake.sentence() for _ in range(20))


@pytest.fixture
def file_name():
    return f"{fake.word()}_overleg.mp3"

