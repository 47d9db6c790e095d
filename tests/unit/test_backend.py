"""Unit tests for the transcription backend and error classification"""

import asyncio
from unittest.mock import AsyncMock

import aiohttp
import httpx
import openai
import pytest

from meeting_transcriber.errors import (
    NetworkError, OversizeError, RateLimitError, TranscriptionTimeoutError, ValidationError
)
from meeting_transcriber.transcripts.backend import WhisperBackend, classify_error
from meeting_transcriber.utils.helpers import RateLimiter

API_URL = "https://api.openai.com/v1/audio/transcriptions"


def api_request():
    return httpx.Request("POST", API_URL)


def api_status_error(status, message, headers=None):
    response = httpx.Response(status, request=api_request(), headers=headers or {})
    error_class = {
        400: openai.BadRequestError,
        413: openai.APIStatusError,
        429: openai.RateLimitError,
        500: openai.InternalServerError,
    }.get(status, openai.APIStatusError)
    return error_class(message, response=response, body=None)


class TestClassifyError:

    @pytest.mark.unit
    def test_timeouts(self):
        assert isinstance(classify_error(openai.APITimeoutError(request=api_request())), TranscriptionTimeoutError)
        assert isinstance(classify_error(asyncio.TimeoutError()), TranscriptionTimeoutError)

    @pytest.mark.unit
    def test_rate_limit_carries_retry_after(self):
        error = classify_error(api_status_error(429, "Rate limit reached", {'retry-after': '12'}), 4)
        assert isinstance(error, RateLimitError)
        assert error.retry_after == 12.0
        assert error.segment_id == 4

    @pytest.mark.unit
    def test_connection_errors(self):
        assert isinstance(classify_error(openai.APIConnectionError(request=api_request())), NetworkError)
        assert isinstance(classify_error(aiohttp.ClientConnectionError("reset")), NetworkError)

    @pytest.mark.unit
    @pytest.mark.parametrize("status,message,error_type", [
        (413, "Maximum content size limit (26214400) exceeded", OversizeError),
        (400, "Audio file is too large", OversizeError),
        (400, "Invalid file format", ValidationError),
        (500, "The server had an error", NetworkError),
        (504, "Gateway timeout", TranscriptionTimeoutError),
    ])
    def test_status_errors(self, status, message, error_type):
        assert isinstance(classify_error(api_status_error(status, message)), error_type)

    @pytest.mark.unit
    @pytest.mark.parametrize("message,error_type", [
        ("request timed out", TranscriptionTimeoutError),
        ("file size exceeds limit", OversizeError),
        ("rate limit exceeded", RateLimitError),
        ("something odd", NetworkError),
    ])
    def test_message_heuristics(self, message, error_type):
        assert isinstance(classify_error(RuntimeError(message)), error_type)

    @pytest.mark.unit
    def test_pipeline_errors_pass_through(self):
        original = ValidationError("bad")
        assert classify_error(original, 7) is original
        assert original.segment_id == 7


class TestWhisperBackend:

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_transcribe(self, mock_openai):
        backend = WhisperBackend(mock_openai, language="nl")
        text = await backend.transcribe(b'audio', "segment_002.mp3", "whisper-1", "cid")

        assert text == "Goedemorgen allemaal, welkom bij het overleg."
        kwargs = mock_openai.audio.transcriptions.create.call_args.kwargs
        assert kwargs['model'] == "whisper-1"
        assert kwargs['file'] == ("segment_002.mp3", b'audio', 'audio/mpeg')
        assert kwargs['response_format'] == 'text'
        assert kwargs['language'] == 'nl'

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_language_is_optional(self, mock_openai):
        await WhisperBackend(mock_openai, language=None).transcribe(b'audio', "s.mp3", "whisper-1")
        assert 'language' not in mock_openai.audio.transcriptions.create.call_args.kwargs

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_errors_are_classified(self, mock_openai):
        mock_openai.audio.transcriptions.create = AsyncMock(
            side_effect=openai.APIConnectionError(request=api_request())
        )
        with pytest.raises(NetworkError):
            await WhisperBackend(mock_openai).transcribe(b'audio', "s.mp3", "whisper-1")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_uses_rate_limiter(self, mock_openai):
        limiter = RateLimiter(max_requests_per_minute=10)
        backend = WhisperBackend(mock_openai, rate_limiter=limiter)
        await backend.wait_ready("abc123")
        assert limiter.get_current_usage()['current_requests'] == 1

        # The slot is taken by wait_ready, not by the request itself
        await backend.transcribe(b'audio', "s.mp3", "whisper-1")
        assert limiter.get_current_usage()['current_requests'] == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_wait_ready_without_limiter(self, mock_openai):
        await WhisperBackend(mock_openai).wait_ready()
        mock_openai.audio.transcriptions.create.assert_not_called()
