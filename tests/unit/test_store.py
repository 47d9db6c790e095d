"""Unit tests for segment stores"""

import asyncio

import aiohttp
import pytest
from aioresponses import aioresponses

from meeting_transcriber.errors import (
    NetworkError, OversizeError, RateLimitError, TranscriptionTimeoutError, ValidationError
)
from meeting_transcriber.transcripts.store import (
    HttpSegmentStore, LocalSegmentStore, create_store, error_for_status, parse_retry_after
)

BASE_URL = "https://blobs.example.com/segments"


class TestStatusMapping:

    @pytest.mark.unit
    @pytest.mark.parametrize("status,error_type", [
        (400, ValidationError),
        (404, ValidationError),
        (408, TranscriptionTimeoutError),
        (413, OversizeError),
        (429, RateLimitError),
        (500, NetworkError),
        (503, NetworkError),
        (504, TranscriptionTimeoutError),
    ])
    def test_error_for_status(self, status, error_type):
        assert isinstance(error_for_status(status, "boom", 3), error_type)

    @pytest.mark.unit
    @pytest.mark.parametrize("value,expected", [
        (None, None),
        ("", None),
        ("7", 7.0),
        ("1.5", 1.5),
        ("-3", 0.0),
        ("Wed, 21 Oct 2015 07:28:00 GMT", None),
    ])
    def test_parse_retry_after(self, value, expected):
        assert parse_retry_after(value) == expected


class TestLocalSegmentStore:

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_put_get_delete(self, local_store):
        url = await local_store.put("job1/segment_000.mp3", b'audio')
        assert url.startswith("file://")
        assert await local_store.get(url) == b'audio'

        await local_store.delete(url)
        with pytest.raises(ValidationError, match="not found"):
            await local_store.get(url)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_write_is_visible_to_next_read(self, local_store):
        url = await local_store.put("job1/segment_001.mp3", b'first')
        await local_store.put("job1/segment_001.mp3", b'second')
        assert await local_store.get(url) == b'second'

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_rejects_foreign_urls(self, local_store):
        with pytest.raises(ValidationError):
            await local_store.get("https://elsewhere.example.com/a.mp3")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_delete_missing_is_quiet(self, local_store, temp_dir):
        await local_store.delete((temp_dir / "missing.mp3").as_uri())

    @pytest.mark.unit
    def test_create_store(self, temp_dir):
        assert isinstance(create_store(BASE_URL), HttpSegmentStore)
        local = create_store(temp_dir.as_uri())
        assert isinstance(local, LocalSegmentStore)
        assert local.root == temp_dir


class TestHttpSegmentStore:

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_put_returns_url_from_json(self):
        async with HttpSegmentStore(BASE_URL, token="secret") as store:
            with aioresponses() as m:
                m.put(f"{BASE_URL}/job1/segment_000.mp3", payload={'url': 'https://cdn.example.com/s0.mp3'})
                url = await store.put("job1/segment_000.mp3", b'audio')
        assert url == 'https://cdn.example.com/s0.mp3'

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_put_falls_back_to_location_then_target(self):
        async with HttpSegmentStore(BASE_URL) as store:
            with aioresponses() as m:
                m.put(f"{BASE_URL}/a.mp3", status=201, content_type='text/plain',
                      headers={'Location': 'https://cdn.example.com/a.mp3'})
                m.put(f"{BASE_URL}/b.mp3", status=201, content_type='text/plain')
                assert await store.put("a.mp3", b'x') == 'https://cdn.example.com/a.mp3'
                assert await store.put("b.mp3", b'x') == f"{BASE_URL}/b.mp3"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_get(self):
        url = f"{BASE_URL}/job1/segment_000.mp3"
        async with HttpSegmentStore(BASE_URL) as store:
            with aioresponses() as m:
                m.get(url, body=b'\xff\xf3audio')
                assert await store.get(url) == b'\xff\xf3audio'

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_get_rate_limited(self):
        url = f"{BASE_URL}/s.mp3"
        async with HttpSegmentStore(BASE_URL) as store:
            with aioresponses() as m:
                m.get(url, status=429, headers={'Retry-After': '7'}, body="slow down")
                with pytest.raises(RateLimitError) as exc_info:
                    await store.get(url)
        assert exc_info.value.retry_after == 7.0

    @pytest.mark.unit
    @pytest.mark.asyncio
    @pytest.mark.parametrize("status,error_type", [
        (404, ValidationError),
        (500, NetworkError),
        (504, TranscriptionTimeoutError),
    ])
    async def test_get_errors(self, status, error_type):
        url = f"{BASE_URL}/s.mp3"
        async with HttpSegmentStore(BASE_URL) as store:
            with aioresponses() as m:
                m.get(url, status=status, body="nope")
                with pytest.raises(error_type):
                    await store.get(url)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_transport_failures(self):
        url = f"{BASE_URL}/s.mp3"
        async with HttpSegmentStore(BASE_URL) as store:
            with aioresponses() as m:
                m.get(url, exception=aiohttp.ClientConnectionError("reset by peer"))
                m.get(url, exception=asyncio.TimeoutError())
                with pytest.raises(NetworkError, match="reset by peer"):
                    await store.get(url)
                with pytest.raises(TranscriptionTimeoutError):
                    await store.get(url)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_delete_ignores_missing(self):
        url = f"{BASE_URL}/s.mp3"
        async with HttpSegmentStore(BASE_URL) as store:
            with aioresponses() as m:
                m.delete(url, status=404)
                await store.delete(url)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_close_is_idempotent(self):
        store = HttpSegmentStore(BASE_URL)
        await store._get_session()
        await store.close()
        await store.close()
        assert store.session is None
