"""Integration tests: segmenter, store, orchestrator and reassembly wired together"""

import pytest
from aioresponses import aioresponses

from meeting_transcriber.audio.segmenter import Segmenter
from meeting_transcriber.errors import RateLimitError
from meeting_transcriber.models import SegmentStatus
from meeting_transcriber.transcripts.orchestrator import SegmentOrchestrator, SegmentTranscriber
from meeting_transcriber.transcripts.reassembler import assemble
from meeting_transcriber.transcripts.store import HttpSegmentStore

from test_utils import MB, ScriptedBackend, frames_for_seconds

BASE_URL = "https://blobs.example.com/segments"


@pytest.mark.integration
@pytest.mark.asyncio
async def test_local_store_round_trip(make_audio, local_store, transcriber_factory):
    audio = make_audio(frames_for_seconds(700), source_size=120 * MB)
    segments = Segmenter().segment(audio)
    backend = ScriptedBackend(
        script={1: [RateLimitError("slow down"), "tweede deel"]},
        delays={0: 0.03, 2: 0.01},
    )
    orchestrator = SegmentOrchestrator(local_store, transcriber_factory(backend), concurrency=3)

    results = await orchestrator.run(segments)

    assert len(segments) == 3
    assert all(r.success for r in results.values())
    assert results[1].attempts == 2
    assert assemble(segments) == "seg-0 tweede deel seg-2"


@pytest.mark.integration
@pytest.mark.asyncio
async def test_http_store_round_trip(make_audio, no_wait):
    audio = make_audio(frames_for_seconds(650), source_size=120 * MB)
    segments = Segmenter().segment(audio)
    backend = ScriptedBackend()

    async with HttpSegmentStore(BASE_URL, token="secret") as store:
        transcriber = SegmentTranscriber(store, backend, backoff=no_wait, correlation_id="job7")
        orchestrator = SegmentOrchestrator(store, transcriber, concurrency=2)

        with aioresponses() as m:
            for segment in segments:
                blob = f"https://cdn.example.com/job7/{segment.index}.mp3"
                m.put(f"{BASE_URL}/job7/{segment.file_name}", payload={'url': blob})
                if segment.index == 1:
                    m.get(blob, status=503, body="busy")
                m.get(blob, body=segment.data)
                m.delete(blob, status=204)

            results = await orchestrator.run(segments)

    assert all(s.status == SegmentStatus.DONE for s in segments)
    assert results[1].attempts == 2
    assert sorted(backend.calls) == [0, 1, 2]
    assert assemble(segments) == "seg-0 seg-1 seg-2"


@pytest.mark.integration
@pytest.mark.asyncio
async def test_failed_upload_marks_segment_failed(make_audio, no_wait):
    audio = make_audio(frames_for_seconds(650), source_size=120 * MB)
    segments = Segmenter().segment(audio)
    backend = ScriptedBackend()

    async with HttpSegmentStore(BASE_URL) as store:
        transcriber = SegmentTranscriber(store, backend, backoff=no_wait, max_attempts=2,
                                         correlation_id="job8")
        orchestrator = SegmentOrchestrator(store, transcriber, concurrency=1, keep_uploads=True)

        with aioresponses() as m:
            for segment in segments:
                blob = f"https://cdn.example.com/job8/{segment.index}.mp3"
                if segment.index == 0:
                    m.put(f"{BASE_URL}/job8/{segment.file_name}", status=500, repeat=True)
                    continue
                m.put(f"{BASE_URL}/job8/{segment.file_name}", payload={'url': blob})
                m.get(blob, body=segment.data)

            results = await orchestrator.run(segments)

    assert not results[0].success
    assert segments[0].status == SegmentStatus.FAILED
    assert segments[0].blob_url is None
    assert [results[i].success for i in (1, 2)] == [True, True]
    assert 0 not in backend.calls
