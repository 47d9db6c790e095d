"""Unit tests for the mp3 frame scanner"""

import pytest

from meeting_transcriber.audio.frames import id3v2_size, parse_header, scan_frames

from test_utils import LARGE_TIER_FRAME_BYTES, LARGE_TIER_FRAME_SECONDS, build_mp3, id3v2_tag, mp3_frame


class TestParseHeader:

    @pytest.mark.unit
    def test_mpeg2_header(self):
        header = parse_header(mp3_frame(48, 22050), 0)
        assert header.length == LARGE_TIER_FRAME_BYTES
        assert header.samples == 576
        assert header.duration == pytest.approx(LARGE_TIER_FRAME_SECONDS)

    @pytest.mark.unit
    def test_mpeg1_header(self):
        header = parse_header(mp3_frame(128, 44100), 0)
        assert header.length == 417
        assert header.samples == 1152
        assert header.bitrate_kbps == 128

    @pytest.mark.unit
    def test_padding_adds_a_byte(self):
        header = parse_header(mp3_frame(48, 22050, padding=1), 0)
        assert header.length == LARGE_TIER_FRAME_BYTES + 1

    @pytest.mark.unit
    @pytest.mark.parametrize("data", [
        b'\x00\x00\x00\x00',
        b'\xff\x12\x00\x00',
        b'\xff\xf3\xf0\x00',  # bitrate index 15
        b'\xff\xf3\x6c\x00',  # sample rate index 3
        b'\xff',
    ])
    def test_rejects_invalid(self, data):
        assert parse_header(data, 0) is None


class TestId3:

    @pytest.mark.unit
    def test_tag_size(self):
        assert id3v2_size(id3v2_tag(300)) == 310

    @pytest.mark.unit
    def test_no_tag(self):
        assert id3v2_size(mp3_frame()) == 0


class TestScanFrames:

    @pytest.mark.unit
    def test_counts_frames_and_duration(self):
        scan = scan_frames(build_mp3(100))
        assert len(scan.frames) == 100
        assert scan.duration == pytest.approx(100 * LARGE_TIER_FRAME_SECONDS)
        assert scan.sample_rate == 22050
        assert scan.bitrate_kbps == pytest.approx(48, rel=0.01)

    @pytest.mark.unit
    def test_skips_leading_tag(self):
        data = build_mp3(10, leading=id3v2_tag(500))
        scan = scan_frames(data)
        assert len(scan.frames) == 10
        assert scan.frames[0].offset == 510

    @pytest.mark.unit
    def test_skips_tag_between_frames(self):
        data = build_mp3(5) + id3v2_tag(64) + build_mp3(5)
        assert len(scan_frames(data).frames) == 10

    @pytest.mark.unit
    def test_resyncs_after_junk(self):
        data = build_mp3(10) + b'\x00\xff\x12junk\xff' + build_mp3(10)
        scan = scan_frames(data)
        assert len(scan.frames) == 20
        assert scan.frames[10].offset == 10 * LARGE_TIER_FRAME_BYTES + 8

    @pytest.mark.unit
    def test_ignores_truncated_last_frame(self):
        data = build_mp3(5) + mp3_frame()[:50]
        assert len(scan_frames(data).frames) == 5

    @pytest.mark.unit
    def test_start_times(self):
        scan = scan_frames(build_mp3(4))
        times = scan.start_times()
        assert len(times) == 5
        assert times[0] == 0.0
        assert times[-1] == pytest.approx(scan.duration)

    @pytest.mark.unit
    @pytest.mark.parametrize("data", [
        b'RIFF' + bytes(4096),
        bytes(1024),
        mp3_frame(),
        b'',
    ])
    def test_non_mp3_returns_none(self, data):
        assert scan_frames(data) is None
