"""MPEG audio Layer III frame scanner

Finds frame boundaries in an mp3 byte stream so it can be cut into pieces
that decode on their own. Only the 4-byte frame header is read; frame
payloads are never decoded.
"""

from dataclasses import dataclass
from typing import List, Optional

# Bitrate tables (kbps) indexed by the 4-bit bitrate index
MPEG1_L3_BITRATES = [0, 32, 40, 48, 56, 64, 80, 96, 112, 128, 160, 192, 224, 256, 320]
MPEG2_L3_BITRATES = [0, 8, 16, 24, 32, 40, 48, 56, 64, 80, 96, 112, 128, 144, 160]

# Sample rates by version bits: 0 = MPEG 2.5, 2 = MPEG 2, 3 = MPEG 1
SAMPLE_RATES = {
    0: [11025, 12000, 8000],
    2: [22050, 24000, 16000],
    3: [44100, 48000, 32000],
}

ID3V2_HEADER_SIZE = 10


@dataclass(frozen=True)
class FrameHeader:
    offset: int
    length: int
    bitrate_kbps: int
    sample_rate: int
    samples: int

    @property
    def duration(self) -> float:
        return self.samples / self.sample_rate

    @property
    def end(self) -> int:
        return self.offset + self.length


@dataclass
class FrameScan:
    """Frames of an mp3 stream in byte order"""
    frames: List[FrameHeader]
    total_bytes: int

    @property
    def duration(self) -> float:
        return sum(f.duration for f in self.frames)

    @property
    def sample_rate(self) -> int:
        return self.frames[0].sample_rate

    @property
    def bitrate_kbps(self) -> float:
        """Average bitrate over the audio frames"""
        duration = self.duration
        if duration <= 0:
            return 0.0
        audio_bytes = sum(f.length for f in self.frames)
        return audio_bytes * 8 / duration / 1000

    def start_times(self) -> List[float]:
        """Start time of every frame, plus the stream end as a final entry"""
        times = [0.0]
        t = 0.0
        for frame in self.frames:
            t += frame.duration
            times.append(t)
        return times


def parse_header(data: bytes, offset: int) -> Optional[FrameHeader]:
    """Parse a Layer III frame header at ``offset``; None if there is none"""
    if offset + 4 > len(data):
        return None
    b0, b1, b2 = data[offset], data[offset + 1], data[offset + 2]
    if b0 != 0xFF or (b1 & 0xE0) != 0xE0:
        return None

    version = (b1 >> 3) & 0x03
    layer = (b1 >> 1) & 0x03
    if version == 1 or layer != 1:
        return None

    bitrate_index = b2 >> 4
    rate_index = (b2 >> 2) & 0x03
    if bitrate_index in (0, 15) or rate_index == 3:
        return None

    padding = (b2 >> 1) & 0x01
    sample_rate = SAMPLE_RATES[version][rate_index]
    if version == 3:
        bitrate = MPEG1_L3_BITRATES[bitrate_index]
        length = 144 * bitrate * 1000 // sample_rate + padding
        samples = 1152
    else:
        bitrate = MPEG2_L3_BITRATES[bitrate_index]
        length = 72 * bitrate * 1000 // sample_rate + padding
        samples = 576

    return FrameHeader(offset=offset, length=length, bitrate_kbps=bitrate,
                       sample_rate=sample_rate, samples=samples)


def id3v2_size(data: bytes, offset: int = 0) -> int:
    """Size of an ID3v2 tag at ``offset`` including its header, 0 if absent"""
    if data[offset:offset + 3] != b'ID3' or offset + ID3V2_HEADER_SIZE > len(data):
        return 0
    size_bytes = data[offset + 6:offset + 10]
    if any(b & 0x80 for b in size_bytes):
        return 0
    size = 0
    for b in size_bytes:
        size = (size << 7) | b
    footer = ID3V2_HEADER_SIZE if data[offset + 5] & 0x10 else 0
    return ID3V2_HEADER_SIZE + size + footer


def scan_frames(data: bytes, min_frames: int = 2) -> Optional[FrameScan]:
    """Walk every Layer III frame in ``data``

    After any gap in the stream a candidate header only counts when the
    header right after it is valid too (or the candidate ends the data), so
    sync-like bytes inside tags and junk are skipped.

    Returns:
        The scan, or None when fewer than ``min_frames`` frames were found
    """
    frames: List[FrameHeader] = []
    pos = id3v2_size(data)
    size = len(data)
    synced = False

    while pos + 4 <= size:
        tag = id3v2_size(data, pos)
        if tag:
            pos += tag
            synced = False
            continue

        header = parse_header(data, pos)
        if header is not None and header.end <= size:
            confirmed = synced or header.end == size or parse_header(data, header.end) is not None
            if confirmed:
                frames.append(header)
                pos = header.end
                synced = True
                continue

        synced = False
        next_sync = data.find(b'\xff', pos + 1)
        if next_sync < 0:
            break
        pos = next_sync

    if len(frames) < min_frames:
        return None
    return FrameScan(frames=frames, total_bytes=size)
