"""Codec engines and the per-run scratch workspace"""

import re
import shutil
import asyncio
import tempfile
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, List, Optional, Union

import aiofiles

from ..config import TEMP_DIR
from ..errors import ConversionError
from ..utils.helpers import new_correlation_id
from ..utils.logging import get_logger
from .tiers import EncodeSettings

logger = get_logger(__name__)

_INDEX_PATTERN = re.compile(r'(\d+)$')


class Workspace:
    """Private scratch directory of one normalization run"""

    def __init__(self, path: Path):
        self.path = path

    def path_for(self, name: str) -> Path:
        return self.path / name

    async def write(self, name: str, data: bytes) -> Path:
        target = self.path_for(name)
        async with aiofiles.open(target, 'wb') as f:
            await f.write(data)
        return target

    async def read(self, name: Union[str, Path]) -> bytes:
        source = name if isinstance(name, Path) else self.path_for(name)
        async with aiofiles.open(source, 'rb') as f:
            return await f.read()

    def list_artifacts(self, prefix: str, suffix: str) -> List[Path]:
        """Files named ``{prefix}...{suffix}`` ordered by their trailing index"""
        def index_of(path: Path) -> int:
            match = _INDEX_PATTERN.search(path.stem)
            return int(match.group(1)) if match else -1

        found = [p for p in self.path.glob(f"{prefix}*{suffix}") if p.is_file()]
        return sorted(found, key=lambda p: (index_of(p), p.name))


class CodecEngine(ABC):
    """Handle to an audio codec implementation, passed into each run"""

    name = "codec"

    @asynccontextmanager
    async def workspace(self, correlation_id: Optional[str] = None) -> AsyncIterator[Workspace]:
        """Temporary directory removed on every exit path"""
        cid = correlation_id or new_correlation_id()
        TEMP_DIR.mkdir(parents=True, exist_ok=True)
        path = Path(tempfile.mkdtemp(prefix=f"run_{cid}_", dir=str(TEMP_DIR)))
        logger.debug(f"[{cid}] Workspace created: {path}")
        try:
            yield Workspace(path)
        finally:
            shutil.rmtree(path, ignore_errors=True)
            logger.debug(f"[{cid}] Workspace removed: {path}")

    @abstractmethod
    async def encode(self, workspace: Workspace, input_path: Path, settings: EncodeSettings,
                     output_prefix: str = "output", correlation_id: Optional[str] = None) -> List[Path]:
        """Encode ``input_path`` into mono mp3 artifacts inside the workspace"""

    async def probe_duration(self, path: Path, correlation_id: Optional[str] = None) -> Optional[float]:
        """Duration in seconds, or None if this engine cannot tell"""
        return None


class FFmpegEngine(CodecEngine):
    """Runs the ffmpeg and ffprobe binaries as child processes"""

    name = "ffmpeg"

    def __init__(self, ffmpeg_path: str = 'ffmpeg', ffprobe_path: str = 'ffprobe'):
        self.ffmpeg_path = ffmpeg_path
        self.ffprobe_path = ffprobe_path

    async def _run(self, cmd: List[str], correlation_id: str) -> bytes:
        """Run a command and return stdout; the child is killed if we are cancelled"""
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE
            )
        except FileNotFoundError as e:
            raise ConversionError(f"{cmd[0]} not found: {e}") from e

        try:
            stdout, stderr = await process.communicate()
        except asyncio.CancelledError:
            if process.returncode is None:
                process.kill()
                await process.wait()
            logger.warning(f"[{correlation_id}] {cmd[0]} killed after cancellation")
            raise

        if process.returncode != 0:
            detail = stderr.decode(errors='replace').strip()[-500:]
            raise ConversionError(f"{cmd[0]} exited with code {process.returncode}: {detail}")
        return stdout

    async def encode(self, workspace: Workspace, input_path: Path, settings: EncodeSettings,
                     output_prefix: str = "output", correlation_id: Optional[str] = None) -> List[Path]:
        cid = correlation_id or new_correlation_id()
        cmd = [self.ffmpeg_path, '-hide_banner', '-loglevel', 'error', '-y', '-i', str(input_path)]
        cmd += settings.ffmpeg_args()

        if settings.segment_seconds:
            # Segment muxer keeps memory bounded for long inputs
            cmd += [
                '-f', 'segment',
                '-segment_time', str(settings.segment_seconds),
                '-segment_format', 'mp3',
                '-segment_format_options', 'id3v2_version=0:write_xing=0',
                '-reset_timestamps', '1',
                str(workspace.path_for(f"{output_prefix}_%03d.mp3")),
            ]
        else:
            cmd += ['-id3v2_version', '0', '-write_xing', '0', str(workspace.path_for(f"{output_prefix}_000.mp3"))]

        logger.info(f"[{cid}] 🔄 ffmpeg encode: {settings.sample_rate}Hz, {settings.bitrate_kbps}kbps mono"
                    + (f", {settings.segment_seconds}s pieces" if settings.segment_seconds else ""))
        await self._run(cmd, cid)
        return workspace.list_artifacts(output_prefix, '.mp3')

    async def probe_duration(self, path: Path, correlation_id: Optional[str] = None) -> Optional[float]:
        cid = correlation_id or new_correlation_id()
        if not shutil.which(self.ffprobe_path):
            logger.warning(f"[{cid}] ffprobe not available, duration will be estimated")
            return None

        cmd = [self.ffprobe_path, '-v', 'error', '-show_entries', 'format=duration',
               '-of', 'default=noprint_wrappers=1:nokey=1', str(path)]
        try:
            stdout = await self._run(cmd, cid)
            return float(stdout.decode().strip())
        except (ConversionError, ValueError) as e:
            logger.warning(f"[{cid}] ffprobe could not read duration: {e}")
            return None


class PydubEngine(CodecEngine):
    """Fallback engine using pydub when the ffmpeg binary is not on PATH"""

    name = "pydub"

    async def encode(self, workspace: Workspace, input_path: Path, settings: EncodeSettings,
                     output_prefix: str = "output", correlation_id: Optional[str] = None) -> List[Path]:
        cid = correlation_id or new_correlation_id()
        logger.info(f"[{cid}] 🔄 pydub encode: {settings.sample_rate}Hz, {settings.bitrate_kbps}kbps mono")
        await asyncio.to_thread(self._encode_sync, workspace, input_path, settings, output_prefix)
        return workspace.list_artifacts(output_prefix, '.mp3')

    def _encode_sync(self, workspace: Workspace, input_path: Path, settings: EncodeSettings, output_prefix: str):
        from pydub import AudioSegment

        try:
            audio = AudioSegment.from_file(str(input_path))
        except Exception as e:
            raise ConversionError(f"pydub could not open {input_path.name}: {e}") from e

        audio = audio.set_channels(1).set_frame_rate(settings.sample_rate)
        bitrate = f"{settings.bitrate_kbps}k"

        if settings.segment_seconds:
            piece_ms = settings.segment_seconds * 1000
            pieces = [audio[start:start + piece_ms] for start in range(0, len(audio), piece_ms)]
        else:
            pieces = [audio]

        for i, piece in enumerate(pieces):
            target = workspace.path_for(f"{output_prefix}_{i:03d}.mp3")
            piece.export(str(target), format="mp3", bitrate=bitrate)

    async def probe_duration(self, path: Path, correlation_id: Optional[str] = None) -> Optional[float]:
        from pydub import AudioSegment

        try:
            audio = await asyncio.to_thread(AudioSegment.from_file, str(path))
        except Exception as e:
            logger.warning(f"[{correlation_id}] pydub could not read duration: {e}")
            return None
        return audio.duration_seconds


def default_engine() -> CodecEngine:
    """ffmpeg when available, pydub otherwise"""
    if shutil.which('ffmpeg'):
        logger.info("✅ ffmpeg available for memory-efficient audio conversion")
        return FFmpegEngine()
    logger.warning("⚠️  ffmpeg NOT found! Falling back to pydub. Install with: sudo apt-get install ffmpeg")
    return PydubEngine()
