"""Convert uploads into compact mono mp3"""

from typing import Optional

from ..errors import ConversionError
from ..models import NormalizedAudio, SourceMedia
from ..utils.helpers import format_bytes, new_correlation_id
from ..utils.logging import get_logger
from .engine import CodecEngine, Workspace
from .frames import scan_frames
from .tiers import TierPolicy

logger = get_logger(__name__)


class FormatNormalizer:
    """Normalize a SourceMedia with an injected codec engine"""

    def __init__(self, engine: CodecEngine, policy: Optional[TierPolicy] = None,
                 correlation_id: Optional[str] = None):
        self.engine = engine
        self.policy = policy or TierPolicy()
        self.correlation_id = correlation_id or new_correlation_id()

    def should_passthrough(self, source: SourceMedia) -> bool:
        return source.extension == 'mp3' and source.size < self.policy.passthrough_threshold

    async def normalize(self, source: SourceMedia) -> NormalizedAudio:
        """Produce mono mp3 for ``source``

        Raises:
            ConversionError: the engine failed or produced no audio
        """
        cid = self.correlation_id
        tier = self.policy.tier_for(source.size)

        if self.should_passthrough(source):
            logger.info(f"[{cid}] ⏭️  {source.file_name} is a small mp3 ({format_bytes(source.size)}), skipping conversion")
            return await self._passthrough(source)

        settings = self.policy.encoding_for(source.size)
        logger.info(f"[{cid}] Normalizing {source.file_name} ({format_bytes(source.size)}, {tier.value} tier)")

        async with self.engine.workspace(cid) as workspace:
            input_path = await workspace.write(f"input.{source.extension or 'bin'}", source.data)
            artifacts = await self.engine.encode(workspace, input_path, settings, "output", cid)
            if not artifacts:
                raise ConversionError(f"{self.engine.name} produced no output for {source.file_name}")

            pieces = [await workspace.read(path) for path in artifacts]
            data = b''.join(pieces)
            if not data:
                raise ConversionError(f"{self.engine.name} produced zero bytes for {source.file_name}")

            duration = await self._duration(data, settings.bitrate_kbps, workspace)

        logger.info(f"[{cid}] ✅ Normalized to {format_bytes(len(data))} from {len(artifacts)} piece(s), "
                    f"{duration / 60:.1f} min")
        return NormalizedAudio(
            data=data,
            sample_rate=settings.sample_rate,
            bitrate_kbps=settings.bitrate_kbps,
            duration_seconds=duration,
            source_size=source.size,
        )

    async def _passthrough(self, source: SourceMedia) -> NormalizedAudio:
        scan = scan_frames(source.data)
        if scan is not None:
            return NormalizedAudio(
                data=source.data,
                sample_rate=scan.sample_rate,
                bitrate_kbps=round(scan.bitrate_kbps),
                duration_seconds=scan.duration,
                source_size=source.size,
                passthrough=True,
            )

        async with self.engine.workspace(self.correlation_id) as workspace:
            path = await workspace.write("input.mp3", source.data)
            duration = await self.engine.probe_duration(path, self.correlation_id)
        if not duration:
            raise ConversionError(f"{source.file_name} does not contain readable mp3 audio")

        return NormalizedAudio(
            data=source.data,
            sample_rate=0,
            bitrate_kbps=round(source.size * 8 / duration / 1000),
            duration_seconds=duration,
            source_size=source.size,
            passthrough=True,
        )

    async def _duration(self, data: bytes, bitrate_kbps: int, workspace: Workspace) -> float:
        """Frame-accurate duration, falling back to the engine probe and then to size/bitrate"""
        scan = scan_frames(data)
        if scan is not None:
            return scan.duration

        path = await workspace.write("combined.mp3", data)
        duration = await self.engine.probe_duration(path, self.correlation_id)
        if duration:
            return duration

        estimated = len(data) * 8 / (bitrate_kbps * 1000)
        logger.warning(f"[{self.correlation_id}] Duration estimated from size: {estimated / 60:.1f} min")
        return estimated
