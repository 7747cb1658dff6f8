"""Final mux: composite video + mixed audio into the deliverable MP4."""

import logging
from pathlib import Path
from typing import Any, Callable, Optional

from storyreel.config import Settings, get_settings
from storyreel.exceptions import MuxError, ProbeError
from storyreel.utils.ffmpeg import run_ffmpeg
from storyreel.utils.media_info import probe_duration

logger = logging.getLogger(__name__)


class Muxer:
    """Copy the video stream, re-encode audio to AAC, stop at the shorter input."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.ffmpeg_path = self.settings.ffmpeg_path

    def build_command(self, video_path: str, audio_path: str, output_path: str) -> list[str]:
        """Build the FFmpeg mux command without executing it."""
        return [
            self.ffmpeg_path,
            "-y",
            "-hide_banner",
            "-loglevel", "error",
            "-i", video_path,
            "-i", audio_path,
            "-map", "0:v:0",
            "-map", "1:a:0",
            "-c:v", "copy",
            "-c:a", "aac",
            "-b:a", self.settings.render_audio_bitrate,
            "-shortest",
            "-movflags", "+faststart",
            "-f", "mp4",
            output_path,
        ]

    async def expected_duration(self, video_path: str | Path, audio_path: str | Path) -> float:
        """Output length: the shorter of the two inputs."""
        try:
            video_s = await probe_duration(str(video_path))
            audio_s = await probe_duration(str(audio_path))
        except ProbeError as e:
            raise MuxError(f"Cannot read mux inputs: {e.message}")
        return min(video_s, audio_s)

    async def mux(
        self,
        video_path: str | Path,
        audio_path: str | Path,
        output_path: str | Path,
        progress_callback: Optional[Callable[[float], Any]] = None,
    ) -> Path:
        """
        Combine video and audio into ``output_path``.

        Args:
            video_path: Silent composite video
            audio_path: Final audio track
            output_path: MP4 to write
            progress_callback: Receives the written fraction (0.0-1.0) while encoding

        Raises:
            MuxError: If the inputs cannot be probed or ffmpeg fails
        """
        duration_s = await self.expected_duration(video_path, audio_path)
        logger.info(f"[MUX] Combining video and audio, expected length {duration_s:.2f}s")

        cmd = self.build_command(str(video_path), str(audio_path), str(output_path))
        result = await run_ffmpeg(
            cmd,
            progress_duration_s=duration_s,
            on_progress=progress_callback,
        )
        if not result.ok:
            Path(output_path).unlink(missing_ok=True)
            raise MuxError(f"Failed to combine video and audio: {result.error_tail}")
        return Path(output_path)
