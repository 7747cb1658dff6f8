"""Timeline compositing: join normalized clips into one silent video track."""

import logging
from pathlib import Path
from typing import Optional, Sequence

from storyreel.config import Settings, get_settings
from storyreel.exceptions import ConcatError, NoMediaError, ProbeError
from storyreel.utils.ffmpeg import run_ffmpeg
from storyreel.utils.media_info import MediaInfo, probe_media

logger = logging.getLogger(__name__)

# Frame rates are compared with a small tolerance; ffprobe reports 30 as 30/1
# but rounding in avg_frame_rate can drift on short clips.
FPS_TOLERANCE = 0.01


def write_concat_manifest(clips: Sequence[str | Path], manifest_path: str | Path) -> Path:
    """Write an FFmpeg concat demuxer list, one quoted absolute path per line."""
    manifest_path = Path(manifest_path)
    lines = []
    for clip in clips:
        # FFmpeg concat requires escaped single quotes
        escaped = str(Path(clip).resolve()).replace("'", "'\\''")
        lines.append(f"file '{escaped}'")
    manifest_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return manifest_path


class TimelineCompositor:
    """Concatenate uniform clips in order, without re-encoding."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.ffmpeg_path = self.settings.ffmpeg_path

    def build_command(self, manifest_path: str, output_path: str) -> list[str]:
        return [
            self.ffmpeg_path,
            "-y",
            "-hide_banner",
            "-loglevel", "error",
            "-f", "concat",
            "-safe", "0",
            "-i", manifest_path,
            "-c", "copy",
            "-an",
            "-movflags", "+faststart",
            output_path,
        ]

    async def verify_uniform(self, clips: Sequence[str | Path]) -> MediaInfo:
        """
        Check that every clip shares one frame size and frame rate and has no audio.

        Returns:
            MediaInfo of the first clip

        Raises:
            ConcatError: If any clip differs from the first
        """
        reference: MediaInfo | None = None
        for index, clip in enumerate(clips):
            try:
                info = await probe_media(str(clip))
            except ProbeError as e:
                raise ConcatError(f"Clip {index} is unreadable: {e.message}")
            if not info.has_video:
                raise ConcatError(f"Clip {index} has no video stream")
            if info.has_audio:
                raise ConcatError(f"Clip {index} carries an audio stream")
            if reference is None:
                reference = info
                continue
            if (info.width, info.height) != (reference.width, reference.height):
                raise ConcatError(
                    f"Clip {index} is {info.width}x{info.height}, "
                    f"expected {reference.width}x{reference.height}"
                )
            if (
                info.fps is not None
                and reference.fps is not None
                and abs(info.fps - reference.fps) > FPS_TOLERANCE
            ):
                raise ConcatError(f"Clip {index} runs at {info.fps:g} fps, expected {reference.fps:g}")
        if reference is None:
            raise NoMediaError()
        return reference

    async def concatenate(
        self,
        clips: Sequence[str | Path],
        output_path: str | Path,
        manifest_path: str | Path | None = None,
    ) -> Path:
        """
        Join ``clips`` in the given order into ``output_path``.

        Args:
            clips: Normalized clip paths, in timeline order
            output_path: Silent composite video path
            manifest_path: Where to write the concat list (defaults next to the output)

        Raises:
            NoMediaError: If ``clips`` is empty
            ConcatError: If ffmpeg fails
        """
        if not clips:
            raise NoMediaError()

        output_path = Path(output_path)
        manifest_path = Path(manifest_path) if manifest_path else output_path.with_name("concat_list.txt")
        write_concat_manifest(clips, manifest_path)

        logger.info(f"[CONCAT] Joining {len(clips)} clips into {output_path.name}")
        result = await run_ffmpeg(self.build_command(str(manifest_path), str(output_path)))
        if not result.ok:
            output_path.unlink(missing_ok=True)
            raise ConcatError(f"Failed to concatenate media: {result.error_tail}")
        return output_path
