"""
Clip normalization.

Turns one downloaded image or video into a silent, constant-framerate,
constant-resolution H.264 segment of an exact duration. Every clip a job
produces shares the same frame size, frame rate, pixel format and GOP, which
is what lets the compositor join them with stream copy.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Literal, Optional

from storyreel.config import Settings, get_settings
from storyreel.exceptions import NormalizeError
from storyreel.utils.ffmpeg import run_ffmpeg

logger = logging.getLogger(__name__)

MediaType = Literal["image", "video"]
FitMode = Literal["fit", "crop"]
AspectRatio = Literal["16:9", "9:16"]


@dataclass(frozen=True)
class FrameSpec:
    """Canonical output frame for every clip of a job."""

    width: int = 1920
    height: int = 1080
    fps: int = 30
    fit_mode: FitMode = "fit"

    @classmethod
    def for_aspect_ratio(
        cls,
        aspect_ratio: AspectRatio = "16:9",
        fit_mode: FitMode = "fit",
        settings: Optional[Settings] = None,
    ) -> "FrameSpec":
        settings = settings or get_settings()
        long_side = settings.render_landscape_width
        short_side = settings.render_landscape_height
        if aspect_ratio == "9:16":
            return cls(short_side, long_side, settings.render_fps, fit_mode)
        return cls(long_side, short_side, settings.render_fps, fit_mode)

    @property
    def size(self) -> str:
        return f"{self.width}x{self.height}"


def build_scale_filter(frame: FrameSpec) -> str:
    """Scale into the canonical frame: letterbox/pillarbox for fit, center crop for crop."""
    w, h = frame.width, frame.height
    if frame.fit_mode == "crop":
        return f"scale={w}:{h}:force_original_aspect_ratio=increase,crop={w}:{h},setsar=1"
    return (
        f"scale={w}:{h}:force_original_aspect_ratio=decrease,"
        f"pad={w}:{h}:(ow-iw)/2:(oh-ih)/2,setsar=1"
    )


def build_keyframe_filter(effect: str | None, frame: FrameSpec, duration_s: float) -> str:
    """Build a zoompan motion filter for a still image, or "" for no motion."""
    if not effect or effect == "none":
        return ""

    fps = frame.fps
    total = max(1, int(duration_s * fps))
    common = f"d={total}:s={frame.size}:fps={fps}"
    center = "x='iw/2-(iw/zoom/2)':y='ih/2-(ih/zoom/2)'"

    if effect == "zoomin":
        return f"zoompan=z='min(zoom+0.0015,1.5)':{center}:{common}"
    if effect == "zoomout":
        return f"zoompan=z='if(lte(zoom,1.0),1.5,max(1.001,zoom-0.0015))':{center}:{common}"
    if effect == "panleft":
        return f"zoompan=z='1.2':x='iw-iw/zoom-((iw-iw/zoom)/{total})*on':y='0':{common}"
    if effect == "panright":
        return f"zoompan=z='1.2':x='((iw-iw/zoom)/{total})*on':y='0':{common}"
    if effect == "panup":
        return f"zoompan=z='1.2':x='0':y='ih-ih/zoom-((ih-ih/zoom)/{total})*on':{common}"
    if effect == "pandown":
        return f"zoompan=z='1.2':x='0':y='((ih-ih/zoom)/{total})*on':{common}"
    if effect == "kenburns":
        return (
            "zoompan=z='min(zoom+0.001,1.3)'"
            f":x='if(gte(zoom,1.15),iw-iw/zoom-((iw-iw/zoom)/{total})*on,iw/2-(iw/zoom/2))'"
            ":y='if(gte(zoom,1.15),0,ih/2-(ih/zoom/2))'"
            f":{common}"
        )

    logger.info(f"[NORMALIZE] Unsupported keyframe effect '{effect}', rendering without motion")
    return ""


class ClipNormalizer:
    """Normalize heterogeneous media into uniform silent clips."""

    def __init__(self, frame: Optional[FrameSpec] = None, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.frame = frame or FrameSpec.for_aspect_ratio(settings=self.settings)
        self.ffmpeg_path = self.settings.ffmpeg_path
        self.min_duration_s = self.settings.media_min_duration_s

    def clamp_duration(self, duration_s: float) -> float:
        return max(duration_s, self.min_duration_s)

    def build_command(
        self,
        input_path: str,
        output_path: str,
        media_type: MediaType,
        duration_s: float,
        keyframe_effect: str | None = None,
    ) -> list[str]:
        """Build the FFmpeg normalize command without executing it."""
        duration = f"{self.clamp_duration(duration_s):.3f}"
        fps = self.frame.fps
        filters = [build_scale_filter(self.frame)]

        if media_type == "image":
            motion = build_keyframe_filter(keyframe_effect, self.frame, float(duration))
            if motion:
                # zoompan generates every output frame from the single still
                input_args = ["-i", input_path]
                filters.append(motion)
            else:
                input_args = ["-loop", "1", "-framerate", str(fps), "-t", duration, "-i", input_path]
        else:
            if keyframe_effect and keyframe_effect != "none":
                logger.info("[NORMALIZE] Keyframe effects apply to images only, ignoring for video")
            input_args = ["-t", duration, "-i", input_path]

        filters.append(f"fps={fps}")
        filters.append("format=yuv420p")

        return [
            self.ffmpeg_path,
            "-y",
            "-hide_banner",
            "-loglevel", "error",
            *input_args,
            "-map", "0:v:0",
            "-vf", ",".join(filters),
            "-c:v", "libx264",
            "-preset", self.settings.render_video_preset,
            "-crf", str(self.settings.render_video_crf),
            "-pix_fmt", "yuv420p",
            "-r", str(fps),
            "-g", str(self.settings.render_gop_size),
            "-keyint_min", str(self.settings.render_gop_size),
            "-an",
            "-t", duration,
            output_path,
        ]

    async def normalize(
        self,
        input_path: str | Path,
        output_path: str | Path,
        media_type: MediaType,
        duration_s: float,
        index: int = 0,
        keyframe_effect: str | None = None,
    ) -> Path:
        """
        Normalize one media item into a clip of exactly ``duration_s`` seconds.

        Args:
            input_path: Downloaded image or video
            output_path: Clip path (.mp4)
            media_type: "image" or "video"
            duration_s: Target duration, floored at the minimum clip length
            index: Media item index, reported on failure
            keyframe_effect: Optional motion effect for stills

        Raises:
            NormalizeError: If ffmpeg cannot decode or encode the input
        """
        duration = self.clamp_duration(duration_s)
        cmd = self.build_command(str(input_path), str(output_path), media_type, duration, keyframe_effect)

        logger.info(
            f"[NORMALIZE] Item {index} ({media_type}) -> {duration:.2f}s "
            f"at {self.frame.size}@{self.frame.fps} ({self.frame.fit_mode})"
        )
        result = await run_ffmpeg(cmd)
        if not result.ok:
            Path(output_path).unlink(missing_ok=True)
            raise NormalizeError(index, media_type, result.error_tail)
        return Path(output_path)
