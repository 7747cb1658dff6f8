"""Media file information utilities using FFprobe."""

import asyncio
import json
import subprocess
from dataclasses import dataclass
from fractions import Fraction

from storyreel.config import get_settings
from storyreel.exceptions import ProbeError


@dataclass
class MediaInfo:
    """Media file information."""

    duration_s: float | None = None
    width: int | None = None
    height: int | None = None
    fps: float | None = None
    video_codec: str | None = None
    audio_codec: str | None = None
    has_video: bool = False
    has_audio: bool = False


def _run_ffprobe(file_path: str) -> dict:
    """Run ffprobe and return parsed JSON for format and streams."""
    settings = get_settings()
    cmd = [
        settings.ffprobe_path,
        "-v", "quiet",
        "-print_format", "json",
        "-show_format",
        "-show_streams",
        str(file_path),
    ]

    result = subprocess.run(cmd, capture_output=True, text=True)
    if result.returncode != 0:
        raise ProbeError(f"ffprobe failed for {file_path}: {result.stderr.strip()}")

    try:
        return json.loads(result.stdout)
    except json.JSONDecodeError as e:
        raise ProbeError(f"Failed to parse ffprobe output: {e}")


def _parse_rate(rate: str | None) -> float | None:
    if not rate or rate in ("0/0", "N/A"):
        return None
    try:
        return float(Fraction(rate))
    except (ValueError, ZeroDivisionError):
        return None


def get_media_info(file_path: str) -> MediaInfo:
    """
    Probe a media file.

    Args:
        file_path: Path to media file

    Returns:
        MediaInfo for the first video and first audio stream

    Raises:
        ProbeError: If ffprobe fails
    """
    data = _run_ffprobe(file_path)
    info = MediaInfo()

    duration = data.get("format", {}).get("duration")
    if duration not in (None, "N/A"):
        info.duration_s = float(duration)

    for stream in data.get("streams", []):
        codec_type = stream.get("codec_type")
        if codec_type == "video" and not info.has_video:
            info.has_video = True
            info.width = stream.get("width")
            info.height = stream.get("height")
            info.fps = _parse_rate(stream.get("avg_frame_rate")) or _parse_rate(stream.get("r_frame_rate"))
            info.video_codec = stream.get("codec_name")
        elif codec_type == "audio" and not info.has_audio:
            info.has_audio = True
            info.audio_codec = stream.get("codec_name")

    return info


def get_media_duration(file_path: str) -> float:
    """
    Get media file duration in seconds.

    Raises:
        ProbeError: If ffprobe fails or the duration is missing or not positive
    """
    info = get_media_info(file_path)
    if not info.duration_s or info.duration_s <= 0:
        raise ProbeError(f"Could not determine duration for {file_path}")
    return info.duration_s


async def probe_duration(file_path: str) -> float:
    """``get_media_duration`` without blocking the event loop."""
    return await asyncio.to_thread(get_media_duration, str(file_path))


async def probe_media(file_path: str) -> MediaInfo:
    """``get_media_info`` without blocking the event loop."""
    return await asyncio.to_thread(get_media_info, str(file_path))
