"""
Audio mixing for narrated renders using FFmpeg.

This module handles:
- Voiceover passthrough when no background music is requested
- Voiceover + background music mixing at independent gains
- Looping short music beds so they cover the whole voiceover
"""

import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from storyreel.config import Settings, get_settings
from storyreel.exceptions import MixError
from storyreel.utils.ffmpeg import run_ffmpeg

logger = logging.getLogger(__name__)


def sanitize_gain(value: float | None, default: float) -> float:
    """
    Coerce a gain into [0.0, 1.0].

    Upstream generators sometimes send percentages, so anything above 1 is
    read as 0-100 and divided by 100.
    """
    if value is None:
        return default
    try:
        gain = float(value)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(gain):
        return default
    if gain > 1:
        gain = gain / 100
    return max(0.0, min(1.0, gain))


@dataclass
class MixSettings:
    """Gains and fades for one render."""

    voice_volume: float = 1.0
    music_volume: float = 0.2
    # Accepted and carried with the job; the mix stage does not apply fades.
    fade_in_s: float = 0.0
    fade_out_s: float = 0.0

    def __post_init__(self) -> None:
        self.voice_volume = sanitize_gain(self.voice_volume, 1.0)
        self.music_volume = sanitize_gain(self.music_volume, 0.2)
        self.fade_in_s = max(0.0, self.fade_in_s)
        self.fade_out_s = max(0.0, self.fade_out_s)


class AudioMixer:
    """
    FFmpeg-based voiceover/music mixer.

    The voiceover is the reference track: the mixed output is exactly as
    long as the voiceover, whatever the music length.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.ffmpeg_path = self.settings.ffmpeg_path

    def build_filter(self, voice_gain: float, music_gain: float) -> str:
        return ";".join(
            [
                f"[0:a]volume={voice_gain:g}[voice]",
                f"[1:a]aloop=loop=-1:size=2e9,volume={music_gain:g}[music]",
                "[voice][music]amix=inputs=2:duration=first:dropout_transition=0:normalize=0[aout]",
            ]
        )

    def build_command(
        self,
        voiceover_path: str,
        music_path: str,
        output_path: str,
        voice_gain: float,
        music_gain: float,
    ) -> list[str]:
        """Build the FFmpeg mixing command without executing it."""
        return [
            self.ffmpeg_path,
            "-y",
            "-hide_banner",
            "-loglevel", "error",
            "-i", voiceover_path,
            "-i", music_path,
            "-filter_complex", self.build_filter(voice_gain, music_gain),
            "-map", "[aout]",
            "-c:a", "aac",
            "-b:a", self.settings.render_audio_bitrate,
            output_path,
        ]

    async def mix(
        self,
        voiceover_path: str | Path,
        music_path: str | Path | None,
        output_path: str | Path,
        voice_gain: float = 1.0,
        music_gain: float = 0.2,
    ) -> Path:
        """
        Produce the final audio track.

        Args:
            voiceover_path: Narration audio
            music_path: Background music, or None for voiceover only
            output_path: Mixed AAC output path (unused without music)
            voice_gain: Linear voiceover gain
            music_gain: Linear music gain

        Returns:
            The voiceover path itself when there is no music, else ``output_path``

        Raises:
            MixError: If ffmpeg fails
        """
        if music_path is None:
            logger.info("[MIX] No background music, using voiceover as-is")
            return Path(voiceover_path)

        voice_gain = sanitize_gain(voice_gain, 1.0)
        music_gain = sanitize_gain(music_gain, 0.2)
        logger.info(f"[MIX] Mixing voiceover ({voice_gain:g}) with music ({music_gain:g})")

        cmd = self.build_command(
            str(voiceover_path), str(music_path), str(output_path), voice_gain, music_gain
        )
        result = await run_ffmpeg(cmd)
        if not result.ok:
            Path(output_path).unlink(missing_ok=True)
            raise MixError(f"Failed to mix audio: {result.error_tail}")
        return Path(output_path)
