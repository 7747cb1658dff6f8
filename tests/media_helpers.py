"""Probe and PCM helpers shared by the ffmpeg-backed tests."""

import subprocess
from pathlib import Path

import numpy as np

from storyreel.utils.media_info import get_media_info

SAMPLE_RATE = 44100


def decode_pcm(path: Path) -> np.ndarray:
    """Decode the first audio stream to mono float samples in [-1, 1]."""
    result = subprocess.run(
        [
            "ffmpeg", "-hide_banner", "-loglevel", "error",
            "-i", str(path),
            "-vn", "-ac", "1", "-ar", str(SAMPLE_RATE),
            "-f", "s16le", "-acodec", "pcm_s16le", "-",
        ],
        capture_output=True,
        check=True,
    )
    return np.frombuffer(result.stdout, dtype=np.int16).astype(np.float64) / 32768.0


def rms(samples: np.ndarray) -> float:
    return float(np.sqrt(np.mean(np.square(samples)))) if samples.size else 0.0


def count_frames(path: Path) -> int:
    result = subprocess.run(
        [
            "ffprobe", "-v", "error",
            "-select_streams", "v:0",
            "-count_packets",
            "-show_entries", "stream=nb_read_packets",
            "-of", "csv=p=0",
            str(path),
        ],
        capture_output=True,
        text=True,
        check=True,
    )
    return int(result.stdout.strip().rstrip(","))


def probe(path: Path):
    return get_media_info(str(path))
