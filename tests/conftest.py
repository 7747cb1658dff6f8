"""
Pytest fixtures for storyreel tests.

Synthetic media is generated on the fly with ffmpeg lavfi sources and Pillow,
so the suite needs no checked-in test data.

CI/CD Note:
Tests that run real ffmpeg/ffprobe are marked with @requires_ffmpeg and are
skipped when the binaries are not on PATH.
"""

import shutil
import subprocess
import tempfile
from pathlib import Path

import pytest
from PIL import Image

from storyreel.config import Settings

FFMPEG_AVAILABLE = shutil.which("ffmpeg") is not None and shutil.which("ffprobe") is not None

# Skip decorator for tests that shell out to ffmpeg
requires_ffmpeg = pytest.mark.skipif(
    not FFMPEG_AVAILABLE,
    reason="ffmpeg/ffprobe not installed",
)


def run_ffmpeg_sync(*args: str) -> None:
    subprocess.run(
        ["ffmpeg", "-y", "-hide_banner", "-loglevel", "error", *args],
        capture_output=True,
        check=True,
    )


@pytest.fixture
def temp_output_dir():
    """Temporary directory for test outputs."""
    with tempfile.TemporaryDirectory(prefix="storyreel_test_") as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def test_settings(temp_output_dir: Path) -> Settings:
    """Settings pointing every render directory into the temp dir, small frames for speed."""
    return Settings(
        render_work_dir=str(temp_output_dir / "work"),
        render_output_dir=str(temp_output_dir / "output"),
        local_media_dir=str(temp_output_dir / "output" / "ai-images"),
        render_landscape_width=320,
        render_landscape_height=180,
        render_fps=30,
        render_video_preset="ultrafast",
        fetch_timeout_s=5.0,
        job_store_backend="memory",
    )


@pytest.fixture
def make_video(temp_output_dir: Path):
    """Create a testsrc video: make_video(name, duration_s, size, fps, with_audio)."""
    def _make(
        name: str = "video.mp4",
        duration_s: float = 2.0,
        size: str = "640x360",
        fps: int = 25,
        with_audio: bool = False,
    ) -> Path:
        path = temp_output_dir / name
        args = ["-f", "lavfi", "-i", f"testsrc=duration={duration_s}:size={size}:rate={fps}"]
        if with_audio:
            args += ["-f", "lavfi", "-i", f"sine=frequency=440:duration={duration_s}"]
        args += ["-c:v", "libx264", "-preset", "ultrafast", "-pix_fmt", "yuv420p"]
        args += ["-c:a", "aac", "-shortest"] if with_audio else ["-an"]
        run_ffmpeg_sync(*args, str(path))
        return path
    return _make


@pytest.fixture
def make_tone(temp_output_dir: Path):
    """Create a sine tone audio file: make_tone(name, duration_s, frequency)."""
    def _make(name: str = "tone.wav", duration_s: float = 2.0, frequency: int = 440) -> Path:
        path = temp_output_dir / name
        run_ffmpeg_sync(
            "-f", "lavfi", "-i", f"sine=frequency={frequency}:duration={duration_s}",
            "-ar", "44100", "-ac", "2",
            str(path),
        )
        return path
    return _make


@pytest.fixture
def make_image(temp_output_dir: Path):
    """Create a solid-color still image with Pillow."""
    def _make(name: str = "image.jpg", size: tuple[int, int] = (800, 600), color: str = "red") -> Path:
        path = temp_output_dir / name
        Image.new("RGB", size, color).save(path)
        return path
    return _make
