"""In-process stand-ins for the ffmpeg-backed render components."""

import asyncio
from pathlib import Path
from typing import Any

from storyreel.exceptions import NormalizeError
from storyreel.services.job_store import InMemoryJobStore


class RecordingStore(InMemoryJobStore):
    """In-memory store that remembers every progress value it accepted."""

    def __init__(self):
        super().__init__()
        self.progress_log: list[int] = []

    async def update(self, job_id: str, **fields: Any):
        record = await super().update(job_id, **fields)
        self.progress_log.append(record.progress)
        return record


class FakeFetcher:
    local_prefix = "/output/ai-images/"

    def __init__(self, failures: dict[str, BaseException] | None = None, delay_s: float = 0.0):
        self.failures = failures or {}
        self.delay_s = delay_s
        self.fetched: list[str] = []
        self.cancelled: list[str] = []

    async def fetch(self, url: str, destination: Path) -> Path:
        try:
            if url in self.failures:
                raise self.failures[url]
            await asyncio.sleep(self.delay_s)
        except asyncio.CancelledError:
            self.cancelled.append(url)
            raise
        Path(destination).write_bytes(b"data")
        self.fetched.append(url)
        return Path(destination)


class FakeNormalizer:
    def __init__(self, calls: list, fail_index: int | None = None, hang: bool = False):
        self.calls = calls
        self.fail_index = fail_index
        self.hang = hang

    async def normalize(self, input_path, output_path, media_type, duration_s, index=0, keyframe_effect=None):
        self.calls.append((index, media_type, round(duration_s, 2), keyframe_effect))
        if self.hang:
            await asyncio.sleep(30)
        if index == self.fail_index:
            raise NormalizeError(index, media_type, "Invalid data found when processing input")
        Path(output_path).write_bytes(b"clip")
        return Path(output_path)


class FakeCompositor:
    def __init__(self):
        self.clips: list[Path] = []

    async def verify_uniform(self, clips):
        return None

    async def concatenate(self, clips, output_path, manifest_path=None):
        self.clips = list(clips)
        Path(output_path).write_bytes(b"video")
        return Path(output_path)


class FakeMixer:
    def __init__(self):
        self.calls: list[tuple] = []

    async def mix(self, voiceover_path, music_path, output_path, voice_gain=1.0, music_gain=0.2):
        self.calls.append((music_path, voice_gain, music_gain))
        if music_path is None:
            return Path(voiceover_path)
        Path(output_path).write_bytes(b"audio")
        return Path(output_path)


class FakeMuxer:
    async def mux(self, video_path, audio_path, output_path, progress_callback=None):
        for fraction in (0.25, 0.5, 0.75, 1.0):
            result = progress_callback(fraction)
            if asyncio.iscoroutine(result):
                await result
        Path(output_path).write_bytes(b"mp4")
        return Path(output_path)

