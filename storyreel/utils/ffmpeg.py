"""Async FFmpeg process runner.

Runs ffmpeg without blocking the event loop, optionally parsing
``-progress pipe:1`` output into a 0.0-1.0 fraction, and kills the child
process if the caller is cancelled or the progress callback raises.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

# May return a coroutine, which is awaited before reading more output
ProgressCallback = Callable[[float], Any]

# Keep error messages readable; ffmpeg stderr can be very long.
STDERR_TAIL_CHARS = 800


@dataclass
class FFmpegResult:
    """Outcome of one ffmpeg invocation."""

    returncode: int
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def error_tail(self) -> str:
        text = self.stderr.strip()
        if len(text) > STDERR_TAIL_CHARS:
            return "..." + text[-STDERR_TAIL_CHARS:]
        return text or f"ffmpeg exited with code {self.returncode}"


def parse_progress_line(line: str, duration_s: float) -> Optional[float]:
    """Convert an ``out_time_us=`` progress line into a fraction of ``duration_s``."""
    if not line.startswith("out_time_us=") or duration_s <= 0:
        return None
    try:
        time_us = int(line.split("=", 1)[1])
    except ValueError:
        # ffmpeg prints N/A before the first frame is written
        return None
    return max(0.0, min(1.0, time_us / 1_000_000 / duration_s))


async def run_ffmpeg(
    cmd: list[str],
    *,
    progress_duration_s: float = 0.0,
    on_progress: Optional[ProgressCallback] = None,
) -> FFmpegResult:
    """Run an ffmpeg command to completion.

    When ``on_progress`` is given, ``-progress pipe:1`` is inserted before the
    output path (the last argument) and the callback receives the fraction of
    ``progress_duration_s`` written so far.
    """
    track_progress = on_progress is not None and progress_duration_s > 0
    if track_progress:
        cmd = [*cmd[:-1], "-progress", "pipe:1", "-nostats", cmd[-1]]

    logger.debug(f"[FFMPEG] {' '.join(cmd)}")
    proc = await asyncio.create_subprocess_exec(
        *cmd,
        stdout=asyncio.subprocess.PIPE if track_progress else asyncio.subprocess.DEVNULL,
        stderr=asyncio.subprocess.PIPE,
    )
    stderr_task = asyncio.create_task(proc.stderr.read())

    try:
        if track_progress:
            async for raw_line in proc.stdout:
                line = raw_line.decode("utf-8", errors="replace").strip()
                fraction = parse_progress_line(line, progress_duration_s)
                if fraction is None and line == "progress=end":
                    fraction = 1.0
                if fraction is not None:
                    result = on_progress(fraction)
                    if asyncio.iscoroutine(result):
                        await result
        stderr = await stderr_task
        await proc.wait()
    except BaseException as e:
        if proc.returncode is None:
            logger.warning(f"[FFMPEG] Aborted ({type(e).__name__}), killing pid {proc.pid}")
            proc.kill()
            await proc.wait()
        stderr_task.cancel()
        await asyncio.gather(stderr_task, return_exceptions=True)
        raise

    return FFmpegResult(
        returncode=proc.returncode,
        stderr=stderr.decode("utf-8", errors="replace"),
    )
