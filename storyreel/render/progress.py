"""Render stages and the progress bands they own on the 0-100 scale."""

import asyncio
from enum import Enum
from typing import Any, Callable, Optional


class RenderStage(Enum):
    """Pipeline stages in execution order."""

    QUEUED = "queued"
    PREPARING = "preparing"
    DOWNLOADING = "downloading"
    NORMALIZING = "normalizing"
    COMPOSITING = "compositing"
    MIXING = "mixing"
    MUXING = "muxing"
    COMPLETED = "completed"

    @property
    def label(self) -> str:
        return STAGE_LABELS[self]


# (start, end) percentage owned by each stage
STAGE_BANDS: dict[RenderStage, tuple[int, int]] = {
    RenderStage.QUEUED: (0, 0),
    RenderStage.PREPARING: (5, 5),
    RenderStage.DOWNLOADING: (5, 15),
    RenderStage.NORMALIZING: (15, 40),
    RenderStage.COMPOSITING: (40, 60),
    RenderStage.MIXING: (60, 75),
    RenderStage.MUXING: (75, 99),
    RenderStage.COMPLETED: (100, 100),
}

STAGE_LABELS: dict[RenderStage, str] = {
    RenderStage.QUEUED: "Queued",
    RenderStage.PREPARING: "Preparing render",
    RenderStage.DOWNLOADING: "Downloading media",
    RenderStage.NORMALIZING: "Normalizing clips",
    RenderStage.COMPOSITING: "Compositing video",
    RenderStage.MIXING: "Mixing audio",
    RenderStage.MUXING: "Encoding final video",
    RenderStage.COMPLETED: "Complete",
}

_STAGE_ORDER = list(RenderStage)


def stage_progress(stage: RenderStage, fraction: float = 0.0) -> int:
    """Map a fraction of ``stage`` onto the overall scale."""
    start, end = STAGE_BANDS[stage]
    fraction = max(0.0, min(1.0, fraction))
    return int(start + (end - start) * fraction)


class ProgressTracker:
    """
    Monotonic progress reporter.

    Emits ``(percent, stage)`` only when the percentage strictly increases and
    the stage is not earlier than the last one reported.
    """

    def __init__(self, emit: Optional[Callable[[int, RenderStage], Any]] = None):
        self._emit = emit
        self.percent = 0
        self.stage = RenderStage.QUEUED
        self.history: list[int] = [0]

    async def report(self, stage: RenderStage, fraction: float = 0.0) -> bool:
        """Report progress within ``stage``; returns True if a new value was emitted."""
        if _STAGE_ORDER.index(stage) < _STAGE_ORDER.index(self.stage):
            return False
        self.stage = stage
        percent = stage_progress(stage, fraction)
        if percent <= self.percent:
            return False
        self.percent = percent
        self.history.append(percent)
        if self._emit:
            result = self._emit(percent, stage)
            if asyncio.iscoroutine(result):
                await result
        return True

    async def complete(self, stage: RenderStage) -> bool:
        """Mark ``stage`` finished (top of its band)."""
        return await self.report(stage, 1.0)
