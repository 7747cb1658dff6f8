"""Timeline offset helpers for media items.

Offsets arrive as ``HH:MM:SS`` or ``MM:SS`` strings (seconds may be
fractional) or as plain seconds.
"""

import logging
import math
from dataclasses import replace
from typing import Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

MINIMUM_RETIMED_DURATION_S = 0.1


def parse_time(value: str) -> float:
    """Parse a timeline offset into seconds.

    Returns ``nan`` for unparseable input so callers can apply their
    fallback policy instead of failing.
    """
    text = str(value).strip()
    parts = text.split(":")
    try:
        if len(parts) == 3:
            hours, minutes, seconds = (float(p) for p in parts)
            return hours * 3600 + minutes * 60 + seconds
        if len(parts) == 2:
            minutes, seconds = (float(p) for p in parts)
            return minutes * 60 + seconds
        return float(text)
    except ValueError:
        return math.nan


def format_time(seconds: float) -> str:
    """Format seconds as ``MM:SS.ss``."""
    minutes = int(seconds // 60)
    secs = seconds - minutes * 60
    return f"{minutes:02d}:{secs:05.2f}"


def clip_duration(
    start_time: str,
    end_time: str,
    fallback_s: float = 3.0,
) -> float:
    """Duration between two offsets, or ``fallback_s`` if it is not positive and finite."""
    duration = parse_time(end_time) - parse_time(start_time)
    if not math.isfinite(duration) or duration <= 0:
        return fallback_s
    return duration


def retime_items(items: Sequence[T], audio_duration_s: float) -> list[T]:
    """Stretch item offsets proportionally so the timeline spans ``audio_duration_s``.

    Items must be dataclass-like objects with ``start_time``/``end_time``
    string fields (pydantic models work through ``model_copy``). The last
    item absorbs rounding so the timeline ends exactly on the audio length.
    """
    if not items:
        return list(items)
    if audio_duration_s <= 0:
        logger.warning(f"[TIMECODE] Invalid audio duration for retiming: {audio_duration_s}")
        return list(items)

    durations = [
        parse_time(item.end_time) - parse_time(item.start_time)  # type: ignore[attr-defined]
        for item in items
    ]
    durations = [d if math.isfinite(d) else 0.0 for d in durations]
    total = sum(durations)

    results: list[T] = []
    if total <= 0:
        per_item = audio_duration_s / len(items)
        for i, item in enumerate(items):
            end = audio_duration_s if i == len(items) - 1 else (i + 1) * per_item
            results.append(_with_times(item, format_time(i * per_item), format_time(end)))
        return results

    scale = audio_duration_s / total
    current = 0.0
    for i, (item, duration) in enumerate(zip(items, durations)):
        is_last = i == len(items) - 1
        new_duration = max(MINIMUM_RETIMED_DURATION_S, duration * scale)
        if is_last:
            new_duration = max(MINIMUM_RETIMED_DURATION_S, audio_duration_s - current)
        end = audio_duration_s if is_last else current + new_duration
        results.append(_with_times(item, format_time(current), format_time(end)))
        current += new_duration
    return results


def _with_times(item: T, start_time: str, end_time: str) -> T:
    if hasattr(item, "model_copy"):
        return item.model_copy(update={"start_time": start_time, "end_time": end_time})  # type: ignore[attr-defined]
    return replace(item, start_time=start_time, end_time=end_time)  # type: ignore[type-var]
