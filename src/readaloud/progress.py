"""
Progress and time estimation over paragraph text.

True audio duration is unknown until a paragraph is rendered, so time is
estimated from character counts: about 15 characters per second at 1.0x.
"""

from __future__ import annotations

from typing import Sequence

CHARS_PER_SECOND = 15.0


def progress(current_index: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return current_index / total


def percentage_string(current_index: int, total: int) -> str:
    return f"{progress(current_index, total) * 100:.1f}%"


def char_count(paragraphs: Sequence[str], start: int = 0, stop: int | None = None) -> int:
    return sum(len(paragraph) for paragraph in paragraphs[start:stop])


def _seconds(chars: int, rate: float, chars_per_second: float) -> float:
    if rate <= 0 or chars_per_second <= 0:
        return 0.0
    return chars / chars_per_second / rate


def elapsed_seconds(
    paragraphs: Sequence[str],
    current_index: int,
    rate: float = 1.0,
    chars_per_second: float = CHARS_PER_SECOND,
) -> float:
    return _seconds(char_count(paragraphs, 0, current_index), rate, chars_per_second)


def remaining_seconds(
    paragraphs: Sequence[str],
    current_index: int,
    rate: float = 1.0,
    chars_per_second: float = CHARS_PER_SECOND,
) -> float:
    return _seconds(char_count(paragraphs, current_index), rate, chars_per_second)


def total_seconds(
    paragraphs: Sequence[str],
    rate: float = 1.0,
    chars_per_second: float = CHARS_PER_SECOND,
) -> float:
    return _seconds(char_count(paragraphs), rate, chars_per_second)


def format_duration(seconds: float) -> str:
    """Abbreviated hours and minutes: "1h 12m", "2h", "45m", "0m"."""
    minutes_total = int(max(0.0, seconds) // 60)
    hours, minutes = divmod(minutes_total, 60)
    if hours and minutes:
        return f"{hours}h {minutes}m"
    if hours:
        return f"{hours}h"
    return f"{minutes}m"
