"""Typing metrics: WPM, accuracy and inter-keystroke latency statistics.

Standard word length is 5 characters, so
``wpm = (correct_chars / 5) / minutes``. Every rounding in this module is
half-up (2.5 -> 3), which keeps integer results identical to what a user sees
on screen; Python's built-in ``round`` uses banker's rounding and is not used.

The session-level entry point is :func:`calculate_typing_stats`, a pure
function of the counted keystroke log and the elapsed time.
"""

from __future__ import annotations

import math
import statistics
from typing import Iterable, List, Sequence

from pydantic import BaseModel, Field

from models.keystroke_event import KeystrokeEvent

CHARS_PER_WORD = 5
MS_PER_MINUTE = 60000


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from negative infinity."""
    return int(math.floor(value + 0.5))


def ms_to_minutes(ms: float) -> float:
    return ms / MS_PER_MINUTE


def calculate_wpm(chars: int, duration_ms: float) -> int:
    """Calculate words per minute for ``chars`` characters typed over ``duration_ms``.

    Returns 0 for a non-positive duration (clock skew, not started) or a
    negative character count instead of dividing by zero.

    Example:
        >>> calculate_wpm(50, 60000)
        10
    """
    if duration_ms <= 0 or chars < 0:
        return 0
    words = chars / CHARS_PER_WORD
    return round_half_up(words / ms_to_minutes(duration_ms))


def calculate_raw_wpm(total_keystrokes: int, duration_ms: float) -> int:
    """Raw WPM counts every keystroke, correct or not."""
    return calculate_wpm(total_keystrokes, duration_ms)


def calculate_net_wpm(total_chars: int, errors: int, duration_ms: float) -> int:
    """Net WPM penalizes each uncorrected error by one word.

    ``net = ((total_chars / 5) - errors) / minutes``, floored at 0.
    """
    if duration_ms <= 0 or total_chars < 0:
        return 0
    net_words = total_chars / CHARS_PER_WORD - errors
    return max(0, round_half_up(net_words / ms_to_minutes(duration_ms)))


def calculate_accuracy(correct: int, total: int) -> int:
    """Percentage of keystrokes that matched, 100 when nothing was typed."""
    if total == 0:
        return 100
    if correct < 0 or total < 0:
        return 0
    return round_half_up(correct * 100 / total)


def wpm_to_chars_per_second(wpm: float) -> float:
    return wpm * CHARS_PER_WORD / 60


def chars_per_second_to_wpm(cps: float) -> int:
    return round_half_up(cps * 60 / CHARS_PER_WORD)


def format_duration(duration_ms: float) -> str:
    """Format a duration as ``m:ss`` with second-level granularity."""
    total_seconds = max(0, int(duration_ms // 1000))
    minutes, seconds = divmod(total_seconds, 60)
    return f"{minutes}:{seconds:02d}"


class LatencyStats(BaseModel):
    """Inter-keystroke latency distribution in milliseconds."""

    avg_latency_ms: int = Field(default=0, ge=0)
    min_latency_ms: int = Field(default=0, ge=0)
    max_latency_ms: int = Field(default=0, ge=0)
    std_dev_latency_ms: int = Field(default=0, ge=0)
    p50_latency_ms: int = Field(default=0, ge=0)
    p95_latency_ms: int = Field(default=0, ge=0)

    model_config = {"frozen": True}


class TypingStats(BaseModel):
    """Session metrics derived from the counted keystroke log; never stored on its own."""

    wpm: int = Field(default=0, ge=0)
    raw_wpm: int = Field(default=0, ge=0)
    accuracy: int = Field(default=100, ge=0, le=100)
    keystrokes: int = Field(default=0, ge=0)
    errors: int = Field(default=0, ge=0)
    duration_ms: int = Field(default=0, ge=0)
    latency: LatencyStats = Field(default_factory=LatencyStats)

    model_config = {"frozen": True}

    @property
    def duration_seconds(self) -> int:
        """Whole seconds elapsed, for display."""
        return self.duration_ms // 1000

    @property
    def display_duration(self) -> str:
        return format_duration(self.duration_ms)


def nearest_rank(sorted_values: Sequence[int], fraction: float) -> int:
    """Pick the value at ``floor(n * fraction)`` of an ascending sequence.

    No interpolation, so tiny samples give deterministic results; the index is
    clamped to the last element.
    """
    index = min(int(math.floor(len(sorted_values) * fraction)), len(sorted_values) - 1)
    return sorted_values[index]


def calculate_latency_stats(latencies: Iterable[int]) -> LatencyStats:
    """Summarize inter-keystroke latencies.

    The first keystroke of a session has no predecessor and is recorded with a
    latency of 0; that leading zero is excluded. Standard deviation uses the
    sample (n - 1) denominator and is 0 for fewer than two samples.
    """
    values: List[int] = [int(v) for i, v in enumerate(latencies) if i > 0 or v > 0]
    if not values:
        return LatencyStats()

    ordered = sorted(values)
    std_dev = statistics.stdev(values) if len(values) > 1 else 0.0

    return LatencyStats(
        avg_latency_ms=round_half_up(statistics.fmean(values)),
        min_latency_ms=ordered[0],
        max_latency_ms=ordered[-1],
        std_dev_latency_ms=round_half_up(std_dev),
        p50_latency_ms=nearest_rank(ordered, 0.5),
        p95_latency_ms=nearest_rank(ordered, 0.95),
    )


def calculate_typing_stats(events: Sequence[KeystrokeEvent], duration_ms: float) -> TypingStats:
    """Compute session metrics from the counted keystroke log.

    Args:
        events: Counted keystroke log in arrival order.
        duration_ms: Time from the first keystroke to now (or to completion).

    Returns:
        TypingStats. With no keystrokes every field is neutral: 0 wpm,
        100% accuracy, 0 duration and all-zero latency.
    """
    keystrokes = len(events)
    if keystrokes == 0:
        return TypingStats()

    correct = sum(1 for event in events if event.is_correct)
    return TypingStats(
        wpm=calculate_wpm(correct, duration_ms),
        raw_wpm=calculate_raw_wpm(keystrokes, duration_ms),
        accuracy=calculate_accuracy(correct, keystrokes),
        keystrokes=keystrokes,
        errors=keystrokes - correct,
        duration_ms=max(0, round_half_up(duration_ms)),
        latency=calculate_latency_stats(event.latency_ms for event in events),
    )
