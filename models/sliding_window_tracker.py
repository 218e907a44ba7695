"""Sliding-window typing rate tracker for ambient (background) monitoring.

The tracker keeps the timestamps of accepted keystrokes in a time-ordered
queue and projects their count over the fixed window length to estimate
"typing speed right now". It is fed by an edit listener and read by a status
display or a periodic decay tick, possibly from different threads, so every
queue operation happens under one lock. The clock is read inside that lock,
which keeps appends in timestamp order.

Noise filtering: an insert longer than ``max_insert_chars`` is taken to be a
paste, autocomplete or programmatic edit and is dropped entirely; deletions
never count.
"""

from __future__ import annotations

import enum
import logging
import threading
import time
from collections import deque
from typing import Callable, Deque, Iterable, Optional

from models.analytics_config import AnalyticsConfig
from models.typing_metrics import calculate_wpm

logger = logging.getLogger(__name__)

LOW_WPM_ERROR = 20
LOW_WPM_WARNING = 40


def wall_clock_ms() -> float:
    return time.time() * 1000


class TrackerConfigurationError(ValueError):
    """Raised when a tracker is constructed with an invalid configuration."""

    def __init__(self, message: str = "Invalid tracker configuration") -> None:
        self.message = message
        super().__init__(self.message)


class WpmTrend(enum.Enum):
    """Direction of the rate compared to the previous sample."""

    UP = "up"
    DOWN = "down"
    STABLE = "stable"


class SlidingWindowTracker:
    """Rolling-window WPM estimate with trend and peak tracking."""

    def __init__(
        self,
        window_ms: int = 10000,
        max_insert_chars: int = 5,
        trend_threshold: int = 3,
        decay_interval_ms: int = 1000,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        """Create a tracker.

        Args:
            window_ms: Length of the trailing window in milliseconds.
            max_insert_chars: Largest single insert counted as typing.
            trend_threshold: WPM difference needed to report up or down.
            decay_interval_ms: Period of the background prune tick.
            clock: Returns the current time in milliseconds.

        Raises:
            TrackerConfigurationError: If ``window_ms``, ``max_insert_chars``
                or ``decay_interval_ms`` is not positive, or the threshold is
                negative.
        """
        if window_ms <= 0:
            raise TrackerConfigurationError(f"window_ms must be positive, got {window_ms}")
        if max_insert_chars <= 0:
            raise TrackerConfigurationError(f"max_insert_chars must be positive, got {max_insert_chars}")
        if trend_threshold < 0:
            raise TrackerConfigurationError(f"trend_threshold must be >= 0, got {trend_threshold}")
        if decay_interval_ms <= 0:
            raise TrackerConfigurationError(f"decay_interval_ms must be positive, got {decay_interval_ms}")

        self.window_ms = window_ms
        self.max_insert_chars = max_insert_chars
        self.trend_threshold = trend_threshold
        self.decay_interval_ms = decay_interval_ms
        self._clock = clock or wall_clock_ms

        self._timestamps: Deque[float] = deque()
        self._lock = threading.Lock()
        self._peak_wpm = 0
        self._previous_wpm = 0

        self._stop_event = threading.Event()
        self._decay_thread: Optional[threading.Thread] = None

    @classmethod
    def from_config(cls, config: AnalyticsConfig, clock: Optional[Callable[[], float]] = None) -> "SlidingWindowTracker":
        return cls(
            window_ms=config.window_ms,
            max_insert_chars=config.max_insert_chars,
            trend_threshold=config.trend_threshold,
            decay_interval_ms=config.decay_interval_ms,
            clock=clock,
        )

    def record_insert(self, text: str) -> int:
        """Count an inserted text fragment as typed characters.

        Returns:
            Number of keystrokes accepted: ``len(text)`` for a small insert,
            0 for an empty insert (a deletion) or one larger than the cap.
        """
        length = len(text)
        if length == 0 or length > self.max_insert_chars:
            if length:
                logger.debug("Ignoring %d-character insert as non-typing edit", length)
            return 0
        with self._lock:
            now = self._clock()
            self._timestamps.extend([now] * length)
        return length

    def on_document_change(self, inserted_texts: Iterable[str]) -> int:
        """Apply every content change of one edit notification.

        Each element is the text inserted by one change; deletions appear as
        empty strings and are ignored.
        """
        return sum(self.record_insert(text) for text in inserted_texts)

    def _prune(self, now: float) -> None:
        """Evict timestamps strictly older than ``now - window_ms``. Caller holds the lock."""
        cutoff = now - self.window_ms
        while self._timestamps and self._timestamps[0] < cutoff:
            self._timestamps.popleft()

    def prune(self) -> None:
        """Drop stale timestamps (periodic decay tick)."""
        with self._lock:
            self._prune(self._clock())

    def get_keystroke_count(self) -> int:
        with self._lock:
            self._prune(self._clock())
            return len(self._timestamps)

    def get_wpm(self) -> int:
        """Current rate projected over the window; also raises the peak."""
        with self._lock:
            self._prune(self._clock())
            count = len(self._timestamps)
            if count == 0:
                return 0
            wpm = calculate_wpm(count, self.window_ms)
            if wpm > self._peak_wpm:
                self._peak_wpm = wpm
            return wpm

    @property
    def peak_wpm(self) -> int:
        """Highest rate read since construction or the last reset."""
        with self._lock:
            return self._peak_wpm

    def get_trend(self) -> WpmTrend:
        """Classify the current rate against the previous sample.

        Every call replaces the stored sample, so callers should sample at a
        regular cadence.
        """
        current = self.get_wpm()
        with self._lock:
            previous = self._previous_wpm
            self._previous_wpm = current
        if current > previous + self.trend_threshold:
            return WpmTrend.UP
        if current < previous - self.trend_threshold:
            return WpmTrend.DOWN
        return WpmTrend.STABLE

    def reset(self) -> None:
        """Forget all keystrokes, the peak and the trend sample."""
        with self._lock:
            self._timestamps.clear()
            self._peak_wpm = 0
            self._previous_wpm = 0

    def start(self) -> None:
        """Run the decay tick on a daemon thread until ``stop()``."""
        if self._decay_thread is not None and self._decay_thread.is_alive():
            return
        self._stop_event.clear()
        self._decay_thread = threading.Thread(
            target=self._decay_loop, name="sliding-window-decay", daemon=True
        )
        self._decay_thread.start()

    def _decay_loop(self) -> None:
        interval = self.decay_interval_ms / 1000
        while not self._stop_event.wait(interval):
            self.prune()

    def stop(self) -> None:
        """Stop the decay tick and wait for the thread to exit."""
        self._stop_event.set()
        if self._decay_thread is not None:
            self._decay_thread.join(timeout=self.decay_interval_ms / 1000 + 1)
            self._decay_thread = None

    def __enter__(self) -> "SlidingWindowTracker":
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()


def trend_arrow(trend: WpmTrend) -> str:
    """Arrow glyph for a status display; stable has none."""
    if trend is WpmTrend.UP:
        return "↑"
    if trend is WpmTrend.DOWN:
        return "↓"
    return ""


def wpm_status(wpm: int, is_active: bool) -> Optional[str]:
    """Severity for highlighting a low rate during active typing.

    Returns "error" below 20 wpm, "warning" below 40 wpm, otherwise None.
    Idle or zero readings are never highlighted.
    """
    if not is_active or wpm == 0:
        return None
    if wpm < LOW_WPM_ERROR:
        return "error"
    if wpm < LOW_WPM_WARNING:
        return "warning"
    return None
