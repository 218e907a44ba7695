"""
Models package for the typing analytics engine.

Session processing, live metrics, the sliding-window rate tracker and the
error-pattern aggregates live here.
"""

from .analytics_config import AnalyticsConfig
from .error_pattern_manager import ErrorPatternManager
from .keystroke_event import KeystrokeEvent
from .sliding_window_tracker import SlidingWindowTracker
from .typing_metrics import TypingStats
from .typing_session import TypingSession

__all__ = [
    "AnalyticsConfig",
    "ErrorPatternManager",
    "KeystrokeEvent",
    "SlidingWindowTracker",
    "TypingSession",
    "TypingStats",
]
