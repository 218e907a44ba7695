"""Keystroke event processor for a single practice session.

A ``TypingSession`` consumes keystroke intents one at a time and keeps the
cursor, the per-position error flags and the keystroke log for one target
text. Input adapters (terminal, editor, GUI) call ``process_key``,
``backspace`` and ``reset`` directly; nothing here depends on an input
framework, so a scripted list of characters and a fake clock drive it in
tests.

Lifecycle::

    IDLE --first key--> ACTIVE --cursor reaches end--> COMPLETE
      ^                   |                              |
      +------ reset ------+------------ reset -----------+

A wrong key does not block progress: it is recorded, flagged at its position
and the cursor moves on. Backspace retracts the most recent counted keystroke,
so a corrected character does not count toward final accuracy. The raw log
keeps every key ever typed for replay.
"""

from __future__ import annotations

import enum
import logging
import time
import unicodedata
from typing import Callable, Dict, List, Optional, Tuple

from models.keystroke_event import KeystrokeEvent
from models.typing_metrics import TypingStats, calculate_typing_stats, round_half_up

logger = logging.getLogger(__name__)

BACKSPACE_KEYS = ("\b", "\x7f")
ESCAPE_KEY = "\x1b"
TAB_KEY = "\t"

KeystrokeCallback = Callable[[KeystrokeEvent], None]
CompleteCallback = Callable[[TypingStats, List[KeystrokeEvent]], None]


def monotonic_ms() -> float:
    return time.monotonic() * 1000


class SessionStatus(enum.Enum):
    """Lifecycle state of a typing session."""

    IDLE = "idle"
    ACTIVE = "active"
    COMPLETE = "complete"


class TypingSession:
    """Per-session state machine turning keystrokes into events and metrics."""

    def __init__(
        self,
        target_text: str,
        on_keystroke: Optional[KeystrokeCallback] = None,
        on_complete: Optional[CompleteCallback] = None,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        """Create an idle session.

        Args:
            target_text: Text the user is expected to type.
            on_keystroke: Called synchronously with every recorded event.
            on_complete: Called once with the final stats and counted log
                when the cursor reaches the end of the text.
            clock: Returns the current time in milliseconds. Defaults to a
                monotonic clock.
        """
        self._target_text = target_text
        self.on_keystroke = on_keystroke
        self.on_complete = on_complete
        self._clock = clock or monotonic_ms
        self.reset()

    def reset(self) -> None:
        """Discard cursor, logs and timer; the session returns to IDLE.

        Persisted aggregates are not touched.
        """
        self._status = SessionStatus.IDLE
        self._cursor_position = 0
        self._typed_chars: List[str] = []
        self._errors: Dict[int, str] = {}
        self._keystroke_log: List[KeystrokeEvent] = []
        self._raw_keystroke_log: List[KeystrokeEvent] = []
        self._started_at: Optional[float] = None
        self._completed_at: Optional[float] = None
        self._last_keystroke_at: Optional[float] = None
        self._final_stats: Optional[TypingStats] = None
        self._hint_used = False

    def escape(self) -> None:
        """Restart the session (Escape key)."""
        logger.debug("Session reset by escape at cursor %d", self._cursor_position)
        self.reset()

    def set_target_text(self, target_text: str) -> None:
        """Switch to a new target text, discarding the current attempt."""
        self._target_text = target_text
        self.reset()

    def start(self) -> None:
        """Start the clock. Called implicitly by the first accepted key."""
        if self._status is not SessionStatus.IDLE:
            return
        now = self._clock()
        self._status = SessionStatus.ACTIVE
        self._started_at = now
        self._last_keystroke_at = now

    def handle_key(self, key: str) -> Optional[KeystrokeEvent]:
        """Dispatch a raw key from an input adapter.

        Backspace and Escape control characters are routed to ``backspace``
        and ``escape``; Tab requests a hint; anything else is typed.
        """
        if key in BACKSPACE_KEYS:
            self.backspace()
            return None
        if key == ESCAPE_KEY:
            self.escape()
            return None
        if key == TAB_KEY and self.current_char != TAB_KEY:
            self.request_hint()
            return None
        return self.process_key(key)

    def process_key(self, char: str) -> Optional[KeystrokeEvent]:
        """Compare ``char`` with the expected character and advance the cursor.

        Returns:
            The recorded event, or None when the session is complete and the
            key is ignored.

        Raises:
            ValueError: If ``char`` is empty.
        """
        if not char:
            raise ValueError("char must be a non-empty string")
        if self._status is SessionStatus.COMPLETE:
            return None
        if self._cursor_position >= len(self._target_text):
            return None

        self.start()
        now = self._clock()
        started_at = self._started_at if self._started_at is not None else now
        last_at = self._last_keystroke_at if self._last_keystroke_at is not None else now
        self._last_keystroke_at = now

        position = self._cursor_position
        expected = unicodedata.normalize("NFC", self._target_text[position])
        char = unicodedata.normalize("NFC", char)
        is_correct = char == expected

        event = KeystrokeEvent(
            timestamp=max(0, round_half_up(now - started_at)),
            expected_char=expected,
            actual_char=char,
            is_correct=is_correct,
            latency_ms=max(0, round_half_up(now - last_at)),
        )
        self._keystroke_log.append(event)
        self._raw_keystroke_log.append(event)
        self._typed_chars.append(char)
        if not is_correct:
            self._errors[position] = char

        self._cursor_position = position + 1

        if self.on_keystroke is not None:
            self.on_keystroke(event)

        if self._cursor_position >= len(self._target_text):
            self._complete(now)
        return event

    def backspace(self) -> None:
        """Move the cursor back one position and retract the keystroke typed there.

        Ignored while IDLE, once COMPLETE, and at position 0.
        """
        if self._status is not SessionStatus.ACTIVE or self._cursor_position <= 0:
            return

        self._last_keystroke_at = self._clock()
        self._cursor_position -= 1
        self._typed_chars.pop()
        self._errors.pop(self._cursor_position, None)
        if self._keystroke_log:
            self._keystroke_log.pop()

    def request_hint(self) -> Optional[str]:
        """Reveal the expected character at the cursor (Tab key).

        Returns None when the session is complete or nothing is left to type.
        """
        if self._status is SessionStatus.COMPLETE or self._cursor_position >= len(self._target_text):
            return None
        self._hint_used = True
        return self._target_text[self._cursor_position]

    def _complete(self, now: float) -> None:
        self._status = SessionStatus.COMPLETE
        self._completed_at = now
        self._final_stats = calculate_typing_stats(self._keystroke_log, self.elapsed_ms())
        logger.info(
            "Session complete: %d wpm, %d%% accuracy over %d keystrokes",
            self._final_stats.wpm,
            self._final_stats.accuracy,
            self._final_stats.keystrokes,
        )
        if self.on_complete is not None:
            self.on_complete(self._final_stats, list(self._keystroke_log))

    def elapsed_ms(self) -> float:
        """Milliseconds since the first keystroke, frozen at completion; 0 while IDLE."""
        if self._status is SessionStatus.IDLE or self._started_at is None:
            return 0.0
        if self._status is SessionStatus.COMPLETE and self._completed_at is not None:
            return self._completed_at - self._started_at
        return self._clock() - self._started_at

    def get_current_stats(self) -> TypingStats:
        """Live metrics for the session so far (final metrics once complete)."""
        if self._final_stats is not None:
            return self._final_stats
        if self._status is SessionStatus.IDLE:
            return TypingStats()
        return calculate_typing_stats(self._keystroke_log, self.elapsed_ms())

    @property
    def target_text(self) -> str:
        return self._target_text

    @property
    def status(self) -> SessionStatus:
        return self._status

    @property
    def is_started(self) -> bool:
        return self._status is not SessionStatus.IDLE

    @property
    def is_complete(self) -> bool:
        return self._status is SessionStatus.COMPLETE

    @property
    def cursor_position(self) -> int:
        return self._cursor_position

    @property
    def errors(self) -> Dict[int, str]:
        """Copy of the error flags: text index -> character actually typed."""
        return dict(self._errors)

    @property
    def keystroke_log(self) -> Tuple[KeystrokeEvent, ...]:
        """Counted keystrokes, with backspaced entries removed."""
        return tuple(self._keystroke_log)

    @property
    def raw_keystroke_log(self) -> Tuple[KeystrokeEvent, ...]:
        """Every keystroke typed since the last reset, including retracted ones."""
        return tuple(self._raw_keystroke_log)

    @property
    def typed_text(self) -> str:
        return "".join(self._typed_chars)

    @property
    def current_char(self) -> Optional[str]:
        if self._cursor_position < len(self._target_text):
            return self._target_text[self._cursor_position]
        return None

    @property
    def is_correct_so_far(self) -> bool:
        return not self._errors

    @property
    def progress(self) -> float:
        """Percentage of the target text covered by the cursor."""
        if not self._target_text:
            return 0.0
        return self._cursor_position / len(self._target_text) * 100

    @property
    def hint_used(self) -> bool:
        return self._hint_used
