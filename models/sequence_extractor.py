"""Turn a completed session's keystroke log into aggregate samples.

Three sample streams feed the error-pattern aggregates:

- one ``KeySample`` per keystroke, keyed by the expected character;
- ``CharErrorSample`` confusion pairs, grouped and counted per session;
- ``SequenceSample`` n-grams over consecutive keystrokes, one per distinct
  n-gram in the session.

Sequence rules: only single-character keys take part, text is case-folded,
and any n-gram containing whitespace is skipped because it spans a word
boundary. The latency of an n-gram is the time spent on its transitions (the
latencies of every keystroke after the first), and it counts as an error when
any of those keystrokes was wrong.
"""

from collections import Counter
from typing import Dict, List, Sequence, Tuple

from models.error_pattern import CharErrorSample, KeySample, SequenceSample
from models.keystroke_event import KeystrokeEvent
from models.typing_metrics import round_half_up


def extract_key_samples(events: Sequence[KeystrokeEvent]) -> List[KeySample]:
    return [
        KeySample(key=event.expected_char, is_correct=event.is_correct, latency_ms=event.latency_ms)
        for event in events
        if event.expected_char
    ]


def aggregate_char_errors(events: Sequence[KeystrokeEvent]) -> List[CharErrorSample]:
    """Group wrong keystrokes into (expected, actual) pairs with counts.

    Pairs are returned most frequent first, then in first-seen order.
    """
    counts: Counter[Tuple[str, str]] = Counter()
    for event in events:
        if event.is_correct or not event.expected_char or not event.actual_char:
            continue
        if event.expected_char == event.actual_char:
            continue
        counts[(event.expected_char, event.actual_char)] += 1
    return [
        CharErrorSample(expected_char=expected, actual_char=actual, count=count)
        for (expected, actual), count in counts.most_common()
    ]


def extract_sequences(events: Sequence[KeystrokeEvent], size: int = 2) -> List[SequenceSample]:
    """Slide a window of ``size`` keystrokes over the log and emit one sample per distinct n-gram.

    Repeated occurrences are folded together: the sample is an error when any
    occurrence was, and its latency is the half-up mean over occurrences.
    Samples keep first-seen order.

    Raises:
        ValueError: If ``size`` is smaller than 2.
    """
    if size < 2:
        raise ValueError("sequence size must be at least 2")

    occurrences: Dict[str, List[Tuple[bool, int]]] = {}
    for start in range(len(events) - size + 1):
        window = events[start : start + size]
        if any(len(event.expected_char) != 1 for event in window):
            continue
        sequence = "".join(event.expected_char for event in window).lower()
        if any(ch.isspace() for ch in sequence):
            continue
        transitions = window[1:]
        occurrences.setdefault(sequence, []).append(
            (
                any(not event.is_correct for event in transitions),
                sum(event.latency_ms for event in transitions),
            )
        )

    return [
        SequenceSample(
            sequence=sequence,
            had_error=any(had_error for had_error, _ in seen),
            latency_ms=round_half_up(sum(latency for _, latency in seen) / len(seen)),
        )
        for sequence, seen in occurrences.items()
    ]
