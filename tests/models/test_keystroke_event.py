"""Tests for the KeystrokeEvent model."""

import pytest
from pydantic import ValidationError

from models.keystroke_event import KeystrokeEvent


def make_event(**overrides: object) -> KeystrokeEvent:
    data = {
        "timestamp": 120,
        "expected_char": "a",
        "actual_char": "a",
        "is_correct": True,
        "latency_ms": 120,
    }
    data.update(overrides)
    return KeystrokeEvent(**data)  # type: ignore[arg-type]


class TestKeystrokeEvent:
    """Validation and serialization of keystroke events."""

    def test_valid_event(self) -> None:
        """A well-formed event keeps its fields."""
        event = make_event()
        assert event.timestamp == 120
        assert event.expected_char == "a"
        assert event.is_correct is True
        assert event.is_error is False

    def test_error_event(self) -> None:
        """A mismatching keystroke reports is_error."""
        event = make_event(actual_char="s", is_correct=False)
        assert event.is_error is True

    @pytest.mark.parametrize("field", ["timestamp", "latency_ms"])
    def test_negative_times_rejected(self, field: str) -> None:
        """Negative timestamps and latencies are invalid."""
        with pytest.raises(ValidationError):
            make_event(**{field: -1})

    def test_event_is_immutable(self) -> None:
        """Recorded events cannot be modified."""
        event = make_event()
        with pytest.raises(ValidationError):
            event.is_correct = False  # type: ignore[misc]

    def test_extra_fields_rejected(self) -> None:
        """Unknown fields are not silently accepted."""
        with pytest.raises(ValidationError):
            make_event(session_id="abc")

    def test_nfc_normalization(self) -> None:
        """Decomposed characters are normalized so comparisons are stable."""
        event = make_event(expected_char="e\u0301", actual_char="\u00e9")
        assert event.expected_char == "\u00e9"
        assert event.expected_char == event.actual_char

    def test_dict_round_trip(self) -> None:
        """to_dict output is accepted by from_dict."""
        event = make_event(actual_char="x", is_correct=False)
        assert KeystrokeEvent.from_dict(event.to_dict()) == event

    def test_from_dict_derives_is_correct(self) -> None:
        """is_correct is computed from the characters when missing."""
        event = KeystrokeEvent.from_dict(
            {"timestamp": 0, "expected_char": "a", "actual_char": "b", "latency_ms": 0}
        )
        assert event.is_correct is False
