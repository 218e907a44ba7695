"""Keystroke event model recorded by a typing session."""

import unicodedata
from typing import Any, Dict

from pydantic import BaseModel, Field, field_validator


class KeystrokeEvent(BaseModel):
    """A single keystroke intent compared against the expected character.

    Events are immutable once recorded and are appended to the session log in
    arrival order.
    """

    timestamp: int = Field(..., ge=0, description="Milliseconds since the session started")
    expected_char: str
    actual_char: str
    is_correct: bool
    latency_ms: int = Field(..., ge=0, description="Milliseconds since the previous keystroke")

    model_config = {
        "extra": "forbid",
        "frozen": True,
    }

    @field_validator("expected_char", "actual_char", mode="before")
    @classmethod
    def _normalize_nfc(cls, v: object) -> str:
        """Normalize character fields to NFC form for consistent comparisons."""
        if v is None:
            return ""
        if not isinstance(v, str):
            v = str(v)
        return unicodedata.normalize("NFC", v)

    @property
    def is_error(self) -> bool:
        return not self.is_correct

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the event to a plain dict."""
        return self.model_dump()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "KeystrokeEvent":
        """Create an event from a dict, deriving ``is_correct`` when it is missing."""
        payload = dict(data)
        if "is_correct" not in payload:
            payload["is_correct"] = payload.get("expected_char") == payload.get("actual_char")
        return cls.model_validate(payload)
