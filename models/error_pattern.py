"""Aggregate records and ranked results for error-pattern analytics.

Rows of the three aggregate tables are modelled here together with the
per-sample inputs accepted by ``ErrorPatternManager`` and the ranked views it
returns. Percentages are whole numbers rounded half-up.
"""

from __future__ import annotations

from typing import Any, Dict, List

from pydantic import BaseModel, Field, model_validator

from models.typing_metrics import round_half_up


def _percent(part: int, whole: int) -> int:
    if whole <= 0:
        return 0
    return round_half_up(part * 100 / whole)


class KeyAccuracyRecord(BaseModel):
    """Per-user, per-key press counts and exact running-mean latency."""

    user_id: str
    key: str = Field(..., min_length=1)
    total_presses: int = Field(..., ge=0)
    correct_presses: int = Field(..., ge=0)
    avg_latency_ms: int = Field(..., ge=0)

    @model_validator(mode="after")
    def check_counts(self) -> "KeyAccuracyRecord":
        if self.correct_presses > self.total_presses:
            raise ValueError("correct_presses cannot exceed total_presses")
        return self

    @property
    def accuracy(self) -> int:
        return _percent(self.correct_presses, self.total_presses)

    @property
    def error_count(self) -> int:
        return self.total_presses - self.correct_presses

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "KeyAccuracyRecord":
        return cls(
            user_id=str(row["user_id"]),
            key=str(row["key_char"]),
            total_presses=int(row["total_presses"]),
            correct_presses=int(row["correct_presses"]),
            avg_latency_ms=int(row["avg_latency_ms"]),
        )


class CharErrorPattern(BaseModel):
    """How often ``actual_char`` was typed where ``expected_char`` was expected."""

    user_id: str
    expected_char: str = Field(..., min_length=1)
    actual_char: str = Field(..., min_length=1)
    count: int = Field(..., ge=0)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "CharErrorPattern":
        return cls(
            user_id=str(row["user_id"]),
            expected_char=str(row["expected_char"]),
            actual_char=str(row["actual_char"]),
            count=int(row["count"]),
        )


class SequenceErrorPattern(BaseModel):
    """Per-user, per-n-gram attempt and error counts with running-mean latency."""

    user_id: str
    sequence: str = Field(..., min_length=1)
    total_attempts: int = Field(..., ge=0)
    error_count: int = Field(..., ge=0)
    avg_latency_ms: int = Field(..., ge=0)

    @model_validator(mode="after")
    def check_counts(self) -> "SequenceErrorPattern":
        if self.error_count > self.total_attempts:
            raise ValueError("error_count cannot exceed total_attempts")
        return self

    @property
    def error_rate(self) -> int:
        return _percent(self.error_count, self.total_attempts)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "SequenceErrorPattern":
        return cls(
            user_id=str(row["user_id"]),
            sequence=str(row["sequence"]),
            total_attempts=int(row["total_attempts"]),
            error_count=int(row["error_count"]),
            avg_latency_ms=int(row["avg_latency_ms"]),
        )


class KeySample(BaseModel):
    """One keystroke outcome for the key accuracy aggregate."""

    key: str = Field(..., min_length=1)
    is_correct: bool
    latency_ms: int = Field(..., ge=0)


class CharErrorSample(BaseModel):
    """A confusion pair observed ``count`` times in one session."""

    expected_char: str = Field(..., min_length=1)
    actual_char: str = Field(..., min_length=1)
    count: int = Field(default=1, gt=0)


class SequenceSample(BaseModel):
    """One occurrence of an n-gram in a session log."""

    sequence: str = Field(..., min_length=1)
    had_error: bool
    latency_ms: int = Field(..., ge=0)


class WeakKey(BaseModel):
    """Ranked view of a key, with accuracy as a whole percentage."""

    key: str
    accuracy: int
    total_presses: int
    correct_presses: int
    avg_latency_ms: int

    @classmethod
    def from_record(cls, record: KeyAccuracyRecord) -> "WeakKey":
        return cls(
            key=record.key,
            accuracy=record.accuracy,
            total_presses=record.total_presses,
            correct_presses=record.correct_presses,
            avg_latency_ms=record.avg_latency_ms,
        )


class SequenceErrorData(BaseModel):
    """Ranked view of an n-gram, with error rate as a whole percentage."""

    sequence: str
    total_attempts: int
    error_count: int
    error_rate: int
    avg_latency_ms: int

    @classmethod
    def from_record(cls, record: SequenceErrorPattern) -> "SequenceErrorData":
        return cls(
            sequence=record.sequence,
            total_attempts=record.total_attempts,
            error_count=record.error_count,
            error_rate=record.error_rate,
            avg_latency_ms=record.avg_latency_ms,
        )


class BatchUpsertResult(BaseModel):
    """Outcome of applying a batch of samples; failed samples are skipped, not rolled back."""

    applied: int = 0
    failed: int = 0
    errors: List[str] = Field(default_factory=list)

    @property
    def total(self) -> int:
        return self.applied + self.failed

    @property
    def ok(self) -> bool:
        return self.failed == 0

    def merge(self, other: "BatchUpsertResult") -> "BatchUpsertResult":
        return BatchUpsertResult(
            applied=self.applied + other.applied,
            failed=self.failed + other.failed,
            errors=self.errors + other.errors,
        )
