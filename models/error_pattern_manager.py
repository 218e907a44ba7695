"""ErrorPatternManager: incremental error-pattern aggregates and ranked queries.

Requirements summary (as implemented):

- Three aggregates are maintained per user, each keyed by composite identity:
  ``key_accuracy`` (user_id, key_char), ``char_error_patterns``
  (user_id, expected_char, actual_char) and ``sequence_error_patterns``
  (user_id, sequence).

- Every sample is applied with one ``INSERT ... ON CONFLICT ... DO UPDATE``
  statement, so concurrent writers touching the same key never lose an
  increment; there is no read-then-write pair.

- ``avg_latency_ms`` is an exact running mean maintained in SQL:
  ``new = round((old * n + sample) / (n + 1))`` with half-up rounding.
  Recent samples are not weighted more heavily.

- Batch upserts apply samples independently. A failing sample is logged and
  counted in the returned ``BatchUpsertResult``; samples already applied stay
  applied and the remaining ones are still attempted.

- "Weakest" and "slowest" rankings only consider entries with at least
  ``min_samples`` samples. Weakest keys sort by accuracy ascending, problem
  sequences by error rate descending; both break ties by the larger absolute
  error count. Slowest rankings sort by ``avg_latency_ms`` descending.
"""

import logging
from typing import Callable, Iterable, List, Optional, Sequence, TypeVar

from db.database_manager import DatabaseManager
from db.exceptions import AggregateNotFoundError, DatabaseError
from helpers.debug_util import DebugUtil
from models.analytics_config import AnalyticsConfig
from models.error_pattern import (
    BatchUpsertResult,
    CharErrorPattern,
    CharErrorSample,
    KeyAccuracyRecord,
    KeySample,
    SequenceErrorData,
    SequenceErrorPattern,
    SequenceSample,
    WeakKey,
)
from models.keystroke_event import KeystrokeEvent
from models.sequence_extractor import aggregate_char_errors, extract_key_samples, extract_sequences
from models.typing_metrics import round_half_up
from models.weakness_analyzer import WeaknessReport, analyze_weaknesses

logger = logging.getLogger(__name__)

SampleT = TypeVar("SampleT")

UPSERT_KEY_ACCURACY_SQL = """
    INSERT INTO key_accuracy (user_id, key_char, total_presses, correct_presses, avg_latency_ms)
    VALUES (?, ?, 1, ?, ?)
    ON CONFLICT (user_id, key_char) DO UPDATE SET
        total_presses = key_accuracy.total_presses + 1,
        correct_presses = key_accuracy.correct_presses + excluded.correct_presses,
        avg_latency_ms = CAST(ROUND(
            (key_accuracy.avg_latency_ms * key_accuracy.total_presses + excluded.avg_latency_ms) * 1.0
            / (key_accuracy.total_presses + 1)
        ) AS INTEGER)
"""

UPSERT_CHAR_ERROR_SQL = """
    INSERT INTO char_error_patterns (user_id, expected_char, actual_char, count)
    VALUES (?, ?, ?, ?)
    ON CONFLICT (user_id, expected_char, actual_char) DO UPDATE SET
        count = char_error_patterns.count + excluded.count
"""

UPSERT_SEQUENCE_SQL = """
    INSERT INTO sequence_error_patterns (user_id, sequence, total_attempts, error_count, avg_latency_ms)
    VALUES (?, ?, 1, ?, ?)
    ON CONFLICT (user_id, sequence) DO UPDATE SET
        total_attempts = sequence_error_patterns.total_attempts + 1,
        error_count = sequence_error_patterns.error_count + excluded.error_count,
        avg_latency_ms = CAST(ROUND(
            (sequence_error_patterns.avg_latency_ms * sequence_error_patterns.total_attempts
             + excluded.avg_latency_ms) * 1.0
            / (sequence_error_patterns.total_attempts + 1)
        ) AS INTEGER)
"""


def _require_user(user_id: str) -> str:
    if not isinstance(user_id, str) or not user_id.strip():
        raise ValueError("user_id must be a non-empty string")
    return user_id


def _latency(latency_ms: float) -> int:
    return round_half_up(latency_ms)


class ErrorPatternManager:
    """Applies per-session samples to the aggregate store and answers ranked queries."""

    def __init__(
        self,
        db_manager: DatabaseManager,
        config: Optional[AnalyticsConfig] = None,
        debug_util: Optional[DebugUtil] = None,
    ) -> None:
        """Initialize the manager.

        Args:
            db_manager: Storage gateway whose tables are already initialized.
            config: Thresholds and sequence size; defaults to ``AnalyticsConfig()``.
            debug_util: Optional DebugUtil for verbose batch diagnostics.
        """
        self.db_manager = db_manager
        self.config = config or AnalyticsConfig()
        self.debug_util = debug_util

    # ------------------------------------------------------------------
    # Single-sample upserts
    # ------------------------------------------------------------------

    def upsert_key_accuracy(self, user_id: str, key: str, is_correct: bool, latency_ms: float) -> KeyAccuracyRecord:
        """Record one press of ``key`` and return the updated aggregate.

        Raises:
            ValueError: On an empty user or key, or a negative latency.
            DatabaseError: If the store rejects the write.
        """
        sample = KeySample(key=key, is_correct=is_correct, latency_ms=_latency(latency_ms))
        _require_user(user_id)
        self.db_manager.execute(
            UPSERT_KEY_ACCURACY_SQL,
            (user_id, sample.key, int(sample.is_correct), sample.latency_ms),
        )
        record = self.get_key_accuracy(user_id, sample.key)
        if record is None:
            raise AggregateNotFoundError("key_accuracy", (user_id, sample.key))
        return record

    def upsert_char_error_pattern(
        self, user_id: str, expected_char: str, actual_char: str, increment_by: int = 1
    ) -> CharErrorPattern:
        """Add ``increment_by`` occurrences of a confusion pair.

        Raises:
            ValueError: If the characters are equal (not a confusion) or the
                increment is not positive.
        """
        sample = CharErrorSample(expected_char=expected_char, actual_char=actual_char, count=increment_by)
        _require_user(user_id)
        if sample.expected_char == sample.actual_char:
            raise ValueError("expected_char and actual_char must differ for a confusion pair")
        self.db_manager.execute(
            UPSERT_CHAR_ERROR_SQL,
            (user_id, sample.expected_char, sample.actual_char, sample.count),
        )
        row = self.db_manager.fetchone(
            "SELECT * FROM char_error_patterns WHERE user_id = ? AND expected_char = ? AND actual_char = ?",
            (user_id, sample.expected_char, sample.actual_char),
        )
        if row is None:
            raise AggregateNotFoundError("char_error_patterns", (user_id, sample.expected_char, sample.actual_char))
        return CharErrorPattern.from_row(row)

    def upsert_sequence_error_pattern(
        self, user_id: str, sequence: str, had_error: bool, latency_ms: float
    ) -> SequenceErrorPattern:
        """Record one attempt at ``sequence`` and return the updated aggregate."""
        sample = SequenceSample(sequence=sequence, had_error=had_error, latency_ms=_latency(latency_ms))
        _require_user(user_id)
        self.db_manager.execute(
            UPSERT_SEQUENCE_SQL,
            (user_id, sample.sequence, int(sample.had_error), sample.latency_ms),
        )
        record = self.get_sequence_error_pattern(user_id, sample.sequence)
        if record is None:
            raise AggregateNotFoundError("sequence_error_patterns", (user_id, sample.sequence))
        return record

    # ------------------------------------------------------------------
    # Batch upserts (log-and-continue)
    # ------------------------------------------------------------------

    def _apply_batch(
        self, label: str, samples: Iterable[SampleT], apply: Callable[[SampleT], object]
    ) -> BatchUpsertResult:
        result = BatchUpsertResult()
        for sample in samples:
            try:
                apply(sample)
                result.applied += 1
            except (DatabaseError, ValueError) as e:
                result.failed += 1
                result.errors.append(f"{label} {sample!r}: {e}")
                logger.exception("Failed to apply %s sample %r; continuing with batch", label, sample)
                if self.debug_util is not None:
                    self.debug_util.batch_failure(label, sample, e)
        if result.failed:
            logger.warning("%s batch: %d applied, %d failed", label, result.applied, result.failed)
        return result

    def batch_upsert_key_accuracy(self, user_id: str, samples: Iterable[KeySample]) -> BatchUpsertResult:
        return self._apply_batch(
            "key_accuracy",
            samples,
            lambda s: self.upsert_key_accuracy(user_id, s.key, s.is_correct, s.latency_ms),
        )

    def batch_upsert_char_error_patterns(
        self, user_id: str, samples: Iterable[CharErrorSample]
    ) -> BatchUpsertResult:
        return self._apply_batch(
            "char_error",
            samples,
            lambda s: self.upsert_char_error_pattern(user_id, s.expected_char, s.actual_char, s.count),
        )

    def batch_upsert_sequence_error_patterns(
        self, user_id: str, samples: Iterable[SequenceSample]
    ) -> BatchUpsertResult:
        return self._apply_batch(
            "sequence",
            samples,
            lambda s: self.upsert_sequence_error_pattern(user_id, s.sequence, s.had_error, s.latency_ms),
        )

    def record_session(self, user_id: str, events: Sequence[KeystrokeEvent]) -> BatchUpsertResult:
        """Fold a completed session's counted keystroke log into all three aggregates.

        The session's ``TypingStats`` are computed before this runs and are
        never affected by persistence failures here.
        """
        if not events:
            return BatchUpsertResult()
        result = self.batch_upsert_key_accuracy(user_id, extract_key_samples(events))
        result = result.merge(self.batch_upsert_char_error_patterns(user_id, aggregate_char_errors(events)))
        result = result.merge(
            self.batch_upsert_sequence_error_patterns(
                user_id, extract_sequences(events, self.config.sequence_size)
            )
        )
        logger.info(
            "Recorded session aggregates for user %s: %d applied, %d failed",
            user_id,
            result.applied,
            result.failed,
        )
        return result

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_key_accuracy(self, user_id: str, key: str) -> Optional[KeyAccuracyRecord]:
        row = self.db_manager.fetchone(
            "SELECT * FROM key_accuracy WHERE user_id = ? AND key_char = ?",
            (user_id, key),
        )
        return KeyAccuracyRecord.from_row(row) if row else None

    def get_key_accuracy_for_user(self, user_id: str) -> List[KeyAccuracyRecord]:
        rows = self.db_manager.fetchall(
            "SELECT * FROM key_accuracy WHERE user_id = ? ORDER BY key_char",
            (user_id,),
        )
        return [KeyAccuracyRecord.from_row(row) for row in rows]

    def get_char_error_patterns(self, user_id: str) -> List[CharErrorPattern]:
        """All confusion pairs for a user, most frequent first."""
        rows = self.db_manager.fetchall(
            "SELECT * FROM char_error_patterns WHERE user_id = ? "
            "ORDER BY count DESC, expected_char, actual_char",
            (user_id,),
        )
        return [CharErrorPattern.from_row(row) for row in rows]

    def get_most_common_errors_for_char(
        self, user_id: str, expected_char: str, limit: int = 5
    ) -> List[CharErrorPattern]:
        """What the user most often types instead of ``expected_char``."""
        if limit <= 0:
            return []
        rows = self.db_manager.fetchall(
            "SELECT * FROM char_error_patterns WHERE user_id = ? AND expected_char = ? "
            "ORDER BY count DESC, actual_char LIMIT ?",
            (user_id, expected_char, int(limit)),
        )
        return [CharErrorPattern.from_row(row) for row in rows]

    def get_sequence_error_pattern(self, user_id: str, sequence: str) -> Optional[SequenceErrorPattern]:
        row = self.db_manager.fetchone(
            "SELECT * FROM sequence_error_patterns WHERE user_id = ? AND sequence = ?",
            (user_id, sequence),
        )
        return SequenceErrorPattern.from_row(row) if row else None

    def get_sequence_error_patterns_for_user(self, user_id: str) -> List[SequenceErrorPattern]:
        rows = self.db_manager.fetchall(
            "SELECT * FROM sequence_error_patterns WHERE user_id = ? ORDER BY sequence",
            (user_id,),
        )
        return [SequenceErrorPattern.from_row(row) for row in rows]

    # ------------------------------------------------------------------
    # Ranked queries
    # ------------------------------------------------------------------

    def _significant_keys(self, user_id: str, min_samples: Optional[int]) -> List[KeyAccuracyRecord]:
        threshold = self.config.min_samples if min_samples is None else min_samples
        rows = self.db_manager.fetchall(
            "SELECT * FROM key_accuracy WHERE user_id = ? AND total_presses >= ?",
            (user_id, int(threshold)),
        )
        return [KeyAccuracyRecord.from_row(row) for row in rows]

    def _significant_sequences(self, user_id: str, min_attempts: Optional[int]) -> List[SequenceErrorPattern]:
        threshold = self.config.min_samples if min_attempts is None else min_attempts
        rows = self.db_manager.fetchall(
            "SELECT * FROM sequence_error_patterns WHERE user_id = ? AND total_attempts >= ?",
            (user_id, int(threshold)),
        )
        return [SequenceErrorPattern.from_row(row) for row in rows]

    def get_weakest_keys(self, user_id: str, limit: int = 10, min_samples: Optional[int] = None) -> List[WeakKey]:
        """Least accurate keys first; ties go to the key with more errors."""
        if limit <= 0:
            return []
        records = sorted(
            self._significant_keys(user_id, min_samples),
            key=lambda r: (r.accuracy, -r.error_count, r.key),
        )
        return [WeakKey.from_record(r) for r in records[:limit]]

    def get_slowest_keys(self, user_id: str, limit: int = 10, min_samples: Optional[int] = None) -> List[WeakKey]:
        """Keys with the highest average latency first."""
        if limit <= 0:
            return []
        records = sorted(
            self._significant_keys(user_id, min_samples),
            key=lambda r: (-r.avg_latency_ms, r.key),
        )
        return [WeakKey.from_record(r) for r in records[:limit]]

    def get_problem_sequences(
        self, user_id: str, limit: int = 20, min_attempts: Optional[int] = None
    ) -> List[SequenceErrorData]:
        """Sequences with the highest error rate first; ties go to more errors."""
        if limit <= 0:
            return []
        records = sorted(
            self._significant_sequences(user_id, min_attempts),
            key=lambda r: (-r.error_rate, -r.error_count, r.sequence),
        )
        return [SequenceErrorData.from_record(r) for r in records[:limit]]

    def get_slowest_sequences(
        self, user_id: str, limit: int = 20, min_attempts: Optional[int] = None
    ) -> List[SequenceErrorData]:
        """Sequences with the highest average latency first."""
        if limit <= 0:
            return []
        records = sorted(
            self._significant_sequences(user_id, min_attempts),
            key=lambda r: (-r.avg_latency_ms, r.sequence),
        )
        return [SequenceErrorData.from_record(r) for r in records[:limit]]

    def get_weakness_report(self, user_id: str, limit: int = 10) -> WeaknessReport:
        """Load this user's aggregates and run the weakness analysis over them."""
        return analyze_weaknesses(
            self.get_key_accuracy_for_user(user_id),
            self.get_char_error_patterns(user_id),
            self.get_problem_sequences(user_id, limit=limit),
            config=self.config,
            weak_key_limit=limit,
            slow_key_limit=limit,
            typo_limit=limit,
            sequence_limit=limit,
        )
