"""Tests for ErrorPatternManager against a temporary SQLite store."""

import logging
import random
import threading
from typing import List

import pytest

from db.database_manager import DatabaseManager
from db.exceptions import AggregateNotFoundError, ConstraintError, DatabaseError
from helpers.debug_util import DebugUtil
from models.analytics_config import AnalyticsConfig
from models.error_pattern import CharErrorSample, KeySample, SequenceSample
from models.error_pattern_manager import ErrorPatternManager
from models.keystroke_event import KeystrokeEvent

USER = "user-1"


@pytest.fixture
def manager(db_manager: DatabaseManager) -> ErrorPatternManager:
    return ErrorPatternManager(db_manager)


def press(manager: ErrorPatternManager, key: str, outcomes: List[bool], latency_ms: int = 100) -> None:
    for is_correct in outcomes:
        manager.upsert_key_accuracy(USER, key, is_correct, latency_ms)


def make_log(expected: str, typed: str) -> List[KeystrokeEvent]:
    return [
        KeystrokeEvent(
            timestamp=i * 100,
            expected_char=exp,
            actual_char=act,
            is_correct=exp == act,
            latency_ms=0 if i == 0 else 100,
        )
        for i, (exp, act) in enumerate(zip(expected, typed))
    ]


class TestKeyAccuracy:
    """Key accuracy aggregate."""

    def test_first_press_creates_row(self, manager: ErrorPatternManager) -> None:
        """The first sample inserts the entry."""
        record = manager.upsert_key_accuracy(USER, "a", True, 120)
        assert record.total_presses == 1
        assert record.correct_presses == 1
        assert record.avg_latency_ms == 120
        assert record.accuracy == 100

    def test_four_correct_one_wrong(self, manager: ErrorPatternManager) -> None:
        """Five presses of 'e' with one miss is 80% and qualifies as weak."""
        press(manager, "e", [True, True, True, True, False])
        record = manager.get_key_accuracy(USER, "e")
        assert record is not None
        assert record.total_presses == 5
        assert record.correct_presses == 4
        assert record.accuracy == 80

        weakest = manager.get_weakest_keys(USER)
        assert [k.key for k in weakest] == ["e"]
        assert weakest[0].accuracy == 80

    def test_below_threshold_excluded(self, manager: ErrorPatternManager) -> None:
        """Keys with fewer than min_samples presses are not ranked."""
        press(manager, "q", [False, False, False, False])
        press(manager, "e", [True] * 5)
        assert [k.key for k in manager.get_weakest_keys(USER)] == ["e"]
        assert [k.key for k in manager.get_weakest_keys(USER, min_samples=1)] == ["q", "e"]

    def test_running_mean(self, manager: ErrorPatternManager) -> None:
        """avg_latency_ms is the exact mean of every sample."""
        manager.upsert_key_accuracy(USER, "a", True, 100)
        assert manager.upsert_key_accuracy(USER, "a", True, 200).avg_latency_ms == 150
        assert manager.upsert_key_accuracy(USER, "a", True, 301).avg_latency_ms == 200

    def test_running_mean_rounds_half_up(self, manager: ErrorPatternManager) -> None:
        """100 and 101 average to 101."""
        manager.upsert_key_accuracy(USER, "a", True, 100)
        assert manager.upsert_key_accuracy(USER, "a", True, 101).avg_latency_ms == 101

    def test_weakest_ties_by_error_count(self, manager: ErrorPatternManager) -> None:
        """Equal accuracy puts the key with more errors first."""
        press(manager, "b", [True] * 4 + [False])
        press(manager, "a", [True] * 8 + [False] * 2)
        assert [k.key for k in manager.get_weakest_keys(USER)] == ["a", "b"]

    def test_slowest_keys(self, manager: ErrorPatternManager) -> None:
        """Highest average latency first."""
        press(manager, "a", [True] * 5, latency_ms=100)
        press(manager, "b", [True] * 5, latency_ms=300)
        assert [k.key for k in manager.get_slowest_keys(USER)] == ["b", "a"]

    def test_users_are_separate(self, manager: ErrorPatternManager) -> None:
        """Aggregates are scoped per user."""
        manager.upsert_key_accuracy(USER, "a", True, 100)
        manager.upsert_key_accuracy("other", "a", False, 100)
        assert manager.get_key_accuracy(USER, "a").correct_presses == 1  # type: ignore[union-attr]
        assert manager.get_key_accuracy("other", "a").correct_presses == 0  # type: ignore[union-attr]

    def test_counts_independent_of_order(self, manager: ErrorPatternManager) -> None:
        """The same presses applied in different orders give the same counts."""
        outcomes = [True, False, True, True, False, True, True, False]
        shuffled = list(outcomes)
        random.Random(7).shuffle(shuffled)

        orders = {"k1": outcomes, "k2": list(reversed(outcomes)), "k3": shuffled}
        for key_name, order in orders.items():
            press(manager, key_name, order)

        records = [manager.get_key_accuracy(USER, key_name) for key_name in orders]
        assert all(r is not None for r in records)
        assert {(r.total_presses, r.correct_presses) for r in records} == {(8, 5)}  # type: ignore[union-attr]

    def test_invalid_input(self, manager: ErrorPatternManager) -> None:
        """Empty users or keys and negative latencies are rejected."""
        with pytest.raises(ValueError):
            manager.upsert_key_accuracy("", "a", True, 100)
        with pytest.raises(ValueError):
            manager.upsert_key_accuracy(USER, "", True, 100)
        with pytest.raises(ValueError):
            manager.upsert_key_accuracy(USER, "a", True, -1)

    def test_limit(self, manager: ErrorPatternManager) -> None:
        """A non-positive limit returns nothing; a positive one truncates."""
        press(manager, "a", [True] * 5)
        press(manager, "b", [False] * 5)
        assert manager.get_weakest_keys(USER, limit=0) == []
        assert [k.key for k in manager.get_weakest_keys(USER, limit=1)] == ["b"]

    def test_concurrent_upserts(self, db_manager: DatabaseManager) -> None:
        """Concurrent writers on one key never lose an increment."""
        manager = ErrorPatternManager(db_manager)

        def writer() -> None:
            for _ in range(25):
                manager.upsert_key_accuracy(USER, "k", True, 100)

        threads = [threading.Thread(target=writer) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert manager.get_key_accuracy(USER, "k").total_presses == 100  # type: ignore[union-attr]


class TestCharErrorPatterns:
    """Confusion pair aggregate."""

    def test_increment(self, manager: ErrorPatternManager) -> None:
        """Counts accumulate per pair."""
        manager.upsert_char_error_pattern(USER, "e", "r")
        assert manager.upsert_char_error_pattern(USER, "e", "r").count == 2
        assert manager.upsert_char_error_pattern(USER, "e", "r", increment_by=3).count == 5

    def test_same_char_rejected(self, manager: ErrorPatternManager) -> None:
        """A pair of identical characters is not a confusion."""
        with pytest.raises(ValueError):
            manager.upsert_char_error_pattern(USER, "e", "e")

    def test_most_common_errors_for_char(self, manager: ErrorPatternManager) -> None:
        """Substitutions for one key, most frequent first."""
        manager.upsert_char_error_pattern(USER, "e", "r", increment_by=2)
        manager.upsert_char_error_pattern(USER, "e", "w", increment_by=5)
        manager.upsert_char_error_pattern(USER, "a", "s", increment_by=9)
        common = manager.get_most_common_errors_for_char(USER, "e")
        assert [(p.actual_char, p.count) for p in common] == [("w", 5), ("r", 2)]
        assert len(manager.get_most_common_errors_for_char(USER, "e", limit=1)) == 1
        assert [p.expected_char for p in manager.get_char_error_patterns(USER)] == ["a", "e", "e"]


class TestSequenceErrorPatterns:
    """n-gram aggregate."""

    def test_attempts_and_errors(self, manager: ErrorPatternManager) -> None:
        """Attempts, errors and mean latency accumulate."""
        manager.upsert_sequence_error_pattern(USER, "th", False, 100)
        record = manager.upsert_sequence_error_pattern(USER, "th", True, 300)
        assert record.total_attempts == 2
        assert record.error_count == 1
        assert record.error_rate == 50
        assert record.avg_latency_ms == 200

    def test_problem_sequences(self, manager: ErrorPatternManager) -> None:
        """Ranked by error rate, ties broken by error count, below-threshold excluded."""
        for had_error in [True, False, False, False, False]:
            manager.upsert_sequence_error_pattern(USER, "th", had_error, 100)
        for had_error in [True, True] + [False] * 8:
            manager.upsert_sequence_error_pattern(USER, "he", had_error, 100)
        for had_error in [True, True, True]:
            manager.upsert_sequence_error_pattern(USER, "qu", had_error, 100)

        ranked = manager.get_problem_sequences(USER)
        assert [(s.sequence, s.error_rate) for s in ranked] == [("he", 20), ("th", 20)]

    def test_slowest_sequences(self, manager: ErrorPatternManager) -> None:
        """Highest average latency first."""
        for _ in range(5):
            manager.upsert_sequence_error_pattern(USER, "ab", False, 100)
            manager.upsert_sequence_error_pattern(USER, "cd", False, 250)
        assert [s.sequence for s in manager.get_slowest_sequences(USER)] == ["cd", "ab"]


class TestBatchUpserts:
    """Batch application with log-and-continue semantics."""

    def test_failure_does_not_stop_batch(
        self, manager: ErrorPatternManager, db_manager: DatabaseManager, monkeypatch, caplog
    ) -> None:
        """A failing sample is logged and the rest are applied."""
        original_execute = db_manager.execute

        def flaky_execute(query, params=()):
            if "INSERT INTO key_accuracy" in query and params[1] == "z":
                raise ConstraintError("simulated failure")
            return original_execute(query, params)

        monkeypatch.setattr(db_manager, "execute", flaky_execute)
        samples = [
            KeySample(key="a", is_correct=True, latency_ms=100),
            KeySample(key="z", is_correct=True, latency_ms=100),
            KeySample(key="b", is_correct=False, latency_ms=100),
        ]
        with caplog.at_level(logging.ERROR, logger="models.error_pattern_manager"):
            result = manager.batch_upsert_key_accuracy(USER, samples)

        assert result.applied == 2
        assert result.failed == 1
        assert not result.ok
        assert "simulated failure" in result.errors[0]
        assert "Failed to apply key_accuracy sample" in caplog.text
        assert manager.get_key_accuracy(USER, "a") is not None
        assert manager.get_key_accuracy(USER, "b") is not None
        assert manager.get_key_accuracy(USER, "z") is None

    def test_invalid_sample_counted_as_failure(self, manager: ErrorPatternManager) -> None:
        """Validation errors are handled like storage errors."""
        result = manager.batch_upsert_char_error_patterns(
            USER,
            [CharErrorSample(expected_char="a", actual_char="a"), CharErrorSample(expected_char="a", actual_char="s")],
        )
        assert (result.applied, result.failed) == (1, 1)

    def test_sequence_batch(self, manager: ErrorPatternManager) -> None:
        """Each sequence sample is one attempt."""
        result = manager.batch_upsert_sequence_error_patterns(
            USER, [SequenceSample(sequence="th", had_error=False, latency_ms=90)] * 3
        )
        assert result.applied == 3 and result.ok
        assert manager.get_sequence_error_pattern(USER, "th").total_attempts == 3  # type: ignore[union-attr]


class TestRecordSession:
    """Folding a completed session into all aggregates."""

    def test_record_session(self, manager: ErrorPatternManager) -> None:
        """'the' typed as 'txe' updates keys, pairs and sequences."""
        result = manager.record_session(USER, make_log("the", "txe"))
        # 3 keys + 1 confusion pair + 2 bigrams
        assert result.applied == 6
        assert result.ok

        assert manager.get_key_accuracy(USER, "h").correct_presses == 0  # type: ignore[union-attr]
        assert [(p.expected_char, p.actual_char, p.count) for p in manager.get_char_error_patterns(USER)] == [
            ("h", "x", 1)
        ]
        th = manager.get_sequence_error_pattern(USER, "th")
        he = manager.get_sequence_error_pattern(USER, "he")
        assert th is not None and th.error_count == 1
        assert he is not None and he.error_count == 0

    def test_repeated_sequence_is_one_attempt(self, manager: ErrorPatternManager) -> None:
        """A bigram typed twice in one session counts as a single attempt."""
        manager.record_session(USER, make_log("abab", "abxb"))
        ab = manager.get_sequence_error_pattern(USER, "ab")
        assert ab is not None
        assert ab.total_attempts == 1
        assert ab.error_count == 0
        ba = manager.get_sequence_error_pattern(USER, "ba")
        assert ba is not None and ba.error_count == 1

    def test_empty_session(self, manager: ErrorPatternManager) -> None:
        """Nothing to record for an empty log."""
        assert manager.record_session(USER, []).total == 0

    def test_sequence_size_from_config(self, db_manager: DatabaseManager) -> None:
        """Trigram tracking follows the configured size."""
        manager = ErrorPatternManager(db_manager, config=AnalyticsConfig(sequence_size=3))
        manager.record_session(USER, make_log("abcd", "abcd"))
        assert [s.sequence for s in manager.get_sequence_error_patterns_for_user(USER)] == ["abc", "bcd"]


class TestWeaknessReport:
    """Report assembled from stored aggregates."""

    def test_report(self, manager: ErrorPatternManager) -> None:
        """The weakest key is named as the top weakness."""
        press(manager, "e", [True] * 3 + [False] * 2, latency_ms=200)
        press(manager, "a", [True] * 5, latency_ms=100)
        manager.upsert_char_error_pattern(USER, "e", "r", increment_by=2)

        report = manager.get_weakness_report(USER)
        assert [k.key for k in report.weakest_keys] == ["e", "a"]
        assert report.common_typos[0].expected == "e"
        assert report.summary.keys_needing_work == 1
        assert report.summary.overall_accuracy == 80
        assert report.summary.avg_latency_ms == 150
        assert report.summary.top_weakness == 'Key "E" at 60% accuracy'


class TestReadBack:
    """Upserts whose row cannot be read back."""

    def test_key_accuracy_missing_after_upsert(self, manager: ErrorPatternManager, monkeypatch) -> None:
        """A vanished key row raises instead of returning None."""
        monkeypatch.setattr(manager, "get_key_accuracy", lambda user_id, key: None)
        with pytest.raises(AggregateNotFoundError) as excinfo:
            manager.upsert_key_accuracy(USER, "a", True, 100)
        assert excinfo.value.table == "key_accuracy"
        assert isinstance(excinfo.value, DatabaseError)

    def test_char_error_missing_after_upsert(
        self, manager: ErrorPatternManager, db_manager: DatabaseManager, monkeypatch
    ) -> None:
        """A vanished confusion pair row raises AggregateNotFoundError."""
        monkeypatch.setattr(db_manager, "fetchone", lambda query, params=(): None)
        with pytest.raises(AggregateNotFoundError):
            manager.upsert_char_error_pattern(USER, "e", "r")

    def test_sequence_missing_after_upsert(self, manager: ErrorPatternManager, monkeypatch) -> None:
        """A vanished sequence row raises AggregateNotFoundError."""
        monkeypatch.setattr(manager, "get_sequence_error_pattern", lambda user_id, sequence: None)
        with pytest.raises(AggregateNotFoundError):
            manager.upsert_sequence_error_pattern(USER, "th", False, 100)

    def test_read_back_failure_counted_in_batch(self, manager: ErrorPatternManager, monkeypatch) -> None:
        """Batches treat a failed read-back like any storage error."""
        monkeypatch.setattr(manager, "get_key_accuracy", lambda user_id, key: None)
        result = manager.batch_upsert_key_accuracy(USER, [KeySample(key="a", is_correct=True, latency_ms=10)])
        assert (result.applied, result.failed) == (0, 1)


class TestDebugOutput:
    """Loud DebugUtil output from the manager."""

    def test_batch_failure_printed(self, db_manager: DatabaseManager, capsys) -> None:
        """Skipped samples are echoed when debugging loudly."""
        manager = ErrorPatternManager(db_manager, debug_util=DebugUtil("loud"))
        manager.batch_upsert_char_error_patterns(USER, [CharErrorSample(expected_char="a", actual_char="a")])
        out = capsys.readouterr().out
        assert "char_error upsert skipped" in out
        assert "ValueError" in out
