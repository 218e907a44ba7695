"""Weakness report built from the aggregate tables.

Consumers that pick practice content read one ``WeaknessReport`` instead of
issuing the individual ranked queries. The analysis is pure: it takes already
loaded records, so it can run on data from any store.
"""

from __future__ import annotations

from typing import List, Optional, Sequence

from pydantic import BaseModel, Field

from models.analytics_config import AnalyticsConfig
from models.error_pattern import (
    CharErrorPattern,
    KeyAccuracyRecord,
    SequenceErrorData,
    WeakKey,
)
from models.typing_metrics import round_half_up

KEY_LABELS = {" ": "Space", "\t": "Tab", "\n": "Enter"}


class CommonTypo(BaseModel):
    expected: str
    actual: str
    count: int


class WeaknessSummary(BaseModel):
    """Headline figures over keys with enough samples to be meaningful."""

    overall_accuracy: int = 0
    avg_latency_ms: int = 0
    total_keys_tracked: int = 0
    keys_needing_work: int = 0
    sequences_needing_work: int = 0
    top_weakness: Optional[str] = None


class WeaknessReport(BaseModel):
    weakest_keys: List[WeakKey] = Field(default_factory=list)
    slowest_keys: List[WeakKey] = Field(default_factory=list)
    common_typos: List[CommonTypo] = Field(default_factory=list)
    problem_sequences: List[SequenceErrorData] = Field(default_factory=list)
    summary: WeaknessSummary = Field(default_factory=WeaknessSummary)


def format_key_label(key: str) -> str:
    """Human-readable key name: whitespace keys are spelled out, letters upper-cased."""
    return KEY_LABELS.get(key, key.upper())


def analyze_weaknesses(
    keys: Sequence[KeyAccuracyRecord],
    error_patterns: Sequence[CharErrorPattern],
    sequences: Sequence[SequenceErrorData],
    config: Optional[AnalyticsConfig] = None,
    weak_key_limit: int = 10,
    slow_key_limit: int = 10,
    typo_limit: int = 10,
    sequence_limit: int = 10,
) -> WeaknessReport:
    """Rank weak keys, slow keys, typos and problem sequences and summarize them.

    Args:
        keys: Key accuracy aggregates for one user; entries below
            ``config.min_samples`` presses are ignored.
        error_patterns: Confusion pairs for the same user.
        sequences: Problem sequences, already ranked (e.g. from
            ``ErrorPatternManager.get_problem_sequences``).
        config: Thresholds; defaults to ``AnalyticsConfig()``.

    Returns:
        A WeaknessReport. With no significant keys the summary reports zeros
        and may still name a problem sequence as the top weakness.
    """
    cfg = config or AnalyticsConfig()
    significant = [k for k in keys if k.total_presses >= cfg.min_samples]

    weakest = sorted(significant, key=lambda r: (r.accuracy, -r.error_count, r.key))[: max(0, weak_key_limit)]
    slowest = sorted(significant, key=lambda r: (-r.avg_latency_ms, r.key))[: max(0, slow_key_limit)]
    typos = sorted(error_patterns, key=lambda p: (-p.count, p.expected_char, p.actual_char))[: max(0, typo_limit)]
    problem_sequences = list(sequences[: max(0, sequence_limit)])

    return WeaknessReport(
        weakest_keys=[WeakKey.from_record(r) for r in weakest],
        slowest_keys=[WeakKey.from_record(r) for r in slowest],
        common_typos=[CommonTypo(expected=p.expected_char, actual=p.actual_char, count=p.count) for p in typos],
        problem_sequences=problem_sequences,
        summary=_summarize(significant, problem_sequences, cfg),
    )


def _summarize(
    significant: Sequence[KeyAccuracyRecord],
    problem_sequences: Sequence[SequenceErrorData],
    cfg: AnalyticsConfig,
) -> WeaknessSummary:
    sequences_needing_work = sum(1 for s in problem_sequences if s.error_rate >= cfg.high_error_rate_threshold)
    sequence_weakness: Optional[str] = None
    if sequences_needing_work and problem_sequences:
        worst = problem_sequences[0]
        sequence_weakness = f'Sequence "{worst.sequence}" at {worst.error_rate}% error rate'

    if not significant:
        return WeaknessSummary(sequences_needing_work=sequences_needing_work, top_weakness=sequence_weakness)

    total_presses = sum(k.total_presses for k in significant)
    total_correct = sum(k.correct_presses for k in significant)
    # press-weighted mean of the per-key running means
    total_latency = sum(k.avg_latency_ms * k.total_presses for k in significant)

    needing_work = [k for k in significant if k.correct_presses * 100 < cfg.weak_accuracy_threshold * k.total_presses]

    top_weakness = sequence_weakness
    if needing_work:
        worst_key = min(significant, key=lambda k: k.correct_presses / k.total_presses)
        top_weakness = f'Key "{format_key_label(worst_key.key)}" at {worst_key.accuracy}% accuracy'

    return WeaknessSummary(
        overall_accuracy=round_half_up(total_correct * 100 / total_presses),
        avg_latency_ms=round_half_up(total_latency / total_presses),
        total_keys_tracked=len(significant),
        keys_needing_work=len(needing_work),
        sequences_needing_work=sequences_needing_work,
        top_weakness=top_weakness,
    )
