"""Read-only dashboard views derived from a ledger snapshot."""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass, field

from .errors import ValidationError
from .models import PhonemePracticeData, PracticeKey, WordProgress

DEFAULT_LIMIT = 5

Snapshot = Mapping[PracticeKey, PhonemePracticeData]


@dataclass(frozen=True)
class DashboardStats:
    """Aggregate progress metrics across all practiced phonemes."""

    total: int
    mastered: int
    total_attempts_sum: int
    average_best_score: float
    completion_rate_percent: float


@dataclass(frozen=True)
class WordStats:
    """Aggregate progress metrics across practiced words."""

    total: int = 0
    completed: int = 0
    total_attempts_sum: int = 0
    average_best_score: float = 0.0


@dataclass(frozen=True)
class Dashboard:
    """View model for the progress dashboard."""

    stats: DashboardStats
    needs_practice: tuple[PhonemePracticeData, ...]
    recently_practiced: tuple[PhonemePracticeData, ...]
    word_stats: WordStats = field(default_factory=WordStats)
    words_to_practice: tuple[WordProgress, ...] = ()


def _check_limit(limit: int) -> None:
    if isinstance(limit, bool) or not isinstance(limit, int) or limit < 0:
        raise ValidationError(f"limit must be a non-negative integer, got {limit!r}.")


def needs_practice(snapshot: Snapshot, limit: int = DEFAULT_LIMIT) -> tuple[PhonemePracticeData, ...]:
    """Return unmastered entries, weakest first."""
    _check_limit(limit)
    pending = [entry for entry in snapshot.values() if not entry.mastered]
    pending.sort(key=lambda entry: (entry.best_score, entry.total_attempts, entry.key))
    return tuple(pending[:limit])


def recently_practiced(snapshot: Snapshot, limit: int = DEFAULT_LIMIT) -> tuple[PhonemePracticeData, ...]:
    """Return attempted entries, most recent first."""
    _check_limit(limit)
    attempted = [entry for entry in snapshot.values() if entry.last_attempted is not None]
    # Stable sorts: key ascending first, then recency descending.
    attempted.sort(key=lambda entry: entry.key)
    attempted.sort(key=lambda entry: entry.last_attempted, reverse=True)  # type: ignore[arg-type, return-value]
    return tuple(attempted[:limit])


def aggregate_stats(snapshot: Snapshot) -> DashboardStats:
    """Summarize the whole ledger; averages are 0.0 for an empty snapshot."""
    entries = list(snapshot.values())
    total = len(entries)
    mastered = sum(1 for entry in entries if entry.mastered)
    if total == 0:
        return DashboardStats(
            total=0,
            mastered=0,
            total_attempts_sum=0,
            average_best_score=0.0,
            completion_rate_percent=0.0,
        )
    return DashboardStats(
        total=total,
        mastered=mastered,
        total_attempts_sum=sum(entry.total_attempts for entry in entries),
        average_best_score=math.fsum(entry.best_score for entry in entries) / total,
        completion_rate_percent=100.0 * mastered / total,
    )


def words_to_practice(words: Mapping[str, WordProgress], limit: int = DEFAULT_LIMIT) -> tuple[WordProgress, ...]:
    """Return words not yet completed, weakest first."""
    _check_limit(limit)
    pending = [progress for progress in words.values() if not progress.completed]
    pending.sort(key=lambda progress: (progress.best_score, progress.total_attempts, progress.word))
    return tuple(pending[:limit])


def aggregate_word_stats(words: Mapping[str, WordProgress]) -> WordStats:
    """Summarize word progress; the average is 0.0 when no word was practiced."""
    records = list(words.values())
    if not records:
        return WordStats()
    return WordStats(
        total=len(records),
        completed=sum(1 for progress in records if progress.completed),
        total_attempts_sum=sum(progress.total_attempts for progress in records),
        average_best_score=math.fsum(progress.best_score for progress in records) / len(records),
    )


def build_dashboard(
    snapshot: Snapshot, limit: int = DEFAULT_LIMIT, words: Mapping[str, WordProgress] | None = None
) -> Dashboard:
    """Build the full dashboard view model from one snapshot."""
    words = words or {}
    return Dashboard(
        stats=aggregate_stats(snapshot),
        needs_practice=needs_practice(snapshot, limit),
        recently_practiced=recently_practiced(snapshot, limit),
        word_stats=aggregate_word_stats(words),
        words_to_practice=words_to_practice(words, limit),
    )
