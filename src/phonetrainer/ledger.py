"""Per-phoneme mastery ledger with per-key serialized updates."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Mapping, Sequence
from contextlib import ExitStack
from dataclasses import dataclass
from datetime import datetime
from types import MappingProxyType
from typing import Protocol

from .errors import ValidationError
from .models import (
    RECENT_ATTEMPT_LIMIT,
    WORD_COMPLETION_THRESHOLD,
    AttemptRecord,
    PhonemePracticeData,
    PracticeKey,
    RecentAttempt,
    WordProgress,
)

logger = logging.getLogger(__name__)

DEFAULT_MASTERY_THRESHOLD = 0.9
DEFAULT_MIN_ATTEMPTS_FOR_MASTERY = 1

Snapshot = Mapping[PracticeKey, PhonemePracticeData]
CommitFn = Callable[[PhonemePracticeData], None]
WordCommitFn = Callable[[WordProgress, Sequence[PhonemePracticeData]], None]
WordCommitOneFn = Callable[[WordProgress], None]


class LedgerRepository(Protocol):
    """Persistence boundary for ledger snapshots."""

    def load(self) -> dict[PracticeKey, PhonemePracticeData]: ...

    def save(self, snapshot: Snapshot) -> None: ...


@dataclass(frozen=True)
class MasteryPolicy:
    """When an entry counts as mastered.

    An entry becomes mastered once its best score reaches ``mastery_threshold``
    and it has at least ``min_attempts_for_mastery`` recorded attempts. A word
    is completed once one whole-word attempt scores ``word_completion_threshold``.
    """

    mastery_threshold: float = DEFAULT_MASTERY_THRESHOLD
    min_attempts_for_mastery: int = DEFAULT_MIN_ATTEMPTS_FOR_MASTERY
    word_completion_threshold: float = WORD_COMPLETION_THRESHOLD

    def __post_init__(self) -> None:
        threshold = self.mastery_threshold
        if isinstance(threshold, bool) or not isinstance(threshold, int | float) or not 0.0 <= threshold <= 1.0:
            raise ValidationError(f"mastery_threshold must lie in [0, 1], got {threshold!r}.")
        minimum = self.min_attempts_for_mastery
        if isinstance(minimum, bool) or not isinstance(minimum, int) or minimum < 1:
            raise ValidationError(f"min_attempts_for_mastery must be a positive integer, got {minimum!r}.")
        completion = self.word_completion_threshold
        if isinstance(completion, bool) or not isinstance(completion, int | float) or not 0.0 <= completion <= 1.0:
            raise ValidationError(f"word_completion_threshold must lie in [0, 1], got {completion!r}.")

    def is_mastered(self, best_score: float, total_attempts: int) -> bool:
        return best_score >= self.mastery_threshold and total_attempts >= self.min_attempts_for_mastery

    def is_completed(self, score: float) -> bool:
        return score >= self.word_completion_threshold


def _check_existing(existing: PhonemePracticeData, key: PracticeKey) -> None:
    """Reject stored state that would break the ledger's monotonic invariants."""
    if existing.key != key:
        raise ValidationError(f"Entry {existing.key} cannot absorb an attempt for {key}.")
    if existing.total_attempts < 0:
        raise ValidationError(f"Entry {key} has negative total_attempts ({existing.total_attempts}).")
    if existing.total_attempts == 0:
        raise ValidationError(f"Entry {key} exists without any recorded attempts.")
    if not 0.0 <= existing.best_score <= 1.0:
        raise ValidationError(f"Entry {key} has best_score outside [0, 1] ({existing.best_score}).")


def apply_attempt(
    existing: PhonemePracticeData | None, attempt: AttemptRecord, policy: MasteryPolicy | None = None
) -> PhonemePracticeData:
    """Fold one attempt into an entry and return the new entry."""
    policy = policy or MasteryPolicy()
    recent = RecentAttempt(
        timestamp=attempt.timestamp,
        score=attempt.score,
        reference_phoneme=attempt.key.phoneme,
        predicted_phoneme=attempt.predicted,
        feedback=attempt.feedback,
    )

    if existing is None:
        return PhonemePracticeData(
            phoneme=attempt.key.phoneme,
            word=attempt.key.word,
            best_score=attempt.score,
            total_attempts=1,
            mastered=policy.is_mastered(attempt.score, 1),
            last_attempted=attempt.timestamp,
            recent_attempts=(recent,),
        )

    _check_existing(existing, attempt.key)
    best_score = max(existing.best_score, attempt.score)
    total_attempts = existing.total_attempts + 1
    return PhonemePracticeData(
        phoneme=existing.phoneme,
        word=existing.word,
        best_score=best_score,
        total_attempts=total_attempts,
        mastered=existing.mastered or policy.is_mastered(best_score, total_attempts),
        # Recency follows recording order, even when the new score is lower.
        last_attempted=attempt.timestamp,
        recent_attempts=((recent,) + existing.recent_attempts)[:RECENT_ATTEMPT_LIMIT],
    )


def merge_entries(current: PhonemePracticeData | None, incoming: PhonemePracticeData) -> PhonemePracticeData:
    """Combine two views of the same entry without regressing either one.

    Used when importing a snapshot: counts and best score take the larger
    value, mastery is sticky, and recency is the later of the two timestamps.
    """
    _check_existing(incoming, incoming.key)
    if current is None:
        return incoming
    _check_existing(current, incoming.key)

    if current.last_attempted is None:
        last_attempted = incoming.last_attempted
    elif incoming.last_attempted is None:
        last_attempted = current.last_attempted
    else:
        last_attempted = max(current.last_attempted, incoming.last_attempted)

    history = {(item.timestamp, item.score): item for item in current.recent_attempts + incoming.recent_attempts}
    recent = tuple(sorted(history.values(), key=lambda item: item.timestamp, reverse=True))[:RECENT_ATTEMPT_LIMIT]
    return PhonemePracticeData(
        phoneme=current.phoneme,
        word=current.word,
        best_score=max(current.best_score, incoming.best_score),
        total_attempts=max(current.total_attempts, incoming.total_attempts),
        mastered=current.mastered or incoming.mastered,
        last_attempted=last_attempted,
        recent_attempts=recent,
    )


def update(
    snapshot: Snapshot, attempt: AttemptRecord, policy: MasteryPolicy | None = None
) -> dict[PracticeKey, PhonemePracticeData]:
    """Return a new snapshot with the attempt folded in; the input is not mutated."""
    updated = dict(snapshot)
    updated[attempt.key] = apply_attempt(snapshot.get(attempt.key), attempt, policy)
    return updated


def _check_word(existing: WordProgress, word: str) -> None:
    if existing.word != word:
        raise ValidationError(f"Word progress for {existing.word!r} cannot absorb an attempt for {word!r}.")
    if existing.total_attempts <= 0:
        raise ValidationError(f"Word progress for {word!r} has no recorded attempts.")
    if not 0.0 <= existing.best_score <= 1.0 or not 0.0 <= existing.last_score <= 1.0:
        raise ValidationError(f"Word progress for {word!r} has a score outside [0, 1].")


def apply_word_attempt(
    existing: WordProgress | None,
    word: str,
    score: float,
    timestamp: datetime,
    policy: MasteryPolicy | None = None,
) -> WordProgress:
    """Fold one whole-word attempt into the word's progress record."""
    policy = policy or MasteryPolicy()
    if existing is None:
        return WordProgress(
            word=word,
            best_score=score,
            total_attempts=1,
            completed=policy.is_completed(score),
            last_score=score,
            last_attempted=timestamp,
        )
    _check_word(existing, word)
    return WordProgress(
        word=existing.word,
        best_score=max(existing.best_score, score),
        total_attempts=existing.total_attempts + 1,
        completed=existing.completed or policy.is_completed(score),
        last_score=score,
        last_attempted=timestamp,
    )


def merge_word_progress(current: WordProgress | None, incoming: WordProgress) -> WordProgress:
    """Combine two views of one word's progress without regressing either one."""
    _check_word(incoming, incoming.word)
    if current is None:
        return incoming
    _check_word(current, incoming.word)
    # The side with more attempts carries the latest score.
    latest = incoming if incoming.total_attempts > current.total_attempts else current
    stamps = [stamp for stamp in (current.last_attempted, incoming.last_attempted) if stamp is not None]
    return WordProgress(
        word=current.word,
        best_score=max(current.best_score, incoming.best_score),
        total_attempts=max(current.total_attempts, incoming.total_attempts),
        completed=current.completed or incoming.completed,
        last_score=latest.last_score,
        last_attempted=max(stamps) if stamps else None,
    )


class MasteryLedger:
    """Thread-safe holder of practice entries keyed by phoneme-in-word."""

    def __init__(
        self,
        entries: Snapshot | None = None,
        policy: MasteryPolicy | None = None,
        words: Mapping[str, WordProgress] | None = None,
    ) -> None:
        self.policy = policy or MasteryPolicy()
        self._entries: dict[PracticeKey, PhonemePracticeData] = {}
        self._words: dict[str, WordProgress] = {}
        self._key_locks: dict[PracticeKey, threading.Lock] = {}
        self._word_locks: dict[str, threading.Lock] = {}
        self._guard = threading.Lock()
        for key, entry in (entries or {}).items():
            if entry.key != key:
                raise ValidationError(f"Snapshot key {key} does not match entry {entry.key}.")
            _check_existing(entry, key)
            self._entries[key] = entry
        for word, progress in (words or {}).items():
            _check_word(progress, word)
            self._words[word] = progress

    @classmethod
    def from_repository(cls, repository: LedgerRepository, policy: MasteryPolicy | None = None) -> MasteryLedger:
        """Create a ledger from a repository snapshot."""
        return cls(repository.load(), policy)

    def _lock_for(self, key: PracticeKey) -> threading.Lock:
        with self._guard:
            lock = self._key_locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._key_locks[key] = lock
            return lock

    def _lock_for_word(self, word: str) -> threading.Lock:
        with self._guard:
            lock = self._word_locks.get(word)
            if lock is None:
                lock = threading.Lock()
                self._word_locks[word] = lock
            return lock

    def record(self, attempt: AttemptRecord, on_commit: CommitFn | None = None) -> PhonemePracticeData:
        """Apply one attempt under its key's lock.

        ``on_commit`` runs inside the same critical section, before the
        in-memory entry is replaced. If it raises, the ledger is unchanged.
        """
        with self._lock_for(attempt.key):
            with self._guard:
                existing = self._entries.get(attempt.key)
            entry = apply_attempt(existing, attempt, self.policy)
            if on_commit is not None:
                on_commit(entry)
            with self._guard:
                self._entries[attempt.key] = entry
        if entry.mastered and (existing is None or not existing.mastered):
            logger.info("Mastered %s in %s after %d attempts", entry.phoneme, entry.word, entry.total_attempts)
        logger.debug(
            "Recorded attempt for %s/%s: score=%.3f best=%.3f total=%d",
            entry.phoneme,
            entry.word,
            attempt.score,
            entry.best_score,
            entry.total_attempts,
        )
        return entry

    def merge(self, incoming: PhonemePracticeData, on_commit: CommitFn | None = None) -> PhonemePracticeData:
        """Merge an externally loaded entry under its key's lock."""
        key = incoming.key
        with self._lock_for(key):
            with self._guard:
                existing = self._entries.get(key)
            entry = merge_entries(existing, incoming)
            if on_commit is not None:
                on_commit(entry)
            with self._guard:
                self._entries[key] = entry
        return entry

    def record_word(
        self,
        word: str,
        score: float,
        timestamp: datetime,
        attempts: Sequence[AttemptRecord],
        on_commit: WordCommitFn | None = None,
    ) -> tuple[WordProgress, tuple[PhonemePracticeData, ...]]:
        """Apply a whole-word attempt and its per-phoneme attempts as one unit.

        The word lock is taken first, then every phoneme key lock in key order.
        ``on_commit`` receives the new word progress and phoneme entries before
        any of them is visible; if it raises, nothing is applied.
        """
        for attempt in attempts:
            if attempt.key.word != word:
                raise ValidationError(f"Attempt for {attempt.key} does not belong to word {word!r}.")
        keys = sorted({attempt.key for attempt in attempts})

        with ExitStack() as stack:
            stack.enter_context(self._lock_for_word(word))
            for key in keys:
                stack.enter_context(self._lock_for(key))
            with self._guard:
                previous_word = self._words.get(word)
                previous = {key: self._entries.get(key) for key in keys}

            staged: dict[PracticeKey, PhonemePracticeData] = {}
            for attempt in attempts:
                current = staged.get(attempt.key) or previous[attempt.key]
                staged[attempt.key] = apply_attempt(current, attempt, self.policy)
            progress = apply_word_attempt(previous_word, word, score, timestamp, self.policy)
            entries = tuple(staged[key] for key in dict.fromkeys(attempt.key for attempt in attempts))

            if on_commit is not None:
                on_commit(progress, entries)
            with self._guard:
                self._words[word] = progress
                self._entries.update(staged)

        if progress.completed and (previous_word is None or not previous_word.completed):
            logger.info("Completed word %s after %d attempts", word, progress.total_attempts)
        for entry in entries:
            existing = previous[entry.key]
            if entry.mastered and (existing is None or not existing.mastered):
                logger.info("Mastered %s in %s after %d attempts", entry.phoneme, entry.word, entry.total_attempts)
        logger.debug("Recorded word attempt for %s: score=%.3f phonemes=%d", word, score, len(entries))
        return progress, entries

    def merge_word(self, incoming: WordProgress, on_commit: WordCommitOneFn | None = None) -> WordProgress:
        """Merge externally loaded word progress under the word's lock."""
        with self._lock_for_word(incoming.word):
            with self._guard:
                existing = self._words.get(incoming.word)
            progress = merge_word_progress(existing, incoming)
            if on_commit is not None:
                on_commit(progress)
            with self._guard:
                self._words[incoming.word] = progress
        return progress

    def get_word(self, word: str) -> WordProgress | None:
        with self._guard:
            return self._words.get(word)

    def word_snapshot(self) -> Mapping[str, WordProgress]:
        """Return a read-only copy of all word progress records."""
        with self._guard:
            return MappingProxyType(dict(self._words))

    def get(self, key: PracticeKey) -> PhonemePracticeData | None:
        with self._guard:
            return self._entries.get(key)

    def snapshot(self) -> Mapping[PracticeKey, PhonemePracticeData]:
        """Return a read-only copy of all entries."""
        with self._guard:
            return MappingProxyType(dict(self._entries))

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        with self._guard:
            return key in self._entries
