"""Core domain models for phoneme practice tracking."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Final, Literal

PLACEHOLDER = "_"

CORRECT: Final = "correct"
INCORRECT: Final = "incorrect"
MISSING: Final = "missing"
POSITION_STATUSES = frozenset({CORRECT, INCORRECT, MISSING})

PositionStatus = Literal["correct", "incorrect", "missing"]

SUBSTITUTION = "substitution"
DELETION = "deletion"
INSERTION = "insertion"
MISPRONUNCIATION_KINDS = frozenset({SUBSTITUTION, DELETION, INSERTION})

RECENT_ATTEMPT_LIMIT = 10
WORD_COMPLETION_THRESHOLD = 0.8


@dataclass(frozen=True, order=True)
class PracticeKey:
    """Identity of one practiced phoneme inside one word."""

    phoneme: str
    word: str


@dataclass(frozen=True)
class AttemptRecord:
    """One scored, timestamped practice attempt."""

    key: PracticeKey
    score: float
    timestamp: datetime
    statuses: tuple[PositionStatus, ...]
    predicted: str | None = None
    feedback: str = ""


@dataclass(frozen=True)
class RecentAttempt:
    """Score history item kept on a practice entry.

    ``predicted_phoneme`` is what the speaker produced in place of
    ``reference_phoneme``; ``None`` when the sound was dropped or was not recorded.
    """

    timestamp: datetime
    score: float
    reference_phoneme: str | None = None
    predicted_phoneme: str | None = None
    feedback: str = ""


@dataclass(frozen=True)
class PhonemePracticeData:
    """Aggregate practice statistics for one phoneme-in-word."""

    phoneme: str
    word: str
    best_score: float
    total_attempts: int
    mastered: bool
    last_attempted: datetime | None
    recent_attempts: tuple[RecentAttempt, ...] = ()

    @property
    def key(self) -> PracticeKey:
        return PracticeKey(phoneme=self.phoneme, word=self.word)


@dataclass(frozen=True)
class WordProgress:
    """Whole-word practice record.

    ``completed`` becomes true once any attempt reaches the completion
    threshold and never reverts. ``last_score`` is the most recent score.
    """

    word: str
    best_score: float
    total_attempts: int
    completed: bool
    last_score: float
    last_attempted: datetime | None


@dataclass(frozen=True)
class Mispronunciation:
    """Discrete error event reported by the analysis service."""

    kind: str
    expected: str
    actual: str | None
    confidence: float
    position: int | None = None


@dataclass(frozen=True)
class AnalysisResult:
    """Normalized result of one remote pronunciation analysis."""

    reference_phonemes: tuple[str, ...]
    predicted_phonemes: tuple[str, ...]
    score: float
    confidence: float = 1.0
    aligned_reference: tuple[str, ...] | None = None
    aligned_predicted: tuple[str, ...] | None = None
    mispronunciations: tuple[Mispronunciation, ...] = field(default_factory=tuple)
    feedback: str = ""

    def alignment(self) -> tuple[tuple[str, ...], tuple[str, ...]]:
        """Return the preferred (reference, predicted) pair, aligned when available."""
        if self.aligned_reference is not None and self.aligned_predicted is not None:
            return (self.aligned_reference, self.aligned_predicted)
        return (self.reference_phonemes, self.predicted_phonemes)
