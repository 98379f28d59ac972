"""Construction and validation of practice attempt records."""

from __future__ import annotations

import math
from collections.abc import Iterable
from datetime import UTC, datetime

from .errors import ValidationError
from .models import PLACEHOLDER, POSITION_STATUSES, AttemptRecord, PositionStatus, PracticeKey


def make_key(phoneme: str, word: str) -> PracticeKey:
    """Build a practice key from raw phoneme and word text."""
    if not isinstance(phoneme, str) or not isinstance(word, str):
        raise ValidationError("Practice key phoneme and word must be strings.")
    phoneme = phoneme.strip()
    word = word.strip()
    if not phoneme or phoneme == PLACEHOLDER:
        raise ValidationError(f"Invalid phoneme for practice key: {phoneme!r}.")
    if not word:
        raise ValidationError("Practice key word must not be empty.")
    return PracticeKey(phoneme=phoneme, word=word)


def validate_score(score: object, label: str = "score") -> float:
    """Return score as float when it is a real number in [0, 1]."""
    if isinstance(score, bool) or not isinstance(score, int | float):
        raise ValidationError(f"{label} must be a number, got {type(score).__name__}.")
    value = float(score)
    if math.isnan(value) or not 0.0 <= value <= 1.0:
        raise ValidationError(f"{label} must lie in [0, 1], got {score!r}.")
    return value


def normalize_timestamp(timestamp: datetime | None) -> datetime:
    """Default to now and treat naive datetimes as UTC."""
    if timestamp is None:
        return datetime.now(UTC)
    if not isinstance(timestamp, datetime):
        raise ValidationError(f"timestamp must be a datetime, got {type(timestamp).__name__}.")
    if timestamp.tzinfo is None:
        return timestamp.replace(tzinfo=UTC)
    return timestamp


def build_attempt(
    key: PracticeKey | tuple[str, str],
    score: float,
    statuses: Iterable[str],
    timestamp: datetime | None = None,
    predicted: str | None = None,
    feedback: str = "",
) -> AttemptRecord:
    """Package one practice attempt into an immutable record.

    Out-of-range scores are rejected rather than clamped so a corrupted value
    can never raise an entry's best score.
    """
    if isinstance(key, PracticeKey):
        practice_key = make_key(key.phoneme, key.word)
    else:
        try:
            phoneme, word = key
        except (TypeError, ValueError) as exc:
            raise ValidationError("Practice key must be a PracticeKey or a (phoneme, word) pair.") from exc
        practice_key = make_key(phoneme, word)

    checked: list[PositionStatus] = []
    for status in statuses:
        if status not in POSITION_STATUSES:
            raise ValidationError(f"Unknown position status: {status!r}.")
        checked.append(status)  # type: ignore[arg-type]

    return AttemptRecord(
        key=practice_key,
        score=validate_score(score),
        timestamp=normalize_timestamp(timestamp),
        statuses=tuple(checked),
        predicted=_predicted_symbol(predicted),
        feedback=feedback if isinstance(feedback, str) else str(feedback),
    )


def _predicted_symbol(predicted: object) -> str | None:
    """Normalize the produced symbol; blanks and the gap placeholder mean nothing was produced."""
    if predicted is None:
        return None
    if not isinstance(predicted, str):
        raise ValidationError(f"Predicted phoneme must be a string, got {type(predicted).__name__}.")
    predicted = predicted.strip()
    if not predicted or predicted == PLACEHOLDER:
        return None
    return predicted
