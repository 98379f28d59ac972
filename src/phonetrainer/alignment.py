"""Position-wise classification of aligned phoneme sequences."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from .errors import AlignmentMismatchError
from .models import CORRECT, INCORRECT, MISSING, PLACEHOLDER, AnalysisResult, PositionStatus


@dataclass(frozen=True)
class AlignmentSummary:
    """Status counts for one classified alignment."""

    correct: int
    incorrect: int
    missing: int

    @property
    def total(self) -> int:
        return self.correct + self.incorrect + self.missing

    @property
    def accuracy(self) -> float:
        """Share of positions classified correct, 0.0 for an empty alignment."""
        if self.total == 0:
            return 0.0
        return self.correct / self.total


def classify(
    reference: Sequence[str], predicted: Sequence[str], placeholder: str = PLACEHOLDER
) -> tuple[PositionStatus, ...]:
    """Classify each aligned position as correct, incorrect, or missing.

    Runs over ``max(len(reference), len(predicted))`` positions. A position past
    the end of either sequence is missing, as is a position where both sides
    hold the gap placeholder. Equal non-placeholder symbols are correct and
    everything else is incorrect.
    """
    statuses: list[PositionStatus] = []
    for index in range(max(len(reference), len(predicted))):
        if index >= len(reference) or index >= len(predicted):
            statuses.append(MISSING)
            continue
        ref = reference[index]
        pred = predicted[index]
        if ref == placeholder and pred == placeholder:
            statuses.append(MISSING)
        elif ref == pred and ref != placeholder:
            statuses.append(CORRECT)
        else:
            statuses.append(INCORRECT)
    return tuple(statuses)


def classify_strict(
    reference: Sequence[str], predicted: Sequence[str], placeholder: str = PLACEHOLDER
) -> tuple[PositionStatus, ...]:
    """Classify an alignment that must already be gap-filled to equal length."""
    if len(reference) != len(predicted):
        raise AlignmentMismatchError(len(reference), len(predicted))
    return classify(reference, predicted, placeholder)


def classify_analysis(result: AnalysisResult) -> tuple[PositionStatus, ...]:
    """Classify the preferred alignment carried by an analysis result."""
    reference, predicted = result.alignment()
    return classify(reference, predicted)


def summarize(statuses: Iterable[str]) -> AlignmentSummary:
    """Count statuses by kind."""
    counts = {CORRECT: 0, INCORRECT: 0, MISSING: 0}
    for status in statuses:
        counts[status] = counts.get(status, 0) + 1
    return AlignmentSummary(correct=counts[CORRECT], incorrect=counts[INCORRECT], missing=counts[MISSING])
