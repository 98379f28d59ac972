"""Exception types raised by the practice core."""

from __future__ import annotations


class PhonetrainerError(Exception):
    """Base class for all errors raised by phonetrainer."""


class ValidationError(PhonetrainerError, ValueError):
    """Input rejected before it could be applied to the ledger."""


class AlignmentMismatchError(PhonetrainerError, ValueError):
    """Aligned sequences were required to have equal length but did not."""

    def __init__(self, reference_length: int, predicted_length: int) -> None:
        super().__init__(
            f"Aligned sequences differ in length: reference={reference_length}, predicted={predicted_length}."
        )
        self.reference_length = reference_length
        self.predicted_length = predicted_length
