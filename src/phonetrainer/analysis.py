"""Normalize result payloads returned by the remote pronunciation analysis service."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import cast

from .attempts import validate_score
from .errors import ValidationError
from .models import DELETION, MISPRONUNCIATION_KINDS, PLACEHOLDER, AnalysisResult, Mispronunciation

logger = logging.getLogger(__name__)


def parse_analysis(payload: object) -> AnalysisResult:
    """Build an AnalysisResult from a decoded JSON payload.

    The overall score is read from ``score`` and falls back to ``accuracy``.
    Pre-aligned sequences are kept only when both sides are present.
    """
    if not isinstance(payload, Mapping):
        raise ValidationError("Analysis payload root must be a JSON object.")
    raw = cast(Mapping[str, object], payload)

    # Some service responses wrap the result as {"success": ..., "analysis": {...}}.
    nested = raw.get("analysis")
    if isinstance(nested, Mapping) and "score" not in raw and "accuracy" not in raw:
        raw = cast(Mapping[str, object], nested)

    score_raw = raw.get("score", raw.get("accuracy"))
    if score_raw is None:
        raise ValidationError("Analysis payload has no score.")
    score = validate_score(coerce_float(score_raw), "score")

    confidence_raw = raw.get("confidence")
    confidence = 1.0 if confidence_raw is None else validate_score(coerce_float(confidence_raw), "confidence")

    aligned_reference = _phoneme_list(raw.get("aligned_reference"))
    aligned_predicted = _phoneme_list(raw.get("aligned_predicted"))
    if aligned_reference is None or aligned_predicted is None:
        aligned_reference = None
        aligned_predicted = None

    feedback = raw.get("feedback", "")
    return AnalysisResult(
        reference_phonemes=_phoneme_list(raw.get("reference_phonemes")) or (),
        predicted_phonemes=_phoneme_list(raw.get("predicted_phonemes")) or (),
        score=score,
        confidence=confidence,
        aligned_reference=aligned_reference,
        aligned_predicted=aligned_predicted,
        mispronunciations=_mispronunciations(raw.get("mispronunciations")),
        feedback=feedback if isinstance(feedback, str) else str(feedback),
    )


def _phoneme_list(raw: object) -> tuple[str, ...] | None:
    """Coerce a JSON list to phoneme strings; anything else is absent.

    Null items become the gap placeholder so later positions keep their index.
    """
    if not isinstance(raw, list | tuple):
        return None
    return tuple(PLACEHOLDER if item is None else str(item) for item in cast(list[object], raw))


def _mispronunciations(raw: object) -> tuple[Mispronunciation, ...]:
    """Normalize mispronunciation events, skipping rows that cannot be interpreted."""
    if not isinstance(raw, list):
        return ()
    events: list[Mispronunciation] = []
    for item in cast(list[object], raw):
        if not isinstance(item, dict):
            logger.debug("Skipping non-object mispronunciation row: %r", item)
            continue
        row = cast(dict[str, object], item)
        kind = str(row.get("type", "")).strip().lower()
        if kind not in MISPRONUNCIATION_KINDS:
            logger.debug("Skipping mispronunciation with unknown type %r", kind)
            continue
        expected: object = row.get("expected", row.get("reference"))
        if not isinstance(expected, str) or not expected:
            logger.debug("Skipping %s event without expected symbol", kind)
            continue
        actual: object = row.get("actual", row.get("predicted"))
        if kind == DELETION or not isinstance(actual, str) or not actual:
            actual = None
        confidence = coerce_float(row.get("confidence", 1.0), default=1.0)
        if confidence is None or not 0.0 <= confidence <= 1.0:
            confidence = 1.0
        events.append(
            Mispronunciation(
                kind=kind,
                expected=expected,
                actual=cast(str | None, actual),
                confidence=confidence,
                position=coerce_int(row.get("position")),
            )
        )
    return tuple(events)


def coerce_int(value: object, default: int | None = None) -> int | None:
    """Coerce value to int for payload normalization."""
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            return default
    return default


def coerce_float(value: object, default: float | None = None) -> float | None:
    """Coerce value to float for payload normalization."""
    if isinstance(value, bool):
        return default
    if isinstance(value, int | float):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return default
    return default
