import random

import pytest

from phonetrainer.alignment import AlignmentSummary, classify, classify_analysis, classify_strict, summarize
from phonetrainer.errors import AlignmentMismatchError
from phonetrainer.models import PLACEHOLDER, AnalysisResult


def test_identical_sequences_are_all_correct() -> None:
    assert classify(["k", "æ", "t"], ["k", "æ", "t"]) == ("correct", "correct", "correct")


def test_substituted_vowel_is_incorrect() -> None:
    assert classify(["k", "æ", "t"], ["k", "ɪ", "t"]) == ("correct", "incorrect", "correct")


def test_empty_prediction_is_all_missing() -> None:
    assert classify(["k", "æ", "t"], []) == ("missing", "missing", "missing")


def test_empty_inputs_yield_empty_result() -> None:
    assert classify([], []) == ()


def test_extra_predicted_positions_are_missing() -> None:
    assert classify(["k"], ["k", "s", "t"]) == ("correct", "missing", "missing")


def test_placeholder_rules() -> None:
    reference = ["k", PLACEHOLDER, PLACEHOLDER, "t"]
    predicted = ["k", PLACEHOLDER, "ə", PLACEHOLDER]
    assert classify(reference, predicted) == ("correct", "missing", "incorrect", "incorrect")


def test_matching_placeholders_are_never_correct() -> None:
    for length in range(6):
        gaps = [PLACEHOLDER] * length
        assert classify(gaps, gaps) == ("missing",) * length


def test_length_and_determinism_over_random_inputs() -> None:
    rng = random.Random(7)
    symbols = ["k", "æ", "t", "ɪ", PLACEHOLDER]
    for _ in range(200):
        reference = [rng.choice(symbols) for _ in range(rng.randint(0, 8))]
        predicted = [rng.choice(symbols) for _ in range(rng.randint(0, 8))]
        first = classify(reference, predicted)
        assert len(first) == max(len(reference), len(predicted))
        assert classify(reference, predicted) == first
        for index, status in enumerate(first):
            if index < min(len(reference), len(predicted)) and reference[index] == predicted[index] == PLACEHOLDER:
                assert status == "missing"


def test_custom_placeholder() -> None:
    assert classify(["-", "a"], ["-", "a"], placeholder="-") == ("missing", "correct")


def test_strict_classification_rejects_unequal_lengths() -> None:
    with pytest.raises(AlignmentMismatchError) as excinfo:
        classify_strict(["k", "æ"], ["k"])
    assert excinfo.value.reference_length == 2
    assert excinfo.value.predicted_length == 1
    assert classify_strict(["k"], ["k"]) == ("correct",)


def test_classify_analysis_prefers_aligned_sequences() -> None:
    result = AnalysisResult(
        reference_phonemes=("k", "æ", "t"),
        predicted_phonemes=("k", "t"),
        score=0.6,
        aligned_reference=("k", "æ", "t"),
        aligned_predicted=("k", PLACEHOLDER, "t"),
    )
    assert classify_analysis(result) == ("correct", "incorrect", "correct")


def test_classify_analysis_falls_back_to_unaligned() -> None:
    result = AnalysisResult(reference_phonemes=("k", "æ", "t"), predicted_phonemes=("k", "t"), score=0.6)
    assert classify_analysis(result) == ("correct", "incorrect", "missing")


def test_summarize_counts_and_accuracy() -> None:
    summary = summarize(["correct", "incorrect", "correct", "missing"])
    assert summary == AlignmentSummary(correct=2, incorrect=1, missing=1)
    assert summary.total == 4
    assert summary.accuracy == 0.5
    assert summarize([]).accuracy == 0.0
