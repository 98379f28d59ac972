import json
import threading
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from phonetrainer.errors import ValidationError
from phonetrainer.ledger import MasteryPolicy
from phonetrainer.models import AnalysisResult, PracticeKey, RecentAttempt, WordProgress
from phonetrainer.progress import SCHEMA_VERSION
from phonetrainer.service import EXPORT_FORMAT_VERSION, PracticeService

START = datetime(2026, 8, 3, 7, 15, tzinfo=UTC)


def _analysis(predicted: list[str], score: float = 0.5, reference: list[str] | None = None) -> dict[str, object]:
    reference = reference or ["k", "æ", "t"]
    return {
        "reference_phonemes": reference,
        "predicted_phonemes": predicted,
        "aligned_reference": reference,
        "aligned_predicted": predicted,
        "score": score,
        "confidence": 0.9,
    }


def test_record_phoneme_attempt_classifies_and_updates() -> None:
    service = PracticeService(":memory:")
    outcome = service.record_phoneme_attempt("æ", "cat", _analysis(["k", "ɪ", "t"], 0.4), START)
    assert outcome.statuses == ("correct", "incorrect", "correct")
    assert outcome.summary.correct == 2
    assert len(outcome.entries) == 1
    entry = outcome.entries[0]
    assert entry.key == PracticeKey("æ", "cat")
    assert entry.best_score == 0.4
    assert entry.total_attempts == 1
    assert entry.last_attempted == START


def test_record_phoneme_attempt_accepts_analysis_result() -> None:
    service = PracticeService(":memory:")
    result = AnalysisResult(reference_phonemes=("k", "æ", "t"), predicted_phonemes=(), score=0.0)
    outcome = service.record_phoneme_attempt("k", "cat", result)
    assert outcome.statuses == ("missing", "missing", "missing")


def test_scenario_three_attempts_through_service() -> None:
    service = PracticeService(":memory:", MasteryPolicy(mastery_threshold=0.9))
    for minutes, score in enumerate([0.4, 0.7, 0.6]):
        service.record_phoneme_attempt("æ", "cat", _analysis(["k", "æ", "t"], score), START + timedelta(minutes=minutes))
    entry = service.ledger.get(PracticeKey("æ", "cat"))
    assert entry is not None
    assert entry.best_score == 0.7
    assert entry.total_attempts == 3
    assert entry.mastered is False
    assert entry.last_attempted == START + timedelta(minutes=2)


def test_record_word_attempt_scores_each_phoneme() -> None:
    service = PracticeService(":memory:")
    outcome = service.record_word_attempt(
        "tot",
        _analysis(["t", "ɒ", "d"], reference=["t", "ɒ", "t"]),
        START,
    )
    assert outcome.statuses == ("correct", "correct", "incorrect")
    scores = {entry.phoneme: entry.best_score for entry in outcome.entries}
    assert scores == {"t": 0.5, "ɒ": 1.0}
    assert [entry.phoneme for entry in outcome.entries] == ["t", "ɒ"]


def test_record_word_attempt_skips_gap_positions() -> None:
    service = PracticeService(":memory:")
    outcome = service.record_word_attempt("cat", _analysis(["k", "ə", "æ", "t"], reference=["k", "_", "æ", "t"]))
    assert outcome.statuses == ("correct", "incorrect", "correct", "correct")
    assert sorted(entry.phoneme for entry in outcome.entries) == ["k", "t", "æ"]
    assert all(entry.best_score == 1.0 for entry in outcome.entries)


def test_record_word_attempt_without_reference_rejected() -> None:
    service = PracticeService(":memory:")
    with pytest.raises(ValidationError):
        service.record_word_attempt("cat", _analysis(["k"], reference=["_"]))
    assert len(service.ledger) == 0


def test_invalid_score_applies_nothing() -> None:
    service = PracticeService(":memory:")
    with pytest.raises(ValidationError):
        service.record_phoneme_attempt("æ", "cat", _analysis(["k", "æ", "t"], score=1.5))
    with pytest.raises(ValidationError):
        service.record_word_attempt("cat", _analysis(["k", "æ", "t"], score=-1))
    assert len(service.ledger) == 0
    assert service.progress.load() == {}


def test_attempts_are_persisted_and_reloaded(tmp_path: Path) -> None:
    db_path = tmp_path / "progress.db"
    service = PracticeService(db_path)
    service.record_word_attempt("cat", _analysis(["k", "æ", "t"], 1.0), START)
    service.record_phoneme_attempt("æ", "cat", _analysis(["k", "ɛ", "t"], 0.3), START + timedelta(minutes=1))
    service.close()

    reopened = PracticeService(db_path)
    entry = reopened.ledger.get(PracticeKey("æ", "cat"))
    assert entry is not None
    assert entry.total_attempts == 2
    assert entry.best_score == 1.0
    assert entry.mastered is True
    assert entry.last_attempted == START + timedelta(minutes=1)
    assert len(reopened.entries()) == 3
    reopened.close()


def test_concurrent_submissions_are_all_counted(tmp_path: Path) -> None:
    service = PracticeService(tmp_path / "progress.db")
    threads = [
        threading.Thread(
            target=lambda: [service.record_phoneme_attempt("æ", "cat", _analysis(["k", "æ", "t"])) for _ in range(10)]
        )
        for _ in range(6)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    assert service.ledger.get(PracticeKey("æ", "cat")).total_attempts == 60  # type: ignore[union-attr]
    assert service.progress.get_entry(PracticeKey("æ", "cat")).total_attempts == 60  # type: ignore[union-attr]
    service.close()


def test_dashboard_from_service() -> None:
    service = PracticeService(":memory:")
    assert service.dashboard().stats.total == 0
    service.record_word_attempt("cat", _analysis(["k", "ɪ", "t"]), START)
    dashboard = service.dashboard(limit=2)
    assert dashboard.stats.total == 3
    assert dashboard.stats.mastered == 2
    assert [entry.phoneme for entry in dashboard.needs_practice] == ["æ"]
    assert len(dashboard.recently_practiced) == 2


def test_export_and_import_round_trip(tmp_path: Path) -> None:
    source = PracticeService(":memory:")
    source.record_word_attempt("cat", _analysis(["k", "ɪ", "t"]), START)
    export_path = tmp_path / "exports" / "ledger.json"
    summary = source.export_ledger(export_path)
    assert summary.entry_rows == 3

    payload = json.loads(export_path.read_text(encoding="utf-8"))
    assert payload["format_version"] == EXPORT_FORMAT_VERSION
    assert payload["source"]["schema_version"] == SCHEMA_VERSION
    assert payload["policy"]["mastery_threshold"] == 0.9
    assert [row["phoneme"] for row in payload["entries"]] == ["k", "t", "æ"]
    assert [row["word"] for row in payload["words"]] == ["cat"]

    target = PracticeService(":memory:")
    imported = target.import_ledger(export_path)
    assert imported.entry_rows == 3
    assert imported.word_rows == 1
    assert imported.skipped_rows == 0
    assert target.entries() == source.entries()
    assert target.words() == source.words()
    assert target.progress.load() == source.progress.load()
    assert target.progress.load_words() == source.progress.load_words()


def test_import_merges_without_regressing(tmp_path: Path) -> None:
    service = PracticeService(":memory:")
    for minutes in range(4):
        service.record_phoneme_attempt("æ", "cat", _analysis(["k", "æ", "t"], 0.95), START + timedelta(minutes=minutes))
    path = tmp_path / "import.json"
    path.write_text(
        json.dumps(
            {
                "format_version": 1,
                "entries": [
                    {"phoneme": "æ", "word": "cat", "best_score": 0.2, "total_attempts": 2, "mastered": False},
                    {"phoneme": "ʃ", "word": "ship", "best_score": 0.4, "total_attempts": 1, "mastered": False},
                    {"phoneme": "", "word": "ship", "best_score": 0.4, "total_attempts": 1},
                    {"phoneme": "s", "word": "sip", "best_score": 0.4, "total_attempts": 0},
                    "junk",
                ],
            }
        ),
        encoding="utf-8",
    )
    summary = service.import_ledger(path)
    assert summary.entry_rows == 2
    assert summary.skipped_rows == 3
    entry = service.ledger.get(PracticeKey("æ", "cat"))
    assert entry is not None
    assert entry.best_score == 0.95
    assert entry.total_attempts == 4
    assert entry.mastered is True
    assert PracticeKey("ʃ", "ship") in service.ledger


@pytest.mark.parametrize(
    "content",
    [
        "[]",
        json.dumps({"format_version": "x", "entries": []}),
        json.dumps({"format_version": EXPORT_FORMAT_VERSION + 1, "entries": []}),
    ],
)
def test_import_rejects_invalid_files(tmp_path: Path, content: str) -> None:
    path = tmp_path / "bad.json"
    path.write_text(content, encoding="utf-8")
    service = PracticeService(":memory:")
    with pytest.raises(ValidationError):
        service.import_ledger(path)


def test_word_attempt_updates_word_progress() -> None:
    service = PracticeService(":memory:")
    first = service.record_word_attempt("cat", _analysis(["k", "ɪ", "t"], 0.85), START)
    assert first.word == WordProgress("cat", 0.85, 1, True, 0.85, START)
    second = service.record_word_attempt("cat", _analysis(["k", "ɪ", "d"], 0.4), START + timedelta(minutes=1))
    assert second.word == WordProgress("cat", 0.85, 2, True, 0.4, START + timedelta(minutes=1))
    assert service.progress.get_word("cat") == second.word
    assert service.words() == [second.word]


def test_focused_phoneme_attempt_leaves_word_progress_alone() -> None:
    service = PracticeService(":memory:")
    service.record_phoneme_attempt("æ", "cat", _analysis(["k", "æ", "t"], 0.95), START)
    assert service.words() == []


def test_word_progress_survives_reopen(tmp_path: Path) -> None:
    db_path = tmp_path / "progress.db"
    service = PracticeService(db_path)
    service.record_word_attempt("cat", _analysis(["k", "æ", "t"], 0.6), START)
    service.close()

    reopened = PracticeService(db_path)
    assert reopened.ledger.get_word("cat") == WordProgress("cat", 0.6, 1, False, 0.6, START)
    assert reopened.dashboard().word_stats.total == 1
    assert [progress.word for progress in reopened.dashboard().words_to_practice] == ["cat"]
    reopened.close()


def test_failed_word_save_leaves_ledger_and_store_untouched(monkeypatch: pytest.MonkeyPatch) -> None:
    service = PracticeService(":memory:")
    service.record_word_attempt("cat", _analysis(["k", "æ", "t"], 0.5), START)
    before_entries = service.entries()
    before_rows = service.progress.list_entry_rows()

    def fail_word_upsert(progress: WordProgress) -> None:
        raise OSError("disk full")

    # Phoneme rows are written first; the word row then fails inside the same transaction.
    monkeypatch.setattr(service.progress, "_upsert_word", fail_word_upsert)
    with pytest.raises(OSError):
        service.record_word_attempt("cat", _analysis(["k", "ɪ", "t"], 0.9), START + timedelta(minutes=1))

    assert service.entries() == before_entries
    assert service.progress.list_entry_rows() == before_rows
    assert service.ledger.get_word("cat").total_attempts == 1  # type: ignore[union-attr]
    assert service.progress.get_word("cat").total_attempts == 1  # type: ignore[union-attr]


def test_history_records_what_was_produced() -> None:
    service = PracticeService(":memory:")
    analysis = _analysis(["k", "ɪ", "_"], 0.3)
    analysis["feedback"] = "Watch the vowel."
    outcome = service.record_word_attempt("cat", analysis, START)
    produced = {entry.phoneme: entry.recent_attempts[0] for entry in outcome.entries}
    assert produced["k"] == RecentAttempt(START, 1.0, "k", "k", "Watch the vowel.")
    assert produced["æ"] == RecentAttempt(START, 0.0, "æ", "ɪ", "Watch the vowel.")
    assert produced["t"] == RecentAttempt(START, 0.0, "t", None, "Watch the vowel.")

    focused = service.record_phoneme_attempt("æ", "cat", _analysis(["k", "ɛ", "t"], 0.4), START)
    assert focused.entries[0].recent_attempts[0].predicted_phoneme == "ɛ"


def test_import_skips_malformed_word_rows(tmp_path: Path) -> None:
    path = tmp_path / "words.json"
    path.write_text(
        json.dumps(
            {
                "format_version": 1,
                "entries": [],
                "words": [
                    {"word": "cat", "best_score": 0.9, "total_attempts": 2, "completed": True, "last_score": 0.9},
                    {"word": "dog", "best_score": 3, "total_attempts": 1},
                    [],
                ],
            }
        ),
        encoding="utf-8",
    )
    service = PracticeService(":memory:")
    summary = service.import_ledger(path)
    assert summary.word_rows == 1
    assert summary.skipped_rows == 2
    assert service.ledger.get_word("cat").completed is True  # type: ignore[union-attr]
