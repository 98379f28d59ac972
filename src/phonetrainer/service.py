"""Application service wiring analysis results into the mastery ledger and word progress."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import TypeVar, cast

from . import __version__
from .alignment import AlignmentSummary, classify, classify_analysis, summarize
from .analysis import coerce_int, parse_analysis
from .attempts import build_attempt, make_key
from .errors import ValidationError
from .ledger import MasteryLedger, MasteryPolicy
from .models import (
    CORRECT,
    PLACEHOLDER,
    AnalysisResult,
    AttemptRecord,
    PhonemePracticeData,
    PositionStatus,
    WordProgress,
)
from .progress import SCHEMA_VERSION, ProgressStore, entry_from_row, entry_to_row, word_from_row, word_to_row
from .ranking import DEFAULT_LIMIT, Dashboard, build_dashboard

logger = logging.getLogger(__name__)

T = TypeVar("T")

EXPORT_FORMAT_VERSION = 1


@dataclass(frozen=True)
class PracticeOutcome:
    """Result of recording one analysis: classification plus updated entries."""

    statuses: tuple[PositionStatus, ...]
    summary: AlignmentSummary
    entries: tuple[PhonemePracticeData, ...]
    word: WordProgress | None = None


@dataclass(frozen=True)
class LedgerTransferSummary:
    """Summary emitted by ledger export/import operations."""

    entry_rows: int
    skipped_rows: int = 0
    word_rows: int = 0


class PracticeService:
    """Coordinates classification, attempt recording, persistence, and dashboards."""

    def __init__(self, db_path: Path | str, policy: MasteryPolicy | None = None) -> None:
        """Initialize service and load the stored ledger."""
        self.progress = ProgressStore(db_path)
        self.ledger = MasteryLedger(self.progress.load(), policy, words=self.progress.load_words())
        logger.debug("Loaded %d practice entries", len(self.ledger))

    @property
    def policy(self) -> MasteryPolicy:
        return self.ledger.policy

    def record_phoneme_attempt(
        self,
        phoneme: str,
        word: str,
        analysis: AnalysisResult | Mapping[str, object],
        timestamp: datetime | None = None,
    ) -> PracticeOutcome:
        """Record a focused attempt at one phoneme, scored by the overall analysis score."""
        result = _as_analysis(analysis)
        statuses = classify_analysis(result)
        reference, predicted = result.alignment()
        key = make_key(phoneme, word)
        attempt = build_attempt(
            key,
            result.score,
            statuses,
            timestamp,
            predicted=_produced(key.phoneme, reference, predicted, statuses),
            feedback=result.feedback,
        )
        entry = self._record(attempt)
        return PracticeOutcome(statuses=statuses, summary=summarize(statuses), entries=(entry,))

    def record_word_attempt(
        self,
        word: str,
        analysis: AnalysisResult | Mapping[str, object],
        timestamp: datetime | None = None,
    ) -> PracticeOutcome:
        """Record a whole-word attempt and one attempt per distinct reference phoneme.

        The word's progress is scored with the overall analysis score. Each
        phoneme is scored as the share of its aligned positions that were
        classified correct. The word record and every phoneme entry are
        persisted in one transaction; if that fails, none of them changes.
        """
        result = _as_analysis(analysis)
        reference, predicted = result.alignment()
        statuses = classify(reference, predicted)

        positions: dict[str, list[PositionStatus]] = {}
        for index, symbol in enumerate(reference):
            if symbol == PLACEHOLDER:
                continue
            positions.setdefault(symbol, []).append(statuses[index])
        if not positions:
            raise ValidationError(f"Analysis for '{word}' has no reference phonemes.")

        recorded_at = timestamp or datetime.now(UTC)
        attempts = [
            build_attempt(
                (symbol, word),
                sum(1 for status in phoneme_statuses if status == CORRECT) / len(phoneme_statuses),
                statuses,
                recorded_at,
                predicted=_produced(symbol, reference, predicted, statuses),
                feedback=result.feedback,
            )
            for symbol, phoneme_statuses in positions.items()
        ]
        progress, entries = self.ledger.record_word(
            attempts[0].key.word,
            result.score,
            attempts[0].timestamp,
            attempts,
            on_commit=self.progress.save_word_attempt,
        )
        return PracticeOutcome(statuses=statuses, summary=summarize(statuses), entries=entries, word=progress)

    def _record(self, attempt: AttemptRecord) -> PhonemePracticeData:
        return self.ledger.record(attempt, on_commit=self.progress.save_entry)

    def words(self) -> list[WordProgress]:
        """Return all word progress records ordered by word."""
        snapshot = self.ledger.word_snapshot()
        return [snapshot[word] for word in sorted(snapshot)]

    def entries(self) -> list[PhonemePracticeData]:
        """Return all entries ordered by key."""
        snapshot = self.ledger.snapshot()
        return [snapshot[key] for key in sorted(snapshot)]

    def dashboard(self, limit: int = DEFAULT_LIMIT) -> Dashboard:
        """Return dashboard view model for the current ledger."""
        return build_dashboard(self.ledger.snapshot(), limit, words=self.ledger.word_snapshot())

    def export_ledger(self, export_path: Path | str) -> LedgerTransferSummary:
        """Export all practice entries and word progress to a JSON file."""
        rows = [entry_to_row(entry) for entry in self.entries()]
        word_rows = [word_to_row(progress) for progress in self.words()]
        payload = {
            "format_version": EXPORT_FORMAT_VERSION,
            "exported_at": datetime.now(UTC).isoformat(),
            "source": {
                "app_version": __version__,
                "schema_version": SCHEMA_VERSION,
            },
            "policy": {
                "mastery_threshold": self.policy.mastery_threshold,
                "min_attempts_for_mastery": self.policy.min_attempts_for_mastery,
                "word_completion_threshold": self.policy.word_completion_threshold,
            },
            "entries": rows,
            "words": word_rows,
        }

        path = Path(export_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
        logger.info("Exported %d practice entries and %d words to %s", len(rows), len(word_rows), path)
        return LedgerTransferSummary(entry_rows=len(rows), word_rows=len(word_rows))

    def import_ledger(self, import_path: Path | str) -> LedgerTransferSummary:
        """Merge entries and word progress from an export file into the ledger.

        Imported entries never lower existing progress. Malformed rows are
        skipped and counted.
        """
        path = Path(import_path)
        raw_obj: object = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(raw_obj, dict):
            raise ValidationError("Import file root must be a JSON object.")
        raw = cast(dict[str, object], raw_obj)

        format_version = coerce_int(raw.get("format_version", 0))
        if format_version is None:
            raise ValidationError("Import file has invalid format_version.")
        if format_version > EXPORT_FORMAT_VERSION:
            raise ValidationError(
                f"Import file format version {format_version} is newer than supported {EXPORT_FORMAT_VERSION}."
            )

        imported, skipped = _import_rows(raw.get("entries"), entry_from_row, self.ledger.merge, self.progress.save_entry)
        words, skipped_words = _import_rows(
            raw.get("words"), word_from_row, self.ledger.merge_word, self.progress.save_word
        )
        skipped += skipped_words
        logger.info(
            "Imported %d practice entries and %d words from %s (%d skipped)", imported, words, path, skipped
        )
        return LedgerTransferSummary(entry_rows=imported, skipped_rows=skipped, word_rows=words)

    def close(self) -> None:
        """Close resources."""
        self.progress.close()

    def __del__(self) -> None:  # pragma: no cover
        """Best-effort cleanup for test/process teardown."""
        try:
            self.close()
        except Exception:
            pass


def _as_analysis(analysis: AnalysisResult | Mapping[str, object]) -> AnalysisResult:
    if isinstance(analysis, AnalysisResult):
        return analysis
    return parse_analysis(analysis)


def _import_rows(
    rows_obj: object,
    from_row: Callable[[dict[str, object]], T],
    merge: Callable[..., object],
    save: Callable[[T], None],
) -> tuple[int, int]:
    """Merge each valid row; return (imported, skipped) counts."""
    rows = cast(list[object], rows_obj) if isinstance(rows_obj, list) else []
    imported = 0
    skipped = 0
    for item in rows:
        if not isinstance(item, dict):
            skipped += 1
            continue
        try:
            merge(from_row(cast(dict[str, object], item)), on_commit=save)
        except ValidationError as exc:
            logger.warning("Skipping import row: %s", exc)
            skipped += 1
            continue
        imported += 1
    return imported, skipped


def _produced(
    symbol: str, reference: Sequence[str], predicted: Sequence[str], statuses: Sequence[PositionStatus]
) -> str | None:
    """Return what was produced for a reference phoneme.

    The first position where the phoneme was not correct wins; a fully correct
    phoneme reports its own symbol. ``None`` means nothing was produced.
    """
    first: str | None = None
    for index, ref in enumerate(reference):
        if ref != symbol:
            continue
        produced = predicted[index] if index < len(predicted) else None
        if produced == PLACEHOLDER:
            produced = None
        if statuses[index] != CORRECT:
            return produced
        if first is None:
            first = produced
    return first
