"""CLI entrypoint for recording pronunciation attempts and viewing progress."""

from __future__ import annotations

import argparse
import json
import logging
from collections.abc import Callable, Sequence
from datetime import datetime
from pathlib import Path

from .errors import PhonetrainerError
from .ledger import DEFAULT_MASTERY_THRESHOLD, DEFAULT_MIN_ATTEMPTS_FOR_MASTERY, MasteryPolicy
from .models import WORD_COMPLETION_THRESHOLD, PhonemePracticeData, WordProgress
from .ranking import DEFAULT_LIMIT
from .service import PracticeOutcome, PracticeService

PrintFn = Callable[[str], None]
DEFAULT_DB_PATH = Path(".phonetrainer") / "progress.db"
STATUS_MARKS = {"correct": "+", "incorrect": "x", "missing": "."}


def _service(db_path: Path, policy: MasteryPolicy) -> PracticeService:
    """Create app service with local database path."""
    return PracticeService(db_path=db_path, policy=policy)


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="phonetrainer", description="Phoneme-level pronunciation practice tracker")
    parser.add_argument("--db", type=Path, default=DEFAULT_DB_PATH, help="progress database path")
    parser.add_argument(
        "--mastery-threshold",
        type=float,
        default=DEFAULT_MASTERY_THRESHOLD,
        help="best score needed to master a phoneme (0-1)",
    )
    parser.add_argument(
        "--min-attempts",
        type=int,
        default=DEFAULT_MIN_ATTEMPTS_FOR_MASTERY,
        help="attempts needed before a phoneme can be mastered",
    )
    parser.add_argument(
        "--completion-threshold",
        type=float,
        default=WORD_COMPLETION_THRESHOLD,
        help="whole-word score needed to complete a word (0-1)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="enable debug logging")
    commands = parser.add_subparsers(dest="command")

    record = commands.add_parser("record", help="record an analysis result for a word")
    record.add_argument("word")
    record.add_argument("analysis", type=Path, help="JSON file returned by the analysis service")
    record.add_argument("--phoneme", help="record a focused attempt for one phoneme in the word")

    dashboard = commands.add_parser("dashboard", help="show progress summary")
    dashboard.add_argument("--limit", type=int, default=DEFAULT_LIMIT)

    export = commands.add_parser("export", help="export practice data to JSON")
    export.add_argument("path", type=Path)

    import_ = commands.add_parser("import", help="merge practice data from a JSON export")
    import_.add_argument("path", type=Path)
    return parser


def run(argv: Sequence[str] | None = None, print_fn: PrintFn = print) -> int:
    """Run the CLI application."""
    args = _parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    command = args.command or "dashboard"

    try:
        policy = MasteryPolicy(
            mastery_threshold=args.mastery_threshold,
            min_attempts_for_mastery=args.min_attempts,
            word_completion_threshold=args.completion_threshold,
        )
        service = _service(args.db, policy)
    except (PhonetrainerError, OSError) as exc:
        print_fn(f"Error: {exc}")
        return 2

    try:
        if command == "record":
            payload = json.loads(args.analysis.read_text(encoding="utf-8"))
            if args.phoneme:
                outcome = service.record_phoneme_attempt(args.phoneme, args.word, payload)
            else:
                outcome = service.record_word_attempt(args.word, payload)
            _print_outcome(args.word, outcome, print_fn)
        elif command == "dashboard":
            _dashboard_flow(service, getattr(args, "limit", DEFAULT_LIMIT), print_fn)
        elif command == "export":
            summary = service.export_ledger(args.path)
            print_fn(f"Exported {summary.entry_rows} entries and {summary.word_rows} words to {args.path}")
        elif command == "import":
            summary = service.import_ledger(args.path)
            print_fn(f"Imported {summary.entry_rows} entries and {summary.word_rows} words from {args.path}")
            if summary.skipped_rows:
                print_fn(f"- skipped rows: {summary.skipped_rows}")
    except (PhonetrainerError, OSError, json.JSONDecodeError) as exc:
        print_fn(f"Error: {exc}")
        return 2
    finally:
        service.close()
    return 0


def _print_outcome(word: str, outcome: PracticeOutcome, print_fn: PrintFn) -> None:
    """Print per-position statuses and the updated entries."""
    marks = "".join(STATUS_MARKS.get(status, "?") for status in outcome.statuses)
    summary = outcome.summary
    print_fn(f"\n=== {word} ===")
    print_fn(f"Positions: {marks}")
    print_fn(
        f"Correct {summary.correct}/{summary.total} ({100.0 * summary.accuracy:.1f}%), "
        f"incorrect {summary.incorrect}, missing {summary.missing}"
    )
    if outcome.word is not None:
        progress = outcome.word
        completed = ", completed" if progress.completed else ""
        print_fn(
            f"Word: score {100.0 * progress.last_score:.0f}%, best {100.0 * progress.best_score:.0f}%, "
            f"attempts {progress.total_attempts}{completed}"
        )
    _print_entries("Updated", outcome.entries, print_fn)


def _dashboard_flow(service: PracticeService, limit: int, print_fn: PrintFn) -> None:
    """Print aggregate stats and practice lists."""
    dashboard = service.dashboard(limit)
    stats = dashboard.stats
    print_fn("\n=== Progress ===")
    if stats.total == 0:
        print_fn("No phonemes practiced yet.")
        return
    print_fn(f"- Phonemes: {stats.total}")
    print_fn(f"- Mastered: {stats.mastered}")
    print_fn(f"- Attempts: {stats.total_attempts_sum}")
    print_fn(f"- Average best score: {100.0 * stats.average_best_score:.0f}%")
    print_fn(f"- Completion: {stats.completion_rate_percent:.0f}%")
    _print_entries("Needs practice", dashboard.needs_practice, print_fn)
    _print_entries("Recently practiced", dashboard.recently_practiced, print_fn)
    words = dashboard.word_stats
    if words.total:
        print_fn("\n=== Words ===")
        print_fn(f"- Words: {words.total}")
        print_fn(f"- Completed: {words.completed}")
        print_fn(f"- Attempts: {words.total_attempts_sum}")
        print_fn(f"- Average best score: {100.0 * words.average_best_score:.0f}%")
        _print_words("Words to practice", dashboard.words_to_practice, print_fn)


def _print_entries(title: str, entries: Sequence[PhonemePracticeData], print_fn: PrintFn) -> None:
    print_fn(f"\n{title}:")
    if not entries:
        print_fn("None.")
        return
    phoneme_width = max(len("Phoneme"), max(len(entry.phoneme) for entry in entries))
    word_width = max(len("Word"), max(len(entry.word) for entry in entries))
    best_width = len("Best")
    attempts_width = len("Attempts")
    header = (
        f"{'Phoneme':<{phoneme_width}} "
        f"{'Word':<{word_width}} "
        f"{'Best':>{best_width}} "
        f"{'Attempts':>{attempts_width}} "
        "Last attempted"
    )
    print_fn(header)
    print_fn("-" * len(header))
    for entry in entries:
        mastered = " *" if entry.mastered else ""
        print_fn(
            f"{entry.phoneme:<{phoneme_width}} "
            f"{entry.word:<{word_width}} "
            f"{100.0 * entry.best_score:>{best_width - 1}.0f}% "
            f"{entry.total_attempts:>{attempts_width}} "
            f"{_format_local(entry.last_attempted)}{mastered}"
        )


def _print_words(title: str, words: Sequence[WordProgress], print_fn: PrintFn) -> None:
    print_fn(f"\n{title}:")
    if not words:
        print_fn("None.")
        return
    word_width = max(len("Word"), max(len(progress.word) for progress in words))
    best_width = len("Best")
    attempts_width = len("Attempts")
    header = f"{'Word':<{word_width}} {'Best':>{best_width}} {'Attempts':>{attempts_width}} Last attempted"
    print_fn(header)
    print_fn("-" * len(header))
    for progress in words:
        print_fn(
            f"{progress.word:<{word_width}} "
            f"{100.0 * progress.best_score:>{best_width - 1}.0f}% "
            f"{progress.total_attempts:>{attempts_width}} "
            f"{_format_local(progress.last_attempted)}"
        )


def _format_local(value: datetime | None) -> str:
    """Convert a timestamp to local human-readable datetime."""
    if value is None:
        return "-"
    return value.astimezone().strftime("%Y-%m-%d %H:%M")


def main_entry() -> None:
    """Console script entrypoint."""
    raise SystemExit(run())


if __name__ == "__main__":  # pragma: no cover
    main_entry()
