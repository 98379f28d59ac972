"""SQLite persistence for per-phoneme practice entries and word progress."""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from collections.abc import Iterable, Mapping, Sequence
from datetime import UTC, datetime
from pathlib import Path
from typing import cast

from .errors import ValidationError
from .models import PhonemePracticeData, PracticeKey, RecentAttempt, WordProgress

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 2


class ProgressStore:
    """Database access layer implementing the ledger repository interface."""

    def __init__(self, db_path: Path | str) -> None:
        """Initialize database and schema."""
        if isinstance(db_path, Path):
            db_path.parent.mkdir(parents=True, exist_ok=True)
            target = str(db_path)
        else:
            target = db_path
        self._conn = sqlite3.connect(target, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._apply_migrations()

    def _apply_migrations(self) -> None:
        """Apply forward-only schema migrations to latest version."""
        current = int(self._conn.execute("PRAGMA user_version").fetchone()[0])
        if current > SCHEMA_VERSION:
            raise RuntimeError(f"Database schema version {current} is newer than supported {SCHEMA_VERSION}.")

        with self._conn:
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS schema_migrations (
                    version INTEGER PRIMARY KEY,
                    applied_at TEXT NOT NULL
                )
                """)

        for version in range(current + 1, SCHEMA_VERSION + 1):
            if version == 1:
                self._migrate_to_v1()
            elif version == 2:
                self._migrate_to_v2()
            with self._conn:
                self._conn.execute(f"PRAGMA user_version = {version}")
                self._conn.execute(
                    "INSERT OR REPLACE INTO schema_migrations (version, applied_at) VALUES (?, ?)",
                    (version, datetime.now(UTC).isoformat()),
                )
            logger.debug("Applied progress schema migration %d", version)

    def _migrate_to_v1(self) -> None:
        """Create the practice entry table."""
        with self._conn:
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS practice_entries (
                    phoneme TEXT NOT NULL,
                    word TEXT NOT NULL,
                    best_score REAL NOT NULL,
                    total_attempts INTEGER NOT NULL,
                    mastered INTEGER NOT NULL,
                    last_attempted TEXT,
                    recent_attempts TEXT NOT NULL DEFAULT '[]',
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY (phoneme, word)
                )
                """)

    def _migrate_to_v2(self) -> None:
        """Create the whole-word progress table."""
        with self._conn:
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS word_progress (
                    word TEXT PRIMARY KEY,
                    best_score REAL NOT NULL CHECK (best_score BETWEEN 0 AND 1),
                    total_attempts INTEGER NOT NULL CHECK (total_attempts > 0),
                    completed INTEGER NOT NULL,
                    last_score REAL NOT NULL CHECK (last_score BETWEEN 0 AND 1),
                    last_attempted TEXT,
                    updated_at TEXT NOT NULL
                )
                """)

    def load(self) -> dict[PracticeKey, PhonemePracticeData]:
        """Return every stored entry keyed by phoneme-in-word."""
        entries: dict[PracticeKey, PhonemePracticeData] = {}
        for row in self.list_entry_rows():
            entry = entry_from_row(row)
            entries[entry.key] = entry
        return entries

    def get_entry(self, key: PracticeKey) -> PhonemePracticeData | None:
        """Return one stored entry if present."""
        with self._lock:
            row = self._conn.execute(
                """
                SELECT phoneme, word, best_score, total_attempts, mastered, last_attempted, recent_attempts
                FROM practice_entries
                WHERE phoneme = ? AND word = ?
                """,
                (key.phoneme, key.word),
            ).fetchone()
        if row is None:
            return None
        return entry_from_row(_row_to_dict(row))

    def list_entry_rows(self) -> list[dict[str, object]]:
        """Return stored entries as plain serializable rows ordered by key."""
        with self._lock:
            rows = self._conn.execute("""
                SELECT phoneme, word, best_score, total_attempts, mastered, last_attempted, recent_attempts
                FROM practice_entries
                ORDER BY phoneme, word
                """).fetchall()
        return [_row_to_dict(row) for row in rows]

    def load_words(self) -> dict[str, WordProgress]:
        """Return every stored word progress record keyed by word."""
        return {progress.word: progress for progress in map(word_from_row, self.list_word_rows())}

    def get_word(self, word: str) -> WordProgress | None:
        """Return one word's progress if present."""
        with self._lock:
            row = self._conn.execute(
                """
                SELECT word, best_score, total_attempts, completed, last_score, last_attempted
                FROM word_progress
                WHERE word = ?
                """,
                (word,),
            ).fetchone()
        if row is None:
            return None
        return word_from_row(_word_row_to_dict(row))

    def list_word_rows(self) -> list[dict[str, object]]:
        """Return stored word progress as plain serializable rows ordered by word."""
        with self._lock:
            rows = self._conn.execute("""
                SELECT word, best_score, total_attempts, completed, last_score, last_attempted
                FROM word_progress
                ORDER BY word
                """).fetchall()
        return [_word_row_to_dict(row) for row in rows]

    def save_entry(self, entry: PhonemePracticeData) -> None:
        """Persist one entry."""
        with self._lock, self._conn:
            self._upsert([entry])

    def save(self, snapshot: Mapping[PracticeKey, PhonemePracticeData]) -> None:
        """Persist every entry of a snapshot in one transaction."""
        with self._lock, self._conn:
            self._upsert(snapshot.values())

    def save_word(self, progress: WordProgress) -> None:
        """Persist one word progress record."""
        with self._lock, self._conn:
            self._upsert_word(progress)

    def save_word_attempt(self, progress: WordProgress, entries: Sequence[PhonemePracticeData]) -> None:
        """Persist a word's progress and its phoneme entries in one transaction.

        Either every row is written or, when any statement fails, none is.
        """
        with self._lock, self._conn:
            self._upsert(entries)
            self._upsert_word(progress)

    def _upsert_word(self, progress: WordProgress) -> None:
        """Insert or merge one word row without lowering stored progress."""
        row = word_to_row(progress)
        self._conn.execute(
            """
            INSERT INTO word_progress (
                word,
                best_score,
                total_attempts,
                completed,
                last_score,
                last_attempted,
                updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(word) DO UPDATE SET
                best_score = MAX(word_progress.best_score, excluded.best_score),
                last_score = CASE
                    WHEN excluded.total_attempts >= word_progress.total_attempts
                    THEN excluded.last_score
                    ELSE word_progress.last_score
                END,
                last_attempted = CASE
                    WHEN excluded.total_attempts >= word_progress.total_attempts
                    THEN excluded.last_attempted
                    ELSE word_progress.last_attempted
                END,
                total_attempts = MAX(word_progress.total_attempts, excluded.total_attempts),
                completed = MAX(word_progress.completed, excluded.completed),
                updated_at = excluded.updated_at
            """,
            (
                row["word"],
                row["best_score"],
                row["total_attempts"],
                1 if row["completed"] else 0,
                row["last_score"],
                row["last_attempted"],
                datetime.now(UTC).isoformat(),
            ),
        )

    def _upsert(self, entries: Iterable[PhonemePracticeData]) -> None:
        """Insert or merge entries without lowering stored progress.

        Counts, best score, and mastery keep the larger stored value. Recency
        and history follow whichever side has recorded more attempts. Callers
        hold the lock and own the transaction.
        """
        now = datetime.now(UTC).isoformat()
        params = []
        for entry in entries:
            row = entry_to_row(entry)
            params.append(
                (
                    row["phoneme"],
                    row["word"],
                    row["best_score"],
                    row["total_attempts"],
                    1 if row["mastered"] else 0,
                    row["last_attempted"],
                    json.dumps(row["recent_attempts"]),
                    now,
                )
            )
        if not params:
            return
        self._conn.executemany(
            """
            INSERT INTO practice_entries (
                phoneme,
                word,
                best_score,
                total_attempts,
                mastered,
                last_attempted,
                recent_attempts,
                updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(phoneme, word) DO UPDATE SET
                best_score = MAX(practice_entries.best_score, excluded.best_score),
                last_attempted = CASE
                    WHEN excluded.total_attempts >= practice_entries.total_attempts
                    THEN excluded.last_attempted
                    ELSE practice_entries.last_attempted
                END,
                recent_attempts = CASE
                    WHEN excluded.total_attempts >= practice_entries.total_attempts
                    THEN excluded.recent_attempts
                    ELSE practice_entries.recent_attempts
                END,
                total_attempts = MAX(practice_entries.total_attempts, excluded.total_attempts),
                mastered = MAX(practice_entries.mastered, excluded.mastered),
                updated_at = excluded.updated_at
            """,
            params,
        )

    def close(self) -> None:
        """Close db connection."""
        with self._lock:
            self._conn.close()

    def __del__(self) -> None:  # pragma: no cover
        """Best-effort connection cleanup."""
        try:
            self.close()
        except Exception:
            pass


def _row_to_dict(row: sqlite3.Row) -> dict[str, object]:
    recent_raw = row["recent_attempts"] or "[]"
    try:
        recent: object = json.loads(recent_raw)
    except json.JSONDecodeError:
        logger.warning("Discarding unreadable attempt history for %s/%s", row["phoneme"], row["word"])
        recent = []
    return {
        "phoneme": str(row["phoneme"]),
        "word": str(row["word"]),
        "best_score": float(row["best_score"]),
        "total_attempts": int(row["total_attempts"]),
        "mastered": bool(row["mastered"]),
        "last_attempted": row["last_attempted"],
        "recent_attempts": recent if isinstance(recent, list) else [],
    }


def entry_to_row(entry: PhonemePracticeData) -> dict[str, object]:
    """Serialize an entry to a plain JSON-compatible row."""
    return {
        "phoneme": entry.phoneme,
        "word": entry.word,
        "best_score": entry.best_score,
        "total_attempts": entry.total_attempts,
        "mastered": entry.mastered,
        "last_attempted": entry.last_attempted.isoformat() if entry.last_attempted is not None else None,
        "recent_attempts": [
            {
                "timestamp": item.timestamp.isoformat(),
                "score": item.score,
                "reference_phoneme": item.reference_phoneme,
                "predicted_phoneme": item.predicted_phoneme,
                "feedback": item.feedback,
            }
            for item in entry.recent_attempts
        ],
    }


def entry_from_row(row: Mapping[str, object]) -> PhonemePracticeData:
    """Deserialize an entry row; raises ValidationError for malformed rows."""
    phoneme = row.get("phoneme")
    word = row.get("word")
    if not isinstance(phoneme, str) or not phoneme.strip() or not isinstance(word, str) or not word.strip():
        raise ValidationError(f"Entry row has an invalid key: {phoneme!r}/{word!r}.")

    best_score = row.get("best_score")
    if isinstance(best_score, bool) or not isinstance(best_score, int | float) or not 0.0 <= best_score <= 1.0:
        raise ValidationError(f"Entry {phoneme}/{word} has invalid best_score {best_score!r}.")
    total_attempts = row.get("total_attempts")
    if isinstance(total_attempts, bool) or not isinstance(total_attempts, int) or total_attempts < 0:
        raise ValidationError(f"Entry {phoneme}/{word} has invalid total_attempts {total_attempts!r}.")

    recent: list[RecentAttempt] = []
    recent_raw = row.get("recent_attempts")
    if isinstance(recent_raw, list):
        for item in cast(list[object], recent_raw):
            if not isinstance(item, dict):
                continue
            history = cast(dict[str, object], item)
            stamp = _parse_timestamp(history.get("timestamp"))
            score = history.get("score")
            if stamp is None or isinstance(score, bool) or not isinstance(score, int | float):
                continue
            feedback = history.get("feedback")
            recent.append(
                RecentAttempt(
                    timestamp=stamp,
                    score=float(score),
                    reference_phoneme=_optional_text(history.get("reference_phoneme")),
                    predicted_phoneme=_optional_text(history.get("predicted_phoneme")),
                    feedback=feedback if isinstance(feedback, str) else "",
                )
            )

    return PhonemePracticeData(
        phoneme=phoneme.strip(),
        word=word.strip(),
        best_score=float(best_score),
        total_attempts=total_attempts,
        mastered=bool(row.get("mastered", False)),
        last_attempted=_parse_timestamp(row.get("last_attempted")),
        recent_attempts=tuple(recent),
    )


def _word_row_to_dict(row: sqlite3.Row) -> dict[str, object]:
    return {
        "word": str(row["word"]),
        "best_score": float(row["best_score"]),
        "total_attempts": int(row["total_attempts"]),
        "completed": bool(row["completed"]),
        "last_score": float(row["last_score"]),
        "last_attempted": row["last_attempted"],
    }


def word_to_row(progress: WordProgress) -> dict[str, object]:
    """Serialize word progress to a plain JSON-compatible row."""
    return {
        "word": progress.word,
        "best_score": progress.best_score,
        "total_attempts": progress.total_attempts,
        "completed": progress.completed,
        "last_score": progress.last_score,
        "last_attempted": progress.last_attempted.isoformat() if progress.last_attempted is not None else None,
    }


def word_from_row(row: Mapping[str, object]) -> WordProgress:
    """Deserialize a word progress row; raises ValidationError for malformed rows."""
    word = row.get("word")
    if not isinstance(word, str) or not word.strip():
        raise ValidationError(f"Word row has an invalid word: {word!r}.")
    best_score = row.get("best_score")
    if isinstance(best_score, bool) or not isinstance(best_score, int | float) or not 0.0 <= best_score <= 1.0:
        raise ValidationError(f"Word {word} has invalid best_score {best_score!r}.")
    total_attempts = row.get("total_attempts")
    if isinstance(total_attempts, bool) or not isinstance(total_attempts, int) or total_attempts < 1:
        raise ValidationError(f"Word {word} has invalid total_attempts {total_attempts!r}.")
    last_score = row.get("last_score", best_score)
    if isinstance(last_score, bool) or not isinstance(last_score, int | float) or not 0.0 <= last_score <= 1.0:
        raise ValidationError(f"Word {word} has invalid last_score {last_score!r}.")
    return WordProgress(
        word=word.strip(),
        best_score=float(best_score),
        total_attempts=total_attempts,
        completed=bool(row.get("completed", False)),
        last_score=float(last_score),
        last_attempted=_parse_timestamp(row.get("last_attempted")),
    )


def _optional_text(value: object) -> str | None:
    return value if isinstance(value, str) and value else None


def _parse_timestamp(value: object) -> datetime | None:
    """Parse an ISO timestamp, treating naive values as UTC."""
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed
