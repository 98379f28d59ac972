"""phonetrainer package: phoneme alignment classification and mastery tracking."""

from __future__ import annotations

import re
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path

from .alignment import classify, classify_analysis, classify_strict, summarize
from .attempts import build_attempt
from .errors import AlignmentMismatchError, PhonetrainerError, ValidationError
from .ledger import MasteryLedger, MasteryPolicy, apply_attempt, apply_word_attempt, update
from .models import AttemptRecord, PhonemePracticeData, PracticeKey, WordProgress
from .ranking import (
    aggregate_stats,
    aggregate_word_stats,
    build_dashboard,
    needs_practice,
    recently_practiced,
    words_to_practice,
)

__all__ = [
    "AlignmentMismatchError",
    "AttemptRecord",
    "MasteryLedger",
    "MasteryPolicy",
    "PhonemePracticeData",
    "PhonetrainerError",
    "PracticeKey",
    "ValidationError",
    "WordProgress",
    "__version__",
    "aggregate_stats",
    "aggregate_word_stats",
    "apply_attempt",
    "apply_word_attempt",
    "build_attempt",
    "build_dashboard",
    "classify",
    "classify_analysis",
    "classify_strict",
    "needs_practice",
    "recently_practiced",
    "summarize",
    "update",
    "words_to_practice",
]


def _version_from_pyproject() -> str | None:
    """Read `[project].version` when running from a source checkout."""
    for base in Path(__file__).resolve().parents:
        pyproject = base / "pyproject.toml"
        if not pyproject.exists():
            continue
        in_project = False
        for line in pyproject.read_text(encoding="utf-8").splitlines():
            stripped = line.strip()
            if stripped.startswith("[") and stripped.endswith("]"):
                in_project = stripped == "[project]"
                continue
            if in_project:
                match = re.match(r'^version\s*=\s*"([^"]+)"\s*$', stripped)
                if match:
                    return match.group(1)
    return None


_project_version = _version_from_pyproject()
if _project_version is not None:
    __version__ = _project_version
else:
    try:
        __version__ = version("phonetrainer")
    except PackageNotFoundError:
        __version__ = "0+unknown"
