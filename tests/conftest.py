"""Shared test setup: import the package from ``src/`` and keep scratch files in the project."""

from __future__ import annotations

import contextlib
import shutil
import sys
from collections.abc import Iterator
from pathlib import Path
from uuid import uuid4

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
SCRATCH_ROOT = PROJECT_ROOT / ".tmp_pytest"

if str(PROJECT_ROOT / "src") not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT / "src"))


@pytest.fixture(name="tmp_path")
def scratch_dir() -> Iterator[Path]:
    """Fresh directory for progress databases and ledger exports, removed after the test."""
    path = SCRATCH_ROOT / uuid4().hex
    path.mkdir(parents=True)
    yield path
    shutil.rmtree(path, ignore_errors=True)
    # Other tests may still be using the scratch root.
    with contextlib.suppress(OSError):
        SCRATCH_ROOT.rmdir()
