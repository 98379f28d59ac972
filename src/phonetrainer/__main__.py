"""Run the phonetrainer CLI with ``python -m phonetrainer``."""

from __future__ import annotations

from .main import main_entry


def main() -> None:
    main_entry()


if __name__ == "__main__":  # pragma: no cover
    main()
