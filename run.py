"""Console entry point: ``python run.py [--player ID] [--seed N] [--log-level LEVEL]``."""

from __future__ import annotations

import sys
from pathlib import Path


def _bootstrap_src() -> None:
    src = Path(__file__).resolve().parent / "src"
    if str(src) not in sys.path:
        sys.path.insert(0, str(src))


def _utf8_console() -> None:
    # Russian narration on a Windows console otherwise fails with UnicodeEncodeError.
    for stream in (sys.stdout, sys.stderr):
        reconfigure = getattr(stream, "reconfigure", None)
        if callable(reconfigure):
            try:
                reconfigure(encoding="utf-8")
            except (OSError, ValueError):
                pass


def main() -> int:
    _bootstrap_src()
    _utf8_console()

    from realtygame.cli import main as game_main

    return game_main(sys.argv[1:])


if __name__ == "__main__":
    raise SystemExit(main())
