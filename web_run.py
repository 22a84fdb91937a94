"""HTTP host: ``python web_run.py``; REALTYGAME_HOST / REALTYGAME_PORT override the bind address."""

from __future__ import annotations

import os
import sys
from pathlib import Path


def _bootstrap_src() -> None:
    src = Path(__file__).resolve().parent / "src"
    if str(src) not in sys.path:
        sys.path.insert(0, str(src))


def main() -> int:
    _bootstrap_src()

    import uvicorn

    from realtygame.logging import setup_logging

    setup_logging(os.getenv("REALTYGAME_LOG_LEVEL", "INFO"))
    host = os.getenv("REALTYGAME_HOST", "127.0.0.1")
    port = int(os.getenv("REALTYGAME_PORT", "8000"))
    # Sessions live in process memory, so a single worker without reload.
    uvicorn.run("realtygame.webapp:app", host=host, port=port, reload=False, workers=1)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
