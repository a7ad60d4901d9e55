"""Runs the gateway client with repository-relative imports."""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path


def main() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    sys.path.insert(0, str(repo_root))

    # Lazy import after adjusting sys.path
    from gateway.bootstrap import configure_logging, run_forever  # type: ignore
    from gateway.config import get_settings  # type: ignore

    settings = get_settings()
    configure_logging(settings)
    try:
        asyncio.run(run_forever(settings))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
