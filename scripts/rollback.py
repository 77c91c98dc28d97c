#!/usr/bin/env python3
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from engine.errors import NoSnapshotAvailable, describe  # noqa: E402
from engine.paths import ProjectPaths  # noqa: E402
from engine.rollback import RollbackEngine  # noqa: E402


def main() -> None:
    parser = argparse.ArgumentParser(description="Restore the schema from the latest snapshot")
    parser.add_argument("--last", action="store_true", required=True, help="Roll back the most recent apply")
    parser.add_argument("--root", default=None, help="Project root (default: KICKSTACK_ROOT or cwd)")
    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO, format="%(levelname)s:%(name)s:%(message)s")

    paths = ProjectPaths(Path(args.root).resolve()) if args.root else ProjectPaths.from_env()
    try:
        result = RollbackEngine(paths).rollback()
    except NoSnapshotAvailable as exc:
        raise SystemExit(f"[rollback] {describe(exc)}") from exc

    for warning in result.warnings:
        print(f"[rollback] warning={warning}")
    if not result.success:
        raise SystemExit("[rollback] failed: " + "; ".join(result.errors))
    print(f"[rollback] restored={result.snapshot}")


if __name__ == "__main__":
    main()
