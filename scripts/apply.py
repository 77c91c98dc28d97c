#!/usr/bin/env python3
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from engine.apply import ApplyEngine  # noqa: E402
from engine.errors import describe  # noqa: E402
from engine.paths import ProjectPaths  # noqa: E402
from plan.validate import PlanValidationError, load_plan  # noqa: E402


def main() -> None:
    parser = argparse.ArgumentParser(description="Apply a plan to the database")
    parser.add_argument("--file", required=True, help="Path to plan YAML/JSON")
    parser.add_argument("--root", default=None, help="Project root (default: KICKSTACK_ROOT or cwd)")
    parser.add_argument("--force", action="store_true", help="Overwrite existing live files")
    parser.add_argument("--no-verify", action="store_true", help="Skip post-apply verification")
    parser.add_argument("--atomic", action="store_true", help="Run all migrations in one transaction")
    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO, format="%(levelname)s:%(name)s:%(message)s")

    paths = ProjectPaths(Path(args.root).resolve()) if args.root else ProjectPaths.from_env()
    try:
        plan = load_plan(args.file)
    except PlanValidationError as exc:
        raise SystemExit(f"[apply] {describe(exc)}") from exc

    result = ApplyEngine(paths).apply(plan, force=args.force, verify=not args.no_verify, atomic=args.atomic)

    print(f"[apply] state={result.state.value} snapshot={result.snapshot}")
    for name in result.applied_migrations:
        print(f"[apply] applied={name}")
    for name in result.failed_migrations:
        print(f"[apply] failed={name}")
    for name in result.applied_functions:
        print(f"[apply] function={name}")
    for warning in result.warnings:
        print(f"[apply] warning={warning}")
    if result.verification is not None:
        for check in result.verification.passed:
            print(f"[apply] verify_passed={check}")
        for check in result.verification.failed:
            print(f"[apply] verify_failed={check}")
    if not result.success:
        raise SystemExit("[apply] failed: " + "; ".join(result.errors))


if __name__ == "__main__":
    main()
