#!/usr/bin/env python3
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from compiler.plan_compiler import compile_plan  # noqa: E402
from engine.errors import describe  # noqa: E402
from engine.manifest import ManifestStore  # noqa: E402
from engine.paths import ProjectPaths  # noqa: E402
from engine.staging import Staging  # noqa: E402
from plan.validate import PlanValidationError, load_plan  # noqa: E402
from policies.synthesizer import IdentifierInvalid  # noqa: E402


def main() -> None:
    parser = argparse.ArgumentParser(description="Compile a plan and stage its artifacts")
    parser.add_argument("--file", required=True, help="Path to plan YAML/JSON")
    parser.add_argument("--root", default=None, help="Project root (default: KICKSTACK_ROOT or cwd)")
    parser.add_argument("--force", action="store_true", help="Overwrite staged files with different content")
    parser.add_argument("--dry-run", action="store_true", help="Compile only, do not stage")
    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO, format="%(levelname)s:%(name)s:%(message)s")

    paths = ProjectPaths(Path(args.root).resolve()) if args.root else ProjectPaths.from_env()
    try:
        plan = load_plan(args.file)
        result = compile_plan(plan, ManifestStore(paths.manifest).load())
    except (PlanValidationError, IdentifierInvalid) as exc:
        raise SystemExit(f"[plan] {describe(exc)}") from exc

    for warning in result.warnings:
        print(f"[plan] warning={warning}")
    for migration in result.migrations:
        print(f"[plan] migration={migration.filename} order={migration.order}")
    for function in result.functions:
        print(f"[plan] function={function.path}")

    if args.dry_run:
        return
    staged = Staging(paths).stage(result, force=args.force)
    print(f"[plan] staged={len(staged.staged)} unchanged={len(staged.unchanged)} conflicts={len(staged.conflicts)}")
    if staged.conflicts:
        raise SystemExit("[plan] " + "; ".join(describe(c) for c in staged.conflicts))


if __name__ == "__main__":
    main()
