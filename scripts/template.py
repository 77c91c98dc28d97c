#!/usr/bin/env python3
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from engine.errors import MigrationConflict, describe  # noqa: E402
from engine.paths import ProjectPaths  # noqa: E402
from template_kit.manifest import TemplateValidationError  # noqa: E402
from template_kit.packager import (  # noqa: E402
    PLATFORM_VERSION,
    install_template,
    package_template,
    validate_template,
)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Validate, package and install templates")
    sub = parser.add_subparsers(dest="command", required=True)

    validate = sub.add_parser("validate", help="Check a template directory")
    validate.add_argument("path")

    package = sub.add_parser("package", help="Build a .tar.gz from a template directory")
    package.add_argument("path")
    package.add_argument("--output", default=None)

    install = sub.add_parser("install", help="Stage a packaged template into the project")
    install.add_argument("archive")
    install.add_argument("--checksum", default=None, help="Expected sha256 of the archive")
    install.add_argument("--root", default=None, help="Project root (default: KICKSTACK_ROOT or cwd)")
    install.add_argument("--platform-version", default=PLATFORM_VERSION)
    install.add_argument("--force", action="store_true")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    logging.basicConfig(level=logging.INFO, format="%(levelname)s:%(name)s:%(message)s")

    try:
        if args.command == "validate":
            manifest = validate_template(Path(args.path))
            print(f"[template] valid name={manifest.name} category={manifest.category}")
        elif args.command == "package":
            result = package_template(Path(args.path), Path(args.output) if args.output else None)
            print(f"[template] filename={result.filename} size={result.size} sha256={result.checksum}")
        else:
            paths = ProjectPaths(Path(args.root).resolve()) if args.root else ProjectPaths.from_env()
            result = install_template(
                Path(args.archive),
                paths,
                checksum=args.checksum,
                platform_version=args.platform_version,
                force=args.force,
            )
            print(
                f"[template] installed={result.name} migrations={len(result.migrations)} "
                f"functions={len(result.functions)} assets={len(result.assets)}"
            )
            print("[template] review the staged files, then run apply")
    except (TemplateValidationError, MigrationConflict) as exc:
        raise SystemExit(f"[template] {describe(exc)}") from exc


if __name__ == "__main__":
    main()
