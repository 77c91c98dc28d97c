from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
import hashlib
import json
import logging
from pathlib import Path, PurePosixPath
import re
import tarfile
import tempfile
from typing import Dict, List, Optional

from engine.errors import MigrationConflict
from engine.paths import ProjectPaths

from .manifest import (
    MANIFEST_FILENAMES,
    ChecksumMismatch,
    TemplateManifest,
    TemplateValidationError,
    VersionIncompatible,
    load_manifest,
    parse_manifest_text,
)

logger = logging.getLogger(__name__)

PLATFORM_VERSION = "1.0.0"

CONTENT_DIRS = {
    "tables": "migrations",
    "policies": "migrations",
    "functions": "functions",
    "assets": "assets",
}


@dataclass(frozen=True)
class PackageResult:
    filename: str
    size: int
    checksum: str


@dataclass
class InstallResult:
    name: str
    migrations: List[str] = field(default_factory=list)
    functions: List[str] = field(default_factory=list)
    assets: List[str] = field(default_factory=list)
    unchanged: List[str] = field(default_factory=list)


def _version_parts(version: str) -> List[int]:
    # "0-beta" counts as 0, "2rc1" as 2
    parts = []
    for segment in version.strip().split("."):
        digits = re.match(r"\d*", segment).group()
        parts.append(int(digits) if digits else 0)
    return parts


def compare_versions(a: str, b: str) -> int:
    left = _version_parts(a)
    right = _version_parts(b)
    width = max(len(left), len(right))
    left += [0] * (width - len(left))
    right += [0] * (width - len(right))
    if left < right:
        return -1
    if left > right:
        return 1
    return 0


def sha256_file(path: Path) -> str:
    digest = hashlib.sha256()
    with Path(path).open("rb") as handle:
        for chunk in iter(lambda: handle.read(65536), b""):
            digest.update(chunk)
    return digest.hexdigest()


def validate_template(template_dir: Path) -> TemplateManifest:
    template_dir = Path(template_dir)
    if not template_dir.is_dir():
        raise TemplateValidationError("Template path must be a directory")
    manifest = load_manifest(template_dir)
    for category, dirname in CONTENT_DIRS.items():
        if getattr(manifest.contents, category) and not (template_dir / dirname).is_dir():
            raise TemplateValidationError(
                f"Template declares {category} but {dirname}/ directory is missing"
            )
    return manifest


def package_template(template_dir: Path, output: Optional[Path] = None) -> PackageResult:
    template_dir = Path(template_dir)
    manifest = validate_template(template_dir)
    target = Path(output) if output is not None else Path(f"{manifest.name}.tar.gz")
    resolved_target = target.resolve()

    with tarfile.open(target, "w:gz") as archive:
        for path in sorted(template_dir.rglob("*")):
            if not path.is_file() or path.resolve() == resolved_target:
                continue
            archive.add(path, arcname=path.relative_to(template_dir).as_posix(), recursive=False)

    result = PackageResult(filename=str(target), size=target.stat().st_size, checksum=sha256_file(target))
    logger.info("packaged template %s into %s (%d bytes)", manifest.name, result.filename, result.size)
    return result


def _member_path(member: tarfile.TarInfo) -> PurePosixPath:
    path = PurePosixPath(member.name)
    if path.is_absolute() or ".." in path.parts:
        raise TemplateValidationError(f"Unsafe path in template archive: {member.name}")
    if not (member.isfile() or member.isdir()):
        raise TemplateValidationError(f"Unsupported entry in template archive: {member.name}")
    return path


def read_archive_manifest(archive_path: Path) -> TemplateManifest:
    with tarfile.open(archive_path, "r:gz") as archive:
        for member in archive.getmembers():
            if member.isfile() and str(_member_path(member)) in MANIFEST_FILENAMES:
                handle = archive.extractfile(member)
                return parse_manifest_text(handle.read().decode("utf-8"))
    raise TemplateValidationError(f"Template archive has no manifest.yaml: {archive_path}")


def _extract(archive_path: Path, destination: Path) -> None:
    with tarfile.open(archive_path, "r:gz") as archive:
        members = archive.getmembers()
        for member in members:
            _member_path(member)
        archive.extractall(destination, members=members, filter="data")


def _plan_copies(manifest: TemplateManifest, source: Path, paths: ProjectPaths) -> Dict[str, List[tuple[Path, Path]]]:
    copies: Dict[str, List[tuple[Path, Path]]] = {"migrations": [], "functions": [], "assets": []}
    migrations = source / "migrations"
    if migrations.is_dir():
        for path in sorted(migrations.glob("*.sql")):
            copies["migrations"].append((path, paths.staged_migrations / f"{manifest.name}_{path.name}"))
    functions = source / "functions"
    if functions.is_dir():
        for path in sorted(p for p in functions.iterdir() if p.is_file()):
            copies["functions"].append((path, paths.staged_functions / path.name))
    assets = source / "assets"
    if assets.is_dir():
        for path in sorted(p for p in assets.rglob("*") if p.is_file()):
            copies["assets"].append((path, paths.staged_assets / manifest.name / path.relative_to(assets)))
    return copies


def install_template(
    archive_path: Path,
    paths: ProjectPaths,
    checksum: Optional[str] = None,
    platform_version: str = PLATFORM_VERSION,
    force: bool = False,
) -> InstallResult:
    """Stage a packaged template into the project.

    The checksum and the minimum platform version are checked before anything
    is extracted, and every destination is checked for conflicts before the
    first file is written.
    """
    archive_path = Path(archive_path)
    if checksum:
        actual = sha256_file(archive_path)
        if actual != checksum.lower():
            raise ChecksumMismatch(checksum, actual)

    manifest = read_archive_manifest(archive_path)
    if manifest.min_platform_version and compare_versions(platform_version, manifest.min_platform_version) < 0:
        raise VersionIncompatible(manifest.min_platform_version, platform_version)

    result = InstallResult(name=manifest.name)
    with tempfile.TemporaryDirectory(prefix="template-") as tmp_dir:
        source = Path(tmp_dir)
        _extract(archive_path, source)
        validate_template(source)
        copies = _plan_copies(manifest, source, paths)

        pending = []
        for category, pairs in copies.items():
            for src, dest in pairs:
                if dest.exists():
                    if dest.read_bytes() == src.read_bytes():
                        result.unchanged.append(dest.name)
                        continue
                    if not force:
                        raise MigrationConflict(str(dest.relative_to(paths.root)), "staging")
                pending.append((category, src, dest))

        for category, src, dest in pending:
            dest.parent.mkdir(parents=True, exist_ok=True)
            dest.write_bytes(src.read_bytes())
            getattr(result, category).append(dest.name)

    record_installation(paths, manifest, archive_path)
    logger.info(
        "installed template %s migrations=%d functions=%d assets=%d",
        manifest.name, len(result.migrations), len(result.functions), len(result.assets),
    )
    return result


def record_installation(paths: ProjectPaths, manifest: TemplateManifest, archive_path: Path) -> None:
    installed = list_installed(paths)
    installed = [entry for entry in installed if entry.get("name") != manifest.name]
    installed.append(
        {
            "name": manifest.name,
            "version": manifest.version,
            "installed_at": datetime.now(UTC).isoformat(),
            "archive": Path(archive_path).name,
            "checksum": sha256_file(archive_path),
        }
    )
    paths.installed_templates.parent.mkdir(parents=True, exist_ok=True)
    paths.installed_templates.write_text(json.dumps(installed, indent=2) + "\n")


def list_installed(paths: ProjectPaths) -> List[dict]:
    if not paths.installed_templates.exists():
        return []
    return json.loads(paths.installed_templates.read_text())
