from __future__ import annotations

from dataclasses import dataclass
import os
from pathlib import Path


def _project_root() -> Path:
    return Path(os.getenv("KICKSTACK_ROOT", ".")).resolve()


@dataclass(frozen=True)
class ProjectPaths:
    root: Path

    @classmethod
    def from_env(cls) -> "ProjectPaths":
        return cls(_project_root())

    @property
    def staged_migrations(self) -> Path:
        return self.root / "infra" / "migrations" / "_staged"

    @property
    def live_migrations(self) -> Path:
        return self.root / "infra" / "migrations"

    @property
    def staged_functions(self) -> Path:
        return self.root / "api" / "functions" / "_staged"

    @property
    def live_functions(self) -> Path:
        return self.root / "api" / "functions"

    @property
    def state_dir(self) -> Path:
        return self.root / ".kickstack"

    @property
    def snapshots(self) -> Path:
        return self.state_dir / "snapshots"

    @property
    def manifest(self) -> Path:
        return self.state_dir / "project.json"

    @property
    def installed_templates(self) -> Path:
        return self.state_dir / "installed.json"

    @property
    def staged_assets(self) -> Path:
        return self.root / "_staged" / "assets"
