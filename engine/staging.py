from __future__ import annotations

from dataclasses import dataclass, field
import logging
from pathlib import Path
from typing import List

from compiler.plan_compiler import CompileResult

from .errors import MigrationConflict
from .paths import ProjectPaths

logger = logging.getLogger(__name__)


@dataclass
class StageResult:
    staged: List[str] = field(default_factory=list)
    unchanged: List[str] = field(default_factory=list)
    conflicts: List[MigrationConflict] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.conflicts


class Staging:
    """Write-once holding area for compiled artifacts."""

    def __init__(self, paths: ProjectPaths) -> None:
        self.paths = paths

    def stage(self, result: CompileResult, force: bool = False) -> StageResult:
        outcome = StageResult()
        for migration in result.migrations:
            self._write(self.paths.staged_migrations / migration.filename, migration.content, force, outcome)
        for function in result.functions:
            self._write(self.paths.staged_functions / function.path, function.content, force, outcome)
        # generated client files are always regenerated
        for sdk_file in result.sdk_files:
            self._write(self.paths.root / sdk_file.path, sdk_file.content, True, outcome)
        for test_file in result.test_files:
            self._write(self.paths.root / test_file.path, test_file.content, True, outcome)
        return outcome

    def _write(self, target: Path, content: str, force: bool, outcome: StageResult) -> None:
        name = str(target.relative_to(self.paths.root))
        if target.exists():
            if target.read_text() == content:
                outcome.unchanged.append(name)
                return
            if not force:
                outcome.conflicts.append(MigrationConflict(name, "staging"))
                logger.warning("staging conflict: %s", name)
                return
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content)
        outcome.staged.append(name)

    def staged_migrations(self) -> List[Path]:
        return _sorted_files(self.paths.staged_migrations, "*.sql")

    def staged_functions(self) -> List[Path]:
        return _sorted_files(self.paths.staged_functions, "*")


def _sorted_files(directory: Path, pattern: str) -> List[Path]:
    if not directory.exists():
        return []
    return sorted(p for p in directory.glob(pattern) if p.is_file())
