from .apply import ApplyEngine, ApplyResult, ApplyState
from .errors import (
    MigrationConflict,
    MigrationExecutionFailure,
    NoSnapshotAvailable,
    SnapshotFailure,
    describe,
)
from .manifest import ManifestStore, ProjectManifest
from .paths import ProjectPaths
from .rollback import RollbackEngine, RollbackResult
from .snapshots import SnapshotStore
from .staging import StageResult, Staging

__all__ = [
    "ApplyEngine",
    "ApplyResult",
    "ApplyState",
    "ManifestStore",
    "MigrationConflict",
    "MigrationExecutionFailure",
    "NoSnapshotAvailable",
    "ProjectManifest",
    "ProjectPaths",
    "RollbackEngine",
    "RollbackResult",
    "SnapshotFailure",
    "SnapshotStore",
    "StageResult",
    "Staging",
    "describe",
]
