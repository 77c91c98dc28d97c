from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import List, Optional

from db.client import Database, DatabaseError

from .errors import describe
from .manifest import ManifestStore
from .paths import ProjectPaths
from .snapshots import SnapshotStore

logger = logging.getLogger(__name__)

DATA_LOSS_WARNING = (
    "Rollback restores schema structure only: rows written since the snapshot "
    "are lost and tables created after it are dropped"
)


@dataclass
class RollbackResult:
    success: bool = False
    snapshot: Optional[str] = None
    warnings: List[str] = field(default_factory=lambda: [DATA_LOSS_WARNING])
    errors: List[str] = field(default_factory=list)


class RollbackEngine:
    def __init__(self, paths: ProjectPaths, database: Optional[Database] = None) -> None:
        self.paths = paths
        self.database = database or Database()
        self.snapshots = SnapshotStore(paths.snapshots, self.database)
        self.manifest = ManifestStore(paths.manifest)

    def rollback(self) -> RollbackResult:
        """Restore the most recent schema snapshot.

        Raises NoSnapshotAvailable when nothing has been captured yet. Database
        errors are reported in the result and leave the snapshot in place so
        the restore can be retried.
        """
        snapshot = self.snapshots.latest()
        result = RollbackResult(snapshot=snapshot.name)
        logger.warning("rolling back to %s", snapshot.name)
        try:
            self.database.restore_schema(snapshot.read_text())
        except DatabaseError as exc:
            result.errors.append(describe(exc))
            return result
        snapshot.unlink()
        self.manifest.record_rollback(snapshot.name)
        result.success = True
        return result
