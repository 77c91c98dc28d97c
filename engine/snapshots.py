from __future__ import annotations

from datetime import UTC, datetime
import logging
import os
from pathlib import Path
from typing import List, Optional

from db.client import Database, DatabaseError

from .errors import NoSnapshotAvailable, SnapshotFailure

logger = logging.getLogger(__name__)


def _snapshot_keep() -> int:
    return int(os.getenv("SNAPSHOT_KEEP", "5"))


def _stamp() -> str:
    return datetime.now(UTC).strftime("%Y%m%dT%H%M%S%fZ")


class SnapshotStore:
    def __init__(self, directory: Path, database: Database, keep: Optional[int] = None) -> None:
        self.directory = Path(directory)
        self.database = database
        self.keep = keep if keep is not None else _snapshot_keep()

    def list(self) -> List[Path]:
        if not self.directory.exists():
            return []
        return sorted(self.directory.glob("schema_*.sql"))

    def latest(self) -> Path:
        snapshots = self.list()
        if not snapshots:
            raise NoSnapshotAvailable()
        return snapshots[-1]

    def take(self) -> Path:
        try:
            ddl = self.database.dump_schema()
        except DatabaseError as exc:
            raise SnapshotFailure(str(exc)) from exc
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self.directory / f"schema_{_stamp()}.sql"
        path.write_text(ddl)
        logger.info("schema snapshot written to %s", path)
        self.prune()
        return path

    def prune(self) -> List[Path]:
        snapshots = self.list()
        removed = snapshots[: max(0, len(snapshots) - self.keep)]
        for path in removed:
            path.unlink()
        return removed
