from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from compiler.plan_compiler import compile_plan
from db.client import Database, DatabaseError
from plan.schema import Plan
from plan.validate import PlanValidationError, check_version, parse_plan
from policies.capabilities import DEFAULT_CALLER, CallerFunctions
from verification.probes import Verifier, VerifyResult

from .errors import MigrationConflict, MigrationExecutionFailure, SnapshotFailure, describe
from .manifest import ManifestStore
from .paths import ProjectPaths
from .snapshots import SnapshotStore
from .staging import Staging

logger = logging.getLogger(__name__)

ROLLBACK_HINT = "run rollback --last to restore the previous schema"


class ApplyState(str, Enum):
    STAGED = "staged"
    SNAPSHOTTING = "snapshotting"
    MIGRATING = "migrating"
    SUCCESS = "success"
    PARTIAL_FAILURE = "partial_failure"
    FUNCTIONS_DEPLOYED = "functions_deployed"
    VERIFIED = "verified"


@dataclass
class ApplyResult:
    success: bool = False
    state: ApplyState = ApplyState.STAGED
    snapshot: Optional[str] = None
    applied_migrations: List[str] = field(default_factory=list)
    failed_migrations: List[str] = field(default_factory=list)
    applied_functions: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    verification: Optional[VerifyResult] = None


class ApplyEngine:
    def __init__(
        self,
        paths: ProjectPaths,
        database: Optional[Database] = None,
        verifier: Optional[Verifier] = None,
        caller: CallerFunctions = DEFAULT_CALLER,
    ) -> None:
        self.paths = paths
        self.database = database or Database()
        self.verifier = verifier
        self.caller = caller
        self.staging = Staging(paths)
        self.snapshots = SnapshotStore(paths.snapshots, self.database)
        self.manifest = ManifestStore(paths.manifest)

    def apply(
        self,
        plan: Union[Plan, Dict[str, Any]],
        force: bool = False,
        verify: bool = True,
        atomic: bool = False,
    ) -> ApplyResult:
        result = ApplyResult()
        try:
            plan = _coerce_plan(plan)
        except PlanValidationError as exc:
            result.errors.append(describe(exc))
            return result
        try:
            self._apply(plan, result, force, verify, atomic)
        except Exception as exc:
            logger.exception("apply aborted in state %s", result.state.value)
            result.errors.append(describe(exc))
            result.success = False
        return result

    def _apply(self, plan: Plan, result: ApplyResult, force: bool, verify: bool, atomic: bool) -> None:
        compiled = compile_plan(plan, self.manifest.load(), self.caller)
        result.warnings.extend(compiled.warnings)

        staged = self.staging.stage(compiled, force=force)
        if staged.conflicts:
            result.errors.extend(describe(conflict) for conflict in staged.conflicts)
            return

        result.state = ApplyState.SNAPSHOTTING
        try:
            result.snapshot = self.snapshots.take().name
        except SnapshotFailure as exc:
            logger.warning("continuing without snapshot: %s", exc)
            result.warnings.append(describe(exc))

        result.state = ApplyState.MIGRATING
        if atomic:
            self._migrate_atomic(result, force)
        else:
            self._migrate_each(result, force)
        migrations_ok = not result.failed_migrations
        result.state = ApplyState.SUCCESS if migrations_ok else ApplyState.PARTIAL_FAILURE

        functions_ok = self._deploy_functions(result, force)
        result.state = ApplyState.FUNCTIONS_DEPLOYED

        verified = True
        if verify and migrations_ok:
            verifier = self.verifier or Verifier()
            result.verification = verifier.verify(plan)
            verified = result.verification.success
            if verified:
                result.state = ApplyState.VERIFIED
            else:
                result.errors.append(f"Verification failed (hint: {ROLLBACK_HINT})")

        if migrations_ok:
            self.manifest.record_apply(plan, result.applied_migrations + result.applied_functions)
        result.success = migrations_ok and functions_ok and verified

    def _pending(self, result: ApplyResult, force: bool) -> List[Path]:
        pending: List[Path] = []
        for staged in self.staging.staged_migrations():
            live = self.paths.live_migrations / staged.name
            if live.exists() and not force:
                result.errors.append(describe(MigrationConflict(staged.name)))
                result.failed_migrations.append(staged.name)
                continue
            pending.append(staged)
        return pending

    def _promote(self, staged: Path, live_dir: Path) -> None:
        live_dir.mkdir(parents=True, exist_ok=True)
        staged.replace(live_dir / staged.name)

    def _migrate_each(self, result: ApplyResult, force: bool) -> None:
        for staged in self._pending(result, force):
            try:
                self.database.execute(staged.read_text())
            except DatabaseError as exc:
                failure = MigrationExecutionFailure(staged.name, str(exc))
                logger.error("%s", failure)
                result.errors.append(describe(failure))
                result.failed_migrations.append(staged.name)
                continue
            self._promote(staged, self.paths.live_migrations)
            result.applied_migrations.append(staged.name)
            logger.info("applied migration %s", staged.name)

    def _migrate_atomic(self, result: ApplyResult, force: bool) -> None:
        pending = self._pending(result, force)
        if result.failed_migrations:
            result.failed_migrations.extend(p.name for p in pending)
            return
        if not pending:
            return
        try:
            self.database.execute_batch([staged.read_text() for staged in pending])
        except DatabaseError as exc:
            failure = MigrationExecutionFailure(f"batch of {len(pending)} migrations", str(exc))
            logger.error("%s", failure)
            result.errors.append(describe(failure))
            result.failed_migrations.extend(p.name for p in pending)
            return
        for staged in pending:
            self._promote(staged, self.paths.live_migrations)
            result.applied_migrations.append(staged.name)

    def _deploy_functions(self, result: ApplyResult, force: bool) -> bool:
        ok = True
        for staged in self.staging.staged_functions():
            live = self.paths.live_functions / staged.name
            if live.exists() and not force:
                result.errors.append(describe(MigrationConflict(staged.name)))
                ok = False
                continue
            self._promote(staged, self.paths.live_functions)
            result.applied_functions.append(staged.name)
        if result.applied_functions:
            result.warnings.append(
                "Function runtime must reload to pick up: " + ", ".join(result.applied_functions)
            )
        return ok


def _coerce_plan(plan: Union[Plan, Dict[str, Any]]) -> Plan:
    if isinstance(plan, Plan):
        check_version(plan.version)
        return plan
    return parse_plan(plan)
