from __future__ import annotations

from datetime import UTC, datetime
import json
from pathlib import Path
from typing import List, Literal, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field

from compiler.functions import function_filename
from compiler.plan_compiler import index_name
from plan.schema import ColumnSpec, Dependencies, FunctionTrigger, Plan

HISTORY_LIMIT = 50


def _utcnow() -> str:
    return datetime.now(UTC).isoformat()


class ManifestTable(BaseModel):
    name: str
    columns: List[ColumnSpec]
    rls_enabled: bool = False
    created_at: str
    last_modified: str


class ManifestPolicy(BaseModel):
    table: str
    preset: str
    owner_col: Optional[str] = None
    org_col: Optional[str] = None
    created_at: str


class ManifestIndex(BaseModel):
    table: str
    columns: List[str]
    unique: bool = False
    name: str
    created_at: str


class ManifestFunction(BaseModel):
    name: str
    runtime: str
    path: str
    triggers: List[FunctionTrigger] = Field(default_factory=list)
    env: List[str] = Field(default_factory=list)
    created_at: str


class ManifestRealtime(BaseModel):
    table: str
    enabled: bool
    created_at: str


class ChangeEvent(BaseModel):
    timestamp: str
    type: Literal["create", "evolve", "rollback"]
    summary: str
    changes: List[str] = Field(default_factory=list)


class SchemaState(BaseModel):
    tables: List[ManifestTable] = Field(default_factory=list)
    policies: List[ManifestPolicy] = Field(default_factory=list)
    indexes: List[ManifestIndex] = Field(default_factory=list)
    functions: List[ManifestFunction] = Field(default_factory=list)
    realtime: List[ManifestRealtime] = Field(default_factory=list)


class ProjectManifest(BaseModel):
    version: int = 1
    project_name: str
    created: str
    last_modified: str
    db_schema: SchemaState = Field(default_factory=SchemaState, alias="schema")
    dependencies: Dependencies = Field(default_factory=Dependencies)
    history: List[ChangeEvent] = Field(default_factory=list)

    model_config = ConfigDict(validate_by_name=True)

    def table_columns(self) -> List[tuple[str, Sequence[ColumnSpec]]]:
        return [(t.name, t.columns) for t in self.db_schema.tables]

    def table_names(self) -> List[str]:
        return [t.name for t in self.db_schema.tables]


class ManifestStore:
    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> Optional[ProjectManifest]:
        if not self.path.exists():
            return None
        return ProjectManifest.model_validate(json.loads(self.path.read_text()))

    def save(self, manifest: ProjectManifest) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        manifest.last_modified = _utcnow()
        self.path.write_text(
            json.dumps(manifest.model_dump(by_alias=True), indent=2) + "\n"
        )

    def load_or_create(self, project_name: Optional[str] = None) -> ProjectManifest:
        manifest = self.load()
        if manifest is not None:
            return manifest
        now = _utcnow()
        return ProjectManifest(
            project_name=project_name or self.path.parent.parent.name or "project",
            created=now,
            last_modified=now,
        )

    def record_apply(self, plan: Plan, changes: Sequence[str]) -> ProjectManifest:
        manifest = self.load_or_create()
        now = _utcnow()
        schema = manifest.db_schema
        event_type = "evolve" if manifest.history or schema.tables else "create"

        for step in plan.steps:
            if step.kind == "table":
                table = step.table
                previous = next((t for t in schema.tables if t.name == table.name), None)
                schema.tables = [t for t in schema.tables if t.name != table.name]
                schema.tables.append(
                    ManifestTable(
                        name=table.name,
                        columns=list(table.columns),
                        rls_enabled=bool(table.policy or (table.rls and table.rls.enable)),
                        created_at=previous.created_at if previous else now,
                        last_modified=now,
                    )
                )
                if table.policy is not None:
                    options = table.policy.options()
                    self._add_policy(schema, table.name, options.preset,
                                     options.resolved_owner_col(), options.resolved_org_col(), now)
            elif step.kind == "policy":
                policy = step.policy
                self._add_policy(schema, policy.table, policy.preset,
                                 policy.resolved_owner_col(), policy.resolved_org_col(), now)
                for table in schema.tables:
                    if table.name == policy.table:
                        table.rls_enabled = True
            elif step.kind == "index":
                index = step.index
                name = index_name(index)
                schema.indexes = [i for i in schema.indexes if i.name != name]
                schema.indexes.append(
                    ManifestIndex(table=index.table, columns=list(index.columns),
                                  unique=index.unique, name=name, created_at=now)
                )
            elif step.kind == "function":
                function = step.function
                schema.functions = [f for f in schema.functions if f.name != function.name]
                schema.functions.append(
                    ManifestFunction(
                        name=function.name,
                        runtime=function.runtime,
                        path=function_filename(function),
                        triggers=list(function.triggers),
                        env=list(function.env),
                        created_at=now,
                    )
                )
            elif step.kind == "realtime":
                realtime = step.realtime
                schema.realtime = [r for r in schema.realtime if r.table != realtime.table]
                schema.realtime.append(
                    ManifestRealtime(table=realtime.table, enabled=realtime.enabled, created_at=now)
                )

        if plan.dependencies is not None:
            manifest.dependencies = plan.dependencies
        self._record(manifest, ChangeEvent(
            timestamp=now, type=event_type, summary=plan.summary, changes=list(changes)
        ))
        self.save(manifest)
        return manifest

    def record_rollback(self, snapshot_name: str) -> Optional[ProjectManifest]:
        manifest = self.load()
        if manifest is None:
            return None
        self._record(manifest, ChangeEvent(
            timestamp=_utcnow(),
            type="rollback",
            summary=f"Restored schema snapshot {snapshot_name}",
            changes=[snapshot_name],
        ))
        self.save(manifest)
        return manifest

    @staticmethod
    def _add_policy(schema: SchemaState, table: str, preset: str,
                    owner_col: Optional[str], org_col: Optional[str], now: str) -> None:
        if any(p.table == table and p.preset == preset for p in schema.policies):
            return
        schema.policies.append(
            ManifestPolicy(table=table, preset=preset, owner_col=owner_col,
                           org_col=org_col, created_at=now)
        )

    @staticmethod
    def _record(manifest: ProjectManifest, event: ChangeEvent) -> None:
        manifest.history.append(event)
        if len(manifest.history) > HISTORY_LIMIT:
            manifest.history = manifest.history[-HISTORY_LIMIT:]
