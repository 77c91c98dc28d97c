from __future__ import annotations

import re
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from policies.options import PolicyOptions

SUPPORTED_PLAN_VERSION = 1

STEP_KINDS = ("table", "policy", "function", "realtime", "index", "seed", "note")

_TYPE_RE = re.compile(r"^[A-Za-z][A-Za-z0-9_ ,()\[\]]*$")
_FUNCTION_NAME_RE = re.compile(r"^[a-z_][a-z0-9_-]*$")
_CODE_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class ColumnSpec(BaseModel):
    name: str
    type: str
    pk: bool = False
    nullable: bool = False
    default: Optional[str] = None
    unique: bool = False
    references: Optional[str] = None

    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="after")
    def _validate_column(self) -> "ColumnSpec":
        if not _TYPE_RE.match(self.type):
            raise ValueError(f"columns.type is not a valid SQL type: {self.type}")
        if self.default is not None:
            if ";" in self.default or "--" in self.default:
                raise ValueError(f"columns.default must be a single expression: {self.default}")
        if self.pk and self.nullable:
            raise ValueError(f"columns.pk implies not nullable: {self.name}")
        return self


class TablePolicy(BaseModel):
    preset: Literal["owner", "public_read", "team_scope", "admin_override"]
    owner_col: Optional[str] = Field(default=None, alias="ownerCol")
    org_col: Optional[str] = Field(default=None, alias="orgCol")

    model_config = ConfigDict(extra="forbid", validate_by_name=True)

    def options(self) -> PolicyOptions:
        return PolicyOptions(preset=self.preset, owner_col=self.owner_col, org_col=self.org_col)


class RlsSpec(BaseModel):
    enable: bool = True

    model_config = ConfigDict(extra="forbid")


class TableSpec(BaseModel):
    name: str
    columns: List[ColumnSpec]
    policy: Optional[TablePolicy] = None
    rls: Optional[RlsSpec] = None
    if_not_exists: bool = Field(default=True, alias="ifNotExists")

    model_config = ConfigDict(extra="forbid", validate_by_name=True)

    @model_validator(mode="after")
    def _validate_table(self) -> "TableSpec":
        if not self.columns:
            raise ValueError(f"table.columns must not be empty: {self.name}")
        names = [c.name for c in self.columns]
        if len(names) != len(set(names)):
            raise ValueError(f"table.columns names must be unique: {self.name}")
        if sum(1 for c in self.columns if c.pk) > 1:
            raise ValueError(f"table supports a single-column primary key only: {self.name}")
        return self


class PolicyStep(PolicyOptions):
    table: str


class FunctionTrigger(BaseModel):
    table: str
    when: Literal[
        "after_insert",
        "after_update",
        "after_delete",
        "before_insert",
        "before_update",
        "before_delete",
    ]

    model_config = ConfigDict(extra="forbid")


class FunctionSignature(BaseModel):
    input: str
    output: str

    model_config = ConfigDict(extra="forbid")


class FunctionSpec(BaseModel):
    name: str
    runtime: Literal["edge", "python"] = "edge"
    path: Optional[str] = None
    triggers: List[FunctionTrigger] = Field(default_factory=list)
    env: List[str] = Field(default_factory=list)
    signature: Optional[FunctionSignature] = None

    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="after")
    def _validate_name(self) -> "FunctionSpec":
        if not _FUNCTION_NAME_RE.match(self.name):
            raise ValueError(f"function.name must match {_FUNCTION_NAME_RE.pattern}: {self.name}")
        for var in self.env:
            if not _CODE_NAME_RE.match(var):
                raise ValueError(f"function.env entries must match {_CODE_NAME_RE.pattern}: {var}")
        return self


class RealtimeSpec(BaseModel):
    table: str
    enabled: bool = True

    model_config = ConfigDict(extra="forbid")


class IndexSpec(BaseModel):
    table: str
    columns: List[str]
    unique: bool = False
    if_not_exists: bool = Field(default=True, alias="ifNotExists")

    model_config = ConfigDict(extra="forbid", validate_by_name=True)

    @model_validator(mode="after")
    def _validate_columns(self) -> "IndexSpec":
        if not self.columns:
            raise ValueError("index.columns must not be empty")
        return self


class SeedSpec(BaseModel):
    table: str
    rows: List[Dict[str, Any]]

    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="after")
    def _validate_rows(self) -> "SeedSpec":
        if not self.rows:
            raise ValueError(f"seed.rows must not be empty: {self.table}")
        for row in self.rows:
            if not row:
                raise ValueError(f"seed.rows entries must not be empty: {self.table}")
        return self


class NoteSpec(BaseModel):
    text: str

    model_config = ConfigDict(extra="forbid")


_FLAT_TABLE_KEYS = ("name", "columns", "rls", "ifNotExists", "if_not_exists")


class Step(BaseModel):
    kind: Literal["table", "policy", "function", "realtime", "index", "seed", "note"]
    table: Optional[TableSpec] = None
    policy: Optional[PolicyStep] = None
    function: Optional[FunctionSpec] = None
    realtime: Optional[RealtimeSpec] = None
    index: Optional[IndexSpec] = None
    seed: Optional[SeedSpec] = None
    note: Optional[NoteSpec] = None

    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="before")
    @classmethod
    def _fold_flat_table(cls, data: Any) -> Any:
        if not isinstance(data, dict) or data.get("kind") != "table" or "table" in data:
            return data
        data = dict(data)
        payload = {key: data.pop(key) for key in _FLAT_TABLE_KEYS if key in data}
        if "policy" in data:
            payload["policy"] = data.pop("policy")
        if payload:
            data["table"] = payload
        return data

    @model_validator(mode="after")
    def _validate_payload(self) -> "Step":
        populated = [kind for kind in STEP_KINDS if getattr(self, kind) is not None]
        if populated != [self.kind]:
            raise ValueError(
                f"step.kind={self.kind} requires exactly the '{self.kind}' payload, got: "
                + (", ".join(populated) or "none")
            )
        return self

    @property
    def payload(self) -> BaseModel:
        return getattr(self, self.kind)


class SmokeCheck(BaseModel):
    method: Literal["GET", "POST", "PATCH", "DELETE"]
    path: str
    expect: int
    body: Optional[Any] = None
    token: Optional[str] = None

    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="after")
    def _validate_path(self) -> "SmokeCheck":
        if not self.path.startswith("/"):
            raise ValueError(f"verification.smoke.path must start with '/': {self.path}")
        return self


class Verification(BaseModel):
    smoke: List[SmokeCheck] = Field(default_factory=list)

    model_config = ConfigDict(extra="forbid")


class Safety(BaseModel):
    warnings: List[str] = Field(default_factory=list)
    breaking: bool = False

    model_config = ConfigDict(extra="forbid")


class SdkOptions(BaseModel):
    generate: bool = False
    framework: Optional[str] = None
    hooks: List[str] = Field(default_factory=list)

    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="after")
    def _validate_hooks(self) -> "SdkOptions":
        for hook in self.hooks:
            if not _CODE_NAME_RE.match(hook):
                raise ValueError(f"sdk.hooks entries must match {_CODE_NAME_RE.pattern}: {hook}")
        return self


class Dependencies(BaseModel):
    payments: bool = False
    email: bool = False
    webhooks: bool = False

    model_config = ConfigDict(extra="forbid")


class Plan(BaseModel):
    version: int
    summary: str
    steps: List[Step]
    verification: Optional[Verification] = None
    safety: Optional[Safety] = None
    sdk: Optional[SdkOptions] = None
    dependencies: Optional[Dependencies] = None
    notes: Optional[str] = None

    model_config = ConfigDict(extra="forbid")

    def steps_of(self, kind: str) -> List[BaseModel]:
        return [step.payload for step in self.steps if step.kind == kind]
