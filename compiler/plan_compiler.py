from __future__ import annotations

from dataclasses import dataclass, field
import json
import re
from typing import Any, Iterable, List, Optional, Sequence

from plan.schema import (
    ColumnSpec,
    FunctionSpec,
    IndexSpec,
    Plan,
    RealtimeSpec,
    SeedSpec,
    TableSpec,
)
from plan.validate import plan_warnings
from policies.capabilities import DEFAULT_CALLER, CallerFunctions
from policies.synthesizer import (
    CRUD_GRANT,
    IdentifierInvalid,
    check_identifier,
    generate,
    preset_warnings,
    qualified,
    quote_ident,
)

from .functions import function_filename, render_function
from .sdk import CLIENT_TS, render_hooks, render_smoke_tests, render_types, sdk_tables

ORDER_TABLE = 1
ORDER_POLICY = 2
ORDER_REALTIME = 3
ORDER_INDEX = 4
ORDER_SEED = 5

REALTIME_CHANNEL = "table_changes"

_REFERENCE_RE = re.compile(r"^([a-z_][a-z0-9_]*)(?:\(([a-z_][a-z0-9_]*)\))?$")


@dataclass(frozen=True)
class MigrationFile:
    filename: str
    content: str
    order: int


@dataclass(frozen=True)
class FunctionFile:
    path: str
    content: str


@dataclass(frozen=True)
class SdkFile:
    path: str
    content: str


@dataclass(frozen=True)
class TestFile:
    path: str
    content: str


@dataclass(frozen=True)
class CompileResult:
    migrations: List[MigrationFile] = field(default_factory=list)
    functions: List[FunctionFile] = field(default_factory=list)
    sdk_files: List[SdkFile] = field(default_factory=list)
    test_files: List[TestFile] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


def _references_sql(reference: str) -> str:
    match = _REFERENCE_RE.match(reference)
    if not match:
        raise IdentifierInvalid("reference", reference)
    table, column = match.group(1), match.group(2)
    target = qualified(table)
    if column:
        return f"REFERENCES {target}({quote_ident(column)})"
    return f"REFERENCES {target}"


def _column_sql(column: ColumnSpec) -> str:
    check_identifier(column.name, "column")
    parts = [quote_ident(column.name), column.type.upper()]
    if column.pk:
        parts.append("PRIMARY KEY")
    if column.default is not None:
        parts.append(f"DEFAULT {column.default}")
    if not column.nullable and not column.pk:
        parts.append("NOT NULL")
    if column.unique and not column.pk:
        parts.append("UNIQUE")
    if column.references:
        parts.append(_references_sql(column.references))
    return " ".join(parts)


def table_sql(table: TableSpec, caller: CallerFunctions = DEFAULT_CALLER) -> str:
    check_identifier(table.name, "table")
    target = qualified(table.name)
    exists = "IF NOT EXISTS " if table.if_not_exists else ""
    columns = ",\n".join(f"  {_column_sql(column)}" for column in table.columns)
    out = f"-- Create table {table.name}\nCREATE TABLE {exists}{target} (\n{columns}\n);\n"

    if table.policy is not None:
        # the policy block carries its own grants
        return out + "\n" + generate(table.name, table.policy.options(), caller)
    if table.rls is not None and table.rls.enable:
        out += f"\nALTER TABLE {target} ENABLE ROW LEVEL SECURITY;\n"

    out += f"\nGRANT {CRUD_GRANT} ON {target} TO authenticated;\n"
    return out


def realtime_sql(spec: RealtimeSpec) -> str:
    table = check_identifier(spec.table, "realtime table")
    target = qualified(table)
    function = f"notify_{table}_changes"
    trigger = f"{table}_realtime"
    if not spec.enabled:
        return (
            f"-- Disable realtime for {table}\n"
            f"DROP TRIGGER IF EXISTS {trigger} ON {target};\n"
            f"DROP FUNCTION IF EXISTS public.{function}();\n"
        )
    return (
        f"-- Enable realtime for {table}\n"
        f"CREATE OR REPLACE FUNCTION public.{function}() RETURNS trigger\n"
        "  LANGUAGE plpgsql AS $$\n"
        "BEGIN\n"
        f"  PERFORM pg_notify('{REALTIME_CHANNEL}', json_build_object(\n"
        "    'table', TG_TABLE_NAME,\n"
        "    'op', TG_OP,\n"
        "    'data', CASE WHEN TG_OP = 'DELETE' THEN row_to_json(OLD) ELSE row_to_json(NEW) END\n"
        "  )::text);\n"
        "  RETURN COALESCE(NEW, OLD);\n"
        "END;\n"
        "$$;\n\n"
        f"DROP TRIGGER IF EXISTS {trigger} ON {target};\n"
        f"CREATE TRIGGER {trigger}\n"
        f"  AFTER INSERT OR UPDATE OR DELETE ON {target}\n"
        f"  FOR EACH ROW EXECUTE FUNCTION public.{function}();\n"
    )


def index_name(spec: IndexSpec) -> str:
    return f"idx_{spec.table}_{'_'.join(spec.columns)}"


def index_sql(spec: IndexSpec) -> str:
    check_identifier(spec.table, "index table")
    for column in spec.columns:
        check_identifier(column, "index column")
    unique = "UNIQUE " if spec.unique else ""
    exists = "IF NOT EXISTS " if spec.if_not_exists else ""
    columns = ", ".join(quote_ident(column) for column in spec.columns)
    return (
        f"-- Index on {spec.table} ({', '.join(spec.columns)})\n"
        f"CREATE {unique}INDEX {exists}{index_name(spec)} ON {qualified(spec.table)} ({columns});\n"
    )


def sql_literal(value: Any) -> str:
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, (int, float)):
        return repr(value)
    if isinstance(value, (dict, list)):
        value = json.dumps(value, sort_keys=True)
    return "'" + str(value).replace("'", "''") + "'"


def seed_sql(spec: SeedSpec) -> str:
    check_identifier(spec.table, "seed table")
    columns: List[str] = []
    for row in spec.rows:
        for key in row:
            if key not in columns:
                columns.append(check_identifier(key, "seed column"))
    values = []
    for row in spec.rows:
        cells = [sql_literal(row[col]) if col in row else "DEFAULT" for col in columns]
        values.append(f"  ({', '.join(cells)})")
    return (
        f"-- Seed {spec.table}\n"
        f"INSERT INTO {qualified(spec.table)} ({', '.join(quote_ident(c) for c in columns)})\n"
        "VALUES\n"
        + ",\n".join(values)
        + "\nON CONFLICT DO NOTHING;\n"
    )


def trigger_sql(spec: FunctionSpec) -> str:
    channel = f"fn_{spec.name}"
    function = f"notify_fn_{spec.name.replace('-', '_')}"
    out = (
        f"-- Triggers for function {spec.name}\n"
        f"CREATE OR REPLACE FUNCTION public.{function}() RETURNS trigger\n"
        "  LANGUAGE plpgsql AS $$\n"
        "BEGIN\n"
        f"  PERFORM pg_notify('{channel}', json_build_object(\n"
        "    'table', TG_TABLE_NAME,\n"
        "    'op', TG_OP,\n"
        "    'record', CASE WHEN TG_OP = 'DELETE' THEN row_to_json(OLD) ELSE row_to_json(NEW) END\n"
        "  )::text);\n"
        "  RETURN COALESCE(NEW, OLD);\n"
        "END;\n"
        "$$;\n"
    )
    for trigger in spec.triggers:
        table = check_identifier(trigger.table, "trigger table")
        timing, op = trigger.when.split("_", 1)
        name = f"{function}_{table}_{trigger.when}"
        out += (
            f"\nDROP TRIGGER IF EXISTS {name} ON {qualified(table)};\n"
            f"CREATE TRIGGER {name}\n"
            f"  {timing.upper()} {op.upper()} ON {qualified(table)}\n"
            f"  FOR EACH ROW EXECUTE FUNCTION public.{function}();\n"
        )
    return out


def _filename(position: int, description: str) -> str:
    return f"{position:03d}_{description}.sql"


def compile_plan(
    plan: Plan,
    manifest: Optional[Any] = None,
    caller: CallerFunctions = DEFAULT_CALLER,
) -> CompileResult:
    """Translate every plan step into migration, function, SDK and test artifacts.

    Compilation is deterministic: filenames carry the 1-based step position so
    lexical order of the output equals step order, and identical plans always
    produce identical files.
    """
    migrations: List[MigrationFile] = []
    functions: List[FunctionFile] = []
    warnings: List[str] = list(plan.safety.warnings) if plan.safety else []

    for position, step in enumerate(plan.steps, start=1):
        if step.kind == "table":
            table = step.table
            migrations.append(
                MigrationFile(_filename(position, f"create_{table.name}"), table_sql(table, caller), ORDER_TABLE)
            )
            if table.policy is not None:
                warnings.extend(preset_warnings(table.name, table.policy.options()))
        elif step.kind == "policy":
            policy = step.policy
            migrations.append(
                MigrationFile(
                    _filename(position, f"policy_{policy.preset}_{policy.table}"),
                    generate(policy.table, policy, caller),
                    ORDER_POLICY,
                )
            )
            warnings.extend(preset_warnings(policy.table, policy))
        elif step.kind == "function":
            spec = step.function
            functions.append(FunctionFile(function_filename(spec), render_function(spec)))
            if spec.triggers:
                migrations.append(
                    MigrationFile(
                        _filename(position, f"trigger_{spec.name.replace('-', '_')}"),
                        trigger_sql(spec),
                        ORDER_REALTIME,
                    )
                )
        elif step.kind == "realtime":
            spec = step.realtime
            migrations.append(
                MigrationFile(_filename(position, f"realtime_{spec.table}"), realtime_sql(spec), ORDER_REALTIME)
            )
        elif step.kind == "index":
            spec = step.index
            migrations.append(
                MigrationFile(_filename(position, f"index_{spec.table}_{'_'.join(spec.columns)}"), index_sql(spec), ORDER_INDEX)
            )
        elif step.kind == "seed":
            spec = step.seed
            migrations.append(
                MigrationFile(_filename(position, f"seed_{spec.table}"), seed_sql(spec), ORDER_SEED)
            )

    manifest_tables = manifest.table_columns() if manifest is not None else []
    warnings.extend(plan_warnings(plan, known_tables=[name for name, _ in manifest_tables]))

    return CompileResult(
        migrations=migrations,
        functions=functions,
        sdk_files=_sdk_files(plan, manifest_tables),
        test_files=_test_files(plan),
        warnings=warnings,
    )


def _sdk_files(plan: Plan, manifest_tables: Iterable[tuple[str, Sequence[ColumnSpec]]]) -> List[SdkFile]:
    if plan.sdk is None or not plan.sdk.generate:
        return []
    tables = sdk_tables(plan, manifest_tables)
    files = [
        SdkFile("sdk/types.ts", render_types(tables)),
        SdkFile("sdk/client.ts", CLIENT_TS),
    ]
    if plan.sdk.framework == "react":
        files.append(SdkFile("sdk/hooks.ts", render_hooks(plan.sdk.hooks, [name for name, _ in tables])))
    return files


def _test_files(plan: Plan) -> List[TestFile]:
    if plan.verification is None or not plan.verification.smoke:
        return []
    return [TestFile("tests/integration.test.ts", render_smoke_tests(plan.verification.smoke))]
