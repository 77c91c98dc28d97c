import pytest

from compiler.plan_compiler import compile_plan, sql_literal
from engine.manifest import ManifestTable, ProjectManifest
from plan.schema import ColumnSpec
from plan.validate import parse_plan
from policies.synthesizer import IdentifierInvalid


def _table_step(name: str = "todos", **extra):
    table = {
        "name": name,
        "columns": [
            {"name": "id", "type": "uuid", "pk": True, "default": "gen_random_uuid()"},
            {"name": "title", "type": "text"},
            {"name": "notes", "type": "text", "nullable": True},
            {"name": "user_id", "type": "uuid"},
        ],
    }
    table.update(extra)
    return {"kind": "table", "table": table}


def _compile(steps, **plan_fields):
    return compile_plan(parse_plan({"version": 1, "summary": "test", "steps": steps, **plan_fields}))


def test_table_then_owner_policy_yields_two_migrations() -> None:
    result = _compile([
        _table_step(),
        {"kind": "policy", "policy": {"table": "todos", "preset": "owner", "ownerCol": "user_id"}},
    ])

    assert [m.filename for m in result.migrations] == ["001_create_todos.sql", "002_policy_owner_todos.sql"]
    assert [m.order for m in result.migrations] == [1, 2]
    assert 'CREATE TABLE IF NOT EXISTS public."todos"' in result.migrations[0].content
    assert "CREATE POLICY select_own" in result.migrations[1].content
    assert '"user_id" = caller_id()' in result.migrations[1].content


def test_column_constraints() -> None:
    steps = [_table_step()]
    steps[0]["table"]["columns"].append({"name": "project_id", "type": "uuid", "references": "projects(id)"})
    steps[0]["table"]["columns"].append({"name": "slug", "type": "text", "unique": True})
    sql = _compile(steps).migrations[0].content

    assert '"id" UUID PRIMARY KEY DEFAULT gen_random_uuid()' in sql
    assert '"title" TEXT NOT NULL' in sql
    assert '"notes" TEXT,' in sql
    assert '"project_id" UUID NOT NULL REFERENCES public."projects"("id")' in sql
    assert '"slug" TEXT NOT NULL UNIQUE' in sql
    assert 'GRANT SELECT, INSERT, UPDATE, DELETE ON public."todos" TO authenticated;' in sql
    assert "TO anon" not in sql


def test_inline_policy_and_bare_rls() -> None:
    with_policy = _compile([_table_step(policy={"preset": "public_read"})]).migrations[0].content
    bare = _compile([_table_step(rls={"enable": True})]).migrations[0].content

    assert "CREATE POLICY select_public" in with_policy
    assert "ENABLE ROW LEVEL SECURITY" in bare
    assert "CREATE POLICY" not in bare
    grant = 'GRANT SELECT, INSERT, UPDATE, DELETE ON public."todos" TO authenticated;'
    assert with_policy.count(grant) == 1
    assert bare.count(grant) == 1


def test_malformed_reference_rejected() -> None:
    steps = [_table_step()]
    steps[0]["table"]["columns"].append({"name": "owner", "type": "uuid", "references": "users(id); --"})

    with pytest.raises(IdentifierInvalid):
        _compile(steps)


def test_index_realtime_seed_and_note_steps() -> None:
    result = _compile([
        _table_step(),
        {"kind": "index", "index": {"table": "todos", "columns": ["user_id", "title"], "unique": True}},
        {"kind": "realtime", "realtime": {"table": "todos"}},
        {"kind": "seed", "seed": {"table": "todos", "rows": [
            {"title": "O'Brien", "user_id": None},
            {"title": "second", "notes": "n"},
        ]}},
        {"kind": "note", "note": {"text": "remember to invite the team"}},
    ])
    by_name = {m.filename: m for m in result.migrations}

    assert list(by_name) == [
        "001_create_todos.sql",
        "002_index_todos_user_id_title.sql",
        "003_realtime_todos.sql",
        "004_seed_todos.sql",
    ]
    index = by_name["002_index_todos_user_id_title.sql"]
    assert index.order == 4
    assert 'CREATE UNIQUE INDEX IF NOT EXISTS idx_todos_user_id_title ON public."todos" ("user_id", "title");' in index.content

    realtime = by_name["003_realtime_todos.sql"].content
    assert "pg_notify('table_changes'" in realtime
    assert "DROP TRIGGER IF EXISTS todos_realtime" in realtime

    seed = by_name["004_seed_todos.sql"].content
    assert 'INSERT INTO public."todos" ("title", "user_id", "notes")' in seed
    assert "('O''Brien', NULL, DEFAULT)" in seed
    assert "('second', DEFAULT, 'n')" in seed
    assert seed.rstrip().endswith("ON CONFLICT DO NOTHING;")


def test_disabled_realtime_drops_trigger() -> None:
    sql = _compile([{"kind": "realtime", "realtime": {"table": "todos", "enabled": False}}]).migrations[0].content

    assert "DROP TRIGGER IF EXISTS todos_realtime" in sql
    assert "CREATE TRIGGER" not in sql


def test_function_step_emits_handler_and_trigger_migration() -> None:
    result = _compile([
        _table_step(),
        {"kind": "function", "function": {
            "name": "notify-owner",
            "env": ["SLACK_WEBHOOK"],
            "triggers": [{"table": "todos", "when": "after_insert"}],
        }},
        {"kind": "function", "function": {"name": "digest", "runtime": "python"}},
    ])

    assert [f.path for f in result.functions] == ["notify-owner.ts", "digest.py"]
    edge = result.functions[0].content
    assert "export default async function handler(event: KickEvent, ctx: KickContext)" in edge
    assert "dryRun" in edge
    assert 'ctx.env["SLACK_WEBHOOK"]' in edge
    assert "def handler(event" in result.functions[1].content

    trigger = result.migrations[-1]
    assert trigger.filename == "002_trigger_notify_owner.sql"
    assert trigger.order == 3
    assert "pg_notify('fn_notify-owner'" in trigger.content
    assert 'AFTER INSERT ON public."todos"' in trigger.content


def test_compile_is_deterministic() -> None:
    steps = [_table_step(), {"kind": "policy", "policy": {"table": "todos", "preset": "team_scope"}}]

    assert _compile(steps) == _compile(steps)


def test_warnings_collect_safety_presets_and_references() -> None:
    result = _compile(
        [{"kind": "policy", "policy": {"table": "projects", "preset": "team_scope"}}],
        safety={"warnings": ["drops nothing"], "breaking": False},
    )

    assert result.warnings[0] == "drops nothing"
    assert any("team_scope without ownerCol" in w for w in result.warnings)
    assert any("projects" in w and "not declared" in w for w in result.warnings)


def test_manifest_tables_satisfy_references_and_sdk_types() -> None:
    manifest = ProjectManifest(
        project_name="demo",
        created="2026-01-01T00:00:00+00:00",
        last_modified="2026-01-01T00:00:00+00:00",
    )
    manifest.db_schema.tables.append(ManifestTable(
        name="projects",
        columns=[ColumnSpec(name="id", type="uuid", pk=True), ColumnSpec(name="budget", type="numeric(10,2)")],
        created_at="2026-01-01T00:00:00+00:00",
        last_modified="2026-01-01T00:00:00+00:00",
    ))
    plan = parse_plan({
        "version": 1,
        "summary": "sdk",
        "steps": [_table_step(), {"kind": "index", "index": {"table": "projects", "columns": ["budget"]}}],
        "sdk": {"generate": True, "framework": "react", "hooks": ["useTodos"]},
        "verification": {"smoke": [{"method": "GET", "path": "/todos", "expect": 200, "token": "$TOKEN_A"}]},
    })

    result = compile_plan(plan, manifest)

    assert not any("projects" in w for w in result.warnings)
    files = {f.path: f.content for f in result.sdk_files}
    assert set(files) == {"sdk/types.ts", "sdk/client.ts", "sdk/hooks.ts"}
    assert "export interface Todos {" in files["sdk/types.ts"]
    assert "  notes?: string | null;" in files["sdk/types.ts"]
    assert "  budget: number;" in files["sdk/types.ts"]
    assert 'export function useTodos(path: string = "/todos")' in files["sdk/hooks.ts"]
    assert result.test_files[0].path == "tests/integration.test.ts"
    assert 'tokenFor("$TOKEN_A")' in result.test_files[0].content


def test_sql_literal_escaping() -> None:
    assert sql_literal("it's") == "'it''s'"
    assert sql_literal(True) == "TRUE"
    assert sql_literal(3) == "3"
    assert sql_literal({"a": 1}) == "'{\"a\": 1}'"
