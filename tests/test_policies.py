import re

import pytest

from policies.capabilities import CallerFunctions
from policies.options import PolicyOptions
from policies.synthesizer import (
    IdentifierInvalid,
    compose,
    generate,
    policy_rules,
    preset_warnings,
)


def _options(preset: str, **kwargs) -> PolicyOptions:
    return PolicyOptions(preset=preset, **kwargs)


@pytest.mark.parametrize("preset", ["owner", "public_read", "team_scope", "admin_override"])
def test_every_policy_is_guarded_and_permissive(preset: str) -> None:
    sql = generate("notes", _options(preset))

    created = re.findall(r"CREATE POLICY (\w+) ON", sql)
    guarded = re.findall(r"AND policyname = '(\w+)'", sql)
    assert len(created) == 4
    assert created == guarded
    assert sql.count("AS PERMISSIVE") == 4
    assert "RESTRICTIVE" not in sql
    assert "DROP POLICY" not in sql
    assert 'ALTER TABLE public."notes" ENABLE ROW LEVEL SECURITY;' in sql


def test_owner_preset_predicates_and_grants() -> None:
    sql = generate("todos", _options("owner"))

    assert "CREATE POLICY select_own" in sql
    assert 'USING ("user_id" = caller_id())' in sql
    assert 'WITH CHECK ("user_id" = caller_id())' in sql
    assert 'GRANT SELECT, INSERT, UPDATE, DELETE ON public."todos" TO authenticated;' in sql
    assert 'REVOKE ALL ON public."todos" FROM anon;' in sql


def test_owner_preset_honours_custom_column() -> None:
    sql = generate("todos", _options("owner", ownerCol="author_id"))

    assert '"author_id" = caller_id()' in sql
    assert '"user_id"' not in sql


def test_public_read_select_is_true_and_anon_is_read_only() -> None:
    rules = {rule.name: rule for rule in policy_rules(_options("public_read"))}
    sql = generate("posts", _options("public_read"))

    assert rules["select_public"].using == "TRUE"
    assert "USING (TRUE)" in sql
    assert 'GRANT SELECT ON public."posts" TO anon;' in sql
    assert 'REVOKE INSERT, UPDATE, DELETE ON public."posts" FROM anon;' in sql
    assert "CREATE POLICY insert_own" in sql


def test_team_scope_with_owner_restricts_writes() -> None:
    rules = {rule.name: rule for rule in policy_rules(_options("team_scope", ownerCol="created_by"))}

    assert rules["team_select"].using == '"org_id" = caller_org() OR caller_is_admin()'
    assert rules["team_update"].using == (
        '("org_id" = caller_org() AND "created_by" = caller_id()) OR caller_is_admin()'
    )
    assert preset_warnings("projects", _options("team_scope", ownerCol="created_by")) == []


def test_team_scope_without_owner_warns_about_team_wide_writes() -> None:
    options = _options("team_scope")
    rules = {rule.name: rule for rule in policy_rules(options)}

    assert rules["team_delete"].using == rules["team_select"].using
    warnings = preset_warnings("projects", options)
    assert len(warnings) == 1
    assert "team_scope without ownerCol" in warnings[0]


def test_team_scope_and_admin_override_combine_with_or() -> None:
    sql = compose("projects", [_options("team_scope"), _options("admin_override")])

    select_policies = re.findall(r"CREATE POLICY (\w+) ON public\.\"projects\"\s+AS PERMISSIVE\s+FOR SELECT", sql)
    assert select_policies == ["team_select", "admin_select"]
    assert "USING (caller_is_admin())" in sql
    assert "RESTRICTIVE" not in sql


def test_add_columns_are_idempotent_and_nullable() -> None:
    sql = generate("projects", _options("team_scope", addOrgCol=True, ownerCol="user_id", addOwnerCol=True))

    assert 'ADD COLUMN IF NOT EXISTS "org_id" UUID DEFAULT caller_org();' in sql
    assert 'ADD COLUMN IF NOT EXISTS "user_id" UUID DEFAULT caller_id();' in sql
    assert "CREATE INDEX IF NOT EXISTS idx_projects_org_id" in sql
    assert "NOT NULL" not in sql


def test_add_org_column_requires_team_scope() -> None:
    with pytest.raises(ValueError, match="addOrgCol"):
        generate("todos", _options("owner", addOrgCol=True))


@pytest.mark.parametrize("table", ["Todos", "todos; DROP TABLE x", "1todos", "to-dos", ""])
def test_invalid_table_identifier_rejected_before_sql(table: str) -> None:
    with pytest.raises(IdentifierInvalid):
        generate(table, _options("owner"))


def test_invalid_column_identifier_rejected() -> None:
    with pytest.raises(IdentifierInvalid) as excinfo:
        generate("todos", _options("owner", ownerCol="user id"))
    assert excinfo.value.kind == "owner column"


def test_caller_functions_can_be_renamed() -> None:
    caller = CallerFunctions(caller_id="auth_uid", caller_org="auth_org", caller_is_admin="auth_admin")
    sql = generate("projects", _options("team_scope", ownerCol="user_id"), caller)

    assert "auth_org()" in sql
    assert "auth_uid()" in sql
    assert "caller_id()" not in sql
    assert "CREATE OR REPLACE FUNCTION public.auth_uid()" in caller.bootstrap_sql()
