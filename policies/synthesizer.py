from __future__ import annotations

from dataclasses import dataclass
import re
from typing import Iterable, List, Optional

from .capabilities import DEFAULT_CALLER, CallerFunctions
from .options import PRESETS, PolicyOptions

IDENTIFIER_RE = re.compile(r"^[a-z_][a-z0-9_]*$")

CRUD_GRANT = "SELECT, INSERT, UPDATE, DELETE"


class IdentifierInvalid(ValueError):
    def __init__(self, kind: str, value: object) -> None:
        self.kind = kind
        self.value = value
        super().__init__(f"Invalid {kind} identifier: {value!r} (must match {IDENTIFIER_RE.pattern})")


@dataclass(frozen=True)
class PolicyRule:
    name: str
    command: str
    using: Optional[str]
    check: Optional[str]
    comment: str


def check_identifier(value: object, kind: str = "table") -> str:
    if not isinstance(value, str) or not IDENTIFIER_RE.match(value):
        raise IdentifierInvalid(kind, value)
    return value


def quote_ident(name: str) -> str:
    return f'"{name}"'


def qualified(table: str) -> str:
    return f'public."{table}"'


def validate(table: str, options: PolicyOptions) -> None:
    check_identifier(table, "table")
    if options.preset not in PRESETS:
        raise ValueError(f"Unknown policy preset: {options.preset}")
    owner_col = options.resolved_owner_col()
    org_col = options.resolved_org_col()
    if owner_col is not None:
        check_identifier(owner_col, "owner column")
    if org_col is not None:
        check_identifier(org_col, "organization column")
    if options.add_owner_col and owner_col is None:
        raise ValueError(f"addOwnerCol requires an owner column for preset {options.preset}")
    if options.add_org_col and org_col is None:
        raise ValueError(f"addOrgCol is only valid for team_scope, got {options.preset}")


def preset_warnings(table: str, options: PolicyOptions) -> List[str]:
    warnings: List[str] = []
    if options.preset == "team_scope" and options.resolved_owner_col() is None:
        warnings.append(
            f"{table}: team_scope without ownerCol lets any member of the organization "
            "update and delete every row of the organization"
        )
    if options.preset == "admin_override":
        warnings.append(
            f"{table}: admin_override grants unconditional access to admin callers "
            "on top of any other policy"
        )
    return warnings


def policy_rules(options: PolicyOptions, caller: CallerFunctions = DEFAULT_CALLER) -> List[PolicyRule]:
    preset = options.preset
    owner_col = options.resolved_owner_col()
    org_col = options.resolved_org_col()

    if preset in {"owner", "public_read"}:
        own = f"{quote_ident(owner_col)} = {caller.id_call()}"
        if preset == "owner":
            select = PolicyRule(
                "select_own", "SELECT", own, None,
                f"Users can only see rows where {owner_col} matches {caller.id_call()}",
            )
        else:
            select = PolicyRule(
                "select_public", "SELECT", "TRUE", None,
                "Allow public read access - anyone can view all rows",
            )
        return [
            select,
            PolicyRule(
                "insert_own", "INSERT", None, own,
                f"Users can only insert rows where {owner_col} matches {caller.id_call()}",
            ),
            PolicyRule(
                "update_own", "UPDATE", own, own,
                f"Users can only update rows where {owner_col} matches {caller.id_call()}",
            ),
            PolicyRule(
                "delete_own", "DELETE", own, None,
                f"Users can only delete rows where {owner_col} matches {caller.id_call()}",
            ),
        ]

    if preset == "team_scope":
        in_org = f"{quote_ident(org_col)} = {caller.org_call()}"
        read = f"{in_org} OR {caller.admin_call()}"
        if owner_col:
            write = f"({in_org} AND {quote_ident(owner_col)} = {caller.id_call()}) OR {caller.admin_call()}"
            scope = "rows they own in their organization"
        else:
            write = read
            scope = "any row of their organization"
        return [
            PolicyRule("team_select", "SELECT", read, None, "Users can see all rows in their organization"),
            PolicyRule("team_insert", "INSERT", None, write, f"Users can insert {scope}"),
            PolicyRule("team_update", "UPDATE", write, write, f"Users can update {scope}"),
            PolicyRule("team_delete", "DELETE", write, None, f"Users can delete {scope}"),
        ]

    admin = caller.admin_call()
    return [
        PolicyRule("admin_select", "SELECT", admin, None, "Admins can see all rows"),
        PolicyRule("admin_insert", "INSERT", None, admin, "Admins can insert any row"),
        PolicyRule("admin_update", "UPDATE", admin, admin, "Admins can update any row"),
        PolicyRule("admin_delete", "DELETE", admin, None, "Admins can delete any row"),
    ]


def grant_statements(table: str, options: PolicyOptions) -> List[str]:
    target = qualified(table)
    authenticated = f"GRANT {CRUD_GRANT} ON {target} TO authenticated;"
    if options.preset == "owner":
        return [authenticated, f"REVOKE ALL ON {target} FROM anon;"]
    if options.preset == "public_read":
        return [
            f"GRANT SELECT ON {target} TO anon;",
            f"REVOKE INSERT, UPDATE, DELETE ON {target} FROM anon;",
            authenticated,
        ]
    return [authenticated]


def _add_column_sql(table: str, column: str, default_call: str) -> str:
    target = qualified(table)
    return (
        f"ALTER TABLE {target}\n"
        f"  ADD COLUMN IF NOT EXISTS {quote_ident(column)} UUID DEFAULT {default_call};\n"
        f"CREATE INDEX IF NOT EXISTS idx_{table}_{column}\n"
        f"  ON {target} ({quote_ident(column)});\n"
    )


def _guarded_policy_sql(table: str, rule: PolicyRule) -> str:
    lines = [
        "DO $$",
        "BEGIN",
        "  IF NOT EXISTS (",
        "    SELECT 1 FROM pg_policies",
        "    WHERE schemaname = 'public'",
        f"      AND tablename = '{table}'",
        f"      AND policyname = '{rule.name}'",
        "  ) THEN",
        f"    CREATE POLICY {rule.name} ON {qualified(table)}",
        "      AS PERMISSIVE",
        f"      FOR {rule.command}",
    ]
    if rule.using is not None:
        lines.append(f"      USING ({rule.using})")
    if rule.check is not None:
        lines.append(f"      WITH CHECK ({rule.check})")
    lines[-1] += ";"
    lines += ["  END IF;", "END", "$$;"]
    return "\n".join(lines) + "\n"


def _sql_string(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def generate(
    table: str,
    options: PolicyOptions,
    caller: CallerFunctions = DEFAULT_CALLER,
) -> str:
    validate(table, options)
    target = qualified(table)
    rules = policy_rules(options, caller)

    parts = [f"-- Row-level security: {options.preset} preset for {table}\n"]

    if options.add_org_col:
        parts.append("\n-- Add organization column if requested\n")
        parts.append(_add_column_sql(table, options.resolved_org_col(), caller.org_call()))
    if options.add_owner_col:
        parts.append("\n-- Add owner column if requested\n")
        parts.append(_add_column_sql(table, options.resolved_owner_col(), caller.id_call()))

    parts.append(f"\nALTER TABLE {target} ENABLE ROW LEVEL SECURITY;\n")

    for rule in rules:
        parts.append(f"\n-- Policy: {rule.name}\n")
        parts.append(_guarded_policy_sql(table, rule))

    parts.append("\n")
    parts.append("\n".join(grant_statements(table, options)) + "\n")

    parts.append("\n")
    for rule in rules:
        parts.append(f"COMMENT ON POLICY {rule.name} ON {target} IS {_sql_string(rule.comment)};\n")

    if options.preset == "admin_override":
        parts.append(
            "\n-- Policies for the same command combine with OR, so admin callers\n"
            "-- pass even where other presets on this table would deny them.\n"
        )
    return "".join(parts)


def compose(
    table: str,
    presets: Iterable[PolicyOptions],
    caller: CallerFunctions = DEFAULT_CALLER,
) -> str:
    options_list = list(presets)
    for options in options_list:
        validate(table, options)
    return "\n".join(generate(table, options, caller) for options in options_list)

