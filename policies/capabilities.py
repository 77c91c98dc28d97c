from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class CallerFunctions:
    """SQL functions the database exposes for the current caller.

    Generated predicates only reference these three functions, so a database
    with a different identity model swaps the names here instead of editing
    every preset.
    """

    caller_id: str = "caller_id"
    caller_org: str = "caller_org"
    caller_is_admin: str = "caller_is_admin"
    claims_setting: str = "request.jwt.claims"

    def id_call(self) -> str:
        return f"{self.caller_id}()"

    def org_call(self) -> str:
        return f"{self.caller_org}()"

    def admin_call(self) -> str:
        return f"{self.caller_is_admin}()"

    def bootstrap_sql(self) -> str:
        claims = f"current_setting('{self.claims_setting}', true)"
        return (
            "-- Caller identity functions used by row-level-security predicates\n"
            f"CREATE OR REPLACE FUNCTION public.{self.caller_id}() RETURNS uuid\n"
            "  LANGUAGE sql STABLE AS $$\n"
            f"    SELECT NULLIF(NULLIF({claims}, '')::json ->> 'sub', '')::uuid\n"
            "  $$;\n\n"
            f"CREATE OR REPLACE FUNCTION public.{self.caller_org}() RETURNS uuid\n"
            "  LANGUAGE sql STABLE AS $$\n"
            f"    SELECT NULLIF(NULLIF({claims}, '')::json ->> 'org_id', '')::uuid\n"
            "  $$;\n\n"
            f"CREATE OR REPLACE FUNCTION public.{self.caller_is_admin}() RETURNS boolean\n"
            "  LANGUAGE sql STABLE AS $$\n"
            f"    SELECT COALESCE(NULLIF({claims}, '')::json ->> 'role', '')\n"
            "      IN ('admin', 'service_role')\n"
            "  $$;\n\n"
            f"GRANT EXECUTE ON FUNCTION public.{self.caller_id}() TO anon, authenticated;\n"
            f"GRANT EXECUTE ON FUNCTION public.{self.caller_org}() TO anon, authenticated;\n"
            f"GRANT EXECUTE ON FUNCTION public.{self.caller_is_admin}() TO anon, authenticated;\n"
        )


DEFAULT_CALLER = CallerFunctions()
