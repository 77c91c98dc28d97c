from __future__ import annotations

import json
from typing import Iterable, List, Sequence

from plan.schema import ColumnSpec, Plan, SmokeCheck

PG_TO_TS = {
    "uuid": "string",
    "text": "string",
    "varchar": "string",
    "char": "string",
    "citext": "string",
    "integer": "number",
    "int": "number",
    "int4": "number",
    "int8": "number",
    "smallint": "number",
    "bigint": "number",
    "serial": "number",
    "bigserial": "number",
    "numeric": "number",
    "decimal": "number",
    "real": "number",
    "double precision": "number",
    "boolean": "boolean",
    "bool": "boolean",
    "timestamptz": "string",
    "timestamp": "string",
    "date": "string",
    "jsonb": "unknown",
    "json": "unknown",
}


def pg_to_ts_type(pg_type: str) -> str:
    base = pg_type.strip().lower()
    is_array = base.endswith("[]")
    if is_array:
        base = base[:-2]
    base = base.split("(", 1)[0].strip()
    ts_type = PG_TO_TS.get(base, "unknown")
    return f"{ts_type}[]" if is_array else ts_type


def to_pascal_case(name: str) -> str:
    return "".join(word[:1].upper() + word[1:] for word in name.split("_") if word)


def _interface(name: str, columns: Sequence[ColumnSpec]) -> str:
    lines = [f"export interface {to_pascal_case(name)} {{"]
    for col in columns:
        optional = "?" if col.nullable or col.default is not None or col.pk else ""
        nullable = " | null" if col.nullable else ""
        lines.append(f"  {col.name}{optional}: {pg_to_ts_type(col.type)}{nullable};")
    lines.append("}")
    return "\n".join(lines) + "\n"


def render_types(tables: Iterable[tuple[str, Sequence[ColumnSpec]]]) -> str:
    out = "// Generated row types. Regenerate from the plan instead of editing.\n\n"
    return out + "\n".join(_interface(name, columns) for name, columns in tables)


CLIENT_TS = """// Generated REST client
const API_URL = process.env.NEXT_PUBLIC_API_URL || "http://localhost:3000";

class APIClient {
  private token: string | null = null;

  setToken(token: string | null) {
    this.token = token;
  }

  async request(path: string, options: RequestInit = {}) {
    const headers: Record<string, string> = {
      "Content-Type": "application/json",
      ...(options.headers as Record<string, string>),
    };
    if (this.token) {
      headers["Authorization"] = `Bearer ${this.token}`;
    }
    const response = await fetch(`${API_URL}${path}`, { ...options, headers });
    if (!response.ok) {
      throw new Error(`API error ${response.status}: ${response.statusText}`);
    }
    return response.status === 204 ? null : response.json();
  }

  get(path: string) {
    return this.request(path, { method: "GET" });
  }

  post(path: string, data: unknown) {
    return this.request(path, { method: "POST", body: JSON.stringify(data) });
  }

  patch(path: string, data: unknown) {
    return this.request(path, { method: "PATCH", body: JSON.stringify(data) });
  }

  delete(path: string) {
    return this.request(path, { method: "DELETE" });
  }
}

export const apiClient = new APIClient();
"""


def render_hooks(hooks: Sequence[str], tables: Sequence[str]) -> str:
    out = (
        "// Generated React hooks\n"
        'import { useEffect, useState } from "react";\n'
        'import { apiClient } from "./client";\n\n'
    )
    for position, hook in enumerate(hooks):
        path = f"/{tables[position]}" if position < len(tables) else "/"
        out += (
            f"export function {hook}(path: string = \"{path}\") {{\n"
            "  const [data, setData] = useState<unknown>(null);\n"
            "  const [loading, setLoading] = useState(true);\n"
            "  const [error, setError] = useState<Error | null>(null);\n"
            "\n"
            "  useEffect(() => {\n"
            "    let active = true;\n"
            "    apiClient\n"
            "      .get(path)\n"
            "      .then((rows) => active && setData(rows))\n"
            "      .catch((err) => active && setError(err))\n"
            "      .finally(() => active && setLoading(false));\n"
            "    return () => {\n"
            "      active = false;\n"
            "    };\n"
            "  }, [path]);\n"
            "\n"
            "  return { data, loading, error };\n"
            "}\n\n"
        )
    return out


def _smoke_test(check: SmokeCheck) -> str:
    token = ""
    if check.token:
        token = f"    apiClient.setToken(tokenFor({json.dumps(check.token)}));\n"
    body = f", {json.dumps(check.body)}" if check.body is not None and check.method in {"POST", "PATCH"} else ""
    call = f"apiClient.{check.method.lower()}({json.dumps(check.path)}{body})"
    if check.expect >= 400:
        assertion = f"    await expect({call}).rejects.toThrow(/API error {check.expect}/);\n"
    else:
        assertion = f"    await expect({call}).resolves.toBeDefined();\n"
    return (
        f"  test({json.dumps(f'{check.method} {check.path} -> {check.expect}')}, async () => {{\n"
        f"{token}"
        f"{assertion}"
        "    apiClient.setToken(null);\n"
        "  });\n"
    )


def render_smoke_tests(checks: Sequence[SmokeCheck]) -> str:
    return (
        "// Generated integration tests\n"
        'import { apiClient } from "../sdk/client";\n\n'
        "const tokenFor = (token: string) =>\n"
        '  token.startsWith("$") ? process.env[token.slice(1)] ?? "" : token;\n\n'
        "describe(\"API smoke checks\", () => {\n"
        + "\n".join(_smoke_test(check) for check in checks)
        + "});\n"
    )


def sdk_tables(plan: Plan, manifest_tables: Iterable[tuple[str, Sequence[ColumnSpec]]] = ()) -> List[tuple[str, Sequence[ColumnSpec]]]:
    tables = [(t.name, t.columns) for t in plan.steps_of("table")]
    planned = {name for name, _ in tables}
    for name, columns in manifest_tables:
        if name not in planned:
            tables.append((name, columns))
    return tables
