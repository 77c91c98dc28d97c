from __future__ import annotations

from pathlib import PurePosixPath

from plan.schema import FunctionSpec

_EXTENSIONS = {"edge": ".ts", "python": ".py"}


def function_filename(spec: FunctionSpec) -> str:
    if spec.path:
        return PurePosixPath(spec.path).name
    return f"{spec.name}{_EXTENSIONS[spec.runtime]}"


def _env_list(spec: FunctionSpec) -> str:
    return ", ".join(spec.env) if spec.env else "none"


def _edge_handler(spec: FunctionSpec) -> str:
    signature = ""
    if spec.signature is not None:
        signature = (
            f"// input:  {spec.signature.input}\n"
            f"// output: {spec.signature.output}\n"
        )
    env_reads = "".join(
        f'  const {var.lower()} = ctx.env["{var}"];\n' for var in spec.env
    )
    return (
        f"// {spec.name} - edge function\n"
        f"// env: {_env_list(spec)}\n"
        f"{signature}"
        'import type { KickContext, KickEvent } from "./types";\n'
        "\n"
        "export default async function handler(event: KickEvent, ctx: KickContext) {\n"
        "  const body = (event.body ?? {}) as Record<string, unknown>;\n"
        "  if (body.dryRun) {\n"
        f'    return {{ ok: true, dryRun: true, function: "{spec.name}" }};\n'
        "  }\n"
        f"{env_reads}"
        f'  ctx.log("{spec.name} called", {{ user: ctx.user?.sub ?? null }});\n'
        "\n"
        "  return {\n"
        "    ok: true,\n"
        f'    function: "{spec.name}",\n'
        "    user: ctx.user,\n"
        "    received: event.body,\n"
        "  };\n"
        "}\n"
    )


def _python_handler(spec: FunctionSpec) -> str:
    signature = ""
    if spec.signature is not None:
        signature = (
            f"# input:  {spec.signature.input}\n"
            f"# output: {spec.signature.output}\n"
        )
    env_reads = "".join(
        f'    {var.lower()} = ctx["env"].get("{var}")\n' for var in spec.env
    )
    return (
        f"# {spec.name} - function handler\n"
        f"# env: {_env_list(spec)}\n"
        f"{signature}"
        "from __future__ import annotations\n"
        "\n"
        "from typing import Any\n"
        "\n"
        "\n"
        "def handler(event: dict[str, Any], ctx: dict[str, Any]) -> dict[str, Any]:\n"
        '    body = event.get("body") or {}\n'
        '    if isinstance(body, dict) and body.get("dryRun"):\n'
        f'        return {{"ok": True, "dryRun": True, "function": "{spec.name}"}}\n'
        f"{env_reads}"
        '    user = ctx.get("user")\n'
        f'    ctx["log"]("{spec.name} called", {{"user": user.get("sub") if user else None}})\n'
        "\n"
        "    return {\n"
        '        "ok": True,\n'
        f'        "function": "{spec.name}",\n'
        '        "user": user,\n'
        '        "received": event.get("body"),\n'
        "    }\n"
    )


def render_function(spec: FunctionSpec) -> str:
    if spec.runtime == "python":
        return _python_handler(spec)
    return _edge_handler(spec)
