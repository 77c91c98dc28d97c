from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Iterable, List

import yaml
from pydantic import ValidationError

from .schema import SUPPORTED_PLAN_VERSION, Plan


class PlanValidationError(Exception):
    pass


class InvalidPlanVersion(PlanValidationError):
    def __init__(self, version: object) -> None:
        self.version = version
        super().__init__(
            f"Unsupported plan version: {version!r}. Expected: {SUPPORTED_PLAN_VERSION}"
        )


def _load_data(path: Path) -> Dict[str, Any]:
    if path.suffix.lower() in {".yaml", ".yml"}:
        return yaml.safe_load(path.read_text())
    if path.suffix.lower() == ".json":
        return json.loads(path.read_text())
    raise PlanValidationError(f"Unsupported plan format: {path.suffix}")


def check_version(version: object) -> None:
    if isinstance(version, bool) or version != SUPPORTED_PLAN_VERSION:
        raise InvalidPlanVersion(version)


def _validate_refs(model: Plan) -> List[str]:
    errors: List[str] = []
    table_names = [t.name for t in model.steps_of("table")]
    seen = set()
    for name in table_names:
        if name in seen:
            errors.append(f"table declared more than once: {name}")
        seen.add(name)

    function_names = [f.name for f in model.steps_of("function")]
    if len(function_names) != len(set(function_names)):
        errors.append("function.name must be unique")
    return errors


def plan_warnings(model: Plan, known_tables: Iterable[str] = ()) -> List[str]:
    """Reference problems that do not block compilation.

    Step ordering is the author's responsibility, so a policy that precedes
    its table is reported rather than reordered.
    """
    warnings: List[str] = []
    declared = {t.name for t in model.steps_of("table")}
    known = set(known_tables)
    created: set[str] = set()
    for position, step in enumerate(model.steps, start=1):
        if step.kind == "table":
            created.add(step.table.name)
            continue
        target = None
        if step.kind in {"policy", "realtime", "index", "seed"}:
            target = step.payload.table
        if target is None:
            if step.kind == "function":
                for trigger in step.function.triggers:
                    if trigger.table not in declared and trigger.table not in known:
                        warnings.append(
                            f"step {position} (function): trigger table {trigger.table} "
                            "is not declared in this plan or the project manifest"
                        )
            continue
        if target in declared and target not in created:
            warnings.append(
                f"step {position} ({step.kind}) references table {target} before the step that creates it"
            )
        elif target not in declared and target not in known:
            warnings.append(
                f"step {position} ({step.kind}) references table {target} "
                "which is not declared in this plan or the project manifest"
            )
    return warnings


def parse_plan(payload: Dict[str, Any]) -> Plan:
    if not isinstance(payload, dict):
        raise PlanValidationError("Plan document must be an object")
    check_version(payload.get("version"))
    try:
        model = Plan.model_validate(payload)
    except ValidationError as exc:
        raise PlanValidationError(str(exc)) from exc

    ref_errors = _validate_refs(model)
    if ref_errors:
        raise PlanValidationError("; ".join(ref_errors))
    return model


def load_plan(path: str | Path) -> Plan:
    path = Path(path)
    if not path.exists():
        raise PlanValidationError(f"Plan file not found: {path}")
    return parse_plan(_load_data(path))
