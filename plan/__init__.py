from .schema import ColumnSpec, Plan, Step, SUPPORTED_PLAN_VERSION
from .validate import (
    InvalidPlanVersion,
    PlanValidationError,
    check_version,
    load_plan,
    parse_plan,
    plan_warnings,
)

__all__ = [
    "ColumnSpec",
    "InvalidPlanVersion",
    "Plan",
    "PlanValidationError",
    "SUPPORTED_PLAN_VERSION",
    "Step",
    "check_version",
    "load_plan",
    "parse_plan",
    "plan_warnings",
]
