from __future__ import annotations


class EngineError(Exception):
    hint = ""


class MigrationConflict(EngineError):
    hint = "use --force to overwrite"

    def __init__(self, name: str, location: str = "live") -> None:
        self.name = name
        self.location = location
        super().__init__(f"{name} already exists in {location} with different content")


class MigrationExecutionFailure(EngineError):
    hint = "fix the migration in the staging area and re-run apply"

    def __init__(self, name: str, reason: str) -> None:
        self.name = name
        self.reason = reason
        super().__init__(f"{name} failed: {reason}")


class SnapshotFailure(EngineError):
    hint = "check DATABASE_URL and that pg_dump is installed (PG_DUMP_BIN)"

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Could not snapshot schema: {reason}")


class NoSnapshotAvailable(EngineError):
    hint = "snapshots are taken automatically by apply"

    def __init__(self) -> None:
        super().__init__("No schema snapshot available for rollback")


def describe(exc: BaseException) -> str:
    hint = getattr(exc, "hint", "")
    if not hint:
        hint = _HINTS.get(type(exc).__name__, "")
    message = str(exc) or type(exc).__name__
    return f"{message} (hint: {hint})" if hint else message


_HINTS = {
    "InvalidPlanVersion": "regenerate the plan with version: 1",
    "PlanValidationError": "fix the plan file and re-run",
    "IdentifierInvalid": "identifiers must be lowercase letters, digits and underscores",
    "VerificationProbeFailure": "run rollback --last to restore the previous schema",
    "TemplateValidationError": "fix the template and re-run validate",
    "ChecksumMismatch": "download the archive again",
    "VersionIncompatible": "upgrade the platform or pick an older template",
    "DatabaseError": "check DATABASE_URL and that the database is reachable",
}
