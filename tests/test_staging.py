from pathlib import Path

from compiler.plan_compiler import CompileResult, FunctionFile, MigrationFile, SdkFile
from engine.paths import ProjectPaths
from engine.staging import Staging


def _result(content: str = "SELECT 1;\n") -> CompileResult:
    return CompileResult(
        migrations=[MigrationFile("001_create_todos.sql", content, 1)],
        functions=[FunctionFile("hello.ts", "export default 1;\n")],
        sdk_files=[SdkFile("sdk/types.ts", content)],
    )


def test_stage_writes_into_staging_dirs(tmp_path: Path) -> None:
    paths = ProjectPaths(tmp_path)
    outcome = Staging(paths).stage(_result())

    assert outcome.ok
    assert (paths.staged_migrations / "001_create_todos.sql").read_text() == "SELECT 1;\n"
    assert (paths.staged_functions / "hello.ts").exists()
    assert (tmp_path / "sdk" / "types.ts").exists()
    assert [p.name for p in Staging(paths).staged_migrations()] == ["001_create_todos.sql"]


def test_identical_restage_is_a_noop(tmp_path: Path) -> None:
    staging = Staging(ProjectPaths(tmp_path))
    staging.stage(_result())
    outcome = staging.stage(_result())

    assert outcome.staged == []
    assert "infra/migrations/_staged/001_create_todos.sql" in outcome.unchanged


def test_different_content_conflicts_without_force(tmp_path: Path) -> None:
    paths = ProjectPaths(tmp_path)
    staging = Staging(paths)
    staging.stage(_result())

    outcome = staging.stage(_result("SELECT 2;\n"))
    assert not outcome.ok
    assert outcome.conflicts[0].name == "infra/migrations/_staged/001_create_todos.sql"
    assert (paths.staged_migrations / "001_create_todos.sql").read_text() == "SELECT 1;\n"
    assert (tmp_path / "sdk" / "types.ts").read_text() == "SELECT 2;\n"

    forced = staging.stage(_result("SELECT 2;\n"), force=True)
    assert forced.ok
    assert (paths.staged_migrations / "001_create_todos.sql").read_text() == "SELECT 2;\n"
