from __future__ import annotations

import json
from pathlib import Path

from engine.manifest import HISTORY_LIMIT, ManifestStore
from plan.validate import parse_plan


def _plan(summary: str = "init"):
    return parse_plan({
        "version": 1,
        "summary": summary,
        "steps": [
            {"kind": "table", "table": {
                "name": "projects",
                "columns": [{"name": "id", "type": "uuid", "pk": True}, {"name": "org_id", "type": "uuid"}],
                "policy": {"preset": "team_scope", "ownerCol": "created_by"},
            }},
            {"kind": "policy", "policy": {"table": "projects", "preset": "admin_override"}},
            {"kind": "index", "index": {"table": "projects", "columns": ["org_id"]}},
            {"kind": "realtime", "realtime": {"table": "projects"}},
            {"kind": "function", "function": {"name": "on-project", "triggers": [{"table": "projects", "when": "after_insert"}]}},
        ],
        "dependencies": {"email": True},
    })


def test_record_apply_captures_schema_state(tmp_path: Path) -> None:
    store = ManifestStore(tmp_path / ".kickstack" / "project.json")

    manifest = store.record_apply(_plan(), ["001_create_projects.sql"])

    state = manifest.db_schema
    assert [t.name for t in state.tables] == ["projects"]
    assert state.tables[0].rls_enabled is True
    assert [(p.preset, p.org_col, p.owner_col) for p in state.policies] == [
        ("team_scope", "org_id", "created_by"),
        ("admin_override", None, None),
    ]
    assert state.indexes[0].name == "idx_projects_org_id"
    assert state.functions[0].path == "on-project.ts"
    assert state.realtime[0].enabled is True
    assert manifest.dependencies.email is True

    on_disk = json.loads(store.path.read_text())
    assert "schema" in on_disk
    assert on_disk["history"][0]["changes"] == ["001_create_projects.sql"]


def test_reapply_replaces_entries_and_caps_history(tmp_path: Path) -> None:
    store = ManifestStore(tmp_path / "project.json")
    for n in range(HISTORY_LIMIT + 5):
        store.record_apply(_plan(f"apply {n}"), [])

    manifest = store.load()
    assert len(manifest.db_schema.tables) == 1
    assert len(manifest.db_schema.policies) == 2
    assert len(manifest.history) == HISTORY_LIMIT
    assert manifest.history[-1].summary == f"apply {HISTORY_LIMIT + 4}"
    assert manifest.history[0].type == "evolve"
