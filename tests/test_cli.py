"""Tests for CLI commands."""

import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from graph_tutor.cli import cli
from graph_tutor.engine import TutorEngine


runner = CliRunner()


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("GRAPH_TUTOR_HOME", "GRAPH_TUTOR_VAULT_DIR", "GRAPH_TUTOR_LOG_LEVEL", "GRAPH_TUTOR_ACTOR"):
        monkeypatch.delenv(name, raising=False)


def invoke(home: Path, *args: str):
    return runner.invoke(cli, ["--home", str(home), *args])


def seed(home: Path) -> None:
    """Create a small prerequisite chain directly through the engine."""
    engine = TutorEngine(home / "graph_tutor.db", home / "vault", actor="test")
    try:
        engine.create_concept("Calculus", id="calc")
        engine.create_concept("Gradient Descent", id="gd")
        engine.create_concept("Backpropagation", id="bp")
        engine.create_edge("calc", "gd", "PREREQUISITE_OF")
        engine.create_edge("gd", "bp", "PREREQUISITE_OF")
    finally:
        engine.close()


def test_init(temp_dir):
    result = invoke(temp_dir, "init")
    assert result.exit_code == 0, result.output
    assert "Initialized" in result.output
    assert (temp_dir / "graph_tutor.db").exists()
    assert (temp_dir / "vault").is_dir()


def test_status_empty(temp_dir):
    result = invoke(temp_dir, "status")
    assert result.exit_code == 0
    assert "concepts" in result.output


def test_status_json(temp_dir):
    seed(temp_dir)
    result = invoke(temp_dir, "status", "--json")
    assert result.exit_code == 0
    stats = json.loads(result.output)
    assert stats["concepts"] == 3
    assert stats["edges"] == 2


def test_concept_add_and_show(temp_dir):
    result = invoke(temp_dir, "concept", "add", "Attention", "--id", "attn", "--kind", "Method")
    assert result.exit_code == 0, result.output
    assert "attn" in result.output

    result = invoke(temp_dir, "concept", "show", "attn", "--json")
    assert json.loads(result.output)["kind"] == "Method"


def test_concept_add_warns_about_duplicates(temp_dir):
    seed(temp_dir)
    result = invoke(temp_dir, "concept", "add", "gradient descent")
    assert result.exit_code == 0
    assert "possible duplicate" in result.output


def test_concept_show_missing(temp_dir):
    result = invoke(temp_dir, "concept", "show", "nope")
    assert result.exit_code == 1
    assert "Error:" in result.output
    assert "Concept not found" in result.output


def test_edge_add_refuses_cycle(temp_dir):
    seed(temp_dir)
    result = invoke(temp_dir, "edge", "add", "bp", "calc", "PREREQUISITE_OF")
    assert result.exit_code == 1
    assert "Cycle: calc -> gd -> bp" in result.output


def test_path_json(temp_dir):
    seed(temp_dir)
    result = invoke(temp_dir, "path", "bp", "--json")
    assert result.exit_code == 0
    assert json.loads(result.output) == {"ok": True, "ordered_concept_ids": ["calc", "gd", "bp"]}


def test_path_text(temp_dir):
    seed(temp_dir)
    result = invoke(temp_dir, "path", "bp")
    assert result.exit_code == 0
    lines = result.output.splitlines()
    assert "Calculus" in lines[0]
    assert "Backpropagation" in lines[2]


def test_lens_json(temp_dir):
    seed(temp_dir)
    result = invoke(temp_dir, "lens", "gd", "--radius", "1", "--json")
    assert result.exit_code == 0
    data = json.loads(result.output)
    assert data["node_ids"] == ["bp", "calc", "gd"]
    assert data["warnings"] == []


def test_lens_negative_radius(temp_dir):
    seed(temp_dir)
    result = invoke(temp_dir, "lens", "gd", "--radius", "-1")
    assert result.exit_code == 1
    assert "radius" in result.output


def test_changeset_flow(temp_dir):
    seed(temp_dir)
    vault = temp_dir / "vault"
    vault.mkdir()
    (vault / "gd.md").write_text("# Gradient Descent\nTODO\n")

    proposal = temp_dir / "proposal.json"
    proposal.write_text(json.dumps({
        "concepts": [{"id": "momentum", "title": "Momentum"}],
        "edges": [{"from_concept_id": "gd", "to_concept_id": "momentum", "type": "PREREQUISITE_OF"}],
        "file_patches": [{
            "file_path": "gd.md",
            "unified_diff": "@@ -1,2 +1,2 @@\n # Gradient Descent\n-TODO\n+Step against the gradient.\n",
        }],
    }))

    result = invoke(temp_dir, "changeset", "stage", str(proposal))
    assert result.exit_code == 0, result.output
    assert "Staged" in result.output

    listed = invoke(temp_dir, "changeset", "list", "--status", "draft")
    assert listed.exit_code == 0

    engine = TutorEngine(temp_dir / "graph_tutor.db", vault)
    [changeset] = engine.list_changesets("draft")
    item_ids = [item.id for item in engine.get_changeset(changeset.id)[1]]
    engine.close()

    result = invoke(temp_dir, "changeset", "accept", *item_ids)
    assert result.exit_code == 0
    assert "Accepted 3 item(s)" in result.output

    result = invoke(temp_dir, "changeset", "show", changeset.id, "--json")
    assert {i["status"] for i in json.loads(result.output)["items"]} == {"accepted"}

    result = invoke(temp_dir, "changeset", "apply", changeset.id)
    assert result.exit_code == 0, result.output
    assert "Applied 3 item(s)" in result.output
    assert (vault / "gd.md").read_text() == "# Gradient Descent\nStep against the gradient.\n"

    result = invoke(temp_dir, "changeset", "apply", changeset.id)
    assert result.exit_code == 0
    assert "already applied" in result.output


def test_changeset_stage_invalid(temp_dir):
    proposal = temp_dir / "proposal.json"
    proposal.write_text(json.dumps({"edges": [{"from_concept_id": "a", "to_concept_id": "a", "type": "USED_IN"}]}))
    result = invoke(temp_dir, "changeset", "stage", str(proposal))
    assert result.exit_code == 1
    assert "Self-loop" in result.output


def test_changeset_apply_missing(temp_dir):
    result = invoke(temp_dir, "changeset", "apply", "changeset_nope")
    assert result.exit_code == 1
    assert "Changeset not found" in result.output


def test_merge_flow(temp_dir):
    seed(temp_dir)
    engine = TutorEngine(temp_dir / "graph_tutor.db", temp_dir / "vault")
    engine.create_concept("Grad Descent", id="gd2")
    engine.create_edge("calc", "gd2", "PREREQUISITE_OF")
    engine.close()

    result = invoke(temp_dir, "merge", "preview", "gd", "gd2")
    assert result.exit_code == 0
    assert "0 edges rewired, 1 dropped" in result.output

    result = invoke(temp_dir, "merge", "apply", "gd", "gd2")
    assert result.exit_code == 0, result.output
    assert "Merged as concept_merge_" in result.output

    shown = json.loads(invoke(temp_dir, "concept", "show", "gd2", "--json").output)
    assert shown["id"] == "gd"

    engine = TutorEngine(temp_dir / "graph_tutor.db", temp_dir / "vault")
    [record] = engine.list_merges()
    engine.close()

    result = invoke(temp_dir, "merge", "undo", record.id)
    assert result.exit_code == 0
    assert "restored gd2" in result.output

    result = invoke(temp_dir, "merge", "undo", record.id)
    assert result.exit_code == 1
    assert "already undone" in result.output


def test_context_pack_to_file(temp_dir):
    seed(temp_dir)
    out_dir = temp_dir / "packs"
    result = invoke(temp_dir, "context-pack", "bp", "--radius", "prereq-path", "--out", str(out_dir))
    assert result.exit_code == 0, result.output

    [pack_file] = list(out_dir.glob("Backpropagation-prereq-path-*.md"))
    text = pack_file.read_text()
    assert text.index("## Calculus") < text.index("## Gradient Descent") < text.index("## Backpropagation")


def test_context_pack_stdout(temp_dir):
    seed(temp_dir)
    result = invoke(temp_dir, "context-pack", "gd")
    assert result.exit_code == 0
    assert result.output.startswith("# Context Pack: Gradient Descent")


def test_log_json_filters_by_op(temp_dir):
    seed(temp_dir)
    result = invoke(temp_dir, "log", "--op", "create_edge", "--json")
    assert result.exit_code == 0
    events = json.loads(result.output)
    assert [e["op"] for e in events] == ["create_edge", "create_edge"]
    assert events[0]["actor"] == "test"


def test_log_entity_and_since(temp_dir):
    seed(temp_dir)
    result = invoke(temp_dir, "log", "--entity", "bp", "--since", "1 hour ago", "--json")
    assert result.exit_code == 0
    assert [e["op"] for e in json.loads(result.output)] == ["create_concept", "create_edge"]


def test_log_bad_since(temp_dir):
    result = invoke(temp_dir, "log", "--since", "whenever")
    assert result.exit_code == 1
    assert "Cannot parse time reference" in result.output


def test_writes_log_file(temp_dir):
    invoke(temp_dir, "--log-level", "DEBUG", "init")
    assert (temp_dir / "graph-tutor.log").exists()
