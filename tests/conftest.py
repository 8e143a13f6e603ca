"""Shared test fixtures and helpers for graph-tutor tests."""

import tempfile
from pathlib import Path

import pytest

from graph_tutor.config import reset_logging
from graph_tutor.engine import TutorEngine
from graph_tutor.models import ConceptSummary, EdgeSummary
from graph_tutor.store import GraphStore


# --- Fixtures ---


@pytest.fixture
def temp_dir():
    """Provide a temporary directory, cleaned up after the test."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def store():
    """Provide an in-memory GraphStore."""
    store = GraphStore(":memory:")
    yield store
    store.close()


@pytest.fixture
def vault_dir(temp_dir):
    vault = temp_dir / "vault"
    vault.mkdir()
    return vault


@pytest.fixture
def engine(temp_dir, vault_dir):
    """Provide a fresh TutorEngine with an on-disk database and empty vault."""
    engine = TutorEngine(temp_dir / "graph_tutor.db", vault_dir, actor="test")
    yield engine
    engine.close()


@pytest.fixture
def seeded_engine(engine):
    """Provide an engine holding a small ML curriculum.

    Linear Algebra -> Gradient Descent -> Backpropagation -> Transformers,
    Calculus -> Gradient Descent, plus an Attention concept that is PART_OF
    Transformers.
    """
    ids = {}
    for title in [
        "Linear Algebra",
        "Calculus",
        "Gradient Descent",
        "Backpropagation",
        "Transformers",
        "Attention",
    ]:
        ids[title] = engine.create_concept(title, module="ml").id

    engine.create_edge(ids["Linear Algebra"], ids["Gradient Descent"], "PREREQUISITE_OF")
    engine.create_edge(ids["Calculus"], ids["Gradient Descent"], "PREREQUISITE_OF")
    engine.create_edge(ids["Gradient Descent"], ids["Backpropagation"], "PREREQUISITE_OF")
    engine.create_edge(ids["Backpropagation"], ids["Transformers"], "PREREQUISITE_OF")
    engine.create_edge(ids["Attention"], ids["Transformers"], "PART_OF")

    engine.ids = ids
    return engine


@pytest.fixture(autouse=True)
def _detach_log_handlers():
    """CLI invocations attach file handlers; drop them between tests."""
    yield
    reset_logging()


# --- Helper Functions (not fixtures) ---


def make_edge(from_id: str, to_id: str, type: str = "PREREQUISITE_OF", id: str | None = None) -> EdgeSummary:
    """Helper to build an edge summary for the pure graph algorithms.

    Args:
        from_id: Source concept id
        to_id: Target concept id
        type: Edge type (defaults to PREREQUISITE_OF)
        id: Edge id; derived from the endpoints when omitted
    """
    return EdgeSummary(
        id=id or f"edge_{from_id}_{to_id}_{type.lower()}",
        from_concept_id=from_id,
        to_concept_id=to_id,
        type=type,
    )


def make_chain(*ids: str) -> list[EdgeSummary]:
    """Prerequisite edges ids[0] -> ids[1] -> ... -> ids[-1]."""
    return [make_edge(a, b) for a, b in zip(ids, ids[1:])]


def make_summary(id: str, title: str | None = None, kind: str = "Concept", module: str | None = None) -> ConceptSummary:
    return ConceptSummary(id=id, title=title or id, kind=kind, module=module)


def make_diff(old_start: int, old_lines: int, new_start: int, new_lines: int, *lines: str) -> str:
    """Build a single-hunk unified diff from prefixed lines."""
    body = "\n".join(lines)
    return f"--- a/file\n+++ b/file\n@@ -{old_start},{old_lines} +{new_start},{new_lines} @@\n{body}\n"
