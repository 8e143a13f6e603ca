"""Tests for the tutor engine: direct mutations and query delegation."""

import pytest

from graph_tutor.engine import TutorEngine
from graph_tutor.errors import ConflictError, NotFoundError, ValidationError


def test_create_and_get_concept(engine):
    concept = engine.create_concept("Gradient Descent", kind="Method", l1=["Step size matters"])
    assert concept.id.startswith("concept_")
    loaded = engine.get_concept(concept.id)
    assert loaded.title == "Gradient Descent"
    assert loaded.l1 == ["Step size matters"]


def test_create_concept_validation(engine):
    with pytest.raises(ValidationError):
        engine.create_concept("")
    with pytest.raises(ValidationError):
        engine.create_concept("Bad kind", kind="Spaceship")


def test_create_concept_duplicate_id(engine):
    engine.create_concept("One", id="c1")
    with pytest.raises(ConflictError):
        engine.create_concept("Two", id="c1")


def test_update_concept(engine):
    concept = engine.create_concept("Draft")
    updated = engine.update_concept(concept.id, title="Final", l0="Done.")
    assert updated.title == "Final"
    assert engine.get_concept(concept.id).l0 == "Done."
    assert [e.op for e in engine.history(concept.id)] == ["create_concept", "update_concept"]


def test_get_missing_concept(engine):
    with pytest.raises(NotFoundError):
        engine.get_concept("concept_missing")


def test_create_edge_refuses_prerequisite_cycle(seeded_engine):
    ids = seeded_engine.ids
    with pytest.raises(ConflictError) as excinfo:
        seeded_engine.create_edge(ids["Transformers"], ids["Linear Algebra"], "PREREQUISITE_OF")
    cycle = excinfo.value.details["cycle_node_ids"]
    assert cycle[0] == ids["Linear Algebra"]
    assert cycle[-1] == ids["Transformers"]


def test_create_edge_non_prereq_may_close_loop(seeded_engine):
    ids = seeded_engine.ids
    edge = seeded_engine.create_edge(ids["Transformers"], ids["Linear Algebra"], "USED_IN")
    assert edge.type == "USED_IN"


def test_create_edge_self_loop_and_missing(engine):
    concept = engine.create_concept("Alone")
    with pytest.raises(ValidationError):
        engine.create_edge(concept.id, concept.id, "PART_OF")
    with pytest.raises(NotFoundError):
        engine.create_edge(concept.id, "concept_missing", "PART_OF")
    assert engine.store.edges.count() == 0


def test_create_edge_rejects_repeated_evidence(engine):
    a = engine.create_concept("A")
    b = engine.create_concept("B")
    source = engine.create_source("https://example.com/a")
    chunk = engine.create_chunk(source.id, "A comes before B")
    with pytest.raises(ValidationError, match="Duplicate evidence chunk ids"):
        engine.create_edge(a.id, b.id, "USED_IN", evidence_chunk_ids=[chunk.id, chunk.id])
    assert engine.store.edges.count() == 0


def test_sources_chunks_and_review_items(engine):
    concept = engine.create_concept("Attention")
    source = engine.create_source("https://arxiv.org/abs/1706.03762", title="Attention Is All You Need")
    chunk = engine.create_chunk(source.id, "Scaled dot-product attention", ordinal=0)

    assert engine.attach_source(concept.id, source.id)
    assert not engine.attach_source(concept.id, source.id)
    assert engine.store.chunks.list_by_source_id(source.id)[0].id == chunk.id

    item = engine.create_review_item(concept.id, "Attention scales by ___", answer="sqrt(d_k)")
    assert engine.store.review_items.get_by_id(item.id).concept_id == concept.id

    with pytest.raises(NotFoundError):
        engine.create_chunk("source_missing", "text")


def test_lens_and_path(seeded_engine):
    ids = seeded_engine.ids
    lens = seeded_engine.lens(ids["Gradient Descent"], radius=1)
    assert lens.node_ids == {ids["Linear Algebra"], ids["Calculus"], ids["Gradient Descent"], ids["Backpropagation"]}
    assert lens.node(ids["Calculus"]).rank == 0
    assert lens.node(ids["Linear Algebra"]).rank == 1
    assert seeded_engine.lens(ids["Gradient Descent"]).node_ids == lens.node_ids

    path = seeded_engine.prerequisite_path(ids["Transformers"])
    assert path.ok
    assert path.ordered_concept_ids == [
        ids["Calculus"],
        ids["Linear Algebra"],
        ids["Gradient Descent"],
        ids["Backpropagation"],
        ids["Transformers"],
    ]


def test_lens_ignores_secondary_only_neighbors(seeded_engine):
    ids = seeded_engine.ids
    lens = seeded_engine.lens(ids["Transformers"], radius=1)
    # Attention is only PART_OF-linked, so it never joins the lens
    assert ids["Attention"] not in lens.node_ids


def test_queries_follow_merge_alias(seeded_engine):
    ids = seeded_engine.ids
    dup = seeded_engine.create_concept("Gradient Descent Algorithm")
    seeded_engine.merge_concepts(ids["Gradient Descent"], [dup.id])

    assert seeded_engine.get_concept(dup.id).id == ids["Gradient Descent"]
    lens = seeded_engine.lens(dup.id, radius=1)
    assert lens.node(ids["Gradient Descent"]).side == "center"


def test_stats(seeded_engine):
    stats = seeded_engine.get_stats()
    assert stats["concepts"] == 6
    assert stats["edges"] == 5
    assert stats["changesets"] == 0
    assert stats["events"] == 11


def test_from_settings(temp_dir, monkeypatch):
    from graph_tutor.config import load_settings

    monkeypatch.delenv("GRAPH_TUTOR_VAULT_DIR", raising=False)

    settings = load_settings(home_dir=temp_dir / "home", actor="someone")
    engine = TutorEngine.from_settings(settings)
    try:
        engine.create_concept("Persisted")
        assert settings.db_path.exists()
        assert engine.store.events.read_all()[0].actor == "someone"
        assert engine.vault_dir == temp_dir / "home" / "vault"
    finally:
        engine.close()
