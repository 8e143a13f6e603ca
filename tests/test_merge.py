"""Tests for concept merge preview, apply and undo."""

import pytest

from graph_tutor.errors import ConflictError, NotFoundError, ValidationError


@pytest.fixture
def merge_setup(engine):
    """Canonical "Gradient Descent" and duplicate "Grad Descent".

    The duplicate has two edges (one to a fresh neighbor, one to a concept
    the canonical already points at), a review item and a source.
    """
    canonical = engine.create_concept("Gradient Descent", module="ml")
    duplicate = engine.create_concept("Grad Descent", module="ml", l0="Follow the negative gradient.")
    calculus = engine.create_concept("Calculus")
    backprop = engine.create_concept("Backpropagation")

    engine.create_edge(calculus.id, canonical.id, "PREREQUISITE_OF")
    kept = engine.create_edge(duplicate.id, backprop.id, "PREREQUISITE_OF")
    dropped = engine.create_edge(calculus.id, duplicate.id, "PREREQUISITE_OF")

    review = engine.create_review_item(duplicate.id, "Gradient descent steps against the ___.", answer="gradient")
    source = engine.create_source("https://example.com/optim")
    engine.attach_source(duplicate.id, source.id)

    return {
        "engine": engine,
        "canonical": canonical,
        "duplicate": duplicate,
        "calculus": calculus,
        "backprop": backprop,
        "kept_edge": kept,
        "dropped_edge": dropped,
        "review": review,
        "source": source,
    }


def test_preview_plans_rewire_and_drop(merge_setup):
    s = merge_setup
    preview = s["engine"].preview_merge(s["canonical"].id, [s["duplicate"].id])

    changes = {c.edge_id: c for c in preview.edge_changes}
    rewired = changes[s["kept_edge"].id]
    assert rewired.action == "rewire"
    assert rewired.after.from_concept_id == s["canonical"].id
    assert rewired.after.to_concept_id == s["backprop"].id

    dropped = changes[s["dropped_edge"].id]
    assert dropped.action == "delete"
    assert dropped.reason == "duplicate_edge"

    assert preview.counts() == {
        "edges_rewired": 1,
        "edges_deleted": 1,
        "review_items_reassigned": 1,
        "sources_moved": 1,
    }


def test_preview_is_read_only(merge_setup):
    s = merge_setup
    engine = s["engine"]
    events_before = engine.store.events.count()
    engine.preview_merge(s["canonical"].id, [s["duplicate"].id])

    assert engine.store.edges.get_by_id(s["kept_edge"].id).from_concept_id == s["duplicate"].id
    assert engine.get_concept(s["duplicate"].id).id == s["duplicate"].id
    assert engine.store.merges.count() == 0
    assert engine.store.events.count() == events_before


def test_edge_between_duplicate_and_canonical_becomes_self_loop(engine):
    canonical = engine.create_concept("Attention")
    duplicate = engine.create_concept("Attention Mechanism")
    edge = engine.create_edge(duplicate.id, canonical.id, "CONFUSED_WITH")

    preview = engine.preview_merge(canonical.id, [duplicate.id])
    [change] = preview.edge_changes
    assert change.edge_id == edge.id
    assert (change.action, change.reason) == ("delete", "self_loop")


def test_two_duplicates_sharing_a_target_keep_one_edge(engine):
    canonical = engine.create_concept("RNN")
    dup_a = engine.create_concept("Recurrent Net")
    dup_b = engine.create_concept("Recurrent Neural Network")
    target = engine.create_concept("LSTM")
    first = engine.create_edge(dup_a.id, target.id, "PREREQUISITE_OF")
    second = engine.create_edge(dup_b.id, target.id, "PREREQUISITE_OF")

    preview = engine.preview_merge(canonical.id, [dup_a.id, dup_b.id])
    actions = {c.edge_id: c.action for c in preview.edge_changes}
    assert sorted(actions.values()) == ["delete", "rewire"]
    assert set(actions) == {first.id, second.id}


def test_apply_merge(merge_setup):
    s = merge_setup
    engine = s["engine"]
    canonical_id, duplicate_id = s["canonical"].id, s["duplicate"].id

    record, plan = engine.merge_concepts(canonical_id, [duplicate_id])

    assert record.id.startswith("concept_merge_")
    assert record.is_active
    assert plan.edges_rewired == 1
    # Lookups by the duplicate id now land on the canonical concept
    assert engine.get_concept(duplicate_id).id == canonical_id
    assert engine.get_canonical_id(duplicate_id) == canonical_id
    assert duplicate_id not in {c.id for c in engine.store.concepts.list_summaries()}

    assert engine.store.edges.get_by_id(s["kept_edge"].id).from_concept_id == canonical_id
    assert engine.store.edges.get_by_id(s["dropped_edge"].id) is None
    assert engine.store.review_items.get_by_id(s["review"].id).concept_id == canonical_id
    assert engine.store.concept_sources.list_source_ids(canonical_id) == [s["source"].id]
    assert engine.store.concept_sources.list_source_ids(duplicate_id) == []


def test_undo_is_exact(merge_setup):
    s = merge_setup
    engine = s["engine"]
    canonical_id, duplicate_id = s["canonical"].id, s["duplicate"].id
    edges_before = sorted(
        (e.id, e.from_concept_id, e.to_concept_id, e.type) for e in engine.store.edges.list_summaries()
    )

    engine.preview_merge(canonical_id, [duplicate_id])
    record, _ = engine.merge_concepts(canonical_id, [duplicate_id])
    undone = engine.undo_merge(record.id)

    assert undone.undone_at is not None
    restored = engine.get_concept(duplicate_id)
    assert restored.id == duplicate_id
    assert restored.title == "Grad Descent"
    assert restored.l0 == "Follow the negative gradient."

    edges_after = sorted(
        (e.id, e.from_concept_id, e.to_concept_id, e.type) for e in engine.store.edges.list_summaries()
    )
    assert edges_after == edges_before
    assert engine.store.review_items.get_by_id(s["review"].id).concept_id == duplicate_id
    assert engine.store.concept_sources.list_source_ids(duplicate_id) == [s["source"].id]
    assert engine.store.concept_sources.list_source_ids(canonical_id) == []


def test_undo_keeps_canonical_sources_it_already_had(engine):
    canonical = engine.create_concept("Transformers")
    duplicate = engine.create_concept("Transformer")
    source = engine.create_source("https://example.com/attention")
    engine.attach_source(canonical.id, source.id)
    engine.attach_source(duplicate.id, source.id)

    record, _ = engine.merge_concepts(canonical.id, [duplicate.id])
    engine.undo_merge(record.id)

    assert engine.store.concept_sources.list_source_ids(canonical.id) == [source.id]
    assert engine.store.concept_sources.list_source_ids(duplicate.id) == [source.id]


def test_undo_twice_fails(merge_setup):
    s = merge_setup
    record, _ = s["engine"].merge_concepts(s["canonical"].id, [s["duplicate"].id])
    s["engine"].undo_merge(record.id)
    with pytest.raises(ConflictError):
        s["engine"].undo_merge(record.id)


def test_undo_unknown_merge(engine):
    with pytest.raises(NotFoundError):
        engine.undo_merge("concept_merge_nope")


def test_undo_blocked_by_later_merge(engine):
    a = engine.create_concept("Optimizer")
    b = engine.create_concept("Optimiser")
    c = engine.create_concept("Optimization Algorithm")

    first, _ = engine.merge_concepts(a.id, [b.id])
    second, _ = engine.merge_concepts(a.id, [c.id])

    with pytest.raises(ConflictError):
        engine.undo_merge(first.id)

    engine.undo_merge(second.id)
    engine.undo_merge(first.id)
    assert engine.get_concept(b.id).title == "Optimiser"
    assert engine.get_concept(c.id).title == "Optimization Algorithm"


@pytest.mark.parametrize("duplicates", [[], ["same", "same"]])
def test_invalid_duplicate_lists(engine, duplicates):
    canonical = engine.create_concept("Canonical")
    engine.create_concept("Same", id="same")
    with pytest.raises(ValidationError):
        engine.preview_merge(canonical.id, duplicates)


def test_canonical_cannot_be_duplicate(engine):
    canonical = engine.create_concept("Canonical")
    with pytest.raises(ValidationError):
        engine.preview_merge(canonical.id, [canonical.id])


def test_missing_concept(engine):
    canonical = engine.create_concept("Canonical")
    with pytest.raises(NotFoundError):
        engine.preview_merge(canonical.id, ["concept_nope"])


def test_already_merged_concept_cannot_merge_again(engine):
    a = engine.create_concept("A")
    b = engine.create_concept("B")
    c = engine.create_concept("C")
    engine.merge_concepts(a.id, [b.id])
    with pytest.raises(ConflictError):
        engine.merge_concepts(c.id, [b.id])


def test_merge_events(merge_setup):
    s = merge_setup
    engine = s["engine"]
    record, _ = engine.merge_concepts(s["canonical"].id, [s["duplicate"].id])
    engine.undo_merge(record.id)

    ops = [e.op for e in engine.history(record.id)]
    assert ops == ["apply_merge", "undo_merge"]
    assert [m.id for m in engine.list_merges()] == [record.id]
    assert engine.list_merges(active_only=True) == []
