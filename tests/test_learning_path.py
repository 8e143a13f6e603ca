"""Tests for prerequisite path planning."""

import random

from conftest import make_chain, make_edge

from graph_tutor.learning_path import (
    PrerequisiteCycle,
    PrerequisitePath,
    compute_prerequisite_path,
)


def diamond():
    return [make_edge("A", "B"), make_edge("A", "C"), make_edge("B", "D"), make_edge("C", "D")]


def test_diamond_order():
    result = compute_prerequisite_path("D", diamond())
    assert isinstance(result, PrerequisitePath)
    assert result.ok
    assert result.ordered_concept_ids == ["A", "B", "C", "D"]


def test_isolated_target():
    result = compute_prerequisite_path("X", diamond())
    assert result.ok
    assert result.ordered_concept_ids == ["X"]


def test_only_ancestors_included():
    edges = diamond() + [make_edge("D", "E"), make_edge("Z", "E")]
    result = compute_prerequisite_path("B", edges)
    assert result.ordered_concept_ids == ["A", "B"]


def test_deterministic_under_shuffled_edges():
    edges = diamond() + make_chain("P", "Q", "D") + [make_edge("A", "A2"), make_edge("A2", "D")]
    expected = compute_prerequisite_path("D", edges).ordered_concept_ids

    rng = random.Random(3)
    for _ in range(20):
        shuffled = list(edges)
        rng.shuffle(shuffled)
        assert compute_prerequisite_path("D", shuffled).ordered_concept_ids == expected


def test_duplicate_edges_counted_once():
    edges = diamond() + diamond()
    result = compute_prerequisite_path("D", edges)
    assert result.ordered_concept_ids == ["A", "B", "C", "D"]


def test_sort_key_breaks_ties_case_insensitively():
    titles = {"B": "zebra", "C": "Apple", "A": "root", "D": "end"}
    result = compute_prerequisite_path("D", diamond(), sort_key=titles.__getitem__)
    assert result.ordered_concept_ids == ["A", "C", "B", "D"]


def test_equal_sort_keys_fall_back_to_id():
    result = compute_prerequisite_path("D", diamond(), sort_key=lambda _: "same")
    assert result.ordered_concept_ids == ["A", "B", "C", "D"]


def test_cycle_reported_as_data():
    edges = make_chain("A", "B", "C") + [make_edge("C", "A")]
    result = compute_prerequisite_path("A", edges)
    assert isinstance(result, PrerequisiteCycle)
    assert not result.ok
    assert result.cycle_node_ids == ["A", "B", "C"]


def test_cycle_upstream_of_target():
    edges = [make_edge("X", "Y"), make_edge("Y", "X"), make_edge("Y", "T"), make_edge("S", "T")]
    result = compute_prerequisite_path("T", edges)
    assert not result.ok
    # S orders fine; the loop and everything behind it stays unresolved
    assert result.cycle_node_ids == ["T", "X", "Y"]


def test_non_prerequisite_edges_ignored():
    edges = diamond() + [make_edge("D", "A", "USED_IN"), make_edge("E", "D", "PART_OF")]
    result = compute_prerequisite_path("D", edges)
    assert result.ok
    assert result.ordered_concept_ids == ["A", "B", "C", "D"]
