"""Tests for the graph lens."""

import pytest
from conftest import make_chain, make_edge, make_summary

from graph_tutor.errors import ValidationError
from graph_tutor.lens import compute_graph_lens


def chain_lens(radius, **kwargs):
    edges = make_chain("A", "B", "C", "D", "E")
    nodes = [make_summary(n) for n in "ABCDE"]
    return compute_graph_lens("C", radius, edges, nodes, **kwargs)


def test_radius_one():
    lens = chain_lens(1)
    assert lens.node_ids == {"B", "C", "D"}
    assert lens.warnings == []


def test_radius_two():
    lens = chain_lens(2)
    assert lens.node_ids == {"A", "B", "C", "D", "E"}
    assert len(lens.edge_ids) == 4


def test_radius_zero_is_center_only():
    lens = chain_lens(0)
    assert lens.node_ids == {"C"}
    assert lens.edge_ids == set()


def test_negative_radius_rejected():
    with pytest.raises(ValidationError):
        chain_lens(-1)


def test_sides_and_depths():
    lens = chain_lens(2)
    assert (lens.node("C").side, lens.node("C").depth) == ("center", 0)
    assert (lens.node("B").side, lens.node("B").depth) == ("prereq", 1)
    assert (lens.node("A").side, lens.node("A").depth) == ("prereq", 2)
    assert (lens.node("D").side, lens.node("D").depth) == ("dependent", 1)
    assert (lens.node("E").side, lens.node("E").depth) == ("dependent", 2)


def test_metadata_order():
    lens = chain_lens(2)
    assert [m.id for m in lens.metadata] == ["B", "A", "C", "D", "E"]


@pytest.mark.parametrize("reverse", [False, True])
def test_rank_by_title_regardless_of_edge_order(reverse):
    edges = [make_edge("z", "center"), make_edge("a", "center")]
    if reverse:
        edges.reverse()
    nodes = [make_summary("z", "Zeta"), make_summary("a", "alpha"), make_summary("center", "Center")]

    lens = compute_graph_lens("center", 1, edges, nodes)
    assert lens.node("a").rank == 0
    assert lens.node("z").rank == 1


def test_rank_tie_broken_by_id():
    edges = [make_edge("p2", "c"), make_edge("p1", "c")]
    nodes = [make_summary("p1", "Same"), make_summary("p2", "same"), make_summary("c")]
    lens = compute_graph_lens("c", 1, edges, nodes)
    assert lens.node("p1").rank == 0
    assert lens.node("p2").rank == 1


def test_prerequisite_edges_ignore_filter():
    edges = make_chain("A", "B", "C") + [make_edge("A", "C", "CONTRASTS_WITH", id="contrast")]
    nodes = [make_summary(n) for n in "ABC"]

    filtered = compute_graph_lens("B", 1, edges, nodes, edge_type_filter=["PART_OF"])
    assert filtered.edge_ids == {edges[0].id, edges[1].id}

    unfiltered = compute_graph_lens("B", 1, edges, nodes)
    assert "contrast" in unfiltered.edge_ids

    matching = compute_graph_lens("B", 1, edges, nodes, edge_type_filter=["CONTRASTS_WITH"])
    assert "contrast" in matching.edge_ids


def test_secondary_edges_never_add_nodes():
    edges = [make_edge("A", "B"), make_edge("B", "X", "USED_IN")]
    lens = compute_graph_lens("B", 3, edges, [])
    assert lens.node_ids == {"A", "B"}


def test_edges_to_outside_nodes_excluded():
    lens = chain_lens(1)
    assert lens.edge_ids == {"edge_B_C_prerequisite_of", "edge_C_D_prerequisite_of"}


def test_cycle_through_center_warns():
    edges = make_chain("A", "B", "C") + [make_edge("C", "A")]
    lens = compute_graph_lens("A", 3, edges, [])
    assert lens.warnings == ["cycle_detected"]
    assert lens.node("A").side == "center"
    assert lens.node_ids == {"A", "B", "C"}


def test_node_on_both_sides_warns_once():
    # Y is both an ancestor and a descendant of C
    edges = [make_edge("X", "C"), make_edge("C", "Y"), make_edge("Y", "X")]
    lens = compute_graph_lens("C", 2, edges, [])
    assert lens.warnings == ["cycle_detected"]
    assert lens.node("X").side == "prereq"


def test_to_dict_is_sorted():
    data = chain_lens(1).to_dict()
    assert data["node_ids"] == ["B", "C", "D"]
    assert data["metadata"][0] == {"id": "B", "side": "prereq", "depth": 1, "rank": 0}
