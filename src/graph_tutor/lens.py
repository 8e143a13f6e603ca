"""Graph lens: a bounded, side-classified neighborhood around one concept.

Prerequisites of the center land on the ``prereq`` side, concepts that
depend on it on the ``dependent`` side. Only PREREQUISITE_OF edges drive
membership; secondary edge types are shown when both endpoints are already
in view and the type passes the filter.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Literal

from .constants import LENS_WARNING_CYCLE, PREREQUISITE_OF
from .errors import ValidationError
from .models import ConceptSummary, EdgeSummary

LensSide = Literal["prereq", "center", "dependent", "related"]

_SIDE_ORDER = {"prereq": 0, "center": 1, "dependent": 2, "related": 3}


@dataclass
class LensNode:
    id: str
    side: LensSide
    depth: int
    rank: int = 0


@dataclass
class GraphLens:
    node_ids: set[str] = field(default_factory=set)
    edge_ids: set[str] = field(default_factory=set)
    metadata: list[LensNode] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def node(self, concept_id: str) -> LensNode | None:
        for meta in self.metadata:
            if meta.id == concept_id:
                return meta
        return None

    def to_dict(self) -> dict:
        return {
            "node_ids": sorted(self.node_ids),
            "edge_ids": sorted(self.edge_ids),
            "metadata": [vars(meta) for meta in self.metadata],
            "warnings": list(self.warnings),
        }


def _walk(
    center_id: str,
    radius: int,
    adjacency: dict[str, set[str]],
    side: LensSide,
    assignment: dict[str, tuple[str, int]],
) -> bool:
    """Breadth-first walk claiming unassigned nodes for ``side``.

    Returns True when the walk runs into the center or into a node already
    claimed as a prerequisite.
    """
    cycle = False
    frontier = [center_id]
    for depth in range(1, radius + 1):
        next_frontier = []
        for node_id in frontier:
            for neighbor in sorted(adjacency.get(node_id, ())):
                if neighbor == center_id:
                    cycle = True
                    continue
                if neighbor in assignment:
                    if side == "dependent" and assignment[neighbor][0] == "prereq":
                        cycle = True
                    continue
                assignment[neighbor] = (side, depth)
                next_frontier.append(neighbor)
        frontier = next_frontier
    return cycle


def compute_graph_lens(
    center_id: str,
    radius: int,
    edges: Iterable[EdgeSummary],
    nodes: Iterable[ConceptSummary],
    edge_type_filter: Iterable[str] = (),
) -> GraphLens:
    """Compute the lens around ``center_id``.

    Args:
        center_id: Focus concept.
        radius: Maximum hop count on each side (0 shows the center alone).
        edges: Edge snapshot; only PREREQUISITE_OF drives membership.
        nodes: Concept summaries, used for title-based ranking.
        edge_type_filter: Secondary edge types to show. Empty shows all.
            PREREQUISITE_OF edges between visible nodes are always shown.

    A cycle touching the center yields a ``cycle_detected`` warning and a
    best-effort partial neighborhood.
    """
    if radius < 0:
        raise ValidationError(f"Lens radius must be >= 0, got {radius}", radius=radius)

    edges = list(edges)
    prereqs_of: dict[str, set[str]] = {}
    dependents_of: dict[str, set[str]] = {}
    for edge in edges:
        if edge.type != PREREQUISITE_OF:
            continue
        prereqs_of.setdefault(edge.to_concept_id, set()).add(edge.from_concept_id)
        dependents_of.setdefault(edge.from_concept_id, set()).add(edge.to_concept_id)

    assignment: dict[str, tuple[str, int]] = {center_id: ("center", 0)}
    cycle = _walk(center_id, radius, prereqs_of, "prereq", assignment)
    cycle = _walk(center_id, radius, dependents_of, "dependent", assignment) or cycle

    node_ids = set(assignment)
    filter_set = set(edge_type_filter)
    edge_ids = set()
    for edge in edges:
        if edge.from_concept_id not in node_ids or edge.to_concept_id not in node_ids:
            continue
        if edge.type == PREREQUISITE_OF or not filter_set or edge.type in filter_set:
            edge_ids.add(edge.id)

    titles = {node.id: node.title for node in nodes}
    groups: dict[tuple[str, int], list[str]] = {}
    for node_id, key in assignment.items():
        groups.setdefault(key, []).append(node_id)

    metadata = []
    for (side, depth), members in groups.items():
        members.sort(key=lambda node_id: (titles.get(node_id, node_id).lower(), node_id))
        for rank, node_id in enumerate(members):
            metadata.append(LensNode(id=node_id, side=side, depth=depth, rank=rank))
    metadata.sort(key=lambda meta: (_SIDE_ORDER[meta.side], meta.depth, meta.rank))

    return GraphLens(
        node_ids=node_ids,
        edge_ids=edge_ids,
        metadata=metadata,
        warnings=[LENS_WARNING_CYCLE] if cycle else [],
    )
