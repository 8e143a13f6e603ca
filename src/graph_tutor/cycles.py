"""Prerequisite cycle detection for a candidate edge."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from .constants import PREREQUISITE_OF
from .models import EdgeSummary


@dataclass
class CycleCheck:
    would_cycle: bool
    cycle_node_ids: list[str] = field(default_factory=list)


def would_create_prereq_cycle(
    from_concept_id: str,
    to_concept_id: str,
    existing_edges: Iterable[EdgeSummary],
) -> CycleCheck:
    """Check whether adding ``from -[PREREQUISITE_OF]-> to`` closes a cycle.

    Only PREREQUISITE_OF edges are considered. The search runs depth-first
    from ``to_concept_id`` looking for a path back to ``from_concept_id``;
    the returned path starts at the target and follows visitation order.
    """
    if from_concept_id == to_concept_id:
        return CycleCheck(would_cycle=True, cycle_node_ids=[from_concept_id])

    adjacency: dict[str, list[str]] = {}
    for edge in existing_edges:
        if edge.type != PREREQUISITE_OF:
            continue
        adjacency.setdefault(edge.from_concept_id, []).append(edge.to_concept_id)
    adjacency.setdefault(from_concept_id, []).append(to_concept_id)

    visited = {to_concept_id}
    path = [to_concept_id]
    # One iterator per frame keeps the search O(V+E) without recursion
    stack = [iter(adjacency.get(to_concept_id, ()))]

    while stack:
        next_id = next(stack[-1], None)
        if next_id is None:
            stack.pop()
            path.pop()
            continue
        if next_id == from_concept_id:
            return CycleCheck(would_cycle=True, cycle_node_ids=path + [from_concept_id])
        if next_id in visited:
            continue
        visited.add(next_id)
        path.append(next_id)
        stack.append(iter(adjacency.get(next_id, ())))

    return CycleCheck(would_cycle=False)
