"""Prerequisite path planning.

Orders every transitive prerequisite of a target concept into a linear study
sequence. ``A -[PREREQUISITE_OF]-> B`` means A is a prerequisite of B, so A
comes first. Cycles are reported as data, not raised.
"""

from __future__ import annotations

import heapq
from dataclasses import dataclass, field
from typing import Callable, Iterable, Union

from .constants import PREREQUISITE_OF
from .models import EdgeSummary


@dataclass
class PrerequisitePath:
    ordered_concept_ids: list[str] = field(default_factory=list)
    ok: bool = True


@dataclass
class PrerequisiteCycle:
    cycle_node_ids: list[str] = field(default_factory=list)
    ok: bool = False


PrerequisitePathResult = Union[PrerequisitePath, PrerequisiteCycle]


def _identity(concept_id: str) -> str:
    return concept_id


def compute_prerequisite_path(
    target_concept_id: str,
    edges: Iterable[EdgeSummary],
    sort_key: Callable[[str], str] | None = None,
) -> PrerequisitePathResult:
    """Topologically order the prerequisite subgraph that feeds ``target_concept_id``.

    Only ancestors of the target are considered. Among ready nodes the one
    with the smallest case-insensitive ``sort_key`` goes first, ties broken
    by raw id, so the output does not depend on edge order.

    Returns:
        PrerequisitePath (ok=True) with the target last, or
        PrerequisiteCycle (ok=False) listing the unresolved nodes.
    """
    key_of = sort_key or _identity

    def order_key(concept_id: str) -> tuple[str, str]:
        return (key_of(concept_id).lower(), concept_id)

    pairs = {
        (edge.from_concept_id, edge.to_concept_id)
        for edge in edges
        if edge.type == PREREQUISITE_OF
    }

    prereqs_of: dict[str, set[str]] = {}
    for from_id, to_id in pairs:
        prereqs_of.setdefault(to_id, set()).add(from_id)

    # Walk backward from the target to bound the subgraph
    node_set = {target_concept_id}
    stack = [target_concept_id]
    while stack:
        node = stack.pop()
        for prereq in prereqs_of.get(node, ()):
            if prereq not in node_set:
                node_set.add(prereq)
                stack.append(prereq)

    indegree = {node: 0 for node in node_set}
    outgoing: dict[str, list[str]] = {node: [] for node in node_set}
    for from_id, to_id in pairs:
        if from_id in node_set and to_id in node_set:
            outgoing[from_id].append(to_id)
            indegree[to_id] += 1

    ready = [(order_key(node), node) for node, degree in indegree.items() if degree == 0]
    heapq.heapify(ready)

    ordered: list[str] = []
    while ready:
        _, node = heapq.heappop(ready)
        ordered.append(node)
        for dependent in outgoing[node]:
            indegree[dependent] -= 1
            if indegree[dependent] == 0:
                heapq.heappush(ready, (order_key(dependent), dependent))

    if len(ordered) != len(node_set):
        remaining = sorted((n for n, d in indegree.items() if d > 0), key=order_key)
        return PrerequisiteCycle(cycle_node_ids=remaining)

    return PrerequisitePath(ordered_concept_ids=ordered)
