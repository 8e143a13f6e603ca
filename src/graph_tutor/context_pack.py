"""Render a concept neighborhood as a markdown study pack.

A pack collects either the undirected 1-hop/2-hop neighborhood of a concept
or its full prerequisite chain in study order, then renders definitions,
summaries, internal relationships and (optionally) quizzes.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable

from .constants import CONTEXT_PACK_RADII, QUIZ_REVIEW_TYPES
from .errors import ValidationError
from .learning_path import compute_prerequisite_path
from .models import Concept, EdgeSummary, ReviewItem, utc_now

_UNSAFE_FILENAME = re.compile(r"[^a-zA-Z0-9_-]")


@dataclass
class ContextPack:
    markdown: str
    file_name: str
    concept_ids: list[str]


def _bfs_collect(start_id: str, edges: Iterable[EdgeSummary], max_hops: int) -> list[str]:
    adjacency: dict[str, set[str]] = {}
    for edge in edges:
        adjacency.setdefault(edge.from_concept_id, set()).add(edge.to_concept_id)
        adjacency.setdefault(edge.to_concept_id, set()).add(edge.from_concept_id)

    visited = [start_id]
    seen = {start_id}
    frontier = [start_id]
    for _ in range(max_hops):
        next_frontier = []
        for node_id in frontier:
            for neighbor in sorted(adjacency.get(node_id, ())):
                if neighbor not in seen:
                    seen.add(neighbor)
                    visited.append(neighbor)
                    next_frontier.append(neighbor)
        frontier = next_frontier
        if not frontier:
            break
    return visited


def collect_concept_ids(
    concept_id: str,
    radius: str,
    edges: Iterable[EdgeSummary],
    titles: dict[str, str] | None = None,
) -> list[str]:
    """Pick the concepts that belong in a pack.

    ``prereq-path`` returns the study order ending at ``concept_id`` (just the
    concept itself when its prerequisites form a cycle). ``1-hop`` and
    ``2-hop`` walk all edge types in both directions.
    """
    if radius not in CONTEXT_PACK_RADII:
        raise ValidationError(
            f"Radius must be one of {', '.join(CONTEXT_PACK_RADII)}, got {radius!r}",
            radius=radius,
        )
    edges = list(edges)

    if radius == "prereq-path":
        sort_key = (lambda cid: titles.get(cid, cid)) if titles else None
        result = compute_prerequisite_path(concept_id, edges, sort_key=sort_key)
        if result.ok:
            return result.ordered_concept_ids
        return [concept_id]

    return _bfs_collect(concept_id, edges, 2 if radius == "2-hop" else 1)


def _safe_file_stem(title: str) -> str:
    return _UNSAFE_FILENAME.sub("_", title)[:40]


def render_context_pack(
    root_id: str,
    radius: str,
    concepts: list[Concept],
    edges: Iterable[EdgeSummary],
    review_items: Iterable[ReviewItem] = (),
    include_quiz: bool = False,
    generated_at: datetime | None = None,
) -> ContextPack:
    """Render concepts (already in pack order) to markdown."""
    generated_at = generated_at or utc_now()
    ids = {c.id for c in concepts}
    internal = [e for e in edges if e.from_concept_id in ids and e.to_concept_id in ids]
    titles = {c.id: c.title for c in concepts}

    quizzes: dict[str, list[ReviewItem]] = {}
    if include_quiz:
        for item in review_items:
            if item.type in QUIZ_REVIEW_TYPES and item.answer is not None and item.rubric is not None:
                quizzes.setdefault(item.concept_id, []).append(item)

    root_title = titles.get(root_id, root_id)
    lines = [
        f"# Context Pack: {root_title}",
        f"Generated: {generated_at.isoformat()}",
        f"Radius: {radius}",
        f"Concepts included: {len(concepts)}",
        "",
        "---",
        "",
    ]

    for concept in concepts:
        lines.append(f"## {concept.title}")
        header = f"**Kind**: {concept.kind}"
        if concept.module:
            header += f" | **Module**: {concept.module}"
        lines += [header, ""]

        if concept.l0:
            lines += ["### Definition", concept.l0, ""]
        if concept.l1:
            lines += ["### Summary (L1)", *(f"- {b}" for b in concept.l1), ""]
        if concept.l2:
            lines += ["### Details (L2)", *(f"- {b}" for b in concept.l2), ""]

        outgoing = [e for e in internal if e.from_concept_id == concept.id]
        incoming = [e for e in internal if e.to_concept_id == concept.id]
        if outgoing or incoming:
            lines.append("### Relationships")
            for e in outgoing:
                lines.append(f"- {e.type} -> {titles.get(e.to_concept_id, e.to_concept_id)}")
            for e in incoming:
                lines.append(f"- {titles.get(e.from_concept_id, e.from_concept_id)} -[{e.type}]-> (this)")
            lines.append("")

        if concept.id in quizzes:
            lines.append("### Quizzes")
            for quiz in quizzes[concept.id]:
                lines += [f"**{quiz.type}**: {quiz.prompt}", ""]

        lines += ["---", ""]

    stamp = int(generated_at.timestamp() * 1000)
    file_name = f"{_safe_file_stem(root_title)}-{radius}-{stamp}.md"
    return ContextPack(
        markdown="\n".join(lines),
        file_name=file_name,
        concept_ids=[c.id for c in concepts],
    )
