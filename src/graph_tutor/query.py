"""Read-only query operations on the tutor graph.

TutorEngine delegates lens, path, context-pack and duplicate queries here.
Every query loads a fresh snapshot from the store and runs the pure graph
algorithms over it.
"""

import logging
from typing import Callable

from .constants import LENS_DEFAULT_RADIUS
from .context_pack import ContextPack, collect_concept_ids, render_context_pack
from .duplicates import DuplicateCandidate, find_duplicate_candidates
from .errors import NotFoundError
from .learning_path import PrerequisitePathResult, compute_prerequisite_path
from .lens import GraphLens, compute_graph_lens
from .models import Concept
from .store import GraphStore

logger = logging.getLogger(__name__)


class QueryService:
    """Read-only queries over the current graph snapshot.

    Uses a callable accessor so it always reads through the live store.
    """

    def __init__(self, get_store: Callable[[], GraphStore]):
        self._get_store = get_store

    def _require_concept(self, concept_id: str) -> Concept:
        concept = self._get_store().concepts.get_by_id(concept_id)
        if concept is None:
            raise NotFoundError(f"Concept not found: {concept_id}", concept_id=concept_id)
        return concept

    def _titles(self) -> dict[str, str]:
        return {s.id: s.title for s in self._get_store().concepts.list_summaries()}

    def get_concept(self, concept_id: str) -> Concept:
        return self._require_concept(concept_id)

    def lens(
        self,
        concept_id: str,
        radius: int = LENS_DEFAULT_RADIUS,
        edge_type_filter: list[str] | None = None,
    ) -> GraphLens:
        """Lens around a concept (merged ids resolve to their canonical concept)."""
        store = self._get_store()
        center = self._require_concept(concept_id)
        return compute_graph_lens(
            center_id=center.id,
            radius=radius,
            edges=store.edges.list_summaries(),
            nodes=store.concepts.list_summaries(),
            edge_type_filter=edge_type_filter or [],
        )

    def prerequisite_path(self, concept_id: str) -> PrerequisitePathResult:
        """Study order for a concept, ties broken by title."""
        store = self._get_store()
        target = self._require_concept(concept_id)
        titles = self._titles()
        return compute_prerequisite_path(
            target.id,
            store.edges.list_summaries(),
            sort_key=lambda cid: titles.get(cid, cid),
        )

    def context_pack(
        self,
        concept_id: str,
        radius: str = "1-hop",
        include_quiz: bool = False,
    ) -> ContextPack:
        store = self._get_store()
        root = self._require_concept(concept_id)
        edges = store.edges.list_summaries()
        concept_ids = collect_concept_ids(root.id, radius, edges, titles=self._titles())
        concepts = store.concepts.list_by_ids(concept_ids)
        review_items = store.review_items.list_by_concept_ids(concept_ids) if include_quiz else []
        return render_context_pack(
            root_id=root.id,
            radius=radius,
            concepts=concepts,
            edges=store.edges.list_summaries_by_concept_ids(concept_ids),
            review_items=review_items,
            include_quiz=include_quiz,
        )

    def find_duplicates(
        self,
        title: str,
        module: str | None = None,
        kind: str | None = None,
        exclude_id: str | None = None,
    ) -> list[DuplicateCandidate]:
        return find_duplicate_candidates(
            title,
            self._get_store().concepts.list_summaries(),
            module=module,
            kind=kind,
            exclude_ids=[exclude_id] if exclude_id else [],
        )

    def get_stats(self) -> dict:
        store = self._get_store()
        return {
            "concepts": store.concepts.count(),
            "edges": store.edges.count(),
            "sources": store.sources.count(),
            "review_items": store.review_items.count(),
            "changesets": store.changesets.count(),
            "draft_changesets": len(store.changesets.list_all("draft")),
            "merges": store.merges.count(),
            "active_merges": len(store.merges.list_all(active_only=True)),
            "vault_files": store.vault_files.count(),
            "events": store.events.count(),
        }
