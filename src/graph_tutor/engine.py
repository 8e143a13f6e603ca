"""Tutor engine - orchestrates the store, changesets, merges and queries."""

import logging
from pathlib import Path

from pydantic import BaseModel, ValidationError as PydanticValidationError

from .changesets import ChangesetApplyResult, ChangesetManager
from .config import Settings
from .constants import LENS_DEFAULT_RADIUS, PREREQUISITE_OF
from .context_pack import ContextPack
from .cycles import would_create_prereq_cycle
from .duplicates import DuplicateCandidate
from .errors import ConflictError, NotFoundError, ValidationError
from .learning_path import PrerequisitePathResult
from .lens import GraphLens
from .merge import ConceptMergeEngine
from .models import (
    Changeset,
    ChangesetItem,
    ChangesetProposal,
    Chunk,
    Concept,
    ConceptMerge,
    Edge,
    GraphEvent,
    MergePreview,
    ReviewItem,
    Source,
)
from .query import QueryService
from .store import GraphStore

logger = logging.getLogger(__name__)


def _build(model: type[BaseModel], **fields) -> BaseModel:
    try:
        return model(**fields)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid {model.__name__.lower()}: {e}") from e


class TutorEngine:
    """Single entry point for reading and mutating the tutor graph.

    Direct mutations (concepts, edges, sources, review items) go through
    ``_emit``-backed methods here; staged mutations go through the
    ChangesetManager; merges through the ConceptMergeEngine. Read-only
    queries are delegated to QueryService.
    """

    def __init__(self, db_path: Path, vault_dir: Path, actor: str = "system"):
        self.db_path = Path(db_path)
        self.vault_dir = Path(vault_dir)
        self.actor = actor

        self.store = GraphStore(self.db_path)
        self.changesets = ChangesetManager(self.store, self.vault_dir, actor=actor)
        self.merges = ConceptMergeEngine(self.store, actor=actor)
        self._query = QueryService(get_store=lambda: self.store)

    @classmethod
    def from_settings(cls, settings: Settings) -> "TutorEngine":
        return cls(settings.db_path, settings.vault_path, actor=settings.actor)

    def close(self) -> None:
        self.store.close()

    def _emit(self, op: str, data: dict) -> GraphEvent:
        """Record a mutation in the audit log (inside the caller's transaction)."""
        return self.store.events.append(GraphEvent(op=op, actor=self.actor, data=data))

    # --- Direct mutations ---

    def create_concept(self, title: str, **fields) -> Concept:
        concept = _build(Concept, title=title, **fields)
        with self.store.transaction():
            if self.store.concepts.exists_raw(concept.id):
                raise ConflictError(f"Concept already exists: {concept.id}", concept_id=concept.id)
            self.store.concepts.create(concept)
            self._emit("create_concept", {"id": concept.id, "title": concept.title})
        return concept

    def update_concept(self, concept_id: str, **fields) -> Concept:
        with self.store.transaction():
            concept = self.store.concepts.update(concept_id, **fields)
            self._emit("update_concept", {"id": concept.id, "fields": sorted(fields)})
        return concept

    def create_edge(
        self,
        from_concept_id: str,
        to_concept_id: str,
        type: str,
        **fields,
    ) -> Edge:
        """Create an edge directly.

        Endpoints resolve through merge aliases. A PREREQUISITE_OF edge that
        would close a cycle is refused with the cycle path in the error.
        """
        with self.store.transaction():
            from_id = self.store.concepts.require(from_concept_id).id
            to_id = self.store.concepts.require(to_concept_id).id
            if from_id == to_id:
                raise ValidationError(f"Self-loop edge: {from_id} -> {to_id}", concept_id=from_id)

            if type == PREREQUISITE_OF:
                check = would_create_prereq_cycle(from_id, to_id, self.store.edges.list_summaries())
                if check.would_cycle:
                    raise ConflictError(
                        f"Edge {from_id} -> {to_id} would create a prerequisite cycle",
                        cycle_node_ids=check.cycle_node_ids,
                    )

            edge = _build(Edge, from_concept_id=from_id, to_concept_id=to_id, type=type, **fields)
            self.store.edges.create(edge)
            self._emit("create_edge", {
                "id": edge.id,
                "from_concept_id": from_id,
                "to_concept_id": to_id,
                "type": edge.type,
            })
        return edge

    def create_source(self, url: str, title: str | None = None) -> Source:
        source = _build(Source, url=url, title=title)
        with self.store.transaction():
            self.store.sources.create(source)
            self._emit("create_source", {"id": source.id, "url": url})
        return source

    def create_chunk(self, source_id: str, content: str, **fields) -> Chunk:
        with self.store.transaction():
            if self.store.sources.get_by_id(source_id) is None:
                raise NotFoundError(f"Source not found: {source_id}", source_id=source_id)
            chunk = self.store.chunks.create(_build(Chunk, source_id=source_id, content=content, **fields))
            self._emit("create_chunk", {"id": chunk.id, "source_id": source_id})
        return chunk

    def attach_source(self, concept_id: str, source_id: str) -> bool:
        with self.store.transaction():
            concept = self.store.concepts.require(concept_id)
            if self.store.sources.get_by_id(source_id) is None:
                raise NotFoundError(f"Source not found: {source_id}", source_id=source_id)
            added = self.store.concept_sources.attach(concept.id, source_id)
            if added:
                self._emit("attach_source", {"concept_id": concept.id, "source_id": source_id})
        return added

    def create_review_item(self, concept_id: str, prompt: str, **fields) -> ReviewItem:
        with self.store.transaction():
            concept = self.store.concepts.require(concept_id)
            item = self.store.review_items.create(
                _build(ReviewItem, concept_id=concept.id, prompt=prompt, **fields)
            )
            self._emit("create_review_item", {"id": item.id, "concept_id": concept.id})
        return item

    # --- Changesets ---

    def stage_changeset(
        self, proposal: ChangesetProposal | dict
    ) -> tuple[Changeset, list[ChangesetItem]]:
        return self.changesets.stage(proposal)

    def accept_items(self, item_ids: list[str]) -> list[ChangesetItem]:
        return self._set_items_status(item_ids, "accepted")

    def reject_items(self, item_ids: list[str]) -> list[ChangesetItem]:
        return self._set_items_status(item_ids, "rejected")

    def reset_items(self, item_ids: list[str]) -> list[ChangesetItem]:
        return self._set_items_status(item_ids, "pending")

    def _set_items_status(self, item_ids: list[str], status: str) -> list[ChangesetItem]:
        with self.store.transaction():
            return [self.changesets.set_item_status(item_id, status) for item_id in item_ids]

    def discard_changeset(self, changeset_id: str) -> Changeset:
        return self.changesets.discard(changeset_id)

    def apply_changeset(self, changeset_id: str) -> ChangesetApplyResult:
        return self.changesets.apply(changeset_id)

    def get_changeset(self, changeset_id: str) -> tuple[Changeset, list[ChangesetItem]]:
        return self.changesets.get(changeset_id)

    def list_changesets(self, status: str | None = None) -> list[Changeset]:
        return self.changesets.list_changesets(status)

    # --- Merges ---

    def preview_merge(self, canonical_id: str, duplicate_ids: list[str]) -> MergePreview:
        return self.merges.preview(canonical_id, duplicate_ids)

    def merge_concepts(
        self, canonical_id: str, duplicate_ids: list[str]
    ) -> tuple[ConceptMerge, MergePreview]:
        return self.merges.apply(canonical_id, duplicate_ids)

    def undo_merge(self, merge_id: str) -> ConceptMerge:
        return self.merges.undo(merge_id)

    def list_merges(self, active_only: bool = False) -> list[ConceptMerge]:
        return self.store.merges.list_all(active_only=active_only)

    # --- Queries (delegated to QueryService) ---

    def get_concept(self, concept_id: str) -> Concept:
        return self._query.get_concept(concept_id)

    def get_canonical_id(self, concept_id: str) -> str:
        return self.store.concepts.resolve_id(concept_id)

    def lens(self, concept_id, radius=LENS_DEFAULT_RADIUS, edge_type_filter=None) -> GraphLens:
        return self._query.lens(concept_id, radius, edge_type_filter)

    def prerequisite_path(self, concept_id) -> PrerequisitePathResult:
        return self._query.prerequisite_path(concept_id)

    def context_pack(self, concept_id, radius="1-hop", include_quiz=False) -> ContextPack:
        return self._query.context_pack(concept_id, radius, include_quiz)

    def find_duplicates(self, title, module=None, kind=None, exclude_id=None) -> list[DuplicateCandidate]:
        return self._query.find_duplicates(title, module, kind, exclude_id)

    def get_stats(self) -> dict:
        return self._query.get_stats()

    def history(self, entity_id: str) -> list[GraphEvent]:
        """Audit events that mention an entity id."""
        return self.store.events.read_for_entity(entity_id)
