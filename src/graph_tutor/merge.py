"""Concept merge: fold duplicate concepts into a canonical one, reversibly.

Apply rewires (or drops) every edge touching a duplicate, moves review
items and source attachments to the canonical concept, and turns each
duplicate id into an alias. The pre-merge records are stored with the
merge so undo can put everything back exactly.
"""

from __future__ import annotations

import logging

from .errors import ConflictError, NotFoundError, ValidationError
from .models import (
    ConceptMerge,
    EdgeChange,
    EdgeSummary,
    GraphEvent,
    MergePreview,
    MergeSnapshot,
    utc_now,
)
from .store import GraphStore

logger = logging.getLogger(__name__)


class ConceptMergeEngine:
    """Preview, apply and undo concept merges."""

    def __init__(self, store: GraphStore, actor: str = "system"):
        self._store = store
        self.actor = actor

    def _emit(self, op: str, data: dict) -> GraphEvent:
        return self._store.events.append(GraphEvent(op=op, actor=self.actor, data=data))

    def _validate(self, canonical_id: str, duplicate_ids: list[str]) -> None:
        if not duplicate_ids:
            raise ValidationError("At least one duplicate concept id is required")
        if len(set(duplicate_ids)) != len(duplicate_ids):
            raise ValidationError("Duplicate concept ids must be unique", duplicate_ids=duplicate_ids)
        if canonical_id in duplicate_ids:
            raise ValidationError(
                f"Canonical concept {canonical_id} cannot also be a duplicate",
                canonical_id=canonical_id,
            )

        for concept_id in [canonical_id, *duplicate_ids]:
            target = self._store.aliases.get_canonical_id(concept_id)
            if target is not None:
                raise ConflictError(
                    f"Concept {concept_id} is already merged into {target}",
                    concept_id=concept_id,
                    canonical_id=target,
                )
            if not self._store.concepts.exists_raw(concept_id):
                raise NotFoundError(f"Concept not found: {concept_id}", concept_id=concept_id)

    def preview(self, canonical_id: str, duplicate_ids: list[str]) -> MergePreview:
        """Work out what merging ``duplicate_ids`` into ``canonical_id`` would do.

        An edge touching a duplicate is rewired onto the canonical concept
        unless that would make a self-loop or repeat an existing
        ``(from, to, type)`` edge, in which case it is dropped. Read-only.
        """
        duplicate_ids = list(duplicate_ids)
        self._validate(canonical_id, duplicate_ids)
        duplicates = set(duplicate_ids)
        store = self._store

        kept = {
            (e.from_concept_id, e.to_concept_id, e.type)
            for e in store.edges.list_summaries_by_concept_ids([canonical_id])
            if e.from_concept_id not in duplicates and e.to_concept_id not in duplicates
        }

        changes = []
        for edge in store.edges.list_summaries_by_concept_ids(duplicate_ids):
            new_from = canonical_id if edge.from_concept_id in duplicates else edge.from_concept_id
            new_to = canonical_id if edge.to_concept_id in duplicates else edge.to_concept_id
            key = (new_from, new_to, edge.type)
            if new_from == new_to:
                changes.append(EdgeChange(edge_id=edge.id, action="delete", reason="self_loop", before=edge))
            elif key in kept:
                changes.append(EdgeChange(edge_id=edge.id, action="delete", reason="duplicate_edge", before=edge))
            else:
                kept.add(key)
                after = EdgeSummary(id=edge.id, from_concept_id=new_from, to_concept_id=new_to, type=edge.type)
                changes.append(EdgeChange(edge_id=edge.id, action="rewire", reason="rewired", before=edge, after=after))

        return MergePreview(
            canonical_id=canonical_id,
            duplicate_ids=duplicate_ids,
            edge_changes=changes,
            review_item_ids=[item.id for item in store.review_items.list_by_concept_ids(duplicate_ids)],
            source_links=store.concept_sources.list_by_concept_ids(duplicate_ids),
        )

    def apply(self, canonical_id: str, duplicate_ids: list[str]) -> tuple[ConceptMerge, MergePreview]:
        """Execute a merge in one transaction and record it for undo."""
        store = self._store
        with store.transaction():
            plan = self.preview(canonical_id, duplicate_ids)
            merge = ConceptMerge(canonical_id=canonical_id, duplicate_ids=plan.duplicate_ids)
            snapshot = MergeSnapshot(
                concepts=store.concepts.list_by_ids(plan.duplicate_ids),
                edges=[store.edges.get_by_id(c.edge_id) for c in plan.edge_changes],
                review_items=store.review_items.list_by_concept_ids(plan.duplicate_ids),
                source_links=plan.source_links,
            )

            for change in plan.edge_changes:
                if change.action == "rewire":
                    store.edges.update_endpoints(
                        change.edge_id, change.after.from_concept_id, change.after.to_concept_id
                    )
                else:
                    store.edges.delete(change.edge_id)

            for item_id in plan.review_item_ids:
                store.review_items.reassign(item_id, canonical_id)

            for link in plan.source_links:
                store.concept_sources.detach(link.concept_id, link.source_id)
                if store.concept_sources.attach(canonical_id, link.source_id):
                    snapshot.added_source_links.append(
                        link.model_copy(update={"concept_id": canonical_id})
                    )

            for duplicate_id in plan.duplicate_ids:
                store.aliases.add(duplicate_id, canonical_id, merge.id)

            store.merges.create(merge, snapshot)
            self._emit("apply_merge", {
                "merge_id": merge.id,
                "canonical_id": canonical_id,
                "duplicate_ids": plan.duplicate_ids,
                **plan.counts(),
            })

        logger.info(
            f"Merged {plan.duplicate_ids} into {canonical_id} as {merge.id} "
            f"({plan.edges_rewired} rewired, {plan.edges_deleted} dropped)"
        )
        return merge, plan

    def undo(self, merge_id: str) -> ConceptMerge:
        """Reverse a merge exactly. Valid once per merge."""
        store = self._store
        with store.transaction():
            merge = store.merges.get_by_id(merge_id)
            if merge is None:
                raise NotFoundError(f"Merge not found: {merge_id}", merge_id=merge_id)
            if merge.undone_at is not None:
                raise ConflictError(f"Merge already undone: {merge_id}", merge_id=merge_id)

            involved = {merge.canonical_id, *merge.duplicate_ids}
            for later in store.merges.list_all(active_only=True):
                if (later.created_at, later.id) <= (merge.created_at, merge.id):
                    continue
                if involved & {later.canonical_id, *later.duplicate_ids}:
                    raise ConflictError(
                        f"Merge {later.id} depends on {merge_id}; undo it first",
                        merge_id=merge_id,
                        blocking_merge_id=later.id,
                    )

            snapshot = store.merges.get_snapshot(merge_id)
            store.aliases.remove_for_merge(merge_id)

            for concept in snapshot.concepts:
                store.concepts.restore(concept)

            for edge in snapshot.edges:
                if store.edges.get_by_id(edge.id) is None:
                    store.edges.create(edge)
                else:
                    store.edges.update_endpoints(edge.id, edge.from_concept_id, edge.to_concept_id)

            for item in snapshot.review_items:
                if store.review_items.get_by_id(item.id) is not None:
                    store.review_items.reassign(item.id, item.concept_id)

            for link in snapshot.added_source_links:
                store.concept_sources.detach(link.concept_id, link.source_id)
            for link in snapshot.source_links:
                store.concept_sources.attach(link.concept_id, link.source_id)

            undone_at = utc_now()
            store.merges.mark_undone(merge_id, undone_at)
            self._emit("undo_merge", {
                "merge_id": merge_id,
                "canonical_id": merge.canonical_id,
                "duplicate_ids": merge.duplicate_ids,
            })

        logger.info(f"Undid merge {merge_id}")
        return merge.model_copy(update={"undone_at": undone_at})
