"""Changeset lifecycle: stage, review, apply.

A proposal is validated against the live graph and staged as one pending
item per concept, edge or file patch. Reviewers move items between
``pending``, ``accepted`` and ``rejected``. Apply commits the accepted
items, runs file patches against the vault, and flips every accepted item
and the changeset to ``applied`` in one transaction.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from pydantic import ValidationError as PydanticValidationError

from .errors import ConflictError, NotFoundError, ValidationError
from .models import (
    Changeset,
    ChangesetItem,
    ChangesetProposal,
    Concept,
    ConceptPayload,
    Edge,
    EdgePayload,
    FilePatchPayload,
    GraphEvent,
    utc_now,
)
from .patches import (
    FilePatchResult,
    VaultFileUpdate,
    apply_file_patches,
    parse_unified_diff,
    resolve_vault_path,
)
from .store import GraphStore

logger = logging.getLogger(__name__)

REVIEWABLE_STATUSES = ("pending", "accepted", "rejected")


@dataclass
class ChangesetApplyResult:
    changeset_id: str
    applied_item_ids: list[str] = field(default_factory=list)
    created_concept_ids: list[str] = field(default_factory=list)
    created_edge_ids: list[str] = field(default_factory=list)
    vault_file_updates: list[VaultFileUpdate] = field(default_factory=list)
    already_applied: bool = False


def _item_id(changeset_id: str, tag: str, index: int) -> str:
    return f"changeset_item_{changeset_id}_{tag}_{index:04d}"


class ChangesetManager:
    """Stages proposals and drives changesets through review and apply."""

    def __init__(self, store: GraphStore, vault_root: Path, actor: str = "system"):
        self._store = store
        self.vault_root = Path(vault_root)
        self.actor = actor

    def _emit(self, op: str, data: dict) -> GraphEvent:
        return self._store.events.append(GraphEvent(op=op, actor=self.actor, data=data))

    def _require_changeset(self, changeset_id: str) -> Changeset:
        changeset = self._store.changesets.get_by_id(changeset_id)
        if changeset is None:
            raise NotFoundError(f"Changeset not found: {changeset_id}", changeset_id=changeset_id)
        return changeset

    # --- Staging ---

    def validate(self, proposal: ChangesetProposal) -> None:
        """Check a proposal against the current graph. Raises ValidationError."""
        store = self._store

        if proposal.source_id is not None and store.sources.get_by_id(proposal.source_id) is None:
            raise NotFoundError(f"Source not found: {proposal.source_id}", source_id=proposal.source_id)

        proposed: set[str] = set()
        for concept in proposal.concepts:
            if concept.id in proposed:
                raise ValidationError(f"Duplicate concept id: {concept.id}", concept_id=concept.id)
            if store.concepts.exists_raw(concept.id) or store.aliases.is_alias(concept.id):
                raise ValidationError(
                    f"Proposed concept id already exists: {concept.id}", concept_id=concept.id
                )
            proposed.add(concept.id)

        for edge in proposal.edges:
            if edge.from_concept_id == edge.to_concept_id:
                raise ValidationError(
                    f"Self-loop edge: {edge.from_concept_id} -> {edge.to_concept_id}",
                    concept_id=edge.from_concept_id,
                )
            resolved = []
            for end, concept_id in (("from", edge.from_concept_id), ("to", edge.to_concept_id)):
                if concept_id in proposed:
                    resolved.append(concept_id)
                    continue
                if not store.concepts.exists(concept_id):
                    raise ValidationError(
                        f"Edge {end}_concept_id not found: {concept_id}", concept_id=concept_id
                    )
                resolved.append(store.concepts.resolve_id(concept_id))
            # Merged duplicates resolve to their canonical concept
            if resolved[0] == resolved[1]:
                raise ValidationError(
                    f"Self-loop edge after alias resolution: "
                    f"{edge.from_concept_id} -> {edge.to_concept_id} (both {resolved[0]})",
                    concept_id=resolved[0],
                )

        cited: dict[str, str] = {}
        for concept in proposal.concepts:
            for chunk_id in concept.evidence_chunk_ids:
                cited.setdefault(chunk_id, f"Concept {concept.id}")
        for edge in proposal.edges:
            for chunk_id in edge.evidence_chunk_ids:
                cited.setdefault(chunk_id, f"Edge {edge.from_concept_id} -> {edge.to_concept_id}")
        if cited:
            found = {chunk.id for chunk in store.chunks.list_by_ids(cited)}
            for chunk_id, owner in cited.items():
                if chunk_id not in found:
                    raise ValidationError(
                        f"{owner} references missing evidence chunk id: {chunk_id}",
                        chunk_id=chunk_id,
                    )

        for patch in proposal.file_patches:
            resolve_vault_path(self.vault_root, patch.file_path)
            hunks = parse_unified_diff(patch.unified_diff)
            if len(hunks) != 1:
                raise ValidationError(
                    f"File patch for {patch.file_path} must contain exactly one hunk",
                    file_path=patch.file_path,
                    hunk_count=len(hunks),
                )

    def stage(self, proposal: ChangesetProposal | dict) -> tuple[Changeset, list[ChangesetItem]]:
        """Validate and stage a proposal as a draft changeset of pending items.

        All-or-nothing: a validation failure creates no changeset and no items.
        """
        if isinstance(proposal, dict):
            try:
                proposal = ChangesetProposal.model_validate(proposal)
            except PydanticValidationError as e:
                raise ValidationError(f"Invalid proposal: {e}") from e

        with self._store.transaction():
            self.validate(proposal)

            changeset = self._store.changesets.create(Changeset(source_id=proposal.source_id))
            staged: list[tuple[str, str, ConceptPayload | EdgePayload | FilePatchPayload]] = []
            staged += [("c", "create", c) for c in proposal.concepts]
            staged += [("e", "create", e) for e in proposal.edges]
            staged += [("f", "patch", f) for f in proposal.file_patches]

            items = []
            for position, (tag, action, payload) in enumerate(staged):
                item = ChangesetItem(
                    id=_item_id(changeset.id, tag, position),
                    changeset_id=changeset.id,
                    action=action,
                    payload=payload,
                )
                items.append(self._store.changeset_items.create(item, position))

            self._emit("stage_changeset", {
                "changeset_id": changeset.id,
                "source_id": changeset.source_id,
                "item_ids": [item.id for item in items],
            })

        logger.info(f"Staged changeset {changeset.id} with {len(items)} items")
        return changeset, items

    # --- Review ---

    def set_item_status(self, item_id: str, status: str) -> ChangesetItem:
        """Move an item between pending, accepted and rejected."""
        if status not in REVIEWABLE_STATUSES:
            raise ValidationError(
                f"Item status must be one of {', '.join(REVIEWABLE_STATUSES)}, got {status!r}",
                item_id=item_id,
                status=status,
            )

        with self._store.transaction():
            item = self._store.changeset_items.get_by_id(item_id)
            if item is None:
                raise NotFoundError(f"Changeset item not found: {item_id}", item_id=item_id)
            if item.status == "applied":
                raise ConflictError(f"Changeset item already applied: {item_id}", item_id=item_id)
            changeset = self._require_changeset(item.changeset_id)
            if changeset.status != "draft":
                raise ConflictError(
                    f"Changeset {changeset.id} is {changeset.status}; items can no longer change",
                    changeset_id=changeset.id,
                    status=changeset.status,
                )
            if item.status != status:
                self._store.changeset_items.update_status([item_id], status)
                self._emit("set_item_status", {
                    "changeset_id": changeset.id,
                    "item_id": item_id,
                    "from": item.status,
                    "to": status,
                })

        return item.model_copy(update={"status": status})

    def discard(self, changeset_id: str) -> Changeset:
        """Reject every open item and close the changeset without applying it."""
        with self._store.transaction():
            changeset = self._require_changeset(changeset_id)
            if changeset.status == "applied":
                raise ConflictError(
                    f"Changeset already applied: {changeset_id}", changeset_id=changeset_id
                )
            if changeset.status == "rejected":
                return changeset

            items = self._store.changeset_items.list_by_changeset_id(changeset_id)
            open_ids = [item.id for item in items if item.status != "rejected"]
            self._store.changeset_items.update_status(open_ids, "rejected")
            self._store.changesets.update_status(changeset_id, "rejected")
            self._emit("discard_changeset", {"changeset_id": changeset_id, "item_ids": open_ids})

        return self._require_changeset(changeset_id)

    # --- Apply ---

    def _apply_concept(self, changeset: Changeset, payload: ConceptPayload) -> str:
        store = self._store
        if store.concepts.exists_raw(payload.id) or store.aliases.is_alias(payload.id):
            raise ConflictError(f"Concept already exists: {payload.id}", concept_id=payload.id)
        concept = Concept(
            id=payload.id,
            title=payload.title,
            kind=payload.kind,
            l0=payload.l0,
            l1=payload.l1,
            l2=payload.l2,
            module=payload.module,
        )
        store.concepts.create(concept)
        if changeset.source_id is not None:
            store.concept_sources.attach(concept.id, changeset.source_id)
        return concept.id

    def _apply_edge(self, payload: EdgePayload) -> str:
        store = self._store
        from_id = store.concepts.resolve_id(payload.from_concept_id)
        to_id = store.concepts.resolve_id(payload.to_concept_id)
        for concept_id in (from_id, to_id):
            if not store.concepts.exists_raw(concept_id):
                raise ValidationError(
                    f"Edge endpoint not found: {concept_id}", concept_id=concept_id
                )
        if from_id == to_id:
            raise ValidationError(f"Self-loop edge: {from_id} -> {to_id}", concept_id=from_id)
        edge = Edge(
            from_concept_id=from_id,
            to_concept_id=to_id,
            type=payload.type,
            evidence_chunk_ids=payload.evidence_chunk_ids,
            source_url=payload.source_url,
            confidence=payload.confidence,
            verifier_score=payload.verifier_score,
        )
        store.edges.create(edge)
        return edge.id

    def apply(self, changeset_id: str) -> ChangesetApplyResult:
        """Commit every accepted item of a changeset.

        Applying an already-applied changeset, or one with nothing accepted,
        is a no-op that returns an empty result. A rejected changeset cannot
        be applied. Any failure leaves item and changeset statuses, the graph
        and the vault as they were.
        """
        patch_result: FilePatchResult | None = None
        try:
            with self._store.transaction():
                changeset = self._require_changeset(changeset_id)
                result = ChangesetApplyResult(changeset_id=changeset_id)
                if changeset.status == "applied":
                    result.already_applied = True
                    return result
                if changeset.status == "rejected":
                    raise ConflictError(
                        f"Changeset was discarded and cannot be applied: {changeset_id}",
                        changeset_id=changeset_id,
                        status=changeset.status,
                    )

                items = self._store.changeset_items.list_by_changeset_id(changeset_id)
                accepted = [item for item in items if item.status == "accepted"]
                if not accepted:
                    return result

                file_items = []
                for item in accepted:
                    payload = item.payload
                    if isinstance(payload, ConceptPayload):
                        result.created_concept_ids.append(self._apply_concept(changeset, payload))
                    elif isinstance(payload, EdgePayload):
                        result.created_edge_ids.append(self._apply_edge(payload))
                    elif isinstance(payload, FilePatchPayload):
                        file_items.append(item)
                    else:
                        raise ValidationError(
                            f"Unsupported changeset item type: {item.entity_type}", item_id=item.id
                        )

                # Files go last so a database failure never leaves the vault patched
                if file_items:
                    patch_result = apply_file_patches(self.vault_root, file_items)
                    for update in patch_result.vault_file_updates:
                        self._store.vault_files.upsert(update.path, update.content, update.content_hash)
                    result.vault_file_updates = patch_result.vault_file_updates

                result.applied_item_ids = [item.id for item in accepted]
                self._store.changeset_items.update_status(result.applied_item_ids, "applied")
                self._store.changesets.update_status(changeset_id, "applied", applied_at=utc_now())
                self._emit("apply_changeset", {
                    "changeset_id": changeset_id,
                    "item_ids": result.applied_item_ids,
                    "concept_ids": result.created_concept_ids,
                    "edge_ids": result.created_edge_ids,
                    "file_paths": [u.path for u in result.vault_file_updates],
                })
        except BaseException:
            if patch_result is not None:
                patch_result.rollback()
            raise

        logger.info(
            f"Applied changeset {changeset_id}: {len(result.applied_item_ids)} items "
            f"({len(result.created_concept_ids)} concepts, {len(result.created_edge_ids)} edges, "
            f"{len(result.vault_file_updates)} files)"
        )
        return result

    # --- Reads ---

    def get(self, changeset_id: str) -> tuple[Changeset, list[ChangesetItem]]:
        changeset = self._require_changeset(changeset_id)
        return changeset, self._store.changeset_items.list_by_changeset_id(changeset_id)

    def list_changesets(self, status: str | None = None) -> list[Changeset]:
        return self._store.changesets.list_all(status)
