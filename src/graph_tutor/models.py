"""Core data models for the tutor graph.

Uses Pydantic v2 for validation, ULID for sortable unique IDs.
"""

from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from ulid import ULID

from .constants import DEFAULT_CONCEPT_KIND


def generate_id(prefix: str | None = None) -> str:
    """Generate a ULID (sortable, unique identifier), optionally prefixed."""
    if prefix:
        return f"{prefix}_{ULID()}"
    return str(ULID())


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(timezone.utc)


def _unique_chunk_ids(chunk_ids: list[str]) -> list[str]:
    duplicates = sorted({c for c in chunk_ids if chunk_ids.count(c) > 1})
    if duplicates:
        raise ValueError(f"Duplicate evidence chunk ids: {', '.join(duplicates)}")
    return chunk_ids


EdgeType = Literal[
    "PREREQUISITE_OF",         # A must be learned before B
    "PART_OF",
    "USED_IN",
    "CONTRASTS_WITH",
    "ADDRESSES_FAILURE_MODE",
    "INTRODUCED_BY",
    "POPULARIZED_BY",
    "CONFUSED_WITH",
]

ConceptKind = Literal[
    "Domain",
    "Concept",
    "Method",
    "Architecture",
    "Pattern",
    "Threat",
    "Control",
    "Metric",
    "Benchmark",
    "Protocol",
    "Standard",
    "Regulation",
    "Tool",
    "System",
    "Artifact",
    "Question",
]

ChangesetStatus = Literal["draft", "applied", "rejected"]
ItemStatus = Literal["pending", "accepted", "rejected", "applied"]
ItemAction = Literal["create", "patch"]
ReviewStatus = Literal["draft", "active", "archived"]


# --- Graph entities ---


class ConceptSummary(BaseModel):
    id: str
    title: str
    kind: ConceptKind = DEFAULT_CONCEPT_KIND
    module: str | None = None


class Concept(BaseModel):
    """A node in the tutor graph."""

    id: str = Field(default_factory=lambda: generate_id("concept"))
    title: str = Field(min_length=1)
    kind: ConceptKind = DEFAULT_CONCEPT_KIND
    l0: str | None = None          # one-sentence summary
    l1: list[str] = Field(default_factory=list)
    l2: list[str] = Field(default_factory=list)
    module: str | None = None
    mastery_score: float = Field(default=0.0, ge=0.0, le=1.0)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def to_summary(self) -> ConceptSummary:
        return ConceptSummary(id=self.id, title=self.title, kind=self.kind, module=self.module)


class EdgeSummary(BaseModel):
    id: str
    from_concept_id: str
    to_concept_id: str
    type: EdgeType


class Edge(BaseModel):
    """A typed, directed relation between two concepts.

    ``A -[PREREQUISITE_OF]-> B`` means A is a prerequisite of B.
    """

    id: str = Field(default_factory=lambda: generate_id("edge"))
    from_concept_id: str
    to_concept_id: str
    type: EdgeType
    evidence_chunk_ids: list[str] = Field(default_factory=list)
    source_url: str | None = None
    confidence: float | None = None
    verifier_score: float | None = None
    created_at: datetime = Field(default_factory=utc_now)

    @field_validator("evidence_chunk_ids")
    @classmethod
    def _unique_evidence(cls, v: list[str]) -> list[str]:
        return _unique_chunk_ids(v)

    @model_validator(mode="after")
    def _no_self_loop(self) -> "Edge":
        if self.from_concept_id == self.to_concept_id:
            raise ValueError(f"Self-loop edge on {self.from_concept_id}")
        return self

    def to_summary(self) -> EdgeSummary:
        return EdgeSummary(
            id=self.id,
            from_concept_id=self.from_concept_id,
            to_concept_id=self.to_concept_id,
            type=self.type,
        )


class Source(BaseModel):
    id: str = Field(default_factory=lambda: generate_id("source"))
    url: str
    title: str | None = None
    created_at: datetime = Field(default_factory=utc_now)


class Chunk(BaseModel):
    """A span of source text cited as evidence."""

    id: str = Field(default_factory=lambda: generate_id("chunk"))
    source_id: str
    ordinal: int = 0
    content: str
    start_offset: int = 0
    end_offset: int = 0
    created_at: datetime = Field(default_factory=utc_now)


class ConceptSourceLink(BaseModel):
    concept_id: str
    source_id: str


class ReviewItem(BaseModel):
    id: str = Field(default_factory=lambda: generate_id("review_item"))
    concept_id: str
    type: str = "CLOZE"
    prompt: str
    answer: str | None = None
    rubric: str | None = None
    status: ReviewStatus = "draft"
    due_at: datetime | None = None
    created_at: datetime = Field(default_factory=utc_now)


class VaultFile(BaseModel):
    """Searchable mirror of a vault file's content."""

    path: str
    content: str
    content_hash: str
    updated_at: datetime = Field(default_factory=utc_now)


# --- Changesets ---


class ConceptPayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    entity_type: Literal["concept"] = "concept"
    id: str = Field(default_factory=lambda: generate_id("concept"), min_length=1)
    title: str = Field(min_length=1)
    kind: ConceptKind = DEFAULT_CONCEPT_KIND
    l0: str | None = None
    l1: list[str] = Field(default_factory=list)
    l2: list[str] = Field(default_factory=list)
    module: str | None = None
    evidence_chunk_ids: list[str] = Field(default_factory=list)


class EdgePayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    entity_type: Literal["edge"] = "edge"
    from_concept_id: str = Field(min_length=1)
    to_concept_id: str = Field(min_length=1)
    type: EdgeType
    evidence_chunk_ids: list[str] = Field(default_factory=list)
    source_url: str | None = None
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    verifier_score: float | None = Field(default=None, ge=0.0, le=1.0)

    @field_validator("evidence_chunk_ids")
    @classmethod
    def _unique_evidence(cls, v: list[str]) -> list[str]:
        return _unique_chunk_ids(v)


class FilePatchPayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    entity_type: Literal["file"] = "file"
    file_path: str = Field(min_length=1)
    unified_diff: str = Field(min_length=1)


ItemPayload = Annotated[
    Union[ConceptPayload, EdgePayload, FilePatchPayload],
    Field(discriminator="entity_type"),
]


class Changeset(BaseModel):
    """A batch of proposed graph mutations staged for review."""

    id: str = Field(default_factory=lambda: generate_id("changeset"))
    source_id: str | None = None
    status: ChangesetStatus = "draft"
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    applied_at: datetime | None = None


class ChangesetItem(BaseModel):
    id: str
    changeset_id: str
    action: ItemAction = "create"
    status: ItemStatus = "pending"
    payload: ItemPayload
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def entity_type(self) -> str:
        return self.payload.entity_type


class ChangesetProposal(BaseModel):
    """Candidate concepts, edges and file patches awaiting staging."""

    model_config = ConfigDict(extra="forbid")

    source_id: str | None = None
    concepts: list[ConceptPayload] = Field(default_factory=list)
    edges: list[EdgePayload] = Field(default_factory=list)
    file_patches: list[FilePatchPayload] = Field(default_factory=list)

    @model_validator(mode="after")
    def _not_empty(self) -> "ChangesetProposal":
        if not (self.concepts or self.edges or self.file_patches):
            raise ValueError("Proposal must contain at least one concept, edge or file patch")
        return self


# --- Merges ---


class ConceptMerge(BaseModel):
    id: str = Field(default_factory=lambda: generate_id("concept_merge"))
    canonical_id: str
    duplicate_ids: list[str] = Field(min_length=1)
    created_at: datetime = Field(default_factory=utc_now)
    undone_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.undone_at is None


class EdgeChange(BaseModel):
    edge_id: str
    action: Literal["rewire", "delete"]
    reason: Literal["rewired", "self_loop", "duplicate_edge"]
    before: EdgeSummary
    after: EdgeSummary | None = None


class MergePreview(BaseModel):
    canonical_id: str
    duplicate_ids: list[str]
    edge_changes: list[EdgeChange] = Field(default_factory=list)
    review_item_ids: list[str] = Field(default_factory=list)
    source_links: list[ConceptSourceLink] = Field(default_factory=list)

    @property
    def edges_rewired(self) -> int:
        return sum(1 for c in self.edge_changes if c.action == "rewire")

    @property
    def edges_deleted(self) -> int:
        return sum(1 for c in self.edge_changes if c.action == "delete")

    @property
    def review_items_reassigned(self) -> int:
        return len(self.review_item_ids)

    @property
    def sources_moved(self) -> int:
        return len({link.source_id for link in self.source_links})

    def counts(self) -> dict:
        return {
            "edges_rewired": self.edges_rewired,
            "edges_deleted": self.edges_deleted,
            "review_items_reassigned": self.review_items_reassigned,
            "sources_moved": self.sources_moved,
        }


class MergeSnapshot(BaseModel):
    """Pre-merge state needed to reverse a merge exactly."""

    concepts: list[Concept] = Field(default_factory=list)
    edges: list[Edge] = Field(default_factory=list)
    review_items: list[ReviewItem] = Field(default_factory=list)
    source_links: list[ConceptSourceLink] = Field(default_factory=list)
    added_source_links: list[ConceptSourceLink] = Field(default_factory=list)


# --- Audit trail ---


EventOp = Literal[
    "create_concept",
    "update_concept",
    "create_edge",
    "create_source",
    "create_chunk",
    "attach_source",
    "create_review_item",
    "stage_changeset",
    "set_item_status",
    "discard_changeset",
    "apply_changeset",
    "apply_merge",
    "undo_merge",
]


class GraphEvent(BaseModel):
    """A single mutation recorded in the audit log."""

    id: str = Field(default_factory=generate_id)
    ts: datetime = Field(default_factory=utc_now)
    op: EventOp
    actor: str = "system"
    data: dict[str, Any] = Field(default_factory=dict)
