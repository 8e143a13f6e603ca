"""Repositories over the SQLite graph store.

One class per collection. Reads go straight to the connection; writes run
inside ``store.transaction()``.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime
from typing import TYPE_CHECKING, Iterable

from pydantic import TypeAdapter, ValidationError as PydanticValidationError

from .constants import ALIAS_CHAIN_LIMIT
from .errors import NotFoundError, ValidationError
from .models import (
    Changeset,
    ChangesetItem,
    Chunk,
    Concept,
    ConceptMerge,
    ConceptSourceLink,
    ConceptSummary,
    Edge,
    EdgeSummary,
    ItemPayload,
    MergeSnapshot,
    ReviewItem,
    Source,
    VaultFile,
    utc_now,
)

if TYPE_CHECKING:
    from .store import GraphStore

logger = logging.getLogger(__name__)

_payload_adapter = TypeAdapter(ItemPayload)


def _ts(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _placeholders(values: list) -> str:
    return ",".join("?" for _ in values)


class _Repository:
    def __init__(self, store: "GraphStore"):
        self._store = store

    @property
    def _conn(self) -> sqlite3.Connection:
        return self._store.connection

    def _tx(self):
        return self._store.transaction()


class ConceptRepository(_Repository):
    """Concepts, with alias resolution for merged duplicates."""

    _COLUMNS = "id, title, kind, l0, l1, l2, module, mastery_score, created_at, updated_at"

    def _row_to_concept(self, row: sqlite3.Row) -> Concept:
        return Concept(
            id=row["id"],
            title=row["title"],
            kind=row["kind"],
            l0=row["l0"],
            l1=json.loads(row["l1"]),
            l2=json.loads(row["l2"]),
            module=row["module"],
            mastery_score=row["mastery_score"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def _row_to_summary(self, row: sqlite3.Row) -> ConceptSummary:
        return ConceptSummary(id=row["id"], title=row["title"], kind=row["kind"], module=row["module"])

    def resolve_id(self, concept_id: str) -> str:
        """Follow the alias table to the canonical id (identity if not aliased)."""
        current = concept_id
        seen = {current}
        for _ in range(ALIAS_CHAIN_LIMIT):
            row = self._conn.execute(
                "SELECT canonical_id FROM concept_aliases WHERE alias_id = ?", (current,)
            ).fetchone()
            if row is None:
                return current
            current = row["canonical_id"]
            if current in seen:
                logger.warning(f"Alias loop detected at {concept_id}")
                return current
            seen.add(current)
        return current

    def get_raw(self, concept_id: str) -> Concept | None:
        """Fetch a concept row without alias resolution."""
        row = self._conn.execute(
            f"SELECT {self._COLUMNS} FROM concepts WHERE id = ?", (concept_id,)
        ).fetchone()
        return self._row_to_concept(row) if row else None

    def get_by_id(self, concept_id: str) -> Concept | None:
        """Fetch a concept; merged duplicate ids resolve to the canonical concept."""
        return self.get_raw(self.resolve_id(concept_id))

    def require(self, concept_id: str) -> Concept:
        concept = self.get_by_id(concept_id)
        if concept is None:
            raise NotFoundError(f"Concept not found: {concept_id}", concept_id=concept_id)
        return concept

    def exists(self, concept_id: str) -> bool:
        return self.get_by_id(concept_id) is not None

    def exists_raw(self, concept_id: str) -> bool:
        row = self._conn.execute("SELECT 1 FROM concepts WHERE id = ?", (concept_id,)).fetchone()
        return row is not None

    def create(self, concept: Concept) -> Concept:
        with self._tx() as conn:
            conn.execute(
                f"INSERT INTO concepts ({self._COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    concept.id,
                    concept.title,
                    concept.kind,
                    concept.l0,
                    json.dumps(concept.l1),
                    json.dumps(concept.l2),
                    concept.module,
                    concept.mastery_score,
                    _ts(concept.created_at),
                    _ts(concept.updated_at),
                ),
            )
        return concept

    def restore(self, concept: Concept) -> Concept:
        """Overwrite a concept row with a previously captured record."""
        with self._tx() as conn:
            conn.execute("DELETE FROM concepts WHERE id = ?", (concept.id,))
            self.create(concept)
        return concept

    def update(self, concept_id: str, **fields) -> Concept:
        """Update mutable fields of a concept (after alias resolution)."""
        allowed = {"title", "kind", "l0", "l1", "l2", "module", "mastery_score"}
        unknown = set(fields) - allowed
        if unknown:
            raise ValidationError(f"Cannot update concept fields: {sorted(unknown)}", fields=sorted(unknown))

        with self._tx() as conn:
            current = self.require(concept_id)
            try:
                updated = Concept.model_validate(
                    {**current.model_dump(), **fields, "updated_at": utc_now()}
                )
            except PydanticValidationError as e:
                raise ValidationError(f"Invalid concept update: {e}", concept_id=concept_id) from e
            conn.execute(
                """
                UPDATE concepts
                SET title = ?, kind = ?, l0 = ?, l1 = ?, l2 = ?, module = ?,
                    mastery_score = ?, updated_at = ?
                WHERE id = ?
                """,
                (
                    updated.title,
                    updated.kind,
                    updated.l0,
                    json.dumps(updated.l1),
                    json.dumps(updated.l2),
                    updated.module,
                    updated.mastery_score,
                    _ts(updated.updated_at),
                    updated.id,
                ),
            )
        return updated

    def list_summaries(self) -> list[ConceptSummary]:
        """All canonical concepts (aliases excluded), ordered by title."""
        cursor = self._conn.execute(
            """
            SELECT id, title, kind, module FROM concepts
            WHERE id NOT IN (SELECT alias_id FROM concept_aliases)
            ORDER BY title COLLATE NOCASE, id
            """
        )
        return [self._row_to_summary(row) for row in cursor]

    def search_summaries(self, query: str, limit: int = 20) -> list[ConceptSummary]:
        """Case-insensitive substring search over titles."""
        pattern = f"%{query.strip()}%"
        cursor = self._conn.execute(
            """
            SELECT id, title, kind, module FROM concepts
            WHERE title LIKE ? AND id NOT IN (SELECT alias_id FROM concept_aliases)
            ORDER BY title COLLATE NOCASE, id
            LIMIT ?
            """,
            (pattern, limit),
        )
        return [self._row_to_summary(row) for row in cursor]

    def search_exact(self, title: str) -> list[ConceptSummary]:
        cursor = self._conn.execute(
            """
            SELECT id, title, kind, module FROM concepts
            WHERE lower(title) = lower(?) AND id NOT IN (SELECT alias_id FROM concept_aliases)
            ORDER BY id
            """,
            (title.strip(),),
        )
        return [self._row_to_summary(row) for row in cursor]

    def list_summaries_by_ids(self, ids: Iterable[str]) -> list[ConceptSummary]:
        ids = list(dict.fromkeys(ids))
        if not ids:
            return []
        cursor = self._conn.execute(
            f"SELECT id, title, kind, module FROM concepts WHERE id IN ({_placeholders(ids)})",
            ids,
        )
        by_id = {row["id"]: self._row_to_summary(row) for row in cursor}
        return [by_id[i] for i in ids if i in by_id]

    def list_by_ids(self, ids: Iterable[str]) -> list[Concept]:
        ids = list(dict.fromkeys(ids))
        if not ids:
            return []
        cursor = self._conn.execute(
            f"SELECT {self._COLUMNS} FROM concepts WHERE id IN ({_placeholders(ids)})", ids
        )
        by_id = {row["id"]: self._row_to_concept(row) for row in cursor}
        return [by_id[i] for i in ids if i in by_id]

    def count(self) -> int:
        return self._conn.execute(
            "SELECT COUNT(*) FROM concepts WHERE id NOT IN (SELECT alias_id FROM concept_aliases)"
        ).fetchone()[0]


class AliasRepository(_Repository):
    """Alias table: duplicate id -> canonical id, owned by a merge."""

    def add(self, alias_id: str, canonical_id: str, merge_id: str) -> None:
        with self._tx() as conn:
            conn.execute(
                """
                INSERT INTO concept_aliases (alias_id, canonical_id, merge_id, created_at)
                VALUES (?, ?, ?, ?)
                """,
                (alias_id, canonical_id, merge_id, _ts(utc_now())),
            )

    def remove_for_merge(self, merge_id: str) -> int:
        with self._tx() as conn:
            cursor = conn.execute("DELETE FROM concept_aliases WHERE merge_id = ?", (merge_id,))
        return cursor.rowcount

    def get_canonical_id(self, alias_id: str) -> str | None:
        row = self._conn.execute(
            "SELECT canonical_id FROM concept_aliases WHERE alias_id = ?", (alias_id,)
        ).fetchone()
        return row["canonical_id"] if row else None

    def is_alias(self, concept_id: str) -> bool:
        return self.get_canonical_id(concept_id) is not None

    def list_for_canonical(self, canonical_id: str) -> list[str]:
        cursor = self._conn.execute(
            "SELECT alias_id FROM concept_aliases WHERE canonical_id = ? ORDER BY alias_id",
            (canonical_id,),
        )
        return [row["alias_id"] for row in cursor]


class EdgeRepository(_Repository):
    _COLUMNS = (
        "id, from_concept_id, to_concept_id, type, source_url, confidence, "
        "verifier_score, created_at"
    )

    def _evidence_for(self, edge_ids: list[str]) -> dict[str, list[str]]:
        evidence: dict[str, list[str]] = {edge_id: [] for edge_id in edge_ids}
        if not edge_ids:
            return evidence
        cursor = self._conn.execute(
            f"""
            SELECT edge_id, chunk_id FROM edge_evidence
            WHERE edge_id IN ({_placeholders(edge_ids)})
            ORDER BY edge_id, position
            """,
            edge_ids,
        )
        for row in cursor:
            evidence[row["edge_id"]].append(row["chunk_id"])
        return evidence

    def _rows_to_edges(self, rows: list[sqlite3.Row]) -> list[Edge]:
        evidence = self._evidence_for([row["id"] for row in rows])
        return [
            Edge(
                id=row["id"],
                from_concept_id=row["from_concept_id"],
                to_concept_id=row["to_concept_id"],
                type=row["type"],
                source_url=row["source_url"],
                confidence=row["confidence"],
                verifier_score=row["verifier_score"],
                created_at=row["created_at"],
                evidence_chunk_ids=evidence[row["id"]],
            )
            for row in rows
        ]

    @staticmethod
    def _row_to_summary(row: sqlite3.Row) -> EdgeSummary:
        return EdgeSummary(
            id=row["id"],
            from_concept_id=row["from_concept_id"],
            to_concept_id=row["to_concept_id"],
            type=row["type"],
        )

    def create(self, edge: Edge) -> Edge:
        with self._tx() as conn:
            conn.execute(
                f"INSERT INTO edges ({self._COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    edge.id,
                    edge.from_concept_id,
                    edge.to_concept_id,
                    edge.type,
                    edge.source_url,
                    edge.confidence,
                    edge.verifier_score,
                    _ts(edge.created_at),
                ),
            )
            conn.executemany(
                "INSERT OR IGNORE INTO edge_evidence (edge_id, chunk_id, position) VALUES (?, ?, ?)",
                [(edge.id, chunk_id, i) for i, chunk_id in enumerate(edge.evidence_chunk_ids)],
            )
        return edge

    def get_by_id(self, edge_id: str) -> Edge | None:
        rows = self._conn.execute(
            f"SELECT {self._COLUMNS} FROM edges WHERE id = ?", (edge_id,)
        ).fetchall()
        edges = self._rows_to_edges(rows)
        return edges[0] if edges else None

    def find(self, from_concept_id: str, to_concept_id: str, type: str) -> EdgeSummary | None:
        row = self._conn.execute(
            """
            SELECT id, from_concept_id, to_concept_id, type FROM edges
            WHERE from_concept_id = ? AND to_concept_id = ? AND type = ?
            ORDER BY id LIMIT 1
            """,
            (from_concept_id, to_concept_id, type),
        ).fetchone()
        return self._row_to_summary(row) if row else None

    def update_endpoints(self, edge_id: str, from_concept_id: str, to_concept_id: str) -> None:
        with self._tx() as conn:
            conn.execute(
                "UPDATE edges SET from_concept_id = ?, to_concept_id = ? WHERE id = ?",
                (from_concept_id, to_concept_id, edge_id),
            )

    def delete(self, edge_id: str) -> None:
        with self._tx() as conn:
            conn.execute("DELETE FROM edge_evidence WHERE edge_id = ?", (edge_id,))
            conn.execute("DELETE FROM edges WHERE id = ?", (edge_id,))

    def list_summaries(self) -> list[EdgeSummary]:
        cursor = self._conn.execute(
            "SELECT id, from_concept_id, to_concept_id, type FROM edges ORDER BY id"
        )
        return [self._row_to_summary(row) for row in cursor]

    def list_summaries_by_concept_ids(self, concept_ids: Iterable[str]) -> list[EdgeSummary]:
        """Edges with either endpoint in ``concept_ids``."""
        ids = list(dict.fromkeys(concept_ids))
        if not ids:
            return []
        marks = _placeholders(ids)
        cursor = self._conn.execute(
            f"""
            SELECT id, from_concept_id, to_concept_id, type FROM edges
            WHERE from_concept_id IN ({marks}) OR to_concept_id IN ({marks})
            ORDER BY id
            """,
            ids + ids,
        )
        return [self._row_to_summary(row) for row in cursor]

    def list_evidence_chunk_ids_for_concept(self, concept_id: str) -> list[str]:
        """Evidence chunk ids cited by any edge touching the concept, first-seen order."""
        cursor = self._conn.execute(
            """
            SELECT ev.chunk_id FROM edge_evidence ev
            JOIN edges e ON e.id = ev.edge_id
            WHERE e.from_concept_id = ? OR e.to_concept_id = ?
            ORDER BY e.id, ev.position
            """,
            (concept_id, concept_id),
        )
        return list(dict.fromkeys(row["chunk_id"] for row in cursor))

    def count(self) -> int:
        return self._conn.execute("SELECT COUNT(*) FROM edges").fetchone()[0]


class SourceRepository(_Repository):
    def create(self, source: Source) -> Source:
        with self._tx() as conn:
            conn.execute(
                "INSERT INTO sources (id, url, title, created_at) VALUES (?, ?, ?, ?)",
                (source.id, source.url, source.title, _ts(source.created_at)),
            )
        return source

    def get_by_id(self, source_id: str) -> Source | None:
        row = self._conn.execute(
            "SELECT id, url, title, created_at FROM sources WHERE id = ?", (source_id,)
        ).fetchone()
        if row is None:
            return None
        return Source(id=row["id"], url=row["url"], title=row["title"], created_at=row["created_at"])

    def count(self) -> int:
        return self._conn.execute("SELECT COUNT(*) FROM sources").fetchone()[0]


class ChunkRepository(_Repository):
    _COLUMNS = "id, source_id, ordinal, content, start_offset, end_offset, created_at"

    @staticmethod
    def _row_to_chunk(row: sqlite3.Row) -> Chunk:
        return Chunk(**{key: row[key] for key in row.keys()})

    def create(self, chunk: Chunk) -> Chunk:
        with self._tx() as conn:
            conn.execute(
                f"INSERT INTO chunks ({self._COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?)",
                (
                    chunk.id,
                    chunk.source_id,
                    chunk.ordinal,
                    chunk.content,
                    chunk.start_offset,
                    chunk.end_offset,
                    _ts(chunk.created_at),
                ),
            )
        return chunk

    def get_by_id(self, chunk_id: str) -> Chunk | None:
        row = self._conn.execute(
            f"SELECT {self._COLUMNS} FROM chunks WHERE id = ?", (chunk_id,)
        ).fetchone()
        return self._row_to_chunk(row) if row else None

    def list_by_source_id(self, source_id: str) -> list[Chunk]:
        cursor = self._conn.execute(
            f"SELECT {self._COLUMNS} FROM chunks WHERE source_id = ? ORDER BY ordinal, id",
            (source_id,),
        )
        return [self._row_to_chunk(row) for row in cursor]

    def list_by_ids(self, chunk_ids: Iterable[str]) -> list[Chunk]:
        ids = list(dict.fromkeys(chunk_ids))
        if not ids:
            return []
        cursor = self._conn.execute(
            f"SELECT {self._COLUMNS} FROM chunks WHERE id IN ({_placeholders(ids)})", ids
        )
        by_id = {row["id"]: self._row_to_chunk(row) for row in cursor}
        return [by_id[i] for i in ids if i in by_id]


class ConceptSourceRepository(_Repository):
    """Attachments between concepts and the sources that describe them."""

    def attach(self, concept_id: str, source_id: str) -> bool:
        """Attach a source; returns False if the link already existed."""
        with self._tx() as conn:
            cursor = conn.execute(
                """
                INSERT OR IGNORE INTO concept_sources (concept_id, source_id, created_at)
                VALUES (?, ?, ?)
                """,
                (concept_id, source_id, _ts(utc_now())),
            )
        return cursor.rowcount > 0

    def detach(self, concept_id: str, source_id: str) -> None:
        with self._tx() as conn:
            conn.execute(
                "DELETE FROM concept_sources WHERE concept_id = ? AND source_id = ?",
                (concept_id, source_id),
            )

    def list_source_ids(self, concept_id: str) -> list[str]:
        cursor = self._conn.execute(
            "SELECT source_id FROM concept_sources WHERE concept_id = ? ORDER BY source_id",
            (concept_id,),
        )
        return [row["source_id"] for row in cursor]

    def list_by_concept_ids(self, concept_ids: Iterable[str]) -> list[ConceptSourceLink]:
        ids = list(dict.fromkeys(concept_ids))
        if not ids:
            return []
        cursor = self._conn.execute(
            f"""
            SELECT concept_id, source_id FROM concept_sources
            WHERE concept_id IN ({_placeholders(ids)})
            ORDER BY concept_id, source_id
            """,
            ids,
        )
        return [ConceptSourceLink(concept_id=row["concept_id"], source_id=row["source_id"]) for row in cursor]


class ReviewItemRepository(_Repository):
    _COLUMNS = "id, concept_id, type, prompt, answer, rubric, status, due_at, created_at"

    @staticmethod
    def _row_to_item(row: sqlite3.Row) -> ReviewItem:
        return ReviewItem(**{key: row[key] for key in row.keys()})

    def create(self, item: ReviewItem) -> ReviewItem:
        with self._tx() as conn:
            conn.execute(
                f"INSERT INTO review_items ({self._COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    item.id,
                    item.concept_id,
                    item.type,
                    item.prompt,
                    item.answer,
                    item.rubric,
                    item.status,
                    _ts(item.due_at),
                    _ts(item.created_at),
                ),
            )
        return item

    def get_by_id(self, item_id: str) -> ReviewItem | None:
        row = self._conn.execute(
            f"SELECT {self._COLUMNS} FROM review_items WHERE id = ?", (item_id,)
        ).fetchone()
        return self._row_to_item(row) if row else None

    def list_by_concept_ids(self, concept_ids: Iterable[str]) -> list[ReviewItem]:
        ids = list(dict.fromkeys(concept_ids))
        if not ids:
            return []
        cursor = self._conn.execute(
            f"""
            SELECT {self._COLUMNS} FROM review_items
            WHERE concept_id IN ({_placeholders(ids)})
            ORDER BY created_at, id
            """,
            ids,
        )
        return [self._row_to_item(row) for row in cursor]

    def reassign(self, item_id: str, concept_id: str) -> None:
        with self._tx() as conn:
            conn.execute(
                "UPDATE review_items SET concept_id = ? WHERE id = ?", (concept_id, item_id)
            )

    def count(self) -> int:
        return self._conn.execute("SELECT COUNT(*) FROM review_items").fetchone()[0]


class ChangesetRepository(_Repository):
    _COLUMNS = "id, source_id, status, created_at, updated_at, applied_at"

    @staticmethod
    def _row_to_changeset(row: sqlite3.Row) -> Changeset:
        return Changeset(**{key: row[key] for key in row.keys()})

    def create(self, changeset: Changeset) -> Changeset:
        with self._tx() as conn:
            conn.execute(
                f"INSERT INTO changesets ({self._COLUMNS}) VALUES (?, ?, ?, ?, ?, ?)",
                (
                    changeset.id,
                    changeset.source_id,
                    changeset.status,
                    _ts(changeset.created_at),
                    _ts(changeset.updated_at),
                    _ts(changeset.applied_at),
                ),
            )
        return changeset

    def get_by_id(self, changeset_id: str) -> Changeset | None:
        row = self._conn.execute(
            f"SELECT {self._COLUMNS} FROM changesets WHERE id = ?", (changeset_id,)
        ).fetchone()
        return self._row_to_changeset(row) if row else None

    def list_all(self, status: str | None = None) -> list[Changeset]:
        if status is None:
            cursor = self._conn.execute(
                f"SELECT {self._COLUMNS} FROM changesets ORDER BY created_at DESC, id DESC"
            )
        else:
            cursor = self._conn.execute(
                f"""
                SELECT {self._COLUMNS} FROM changesets WHERE status = ?
                ORDER BY created_at DESC, id DESC
                """,
                (status,),
            )
        return [self._row_to_changeset(row) for row in cursor]

    def update_status(
        self, changeset_id: str, status: str, applied_at: datetime | None = None
    ) -> None:
        with self._tx() as conn:
            conn.execute(
                "UPDATE changesets SET status = ?, updated_at = ?, applied_at = ? WHERE id = ?",
                (status, _ts(utc_now()), _ts(applied_at), changeset_id),
            )

    def count(self) -> int:
        return self._conn.execute("SELECT COUNT(*) FROM changesets").fetchone()[0]


class ChangesetItemRepository(_Repository):
    _COLUMNS = "id, changeset_id, action, status, payload, created_at, updated_at"

    @staticmethod
    def _row_to_item(row: sqlite3.Row) -> ChangesetItem:
        return ChangesetItem(
            id=row["id"],
            changeset_id=row["changeset_id"],
            action=row["action"],
            status=row["status"],
            payload=_payload_adapter.validate_json(row["payload"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def create(self, item: ChangesetItem, position: int) -> ChangesetItem:
        with self._tx() as conn:
            conn.execute(
                """
                INSERT INTO changeset_items
                    (id, changeset_id, position, entity_type, action, status, payload,
                     created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    item.id,
                    item.changeset_id,
                    position,
                    item.entity_type,
                    item.action,
                    item.status,
                    item.payload.model_dump_json(),
                    _ts(item.created_at),
                    _ts(item.updated_at),
                ),
            )
        return item

    def get_by_id(self, item_id: str) -> ChangesetItem | None:
        row = self._conn.execute(
            f"SELECT {self._COLUMNS} FROM changeset_items WHERE id = ?", (item_id,)
        ).fetchone()
        return self._row_to_item(row) if row else None

    def list_by_changeset_id(self, changeset_id: str) -> list[ChangesetItem]:
        cursor = self._conn.execute(
            f"""
            SELECT {self._COLUMNS} FROM changeset_items
            WHERE changeset_id = ? ORDER BY position, id
            """,
            (changeset_id,),
        )
        return [self._row_to_item(row) for row in cursor]

    def update_status(self, item_ids: Iterable[str], status: str) -> None:
        ids = list(item_ids)
        if not ids:
            return
        with self._tx() as conn:
            conn.executemany(
                "UPDATE changeset_items SET status = ?, updated_at = ? WHERE id = ?",
                [(status, _ts(utc_now()), item_id) for item_id in ids],
            )

    def count(self, changeset_id: str | None = None) -> int:
        if changeset_id is None:
            return self._conn.execute("SELECT COUNT(*) FROM changeset_items").fetchone()[0]
        return self._conn.execute(
            "SELECT COUNT(*) FROM changeset_items WHERE changeset_id = ?", (changeset_id,)
        ).fetchone()[0]


class ConceptMergeRepository(_Repository):
    _COLUMNS = "id, canonical_id, duplicate_ids, created_at, undone_at"

    @staticmethod
    def _row_to_merge(row: sqlite3.Row) -> ConceptMerge:
        return ConceptMerge(
            id=row["id"],
            canonical_id=row["canonical_id"],
            duplicate_ids=json.loads(row["duplicate_ids"]),
            created_at=row["created_at"],
            undone_at=row["undone_at"],
        )

    def create(self, merge: ConceptMerge, snapshot: MergeSnapshot) -> ConceptMerge:
        with self._tx() as conn:
            conn.execute(
                """
                INSERT INTO concept_merges
                    (id, canonical_id, duplicate_ids, snapshot, created_at, undone_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    merge.id,
                    merge.canonical_id,
                    json.dumps(merge.duplicate_ids),
                    snapshot.model_dump_json(),
                    _ts(merge.created_at),
                    _ts(merge.undone_at),
                ),
            )
        return merge

    def get_by_id(self, merge_id: str) -> ConceptMerge | None:
        row = self._conn.execute(
            f"SELECT {self._COLUMNS} FROM concept_merges WHERE id = ?", (merge_id,)
        ).fetchone()
        return self._row_to_merge(row) if row else None

    def get_snapshot(self, merge_id: str) -> MergeSnapshot:
        row = self._conn.execute(
            "SELECT snapshot FROM concept_merges WHERE id = ?", (merge_id,)
        ).fetchone()
        if row is None:
            raise NotFoundError(f"Merge not found: {merge_id}", merge_id=merge_id)
        return MergeSnapshot.model_validate_json(row["snapshot"])

    def mark_undone(self, merge_id: str, undone_at: datetime) -> None:
        with self._tx() as conn:
            conn.execute(
                "UPDATE concept_merges SET undone_at = ? WHERE id = ?",
                (_ts(undone_at), merge_id),
            )

    def list_all(self, active_only: bool = False) -> list[ConceptMerge]:
        query = f"SELECT {self._COLUMNS} FROM concept_merges"
        if active_only:
            query += " WHERE undone_at IS NULL"
        cursor = self._conn.execute(query + " ORDER BY created_at, id")
        return [self._row_to_merge(row) for row in cursor]

    def count(self) -> int:
        return self._conn.execute("SELECT COUNT(*) FROM concept_merges").fetchone()[0]


class VaultFileRepository(_Repository):
    """Searchable mirror of vault file content."""

    def get_by_path(self, path: str) -> VaultFile | None:
        row = self._conn.execute(
            "SELECT path, content, content_hash, updated_at FROM vault_files WHERE path = ?",
            (path,),
        ).fetchone()
        if row is None:
            return None
        return VaultFile(
            path=row["path"],
            content=row["content"],
            content_hash=row["content_hash"],
            updated_at=row["updated_at"],
        )

    def upsert(self, path: str, content: str, content_hash: str) -> VaultFile:
        record = VaultFile(path=path, content=content, content_hash=content_hash)
        with self._tx() as conn:
            conn.execute(
                """
                INSERT INTO vault_files (path, content, content_hash, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(path) DO UPDATE SET
                    content = excluded.content,
                    content_hash = excluded.content_hash,
                    updated_at = excluded.updated_at
                """,
                (record.path, record.content, record.content_hash, _ts(record.updated_at)),
            )
        return record

    def count(self) -> int:
        return self._conn.execute("SELECT COUNT(*) FROM vault_files").fetchone()[0]
