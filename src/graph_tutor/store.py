"""SQLite-backed graph store.

One connection, one schema, one transactional boundary. Repositories hang
off the store as attributes and run every write inside
``GraphStore.transaction()``, so a standalone call commits on its own and a
call made inside a wider operation joins it.
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from .constants import SQLITE_BUSY_TIMEOUT_MS

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

SCHEMA = """
    CREATE TABLE IF NOT EXISTS concepts (
        id TEXT PRIMARY KEY,
        title TEXT NOT NULL,
        kind TEXT NOT NULL,
        l0 TEXT,
        l1 TEXT NOT NULL,
        l2 TEXT NOT NULL,
        module TEXT,
        mastery_score REAL NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    );
    CREATE INDEX IF NOT EXISTS idx_concepts_title ON concepts(title COLLATE NOCASE);

    CREATE TABLE IF NOT EXISTS concept_aliases (
        alias_id TEXT PRIMARY KEY,
        canonical_id TEXT NOT NULL,
        merge_id TEXT NOT NULL,
        created_at TEXT NOT NULL
    );
    CREATE INDEX IF NOT EXISTS idx_aliases_merge ON concept_aliases(merge_id);

    CREATE TABLE IF NOT EXISTS edges (
        id TEXT PRIMARY KEY,
        from_concept_id TEXT NOT NULL,
        to_concept_id TEXT NOT NULL,
        type TEXT NOT NULL,
        source_url TEXT,
        confidence REAL,
        verifier_score REAL,
        created_at TEXT NOT NULL,
        CHECK (from_concept_id <> to_concept_id)
    );
    CREATE INDEX IF NOT EXISTS idx_edges_from ON edges(from_concept_id);
    CREATE INDEX IF NOT EXISTS idx_edges_to ON edges(to_concept_id);

    CREATE TABLE IF NOT EXISTS edge_evidence (
        edge_id TEXT NOT NULL,
        chunk_id TEXT NOT NULL,
        position INTEGER NOT NULL,
        PRIMARY KEY (edge_id, chunk_id)
    );

    CREATE TABLE IF NOT EXISTS sources (
        id TEXT PRIMARY KEY,
        url TEXT NOT NULL,
        title TEXT,
        created_at TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS chunks (
        id TEXT PRIMARY KEY,
        source_id TEXT NOT NULL,
        ordinal INTEGER NOT NULL,
        content TEXT NOT NULL,
        start_offset INTEGER NOT NULL,
        end_offset INTEGER NOT NULL,
        created_at TEXT NOT NULL
    );
    CREATE INDEX IF NOT EXISTS idx_chunks_source ON chunks(source_id);

    CREATE TABLE IF NOT EXISTS concept_sources (
        concept_id TEXT NOT NULL,
        source_id TEXT NOT NULL,
        created_at TEXT NOT NULL,
        PRIMARY KEY (concept_id, source_id)
    );

    CREATE TABLE IF NOT EXISTS review_items (
        id TEXT PRIMARY KEY,
        concept_id TEXT NOT NULL,
        type TEXT NOT NULL,
        prompt TEXT NOT NULL,
        answer TEXT,
        rubric TEXT,
        status TEXT NOT NULL,
        due_at TEXT,
        created_at TEXT NOT NULL
    );
    CREATE INDEX IF NOT EXISTS idx_review_items_concept ON review_items(concept_id);

    CREATE TABLE IF NOT EXISTS changesets (
        id TEXT PRIMARY KEY,
        source_id TEXT,
        status TEXT NOT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        applied_at TEXT
    );

    CREATE TABLE IF NOT EXISTS changeset_items (
        id TEXT PRIMARY KEY,
        changeset_id TEXT NOT NULL,
        position INTEGER NOT NULL,
        entity_type TEXT NOT NULL,
        action TEXT NOT NULL,
        status TEXT NOT NULL,
        payload TEXT NOT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    );
    CREATE INDEX IF NOT EXISTS idx_items_changeset ON changeset_items(changeset_id);

    CREATE TABLE IF NOT EXISTS concept_merges (
        id TEXT PRIMARY KEY,
        canonical_id TEXT NOT NULL,
        duplicate_ids TEXT NOT NULL,
        snapshot TEXT NOT NULL,
        created_at TEXT NOT NULL,
        undone_at TEXT
    );

    CREATE TABLE IF NOT EXISTS vault_files (
        path TEXT PRIMARY KEY,
        content TEXT NOT NULL,
        content_hash TEXT NOT NULL,
        updated_at TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS events (
        id TEXT PRIMARY KEY,
        ts TEXT NOT NULL,
        op TEXT NOT NULL,
        actor TEXT NOT NULL,
        data TEXT NOT NULL,
        created_at TEXT DEFAULT (datetime('now'))
    );
    CREATE INDEX IF NOT EXISTS idx_events_ts ON events(ts);
    CREATE INDEX IF NOT EXISTS idx_events_op ON events(op);
"""


class GraphStore:
    """Owns the SQLite connection and the repositories built on it."""

    def __init__(self, db_path: Path):
        """Open (or create) the store.

        Args:
            db_path: Path to graph_tutor.db. ``:memory:`` is accepted for tests.
        """
        from .events import EventLog
        from .repositories import (
            AliasRepository,
            ChangesetItemRepository,
            ChangesetRepository,
            ChunkRepository,
            ConceptMergeRepository,
            ConceptRepository,
            ConceptSourceRepository,
            EdgeRepository,
            ReviewItemRepository,
            SourceRepository,
            VaultFileRepository,
        )

        self.db_path = Path(db_path) if str(db_path) != ":memory:" else None
        if self.db_path is not None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._target = str(db_path)
        self._conn: sqlite3.Connection | None = None
        self._depth = 0
        self._init_db()

        self.concepts = ConceptRepository(self)
        self.aliases = AliasRepository(self)
        self.edges = EdgeRepository(self)
        self.sources = SourceRepository(self)
        self.chunks = ChunkRepository(self)
        self.concept_sources = ConceptSourceRepository(self)
        self.review_items = ReviewItemRepository(self)
        self.changesets = ChangesetRepository(self)
        self.changeset_items = ChangesetItemRepository(self)
        self.merges = ConceptMergeRepository(self)
        self.vault_files = VaultFileRepository(self)
        self.events = EventLog(self)

    def _get_conn(self) -> sqlite3.Connection:
        """Get or create database connection."""
        if self._conn is None:
            # Autocommit mode: transactions are opened explicitly below
            self._conn = sqlite3.connect(self._target, timeout=30.0, isolation_level=None)
            self._conn.row_factory = sqlite3.Row
            if self.db_path is not None:
                self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute(f"PRAGMA busy_timeout={SQLITE_BUSY_TIMEOUT_MS}")
        return self._conn

    def _init_db(self):
        """Initialize database schema."""
        conn = self._get_conn()
        conn.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                created_at TEXT DEFAULT (datetime('now'))
            )
        """)
        version = conn.execute("SELECT version FROM schema_version").fetchone()
        if version is None:
            conn.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
        elif version[0] < SCHEMA_VERSION:
            logger.warning(f"Schema version {version[0]} detected, may need migration")
        conn.executescript(SCHEMA)

    @property
    def connection(self) -> sqlite3.Connection:
        return self._get_conn()

    @property
    def in_transaction(self) -> bool:
        return self._depth > 0

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a block atomically.

        The outermost level takes the write lock up front (``BEGIN IMMEDIATE``)
        so a second writer waits instead of reading stale state. Nested levels
        use savepoints and roll back only their own work.
        """
        conn = self._get_conn()
        savepoint = f"sp_{self._depth}"
        if self._depth == 0:
            conn.execute("BEGIN IMMEDIATE")
        else:
            conn.execute(f"SAVEPOINT {savepoint}")
        self._depth += 1
        try:
            yield conn
        except BaseException:
            self._depth -= 1
            if self._depth == 0:
                conn.execute("ROLLBACK")
            else:
                conn.execute(f"ROLLBACK TO SAVEPOINT {savepoint}")
                conn.execute(f"RELEASE SAVEPOINT {savepoint}")
            raise
        self._depth -= 1
        if self._depth == 0:
            conn.execute("COMMIT")
        else:
            conn.execute(f"RELEASE SAVEPOINT {savepoint}")

    def close(self):
        """Close database connection.

        Forces a WAL checkpoint before closing to ensure all changes
        are written to the main database file.
        """
        if self._conn is not None:
            if self.db_path is not None:
                self._conn.execute("PRAGMA wal_checkpoint(TRUNCATE)")
            self._conn.close()
            self._conn = None
