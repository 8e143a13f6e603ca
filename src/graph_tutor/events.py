"""Append-only audit log of graph mutations.

Lives in the same SQLite database as the graph, so an event is written in
the same transaction as the mutation it records.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime
from typing import TYPE_CHECKING

from .models import GraphEvent

if TYPE_CHECKING:
    from .store import GraphStore

logger = logging.getLogger(__name__)


class EventLog:
    """Append-only event log backed by the store's connection."""

    def __init__(self, store: "GraphStore"):
        self._store = store

    def _row_to_event(self, row: sqlite3.Row) -> GraphEvent:
        return GraphEvent(
            id=row["id"],
            ts=row["ts"],
            op=row["op"],
            actor=row["actor"],
            data=json.loads(row["data"]),
        )

    def append(self, event: GraphEvent) -> GraphEvent:
        """Append event to log (joins the caller's transaction if one is open)."""
        with self._store.transaction() as conn:
            conn.execute(
                "INSERT INTO events (id, ts, op, actor, data) VALUES (?, ?, ?, ?, ?)",
                (
                    event.id,
                    event.ts.isoformat(),
                    event.op,
                    event.actor,
                    json.dumps(event.data, default=str),
                ),
            )
        return event

    def _read(self, query: str, params: tuple = (), tolerant: bool = True) -> list[GraphEvent]:
        cursor = self._store.connection.execute(query, params)
        events = []
        skipped = 0
        for row in cursor:
            try:
                events.append(self._row_to_event(row))
            except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
                if not tolerant:
                    raise ValueError(f"Malformed event {row['id']}: {e}") from e
                skipped += 1
                logger.warning(f"Skipping malformed event {row['id']}: {e}")
        if skipped:
            logger.warning(f"Loaded {len(events)} events, skipped {skipped} malformed rows")
        return events

    def read_all(self, tolerant: bool = True) -> list[GraphEvent]:
        """Read all events from log.

        Args:
            tolerant: If True, skip malformed rows with warnings.
                      If False, raise on first error (strict mode).
        """
        return self._read(
            "SELECT id, ts, op, actor, data FROM events ORDER BY ts, id", tolerant=tolerant
        )

    def read_since(self, since: datetime) -> list[GraphEvent]:
        """Read events at or after a timestamp."""
        return self._read(
            "SELECT id, ts, op, actor, data FROM events WHERE ts >= ? ORDER BY ts, id",
            (since.isoformat(),),
        )

    def read_for_entity(self, entity_id: str) -> list[GraphEvent]:
        """Events whose payload mentions ``entity_id``."""
        # Literal substring match: ids contain "_", a LIKE wildcard
        needle = json.dumps(entity_id)
        return self._read(
            "SELECT id, ts, op, actor, data FROM events WHERE instr(data, ?) > 0 ORDER BY ts, id",
            (needle,),
        )

    def count(self) -> int:
        return self._store.connection.execute("SELECT COUNT(*) FROM events").fetchone()[0]
