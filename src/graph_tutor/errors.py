"""Exception hierarchy for graph-tutor.

Every error carries a machine-readable ``code`` and a ``details`` dict
(entity ids, offending values) so an outer layer can render it.
"""

from __future__ import annotations

from typing import Any


class GraphTutorError(Exception):
    """Base class for all domain errors."""

    code = "error"

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, "details": self.details}


class ValidationError(GraphTutorError, ValueError):
    """Malformed or semantically invalid input. Raised before any mutation."""

    code = "validation_error"


class NotFoundError(GraphTutorError, LookupError):
    """A referenced concept, changeset, item or merge does not exist."""

    code = "not_found"


class ConflictError(GraphTutorError):
    """The operation is not valid in the current state."""

    code = "conflict"
