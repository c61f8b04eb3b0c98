"""Typed error taxonomy for the coordination store.

Duplicate inserts of the same logical entity are resolved inside the store
and never surface here. Everything else propagates to the caller as one of
these kinds; the store performs no retries.
"""

from __future__ import annotations


class StoreError(Exception):
    """Base class for every error raised by the store layer."""


# ---------------------------------------------------------------------------
# NotFound
# ---------------------------------------------------------------------------


class NotFoundError(StoreError):
    """A requested entity does not exist."""

    kind = "entity"

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"{self.kind} '{key}' not found")


class CorpusNotFoundError(NotFoundError):
    kind = "corpus"


class ExtractorNotFoundError(NotFoundError):
    kind = "extractor"


class IndexNotFoundError(NotFoundError):
    kind = "index"


class ContentNotFoundError(NotFoundError):
    kind = "content"


class ChunkNotFoundError(NotFoundError):
    kind = "chunk"


class BindingNotFoundError(NotFoundError):
    kind = "extractor binding"


class WorkNotFoundError(NotFoundError):
    kind = "work"


class EventNotFoundError(NotFoundError):
    kind = "extraction event"


# ---------------------------------------------------------------------------
# Conflicts, decoding, backends
# ---------------------------------------------------------------------------


class AlreadyExistsError(StoreError):
    """An entity with the same key exists with different parameters."""


class IndexAlreadyExistsError(AlreadyExistsError):
    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"index '{name}' already exists with different parameters")


class SerializationError(StoreError):
    """A stored JSON payload cannot be decoded into its expected shape."""


class UnderlyingStoreError(StoreError):
    """Transport or transaction failure reported by the SQLite driver."""


class VectorBackendError(StoreError):
    """Failure reported by the vector index collaborator."""


class LogicError(StoreError):
    """Invariant violation inside the store (a bug, not a transient failure)."""


class InvalidStateTransitionError(LogicError):
    def __init__(self, work_id: str, current: str, requested: str) -> None:
        self.work_id = work_id
        self.current = current
        self.requested = requested
        super().__init__(
            f"work '{work_id}' cannot move from {current} to {requested}"
        )


class InvalidFilterError(StoreError, ValueError):
    """An extractor filter is malformed (caller input error)."""
