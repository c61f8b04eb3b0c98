"""Domain models for the Quarry coordination store.

Variant payloads (event payloads, extractor types, filters, data sources) are
closed sets of frozen dataclasses. Each has a ``*_to_dict`` / ``*_from_dict``
pair; decoding anything outside the closed set raises SerializationError.
"""

from __future__ import annotations

import json
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

from quarry.db import identity
from quarry.db.errors import SerializationError
from quarry.db.vectors import IndexDistance


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class ContentType(str, Enum):
    TEXT = "text"


class WorkState(str, Enum):
    """Lifecycle of a Work item: Pending → InProgress → Completed | Failed."""

    UNKNOWN = "Unknown"
    PENDING = "Pending"
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    FAILED = "Failed"

    @classmethod
    def parse(cls, value: str | None) -> WorkState:
        """Decode a stored state; anything unrecognised becomes UNKNOWN."""
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN

    @property
    def rank(self) -> int:
        return _STATE_RANK[self]

    @property
    def terminal(self) -> bool:
        return self in (WorkState.COMPLETED, WorkState.FAILED)


_STATE_RANK = {
    WorkState.UNKNOWN: 0,
    WorkState.PENDING: 1,
    WorkState.IN_PROGRESS: 2,
    WorkState.COMPLETED: 3,
    WorkState.FAILED: 3,
}


# ---------------------------------------------------------------------------
# Extractor filters
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Eq:
    field: str
    value: Any


@dataclass(frozen=True)
class Neq:
    field: str
    value: Any


ExtractorFilter = Union[Eq, Neq]

_FILTER_OPS: dict[str, type] = {"eq": Eq, "neq": Neq}


def filter_to_dict(f: ExtractorFilter) -> dict[str, Any]:
    op = "eq" if isinstance(f, Eq) else "neq"
    return {"op": op, "field": f.field, "value": f.value}


def filter_from_dict(data: Any) -> ExtractorFilter:
    try:
        cls = _FILTER_OPS[data["op"]]
        return cls(field=str(data["field"]), value=data["value"])
    except (KeyError, TypeError) as exc:
        raise SerializationError(f"invalid extractor filter: {data!r}") from exc


# ---------------------------------------------------------------------------
# Extractor types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EmbeddingExtractor:
    dim: int
    distance: IndexDistance = IndexDistance.COSINE


@dataclass(frozen=True)
class AttributesExtractor:
    schema: str


ExtractorType = Union[EmbeddingExtractor, AttributesExtractor]


def extractor_type_to_dict(t: ExtractorType) -> dict[str, Any]:
    if isinstance(t, EmbeddingExtractor):
        return {"type": "embedding", "dim": t.dim, "distance": t.distance.value}
    return {"type": "attributes", "schema": t.schema}


def extractor_type_from_dict(data: Any) -> ExtractorType:
    try:
        kind = data["type"]
        if kind == "embedding":
            return EmbeddingExtractor(
                dim=int(data["dim"]),
                distance=IndexDistance(data.get("distance", IndexDistance.COSINE.value)),
            )
        if kind == "attributes":
            return AttributesExtractor(schema=str(data["schema"]))
    except (KeyError, TypeError, ValueError) as exc:
        raise SerializationError(f"invalid extractor type: {data!r}") from exc
    raise SerializationError(f"unknown extractor type: {data!r}")


@dataclass
class ExtractorConfig:
    name: str = "default-embedder"
    description: str = "Default Text Embedding Extractor"
    extractor_type: ExtractorType = field(
        default_factory=lambda: EmbeddingExtractor(dim=384, distance=IndexDistance.COSINE)
    )
    input_params: dict[str, Any] = field(default_factory=dict)


def extractor_from_dict(data: dict[str, Any]) -> ExtractorConfig:
    """Build an ExtractorConfig from a YAML/JSON mapping."""
    try:
        return ExtractorConfig(
            name=str(data["name"]),
            description=str(data.get("description", "")),
            extractor_type=extractor_type_from_dict(data["extractor_type"]),
            input_params=dict(data.get("input_params") or {}),
        )
    except (KeyError, TypeError) as exc:
        raise SerializationError(f"invalid extractor: {data!r}") from exc


# ---------------------------------------------------------------------------
# Corpus, bindings, connectors
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GoogleContactSource:
    metadata: str | None = None


@dataclass(frozen=True)
class GmailSource:
    metadata: str | None = None


SourceType = Union[GoogleContactSource, GmailSource]

_SOURCE_TYPES: dict[str, type] = {
    "google_contact": GoogleContactSource,
    "gmail": GmailSource,
}


@dataclass(frozen=True)
class DataConnector:
    source: SourceType


def connector_to_dict(c: DataConnector) -> dict[str, Any]:
    kind = "google_contact" if isinstance(c.source, GoogleContactSource) else "gmail"
    return {"source": {"type": kind, "metadata": c.source.metadata}}


def connector_from_dict(data: Any) -> DataConnector:
    try:
        src = data["source"]
        cls = _SOURCE_TYPES[src["type"]]
        return DataConnector(source=cls(metadata=src.get("metadata")))
    except (KeyError, TypeError, AttributeError) as exc:
        raise SerializationError(f"invalid data connector: {data!r}") from exc


@dataclass
class ExtractorBinding:
    """An extractor writing into *index_name* for content matching *filters*."""

    id: str
    extractor_name: str
    index_name: str
    filters: list[ExtractorFilter] = field(default_factory=list)
    input_params: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def new(
        cls,
        corpus: str,
        extractor_name: str,
        index_name: str,
        filters: list[ExtractorFilter] | None = None,
        input_params: dict[str, Any] | None = None,
    ) -> ExtractorBinding:
        return cls(
            id=identity.binding_id(corpus, extractor_name, index_name),
            extractor_name=extractor_name,
            index_name=index_name,
            filters=list(filters or []),
            input_params=dict(input_params or {}),
        )


def binding_to_dict(b: ExtractorBinding) -> dict[str, Any]:
    return {
        "id": b.id,
        "extractor_name": b.extractor_name,
        "index_name": b.index_name,
        "filters": [filter_to_dict(f) for f in b.filters],
        "input_params": b.input_params,
    }


def binding_from_dict(data: Any) -> ExtractorBinding:
    try:
        return ExtractorBinding(
            id=str(data["id"]),
            extractor_name=str(data["extractor_name"]),
            index_name=str(data["index_name"]),
            filters=[filter_from_dict(f) for f in data.get("filters", [])],
            input_params=dict(data.get("input_params") or {}),
        )
    except (KeyError, TypeError, AttributeError) as exc:
        raise SerializationError(f"invalid extractor binding: {data!r}") from exc


@dataclass
class Corpus:
    name: str
    data_connectors: list[DataConnector] = field(default_factory=list)
    extractor_bindings: list[ExtractorBinding] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    def binding(self, binding_id: str) -> ExtractorBinding | None:
        for b in self.extractor_bindings:
            if b.id == binding_id:
                return b
        return None


def corpus_from_dict(data: dict[str, Any]) -> Corpus:
    """Build a Corpus from a declarative mapping (e.g. a corpus YAML file).

    Bindings are declared without ids; ids are derived from the corpus name.
    """
    try:
        name = str(data["name"])
        bindings = []
        for raw in data.get("extractor_bindings") or []:
            filters = [filter_from_dict(f) for f in raw.get("filters") or []]
            bindings.append(
                ExtractorBinding.new(
                    name,
                    str(raw["extractor_name"]),
                    str(raw["index_name"]),
                    filters,
                    raw.get("input_params"),
                )
            )
        return Corpus(
            name=name,
            data_connectors=[connector_from_dict(c) for c in data.get("data_connectors") or []],
            extractor_bindings=bindings,
            metadata=dict(data.get("metadata") or {}),
        )
    except (KeyError, TypeError, AttributeError) as exc:
        raise SerializationError(f"invalid corpus: {data!r}") from exc


# ---------------------------------------------------------------------------
# Content, chunks, attributes
# ---------------------------------------------------------------------------


@dataclass
class Content:
    id: str
    corpus: str
    text: str
    metadata: dict[str, Any] = field(default_factory=dict)
    content_type: ContentType = ContentType.TEXT
    completion: dict[str, int] = field(default_factory=dict)

    @classmethod
    def from_text(
        cls, corpus: str, text: str, metadata: dict[str, Any] | None = None
    ) -> Content:
        return cls(
            id=identity.content_id(corpus, text),
            corpus=corpus,
            text=text,
            metadata=dict(metadata or {}),
        )

    def is_processed(self, binding_id: str) -> bool:
        return self.completion.get(binding_id, 0) >= 1


@dataclass
class Chunk:
    text: str
    content_id: str
    chunk_id: str = ""

    def __post_init__(self) -> None:
        if not self.chunk_id:
            self.chunk_id = identity.chunk_id(self.content_id, self.text)


@dataclass
class ChunkWithMetadata:
    chunk_id: str
    content_id: str
    text: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class ExtractedAttributes:
    id: str
    content_id: str
    attributes: Any
    extractor_name: str

    @classmethod
    def new(cls, content_id: str, attributes: Any, extractor_name: str) -> ExtractedAttributes:
        return cls(
            id=identity.attributes_id(content_id, extractor_name),
            content_id=content_id,
            attributes=attributes,
            extractor_name=extractor_name,
        )


@dataclass
class Index:
    name: str
    corpus: str
    extractor_name: str
    index_type: str  # embedding | attributes
    vector_index_name: str | None = None


# ---------------------------------------------------------------------------
# Outbox events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BindingAdded:
    corpus: str
    binding_id: str


@dataclass(frozen=True)
class ContentCreated:
    content_id: str


EventPayload = Union[BindingAdded, ContentCreated]


def payload_to_dict(p: EventPayload) -> dict[str, Any]:
    if isinstance(p, BindingAdded):
        return {"type": "binding_added", "corpus": p.corpus, "binding_id": p.binding_id}
    return {"type": "content_created", "content_id": p.content_id}


def payload_from_dict(data: Any) -> EventPayload:
    try:
        kind = data["type"]
        if kind == "binding_added":
            return BindingAdded(corpus=str(data["corpus"]), binding_id=str(data["binding_id"]))
        if kind == "content_created":
            return ContentCreated(content_id=str(data["content_id"]))
    except (KeyError, TypeError) as exc:
        raise SerializationError(f"invalid event payload: {data!r}") from exc
    raise SerializationError(f"unknown event payload: {data!r}")


@dataclass
class ExtractionEvent:
    id: str
    corpus: str
    payload: EventPayload
    processed_at: int | None = None

    @classmethod
    def new(cls, corpus: str, payload: EventPayload) -> ExtractionEvent:
        return cls(id=uuid.uuid4().hex, corpus=corpus, payload=payload)


@dataclass
class Event:
    """Free-form timeline event attached to a corpus."""

    id: str
    message: str
    unix_timestamp: int
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def new(
        cls,
        message: str,
        unix_timestamp: int | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Event:
        return cls(
            id=uuid.uuid4().hex,
            message=message,
            unix_timestamp=int(time.time()) if unix_timestamp is None else unix_timestamp,
            metadata=dict(metadata or {}),
        )


# ---------------------------------------------------------------------------
# Work
# ---------------------------------------------------------------------------


@dataclass
class Work:
    id: str
    content_id: str
    corpus: str
    index_name: str
    extractor: str
    extractor_params: dict[str, Any] = field(default_factory=dict)
    work_state: WorkState = WorkState.PENDING
    worker_id: str | None = None

    @classmethod
    def new(
        cls,
        content_id: str,
        corpus: str,
        index_name: str,
        extractor: str,
        extractor_params: dict[str, Any] | None = None,
        worker_id: str | None = None,
    ) -> Work:
        return cls(
            id=identity.work_id(content_id, corpus, index_name, extractor),
            content_id=content_id,
            corpus=corpus,
            index_name=index_name,
            extractor=extractor,
            extractor_params=dict(extractor_params or {}),
            worker_id=worker_id,
        )

    @property
    def binding_id(self) -> str:
        """Id of the binding this work was planned from."""
        return identity.binding_id(self.corpus, self.extractor, self.index_name)

    @property
    def terminal_state(self) -> bool:
        return self.work_state.terminal


# ---------------------------------------------------------------------------
# JSON helpers
# ---------------------------------------------------------------------------


def load_json(raw: str | None, what: str, default: Any = None) -> Any:
    """Decode a stored JSON column, raising SerializationError on bad data."""
    if raw is None:
        return default
    try:
        return json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise SerializationError(f"cannot decode {what}: {exc}") from exc


def dump_json(value: Any) -> str:
    try:
        return json.dumps(value, sort_keys=True)
    except (TypeError, ValueError) as exc:
        raise SerializationError(f"cannot encode value: {exc}") from exc
