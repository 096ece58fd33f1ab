"""Domain models for stored chunk records, filters and retrieval results."""

from __future__ import annotations

from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field

DOCUMENT_ID_FIELD = "document_id"
CONTEXT_FIELD = "context"


class MetadataFilter(BaseModel):
    """Declarative metadata filter for vector-store queries.

    Attributes
    ----------
    field:
        The metadata key to filter on (e.g. ``"document_id"``).
    operator:
        Comparison operator — one of ``eq``, ``ne``, ``gt``, ``gte``,
        ``lt``, ``lte``, ``in``, ``nin``.
    value:
        The value (or list of values for ``in`` / ``nin``) to compare against.
    """

    field: str
    operator: str = "eq"
    value: Any = None

    # -- helpers for common filters ------------------------------------------

    @classmethod
    def equals(cls, field: str, value: Any) -> MetadataFilter:
        return cls(field=field, operator="eq", value=value)

    @classmethod
    def one_of(cls, field: str, values: list[Any]) -> MetadataFilter:
        return cls(field=field, operator="in", value=values)

    @classmethod
    def for_document(cls, document_id: str) -> MetadataFilter:
        """Filter matching every record of one source document."""
        return cls.equals(DOCUMENT_ID_FIELD, document_id)


class ChunkRecord(BaseModel):
    """A chunk as persisted in the vector collection.

    Attributes
    ----------
    id:
        Freshly generated per write; not stable across re-ingestion.
    embedding:
        Dense vector of ``content``.
    content:
        The chunk text.
    context:
        Heading trail of the chunk.
    document_id:
        Identifier of the owning document — the synchronization key.
    metadata:
        Flat scalar values (str, int, float, bool) copied from the chunk.
    """

    id: str = Field(default_factory=lambda: str(uuid4()))
    embedding: list[float]
    content: str
    context: str = ""
    document_id: str
    metadata: dict[str, str | int | float | bool] = Field(default_factory=dict)

    def store_metadata(self) -> dict[str, str | int | float | bool]:
        """Metadata as written to the store, including the reserved fields."""
        return {**self.metadata, CONTEXT_FIELD: self.context, DOCUMENT_ID_FIELD: self.document_id}


class RetrievalResult(BaseModel):
    """A single retrieved passage with its provenance."""

    id: str
    content: str
    context: str = ""
    document_id: str = "unknown"
    score: float | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    def short_ref(self) -> str:
        """Return a compact ``[document§context]`` reference string."""
        return f"[{self.document_id}§{self.context or '?'}]"

    def __str__(self) -> str:  # noqa: D105
        return f"{self.short_ref()} {self.content[:120]}…"
