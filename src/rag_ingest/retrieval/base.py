"""Abstract base class for vector-store backends.

Adding a new backend (Pinecone, Weaviate, Qdrant …) only requires
subclassing :class:`VectorStoreBase` and implementing the abstract
methods.  The writer and retriever are backend-agnostic.

Implementations are shared by concurrently running document tasks and
must tolerate concurrent calls.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from rag_ingest.retrieval.models import ChunkRecord, MetadataFilter


class VectorStoreBase(ABC):
    """Backend-agnostic vector-collection interface.

    Parameters
    ----------
    collection_name:
        Logical name of the collection / index / namespace.
    """

    def __init__(self, collection_name: str) -> None:
        self.collection_name = collection_name

    # -- required overrides ---------------------------------------------------

    @abstractmethod
    async def ensure_collection(self) -> None:
        """Create the collection if it does not exist yet.  Idempotent."""
        ...

    @abstractmethod
    async def upsert(self, records: list[ChunkRecord]) -> None:
        """Insert or replace *records*, keyed by ``record.id``."""
        ...

    @abstractmethod
    async def delete(self, ids: list[str]) -> None:
        """Delete the records with the given ids; unknown ids are ignored."""
        ...

    @abstractmethod
    async def get_ids(self, document_id: str) -> list[str]:
        """Return the ids of every record belonging to *document_id*."""
        ...

    @abstractmethod
    async def similarity_search(
        self,
        query_embedding: list[float],
        *,
        k: int = 5,
        filters: list[MetadataFilter] | None = None,
    ) -> list[dict[str, Any]]:
        """Return the top-*k* results matching *query_embedding*.

        Each result dict **must** contain at least:

        * ``"id"`` – record identifier
        * ``"content"`` – the textual content
        * ``"score"`` – similarity score (higher = more similar)
        * ``"metadata"`` – associated metadata dict (includes
          ``document_id`` and ``context``)
        """
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        """Return ``True`` when the backend is reachable and ready."""
        ...
