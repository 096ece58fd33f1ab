"""Vector-store writer — persists a document's chunks and replaces stale ones.

Synchronization protocol for a document ``D`` and chunks ``C``:

1. make sure the collection exists (once per writer);
2. in incremental mode, look up the ids already stored for ``D``;
3. embed ``C``, give every chunk a fresh id and upsert them in one batch;
4. delete the ids found in step 2.

The upsert always happens before the delete, so readers never observe
``D`` without any retrievable chunk.  If the upsert fails nothing is
deleted and the old records stay authoritative.  If the delete fails the
old records linger next to the new ones until the next successful run:
at-least-once, self-healing, not exactly-once.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from rag_ingest.config import settings
from rag_ingest.ingestion.embedder import embed_texts
from rag_ingest.retrieval.models import CONTEXT_FIELD, DOCUMENT_ID_FIELD, ChunkRecord

if TYPE_CHECKING:
    from langchain_core.embeddings import Embeddings

    from rag_ingest.documents.models import Chunk, Document
    from rag_ingest.retrieval.base import VectorStoreBase

logger = logging.getLogger(__name__)

_RESERVED_FIELDS = frozenset({CONTEXT_FIELD, DOCUMENT_ID_FIELD})


def _flat_metadata(metadata: dict[str, Any]) -> dict[str, str | int | float | bool]:
    # Vector-store metadata values must be flat str/int/float/bool.
    return {
        key: value
        for key, value in metadata.items()
        if isinstance(value, (str, int, float, bool)) and key not in _RESERVED_FIELDS
    }


class VectorStoreWriter:
    """Writes chunks to a vector collection, replacing a document's old chunks.

    Parameters
    ----------
    store:
        Target collection; shared between concurrent document tasks.
    embeddings:
        Embedding capability used to vectorise chunk content.
    incremental:
        When ``True`` previously stored chunks of the same document are
        deleted after the new ones are written.
    embedding_batch_size:
        Number of chunks embedded per model call.
    """

    def __init__(
        self,
        store: VectorStoreBase,
        embeddings: Embeddings,
        *,
        incremental: bool = settings.incremental_ingestion,
        embedding_batch_size: int = settings.embedding_batch_size,
    ) -> None:
        self._store = store
        self._embeddings = embeddings
        self.incremental = incremental
        self.embedding_batch_size = embedding_batch_size
        self._collection_ready = False
        self._collection_lock = asyncio.Lock()

    async def _ensure_collection(self) -> None:
        if self._collection_ready:
            return
        async with self._collection_lock:
            if not self._collection_ready:
                await self._store.ensure_collection()
                self._collection_ready = True

    async def write(self, document: Document, chunks: list[Chunk]) -> list[ChunkRecord]:
        """Persist *chunks* as the new content of *document*.

        Returns
        -------
        list[ChunkRecord]
            The records that were upserted.

        Raises
        ------
        CapabilityError
            When embedding or any vector-store call fails.
        """
        await self._ensure_collection()

        stale_ids: list[str] = []
        if self.incremental:
            stale_ids = await self._store.get_ids(document.identifier)

        records: list[ChunkRecord] = []
        if chunks:
            vectors = await embed_texts(
                self._embeddings,
                [chunk.content for chunk in chunks],
                batch_size=self.embedding_batch_size,
            )
            records = [
                ChunkRecord(
                    embedding=vector,
                    content=chunk.content,
                    context=chunk.context,
                    document_id=document.identifier,
                    metadata=_flat_metadata(chunk.metadata),
                )
                for chunk, vector in zip(chunks, vectors)
            ]
            await self._store.upsert(records)
            logger.info("Upserted %d chunks for document %r", len(records), document.identifier)
        else:
            logger.warning("Document %r produced no chunks", document.identifier)

        if stale_ids:
            new_ids = {record.id for record in records}
            to_delete = [record_id for record_id in stale_ids if record_id not in new_ids]
            await self._store.delete(to_delete)
            logger.info(
                "Deleted %d stale chunks for document %r", len(to_delete), document.identifier
            )
        return records
