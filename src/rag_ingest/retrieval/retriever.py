"""Semantic retriever — query the collection the ingestion pipeline writes.

Usage::

    from rag_ingest.ingestion.embedder import get_embedding_function
    from rag_ingest.retrieval.chroma_store import ChromaVectorStore
    from rag_ingest.retrieval.retriever import SemanticRetriever

    retriever = SemanticRetriever(ChromaVectorStore(), get_embedding_function())
    results = await retriever.search("How are chunks replaced?", k=5)
    for r in results:
        print(r.short_ref(), r.content[:80])
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from rag_ingest.ingestion.embedder import embed_query
from rag_ingest.retrieval.models import (
    CONTEXT_FIELD,
    DOCUMENT_ID_FIELD,
    MetadataFilter,
    RetrievalResult,
)

if TYPE_CHECKING:
    from langchain_core.embeddings import Embeddings

    from rag_ingest.retrieval.base import VectorStoreBase

logger = logging.getLogger(__name__)


class SemanticRetriever:
    """High-level retriever that wraps any :class:`VectorStoreBase`.

    Parameters
    ----------
    store:
        A concrete vector-store backend.
    embeddings:
        The same embedding capability the chunks were written with.
    default_k:
        Default number of results returned by :meth:`search`.
    score_threshold:
        Minimum similarity score; results below this are discarded.
    """

    def __init__(
        self,
        store: VectorStoreBase,
        embeddings: Embeddings,
        *,
        default_k: int = 5,
        score_threshold: float = 0.0,
    ) -> None:
        self._store = store
        self._embeddings = embeddings
        self.default_k = default_k
        self.score_threshold = score_threshold

    async def search(
        self,
        query: str,
        *,
        k: int | None = None,
        document_id: str | None = None,
        filters: list[MetadataFilter] | None = None,
    ) -> list[RetrievalResult]:
        """Run a semantic search, optionally restricted to one document."""
        embedding = await embed_query(self._embeddings, query)
        return await self.search_by_embedding(embedding, k=k, document_id=document_id, filters=filters)

    async def search_by_embedding(
        self,
        embedding: list[float],
        *,
        k: int | None = None,
        document_id: str | None = None,
        filters: list[MetadataFilter] | None = None,
    ) -> list[RetrievalResult]:
        """Same as :meth:`search` but accepts a pre-computed embedding."""
        k = k or self.default_k
        filters = list(filters or [])
        if document_id is not None:
            filters.append(MetadataFilter.for_document(document_id))
        raw_hits = await self._store.similarity_search(embedding, k=k, filters=filters or None)
        return self._to_results(raw_hits)

    def _to_results(self, raw_hits: list[dict[str, Any]]) -> list[RetrievalResult]:
        results: list[RetrievalResult] = []
        for hit in raw_hits:
            score = hit.get("score")
            if score is not None and score < self.score_threshold:
                continue

            meta = dict(hit.get("metadata") or {})
            results.append(
                RetrievalResult(
                    id=hit["id"],
                    content=hit.get("content", ""),
                    context=str(meta.pop(CONTEXT_FIELD, "") or ""),
                    document_id=str(meta.pop(DOCUMENT_ID_FIELD, "unknown")),
                    score=score,
                    metadata=meta,
                )
            )
        logger.debug("Retrieved %d of %d hits above threshold", len(results), len(raw_hits))
        return results
