"""Chroma implementation of the vector-store abstraction."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import chromadb

from rag_ingest.config import settings
from rag_ingest.exceptions import CapabilityError
from rag_ingest.retrieval.base import VectorStoreBase
from rag_ingest.retrieval.models import DOCUMENT_ID_FIELD, ChunkRecord, MetadataFilter

logger = logging.getLogger(__name__)

# Page size when listing a document's records.
_GET_PAGE_SIZE = 1_000

_OP_MAP = {
    "eq": "$eq",
    "ne": "$ne",
    "gt": "$gt",
    "gte": "$gte",
    "lt": "$lt",
    "lte": "$lte",
    "in": "$in",
    "nin": "$nin",
}


def _build_chroma_where(filters: list[MetadataFilter]) -> dict[str, Any] | None:
    """Convert a list of :class:`MetadataFilter` to Chroma ``where`` syntax."""
    if not filters:
        return None

    clauses: list[dict[str, Any]] = []
    for f in filters:
        chroma_op = _OP_MAP.get(f.operator)
        if chroma_op is None:
            raise ValueError(f"Unsupported filter operator: {f.operator!r}")
        clauses.append({f.field: {chroma_op: f.value}})

    if len(clauses) == 1:
        return clauses[0]
    return {"$and": clauses}


class ChromaVectorStore(VectorStoreBase):
    """Chroma-backed vector collection.

    The Chroma client is synchronous; every call runs in a worker thread so
    the event loop stays free while other documents are processed.

    Parameters
    ----------
    collection_name:
        Name of the Chroma collection.
    host:
        Chroma server hostname (ignored when *client* is given).
    port:
        Chroma server port (ignored when *client* is given).
    distance_metric:
        Distance function used when the collection is created
        (``cosine`` | ``l2`` | ``ip``).
    client:
        Pre-built Chroma client, e.g. ``chromadb.PersistentClient``.
    """

    def __init__(
        self,
        collection_name: str = settings.chroma_collection,
        *,
        host: str = settings.chroma_host,
        port: int = settings.chroma_port,
        distance_metric: str = settings.chroma_distance,
        client: Any = None,
    ) -> None:
        super().__init__(collection_name)
        self._client = client if client is not None else chromadb.HttpClient(host=host, port=port)
        self._distance_metric = distance_metric
        self._collection: Any = None

    # -- internals ------------------------------------------------------------

    async def _call(self, operation: str, func: Any, *args: Any, **kwargs: Any) -> Any:
        try:
            return await asyncio.to_thread(func, *args, **kwargs)
        except Exception as exc:
            raise CapabilityError(
                f"Chroma {operation} on collection {self.collection_name!r} failed: {exc}"
            ) from exc

    async def _get_collection(self) -> Any:
        if self._collection is None:
            await self.ensure_collection()
        return self._collection

    def _to_score(self, distance: float) -> float:
        if self._distance_metric == "cosine":
            return 1.0 - distance
        # L2 / inner-product distances; convert to a 0-1 similarity score.
        return 1.0 / (1.0 + distance)

    # -- VectorStoreBase overrides --------------------------------------------

    async def ensure_collection(self) -> None:
        self._collection = await self._call(
            "get_or_create_collection",
            self._client.get_or_create_collection,
            name=self.collection_name,
            metadata={"hnsw:space": self._distance_metric},
        )

    async def upsert(self, records: list[ChunkRecord]) -> None:
        if not records:
            return
        collection = await self._get_collection()
        await self._call(
            "upsert",
            collection.upsert,
            ids=[r.id for r in records],
            embeddings=[r.embedding for r in records],
            documents=[r.content for r in records],
            metadatas=[r.store_metadata() for r in records],
        )

    async def delete(self, ids: list[str]) -> None:
        if not ids:
            return
        collection = await self._get_collection()
        await self._call("delete", collection.delete, ids=ids)

    async def get_ids(self, document_id: str) -> list[str]:
        collection = await self._get_collection()
        ids: list[str] = []
        offset = 0
        while True:
            page = await self._call(
                "get",
                collection.get,
                where={DOCUMENT_ID_FIELD: document_id},
                include=[],
                limit=_GET_PAGE_SIZE,
                offset=offset,
            )
            page_ids = list(page.get("ids", []))
            ids.extend(page_ids)
            if len(page_ids) < _GET_PAGE_SIZE:
                return ids
            offset += _GET_PAGE_SIZE

    async def similarity_search(
        self,
        query_embedding: list[float],
        *,
        k: int = 5,
        filters: list[MetadataFilter] | None = None,
    ) -> list[dict[str, Any]]:
        collection = await self._get_collection()
        where = _build_chroma_where(filters) if filters else None

        results = await self._call(
            "query",
            collection.query,
            query_embeddings=[query_embedding],
            n_results=k,
            where=where,
            include=["documents", "metadatas", "distances"],
        )

        hits: list[dict[str, Any]] = []
        ids = results.get("ids", [[]])[0]
        docs = results.get("documents", [[]])[0]
        metas = results.get("metadatas", [[]])[0]
        distances = results.get("distances", [[]])[0]

        for doc_id, content, meta, dist in zip(ids, docs, metas, distances):
            hits.append(
                {
                    "id": doc_id,
                    "content": content or "",
                    "score": self._to_score(dist),
                    "metadata": meta or {},
                }
            )
        return hits

    async def health_check(self) -> bool:
        try:
            await asyncio.to_thread(self._client.heartbeat)
            return True
        except Exception:
            logger.warning("Chroma health-check failed", exc_info=True)
            return False
