"""Shared pytest configuration and fixtures."""

from __future__ import annotations

import math
from typing import Any

import pytest
from langchain_core.embeddings import Embeddings

from rag_ingest.retrieval.base import VectorStoreBase
from rag_ingest.retrieval.models import ChunkRecord, MetadataFilter


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "integration: marks tests requiring external services")


# ── Fake capabilities ───────────────────────────────────────────────────


class TopicEmbeddings(Embeddings):
    """Deterministic embeddings: one axis per topic keyword plus a bias axis.

    Sentences mentioning the same topic are identical vectors (similarity
    1.0); sentences about different topics are nearly orthogonal.
    """

    topics = ("python", "ocean", "music")

    def __init__(self) -> None:
        self.calls: list[list[str]] = []

    def _embed(self, text: str) -> list[float]:
        lowered = text.lower()
        return [float(lowered.count(topic)) for topic in self.topics] + [0.1]

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        return [self._embed(t) for t in texts]

    def embed_query(self, text: str) -> list[float]:
        return self._embed(text)


class WordTokenizer:
    """Counts whitespace-separated words."""

    def __init__(self) -> None:
        self.calls = 0

    def count_tokens(self, text: str) -> int:
        self.calls += 1
        return len(text.split())


class InMemoryVectorStore(VectorStoreBase):
    """In-memory collection recording every operation it receives."""

    def __init__(self) -> None:
        super().__init__("test-collection")
        self.records: dict[str, ChunkRecord] = {}
        self.operations: list[str] = []
        # Number of records per document after every mutation.
        self.visible_counts: list[dict[str, int]] = []

    def _snapshot(self) -> None:
        counts: dict[str, int] = {}
        for record in self.records.values():
            counts[record.document_id] = counts.get(record.document_id, 0) + 1
        self.visible_counts.append(counts)

    async def ensure_collection(self) -> None:
        self.operations.append("ensure")

    async def upsert(self, records: list[ChunkRecord]) -> None:
        self.operations.append("upsert")
        for record in records:
            self.records[record.id] = record
        self._snapshot()

    async def delete(self, ids: list[str]) -> None:
        self.operations.append("delete")
        for record_id in ids:
            self.records.pop(record_id, None)
        self._snapshot()

    async def get_ids(self, document_id: str) -> list[str]:
        self.operations.append("get_ids")
        return [r.id for r in self.records.values() if r.document_id == document_id]

    async def similarity_search(
        self,
        query_embedding: list[float],
        *,
        k: int = 5,
        filters: list[MetadataFilter] | None = None,
    ) -> list[dict[str, Any]]:
        hits = []
        for record in self.records.values():
            meta = record.store_metadata()
            if any(meta.get(f.field) != f.value for f in filters or []):
                continue
            dot = sum(a * b for a, b in zip(query_embedding, record.embedding))
            norm = math.sqrt(sum(a * a for a in query_embedding)) * math.sqrt(
                sum(b * b for b in record.embedding)
            )
            hits.append(
                {
                    "id": record.id,
                    "content": record.content,
                    "score": dot / norm if norm else 0.0,
                    "metadata": meta,
                }
            )
        hits.sort(key=lambda hit: hit["score"], reverse=True)
        return hits[:k]

    async def health_check(self) -> bool:
        return True

    def contents(self, document_id: str) -> set[str]:
        return {r.content for r in self.records.values() if r.document_id == document_id}


# ── Fixtures ────────────────────────────────────────────────────────────


@pytest.fixture()
def embeddings() -> TopicEmbeddings:
    return TopicEmbeddings()


@pytest.fixture()
def tokenizer() -> WordTokenizer:
    return WordTokenizer()


@pytest.fixture()
def store() -> InMemoryVectorStore:
    return InMemoryVectorStore()
