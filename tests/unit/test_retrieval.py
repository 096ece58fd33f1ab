"""Unit tests for the retrieval layer — models, Chroma store, and SemanticRetriever."""

from __future__ import annotations

from typing import Any
from unittest.mock import MagicMock

import pytest

from rag_ingest.exceptions import CapabilityError
from rag_ingest.retrieval.base import VectorStoreBase
from rag_ingest.retrieval.chroma_store import ChromaVectorStore, _build_chroma_where
from rag_ingest.retrieval.models import ChunkRecord, MetadataFilter, RetrievalResult
from rag_ingest.retrieval.retriever import SemanticRetriever

# ── Fake vector store for deterministic testing ─────────────────────────


class FakeVectorStore(VectorStoreBase):
    """In-memory fake that returns canned results."""

    def __init__(self, hits: list[dict[str, Any]] | None = None) -> None:
        super().__init__("test-collection")
        self._hits: list[dict[str, Any]] = hits or []
        self.last_filters: list[MetadataFilter] | None = None
        self.last_k: int | None = None

    async def ensure_collection(self) -> None:
        return None

    async def upsert(self, records: list[ChunkRecord]) -> None:
        return None

    async def delete(self, ids: list[str]) -> None:
        return None

    async def get_ids(self, document_id: str) -> list[str]:
        return []

    async def similarity_search(
        self,
        query_embedding: list[float],
        *,
        k: int = 5,
        filters: list[MetadataFilter] | None = None,
    ) -> list[dict[str, Any]]:
        self.last_filters = filters
        self.last_k = k
        return self._hits[:k]

    async def health_check(self) -> bool:
        return True


SAMPLE_HITS: list[dict[str, Any]] = [
    {
        "id": "chunk-001",
        "content": "Chunks are upserted before stale ones are deleted.",
        "score": 0.92,
        "metadata": {"document_id": "/docs/writer.md", "context": "# Writer;## Protocol", "page_number": 2},
    },
    {
        "id": "chunk-002",
        "content": "Header chunking records the heading trail.",
        "score": 0.85,
        "metadata": {"document_id": "/docs/chunker.md", "context": "# Chunker"},
    },
    {
        "id": "chunk-003",
        "content": "Unrelated text.",
        "score": 0.30,
        "metadata": {},
    },
]


# ── Model tests ─────────────────────────────────────────────────────────


class TestMetadataFilter:
    def test_equals(self) -> None:
        f = MetadataFilter.equals("lang", "en")
        assert (f.field, f.operator, f.value) == ("lang", "eq", "en")

    def test_one_of(self) -> None:
        f = MetadataFilter.one_of("page_number", [1, 2])
        assert f.operator == "in"
        assert f.value == [1, 2]

    def test_for_document(self) -> None:
        f = MetadataFilter.for_document("/docs/a.md")
        assert f.field == "document_id"
        assert f.value == "/docs/a.md"


class TestChunkRecord:
    def test_ids_are_unique(self) -> None:
        a = ChunkRecord(embedding=[0.1], content="x", document_id="d")
        b = ChunkRecord(embedding=[0.1], content="x", document_id="d")
        assert a.id != b.id

    def test_store_metadata_carries_reserved_fields(self) -> None:
        record = ChunkRecord(
            embedding=[0.1], content="x", context="# A", document_id="d", metadata={"lang": "en"}
        )
        assert record.store_metadata() == {"lang": "en", "context": "# A", "document_id": "d"}


class TestRetrievalResult:
    def test_short_ref(self) -> None:
        r = RetrievalResult(id="1", content="x", document_id="a.md", context="# Intro")
        assert r.short_ref() == "[a.md§# Intro]"

    def test_short_ref_without_context(self) -> None:
        assert RetrievalResult(id="1", content="x").short_ref() == "[unknown§?]"

    def test_str_truncates_content(self) -> None:
        r = RetrievalResult(id="1", content="a" * 200, document_id="a.md")
        assert len(str(r)) < 200


# ── SemanticRetriever ───────────────────────────────────────────────────


class TestSemanticRetriever:
    @pytest.mark.asyncio
    async def test_search_returns_results(self, embeddings) -> None:
        retriever = SemanticRetriever(FakeVectorStore(SAMPLE_HITS), embeddings)
        results = await retriever.search("how are chunks replaced?", k=2)

        assert [r.id for r in results] == ["chunk-001", "chunk-002"]
        assert results[0].document_id == "/docs/writer.md"
        assert results[0].context == "# Writer;## Protocol"
        assert results[0].metadata == {"page_number": 2}

    @pytest.mark.asyncio
    async def test_score_threshold_filters(self, embeddings) -> None:
        retriever = SemanticRetriever(FakeVectorStore(SAMPLE_HITS), embeddings, score_threshold=0.5)
        results = await retriever.search("anything")
        assert [r.id for r in results] == ["chunk-001", "chunk-002"]

    @pytest.mark.asyncio
    async def test_missing_metadata_uses_defaults(self, embeddings) -> None:
        retriever = SemanticRetriever(FakeVectorStore(SAMPLE_HITS[2:]), embeddings)
        [result] = await retriever.search("anything")
        assert result.document_id == "unknown"
        assert result.context == ""

    @pytest.mark.asyncio
    async def test_document_filter_is_added(self, embeddings) -> None:
        store = FakeVectorStore(SAMPLE_HITS)
        retriever = SemanticRetriever(store, embeddings)
        await retriever.search("q", document_id="/docs/writer.md", filters=[MetadataFilter.equals("lang", "en")])

        assert store.last_filters is not None
        assert [(f.field, f.value) for f in store.last_filters] == [
            ("lang", "en"),
            ("document_id", "/docs/writer.md"),
        ]

    @pytest.mark.asyncio
    async def test_default_k(self, embeddings) -> None:
        store = FakeVectorStore(SAMPLE_HITS)
        await SemanticRetriever(store, embeddings, default_k=1).search("q")
        assert store.last_k == 1
        assert store.last_filters is None

    @pytest.mark.asyncio
    async def test_round_trip_through_writer_store(self, store, embeddings) -> None:
        await store.upsert(
            [
                ChunkRecord(embedding=embeddings.embed_query("python"), content="python", document_id="a"),
                ChunkRecord(embedding=embeddings.embed_query("ocean"), content="ocean", document_id="b"),
            ]
        )
        results = await SemanticRetriever(store, embeddings).search("python tips", k=1)
        assert [r.content for r in results] == ["python"]
        assert results[0].document_id == "a"


# ── Chroma store ────────────────────────────────────────────────────────


@pytest.fixture()
def chroma_client() -> MagicMock:
    return MagicMock()


@pytest.fixture()
def collection(chroma_client) -> MagicMock:
    return chroma_client.get_or_create_collection.return_value


class TestBuildChromaWhere:
    def test_no_filters(self) -> None:
        assert _build_chroma_where([]) is None

    def test_single_filter(self) -> None:
        assert _build_chroma_where([MetadataFilter.for_document("d")]) == {"document_id": {"$eq": "d"}}

    def test_multiple_filters_are_anded(self) -> None:
        where = _build_chroma_where(
            [MetadataFilter.equals("lang", "en"), MetadataFilter.one_of("page_number", [1, 2])]
        )
        assert where == {"$and": [{"lang": {"$eq": "en"}}, {"page_number": {"$in": [1, 2]}}]}

    def test_unknown_operator(self) -> None:
        with pytest.raises(ValueError):
            _build_chroma_where([MetadataFilter(field="x", operator="like", value="y")])


class TestChromaVectorStore:
    @pytest.mark.asyncio
    async def test_collection_created_with_distance(self, chroma_client) -> None:
        store = ChromaVectorStore("docs", distance_metric="cosine", client=chroma_client)
        await store.ensure_collection()
        chroma_client.get_or_create_collection.assert_called_once_with(
            name="docs", metadata={"hnsw:space": "cosine"}
        )

    @pytest.mark.asyncio
    async def test_upsert_sends_parallel_lists(self, chroma_client, collection) -> None:
        store = ChromaVectorStore("docs", client=chroma_client)
        record = ChunkRecord(id="r1", embedding=[0.1, 0.2], content="text", context="# A", document_id="d")
        await store.upsert([record])

        collection.upsert.assert_called_once_with(
            ids=["r1"],
            embeddings=[[0.1, 0.2]],
            documents=["text"],
            metadatas=[{"context": "# A", "document_id": "d"}],
        )

    @pytest.mark.asyncio
    async def test_empty_inputs_skip_the_client(self, chroma_client, collection) -> None:
        store = ChromaVectorStore("docs", client=chroma_client)
        await store.upsert([])
        await store.delete([])
        collection.upsert.assert_not_called()
        collection.delete.assert_not_called()

    @pytest.mark.asyncio
    async def test_get_ids_pages_through_results(self, chroma_client, collection, monkeypatch) -> None:
        monkeypatch.setattr("rag_ingest.retrieval.chroma_store._GET_PAGE_SIZE", 2)
        collection.get.side_effect = [{"ids": ["a", "b"]}, {"ids": ["c", "d"]}, {"ids": ["e"]}]
        store = ChromaVectorStore("docs", client=chroma_client)

        assert await store.get_ids("d") == ["a", "b", "c", "d", "e"]
        offsets = [call.kwargs["offset"] for call in collection.get.call_args_list]
        assert offsets == [0, 2, 4]
        assert collection.get.call_args.kwargs["where"] == {"document_id": "d"}

    @pytest.mark.asyncio
    async def test_similarity_search_converts_distances(self, chroma_client, collection) -> None:
        collection.query.return_value = {
            "ids": [["x", "y"]],
            "documents": [["first", None]],
            "metadatas": [[{"document_id": "d"}, None]],
            "distances": [[0.1, 0.4]],
        }
        store = ChromaVectorStore("docs", distance_metric="cosine", client=chroma_client)
        hits = await store.similarity_search([0.0, 1.0], k=2, filters=[MetadataFilter.for_document("d")])

        assert [h["id"] for h in hits] == ["x", "y"]
        assert hits[0]["score"] == pytest.approx(0.9)
        assert hits[1]["content"] == ""
        assert hits[1]["metadata"] == {}
        assert collection.query.call_args.kwargs["where"] == {"document_id": {"$eq": "d"}}

    @pytest.mark.asyncio
    async def test_l2_scores(self, chroma_client, collection) -> None:
        collection.query.return_value = {
            "ids": [["x"]], "documents": [["t"]], "metadatas": [[{}]], "distances": [[1.0]],
        }
        store = ChromaVectorStore("docs", distance_metric="l2", client=chroma_client)
        [hit] = await store.similarity_search([0.0], k=1)
        assert hit["score"] == pytest.approx(0.5)

    @pytest.mark.asyncio
    async def test_client_errors_become_capability_errors(self, chroma_client, collection) -> None:
        collection.delete.side_effect = RuntimeError("connection reset")
        store = ChromaVectorStore("docs", client=chroma_client)
        with pytest.raises(CapabilityError):
            await store.delete(["a"])

    @pytest.mark.asyncio
    async def test_health_check(self, chroma_client) -> None:
        store = ChromaVectorStore("docs", client=chroma_client)
        assert await store.health_check() is True

        chroma_client.heartbeat.side_effect = RuntimeError("down")
        assert await store.health_check() is False
