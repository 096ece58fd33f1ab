"""
Retrieval — the vector collection behind ingestion and search over it.

This module wraps the vector store behind a clean interface so that the
writer and the retriever never need to know which DB is backing them.

Public surface
--------------
- :class:`VectorStoreBase` — abstract backend (subclass for Pinecone, etc.).
- :class:`ChromaVectorStore` — default Chroma backend.
- :class:`SemanticRetriever` — similarity search with provenance.
- :class:`ChunkRecord`, :class:`RetrievalResult`, :class:`MetadataFilter` — data models.
"""

from rag_ingest.retrieval.base import VectorStoreBase
from rag_ingest.retrieval.models import ChunkRecord, MetadataFilter, RetrievalResult
from rag_ingest.retrieval.retriever import SemanticRetriever

__all__ = [
    "ChromaVectorStore",
    "ChunkRecord",
    "MetadataFilter",
    "RetrievalResult",
    "SemanticRetriever",
    "VectorStoreBase",
]


def __getattr__(name: str):  # noqa: ANN001
    """Lazy-import ChromaVectorStore to avoid pulling in chromadb at import time."""
    if name == "ChromaVectorStore":
        from rag_ingest.retrieval.chroma_store import ChromaVectorStore

        return ChromaVectorStore
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
