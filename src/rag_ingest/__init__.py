"""rag_ingest — keep a vector index in sync with a corpus of long-form documents."""

__version__ = "0.1.0"
