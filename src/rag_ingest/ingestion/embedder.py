"""Embedding capability — LangChain ``Embeddings`` plus batching helpers."""

from __future__ import annotations

import logging
from collections.abc import Sequence

import numpy as np
from langchain_core.embeddings import Embeddings
from langchain_huggingface import HuggingFaceEmbeddings

from rag_ingest.config import settings
from rag_ingest.exceptions import CapabilityError, ValidationError

logger = logging.getLogger(__name__)


def get_embedding_function(model_name: str = settings.embedding_model) -> HuggingFaceEmbeddings:
    """Return the configured sentence-transformer embedding function."""
    return HuggingFaceEmbeddings(model_name=model_name)


async def embed_texts(
    embeddings: Embeddings,
    texts: Sequence[str],
    batch_size: int = settings.embedding_batch_size,
) -> list[list[float]]:
    """Embed *texts* in batches, preserving input order.

    Raises
    ------
    CapabilityError
        When the embedding model fails or returns the wrong number of vectors.
    """
    if batch_size <= 0:
        raise ValidationError(f"batch_size must be positive, got {batch_size}")

    vectors: list[list[float]] = []
    for start in range(0, len(texts), batch_size):
        batch = list(texts[start : start + batch_size])
        try:
            result = await embeddings.aembed_documents(batch)
        except Exception as exc:
            raise CapabilityError(f"Embedding failed for batch starting at {start}: {exc}") from exc
        if len(result) != len(batch):
            raise CapabilityError(
                f"Embedding model returned {len(result)} vectors for {len(batch)} inputs"
            )
        vectors.extend(result)
        logger.debug("Embedded %d / %d texts", len(vectors), len(texts))
    return vectors


async def embed_query(embeddings: Embeddings, text: str) -> list[float]:
    """Embed a single query string."""
    try:
        return await embeddings.aembed_query(text)
    except Exception as exc:
        raise CapabilityError(f"Query embedding failed: {exc}") from exc


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two vectors; ``0.0`` when either is all zeros."""
    va = np.asarray(a, dtype=float)
    vb = np.asarray(b, dtype=float)
    norm_a = np.linalg.norm(va)
    norm_b = np.linalg.norm(vb)
    if norm_a < 1e-9 or norm_b < 1e-9:
        return 0.0
    return float(np.dot(va, vb) / (norm_a * norm_b))
