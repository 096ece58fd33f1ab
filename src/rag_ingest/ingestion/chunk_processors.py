"""Chunk processors — stages run on a document's chunks before writing."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from rag_ingest.exceptions import CapabilityError

if TYPE_CHECKING:
    from rag_ingest.documents.models import Chunk
    from rag_ingest.ingestion.tokenizer import Tokenizer


class ChunkProcessor(ABC):
    """Receives the full chunk list of one document and returns a new one."""

    @abstractmethod
    async def process(self, chunks: list[Chunk]) -> list[Chunk]:
        ...


class TokenCountProcessor(ChunkProcessor):
    """Fills in missing token counts and exposes them as ``token_count`` metadata."""

    metadata_key = "token_count"

    def __init__(self, tokenizer: Tokenizer) -> None:
        self._tokenizer = tokenizer

    async def process(self, chunks: list[Chunk]) -> list[Chunk]:
        counted: list[Chunk] = []
        for chunk in chunks:
            updated = chunk.model_copy(update={"metadata": dict(chunk.metadata)})
            try:
                tokens = updated.count_tokens(self._tokenizer)
            except Exception as exc:
                raise CapabilityError(f"Tokenizer failed: {exc}") from exc
            updated.metadata[self.metadata_key] = tokens
            counted.append(updated)
        return counted
