"""Ingestion pipeline — drives every source through read → process → chunk → write.

Each source runs in its own task:

    Reader → DocumentProcessors → Chunker → ChunkProcessors → Writer

Sources are processed concurrently up to ``max_concurrency``; the stages of
a single source always run in order because the write must see the final
chunk list.  A failure in one source is recorded in the returned
:class:`IngestionSummary` and never affects its siblings.  Only failing to
enumerate the sources at all is fatal.

Usage::

    from rag_ingest.ingestion.pipeline import build_default_pipeline

    pipeline = build_default_pipeline()
    summary = await pipeline.process_directory("docs", pattern="*.md", recursive=True)
    print(summary)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Sequence
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import BaseModel

from rag_ingest.config import settings
from rag_ingest.exceptions import (
    IngestionError,
    SourceNotFoundError,
    SourceUnreadableError,
    ValidationError,
)

if TYPE_CHECKING:
    from langchain_core.embeddings import Embeddings

    from rag_ingest.documents.processors import DocumentProcessor
    from rag_ingest.ingestion.chunk_processors import ChunkProcessor
    from rag_ingest.ingestion.chunker import DocumentChunker
    from rag_ingest.ingestion.loader import DocumentReader
    from rag_ingest.ingestion.tokenizer import Tokenizer
    from rag_ingest.ingestion.writer import VectorStoreWriter
    from rag_ingest.retrieval.base import VectorStoreBase

logger = logging.getLogger(__name__)


class DocumentResult(BaseModel):
    """Outcome of ingesting one source."""

    source: str
    document_id: str | None = None
    succeeded: bool
    chunk_count: int = 0
    error_type: str | None = None
    error: str | None = None


class IngestionSummary(BaseModel):
    """Per-document outcomes of one pipeline run, in source order."""

    results: list[DocumentResult]

    @property
    def succeeded(self) -> list[DocumentResult]:
        return [r for r in self.results if r.succeeded]

    @property
    def failed(self) -> list[DocumentResult]:
        return [r for r in self.results if not r.succeeded]

    def __str__(self) -> str:  # noqa: D105
        lines = [f"Ingested {len(self.succeeded)} of {len(self.results)} documents"]
        for r in self.results:
            if r.succeeded:
                lines.append(f"  OK    {r.source} ({r.chunk_count} chunks)")
            else:
                lines.append(f"  FAIL  {r.source}: {r.error_type}: {r.error}")
        return "\n".join(lines)


def derive_identifier(source: str | Path) -> str:
    """Stable document identifier for *source*.

    URIs are used verbatim; file paths are resolved to an absolute POSIX
    path so that re-ingesting the same file maps to the same records.
    """
    locator = str(source)
    if "://" in locator:
        return locator
    return Path(locator).expanduser().resolve().as_posix()


def _short_name(component: object) -> str:
    return type(component).__name__


class IngestionPipeline:
    """Wires a reader, processors, a chunker and a writer together.

    Parameters
    ----------
    reader:
        Converts a source locator into a document.
    chunker:
        Splits the processed document into chunks.
    writer:
        Persists the chunks, replacing the document's previous ones.
    document_processors:
        Run in order on each document before chunking.
    chunk_processors:
        Run in order on each document's chunks before writing.
    max_concurrency:
        Maximum number of sources processed at the same time.
    """

    def __init__(
        self,
        reader: DocumentReader,
        chunker: DocumentChunker,
        writer: VectorStoreWriter,
        *,
        document_processors: Sequence[DocumentProcessor] = (),
        chunk_processors: Sequence[ChunkProcessor] = (),
        max_concurrency: int = settings.max_concurrency,
    ) -> None:
        if reader is None:
            raise ValidationError("reader is required")
        if chunker is None:
            raise ValidationError("chunker is required")
        if writer is None:
            raise ValidationError("writer is required")
        if max_concurrency <= 0:
            raise ValidationError(f"max_concurrency must be positive, got {max_concurrency}")

        self.reader = reader
        self.chunker = chunker
        self.writer = writer
        self.document_processors = list(document_processors)
        self.chunk_processors = list(chunk_processors)
        self.max_concurrency = max_concurrency

    # -- public API -----------------------------------------------------------

    async def process_directory(
        self,
        directory: str | Path,
        pattern: str = "*.*",
        *,
        recursive: bool = False,
    ) -> IngestionSummary:
        """Ingest every file in *directory* matching *pattern*.

        Raises
        ------
        SourceError
            When the directory cannot be listed; nothing is ingested.
        """
        if not pattern:
            raise ValidationError("pattern is required")

        root = Path(directory)
        if not root.is_dir():
            raise SourceNotFoundError(str(root), "directory does not exist")
        try:
            matches = root.rglob(pattern) if recursive else root.glob(pattern)
            files = sorted(path for path in matches if path.is_file())
        except OSError as exc:
            raise SourceUnreadableError(str(root), f"cannot list directory: {exc}") from exc

        logger.info("Found %d files in %s matching %r", len(files), root, pattern)
        return await self.process_sources(files)

    async def process_sources(self, sources: Iterable[str | Path]) -> IngestionSummary:
        """Ingest each of *sources* (paths or URIs) with bounded concurrency."""
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def bounded(source: str | Path) -> DocumentResult:
            async with semaphore:
                return await self.process_source(source)

        results = await asyncio.gather(*(bounded(source) for source in sources))
        summary = IngestionSummary(results=list(results))
        logger.info(
            "Ingestion finished: %d succeeded, %d failed",
            len(summary.succeeded),
            len(summary.failed),
        )
        return summary

    async def process_source(self, source: str | Path) -> DocumentResult:
        """Ingest one source; failures are returned, not raised."""
        locator = str(source)
        identifier: str | None = None
        try:
            identifier = derive_identifier(source)
            chunk_count = await self._run(source, identifier)
        except IngestionError as exc:
            logger.error("Failed to ingest %s: %s", locator, exc)
            return self._failure(locator, identifier, exc)
        except Exception as exc:
            logger.error("Unexpected error while ingesting %s", locator, exc_info=True)
            return self._failure(locator, identifier, exc)
        return DocumentResult(
            source=locator, document_id=identifier, succeeded=True, chunk_count=chunk_count
        )

    # -- internals ------------------------------------------------------------

    @staticmethod
    def _failure(locator: str, identifier: str | None, exc: Exception) -> DocumentResult:
        return DocumentResult(
            source=locator,
            document_id=identifier,
            succeeded=False,
            error_type=type(exc).__name__,
            error=str(exc),
        )

    async def _run(self, source: str | Path, identifier: str) -> int:
        logger.info("Reading %s using %s", source, _short_name(self.reader))
        document = await self.reader.read(source, identifier)

        for processor in self.document_processors:
            logger.debug("Processing %r with %s", identifier, _short_name(processor))
            document = await processor.process(document)

        chunks = await self.chunker.chunk(document)
        logger.info("Chunked %r into %d chunks using %s", identifier, len(chunks), _short_name(self.chunker))

        for chunk_processor in self.chunk_processors:
            logger.debug("Processing %d chunks of %r with %s", len(chunks), identifier, _short_name(chunk_processor))
            chunks = await chunk_processor.process(chunks)

        # A started write always finishes its upsert-then-delete sequence,
        # even if this task is cancelled meanwhile.
        await asyncio.shield(self.writer.write(document, chunks))
        return len(chunks)


def build_default_pipeline(
    store: VectorStoreBase | None = None,
    embeddings: Embeddings | None = None,
    tokenizer: Tokenizer | None = None,
) -> IngestionPipeline:
    """Markdown → drop footers / empty sections → flatten → semantic chunks → Chroma.

    The semantic chunker works on the processed element tree, so whatever
    the removal stages drop never reaches the store.  Missing collaborators
    are created from the global settings.
    """
    from rag_ingest.documents.processors import DocumentFlattener, RemovalProcessor
    from rag_ingest.ingestion.chunker import SemanticChunker
    from rag_ingest.ingestion.loader import MarkdownReader
    from rag_ingest.ingestion.writer import VectorStoreWriter

    if store is None:
        from rag_ingest.retrieval.chroma_store import ChromaVectorStore

        store = ChromaVectorStore()
    if embeddings is None:
        from rag_ingest.ingestion.embedder import get_embedding_function

        embeddings = get_embedding_function()
    if tokenizer is None:
        from rag_ingest.ingestion.tokenizer import TiktokenTokenizer

        tokenizer = TiktokenTokenizer()

    return IngestionPipeline(
        reader=MarkdownReader(),
        document_processors=[
            RemovalProcessor.footers(),
            RemovalProcessor.empty_sections(),
            DocumentFlattener(),
        ],
        chunker=SemanticChunker(embeddings, tokenizer),
        writer=VectorStoreWriter(store, embeddings),
    )
