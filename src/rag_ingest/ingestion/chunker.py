"""Text chunking strategies.

Two chunkers turn a :class:`~rag_ingest.documents.models.Document` into an
ordered list of :class:`~rag_ingest.documents.models.Chunk` objects:

* :class:`HeaderChunker` splits the document's full Markdown along heading
  boundaries and records the heading trail as each chunk's context.
* :class:`SemanticChunker` splits leaf elements into sentences and greedily
  merges consecutive sentences while they stay similar (cosine similarity of
  their embeddings) and fit in the token budget.
"""

from __future__ import annotations

import logging
import re
import warnings
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING

from rag_ingest.config import settings
from rag_ingest.documents.models import Chunk, Document, Footer, Header, Image, Paragraph, Table
from rag_ingest.exceptions import CapabilityError, ConsistencyWarning, ValidationError
from rag_ingest.ingestion.embedder import cosine_similarity, embed_texts

if TYPE_CHECKING:
    from langchain_core.embeddings import Embeddings

    from rag_ingest.ingestion.tokenizer import Tokenizer

logger = logging.getLogger(__name__)

MAX_HEADER_LEVEL = 6

_HEADING_RE = re.compile(r"^ {0,3}(#{1,6})(?:[ \t]|$)")
_FENCE_RE = re.compile(r"^ {0,3}(`{3,}|~{3,})")

# Abbreviations whose trailing period does not end a sentence.
_ABBREVIATIONS = frozenset(
    {
        "Dr", "Mr", "Mrs", "Ms", "Prof", "Jr", "Sr", "St", "vs", "etc",
        "approx", "Inc", "Ltd", "Co", "No", "Fig", "Eq", "e.g", "i.e",
    }
)


class DocumentChunker(ABC):
    """Turns a document into an ordered list of chunks."""

    @abstractmethod
    async def chunk(self, document: Document) -> list[Chunk]:
        """Return the chunks of *document*, in document order."""
        ...


# ---------------------------------------------------------------------------
# Header-based chunking
# ---------------------------------------------------------------------------


def _heading_level(line: str) -> int:
    match = _HEADING_RE.match(line)
    return len(match.group(1)) if match else 0


def _closes_fence(line: str, fence: str) -> bool:
    # Only the bare marker (same character, at least as long) ends a fenced block.
    stripped = line.strip()
    return len(stripped) >= len(fence) and set(stripped) == {fence[0]}


class HeaderChunker(DocumentChunker):
    """Splits Markdown into one chunk per run of lines between headings.

    Parameters
    ----------
    split_depth:
        Deepest heading level (1–6) that starts a new chunk.  Deeper
        headings stay inside the body of the enclosing chunk.
    strip_headers:
        When ``False`` the chunk's own heading line is kept at the start of
        its body (ancestor headings only appear in the context).
    """

    def __init__(
        self,
        split_depth: int = settings.header_split_depth,
        strip_headers: bool = settings.strip_headers,
    ) -> None:
        if not 1 <= split_depth <= MAX_HEADER_LEVEL:
            raise ValidationError(
                f"split_depth must be between 1 and {MAX_HEADER_LEVEL}, got {split_depth}"
            )
        self.split_depth = split_depth
        self.strip_headers = strip_headers

    async def chunk(self, document: Document) -> list[Chunk]:
        chunks = self.split(document.markdown)
        logger.debug("Header chunking of %r produced %d chunks", document.identifier, len(chunks))
        return chunks

    def split(self, markdown: str) -> list[Chunk]:
        """Split a Markdown string; see the class docstring."""
        lines = markdown.replace("\r\n", "\n").replace("\r", "\n").split("\n")

        chunks: list[Chunk] = []
        # (level, heading line) for each open heading, shallowest first.
        frames: list[tuple[int, str]] = []
        buffer: list[str] = []
        fence: str | None = None

        for line in lines:
            level = 0
            if fence is not None:
                if _closes_fence(line, fence):
                    fence = None
            else:
                fence_match = _FENCE_RE.match(line)
                if fence_match:
                    fence = fence_match.group(1)
                else:
                    level = _heading_level(line)

            if level == 0 or level > self.split_depth:
                buffer.append(line)
                continue

            self._flush(buffer, frames, chunks)
            while frames and frames[-1][0] >= level:
                frames.pop()
            frames.append((level, line.strip()))
            buffer = [] if self.strip_headers else [line]

        self._flush(buffer, frames, chunks)
        return chunks

    @staticmethod
    def _flush(buffer: list[str], frames: list[tuple[int, str]], chunks: list[Chunk]) -> None:
        body = "\n".join(buffer).strip()
        if body:
            context = ";".join(heading for _, heading in frames)
            chunks.append(Chunk(content=body, context=context))


# ---------------------------------------------------------------------------
# Semantic chunking
# ---------------------------------------------------------------------------


def split_sentences(text: str) -> list[str]:
    """Split *text* at ``.``, ``!`` or ``?`` followed by whitespace.

    Periods after known abbreviations ("Dr.", "e.g.") are masked first so
    they do not end a sentence.  Text without terminal punctuation comes
    back as a single sentence.
    """
    masked = text
    for abbr in _ABBREVIATIONS:
        masked = re.sub(rf"\b{re.escape(abbr)}\.", abbr + "\x00", masked)

    sentences: list[str] = []
    last = 0
    for match in re.finditer(r"[.!?]+(?:\s+|$)", masked):
        sentence = text[last : match.end()].strip()
        if sentence:
            sentences.append(sentence)
        last = match.end()

    remainder = text[last:].strip()
    if remainder:
        sentences.append(remainder)
    return sentences


@dataclass
class _Segment:
    """A sentence-sized unit plus a back-reference to where it came from."""

    text: str
    context: str
    page_number: int | None


def _header_label(header: Header) -> str:
    label = header.markdown.strip()
    if label.startswith("#"):
        return label
    # Setext or synthetic headers are rendered in ATX form.
    return f"{'#' * header.level} {header.get_text().strip()}"


class SemanticChunker(DocumentChunker):
    """Greedy similarity-driven merging of sentences under a token budget.

    Parameters
    ----------
    embeddings:
        Embedding capability used to vectorise every sentence.
    tokenizer:
        Token counter enforcing *max_tokens_per_chunk*.
    max_tokens_per_chunk:
        Budget for a merged chunk.  A lone sentence over the budget is
        still emitted, flagged with ``overflow=True``.
    breakpoint_threshold:
        Cosine similarity in ``[-1, 1]``; a sentence less similar than this
        to the previous one starts a new chunk.
    embedding_batch_size:
        Number of sentences sent to the embedding model per call.
    """

    def __init__(
        self,
        embeddings: Embeddings,
        tokenizer: Tokenizer,
        *,
        max_tokens_per_chunk: int = settings.semantic_max_tokens,
        breakpoint_threshold: float = settings.semantic_breakpoint_threshold,
        embedding_batch_size: int = settings.embedding_batch_size,
    ) -> None:
        if embeddings is None:
            raise ValidationError("embeddings is required")
        if tokenizer is None:
            raise ValidationError("tokenizer is required")
        if max_tokens_per_chunk <= 0:
            raise ValidationError(f"max_tokens_per_chunk must be positive, got {max_tokens_per_chunk}")
        if not -1.0 <= breakpoint_threshold <= 1.0:
            raise ValidationError(
                f"breakpoint_threshold must be within [-1, 1], got {breakpoint_threshold}"
            )
        if embedding_batch_size <= 0:
            raise ValidationError(f"embedding_batch_size must be positive, got {embedding_batch_size}")

        self._embeddings = embeddings
        self._tokenizer = tokenizer
        self.max_tokens_per_chunk = max_tokens_per_chunk
        self.breakpoint_threshold = breakpoint_threshold
        self.embedding_batch_size = embedding_batch_size

    async def chunk(self, document: Document) -> list[Chunk]:
        segments = self._segment(document)
        if not segments:
            return []

        vectors = await embed_texts(
            self._embeddings,
            [segment.text for segment in segments],
            batch_size=self.embedding_batch_size,
        )
        chunks = self._merge(segments, vectors)
        logger.debug(
            "Semantic chunking of %r: %d sentences -> %d chunks",
            document.identifier,
            len(segments),
            len(chunks),
        )
        return chunks

    # -- phase 1 ----------------------------------------------------------

    def _segment(self, document: Document) -> list[_Segment]:
        segments: list[_Segment] = []
        headers: list[Header] = []

        for element in document.leaves():
            if isinstance(element, Header):
                while headers and headers[-1].level >= element.level:
                    headers.pop()
                headers.append(element)
                continue
            if isinstance(element, Footer):
                continue

            if isinstance(element, Paragraph):
                pieces = split_sentences(element.get_text())
            elif isinstance(element, Table):
                pieces = [element.markdown or element.get_text()]
            elif isinstance(element, Image):
                pieces = [element.get_text()]
            else:
                pieces = []

            context = ";".join(_header_label(h) for h in headers)
            for piece in pieces:
                if piece.strip():
                    segments.append(_Segment(piece.strip(), context, element.page_number))
        return segments

    # -- phase 2 ----------------------------------------------------------

    def _merge(self, segments: list[_Segment], vectors: list[list[float]]) -> list[Chunk]:
        chunks: list[Chunk] = []
        buffer = [segments[0]]
        text = segments[0].text
        tokens = self._count(text)

        for i in range(1, len(segments)):
            segment = segments[i]
            similar = cosine_similarity(vectors[i - 1], vectors[i]) >= self.breakpoint_threshold
            candidate = f"{text} {segment.text}"
            candidate_tokens = self._count(candidate) if similar else 0

            if not similar or candidate_tokens > self.max_tokens_per_chunk:
                chunks.append(self._emit(buffer, text, tokens))
                buffer = [segment]
                text = segment.text
                tokens = self._count(text)
            else:
                buffer.append(segment)
                text = candidate
                tokens = candidate_tokens

        chunks.append(self._emit(buffer, text, tokens))
        return chunks

    def _count(self, text: str) -> int:
        try:
            return self._tokenizer.count_tokens(text)
        except Exception as exc:
            raise CapabilityError(f"Tokenizer failed: {exc}") from exc

    def _emit(self, buffer: list[_Segment], text: str, tokens: int) -> Chunk:
        first = buffer[0]
        overflow = tokens > self.max_tokens_per_chunk
        if overflow:
            message = (
                f"Sentence of {tokens} tokens exceeds the budget of "
                f"{self.max_tokens_per_chunk}; emitting it as an oversized chunk"
            )
            logger.warning(message)
            warnings.warn(message, ConsistencyWarning, stacklevel=3)

        metadata = {}
        if first.page_number is not None:
            metadata["page_number"] = first.page_number
        return Chunk(
            content=text,
            context=first.context,
            token_count=tokens,
            metadata=metadata,
            overflow=overflow,
        )
