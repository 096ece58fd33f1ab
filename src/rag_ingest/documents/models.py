"""Domain models for the hierarchical document tree and its chunks.

The element kinds form a closed set discriminated by the ``kind`` field:
:class:`Paragraph`, :class:`Header`, :class:`Footer`, :class:`Table`,
:class:`Image` and :class:`Section`.  Only sections own children, so every
traversal can be written as "recurse on sections, yield everything else".
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from typing import TYPE_CHECKING, Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator

if TYPE_CHECKING:
    from rag_ingest.ingestion.tokenizer import Tokenizer


class DocumentElement(BaseModel):
    """Attributes shared by every node of the document tree.

    Attributes
    ----------
    markdown:
        Verbatim Markdown snippet this element was produced from.
    text:
        Plain-text rendition, when the reader extracted one.
    page_number:
        1-based page the element appears on (paginated sources only).
    metadata:
        Free-form key/value pairs attached by readers or processors.
    """

    markdown: str = ""
    text: str | None = None
    page_number: int | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    def get_text(self) -> str:
        """Return the plain text, falling back to the Markdown snippet."""
        return self.text if self.text is not None else self.markdown


class Paragraph(DocumentElement):
    kind: Literal["paragraph"] = "paragraph"


class Header(DocumentElement):
    kind: Literal["header"] = "header"
    level: int = Field(default=1, ge=1)


class Footer(DocumentElement):
    kind: Literal["footer"] = "footer"


class Table(DocumentElement):
    """A grid of cells; each cell holds an element or is empty."""

    kind: Literal["table"] = "table"
    cells: list[list[Optional[Element]]] = Field(default_factory=list)


class Image(DocumentElement):
    kind: Literal["image"] = "image"
    content: bytes | None = None
    media_type: str | None = None
    description: str | None = None
    caption: str | None = None

    def get_text(self) -> str:
        return self.description or self.caption or ""


class Section(DocumentElement):
    """A grouping of elements: a page, a list, a quote, a logical section."""

    kind: Literal["section"] = "section"
    elements: list[Element] = Field(default_factory=list)

    def get_text(self) -> str:
        if self.text is not None:
            return self.text
        return "\n".join(element.get_text() for element in self.elements)


Element = Annotated[
    Union[Paragraph, Header, Footer, Table, Image, Section],
    Field(discriminator="kind"),
]

Table.model_rebuild()
Section.model_rebuild()


def iter_elements(elements: Iterable[Element]) -> Iterator[Element]:
    """Yield *elements* and all of their descendants in pre-order."""
    for element in elements:
        yield element
        if isinstance(element, Section):
            yield from iter_elements(element.elements)


class Document(BaseModel):
    """Root of the tree, created by a reader and reshaped by processors.

    Attributes
    ----------
    identifier:
        Stable external key (path, URI, …).  Re-ingesting the same source
        must produce the same identifier; it is the key the vector store
        synchronizes on.
    sections:
        Top-level sections, in document order.
    markdown:
        Full-document Markdown, kept independently of the element tree.
    """

    identifier: str = Field(min_length=1)
    sections: list[Section] = Field(default_factory=list)
    markdown: str = ""

    def walk(self) -> Iterator[Element]:
        """Yield every element (sections included) depth-first, left to right."""
        return iter_elements(self.sections)

    def leaves(self) -> Iterator[Element]:
        """Yield every non-section element in pre-order."""
        return (element for element in self.walk() if not isinstance(element, Section))


class Chunk(BaseModel):
    """A bounded span of document text plus its structural context.

    Attributes
    ----------
    content:
        The chunk text; never blank.
    context:
        ``;``-joined heading trail locating the chunk in its source.
    token_count:
        Cached token count; computed lazily by :meth:`count_tokens`.
    metadata:
        Extra values persisted alongside the chunk.
    overflow:
        ``True`` when the chunk exceeds the configured token budget because
        a single sentence did.
    """

    content: str
    context: str = ""
    token_count: int | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    overflow: bool = False

    @field_validator("content")
    @classmethod
    def _content_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Chunk content cannot be blank")
        return value

    @field_validator("token_count")
    @classmethod
    def _token_count_non_negative(cls, value: int | None) -> int | None:
        if value is not None and value < 0:
            raise ValueError("Token count cannot be negative")
        return value

    def count_tokens(self, tokenizer: Tokenizer) -> int:
        """Return the token count, computing and caching it on first use."""
        if self.token_count is None:
            self.token_count = tokenizer.count_tokens(self.content)
        return self.token_count
