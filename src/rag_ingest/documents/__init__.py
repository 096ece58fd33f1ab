"""
Documents — the generic document tree and the transformations applied to it.

Readers produce a :class:`Document`; processors return reshaped copies;
chunkers turn the final tree into :class:`Chunk` objects.
"""

from rag_ingest.documents.models import (
    Chunk,
    Document,
    DocumentElement,
    Element,
    Footer,
    Header,
    Image,
    Paragraph,
    Section,
    Table,
    iter_elements,
)
from rag_ingest.documents.processors import (
    DocumentFlattener,
    DocumentProcessor,
    RemovalProcessor,
    flatten_document,
    remove_elements,
)

__all__ = [
    "Chunk",
    "Document",
    "DocumentElement",
    "DocumentFlattener",
    "DocumentProcessor",
    "Element",
    "Footer",
    "Header",
    "Image",
    "Paragraph",
    "RemovalProcessor",
    "Section",
    "Table",
    "flatten_document",
    "iter_elements",
    "remove_elements",
]
