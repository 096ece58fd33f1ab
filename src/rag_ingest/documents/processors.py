"""Document processors — tree-shaping transformations run before chunking.

Every transformation is a pure function returning a new :class:`Document`;
the input tree is never modified, so the same document can safely be
handed to several tasks.  :class:`DocumentProcessor` subclasses wrap the
functions so the pipeline can run them as a sequence of stages.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable

from rag_ingest.documents.models import Document, Element, Footer, Section

logger = logging.getLogger(__name__)

ElementPredicate = Callable[[Element], bool]


class DocumentProcessor(ABC):
    """A stage that receives a document and returns a (possibly new) one."""

    @abstractmethod
    async def process(self, document: Document) -> Document:
        """Return the transformed document."""
        ...


# ---------------------------------------------------------------------------
# Removal
# ---------------------------------------------------------------------------


def _remove(element: Element, should_remove: ElementPredicate) -> Element | None:
    if should_remove(element):
        return None
    if not isinstance(element, Section):
        return element.model_copy(deep=True)

    kept: list[Element] = []
    for child in element.elements:
        updated = _remove(child, should_remove)
        if updated is not None:
            kept.append(updated)

    rebuilt = element.model_copy(update={"elements": kept, "metadata": dict(element.metadata)})
    # Child removal may have emptied the section, so ask again.
    return None if should_remove(rebuilt) else rebuilt


def remove_elements(document: Document, should_remove: ElementPredicate) -> Document:
    """Return a copy of *document* without the elements matching *should_remove*.

    Filtering is bottom-up: a section's children are filtered first and the
    predicate is then re-evaluated on the rebuilt section, so sections that
    became empty as a side effect are dropped by predicates that target
    empty sections.  Sibling order is preserved.
    """
    sections: list[Section] = []
    for section in document.sections:
        updated = _remove(section, should_remove)
        if isinstance(updated, Section):
            sections.append(updated)
    return Document(identifier=document.identifier, markdown=document.markdown, sections=sections)


def _is_footer(element: Element) -> bool:
    return isinstance(element, Footer)


def _is_empty_section(element: Element) -> bool:
    return isinstance(element, Section) and not element.elements


class RemovalProcessor(DocumentProcessor):
    """Removes every element for which *should_remove* returns ``True``.

    Parameters
    ----------
    should_remove:
        Predicate evaluated on each element, bottom-up.
    """

    def __init__(self, should_remove: ElementPredicate) -> None:
        self._should_remove = should_remove

    @classmethod
    def footers(cls) -> RemovalProcessor:
        """Processor dropping all footers."""
        return cls(_is_footer)

    @classmethod
    def empty_sections(cls) -> RemovalProcessor:
        """Processor dropping sections left without children."""
        return cls(_is_empty_section)

    async def process(self, document: Document) -> Document:
        updated = remove_elements(document, self._should_remove)
        logger.debug(
            "Removal on %r kept %d of %d elements",
            document.identifier,
            sum(1 for _ in updated.walk()),
            sum(1 for _ in document.walk()),
        )
        return updated


# ---------------------------------------------------------------------------
# Flattening
# ---------------------------------------------------------------------------


def flatten_document(document: Document) -> Document:
    """Return *document* with a single section holding all of its leaves.

    Leaves keep their pre-order position; nested sections disappear and
    their children are promoted.  The aggregate Markdown is preserved
    verbatim rather than regenerated from the leaves, since their snippets
    do not concatenate back into the original whitespace.
    """
    root = Section(
        markdown=document.markdown,
        elements=[leaf.model_copy(deep=True) for leaf in document.leaves()],
    )
    return Document(identifier=document.identifier, markdown=document.markdown, sections=[root])


class DocumentFlattener(DocumentProcessor):
    """Flattens every document into one section containing all leaves."""

    async def process(self, document: Document) -> Document:
        return flatten_document(document)
