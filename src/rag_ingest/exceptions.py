"""Exception hierarchy shared by every stage of the ingestion pipeline.

Error kinds map onto how the orchestrator treats them:

* :class:`ValidationError` — bad configuration or arguments, raised before
  any I/O happens.
* :class:`SourceError` — a single source cannot be read; the batch continues.
* :class:`CapabilityError` — the embedding model, tokenizer or vector store
  failed; the current document fails, retries are left to the caller.
* :class:`ConsistencyWarning` — non-fatal, emitted through :mod:`warnings`.
"""

from __future__ import annotations


class IngestionError(Exception):
    """Base class for all errors raised by :mod:`rag_ingest`."""


class ValidationError(IngestionError, ValueError):
    """Invalid configuration value or missing required argument."""


class SourceError(IngestionError):
    """A source document could not be read or converted.

    Parameters
    ----------
    source:
        The locator (path or URI) that failed.
    message:
        Human-readable cause.
    """

    def __init__(self, source: str, message: str) -> None:
        super().__init__(f"{source}: {message}")
        self.source = source


class SourceNotFoundError(SourceError):
    """The source does not exist."""


class SourceUnreadableError(SourceError):
    """The source exists but cannot be decoded or parsed."""


class CapabilityError(IngestionError):
    """An external capability (embedding, tokenizer, vector store) failed."""


class ConsistencyWarning(UserWarning):
    """A chunk was emitted over its token budget because one sentence was."""
