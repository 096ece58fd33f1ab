"""Shared configuration loaded from environment / .env file."""

from __future__ import annotations

import logging

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application-wide settings, populated from env vars or .env file."""

    # Vector store
    chroma_host: str = "localhost"
    chroma_port: int = 8000
    chroma_collection: str = "rag_ingest"
    chroma_distance: str = Field(
        default="cosine",
        pattern="^(cosine|l2|ip)$",
        description="Distance function used when the collection is created",
    )

    # Embedding
    embedding_model: str = "sentence-transformers/all-MiniLM-L6-v2"
    embedding_batch_size: int = Field(default=64, gt=0)

    # Tokenizer
    tokenizer_encoding: str = Field(
        default="cl100k_base",
        description="tiktoken encoding used to count tokens",
    )

    # Chunking
    header_split_depth: int = Field(default=3, ge=1, le=6)
    strip_headers: bool = True
    semantic_max_tokens: int = Field(default=512, gt=0)
    semantic_breakpoint_threshold: float = Field(
        default=0.75,
        ge=-1.0,
        le=1.0,
        description="Cosine similarity below which a new chunk is started",
    )

    # Pipeline
    max_concurrency: int = Field(default=4, gt=0, description="Documents processed in parallel")
    incremental_ingestion: bool = Field(
        default=True,
        description="Replace previously stored chunks of a re-ingested document",
    )

    # Logging
    log_level: str = "INFO"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


# Singleton: import `settings` wherever needed.
settings = Settings()


def configure_logging(level: str | None = None) -> None:
    """Configure root logging for scripts and notebooks driving the pipeline."""
    numeric_level = getattr(logging, (level or settings.log_level).upper(), logging.INFO)
    logging.basicConfig(
        level=numeric_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
