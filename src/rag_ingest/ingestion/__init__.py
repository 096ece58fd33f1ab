"""
Ingestion — reading, chunking, embedding and writing documents.

This module is responsible for the ETL-like pipeline that converts raw
documents (Markdown, PDF, …) into embedded chunks kept in sync with a
vector database.  :mod:`rag_ingest.ingestion.pipeline` is the entry point.
"""
