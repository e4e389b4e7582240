"""RAG (Retrieval-Augmented Generation) pipeline components.

This package contains modules for:
- Text extraction from uploaded files
- Document chunking with overlap
- Keyword synthesis (stand-in for embeddings)
- Keyword-overlap retrieval
- Ingestion and query orchestration
"""
