"""RAG (Retrieval-Augmented Generation) pipeline components.

This package contains modules for:
- Document parsing (text, markdown, PDF)
- Chunking with overlap
- FAISS vector storage with cosine search
- Ingestion and retrieval pipelines
"""
