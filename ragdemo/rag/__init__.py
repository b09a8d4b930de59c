"""RAG (Retrieval-Augmented Generation) pipeline components.

This package contains modules for:
- Document chunking with overlap
- FAISS vector storage
- Thresholded semantic retrieval
- Context assembly and answer generation
"""
