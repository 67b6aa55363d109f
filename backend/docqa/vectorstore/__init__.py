"""
Vector Store Package

Chunks and their embeddings live in the local SQL database; similarity
search ranks them in Python with cosine similarity.

Public API::

    from docqa.vectorstore import KnowledgeStore, cosine_similarity

    store = KnowledgeStore(db)
    hits = await store.search(query_vector, document_ids=[1, 2], limit=5)
"""

from docqa.vectorstore.base import (
    ChunkInput,
    DimensionCheck,
    SearchResult,
    StorageStats,
    cosine_similarity,
)
from docqa.vectorstore.sql_store import KnowledgeStore

__all__ = [
    "ChunkInput",
    "DimensionCheck",
    "KnowledgeStore",
    "SearchResult",
    "StorageStats",
    "cosine_similarity",
]
