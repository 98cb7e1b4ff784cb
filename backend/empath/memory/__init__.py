"""
Memory subsystem for empath.

This package stores memories as vector embeddings in a key-value store and
retrieves them through a five-pivot distance index.
"""

from .vector_store import get_memory_manager, VectorMemoryStore
from .embeddings import get_embedding_service, EmbeddingService

__all__ = [
    "get_memory_manager",
    "VectorMemoryStore",
    "get_embedding_service",
    "EmbeddingService",
]
