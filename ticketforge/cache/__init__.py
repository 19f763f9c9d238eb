"""Similarity cache of generated tickets."""

from ticketforge.cache.similarity import (
    CacheEntry,
    CacheStats,
    ResponseCache,
    SimilarityCache,
    normalize_text,
    similarity,
)

__all__ = [
    "CacheEntry",
    "CacheStats",
    "ResponseCache",
    "SimilarityCache",
    "normalize_text",
    "similarity",
]
