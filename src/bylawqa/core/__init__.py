"""Core domain types shared across all bylawqa modules."""

from bylawqa.core.types import (
    BylawChunk,
    BylawSectionData,
    BylawToolCitation,
    BylawToolResult,
    CacheEntry,
    ChunkMetadata,
    CitationFeedbackEntry,
    FeedbackType,
    SearchOptions,
    SearchResult,
    VectorMatch,
    VectorRecord,
    VerifiedBylawData,
    VerifiedSearchResult,
)

__all__ = [
    "BylawChunk",
    "BylawSectionData",
    "BylawToolCitation",
    "BylawToolResult",
    "CacheEntry",
    "ChunkMetadata",
    "CitationFeedbackEntry",
    "FeedbackType",
    "SearchOptions",
    "SearchResult",
    "VectorMatch",
    "VectorRecord",
    "VerifiedBylawData",
    "VerifiedSearchResult",
]
