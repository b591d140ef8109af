"""
Core subpackage for the vector search engine.

Contains types, exceptions, configuration and logging utilities.
"""

from .types import (
    Collection,
    EmbeddingRecord,
    SearchHit,
    StoreStats,
    ItemFailure,
    PopulationResult,
)
from .exceptions import (
    VectorSearchError,
    ValidationError,
    DimensionMismatchError,
    ProviderError,
    BatchEmbeddingError,
    BatchProviderError,
    BatchValidationError,
    StoreError,
    ConfigError,
    SourceError,
)

__all__ = [
    # Types
    "Collection",
    "EmbeddingRecord",
    "SearchHit",
    "StoreStats",
    "ItemFailure",
    "PopulationResult",
    # Exceptions
    "VectorSearchError",
    "ValidationError",
    "DimensionMismatchError",
    "ProviderError",
    "BatchEmbeddingError",
    "BatchProviderError",
    "BatchValidationError",
    "StoreError",
    "ConfigError",
    "SourceError",
]
