"""
Custom exceptions for the vector search engine.
"""


class VectorSearchError(Exception):
    """Base exception for all vector search errors."""
    pass


class ValidationError(VectorSearchError):
    """
    Input failed an embedding-relevant shape check.

    Raised when:
    - Text is empty after trimming
    - A vector has the wrong dimension or non-finite components
    - limit / threshold / filter arguments are invalid

    Never retried.
    """
    pass


class DimensionMismatchError(ValidationError):
    """Two vectors (or a vector and a collection) disagree on length."""

    def __init__(self, message: str, expected: int = None, actual: int = None):
        super().__init__(message)
        self.expected = expected
        self.actual = actual


class ProviderError(VectorSearchError):
    """
    Error communicating with an embedding provider.

    Raised when:
    - Provider is unreachable
    - Request times out
    - Provider returns an error response
    - Response payload is malformed (non-numeric, wrong arity)
    """

    def __init__(self, message: str, provider: str = None, status_code: int = None):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


class BatchEmbeddingError(VectorSearchError):
    """
    An item in a sequential batch failed; remaining items were not embedded.

    Raised as BatchProviderError or BatchValidationError so the failed
    item keeps its place in the hierarchy.
    """

    def __init__(self, message: str, index: int):
        super().__init__(message)
        self.index = index


class BatchProviderError(BatchEmbeddingError, ProviderError):
    """A batch item failed at the provider."""

    def __init__(self, message: str, index: int, provider: str = None, status_code: int = None):
        super().__init__(message, index)
        self.provider = provider
        self.status_code = status_code


class BatchValidationError(BatchEmbeddingError, ValidationError):
    """A batch item was rejected before reaching the provider."""
    pass


class StoreError(VectorSearchError):
    """
    Error persisting or reading embedding records.

    Raised when:
    - The backend is unreachable or the pool is exhausted
    - A statement times out
    - A constraint is violated
    """

    def __init__(self, message: str, collection: str = None, key: str = None):
        super().__init__(message)
        self.collection = collection
        self.key = key


class ConfigError(VectorSearchError):
    """
    Error in configuration.

    Raised when:
    - Configuration file is missing or invalid
    - A value is out of its valid range
    - An unknown backend is requested
    """
    pass


class SourceError(VectorSearchError):
    """
    Error fetching items from an upstream source (e.g. the todo service).

    Raised when:
    - The source is unreachable or times out
    - The source returns a non-success status
    - The payload is not the expected shape
    """

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.status_code = status_code
