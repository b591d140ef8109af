"""
Embedding store interface.

Stores own the three embedding collections and provide upsert-by-key
writes and similarity-ranked reads. Argument checks are shared here so
every backend rejects the same inputs before touching the database.
"""

import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..codec import VectorCodec
from ..core.exceptions import DimensionMismatchError, ValidationError
from ..core.types import Collection, EmbeddingRecord, SearchHit, StoreStats
from .pool import ConnectionPool


logger = logging.getLogger(__name__)

# Column order used by every backend's SELECT / OUTPUT lists
RECORD_COLUMNS = (
    "record_key",
    "owner_id",
    "source_text",
    "embedding",
    "model_id",
    "category",
    "metadata_json",
    "created_at",
    "updated_at",
)


def check_key(key: str) -> str:
    """Reject empty keys and keys longer than the 255-character column."""
    if not isinstance(key, str) or not key.strip():
        raise ValidationError("key must be a non-empty string")
    if len(key) > 255:
        raise ValidationError("key cannot be longer than 255 characters")
    return key


def check_owner(owner_id: int) -> None:
    if isinstance(owner_id, bool) or not isinstance(owner_id, int):
        raise ValidationError(f"owner_id must be an integer, got {owner_id!r}")


class EmbeddingStore(ABC):
    """
    Abstract base class for embedding stores.

    Args:
        pool: Bounded connection pool owned by the store
        dimensions: Vector length (D) every record must have
    """

    backend_name = "unknown"

    def __init__(self, pool: ConnectionPool, dimensions: int):
        if dimensions <= 0:
            raise ValueError(f"dimensions must be positive, got {dimensions}")
        self.pool = pool
        self.dimensions = dimensions

    # =========================================================================
    # Public operations
    # =========================================================================

    def upsert(
        self,
        collection: Collection,
        key: str,
        owner_id: int,
        source_text: str,
        vector: Sequence[float],
        model_id: str,
        metadata: Optional[Dict[str, Any]] = None,
        category: Optional[str] = None,
    ) -> EmbeddingRecord:
        """
        Insert a record, or fully replace the record with the same key.

        The write is a single atomic statement in the backend, so concurrent
        upserts to one key never leave a mix of fields.

        Returns:
            The persisted record

        Raises:
            ValidationError: If key, text, owner or vector are invalid
            StoreError: If the backend write fails
        """
        self._check_collection(collection)
        key = check_key(key)
        check_owner(owner_id)
        if not isinstance(source_text, str) or not source_text.strip():
            raise ValidationError("source_text must be a non-empty string")
        if not isinstance(model_id, str) or not model_id:
            raise ValidationError("model_id must be a non-empty string")
        self._check_dimension(vector)
        literal = VectorCodec.encode(vector)
        metadata_json = self._encode_metadata(metadata)

        record = self._upsert(
            collection, key, owner_id, source_text, literal,
            model_id, category, metadata_json,
        )
        logger.debug(
            f"Upserted {collection.value} embedding {key}",
            extra={"collection": collection.value, "key": key, "owner_id": owner_id},
        )
        return record

    def query(
        self,
        collection: Collection,
        query_vector: Sequence[float],
        owner_id: Optional[int] = None,
        extra_filter: Optional[Tuple[str, Any]] = None,
        limit: int = 10,
        threshold: float = 0.7,
    ) -> List[SearchHit]:
        """
        Rank records by cosine similarity to `query_vector`.

        Results have similarity >= threshold and are ordered by similarity
        descending, then most recently updated, then key.

        Args:
            collection: Collection to search
            query_vector: Vector of length D
            owner_id: Restrict to this owner when given
            extra_filter: (field, value) equality filter on the collection's
                category field ('status' for tasks, 'content_type' for content)
            limit: Maximum results; <= 0 returns an empty list
            threshold: Minimum similarity in [-1, 1]

        Raises:
            ValidationError: For a bad threshold, filter, or vector dimension
            StoreError: If the backend read fails
        """
        self._check_collection(collection)
        if isinstance(limit, bool) or not isinstance(limit, int):
            raise ValidationError(f"limit must be an integer, got {limit!r}")
        if isinstance(threshold, bool) or not isinstance(threshold, (int, float)):
            raise ValidationError(f"threshold must be a number, got {threshold!r}")
        if not -1.0 <= threshold <= 1.0:
            raise ValidationError(f"threshold must be within [-1, 1], got {threshold}")
        if owner_id is not None:
            check_owner(owner_id)
        category = self._resolve_filter(collection, extra_filter)
        self._check_dimension(query_vector)

        if limit <= 0:
            return []

        literal = VectorCodec.encode(query_vector)
        hits = self._query(collection, literal, owner_id, category, limit, float(threshold))
        logger.debug(
            f"Query on {collection.value} returned {len(hits)} hits "
            f"(limit={limit}, threshold={threshold})",
            extra={"collection": collection.value, "owner_id": owner_id},
        )
        return hits

    def get(self, collection: Collection, key: str) -> Optional[EmbeddingRecord]:
        """Fetch one record by key, or None."""
        self._check_collection(collection)
        return self._get(collection, check_key(key))

    def delete(self, collection: Collection, key: str) -> bool:
        """
        Delete a record by key.

        Returns:
            True if a row was removed, False if the key did not exist
        """
        self._check_collection(collection)
        key = check_key(key)
        removed = self._delete(collection, key)
        logger.debug(
            f"Delete {collection.value} embedding {key}: removed={removed}",
            extra={"collection": collection.value, "key": key},
        )
        return removed

    def stats(self) -> StoreStats:
        """Count records per collection."""
        counts = {collection.value: self._count(collection) for collection in Collection}
        return StoreStats(**counts)

    def close(self) -> None:
        """Release all pooled connections."""
        self.pool.close()

    # =========================================================================
    # Backend hooks
    # =========================================================================

    @abstractmethod
    def init_schema(self) -> None:
        """Create tables and indexes if they do not exist."""
        pass

    @abstractmethod
    def reset(self) -> None:
        """Drop and recreate all embedding tables."""
        pass

    @abstractmethod
    def health_check(self) -> Dict[str, Any]:
        """Report connectivity, schema and vector-operation status."""
        pass

    @abstractmethod
    def _upsert(
        self,
        collection: Collection,
        key: str,
        owner_id: int,
        source_text: str,
        vector_literal: str,
        model_id: str,
        category: Optional[str],
        metadata_json: str,
    ) -> EmbeddingRecord:
        pass

    @abstractmethod
    def _query(
        self,
        collection: Collection,
        vector_literal: str,
        owner_id: Optional[int],
        category: Optional[str],
        limit: int,
        threshold: float,
    ) -> List[SearchHit]:
        pass

    @abstractmethod
    def _get(self, collection: Collection, key: str) -> Optional[EmbeddingRecord]:
        pass

    @abstractmethod
    def _delete(self, collection: Collection, key: str) -> bool:
        pass

    @abstractmethod
    def _count(self, collection: Collection) -> int:
        pass

    # =========================================================================
    # Shared helpers
    # =========================================================================

    @staticmethod
    def _check_collection(collection: Collection) -> None:
        if not isinstance(collection, Collection):
            raise ValidationError(f"Unknown collection: {collection!r}")

    def _check_dimension(self, vector: Sequence[float]) -> None:
        if vector is None or len(vector) != self.dimensions:
            actual = 0 if vector is None else len(vector)
            raise DimensionMismatchError(
                f"Vector has {actual} dimensions, collection expects {self.dimensions}",
                expected=self.dimensions,
                actual=actual,
            )

    @staticmethod
    def _resolve_filter(
        collection: Collection, extra_filter: Optional[Tuple[str, Any]]
    ) -> Optional[str]:
        if extra_filter is None:
            return None
        try:
            name, value = extra_filter
        except (TypeError, ValueError):
            raise ValidationError("extra_filter must be a (field, value) pair")
        if collection.category_field is None or name != collection.category_field:
            raise ValidationError(
                f"Collection {collection.value} cannot be filtered on {name!r}"
            )
        if value is None:
            return None
        return str(value)

    @staticmethod
    def _encode_metadata(metadata: Optional[Dict[str, Any]]) -> str:
        if metadata is None:
            return "{}"
        if not isinstance(metadata, dict):
            raise ValidationError("metadata must be a mapping")
        try:
            return json.dumps(metadata)
        except (TypeError, ValueError) as e:
            raise ValidationError(f"metadata is not JSON serializable: {e}") from e

    @staticmethod
    def _parse_datetime(value: Any) -> datetime:
        """Normalize a backend timestamp to an aware UTC datetime."""
        if isinstance(value, datetime):
            parsed = value
        else:
            parsed = datetime.fromisoformat(str(value))
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed

    def _row_to_record(self, collection: Collection, row: Sequence[Any]) -> EmbeddingRecord:
        """Build a record from a row in RECORD_COLUMNS order."""
        (key, owner_id, source_text, embedding, model_id,
         category, metadata_json, created_at, updated_at) = row[:len(RECORD_COLUMNS)]
        return EmbeddingRecord(
            collection=collection,
            key=key,
            owner_id=int(owner_id),
            source_text=source_text,
            vector=VectorCodec.decode(embedding),
            model_id=model_id,
            metadata=json.loads(metadata_json) if metadata_json else {},
            category=category,
            created_at=self._parse_datetime(created_at),
            updated_at=self._parse_datetime(updated_at),
        )
