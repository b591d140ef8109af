"""
Core data types for the vector search engine.

These map to the three embedding tables:
- task_embeddings
- content_embeddings
- profile_embeddings
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class Collection(Enum):
    """Logical collections of embedding records."""
    TASK = "task"
    CONTENT = "content"
    PROFILE = "profile"

    @property
    def table_name(self) -> str:
        return f"{self.value}_embeddings"

    @property
    def category_field(self) -> Optional[str]:
        """Public name of the collection's single filterable column."""
        return _CATEGORY_FIELDS[self]


_CATEGORY_FIELDS = {
    Collection.TASK: "status",
    Collection.CONTENT: "content_type",
    Collection.PROFILE: None,
}


def utc_now() -> datetime:
    """Current UTC time."""
    return datetime.now(timezone.utc)


@dataclass
class EmbeddingRecord:
    """
    One persisted embedding.

    Attributes:
        collection: Collection the record lives in
        key: Natural unique key within the collection
        owner_id: Owning user (None on anonymized search results)
        source_text: Exact text that was embedded
        vector: Embedding vector (fixed length per collection)
        model_id: Embedding model used
        metadata: Opaque JSON payload, stored verbatim
        category: Task status or content type (None for profiles)
        created_at: First insert time (immutable)
        updated_at: Last upsert time
    """
    collection: Collection
    key: str
    owner_id: Optional[int]
    source_text: str
    vector: List[float]
    model_id: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    category: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "collection": self.collection.value,
            "key": self.key,
            "owner_id": self.owner_id,
            "source_text": self.source_text,
            "model_id": self.model_id,
            "category": self.category,
            "metadata": self.metadata,
            "dimensions": len(self.vector),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass
class SearchHit:
    """A record returned by a similarity query with its score."""
    record: EmbeddingRecord
    similarity: float
    distance: float

    @property
    def key(self) -> str:
        return self.record.key

    @property
    def owner_id(self) -> Optional[int]:
        return self.record.owner_id

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the result shape returned to callers."""
        return {
            "key": self.record.key,
            "owner_id": self.record.owner_id,
            "source_text": self.record.source_text,
            "category": self.record.category,
            "metadata": self.record.metadata,
            "similarity": self.similarity,
            "distance": self.distance,
            "created_at": self.record.created_at.isoformat(),
            "updated_at": self.record.updated_at.isoformat(),
        }


@dataclass
class StoreStats:
    """Record counts per collection."""
    task: int = 0
    content: int = 0
    profile: int = 0

    @property
    def total(self) -> int:
        return self.task + self.content + self.profile

    def count_for(self, collection: Collection) -> int:
        return getattr(self, collection.value)

    def to_dict(self) -> Dict[str, int]:
        return {
            "task": self.task,
            "content": self.content,
            "profile": self.profile,
            "total": self.total,
        }


@dataclass
class ItemFailure:
    """A single failed item from a bulk run."""
    index: int
    item_ref: Optional[str]
    error_type: str
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "item_ref": self.item_ref,
            "error_type": self.error_type,
            "message": self.message,
        }


@dataclass
class PopulationResult:
    """
    Tally of a bulk population run.

    Attributes:
        succeeded: Keys of records that were indexed
        failures: Per-item failures with their cause
        started_at: When the run started
        completed_at: When the run finished
    """
    succeeded: List[str] = field(default_factory=list)
    failures: List[ItemFailure] = field(default_factory=list)
    started_at: datetime = field(default_factory=utc_now)
    completed_at: Optional[datetime] = None

    @property
    def success_count(self) -> int:
        return len(self.succeeded)

    @property
    def failure_count(self) -> int:
        return len(self.failures)

    @property
    def total(self) -> int:
        return self.success_count + self.failure_count

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "succeeded": self.success_count,
            "failed": self.failure_count,
            "failures": [f.to_dict() for f in self.failures],
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }
