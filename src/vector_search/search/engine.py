"""
Similarity search engine.

Application-facing operations over the three collections. Each operation
computes its embedding first and only then touches the store, so a
provider failure never leaves a partial write or holds a connection.
"""

import dataclasses
import logging
import uuid
from typing import Any, Dict, List, Optional, Tuple

from ..core.config import SearchConfig
from ..core.exceptions import ConfigError, ValidationError
from ..core.types import Collection, EmbeddingRecord, SearchHit, StoreStats
from ..providers.base import EmbeddingProvider
from ..storage.base import EmbeddingStore, check_key, check_owner


logger = logging.getLogger(__name__)

PROFILE_FIELDS = ("name", "email", "role")


def task_status(completed: bool) -> str:
    return "completed" if completed else "pending"


def profile_key(owner_id: int, version: int = 1) -> str:
    """Key of a profile record: '<owner_id>:v<version>'."""
    return f"{owner_id}:v{version}"


def profile_text(profile: Dict[str, Any]) -> str:
    """Join the non-empty name, email and role of a profile with spaces."""
    parts = []
    for name in PROFILE_FIELDS:
        value = profile.get(name)
        if value is not None and str(value).strip():
            parts.append(str(value).strip())
    return " ".join(parts)


def _anonymize(hit: SearchHit) -> SearchHit:
    metadata = dict(hit.record.metadata)
    metadata["anonymized"] = True
    record = dataclasses.replace(hit.record, owner_id=None, metadata=metadata)
    return SearchHit(record=record, similarity=hit.similarity, distance=hit.distance)


class SimilaritySearchEngine:
    """
    Index and search tasks, generated content and user profiles.

    The engine performs no retries. ProviderError and StoreError propagate
    to the caller unchanged.

    Example:
        >>> engine = SimilaritySearchEngine(provider, store)
        >>> engine.index_task("todo-1", owner_id=7, task_text="Buy milk", completed=False)
        >>> hits = engine.search_tasks("grocery shopping", owner_id=7, threshold=0.5)
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        store: EmbeddingStore,
        config: Optional[SearchConfig] = None,
    ):
        if provider.dimensions != store.dimensions:
            raise ConfigError(
                f"Provider produces {provider.dimensions}-dimension vectors but the "
                f"store expects {store.dimensions}"
            )
        self.provider = provider
        self.store = store
        self.config = config or SearchConfig()

    # =========================================================================
    # Indexing
    # =========================================================================

    def index_task(
        self,
        key: str,
        owner_id: int,
        task_text: str,
        completed: bool,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> EmbeddingRecord:
        """
        Embed and upsert a task.

        The embedded text is the task text followed by its status, so a
        completed and a pending task with the same wording rank differently.

        Args:
            key: Task id
            owner_id: Owning user
            task_text: Task description
            completed: Completion flag (stored as category 'completed'/'pending')
            metadata: Extra payload; 'completed' is added to it

        Raises:
            ValidationError: If the key, owner or text is invalid
            ProviderError: If embedding fails (nothing is written)
            StoreError: If the write fails
        """
        check_key(key)
        check_owner(owner_id)
        if not isinstance(task_text, str) or not task_text.strip():
            raise ValidationError("task_text must be a non-empty string")

        status = task_status(completed)
        source_text, vector = self._embed(f"{task_text.strip()} {status}")

        payload = dict(metadata or {})
        payload["completed"] = bool(completed)

        record = self.store.upsert(
            Collection.TASK,
            key,
            owner_id,
            source_text,
            vector,
            self.provider.model_id,
            metadata=payload,
            category=status,
        )
        logger.info(
            f"Indexed task {key} for owner {owner_id}",
            extra={"collection": "task", "key": key, "owner_id": owner_id},
        )
        return record

    def index_content(
        self,
        owner_id: int,
        content_type: str,
        text: str,
        metadata: Optional[Dict[str, Any]] = None,
        key: Optional[str] = None,
    ) -> EmbeddingRecord:
        """
        Embed and upsert generated content.

        A new UUID key is generated unless `key` is given, in which case the
        existing content record with that key is replaced. The stored
        source text is the trimmed, truncated text that was embedded.
        """
        if key is not None:
            check_key(key)
        check_owner(owner_id)
        if not isinstance(content_type, str) or not content_type.strip():
            raise ValidationError("content_type must be a non-empty string")

        source_text, vector = self._embed(text)
        key = key or str(uuid.uuid4())

        record = self.store.upsert(
            Collection.CONTENT,
            key,
            owner_id,
            source_text,
            vector,
            self.provider.model_id,
            metadata=dict(metadata or {}),
            category=content_type,
        )
        logger.info(
            f"Indexed {content_type} content {key} for owner {owner_id}",
            extra={"collection": "content", "key": key, "owner_id": owner_id},
        )
        return record

    def index_profile(
        self,
        owner_id: int,
        profile: Dict[str, Any],
        version: int = 1,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> EmbeddingRecord:
        """
        Embed and upsert a user profile.

        The profile dict is kept verbatim in metadata under 'profile'.

        Raises:
            ValidationError: If the profile has no name, email or role
        """
        check_owner(owner_id)
        if not isinstance(profile, dict):
            raise ValidationError("profile must be a mapping")
        text = profile_text(profile)
        if not text:
            raise ValidationError("profile has no name, email or role to embed")

        key = check_key(profile_key(owner_id, version))
        source_text, vector = self._embed(text)

        payload = dict(metadata or {})
        payload["profile"] = profile

        record = self.store.upsert(
            Collection.PROFILE,
            key,
            owner_id,
            source_text,
            vector,
            self.provider.model_id,
            metadata=payload,
        )
        logger.info(
            f"Indexed profile {key}",
            extra={"collection": "profile", "key": key, "owner_id": owner_id},
        )
        return record

    # =========================================================================
    # Search
    # =========================================================================

    def search_tasks(
        self,
        query_text: str,
        owner_id: Optional[int] = None,
        limit: Optional[int] = None,
        threshold: Optional[float] = None,
        include_others: bool = False,
        status: Optional[str] = None,
    ) -> List[SearchHit]:
        """
        Find tasks similar to `query_text`.

        With `include_others` and an owner, the owner's matches come first;
        remaining slots up to `limit` are filled with other owners' matches,
        returned with owner_id None and metadata['anonymized'] set.

        Args:
            query_text: Free-text query
            owner_id: Restrict to this owner's tasks
            limit: Maximum results (config default when None)
            threshold: Minimum similarity (config default when None)
            include_others: Fill remaining slots from other owners
            status: Only 'completed' or 'pending' tasks
        """
        limit, threshold = self._resolve_limits(limit, threshold)
        if owner_id is not None:
            check_owner(owner_id)
        if limit <= 0:
            return []

        extra_filter = ("status", status) if status is not None else None
        vector = self.provider.embed(query_text)
        hits = self.store.query(
            Collection.TASK,
            vector,
            owner_id=owner_id,
            extra_filter=extra_filter,
            limit=limit,
            threshold=threshold,
        )

        if include_others and owner_id is not None and len(hits) < limit:
            # Every qualifying own record is already in `hits`, so this many
            # rows always leaves room for `limit - len(hits)` foreign ones
            candidates = self.store.query(
                Collection.TASK,
                vector,
                extra_filter=extra_filter,
                limit=limit + len(hits),
                threshold=threshold,
            )
            for hit in candidates:
                if len(hits) >= limit:
                    break
                if hit.record.owner_id == owner_id:
                    continue
                hits.append(_anonymize(hit))

        logger.debug(
            f"Task search returned {len(hits)} results",
            extra={"collection": "task", "owner_id": owner_id},
        )
        return hits

    def search_content(
        self,
        query_text: str,
        owner_id: Optional[int] = None,
        content_type: Optional[str] = None,
        limit: Optional[int] = None,
        threshold: Optional[float] = None,
    ) -> List[SearchHit]:
        """Find generated content similar to `query_text`."""
        limit, threshold = self._resolve_limits(limit, threshold)
        if owner_id is not None:
            check_owner(owner_id)
        if limit <= 0:
            return []

        extra_filter = ("content_type", content_type) if content_type is not None else None
        vector = self.provider.embed(query_text)
        return self.store.query(
            Collection.CONTENT,
            vector,
            owner_id=owner_id,
            extra_filter=extra_filter,
            limit=limit,
            threshold=threshold,
        )

    def search_profiles(
        self,
        query_text: str,
        limit: Optional[int] = None,
        threshold: Optional[float] = None,
    ) -> List[SearchHit]:
        """Find user profiles similar to `query_text`."""
        limit, threshold = self._resolve_limits(limit, threshold)
        if limit <= 0:
            return []

        vector = self.provider.embed(query_text)
        return self.store.query(
            Collection.PROFILE,
            vector,
            limit=limit,
            threshold=threshold,
        )

    # =========================================================================
    # Deletion and reporting
    # =========================================================================

    def delete_task(self, key: str) -> bool:
        return self._delete(Collection.TASK, key)

    def delete_content(self, key: str) -> bool:
        return self._delete(Collection.CONTENT, key)

    def delete_profile(self, owner_id: int, version: int = 1) -> bool:
        return self._delete(Collection.PROFILE, profile_key(owner_id, version))

    def stats(self) -> StoreStats:
        return self.store.stats()

    def health(self) -> Dict[str, Any]:
        """
        Combined provider and store health.

        Returns:
            Dict with overall 'status' ('healthy' or 'degraded'), provider
            reachability and the store's own report
        """
        provider_ok = self.provider.health_check()
        store_report = self.store.health_check()
        store_ok = all(
            store_report.get(name) for name in ("connected", "tables_exist", "vector_ops")
        )
        return {
            "status": "healthy" if provider_ok and store_ok else "degraded",
            "provider": {
                "name": self.provider.provider_name,
                "model": self.provider.model_id,
                "dimensions": self.provider.dimensions,
                "healthy": provider_ok,
            },
            "store": store_report,
        }

    # =========================================================================
    # Helpers
    # =========================================================================

    def _delete(self, collection: Collection, key: str) -> bool:
        removed = self.store.delete(collection, key)
        if removed:
            logger.info(
                f"Deleted {collection.value} embedding {key}",
                extra={"collection": collection.value, "key": key},
            )
        return removed

    def _resolve_limits(
        self, limit: Optional[int], threshold: Optional[float]
    ) -> Tuple[int, float]:
        limit = self.config.default_limit if limit is None else limit
        threshold = self.config.default_threshold if threshold is None else threshold
        if isinstance(limit, bool) or not isinstance(limit, int):
            raise ValidationError(f"limit must be an integer, got {limit!r}")
        if isinstance(threshold, bool) or not isinstance(threshold, (int, float)):
            raise ValidationError(f"threshold must be a number, got {threshold!r}")
        if not -1.0 <= threshold <= 1.0:
            raise ValidationError(f"threshold must be within [-1, 1], got {threshold}")
        return limit, float(threshold)

    def _embed(self, text: str) -> Tuple[str, List[float]]:
        """Prepare and embed text, returning exactly what was sent with its vector."""
        prepared = self.provider.prepare_text(text)
        return prepared, self.provider.embed(prepared)
