"""
Bulk population of embedding collections.

Items are indexed one at a time with a fixed pause between them to stay
gentle on the embedding provider. A failing item is recorded and the run
moves on; the caller always gets a tally back.
"""

import logging
import time
from typing import Any, Callable, Dict, Iterable, Optional, Tuple

from ..core.exceptions import ProviderError, StoreError, ValidationError, VectorSearchError
from ..core.types import EmbeddingRecord, ItemFailure, PopulationResult, utc_now
from .engine import SimilaritySearchEngine


logger = logging.getLogger(__name__)


def _todo_ref(todo: Any) -> Optional[str]:
    if isinstance(todo, dict):
        ref = todo.get("_id", todo.get("id"))
        return str(ref) if ref is not None else None
    return None


def todo_to_task(todo: Any) -> Tuple[str, int, str, bool, Dict[str, Any]]:
    """
    Map a todo-service payload onto index_task arguments.

    Accepts '_id' or 'id' for the key and 'userId' or 'user' for the owner.
    'category', 'priority' and 'tags' are carried into metadata.

    Returns:
        (key, owner_id, task_text, completed, metadata)

    Raises:
        ValidationError: If a required field is missing or malformed
    """
    if not isinstance(todo, dict):
        raise ValidationError(f"Todo must be an object, got {type(todo).__name__}")

    key = _todo_ref(todo)
    if not key:
        raise ValidationError("Todo has no '_id' or 'id'")

    raw_owner = todo.get("userId", todo.get("user"))
    if isinstance(raw_owner, dict):
        raw_owner = raw_owner.get("id", raw_owner.get("_id"))
    try:
        owner_id = int(raw_owner)
    except (TypeError, ValueError):
        raise ValidationError(f"Todo {key} has no usable owner id: {raw_owner!r}")

    task_text = todo.get("task")
    if not isinstance(task_text, str) or not task_text.strip():
        raise ValidationError(f"Todo {key} has no task text")

    metadata = {
        name: todo[name]
        for name in ("category", "priority", "tags")
        if todo.get(name) is not None
    }
    return key, owner_id, task_text, bool(todo.get("completed", False)), metadata


# Retried per item; any other error fails the item on the first attempt.
TRANSIENT_ERRORS = (ProviderError, StoreError)


class BulkPopulator:
    """
    Sequential bulk indexer.

    Args:
        engine: Engine used to index each item
        delay_seconds: Pause between consecutive items
        max_attempts: Attempts per item for provider and store errors
        backoff_seconds: Pause before the first retry, doubled on each
            further retry up to `max_backoff_seconds`
        max_backoff_seconds: Upper bound on a single retry pause
        sleep: Sleep function (injectable for tests)
    """

    def __init__(
        self,
        engine: SimilaritySearchEngine,
        delay_seconds: float = 0.1,
        max_attempts: int = 1,
        backoff_seconds: float = 0.25,
        max_backoff_seconds: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if delay_seconds < 0:
            raise ValueError("delay_seconds cannot be negative")
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")
        self.engine = engine
        self.delay_seconds = delay_seconds
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self.max_backoff_seconds = max_backoff_seconds
        self._sleep = sleep

    def _index_with_retry(
        self,
        index_fn: Callable[[Any], EmbeddingRecord],
        item: Any,
        label: str,
    ) -> EmbeddingRecord:
        for attempt in range(1, self.max_attempts + 1):
            try:
                return index_fn(item)
            except TRANSIENT_ERRORS as e:
                if attempt == self.max_attempts:
                    raise
                delay = min(self.backoff_seconds * 2 ** (attempt - 1), self.max_backoff_seconds)
                logger.warning(
                    f"Indexing {label} failed on attempt {attempt}/{self.max_attempts} "
                    f"({type(e).__name__}: {e}); retrying in {delay:.2f}s"
                )
                self._sleep(delay)

    def run(
        self,
        items: Iterable[Any],
        index_fn: Callable[[Any], EmbeddingRecord],
        describe: Callable[[Any], Optional[str]] = lambda item: None,
    ) -> PopulationResult:
        """
        Index every item, collecting failures instead of raising them.

        Only errors from the engine's taxonomy (VectorSearchError) are
        recorded; anything else is a programming error and propagates.
        ValidationError and ConfigError are never retried.

        Args:
            items: Items to index
            index_fn: Indexes one item and returns its record
            describe: Returns a reference for an item, used in failures

        Returns:
            PopulationResult with succeeded keys and per-item failures
        """
        result = PopulationResult()

        for index, item in enumerate(items):
            if index > 0 and self.delay_seconds > 0:
                self._sleep(self.delay_seconds)

            ref = describe(item)
            try:
                record = self._index_with_retry(index_fn, item, f"item {ref or index}")
            except VectorSearchError as error:
                result.failures.append(ItemFailure(
                    index=index,
                    item_ref=ref,
                    error_type=type(error).__name__,
                    message=str(error),
                ))
                logger.warning(
                    f"Failed to index item {ref or index}: {type(error).__name__}: {error}",
                    extra={"item_index": index, "key": ref},
                )
                continue

            result.succeeded.append(record.key)

        result.completed_at = utc_now()
        logger.info(
            f"Population complete: {result.success_count} succeeded, "
            f"{result.failure_count} failed of {result.total}"
        )
        return result

    def populate_tasks(self, todos: Iterable[Any]) -> PopulationResult:
        """Index todo-service payloads into the task collection."""

        def index_todo(todo: Any) -> EmbeddingRecord:
            key, owner_id, task_text, completed, metadata = todo_to_task(todo)
            return self.engine.index_task(key, owner_id, task_text, completed, metadata)

        return self.run(todos, index_todo, describe=_todo_ref)
