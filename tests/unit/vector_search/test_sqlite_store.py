"""
Unit tests for the embedding store contract, run against the SQLite backend.

Tests for:
- Upsert idempotence and full replacement
- Dimension invariant
- Similarity ordering, tie-break and threshold filtering
- Owner isolation and category filtering
- Delete, stats, reset and health
"""

import threading

import pytest

from vector_search.core.exceptions import DimensionMismatchError, ValidationError
from vector_search.core.types import Collection
from vector_search.storage.sqlite_store import SqliteEmbeddingStore


def _upsert(store, key, vector, owner_id=1, text=None, collection=Collection.TASK, **kwargs):
    return store.upsert(
        collection,
        key,
        owner_id,
        text or f"text for {key}",
        vector,
        "test-model",
        **kwargs,
    )


class TestUpsert:
    """Tests for EmbeddingStore.upsert."""

    def test_insert_returns_persisted_record(self, sqlite_store, unit_vector):
        record = _upsert(
            sqlite_store, "todo-1", unit_vector(1, 2),
            metadata={"tags": ["a"], "priority": 2}, category="pending",
        )

        assert record.key == "todo-1"
        assert record.owner_id == 1
        assert record.vector == unit_vector(1, 2)
        assert record.metadata == {"tags": ["a"], "priority": 2}
        assert record.category == "pending"
        assert record.created_at == record.updated_at
        assert record.created_at.tzinfo is not None

    def test_upsert_is_idempotent(self, sqlite_store, unit_vector):
        first = _upsert(sqlite_store, "todo-1", unit_vector(1), text="Buy milk")
        second = _upsert(sqlite_store, "todo-1", unit_vector(1), text="Buy milk")

        assert sqlite_store.stats().task == 1
        assert second.created_at == first.created_at
        assert second.updated_at >= first.updated_at
        assert second.source_text == first.source_text

    def test_second_upsert_fully_replaces(self, sqlite_store, unit_vector):
        _upsert(sqlite_store, "todo-1", unit_vector(1), text="text A",
                metadata={"old": True}, category="pending")
        _upsert(sqlite_store, "todo-1", unit_vector(0, 1), owner_id=2, text="text B",
                category="completed")

        record = sqlite_store.get(Collection.TASK, "todo-1")
        assert sqlite_store.stats().task == 1
        assert record.source_text == "text B"
        assert record.vector == unit_vector(0, 1)
        assert record.owner_id == 2
        assert record.metadata == {}
        assert record.category == "completed"

    def test_collections_are_independent(self, sqlite_store, unit_vector):
        _upsert(sqlite_store, "same-key", unit_vector(1), collection=Collection.TASK)
        _upsert(sqlite_store, "same-key", unit_vector(1), collection=Collection.CONTENT)

        stats = sqlite_store.stats()
        assert stats.task == 1
        assert stats.content == 1
        assert stats.profile == 0
        assert stats.total == 2

    @pytest.mark.parametrize("length", [15, 17, 1])
    def test_wrong_dimension_writes_nothing(self, sqlite_store, length):
        with pytest.raises(DimensionMismatchError):
            _upsert(sqlite_store, "todo-1", [0.5] * length)

        assert sqlite_store.stats().total == 0

    @pytest.mark.parametrize("key,text", [("", "text"), ("   ", "text"), ("k", ""), ("k", "  ")])
    def test_empty_key_or_text_is_rejected(self, sqlite_store, unit_vector, key, text):
        with pytest.raises(ValidationError):
            sqlite_store.upsert(Collection.TASK, key, 1, text, unit_vector(1), "test-model")

        assert sqlite_store.stats().total == 0

    def test_unserializable_metadata_is_rejected(self, sqlite_store, unit_vector):
        with pytest.raises(ValidationError):
            _upsert(sqlite_store, "todo-1", unit_vector(1), metadata={"when": object()})

    def test_concurrent_upserts_leave_one_consistent_record(self, sqlite_store, unit_vector):
        errors = []

        def writer(n):
            try:
                _upsert(sqlite_store, "todo-1", unit_vector(n + 1), text=f"text {n}",
                        metadata={"n": n})
            except Exception as e:  # surfaced through `errors`
                errors.append(e)

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        record = sqlite_store.get(Collection.TASK, "todo-1")
        n = record.metadata["n"]
        assert record.source_text == f"text {n}"
        assert record.vector == unit_vector(n + 1)
        assert sqlite_store.stats().task == 1


class TestQuery:
    """Tests for EmbeddingStore.query."""

    def test_results_are_ordered_and_thresholded(self, sqlite_store, unit_vector):
        _upsert(sqlite_store, "exact", unit_vector(1, 0))
        _upsert(sqlite_store, "close", unit_vector(1, 0.5))
        _upsert(sqlite_store, "far", unit_vector(0, 1))
        _upsert(sqlite_store, "opposite", unit_vector(-1, 0))

        hits = sqlite_store.query(Collection.TASK, unit_vector(1, 0), threshold=0.5)

        assert [h.key for h in hits] == ["exact", "close"]
        assert hits[0].similarity == pytest.approx(1.0)
        assert hits[1].similarity == pytest.approx(1 / (1.25 ** 0.5))
        similarities = [h.similarity for h in hits]
        assert similarities == sorted(similarities, reverse=True)
        for hit in hits:
            assert hit.similarity >= 0.5
            assert hit.distance == pytest.approx(1 - hit.similarity)

    def test_negative_threshold_includes_opposites(self, sqlite_store, unit_vector):
        _upsert(sqlite_store, "opposite", unit_vector(-1, 0))

        hits = sqlite_store.query(Collection.TASK, unit_vector(1, 0), threshold=-1.0)

        assert [h.key for h in hits] == ["opposite"]
        assert hits[0].similarity == pytest.approx(-1.0)

    def test_ties_break_on_recency_then_key(self, sqlite_store, unit_vector):
        _upsert(sqlite_store, "b", unit_vector(1))
        _upsert(sqlite_store, "a", unit_vector(1))
        _upsert(sqlite_store, "c", unit_vector(1))
        # Re-upsert makes "b" the most recently updated
        _upsert(sqlite_store, "b", unit_vector(1))

        hits = sqlite_store.query(Collection.TASK, unit_vector(1), threshold=0.0)

        assert hits[0].key == "b"
        rest = hits[1:]
        expected = sorted(rest, key=lambda h: (-h.record.updated_at.timestamp(), h.key))
        assert [h.key for h in rest] == [h.key for h in expected]

    def test_limit_caps_results(self, sqlite_store, unit_vector):
        for n in range(5):
            _upsert(sqlite_store, f"todo-{n}", unit_vector(1, n * 0.1))

        hits = sqlite_store.query(Collection.TASK, unit_vector(1), limit=2, threshold=0.0)

        assert [h.key for h in hits] == ["todo-0", "todo-1"]

    @pytest.mark.parametrize("limit", [0, -3])
    def test_non_positive_limit_returns_empty(self, sqlite_store, unit_vector, limit):
        _upsert(sqlite_store, "todo-1", unit_vector(1))

        assert sqlite_store.query(Collection.TASK, unit_vector(1), limit=limit) == []

    def test_owner_isolation(self, sqlite_store, unit_vector):
        _upsert(sqlite_store, "mine", unit_vector(1), owner_id=7)
        _upsert(sqlite_store, "theirs", unit_vector(1), owner_id=8)

        hits = sqlite_store.query(Collection.TASK, unit_vector(1), owner_id=7, threshold=0.0)

        assert [h.key for h in hits] == ["mine"]
        assert all(h.owner_id == 7 for h in hits)

    def test_category_filter(self, sqlite_store, unit_vector):
        _upsert(sqlite_store, "done", unit_vector(1), category="completed")
        _upsert(sqlite_store, "open", unit_vector(1), category="pending")

        hits = sqlite_store.query(
            Collection.TASK, unit_vector(1), extra_filter=("status", "pending"), threshold=0.0
        )

        assert [h.key for h in hits] == ["open"]

    def test_content_type_filter(self, sqlite_store, unit_vector):
        _upsert(sqlite_store, "s1", unit_vector(1), collection=Collection.CONTENT, category="summary")
        _upsert(sqlite_store, "p1", unit_vector(1), collection=Collection.CONTENT, category="plan")

        hits = sqlite_store.query(
            Collection.CONTENT, unit_vector(1), extra_filter=("content_type", "plan"), threshold=0.0
        )

        assert [h.key for h in hits] == ["p1"]

    @pytest.mark.parametrize("collection,extra_filter", [
        (Collection.TASK, ("content_type", "plan")),
        (Collection.CONTENT, ("status", "pending")),
        (Collection.PROFILE, ("status", "pending")),
        (Collection.TASK, ("status",)),
    ])
    def test_unknown_filter_field(self, sqlite_store, unit_vector, collection, extra_filter):
        with pytest.raises(ValidationError):
            sqlite_store.query(collection, unit_vector(1), extra_filter=extra_filter)

    @pytest.mark.parametrize("threshold", [-1.01, 1.5, float("nan")])
    def test_threshold_out_of_range(self, sqlite_store, unit_vector, threshold):
        with pytest.raises(ValidationError):
            sqlite_store.query(Collection.TASK, unit_vector(1), threshold=threshold)

    def test_query_dimension_mismatch(self, sqlite_store):
        with pytest.raises(ValidationError):
            sqlite_store.query(Collection.TASK, [1.0, 0.0])

    def test_empty_collection(self, sqlite_store, unit_vector):
        assert sqlite_store.query(Collection.PROFILE, unit_vector(1), threshold=-1.0) == []

    def test_zero_vector_scores_zero(self, sqlite_store, unit_vector):
        _upsert(sqlite_store, "blank", unit_vector())

        hits = sqlite_store.query(Collection.TASK, unit_vector(1), threshold=0.0)

        assert [h.key for h in hits] == ["blank"]
        assert hits[0].similarity == pytest.approx(0.0)


class TestDeleteAndLifecycle:
    """Tests for delete, stats, reset and health."""

    def test_delete(self, sqlite_store, unit_vector):
        _upsert(sqlite_store, "todo-1", unit_vector(1))

        assert sqlite_store.delete(Collection.TASK, "todo-1") is True
        assert sqlite_store.get(Collection.TASK, "todo-1") is None
        assert sqlite_store.delete(Collection.TASK, "todo-1") is False

    def test_delete_missing_key(self, sqlite_store):
        assert sqlite_store.delete(Collection.TASK, "nope") is False

    def test_init_schema_is_idempotent(self, sqlite_store, unit_vector):
        _upsert(sqlite_store, "todo-1", unit_vector(1))

        sqlite_store.init_schema()

        assert sqlite_store.stats().task == 1

    def test_reset_empties_all_collections(self, sqlite_store, unit_vector):
        for collection in Collection:
            _upsert(sqlite_store, "k", unit_vector(1), collection=collection)

        sqlite_store.reset()

        assert sqlite_store.stats().total == 0

    def test_health_check(self, sqlite_store):
        report = sqlite_store.health_check()

        assert report["backend"] == "sqlite"
        assert report["connected"] is True
        assert report["tables_exist"] is True
        assert report["vector_ops"] is True
        assert report["pool"]["max_size"] == 4

    def test_health_before_init(self, tmp_path):
        store = SqliteEmbeddingStore.from_path(tmp_path / "empty.db", dimensions=4)
        try:
            report = store.health_check()
        finally:
            store.close()

        assert report["connected"] is True
        assert report["tables_exist"] is False

    def test_data_survives_reopen(self, tmp_path, unit_vector):
        path = tmp_path / "persist.db"
        store = SqliteEmbeddingStore.from_path(path, dimensions=16)
        store.init_schema()
        _upsert(store, "todo-1", unit_vector(1))
        store.close()

        reopened = SqliteEmbeddingStore.from_path(path, dimensions=16)
        try:
            assert reopened.get(Collection.TASK, "todo-1").vector == unit_vector(1)
        finally:
            reopened.close()
