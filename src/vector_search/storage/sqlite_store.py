"""
SQLite embedding store.

Local and test backend. SQLite has no vector type, so vectors are stored as
their JSON literal and cosine distance is registered as a SQL function on
every pooled connection. Ranking is exact (full scan per query).
"""

import logging
import sqlite3
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from ..codec import VectorCodec
from ..core.config import StoreConfig
from ..core.exceptions import StoreError
from ..core.types import Collection, EmbeddingRecord, SearchHit, utc_now
from .base import RECORD_COLUMNS, EmbeddingStore
from .pool import ConnectionPool


logger = logging.getLogger(__name__)

_COLUMNS = ", ".join(RECORD_COLUMNS)


def _cosine_distance(left: str, right: str) -> float:
    return VectorCodec.cosine_distance(VectorCodec.decode(left), VectorCodec.decode(right))


def _timestamp() -> str:
    # Fixed-width ISO strings sort the same as the instants they encode
    return utc_now().isoformat(timespec="microseconds")


class SqliteEmbeddingStore(EmbeddingStore):
    """
    Embedding store backed by a local SQLite file.

    Suitable for development and tests. Use SqlServerEmbeddingStore for
    shared deployments.
    """

    backend_name = "sqlite"

    def __init__(self, pool: ConnectionPool, dimensions: int, db_path: Optional[Path] = None):
        super().__init__(pool, dimensions)
        self.db_path = db_path

    @classmethod
    def from_config(cls, config: StoreConfig, dimensions: int) -> "SqliteEmbeddingStore":
        return cls.from_path(
            config.sqlite_path,
            dimensions,
            pool_size=config.pool_size,
            acquire_timeout=config.acquire_timeout_seconds,
            busy_timeout=float(config.query_timeout_seconds),
        )

    @classmethod
    def from_path(
        cls,
        db_path: Union[str, Path],
        dimensions: int,
        pool_size: int = 4,
        acquire_timeout: float = 2.0,
        busy_timeout: float = 30.0,
    ) -> "SqliteEmbeddingStore":
        """
        Create a store for a database file, creating parent directories.

        Args:
            db_path: SQLite database file
            dimensions: Vector length (D)
            pool_size: Maximum open connections
            acquire_timeout: Seconds to wait for a free connection
            busy_timeout: Seconds a writer waits on a locked database
        """
        db_path = Path(db_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)

        def connect():
            conn = sqlite3.connect(
                str(db_path),
                timeout=busy_timeout,
                check_same_thread=False,
                isolation_level=None,
            )
            conn.create_function("cosine_distance", 2, _cosine_distance, deterministic=True)
            return conn

        pool = ConnectionPool(
            connect,
            max_size=pool_size,
            acquire_timeout=acquire_timeout,
            discard_on=(sqlite3.InterfaceError,),
        )
        logger.debug(f"SQLite embedding store at {db_path}")
        return cls(pool, dimensions, db_path=db_path)

    def init_schema(self) -> None:
        """Create tables and indexes if missing."""
        with self.pool.connection() as conn:
            try:
                conn.execute("BEGIN IMMEDIATE")
                for collection in Collection:
                    table = collection.table_name
                    conn.execute(f"""
                        CREATE TABLE IF NOT EXISTS {table} (
                            record_id INTEGER PRIMARY KEY AUTOINCREMENT,
                            record_key TEXT NOT NULL UNIQUE,
                            owner_id INTEGER NOT NULL,
                            source_text TEXT NOT NULL,
                            embedding TEXT NOT NULL,
                            model_id TEXT NOT NULL,
                            category TEXT,
                            metadata_json TEXT NOT NULL DEFAULT '{{}}',
                            created_at TEXT NOT NULL,
                            updated_at TEXT NOT NULL
                        )
                    """)
                    conn.execute(
                        f"CREATE INDEX IF NOT EXISTS ix_{table}_owner "
                        f"ON {table} (owner_id, updated_at)"
                    )
                    conn.execute(
                        f"CREATE INDEX IF NOT EXISTS ix_{table}_category ON {table} (category)"
                    )
                conn.execute("COMMIT")
            except sqlite3.Error as e:
                self._rollback(conn)
                raise StoreError(f"Failed to initialize schema: {e}") from e
        logger.debug("Initialized embedding schema")

    def reset(self) -> None:
        """Drop all embedding tables and recreate them."""
        with self.pool.connection() as conn:
            try:
                for collection in Collection:
                    conn.execute(f"DROP TABLE IF EXISTS {collection.table_name}")
            except sqlite3.Error as e:
                raise StoreError(f"Failed to drop embedding tables: {e}") from e
        logger.warning("Dropped embedding tables")
        self.init_schema()

    def health_check(self) -> Dict[str, Any]:
        result = {
            "backend": self.backend_name,
            "connected": False,
            "tables_exist": False,
            "vector_ops": False,
        }
        try:
            with self.pool.connection() as conn:
                conn.execute("SELECT 1").fetchone()
                result["connected"] = True

                names = [c.table_name for c in Collection]
                row = conn.execute(
                    "SELECT COUNT(*) FROM sqlite_master WHERE type = 'table' "
                    "AND name IN (?, ?, ?)",
                    names,
                ).fetchone()
                result["tables_exist"] = row[0] == len(names)

                row = conn.execute(
                    "SELECT cosine_distance('[1,2,3]', '[1,2,4]')"
                ).fetchone()
                result["vector_ops"] = row[0] is not None
        except (StoreError, sqlite3.Error) as e:
            result["error"] = str(e)
        result["pool"] = self.pool.stats()
        return result

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
        table = collection.table_name
        now = _timestamp()
        with self.pool.connection() as conn:
            try:
                conn.execute("BEGIN IMMEDIATE")
                conn.execute(
                    f"""
                    INSERT INTO {table} ({_COLUMNS})
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(record_key) DO UPDATE SET
                        owner_id = excluded.owner_id,
                        source_text = excluded.source_text,
                        embedding = excluded.embedding,
                        model_id = excluded.model_id,
                        category = excluded.category,
                        metadata_json = excluded.metadata_json,
                        updated_at = MAX(excluded.updated_at, {table}.updated_at)
                    """,
                    (key, owner_id, source_text, vector_literal, model_id,
                     category, metadata_json, now, now),
                )
                row = conn.execute(
                    f"SELECT {_COLUMNS} FROM {table} WHERE record_key = ?", (key,)
                ).fetchone()
                conn.execute("COMMIT")
            except sqlite3.Error as e:
                self._rollback(conn)
                logger.error(f"Failed to upsert {collection.value} embedding {key}: {e}")
                raise StoreError(
                    f"Failed to upsert {collection.value} embedding {key}: {e}",
                    collection=collection.value,
                    key=key,
                ) from e
        return self._row_to_record(collection, row)

    def _query(
        self,
        collection: Collection,
        vector_literal: str,
        owner_id: Optional[int],
        category: Optional[str],
        limit: int,
        threshold: float,
    ) -> List[SearchHit]:
        conditions = []
        params: List[Any] = [vector_literal]
        if owner_id is not None:
            conditions.append("owner_id = ?")
            params.append(owner_id)
        if category is not None:
            conditions.append("category = ?")
            params.append(category)
        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        params.extend([threshold, limit])

        sql = f"""
            SELECT {_COLUMNS}, distance, similarity FROM (
                SELECT {_COLUMNS}, distance, 1 - distance AS similarity FROM (
                    SELECT {_COLUMNS}, cosine_distance(embedding, ?) AS distance
                    FROM {collection.table_name}
                    {where}
                )
            )
            WHERE similarity >= ?
            ORDER BY similarity DESC, updated_at DESC, record_key ASC
            LIMIT ?
        """
        with self.pool.connection() as conn:
            try:
                rows = conn.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                logger.error(f"Similarity query on {collection.value} failed: {e}")
                raise StoreError(
                    f"Similarity query on {collection.value} failed: {e}",
                    collection=collection.value,
                ) from e

        return [
            SearchHit(
                record=self._row_to_record(collection, row),
                distance=float(row[9]),
                similarity=float(row[10]),
            )
            for row in rows
        ]

    def _get(self, collection: Collection, key: str) -> Optional[EmbeddingRecord]:
        with self.pool.connection() as conn:
            try:
                row = conn.execute(
                    f"SELECT {_COLUMNS} FROM {collection.table_name} WHERE record_key = ?",
                    (key,),
                ).fetchone()
            except sqlite3.Error as e:
                raise StoreError(
                    f"Failed to read {collection.value} embedding {key}: {e}",
                    collection=collection.value,
                    key=key,
                ) from e
        return self._row_to_record(collection, row) if row else None

    def _delete(self, collection: Collection, key: str) -> bool:
        with self.pool.connection() as conn:
            try:
                cursor = conn.execute(
                    f"DELETE FROM {collection.table_name} WHERE record_key = ?", (key,)
                )
            except sqlite3.Error as e:
                raise StoreError(
                    f"Failed to delete {collection.value} embedding {key}: {e}",
                    collection=collection.value,
                    key=key,
                ) from e
        return cursor.rowcount > 0

    def _count(self, collection: Collection) -> int:
        with self.pool.connection() as conn:
            try:
                row = conn.execute(f"SELECT COUNT(*) FROM {collection.table_name}").fetchone()
            except sqlite3.Error as e:
                raise StoreError(
                    f"Failed to count {collection.value} embeddings: {e}",
                    collection=collection.value,
                ) from e
        return int(row[0])

    @staticmethod
    def _rollback(conn) -> None:
        if conn.in_transaction:
            conn.execute("ROLLBACK")
