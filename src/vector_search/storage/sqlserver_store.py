"""
SQL Server embedding store.

Uses the native VECTOR(n) column type and VECTOR_DISTANCE('cosine', ...)
for ranking. Upserts are a single MERGE ... WITH (HOLDLOCK) statement, so
the backend serializes concurrent writers to one key.
"""

import logging
import re
from typing import Any, Dict, List, Optional

try:
    import pyodbc
except ImportError:
    pyodbc = None  # Defer error to runtime when a store is created

from ..core.config import StoreConfig
from ..core.exceptions import StoreError
from ..core.types import Collection, EmbeddingRecord, SearchHit
from .base import EmbeddingStore
from .pool import ConnectionPool


logger = logging.getLogger(__name__)


def _is_valid_identifier(name: str) -> bool:
    """
    Validate that a name is a safe SQL identifier.

    Letters, digits and underscores only, starting with a letter or
    underscore, at most 128 characters.
    """
    if not name or len(name) > 128:
        return False
    return re.match(r"^[a-zA-Z_][a-zA-Z0-9_]*$", name) is not None


class SqlServerEmbeddingStore(EmbeddingStore):
    """
    Embedding store backed by SQL Server 2025+ (native vector support).

    Example:
        >>> config = StoreConfig(password="...")
        >>> store = SqlServerEmbeddingStore.from_config(config, dimensions=768)
        >>> store.init_schema()
    """

    backend_name = "sqlserver"

    def __init__(
        self,
        pool: ConnectionPool,
        dimensions: int,
        schema: str = "vector",
        create_vector_index: bool = False,
    ):
        """
        Initialize the store.

        Args:
            pool: Pool producing pyodbc connections
            dimensions: Vector length (D)
            schema: Schema holding the embedding tables
            create_vector_index: Also create a DiskANN vector index per table
        """
        if not _is_valid_identifier(schema):
            raise ValueError(f"Invalid schema name: {schema}")
        super().__init__(pool, dimensions)
        self.schema = schema
        self.create_vector_index = create_vector_index

    @classmethod
    def from_config(cls, config: StoreConfig, dimensions: int) -> "SqlServerEmbeddingStore":
        """Create a store and its connection pool from configuration."""
        if pyodbc is None:
            raise StoreError(
                "pyodbc is not installed. Install it with: pip install pyodbc"
            )

        connection_string = config.get_connection_string()
        login_timeout = config.login_timeout_seconds
        query_timeout = config.query_timeout_seconds

        def connect():
            conn = pyodbc.connect(connection_string, timeout=login_timeout)
            conn.timeout = query_timeout
            return conn

        pool = ConnectionPool(
            connect,
            max_size=config.pool_size,
            acquire_timeout=config.acquire_timeout_seconds,
            discard_on=(pyodbc.OperationalError, pyodbc.InterfaceError),
        )
        return cls(
            pool,
            dimensions,
            schema=config.schema,
            create_vector_index=config.create_vector_index,
        )

    def _table(self, collection: Collection) -> str:
        return f"[{self.schema}].[{collection.table_name}]"

    def _vector_type(self) -> str:
        return f"VECTOR({int(self.dimensions)})"

    def _select_columns(self, alias: str = "") -> str:
        prefix = f"{alias}." if alias else ""
        return (
            f"{prefix}record_key, {prefix}owner_id, {prefix}source_text, "
            f"CAST({prefix}embedding AS NVARCHAR(MAX)), {prefix}model_id, "
            f"{prefix}category, {prefix}metadata_json, "
            f"{prefix}created_at, {prefix}updated_at"
        )

    # =========================================================================
    # Schema lifecycle
    # =========================================================================

    def init_schema(self) -> None:
        """Create the schema, tables and indexes if missing."""
        with self.pool.connection() as conn:
            cursor = conn.cursor()
            try:
                # Schema name is validated in __init__; CREATE SCHEMA cannot be parameterized.
                cursor.execute(f"""
                    IF NOT EXISTS (SELECT * FROM sys.schemas WHERE name = ?)
                    BEGIN
                        EXEC('CREATE SCHEMA [{self.schema}]')
                    END
                """, (self.schema,))

                for collection in Collection:
                    self._create_table(cursor, collection)

                conn.commit()
                logger.info(f"Initialized embedding schema [{self.schema}]")
            except pyodbc.Error as e:
                logger.error(f"Failed to initialize schema: {e}")
                conn.rollback()
                raise StoreError(f"Failed to initialize schema: {e}") from e

        if self.create_vector_index:
            for collection in Collection:
                self._create_vector_index(collection)

    def _create_table(self, cursor, collection: Collection) -> None:
        table = collection.table_name
        cursor.execute(f"""
            IF NOT EXISTS (SELECT * FROM sys.tables t
                           JOIN sys.schemas s ON t.schema_id = s.schema_id
                           WHERE t.name = ? AND s.name = ?)
            BEGIN
                CREATE TABLE [{self.schema}].[{table}] (
                    record_id BIGINT IDENTITY(1,1) PRIMARY KEY,
                    record_key NVARCHAR(255) NOT NULL,
                    owner_id INT NOT NULL,
                    source_text NVARCHAR(MAX) NOT NULL,
                    embedding {self._vector_type()} NOT NULL,
                    model_id NVARCHAR(100) NOT NULL,
                    category NVARCHAR(100) NULL,
                    metadata_json NVARCHAR(MAX) NOT NULL DEFAULT '{{}}',
                    created_at DATETIME2 NOT NULL,
                    updated_at DATETIME2 NOT NULL
                )
            END
        """, (table, self.schema))

        for index_name, columns, unique in (
            (f"ux_{table}_key", "record_key", True),
            (f"ix_{table}_owner", "owner_id, updated_at", False),
            (f"ix_{table}_category", "category", False),
        ):
            cursor.execute(f"""
                IF NOT EXISTS (SELECT * FROM sys.indexes
                               WHERE name = ?
                               AND object_id = OBJECT_ID('[{self.schema}].[{table}]'))
                BEGIN
                    CREATE {'UNIQUE ' if unique else ''}INDEX {index_name}
                    ON [{self.schema}].[{table}] ({columns})
                END
            """, (index_name,))

    def _create_vector_index(self, collection: Collection) -> None:
        """
        Create a DiskANN cosine index. The feature is preview-gated on some
        servers; failure leaves exact (brute-force) ranking in place.
        """
        table = collection.table_name
        index_name = f"vx_{table}_embedding"
        with self.pool.connection() as conn:
            cursor = conn.cursor()
            try:
                cursor.execute(f"""
                    IF NOT EXISTS (SELECT * FROM sys.indexes
                                   WHERE name = ?
                                   AND object_id = OBJECT_ID('[{self.schema}].[{table}]'))
                    BEGIN
                        CREATE VECTOR INDEX {index_name}
                        ON [{self.schema}].[{table}] (embedding)
                        WITH (METRIC = 'cosine', TYPE = 'diskann')
                    END
                """, (index_name,))
                conn.commit()
                logger.info(f"Vector index ready on {table}")
            except pyodbc.Error as e:
                conn.rollback()
                logger.warning(f"Vector index not created on {table}; using exact search: {e}")

    def reset(self) -> None:
        """Drop all embedding tables and recreate them."""
        with self.pool.connection() as conn:
            cursor = conn.cursor()
            try:
                for collection in Collection:
                    cursor.execute(f"DROP TABLE IF EXISTS {self._table(collection)}")
                conn.commit()
                logger.warning(f"Dropped embedding tables in [{self.schema}]")
            except pyodbc.Error as e:
                conn.rollback()
                raise StoreError(f"Failed to drop embedding tables: {e}") from e
        self.init_schema()

    def health_check(self) -> Dict[str, Any]:
        """
        Report backend health.

        Returns:
            Dict with connected, tables_exist, vector_ops and pool stats;
            'error' is set when the backend could not be reached
        """
        result = {
            "backend": self.backend_name,
            "connected": False,
            "tables_exist": False,
            "vector_ops": False,
            "pool": self.pool.stats(),
        }
        try:
            with self.pool.connection() as conn:
                cursor = conn.cursor()
                cursor.execute("SELECT 1")
                cursor.fetchone()
                result["connected"] = True

                cursor.execute("""
                    SELECT COUNT(*) FROM sys.tables t
                    JOIN sys.schemas s ON t.schema_id = s.schema_id
                    WHERE s.name = ? AND t.name IN (?, ?, ?)
                """, (self.schema, *[c.table_name for c in Collection]))
                result["tables_exist"] = cursor.fetchone()[0] == len(Collection)

                try:
                    cursor.execute("""
                        SELECT VECTOR_DISTANCE('cosine',
                            CAST('[1,2,3]' AS VECTOR(3)),
                            CAST('[1,2,4]' AS VECTOR(3)))
                    """)
                    cursor.fetchone()
                    result["vector_ops"] = True
                except pyodbc.Error as e:
                    logger.warning(f"Vector operation test failed: {e}")
        except (StoreError, pyodbc.Error) as e:
            result["error"] = str(e)
        result["pool"] = self.pool.stats()
        return result

    # =========================================================================
    # Record operations
    # =========================================================================

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
        vector_type = self._vector_type()
        with self.pool.connection() as conn:
            cursor = conn.cursor()
            try:
                # updated_at never moves backwards, even across clock skew between statements
                cursor.execute(
                    f"""
                    MERGE {self._table(collection)} WITH (HOLDLOCK) AS target
                    USING (SELECT ? AS record_key) AS source
                    ON target.record_key = source.record_key
                    WHEN MATCHED THEN
                        UPDATE SET
                            owner_id = ?,
                            source_text = ?,
                            embedding = CAST(? AS {vector_type}),
                            model_id = ?,
                            category = ?,
                            metadata_json = ?,
                            updated_at = CASE WHEN SYSUTCDATETIME() > target.updated_at
                                              THEN SYSUTCDATETIME()
                                              ELSE target.updated_at END
                    WHEN NOT MATCHED THEN
                        INSERT (record_key, owner_id, source_text, embedding, model_id,
                                category, metadata_json, created_at, updated_at)
                        VALUES (?, ?, ?, CAST(? AS {vector_type}), ?, ?, ?,
                                SYSUTCDATETIME(), SYSUTCDATETIME())
                    OUTPUT {self._select_columns('inserted')};
                    """,
                    (
                        key,
                        owner_id,
                        source_text,
                        vector_literal,
                        model_id,
                        category,
                        metadata_json,
                        key,
                        owner_id,
                        source_text,
                        vector_literal,
                        model_id,
                        category,
                        metadata_json,
                    ),
                )
                row = cursor.fetchone()
                conn.commit()
            except pyodbc.Error as e:
                conn.rollback()
                logger.error(f"Failed to upsert {collection.value} embedding {key}: {e}")
                raise StoreError(
                    f"Failed to upsert {collection.value} embedding {key}: {e}",
                    collection=collection.value,
                    key=key,
                ) from e

        if row is None:
            raise StoreError(
                f"Upsert of {collection.value} embedding {key} returned no row",
                collection=collection.value,
                key=key,
            )
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

        sql = f"""
            SELECT TOP (?) {self._select_columns('scored')}, scored.distance, scored.similarity
            FROM (
                SELECT *, 1 - distance AS similarity
                FROM (
                    SELECT record_key, owner_id, source_text, embedding, model_id,
                           category, metadata_json, created_at, updated_at,
                           VECTOR_DISTANCE('cosine', embedding,
                                           CAST(? AS {self._vector_type()})) AS distance
                    FROM {self._table(collection)}
                    {where}
                ) AS ranked
            ) AS scored
            WHERE scored.similarity >= ?
            ORDER BY scored.similarity DESC, scored.updated_at DESC, scored.record_key ASC
        """
        params = [limit] + params + [threshold]

        with self.pool.connection() as conn:
            cursor = conn.cursor()
            try:
                cursor.execute(sql, params)
                rows = cursor.fetchall()
            except pyodbc.Error as e:
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
            cursor = conn.cursor()
            try:
                cursor.execute(
                    f"SELECT {self._select_columns()} FROM {self._table(collection)} "
                    f"WHERE record_key = ?",
                    (key,),
                )
                row = cursor.fetchone()
            except pyodbc.Error as e:
                raise StoreError(
                    f"Failed to read {collection.value} embedding {key}: {e}",
                    collection=collection.value,
                    key=key,
                ) from e
        return self._row_to_record(collection, row) if row else None

    def _delete(self, collection: Collection, key: str) -> bool:
        with self.pool.connection() as conn:
            cursor = conn.cursor()
            try:
                cursor.execute(
                    f"DELETE FROM {self._table(collection)} WHERE record_key = ?",
                    (key,),
                )
                removed = cursor.rowcount > 0
                conn.commit()
            except pyodbc.Error as e:
                conn.rollback()
                logger.error(f"Failed to delete {collection.value} embedding {key}: {e}")
                raise StoreError(
                    f"Failed to delete {collection.value} embedding {key}: {e}",
                    collection=collection.value,
                    key=key,
                ) from e
        return removed

    def _count(self, collection: Collection) -> int:
        with self.pool.connection() as conn:
            cursor = conn.cursor()
            try:
                cursor.execute(f"SELECT COUNT_BIG(*) FROM {self._table(collection)}")
                return int(cursor.fetchone()[0])
            except pyodbc.Error as e:
                raise StoreError(
                    f"Failed to count {collection.value} embeddings: {e}",
                    collection=collection.value,
                ) from e
