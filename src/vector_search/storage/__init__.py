"""
Embedding store implementations.

The default backend is SQL Server (SqlServerEmbeddingStore), which needs
native VECTOR support. SQLite (SqliteEmbeddingStore) is for local
development and tests.

To select backend, set the VECTOR_DB_BACKEND (or DB_BACKEND) environment
variable:
    - VECTOR_DB_BACKEND=sqlserver (default)
    - VECTOR_DB_BACKEND=sqlite
"""

import logging

from ..core.config import StoreConfig
from ..core.exceptions import ConfigError
from .base import EmbeddingStore
from .pool import ConnectionPool
from .sqlite_store import SqliteEmbeddingStore
from .sqlserver_store import SqlServerEmbeddingStore


logger = logging.getLogger(__name__)


def create_embedding_store(config: StoreConfig, dimensions: int) -> EmbeddingStore:
    """
    Create the embedding store for the configured backend.

    Args:
        config: Store configuration
        dimensions: Vector length (D) shared by all collections

    Raises:
        ConfigError: If the backend is not recognized
        StoreError: If the backend driver is unavailable
    """
    if config.backend == "sqlserver":
        logger.debug(f"Using SQL Server embedding store (schema={config.schema})")
        return SqlServerEmbeddingStore.from_config(config, dimensions)
    if config.backend == "sqlite":
        logger.debug(f"Using SQLite embedding store ({config.sqlite_path})")
        return SqliteEmbeddingStore.from_config(config, dimensions)
    raise ConfigError(
        f"Unknown backend: {config.backend}. Supported backends: 'sqlserver', 'sqlite'"
    )


__all__ = [
    "ConnectionPool",
    "EmbeddingStore",
    "SqlServerEmbeddingStore",
    "SqliteEmbeddingStore",
    "create_embedding_store",
]
