"""
Configuration for the vector search engine.

Settings come from three layers, later layers winning:
1. Dataclass defaults
2. An optional YAML file (sections: embedding, store, search)
3. Environment variables (a local .env is loaded first; shell env wins)
"""

import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from dotenv import load_dotenv

from .exceptions import ConfigError


logger = logging.getLogger(__name__)
_DOTENV_LOADED = False

SUPPORTED_BACKENDS = ("sqlserver", "sqlite")


def _load_dotenv_if_present() -> None:
    """Load .env into the process env once; existing variables take precedence."""
    global _DOTENV_LOADED
    if _DOTENV_LOADED:
        return
    load_dotenv(override=False)
    _DOTENV_LOADED = True


def _first_non_empty_env(*keys: str) -> Optional[str]:
    """Return the first non-empty env var value for the given keys."""
    for key in keys:
        value = os.environ.get(key)
        if value is not None and value.strip() != "":
            return value
    return None


def _as_int(name: str, value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be an integer, got {value!r}")


def _as_float(name: str, value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be a number, got {value!r}")


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


@dataclass
class EmbeddingConfig:
    """
    Configuration for the embedding provider.

    Attributes:
        provider: Provider name (only 'ollama' is built in)
        base_url: Base URL for the provider API
        model: Embedding model identifier
        dimensions: Expected vector length (D)
        max_chars: Text longer than this is truncated before submission
        timeout_seconds: Per-request timeout
    """
    provider: str = "ollama"
    base_url: str = "http://localhost:11434"
    model: str = "nomic-embed-text"
    dimensions: int = 768
    max_chars: int = 8000
    timeout_seconds: float = 30.0

    def validate(self) -> None:
        if self.dimensions <= 0:
            raise ConfigError(f"dimensions must be positive, got {self.dimensions}")
        if self.max_chars <= 0:
            raise ConfigError(f"max_chars must be positive, got {self.max_chars}")
        if self.timeout_seconds <= 0:
            raise ConfigError(f"timeout_seconds must be positive, got {self.timeout_seconds}")

    def apply_env(self) -> None:
        base_url = _first_non_empty_env("OLLAMA_BASE_URL", "OLLAMA_HOST")
        if base_url:
            self.base_url = base_url
        model = _first_non_empty_env("OLLAMA_EMBED_MODEL")
        if model:
            self.model = model
        dims = _first_non_empty_env("EMBEDDING_DIMENSIONS")
        if dims:
            self.dimensions = _as_int("EMBEDDING_DIMENSIONS", dims)
        max_chars = _first_non_empty_env("EMBEDDING_MAX_CHARS")
        if max_chars:
            self.max_chars = _as_int("EMBEDDING_MAX_CHARS", max_chars)
        timeout = _first_non_empty_env("EMBEDDING_TIMEOUT_SECONDS")
        if timeout:
            self.timeout_seconds = _as_float("EMBEDDING_TIMEOUT_SECONDS", timeout)


@dataclass
class StoreConfig:
    """
    Configuration for the embedding store backend and its connection pool.

    Attributes:
        backend: 'sqlserver' (default) or 'sqlite'
        host, port, database, username, password, driver: SQL Server settings
        schema: SQL Server schema for the embedding tables
        connection_string: Full ODBC connection string (overrides discrete settings)
        sqlite_path: Database file for the sqlite backend
        pool_size: Maximum concurrent backend connections
        acquire_timeout_seconds: How long to wait for a free connection
        login_timeout_seconds: Connection establishment timeout
        query_timeout_seconds: Per-statement timeout
        create_vector_index: Create the native vector index during init_schema
    """
    backend: str = "sqlserver"
    host: str = "localhost"
    port: int = 1433
    database: str = "VectorSearch"
    username: str = "sa"
    password: str = ""
    driver: str = "ODBC Driver 18 for SQL Server"
    schema: str = "vector"
    connection_string: Optional[str] = None
    sqlite_path: str = "local/vector_search.db"
    pool_size: int = 20
    acquire_timeout_seconds: float = 2.0
    login_timeout_seconds: int = 5
    query_timeout_seconds: int = 30
    create_vector_index: bool = False

    def validate(self) -> None:
        if self.backend not in SUPPORTED_BACKENDS:
            raise ConfigError(
                f"Unknown backend: {self.backend}. "
                f"Supported backends: {', '.join(SUPPORTED_BACKENDS)}"
            )
        if self.pool_size <= 0:
            raise ConfigError(f"pool_size must be positive, got {self.pool_size}")
        if self.acquire_timeout_seconds <= 0:
            raise ConfigError("acquire_timeout_seconds must be positive")

    def apply_env(self) -> None:
        backend = _first_non_empty_env("VECTOR_DB_BACKEND", "DB_BACKEND")
        if backend:
            self.backend = backend.lower()
        conn_str = _first_non_empty_env("VECTOR_SQLSERVER_CONN_STR")
        if conn_str:
            self.connection_string = conn_str
        host = _first_non_empty_env("VECTOR_SQLSERVER_HOST")
        if host:
            self.host = host
        port = _first_non_empty_env("VECTOR_SQLSERVER_PORT")
        if port:
            self.port = _as_int("VECTOR_SQLSERVER_PORT", port)
        database = _first_non_empty_env("VECTOR_SQLSERVER_DATABASE", "MSSQL_DATABASE")
        if database:
            self.database = database
        username = _first_non_empty_env("VECTOR_SQLSERVER_USER")
        if username:
            self.username = username
        password = _first_non_empty_env("VECTOR_SQLSERVER_PASSWORD", "MSSQL_SA_PASSWORD")
        if password:
            self.password = password
        driver = _first_non_empty_env("VECTOR_SQLSERVER_DRIVER")
        if driver:
            self.driver = driver
        schema = _first_non_empty_env("VECTOR_SQLSERVER_SCHEMA")
        if schema:
            self.schema = schema
        sqlite_path = _first_non_empty_env("VECTOR_SQLITE_PATH")
        if sqlite_path:
            self.sqlite_path = sqlite_path
        pool_size = _first_non_empty_env("VECTOR_DB_POOL_SIZE")
        if pool_size:
            self.pool_size = _as_int("VECTOR_DB_POOL_SIZE", pool_size)
        query_timeout = _first_non_empty_env("VECTOR_DB_QUERY_TIMEOUT_SECONDS")
        if query_timeout:
            self.query_timeout_seconds = _as_int("VECTOR_DB_QUERY_TIMEOUT_SECONDS", query_timeout)
        vector_index = _first_non_empty_env("VECTOR_DB_CREATE_VECTOR_INDEX")
        if vector_index:
            self.create_vector_index = _as_bool(vector_index)

    def get_connection_string(self) -> str:
        """Build the ODBC connection string."""
        if self.connection_string:
            return self.connection_string

        return (
            f"Driver={{{self.driver}}};"
            f"Server={self.host},{self.port};"
            f"Database={self.database};"
            f"UID={self.username};"
            f"PWD={self.password};"
            f"TrustServerCertificate=yes"
        )


@dataclass
class SearchConfig:
    """
    Defaults for search calls and the bulk populator.

    Attributes:
        default_limit: Result cap when the caller gives none
        default_threshold: Minimum similarity when the caller gives none
        populate_delay_seconds: Pause between items during bulk population
        populate_max_attempts: Per-item attempts during bulk population
        todo_service_url: Base URL of the todo service (populate source)
        auth_token: Bearer token for the todo service
    """
    default_limit: int = 10
    default_threshold: float = 0.7
    populate_delay_seconds: float = 0.1
    populate_max_attempts: int = 1
    todo_service_url: str = "http://localhost:3002"
    auth_token: Optional[str] = None

    def validate(self) -> None:
        if not -1.0 <= self.default_threshold <= 1.0:
            raise ConfigError("default_threshold must be within [-1, 1]")
        if self.populate_delay_seconds < 0:
            raise ConfigError("populate_delay_seconds cannot be negative")
        if self.populate_max_attempts < 1:
            raise ConfigError("populate_max_attempts must be at least 1")

    def apply_env(self) -> None:
        url = _first_non_empty_env("TODO_SERVICE_URL")
        if url:
            self.todo_service_url = url
        token = _first_non_empty_env("AUTH_TOKEN")
        if token:
            self.auth_token = token
        delay = _first_non_empty_env("POPULATE_DELAY_SECONDS")
        if delay:
            self.populate_delay_seconds = _as_float("POPULATE_DELAY_SECONDS", delay)


@dataclass
class Settings:
    """Aggregate configuration for the engine, store and CLI."""
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    search: SearchConfig = field(default_factory=SearchConfig)

    @classmethod
    def from_env(cls) -> "Settings":
        """Create settings from defaults plus environment variables."""
        return cls.from_dict({})

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "Settings":
        """
        Create settings from a YAML file, then apply environment overrides.

        Raises:
            ConfigError: If the file is missing, unreadable or has unknown keys
        """
        path = Path(path)
        if not path.exists():
            raise ConfigError(f"Config file not found: {path}")

        logger.info(f"Loading config from: {path}")

        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigError(f"Config file {path} must contain a mapping")

        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Settings":
        _load_dotenv_if_present()

        unknown = set(data) - {"embedding", "store", "search"}
        if unknown:
            raise ConfigError(f"Unknown config sections: {', '.join(sorted(unknown))}")

        settings = cls(
            embedding=_build_section(EmbeddingConfig, data.get("embedding")),
            store=_build_section(StoreConfig, data.get("store")),
            search=_build_section(SearchConfig, data.get("search")),
        )
        for section in (settings.embedding, settings.store, settings.search):
            section.apply_env()
            section.validate()
        return settings


def _build_section(section_cls, values: Optional[Dict[str, Any]]):
    values = values or {}
    if not isinstance(values, dict):
        raise ConfigError(f"Config section for {section_cls.__name__} must be a mapping")
    known = {f.name for f in fields(section_cls)}
    unknown = set(values) - known
    if unknown:
        raise ConfigError(
            f"Unknown keys for {section_cls.__name__}: {', '.join(sorted(unknown))}"
        )
    coerced = {}
    for f in fields(section_cls):
        if f.name not in values:
            continue
        name = f"{section_cls.__name__}.{f.name}"
        value = values[f.name]
        if f.type is int:
            value = _as_int(name, value)
        elif f.type is float:
            value = _as_float(name, value)
        elif f.type is bool:
            value = _as_bool(value)
        coerced[f.name] = value
    return section_cls(**coerced)
