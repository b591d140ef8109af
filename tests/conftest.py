"""
Shared test fixtures and configuration for pytest.
"""

import hashlib
import logging
import math
import os
import re
import sys
from pathlib import Path
from typing import Any, List

import pytest

# Add src directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from vector_search.core.config import StoreConfig
from vector_search.providers.base import EmbeddingProvider
from vector_search.storage.sqlite_store import SqliteEmbeddingStore


logger = logging.getLogger(__name__)

TEST_DIMENSIONS = 16


# ============================================================================
# Environment detection
# ============================================================================

def sqlserver_store_config() -> StoreConfig:
    """SQL Server settings for integration tests, from the environment."""
    config = StoreConfig()
    config.apply_env()
    config.backend = "sqlserver"
    config.schema = os.environ.get("VECTOR_SQLSERVER_TEST_SCHEMA", "test_vector")
    config.pool_size = 4
    return config


def is_sqlserver_available() -> bool:
    """Check if SQL Server is available for testing."""
    password = os.environ.get("VECTOR_SQLSERVER_PASSWORD") or os.environ.get("MSSQL_SA_PASSWORD")
    if not password:
        return False

    try:
        import pyodbc

        conn = pyodbc.connect(sqlserver_store_config().get_connection_string(), timeout=5)
        conn.close()
        return True

    except Exception as e:
        logger.debug(f"SQL Server not available: {e}")
        return False


# ============================================================================
# Pytest hooks
# ============================================================================

def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests (no external dependencies)")
    config.addinivalue_line("markers", "integration: Integration tests (requires SQL Server)")


def pytest_collection_modifyitems(config, items):
    """Automatically skip integration tests if SQL Server is not available."""
    if not any("integration" in item.keywords for item in items):
        return
    if is_sqlserver_available():
        return

    skip_sqlserver = pytest.mark.skip(
        reason="SQL Server not available (set MSSQL_SA_PASSWORD and ensure SQL Server 2025 is running)"
    )

    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_sqlserver)


# ============================================================================
# Fake provider
# ============================================================================

# Words mapped onto shared concept axes so related phrasings land close
# together. Unknown words are hashed onto the remaining axes.
CONCEPTS = {
    "groceries": ("buy", "milk", "grocery", "groceries", "shopping", "bread", "eggs", "store"),
    "work": ("report", "meeting", "email", "presentation", "deadline", "office"),
    "fitness": ("run", "gym", "workout", "exercise", "yoga"),
    "home": ("clean", "laundry", "dishes", "vacuum", "kitchen"),
    "status": ("completed", "pending"),
    "engineering": ("engineer", "developer", "backend", "python", "software"),
    "design": ("designer", "ux", "figma", "ui"),
}
CONCEPT_AXES = {concept: index for index, concept in enumerate(CONCEPTS)}
WORD_AXES = {word: CONCEPT_AXES[concept] for concept, words in CONCEPTS.items() for word in words}


class FakeEmbeddingProvider(EmbeddingProvider):
    """
    Deterministic bag-of-concepts provider.

    Records every text it embeds; `fail_on` makes texts containing a
    substring raise the given exception instead.
    """

    provider_name = "fake"

    def __init__(self, dimensions: int = TEST_DIMENSIONS, max_chars: int = 8000):
        super().__init__(model="fake-embed", dimensions=dimensions, max_chars=max_chars)
        self.calls: List[str] = []
        self.fail_on = {}
        self.healthy = True

    def _request_embedding(self, text: str) -> Any:
        self.calls.append(text)
        for needle, error in self.fail_on.items():
            if needle in text:
                raise error

        vector = [0.0] * self.dimensions
        for word in re.findall(r"[a-z0-9]+", text.lower()):
            axis = WORD_AXES.get(word)
            if axis is None:
                digest = hashlib.sha256(word.encode("utf-8")).digest()
                axis = len(CONCEPTS) + digest[0] % (self.dimensions - len(CONCEPTS))
            vector[axis] += 1.0

        norm = math.sqrt(sum(v * v for v in vector))
        return [v / norm for v in vector] if norm else vector

    def health_check(self) -> bool:
        return self.healthy


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def fake_provider() -> FakeEmbeddingProvider:
    return FakeEmbeddingProvider()


@pytest.fixture
def sqlite_store(tmp_path):
    """SQLite embedding store on a per-test database file."""
    store = SqliteEmbeddingStore.from_path(tmp_path / "vectors.db", dimensions=TEST_DIMENSIONS)
    store.init_schema()
    yield store
    store.close()


@pytest.fixture
def engine(fake_provider, sqlite_store):
    from vector_search.search.engine import SimilaritySearchEngine

    return SimilaritySearchEngine(fake_provider, sqlite_store)


@pytest.fixture
def unit_vector():
    """Factory for a TEST_DIMENSIONS vector with weights on the given axes."""

    def make(*weights: float) -> List[float]:
        vector = [0.0] * TEST_DIMENSIONS
        for axis, weight in enumerate(weights):
            vector[axis] = float(weight)
        return vector

    return make
