"""
Embedding providers.

- EmbeddingProvider: interface with shared truncation and output checks
- OllamaEmbeddingProvider: Ollama /api/embed client
"""

from ..core.config import EmbeddingConfig
from ..core.exceptions import ConfigError
from .base import EmbeddingProvider
from .ollama_client import OllamaEmbeddingProvider


def create_provider(config: EmbeddingConfig) -> EmbeddingProvider:
    """Create the embedding provider named in the configuration."""
    if config.provider == "ollama":
        return OllamaEmbeddingProvider(config)
    raise ConfigError(f"Unknown embedding provider: {config.provider}")


__all__ = [
    "EmbeddingProvider",
    "OllamaEmbeddingProvider",
    "create_provider",
]
