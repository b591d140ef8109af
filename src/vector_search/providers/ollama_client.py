"""
Ollama embedding provider.

Thin HTTP client for Ollama's /api/embed endpoint. One text per request;
batches are sequential calls made by the base class.
"""

import json
import logging
import socket
from typing import Any, Dict, Optional
from urllib.request import Request, urlopen
from urllib.error import URLError, HTTPError

from ..core.config import EmbeddingConfig
from ..core.exceptions import ProviderError
from .base import EmbeddingProvider


logger = logging.getLogger(__name__)


class OllamaEmbeddingProvider(EmbeddingProvider):
    """
    Embedding provider backed by a local or remote Ollama server.

    Example:
        >>> provider = OllamaEmbeddingProvider(EmbeddingConfig(model="nomic-embed-text"))
        >>> vector = provider.embed("Buy milk")
        >>> len(vector)
        768
    """

    provider_name = "ollama"

    def __init__(self, config: Optional[EmbeddingConfig] = None):
        """
        Initialize the provider.

        Args:
            config: Embedding configuration (defaults if None)
        """
        config = config or EmbeddingConfig()
        super().__init__(
            model=config.model,
            dimensions=config.dimensions,
            max_chars=config.max_chars,
        )
        self.config = config
        self.base_url = config.base_url.rstrip("/")
        self.timeout = config.timeout_seconds

        logger.debug(
            f"Initialized OllamaEmbeddingProvider: base_url={self.base_url}, "
            f"model={self.model_id}, dimensions={self.dimensions}"
        )

    def _request_embedding(self, text: str) -> Any:
        url = f"{self.base_url}/api/embed"
        payload = {
            "model": self.model_id,
            "input": text,
        }

        result = self._post_json(url, payload)

        embeddings = result.get("embeddings")
        if not isinstance(embeddings, list) or len(embeddings) != 1:
            raise ProviderError(
                "Ollama embed response did not contain exactly one embedding",
                provider=self.provider_name,
            )
        return embeddings[0]

    def _post_json(self, url: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        POST a JSON payload and decode the JSON response.

        Raises:
            ProviderError: On HTTP errors, connection failures, timeouts or
                undecodable responses
        """
        try:
            data = json.dumps(payload).encode("utf-8")
            request = Request(
                url,
                data=data,
                headers={"Content-Type": "application/json"},
                method="POST",
            )

            logger.debug(f"Making embedding request to {url} with model {self.model_id}")

            with urlopen(request, timeout=self.timeout) as response:
                response_data = response.read().decode("utf-8")
                result = json.loads(response_data)

        except HTTPError as e:
            error_body = e.read().decode("utf-8") if e.fp else str(e)
            logger.error(f"HTTP error from Ollama embed: {e.code} - {error_body}")
            raise ProviderError(
                f"Ollama embed API error: {e.code} - {error_body}",
                provider=self.provider_name,
                status_code=e.code,
            ) from e
        except (socket.timeout, TimeoutError) as e:
            logger.error(f"Ollama embed request timed out after {self.timeout}s")
            raise ProviderError(
                f"Ollama embed request timed out after {self.timeout}s",
                provider=self.provider_name,
            ) from e
        except URLError as e:
            logger.error(f"Failed to connect to Ollama for embedding: {e}")
            raise ProviderError(
                f"Failed to connect to Ollama at {self.base_url}: {e}",
                provider=self.provider_name,
            ) from e
        except json.JSONDecodeError as e:
            logger.error(f"Invalid JSON response from Ollama embed: {e}")
            raise ProviderError(
                f"Invalid JSON response from Ollama embed: {e}",
                provider=self.provider_name,
            ) from e
        except OSError as e:
            logger.error(f"Unexpected I/O error calling Ollama embed: {e}")
            raise ProviderError(
                f"Unexpected error calling Ollama embed: {e}",
                provider=self.provider_name,
            ) from e

        if not isinstance(result, dict):
            raise ProviderError(
                "Ollama embed response is not a JSON object",
                provider=self.provider_name,
            )
        return result

    def health_check(self) -> bool:
        """
        Check if Ollama is reachable and the embedding model is available.

        Returns:
            True if Ollama is healthy, False otherwise
        """
        try:
            url = f"{self.base_url}/api/tags"
            request = Request(url, method="GET")

            with urlopen(request, timeout=min(self.timeout, 10)) as response:
                if response.status != 200:
                    return False
                data = json.loads(response.read().decode("utf-8"))
        except (URLError, OSError, json.JSONDecodeError) as e:
            logger.warning(f"Health check failed: {e}")
            return False

        names = [m.get("name", "") for m in data.get("models", [])]
        bases = [name.split(":")[0] for name in names]
        if self.model_id in names or self.model_id.split(":")[0] in bases:
            logger.debug(f"Health check passed: model {self.model_id} available")
            return True

        logger.warning(f"Model {self.model_id} not found. Available: {bases}")
        return False
