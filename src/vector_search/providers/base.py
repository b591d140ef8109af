"""
Embedding provider interface.

Concrete providers only implement the remote call (`_request_embedding`);
input preparation and output validation live here so every provider
truncates and rejects malformed vectors the same way.
"""

import logging
import math
from abc import ABC, abstractmethod
from typing import Any, List, Sequence

from ..core.exceptions import BatchProviderError, BatchValidationError, ProviderError, ValidationError


logger = logging.getLogger(__name__)


class EmbeddingProvider(ABC):
    """
    Abstract base class for embedding providers.

    Providers are stateless apart from their configuration: no caching,
    no retries. Retry policy belongs to the caller.
    """

    provider_name = "unknown"

    def __init__(self, model: str, dimensions: int, max_chars: int = 8000):
        self._model = model
        self._dimensions = dimensions
        self.max_chars = max_chars

    @property
    def model_id(self) -> str:
        """Identifier of the model producing the vectors."""
        return self._model

    @property
    def dimensions(self) -> int:
        """Expected vector length."""
        return self._dimensions

    def prepare_text(self, text: str) -> str:
        """
        Trim and truncate text for submission.

        Raises:
            ValidationError: If the text is not a string or is empty after trimming
        """
        if not isinstance(text, str):
            raise ValidationError("Text must be a non-empty string")

        clean = text.strip()
        if not clean:
            raise ValidationError("Text must be a non-empty string")

        if len(clean) > self.max_chars:
            logger.debug(f"Truncating text from {len(clean)} to {self.max_chars} characters")
            clean = clean[:self.max_chars]
        return clean

    def embed(self, text: str) -> List[float]:
        """
        Embed a single text.

        Args:
            text: Text to embed (non-empty after trimming)

        Returns:
            Vector of exactly `dimensions` floats

        Raises:
            ValidationError: If the text is empty
            ProviderError: If the call fails or returns a malformed vector
        """
        clean = self.prepare_text(text)
        raw = self._request_embedding(clean)
        return self._validate_vector(raw)

    def embed_all(self, texts: Sequence[str]) -> List[List[float]]:
        """
        Embed texts one at a time, in order.

        Stops at the first failure; the remaining texts are not embedded.

        Raises:
            ValidationError: If `texts` is empty
            BatchValidationError: If the text at `index` is invalid
            BatchProviderError: If embedding the text at `index` failed
        """
        if not texts:
            raise ValidationError("Texts must be a non-empty list")

        vectors = []
        for index, text in enumerate(texts):
            try:
                vectors.append(self.embed(text))
            except ValidationError as e:
                logger.error(f"Batch embedding rejected text at index {index}: {e}")
                raise BatchValidationError(
                    f"Invalid text at index {index}: {e}", index=index
                ) from e
            except ProviderError as e:
                logger.error(f"Batch embedding failed at index {index}: {e}")
                raise BatchProviderError(
                    f"Embedding failed at index {index}: {e}",
                    index=index,
                    provider=self.provider_name,
                    status_code=e.status_code,
                ) from e
        return vectors

    def _validate_vector(self, raw: Any) -> List[float]:
        """Check the provider output is a finite numeric vector of the right arity."""
        if not isinstance(raw, (list, tuple)) or not raw:
            raise ProviderError(
                "Provider returned an empty or non-list embedding",
                provider=self.provider_name,
            )

        vector = []
        for i, value in enumerate(raw):
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ProviderError(
                    f"Provider returned a non-numeric component at {i}: {value!r}",
                    provider=self.provider_name,
                )
            value = float(value)
            if not math.isfinite(value):
                raise ProviderError(
                    f"Provider returned a non-finite component at {i}",
                    provider=self.provider_name,
                )
            vector.append(value)

        if len(vector) != self._dimensions:
            raise ProviderError(
                f"Provider returned {len(vector)} dimensions, expected {self._dimensions}",
                provider=self.provider_name,
            )
        return vector

    @abstractmethod
    def _request_embedding(self, text: str) -> Any:
        """
        Perform the remote call for one prepared text.

        Returns:
            The raw vector from the provider payload

        Raises:
            ProviderError: On transport, status or payload errors
        """
        pass

    def health_check(self) -> bool:
        """Whether the provider is reachable. Providers override this."""
        return True
