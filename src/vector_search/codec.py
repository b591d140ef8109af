"""
Vector codec - conversion between in-memory vectors and the backend literal.

Both backends accept a JSON array literal ("[0.1,0.2,...]"): SQL Server casts
it to VECTOR(n), SQLite stores it as text. Cosine helpers are here as well so
vectors can be compared locally when no backend is involved.
"""

import json
import math
from typing import List, Sequence

from .core.exceptions import DimensionMismatchError, ValidationError


class VectorCodec:
    """Stateless vector encoding and comparison helpers."""

    @staticmethod
    def encode(vector: Sequence[float]) -> str:
        """
        Encode a vector as a JSON array literal.

        Raises:
            ValidationError: If the vector is empty or has non-finite or
                non-numeric components
        """
        if not vector:
            raise ValidationError("Vector cannot be empty")

        values = []
        for i, component in enumerate(vector):
            # bool is an int subclass but never a valid component
            if isinstance(component, bool) or not isinstance(component, (int, float)):
                raise ValidationError(
                    f"Vector component {i} is not a number: {component!r}"
                )
            value = float(component)
            if not math.isfinite(value):
                raise ValidationError(f"Vector component {i} is not finite: {value}")
            values.append(value)

        return json.dumps(values, separators=(",", ":"))

    @staticmethod
    def decode(literal: str) -> List[float]:
        """
        Decode a JSON array literal back into a list of floats.

        Raises:
            ValidationError: If the literal is not a non-empty numeric array
        """
        if isinstance(literal, (bytes, bytearray)):
            literal = literal.decode("utf-8")

        try:
            values = json.loads(literal)
        except (TypeError, json.JSONDecodeError) as e:
            raise ValidationError(f"Malformed vector literal: {e}") from e

        if not isinstance(values, list) or not values:
            raise ValidationError("Vector literal must be a non-empty array")

        result = []
        for i, component in enumerate(values):
            if isinstance(component, bool) or not isinstance(component, (int, float)):
                raise ValidationError(
                    f"Vector literal component {i} is not a number: {component!r}"
                )
            result.append(float(component))
        return result

    @staticmethod
    def dimension(vector: Sequence[float]) -> int:
        """Number of components in the vector."""
        return len(vector)

    @staticmethod
    def cosine_similarity(vec_a: Sequence[float], vec_b: Sequence[float]) -> float:
        """
        Compute cosine similarity between two vectors.

        Returns:
            Similarity in [-1, 1]; 0.0 if either vector has zero magnitude

        Raises:
            ValidationError: If either vector is empty
            DimensionMismatchError: If the vectors differ in length
        """
        if not vec_a or not vec_b:
            raise ValidationError("Vectors cannot be empty")

        if len(vec_a) != len(vec_b):
            raise DimensionMismatchError(
                f"Vector dimensions must match: {len(vec_a)} != {len(vec_b)}",
                expected=len(vec_a),
                actual=len(vec_b),
            )

        dot_product = sum(a * b for a, b in zip(vec_a, vec_b))
        magnitude_a = math.sqrt(sum(a * a for a in vec_a))
        magnitude_b = math.sqrt(sum(b * b for b in vec_b))

        if magnitude_a == 0 or magnitude_b == 0:
            return 0.0

        similarity = dot_product / (magnitude_a * magnitude_b)
        # Rounding can push parallel vectors slightly past 1
        return max(-1.0, min(1.0, similarity))

    @classmethod
    def cosine_distance(cls, vec_a: Sequence[float], vec_b: Sequence[float]) -> float:
        """Cosine distance, 1 - cosine similarity, in [0, 2]."""
        return 1.0 - cls.cosine_similarity(vec_a, vec_b)
