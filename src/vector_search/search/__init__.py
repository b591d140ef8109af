"""
Search engine and bulk population.
"""

from .engine import SimilaritySearchEngine, profile_key, profile_text
from .populator import BulkPopulator, todo_to_task

__all__ = [
    "SimilaritySearchEngine",
    "BulkPopulator",
    "profile_key",
    "profile_text",
    "todo_to_task",
]
