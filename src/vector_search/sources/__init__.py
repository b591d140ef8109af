"""
Upstream item sources for bulk population.
"""

from .todo_service import TodoServiceClient

__all__ = ["TodoServiceClient"]
