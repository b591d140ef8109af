"""
Semantic embedding store and similarity search engine.

Generates embeddings for short texts (tasks, generated content, user
profiles), persists them with upsert-by-key semantics, and answers
similarity queries with owner / category filtering and thresholding.

Subpackages:
- core: types, exceptions, configuration, logging
- providers: embedding providers (Ollama)
- storage: embedding stores (SQL Server, SQLite) and the connection pool
- search: the search engine and bulk populator
- sources: upstream item sources (todo service)
"""

__version__ = "0.1.0"
