"""
Repository Pattern - Storage abstraction layer

Repositories hide PostgreSQL details from the roles; roles work with
DocumentRef / ScoreRequest / ScoringResult, not raw SQL.

The asyncpg pool is created once per process (config.create_postgres_pool)
and passed in explicitly.
"""
from .batched_cursor import BatchedCursor
from .document_repository import DocumentRepository, SCHEMA_SQL

__all__ = ['BatchedCursor', 'DocumentRepository', 'SCHEMA_SQL']
