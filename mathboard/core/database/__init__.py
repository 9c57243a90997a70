from mathboard.core.database.base import Base, IdMixin, TimestampMixin
from mathboard.core.database.retry_policy import DatabaseRetryConfig, DatabaseRetryPolicy
from mathboard.core.database.service import (
    DatabaseInitializationError,
    DatabaseNotInitializedError,
    DatabaseService,
)

__all__ = [
    "Base",
    "IdMixin",
    "TimestampMixin",
    "DatabaseRetryConfig",
    "DatabaseRetryPolicy",
    "DatabaseService",
    "DatabaseInitializationError",
    "DatabaseNotInitializedError",
]
