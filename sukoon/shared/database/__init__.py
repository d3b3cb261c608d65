"""Database connection management for Sukoon services.

Provides connection pooling, health checks, and repository base classes
for PostgreSQL-backed stores.
"""

from .connection import (
    DatabaseConfig,
    ConnectionManager,
)
from .repository import (
    BaseRepository,
    DecisionConflict,
    RepositoryError,
    StoreUnavailable,
)

__all__ = [
    "DatabaseConfig",
    "ConnectionManager",
    "BaseRepository",
    "DecisionConflict",
    "RepositoryError",
    "StoreUnavailable",
]
