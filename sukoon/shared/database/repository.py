"""Base repository pattern for database operations.

Provides keyed upserts and lookups shared by the risk history tables.
Every write is an upsert keyed by a caller-supplied, deterministic id,
so repeating a write with the same inputs never duplicates a record.
"""
import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Dict, Generic, List, Optional, Sequence, TypeVar

import psycopg2

from sukoon.shared.errors import PipelineError
from .connection import ConnectionManager

logger = logging.getLogger(__name__)

T = TypeVar('T')


class RepositoryError(Exception):
    """Base exception for repository errors."""
    pass


class StoreUnavailable(RepositoryError, PipelineError):
    """The store could not be reached or rejected the operation.

    Transient: consumers nack the message and rely on redelivery.
    """
    pass


class DecisionConflict(RepositoryError, PipelineError):
    """Two different events resolved to the same stored key.

    Should never happen with deterministic ids; seeing one means the key
    derivation is broken.
    """
    pass


class BaseRepository(ABC, Generic[T]):
    """Abstract base repository with common operations.

    Subclasses declare `columns` (first column is the primary key) and
    may override the conflict-update expression of individual columns in
    `upsert_overrides`, e.g. to make a flag sticky.
    """

    columns: Sequence[str] = ()
    upsert_overrides: Dict[str, str] = {}

    def __init__(
        self,
        connection_manager: ConnectionManager,
        table_name: str,
    ):
        self.connection_manager = connection_manager
        self.table_name = table_name

        logger.info(
            "REPOSITORY_INITIALIZED",
            extra={"table_name": table_name}
        )

    @abstractmethod
    def _row_to_entity(self, row: tuple) -> T:
        """Convert database row (in `columns` order) to entity."""
        pass

    @abstractmethod
    def _entity_to_params(self, entity: T) -> Dict[str, Any]:
        """Convert entity to a column -> value mapping."""
        pass

    @property
    def _select_list(self) -> str:
        return ", ".join(self.columns)

    @contextmanager
    def _cursor(self, operation: str):
        """Yield a cursor, committing on success.

        Driver errors are re-raised as StoreUnavailable.
        """
        try:
            with self.connection_manager.get_connection() as conn:
                with conn.cursor() as cur:
                    yield cur
                conn.commit()
        except psycopg2.Error as e:
            logger.error(
                "REPOSITORY_OPERATION_FAILED",
                extra={
                    "table_name": self.table_name,
                    "operation": operation,
                    "error": str(e),
                    "error_type": type(e).__name__,
                }
            )
            raise StoreUnavailable(f"{self.table_name}.{operation} failed: {e}") from e

    def find_by_id(self, entity_id: str) -> Optional[T]:
        """Find entity by ID. Returns None if absent."""
        with self._cursor("find_by_id") as cur:
            cur.execute(
                f"SELECT {self._select_list} FROM {self.table_name} WHERE id = %s",
                (entity_id,)
            )
            row = cur.fetchone()

        if row is None:
            return None
        return self._row_to_entity(row)

    def fetch(self, where: str, params: tuple, order_by: str = "", limit: Optional[int] = None) -> List[T]:
        """Run a filtered SELECT over this table."""
        query = f"SELECT {self._select_list} FROM {self.table_name} WHERE {where}"
        if order_by:
            query += f" ORDER BY {order_by}"
        if limit is not None:
            query += " LIMIT %s"
            params = params + (limit,)

        with self._cursor("fetch") as cur:
            cur.execute(query, params)
            rows = cur.fetchall()

        return [self._row_to_entity(row) for row in rows]

    def save(self, entity: T) -> T:
        """Upsert entity keyed by its id and return the stored row."""
        params = self._entity_to_params(entity)
        columns = list(params.keys())
        values = list(params.values())
        placeholders = ["%s"] * len(values)

        update_clause = ", ".join(
            f"{col} = {self.upsert_overrides.get(col, f'EXCLUDED.{col}')}"
            for col in columns if col != "id"
        )

        query = f"""
            INSERT INTO {self.table_name} ({", ".join(columns)})
            VALUES ({", ".join(placeholders)})
            ON CONFLICT (id) DO UPDATE SET {update_clause}
            RETURNING {self._select_list}
        """

        with self._cursor("save") as cur:
            cur.execute(query, values)
            row = cur.fetchone()

        if row:
            return self._row_to_entity(row)
        return entity

    def count_where(self, where: str, params: tuple) -> int:
        with self._cursor("count") as cur:
            cur.execute(f"SELECT COUNT(*) FROM {self.table_name} WHERE {where}", params)
            row = cur.fetchone()

        return row[0] if row else 0
