"""Key-value store on top of the ``kv_store`` table.

Every write is a single-row upsert, so a failed call leaves no partial
state behind. Database errors surface as ``StorageFailure``.
"""

from typing import Any, Iterable

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError

from healthscan.errors import StorageFailure
from healthscan.logging_config import get_logger
from healthscan.storage.db import Database
from healthscan.storage.models import KVEntry

logger = get_logger(__name__)


class KVStore:
    """Durable string-keyed store of JSON values."""

    def __init__(self, database: Database):
        self.database = database

    def _fail(self, operation: str, key: str, error: SQLAlchemyError) -> StorageFailure:
        logger.error("kv_operation_failed", operation=operation, key=key, error=str(error))
        return StorageFailure("Failed to access the waitlist store", details=f"{operation} {key}")

    # ==================== SINGLE KEYS ====================

    def get(self, key: str) -> Any | None:
        """Return the value stored under key, or None."""
        try:
            with self.database.session() as session:
                entry = session.get(KVEntry, key)
                return entry.value if entry else None
        except SQLAlchemyError as e:
            raise self._fail("get", key, e) from e

    def set(self, key: str, value: Any) -> None:
        """Insert or replace the value stored under key."""
        try:
            with self.database.session() as session:
                session.merge(KVEntry(key=key, value=value))
        except SQLAlchemyError as e:
            raise self._fail("set", key, e) from e

    def delete(self, key: str) -> bool:
        """Delete key. Returns True if a row was removed."""
        try:
            with self.database.session() as session:
                result = session.execute(delete(KVEntry).where(KVEntry.key == key))
                return result.rowcount > 0
        except SQLAlchemyError as e:
            raise self._fail("delete", key, e) from e

    def exists(self, key: str) -> bool:
        try:
            with self.database.session() as session:
                found = session.scalar(select(KVEntry.key).where(KVEntry.key == key))
                return found is not None
        except SQLAlchemyError as e:
            raise self._fail("exists", key, e) from e

    # ==================== BATCHES ====================

    def mget(self, keys: Iterable[str]) -> list[Any | None]:
        """Return values for keys, in order, with None for missing keys."""
        keys = list(keys)
        if not keys:
            return []
        try:
            with self.database.session() as session:
                rows = session.scalars(select(KVEntry).where(KVEntry.key.in_(keys)))
                found = {row.key: row.value for row in rows}
        except SQLAlchemyError as e:
            raise self._fail("mget", ",".join(keys), e) from e
        return [found.get(key) for key in keys]

    def mset(self, items: dict[str, Any]) -> None:
        """Upsert several keys in one transaction."""
        try:
            with self.database.session() as session:
                for key, value in items.items():
                    session.merge(KVEntry(key=key, value=value))
        except SQLAlchemyError as e:
            raise self._fail("mset", ",".join(items), e) from e

    def mdel(self, keys: Iterable[str]) -> int:
        """Delete several keys. Returns the number of rows removed."""
        keys = list(keys)
        if not keys:
            return 0
        try:
            with self.database.session() as session:
                result = session.execute(delete(KVEntry).where(KVEntry.key.in_(keys)))
                return result.rowcount
        except SQLAlchemyError as e:
            raise self._fail("mdel", ",".join(keys), e) from e

    # ==================== PREFIX SCANS ====================

    def get_by_prefix(self, prefix: str) -> list[Any]:
        """Return all values whose key starts with prefix, ordered by key."""
        try:
            with self.database.session() as session:
                rows = session.scalars(
                    select(KVEntry)
                    .where(KVEntry.key.startswith(prefix, autoescape=True))
                    .order_by(KVEntry.key)
                )
                return [row.value for row in rows]
        except SQLAlchemyError as e:
            raise self._fail("get_by_prefix", prefix, e) from e

    def count_by_prefix(self, prefix: str) -> int:
        """Count keys starting with prefix."""
        try:
            with self.database.session() as session:
                count = session.scalar(
                    select(func.count())
                    .select_from(KVEntry)
                    .where(KVEntry.key.startswith(prefix, autoescape=True))
                )
                return int(count or 0)
        except SQLAlchemyError as e:
            raise self._fail("count_by_prefix", prefix, e) from e

    def clear_by_prefix(self, prefix: str) -> int:
        """Delete every key starting with prefix. Returns rows removed."""
        try:
            with self.database.session() as session:
                result = session.execute(
                    delete(KVEntry).where(KVEntry.key.startswith(prefix, autoescape=True))
                )
                logger.warning("kv_prefix_cleared", prefix=prefix, removed=result.rowcount)
                return result.rowcount
        except SQLAlchemyError as e:
            raise self._fail("clear_by_prefix", prefix, e) from e
