"""Persistent key/value byte stores.

The freshness cache and the feed gates only need four operations from their
storage: read, write, delete and iterate over keys. Values are opaque bytes.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import select, delete, update
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker

from ..models import KeyValueEntry, async_session_maker

logger = logging.getLogger(__name__)


class KeyValueStore(ABC):
    """Minimal async key/value interface."""

    @abstractmethod
    async def read(self, key: str) -> Optional[bytes]:
        """Return the stored bytes, or None if the key is absent."""
        pass

    @abstractmethod
    async def write(self, key: str, value: bytes) -> None:
        """Store ``value`` under ``key``, replacing any previous value."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove ``key``; absent keys are ignored."""
        pass

    @abstractmethod
    async def iterate(self) -> List[str]:
        """All stored keys."""
        pass


class MemoryKeyValueStore(KeyValueStore):
    """Process-local store. Used by tests and ephemeral runs."""

    def __init__(self):
        self._data: Dict[str, bytes] = {}

    async def read(self, key: str) -> Optional[bytes]:
        return self._data.get(key)

    async def write(self, key: str, value: bytes) -> None:
        self._data[key] = bytes(value)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def iterate(self) -> List[str]:
        return list(self._data)


class SqlKeyValueStore(KeyValueStore):
    """Store backed by the ``kv_entries`` table.

    Each operation opens its own session. Writes are a single upsert on
    SQLite and PostgreSQL and an update-then-insert elsewhere, so
    concurrent writers to one key resolve as last-write-wins.
    """

    def __init__(self, session_maker: async_sessionmaker = async_session_maker):
        self._session_maker = session_maker

    @staticmethod
    def native_upsert(dialect_name: str, values: Dict[str, Any]):
        """Single-statement upsert for dialects with ``ON CONFLICT``, else None."""
        if dialect_name == "sqlite":
            stmt = sqlite_insert(KeyValueEntry).values(**values)
        elif dialect_name == "postgresql":
            stmt = postgresql_insert(KeyValueEntry).values(**values)
        else:
            return None
        return stmt.on_conflict_do_update(
            index_elements=[KeyValueEntry.key],
            set_={"value": stmt.excluded.value, "updated_at": stmt.excluded.updated_at},
        )

    async def read(self, key: str) -> Optional[bytes]:
        async with self._session_maker() as session:
            result = await session.execute(
                select(KeyValueEntry.value).where(KeyValueEntry.key == key)
            )
            return result.scalar_one_or_none()

    async def write(self, key: str, value: bytes) -> None:
        values = {
            "key": key,
            "value": value,
            "updated_at": datetime.now(timezone.utc).replace(tzinfo=None),
        }
        async with self._session_maker() as session:
            stmt = self.native_upsert(session.get_bind().dialect.name, values)
            if stmt is not None:
                await session.execute(stmt)
                await session.commit()
                return
            await self._update_or_insert(session, values)

    async def _update_or_insert(self, session, values: Dict[str, Any]) -> None:
        changes = {"value": values["value"], "updated_at": values["updated_at"]}
        update_stmt = update(KeyValueEntry).where(KeyValueEntry.key == values["key"]).values(**changes)

        result = await session.execute(update_stmt)
        if result.rowcount == 0:
            session.add(KeyValueEntry(**values))
        try:
            await session.commit()
        except IntegrityError:
            # Another writer inserted the key first
            await session.rollback()
            await session.execute(update_stmt)
            await session.commit()

    async def delete(self, key: str) -> None:
        async with self._session_maker() as session:
            await session.execute(delete(KeyValueEntry).where(KeyValueEntry.key == key))
            await session.commit()

    async def iterate(self) -> List[str]:
        async with self._session_maker() as session:
            result = await session.execute(select(KeyValueEntry.key).order_by(KeyValueEntry.key))
            return list(result.scalars().all())


# Global instance
kv_store = SqlKeyValueStore()
