"""
Remote Store
SQL-backed durable store for record sets, one table per record kind.

Every driver failure leaves this module as a RemoteStoreError subclass
(transient or permanent, see services.errors) so callers can apply the
retry policy without knowing the driver.

Each row carries the index of its record inside the saved record set
(`position`); reads return rows in that order.
"""
import logging
from typing import Any, Dict, List, Optional, Protocol, Sequence

from sqlalchemy import delete, func, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from database import ROW_MODELS
from schemas.records import CanonicalRecord, model_for
from services.errors import PermanentRemoteError, classify_remote_error

logger = logging.getLogger(__name__)

# Id no row ever carries; `id != SENTINEL_ID` selects the whole table.
SENTINEL_ID = "00000000-0000-0000-0000-000000000000"

# Store-managed columns that are not part of a canonical record.
STORE_COLUMNS = {"created_at", "position"}


class RemoteStore(Protocol):
    async def fetch_all(self, kind: str) -> List[CanonicalRecord]: ...

    async def delete_all(self, kind: str) -> int: ...

    async def insert_many(self, kind: str, records: Sequence[CanonicalRecord], start: int = 0) -> None: ...

    async def insert_one(self, kind: str, record: CanonicalRecord, position: Optional[int] = None) -> None: ...

    async def update_one(self, kind: str, record: CanonicalRecord) -> None: ...

    async def delete_one(self, kind: str, record_id: str) -> int: ...


class SqlRemoteStore:
    """Remote store over an async SQLAlchemy session factory."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    def get_session(self):
        """Get database session context manager"""
        return self.session_factory()

    def _table(self, kind: str):
        try:
            return ROW_MODELS[kind]
        except KeyError:
            raise PermanentRemoteError(f"No remote table for record kind '{kind}'") from None

    def _table_column_names(self, table) -> set:
        return {c.name for c in table.__table__.columns}

    def to_row(self, kind: str, record: CanonicalRecord, position: Optional[int] = None) -> Dict[str, Any]:
        """Record -> insertable dict (unknown keys dropped)."""
        allowed = self._table_column_names(self._table(kind)) - STORE_COLUMNS
        row = {k: v for k, v in record.model_dump(mode="json").items() if k in allowed}
        if position is not None:
            row["position"] = position
        return row

    def to_record(self, kind: str, row) -> CanonicalRecord:
        table = self._table(kind)
        data = {
            name: getattr(row, name)
            for name in self._table_column_names(table)
            if name not in STORE_COLUMNS
        }
        data["kind"] = kind
        return model_for(kind).model_validate(data)

    async def fetch_all(self, kind: str) -> List[CanonicalRecord]:
        table = self._table(kind)
        try:
            async with self.get_session() as session:
                result = await session.execute(select(table).order_by(table.position, table.created_at, table.id))
                rows = result.scalars().all()
        except Exception as e:
            raise classify_remote_error(e, f"{kind}.fetch_all") from e
        return [self.to_record(kind, row) for row in rows]

    async def delete_all(self, kind: str) -> int:
        table = self._table(kind)
        try:
            async with self.get_session() as session:
                result = await session.execute(delete(table).where(table.id != SENTINEL_ID))
                await session.commit()
        except Exception as e:
            raise classify_remote_error(e, f"{kind}.delete_all") from e
        logger.info("REMOTE: deleted all rows kind=%s count=%s", kind, result.rowcount)
        return result.rowcount or 0

    async def insert_many(self, kind: str, records: Sequence[CanonicalRecord], start: int = 0) -> None:
        if not records:
            return
        table = self._table(kind)
        rows = [self.to_row(kind, r, start + i) for i, r in enumerate(records)]
        try:
            async with self.get_session() as session:
                await session.execute(insert(table), rows)
                await session.commit()
        except Exception as e:
            raise classify_remote_error(e, f"{kind}.insert_many") from e

    async def insert_one(self, kind: str, record: CanonicalRecord, position: Optional[int] = None) -> None:
        """Insert one row; without a position it is appended after the current last row."""
        table = self._table(kind)
        try:
            async with self.get_session() as session:
                if position is None:
                    last = await session.scalar(select(func.max(table.position)))
                    position = 0 if last is None else last + 1
                await session.execute(insert(table).values(**self.to_row(kind, record, position)))
                await session.commit()
        except Exception as e:
            raise classify_remote_error(e, f"{kind}.insert_one") from e

    async def update_one(self, kind: str, record: CanonicalRecord) -> None:
        table = self._table(kind)
        row = self.to_row(kind, record)
        record_id = row.pop("id")
        try:
            async with self.get_session() as session:
                result = await session.execute(update(table).where(table.id == record_id).values(**row))
                await session.commit()
        except Exception as e:
            raise classify_remote_error(e, f"{kind}.update_one") from e
        if not result.rowcount:
            raise PermanentRemoteError(f"{kind}.update_one failed: no row with id {record_id}", status=404)

    async def delete_one(self, kind: str, record_id: str) -> int:
        table = self._table(kind)
        try:
            async with self.get_session() as session:
                result = await session.execute(delete(table).where(table.id == record_id))
                await session.commit()
        except Exception as e:
            raise classify_remote_error(e, f"{kind}.delete_one") from e
        return result.rowcount or 0


def get_remote_store() -> Optional[SqlRemoteStore]:
    """The configured remote store, or None when DATABASE_URL is empty."""
    import database

    if database.AsyncSessionLocal is None:
        return None
    return SqlRemoteStore(database.AsyncSessionLocal)
