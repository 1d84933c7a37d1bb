"""
SQLAlchemy-backed key-value store.

Rows live in a single `kv_entries` table keyed by the order-preserving
encoding from `keys.py`, so prefix scans are index range scans. Checks are
conditional updates that take a row lock on PostgreSQL; SQLite transactions
begin IMMEDIATE, which serializes writers.
"""

import logging
from collections.abc import AsyncIterator, Sequence
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import JSON, TIMESTAMP, LargeBinary, String, delete, insert, select, text, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Mapped, mapped_column

from jobengine.infra.database import Base, Database
from jobengine.infra.kv.base import (
    AtomicOperation,
    CommitResult,
    Entry,
    new_versionstamp,
)
from jobengine.infra.kv.keys import Key, decode_key, encode_key, key_range
from jobengine.v1.core.exceptions import ConcurrencyConflict, StoreError

logger = logging.getLogger(__name__)

PAGE_SIZE = 100


class KVEntry(Base):
    """One key-value row."""

    __tablename__ = "kv_entries"

    key: Mapped[bytes] = mapped_column(
        LargeBinary, primary_key=True, comment="Order-preserving encoded tuple key"
    )
    value: Mapped[Any] = mapped_column(JSON, nullable=True, comment="JSON value")
    versionstamp: Mapped[str] = mapped_column(
        String(32), nullable=False, comment="Versionstamp of the last write"
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
    )


kv_table = KVEntry.__table__


def _to_entry(row) -> Entry:
    return Entry(decode_key(row.key), row.value, row.versionstamp)


class SqlAtomicOperation(AtomicOperation):
    def __init__(self, store: "SqlKeyValueStore"):
        super().__init__()
        self._store = store

    async def commit(self) -> CommitResult:
        return await self._store._commit(self)


class SqlKeyValueStore:
    """KeyValueStore implementation on an async SQLAlchemy engine."""

    def __init__(self, database: Database):
        self.database = database

    @classmethod
    async def open(cls, database: Database, create_schema: bool = True) -> "SqlKeyValueStore":
        """Open a ready-to-use store, creating the table when asked."""
        if create_schema:
            try:
                await database.create_all()
            except SQLAlchemyError as e:
                raise StoreError(f"Failed to initialize store: {e}") from e
        return cls(database)

    def _upsert(self, dialect: str, values: dict[str, Any]):
        if dialect == "postgresql":
            from sqlalchemy.dialects.postgresql import insert as dialect_insert
        elif dialect == "sqlite":
            from sqlalchemy.dialects.sqlite import insert as dialect_insert
        else:
            return None

        stmt = dialect_insert(kv_table).values(**values)
        return stmt.on_conflict_do_update(
            index_elements=[kv_table.c.key],
            set_={
                "value": stmt.excluded.value,
                "versionstamp": stmt.excluded.versionstamp,
                "updated_at": stmt.excluded.updated_at,
            },
        )

    async def _commit(self, op: AtomicOperation) -> CommitResult:
        versionstamp = new_versionstamp()
        now = datetime.now(UTC)
        dialect = self.database.dialect_name
        # Keys that must not exist yet are inserted plainly so a racing insert
        # surfaces as an integrity error instead of an overwrite
        insert_only = {
            encode_key(check.key) for check in op.checks if check.versionstamp is None
        }

        try:
            async with self.database.SessionLocal() as session:
                async with session.begin():
                    for check in op.checks:
                        encoded = encode_key(check.key)
                        if check.versionstamp is None:
                            existing = await session.scalar(
                                select(kv_table.c.key).where(kv_table.c.key == encoded)
                            )
                            if existing is not None:
                                raise ConcurrencyConflict(check.key)
                        else:
                            result = await session.execute(
                                update(kv_table)
                                .where(
                                    kv_table.c.key == encoded,
                                    kv_table.c.versionstamp == check.versionstamp,
                                )
                                .values(versionstamp=kv_table.c.versionstamp)
                            )
                            if result.rowcount != 1:
                                raise ConcurrencyConflict(check.key)

                    for mutation in op.mutations:
                        encoded = encode_key(mutation.key)
                        if mutation.kind == "delete":
                            await session.execute(
                                delete(kv_table).where(kv_table.c.key == encoded)
                            )
                            continue

                        values = {
                            "key": encoded,
                            "value": mutation.value,
                            "versionstamp": versionstamp,
                            "updated_at": now,
                        }
                        stmt = None
                        if encoded not in insert_only:
                            stmt = self._upsert(dialect, values)
                        if stmt is None:
                            if encoded not in insert_only:
                                await session.execute(
                                    delete(kv_table).where(kv_table.c.key == encoded)
                                )
                            stmt = insert(kv_table).values(**values)
                        await session.execute(stmt)
        except (ConcurrencyConflict, IntegrityError):
            return CommitResult(ok=False)
        except SQLAlchemyError as e:
            logger.warning("Store commit failed", extra={"error": str(e)})
            raise StoreError(f"Store commit failed: {e}") from e

        return CommitResult(ok=True, versionstamp=versionstamp)

    async def get(self, key: Key) -> Entry | None:
        try:
            async with self.database.SessionLocal() as session:
                result = await session.execute(
                    select(kv_table).where(kv_table.c.key == encode_key(tuple(key)))
                )
                row = result.first()
        except SQLAlchemyError as e:
            raise StoreError(f"Store read failed: {e}") from e
        return _to_entry(row) if row else None

    async def get_many(self, keys: Sequence[Key]) -> list[Entry | None]:
        encoded = [encode_key(tuple(key)) for key in keys]
        if not encoded:
            return []
        try:
            async with self.database.SessionLocal() as session:
                result = await session.execute(
                    select(kv_table).where(kv_table.c.key.in_(encoded))
                )
                found = {row.key: _to_entry(row) for row in result}
        except SQLAlchemyError as e:
            raise StoreError(f"Store read failed: {e}") from e
        return [found.get(item) for item in encoded]

    async def set(self, key: Key, value: Any) -> CommitResult:
        return await self.atomic().set(key, value).commit()

    async def delete(self, key: Key) -> None:
        await self.atomic().delete(key).commit()

    async def list(
        self,
        prefix: Key = (),
        start: Key | None = None,
        end: Key | None = None,
        limit: int | None = None,
        reverse: bool = False,
    ) -> AsyncIterator[Entry]:
        low, high = key_range(tuple(prefix), start, end)
        cursor: bytes | None = None
        yielded = 0

        while limit is None or yielded < limit:
            page_size = PAGE_SIZE if limit is None else min(PAGE_SIZE, limit - yielded)
            stmt = select(kv_table).where(
                kv_table.c.key >= low, kv_table.c.key < high
            )
            if reverse:
                if cursor is not None:
                    stmt = stmt.where(kv_table.c.key < cursor)
                stmt = stmt.order_by(kv_table.c.key.desc())
            else:
                if cursor is not None:
                    stmt = stmt.where(kv_table.c.key > cursor)
                stmt = stmt.order_by(kv_table.c.key.asc())

            try:
                async with self.database.SessionLocal() as session:
                    rows = (await session.execute(stmt.limit(page_size))).all()
            except SQLAlchemyError as e:
                raise StoreError(f"Store scan failed: {e}") from e

            for row in rows:
                yielded += 1
                yield _to_entry(row)

            if len(rows) < page_size:
                return
            cursor = rows[-1].key

    def atomic(self) -> SqlAtomicOperation:
        return SqlAtomicOperation(self)

    async def ping(self) -> None:
        try:
            async with self.database.SessionLocal() as session:
                await session.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            raise StoreError(f"Store unreachable: {e}") from e

    async def close(self) -> None:
        await self.database.close()
