"""
Relational storage backend on SQLAlchemy 2.0 async (SQLite or PostgreSQL).
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Iterable, List, Optional

from sqlalchemy import JSON, case, cast, delete, distinct, func, select, type_coerce, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from skyvault.database import build_session_maker
from skyvault.kernel.errors import StorageError
from skyvault.kernel.models import Base, SnapshotSet, StoredRecord
from skyvault.kernel.storage.backend import RawRow, SnapshotRow, StorageBackend, row_field_equals
from skyvault.logging_config import get_logger
from skyvault.schemas.record import MatchMode, id_matches

logger = get_logger(__name__)

# SQLite caps bound parameters per statement
_IN_CHUNK = 500


def _aware(value: datetime) -> datetime:
    """SQLite drops tzinfo on the way back; all stored times are UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _to_raw(record: StoredRecord) -> RawRow:
    return RawRow(
        kind=record.kind,
        id=record.id,
        snapshotset=record.snapshotset,
        version=record.version,
        data=record.data,
        created_at=_aware(record.created_at),
        modified_at=_aware(record.modified_at),
        hash=record.hash,
    )


def _to_model(row: RawRow) -> StoredRecord:
    return StoredRecord(
        kind=row.kind,
        snapshotset=row.snapshotset,
        id=row.id,
        version=row.version,
        data=row.data,
        created_at=row.created_at,
        modified_at=row.modified_at,
        hash=row.hash,
    )


def _like_escape(pattern: str) -> str:
    return pattern.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class SqlAlchemyBackend(StorageBackend):
    """
    Stores every record kind in a single `records` table partitioned by
    (kind, snapshotset), plus the `snapshotsets` index table.
    """

    name = "sql"

    def __init__(
        self,
        engine: AsyncEngine,
        session_maker: Optional[async_sessionmaker[AsyncSession]] = None,
        *,
        create_tables: bool = True,
    ):
        self.engine = engine
        self.session_maker = session_maker or build_session_maker(engine)
        self.create_tables = create_tables

    async def initialize(self) -> None:
        if not self.create_tables:
            return
        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except SQLAlchemyError as exc:
            raise StorageError(f"Could not create tables: {exc}", operation="initialize") from exc

    async def close(self) -> None:
        await self.engine.dispose()

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncIterator[AsyncSession]:
        try:
            async with self.session_maker() as session:
                yield session
        except IntegrityError as exc:
            logger.warning(
                "Integrity violation during %s", operation,
                extra={"operation": operation},
            )
            raise StorageError(f"{operation} rejected: {exc.orig}", operation=operation) from exc
        except SQLAlchemyError as exc:
            logger.error(
                "Storage failure during %s: %s", operation, exc,
                extra={"operation": operation},
            )
            raise StorageError(f"{operation} failed: {exc}", operation=operation) from exc

    # Snapshot index

    async def ensure_snapshot(self, snapshot_id: str, when: datetime) -> bool:
        async with self._session("ensure_snapshot") as session:
            existing = await session.get(SnapshotSet, snapshot_id)
            if existing is not None:
                return False
            session.add(SnapshotSet(snapshotset=snapshot_id, created_at=when, modified_at=when))
            try:
                await session.commit()
            except IntegrityError:
                # Created concurrently by another writer
                await session.rollback()
                return False
            return True

    async def touch_snapshot(self, snapshot_id: str, when: datetime) -> None:
        async with self._session("touch_snapshot") as session:
            await session.execute(
                update(SnapshotSet)
                .where(SnapshotSet.snapshotset == snapshot_id)
                .values(modified_at=when)
            )
            await session.commit()

    async def get_snapshot(self, snapshot_id: str) -> Optional[SnapshotRow]:
        async with self._session("get_snapshot") as session:
            row = await session.get(SnapshotSet, snapshot_id)
            if row is None:
                return None
            return SnapshotRow(row.snapshotset, _aware(row.created_at), _aware(row.modified_at))

    async def list_snapshots(self) -> List[SnapshotRow]:
        async with self._session("list_snapshots") as session:
            result = await session.execute(select(SnapshotSet))
            return [
                SnapshotRow(s.snapshotset, _aware(s.created_at), _aware(s.modified_at))
                for s in result.scalars().all()
            ]

    async def delete_snapshot_row(self, snapshot_id: str) -> bool:
        async with self._session("delete_snapshot") as session:
            result = await session.execute(
                delete(SnapshotSet).where(SnapshotSet.snapshotset == snapshot_id)
            )
            await session.commit()
            return (result.rowcount or 0) > 0

    # Rows

    async def insert_row(self, row: RawRow) -> None:
        async with self._session("insert_row") as session:
            session.add(_to_model(row))
            await session.commit()

    async def upsert_rows(self, rows: Iterable[RawRow]) -> int:
        count = 0
        async with self._session("upsert_rows") as session:
            for row in rows:
                await session.merge(_to_model(row))
                count += 1
            await session.commit()
        return count

    async def fetch_versions(
        self,
        kind: str,
        record_id: str,
        snapshot: Optional[str] = None,
    ) -> List[RawRow]:
        query = select(StoredRecord).where(
            StoredRecord.kind == kind,
            StoredRecord.id == record_id,
        )
        if snapshot is not None:
            query = query.where(StoredRecord.snapshotset == snapshot)
        async with self._session("fetch_versions") as session:
            result = await session.execute(query)
            return [_to_raw(r) for r in result.scalars().all()]

    async def fetch_many(
        self,
        kind: str,
        record_ids: List[str],
        snapshot: Optional[str] = None,
    ) -> List[RawRow]:
        ids = list(dict.fromkeys(record_ids))
        rows: List[RawRow] = []
        async with self._session("fetch_many") as session:
            for start in range(0, len(ids), _IN_CHUNK):
                query = select(StoredRecord).where(
                    StoredRecord.kind == kind,
                    StoredRecord.id.in_(ids[start:start + _IN_CHUNK]),
                )
                if snapshot is not None:
                    query = query.where(StoredRecord.snapshotset == snapshot)
                result = await session.execute(query)
                rows.extend(_to_raw(r) for r in result.scalars().all())
        return rows

    async def find_rows(
        self,
        kind: str,
        pattern: str,
        mode: MatchMode = MatchMode.PREFIX,
        snapshot: Optional[str] = None,
    ) -> List[RawRow]:
        query = select(StoredRecord).where(StoredRecord.kind == kind)
        if mode == MatchMode.EXACT:
            query = query.where(StoredRecord.id == pattern)
        elif pattern:
            escaped = _like_escape(pattern)
            like = f"{escaped}%" if mode == MatchMode.PREFIX else f"%{escaped}%"
            query = query.where(StoredRecord.id.like(like, escape="\\"))
        if snapshot is not None:
            query = query.where(StoredRecord.snapshotset == snapshot)

        async with self._session("find_rows") as session:
            result = await session.execute(query)
            # LIKE is case-insensitive on SQLite; re-check exactly
            return [
                _to_raw(r) for r in result.scalars().all()
                if id_matches(r.id, pattern, mode)
            ]

    def _json_field(self, field: str, value: Any):
        """WHERE clause comparing a dotted payload path, per dialect."""
        if self.engine.dialect.name == "sqlite":
            # json_extract raises on malformed text, so those rows read as null
            valid = case((func.json_valid(StoredRecord.data) == 1, StoredRecord.data), else_="null")
            document = type_coerce(valid, JSON)
        else:
            document = cast(StoredRecord.data, JSON)
        path = tuple(int(p) if p.isdigit() else p for p in field.split("."))
        element = document[path] if len(path) > 1 else document[path[0]]
        if value is None:
            return element.as_string().is_(None)
        if isinstance(value, bool):
            return element.as_boolean() == value
        if isinstance(value, int):
            return element.as_integer() == value
        if isinstance(value, float):
            return element.as_float() == value
        if isinstance(value, str):
            return element.as_string() == value
        # Objects and arrays are compared after loading
        return element.isnot(None)

    async def find_by_field(
        self,
        kind: str,
        field: str,
        value: Any,
        snapshot: Optional[str] = None,
    ) -> List[RawRow]:
        query = select(StoredRecord).where(
            StoredRecord.kind == kind,
            self._json_field(field, value),
        )
        if snapshot is not None:
            query = query.where(StoredRecord.snapshotset == snapshot)

        async with self._session("find_by_field") as session:
            result = await session.execute(query)
            # Extraction coerces types; keep only exact JSON equality
            return [
                r for r in (_to_raw(m) for m in result.scalars().all())
                if row_field_equals(r, field, value)
            ]

    async def rows_for_snapshot(
self, kind: str, snapshot: str) -> List[RawRow]:
        query = select(StoredRecord).where(
            StoredRecord.kind == kind,
            StoredRecord.snapshotset == snapshot,
        )
        async with self._session("rows_for_snapshot") as session:
            result = await session.execute(query)
            return [_to_raw(r) for r in result.scalars().all()]

    async def list_kinds(self, snapshot: Optional[str] = None) -> List[str]:
        query = select(distinct(StoredRecord.kind))
        if snapshot is not None:
            query = query.where(StoredRecord.snapshotset == snapshot)
        async with self._session("list_kinds") as session:
            result = await session.execute(query)
            return sorted(result.scalars().all())

    async def delete_rows(self, kind: str, snapshot: str) -> int:
        async with self._session("delete_rows") as session:
            async with session.begin():
                result = await session.execute(
                    delete(StoredRecord).where(
                        StoredRecord.kind == kind,
                        StoredRecord.snapshotset == snapshot,
                    )
                )
            return result.rowcount or 0
