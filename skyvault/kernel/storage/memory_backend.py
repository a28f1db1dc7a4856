"""
In-memory storage backend (for testing/development).
"""

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from skyvault.kernel.errors import StorageError
from skyvault.kernel.storage.backend import RawRow, SnapshotRow, StorageBackend, row_field_equals
from skyvault.schemas.record import MatchMode, id_matches


class MemoryBackend(StorageBackend):
    """Rows kept in dicts keyed by (kind, snapshot) and (id, version)."""

    name = "memory"

    def __init__(self) -> None:
        self._snapshots: Dict[str, SnapshotRow] = {}
        self._tables: Dict[Tuple[str, str], Dict[Tuple[str, str], RawRow]] = {}

    async def ensure_snapshot(self, snapshot_id: str, when: datetime) -> bool:
        if snapshot_id in self._snapshots:
            return False
        self._snapshots[snapshot_id] = SnapshotRow(snapshot_id, when, when)
        return True

    async def touch_snapshot(self, snapshot_id: str, when: datetime) -> None:
        snapshot = self._snapshots.get(snapshot_id)
        if snapshot is not None:
            snapshot.modified_at = when

    async def get_snapshot(self, snapshot_id: str) -> Optional[SnapshotRow]:
        return self._snapshots.get(snapshot_id)

    async def list_snapshots(self) -> List[SnapshotRow]:
        return list(self._snapshots.values())

    async def delete_snapshot_row(self, snapshot_id: str) -> bool:
        return self._snapshots.pop(snapshot_id, None) is not None

    async def insert_row(self, row: RawRow) -> None:
        table = self._tables.setdefault((row.kind, row.snapshotset), {})
        key = (row.id, row.version)
        if key in table:
            raise StorageError(
                f"Duplicate version {row.version} for {row.kind}:{row.id}",
                operation="insert_row",
            )
        table[key] = row.copy()

    async def upsert_rows(self, rows: Iterable[RawRow]) -> int:
        count = 0
        for row in rows:
            table = self._tables.setdefault((row.kind, row.snapshotset), {})
            table[(row.id, row.version)] = row.copy()
            count += 1
        return count

    def _scoped(self, kind: str, snapshot: Optional[str]) -> Iterable[RawRow]:
        for (table_kind, table_snapshot), table in self._tables.items():
            if table_kind != kind:
                continue
            if snapshot is not None and table_snapshot != snapshot:
                continue
            yield from table.values()

    async def fetch_versions(
        self,
        kind: str,
        record_id: str,
        snapshot: Optional[str] = None,
    ) -> List[RawRow]:
        return [r.copy() for r in self._scoped(kind, snapshot) if r.id == record_id]

    async def fetch_many(
        self,
        kind: str,
        record_ids: List[str],
        snapshot: Optional[str] = None,
    ) -> List[RawRow]:
        wanted = set(record_ids)
        return [r.copy() for r in self._scoped(kind, snapshot) if r.id in wanted]

    async def find_rows(
        self,
        kind: str,
        pattern: str,
        mode: MatchMode = MatchMode.PREFIX,
        snapshot: Optional[str] = None,
    ) -> List[RawRow]:
        return [
            r.copy() for r in self._scoped(kind, snapshot)
            if id_matches(r.id, pattern, mode)
        ]

    async def find_by_field(
        self,
        kind: str,
        field: str,
        value: Any,
        snapshot: Optional[str] = None,
    ) -> List[RawRow]:
        return [
            r.copy() for r in self._scoped(kind, snapshot)
            if row_field_equals(r, field, value)
        ]

    async def rows_for_snapshot(
self, kind: str, snapshot: str) -> List[RawRow]:
        return [r.copy() for r in self._tables.get((kind, snapshot), {}).values()]

    async def list_kinds(self, snapshot: Optional[str] = None) -> List[str]:
        return sorted({
            kind for (kind, table_snapshot), table in self._tables.items()
            if table and (snapshot is None or table_snapshot == snapshot)
        })

    async def delete_rows(self, kind: str, snapshot: str) -> int:
        table = self._tables.pop((kind, snapshot), None)
        return len(table) if table else 0
