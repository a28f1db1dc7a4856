"""
Flat-file storage backend.

Layout under the base directory:

    snapshots.json                 snapshot index
    <snapshot>/<kind>.json         list of rows for one kind

Directory names are percent-encoded snapshot ids and file names are
percent-encoded kinds. Files are small and rewritten whole, so
blocking I/O runs in worker threads via asyncio.to_thread; a single lock
serializes writers.
"""

import asyncio
import json
import os
import shutil
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union
from urllib.parse import quote, unquote

from skyvault.kernel.errors import StorageError
from skyvault.kernel.storage.backend import RawRow, SnapshotRow, StorageBackend, row_field_equals
from skyvault.logging_config import get_logger
from skyvault.schemas.record import MatchMode, id_matches

logger = get_logger(__name__)

INDEX_FILE = "snapshots.json"


def _row_to_json(row: RawRow) -> Dict[str, Any]:
    return {
        "kind": row.kind,
        "id": row.id,
        "snapshotset": row.snapshotset,
        "version": row.version,
        "data": row.data,
        "created_at": row.created_at.isoformat(),
        "modified_at": row.modified_at.isoformat(),
        "hash": row.hash,
    }


def _row_from_json(raw: Dict[str, Any]) -> RawRow:
    return RawRow(
        kind=raw["kind"],
        id=raw["id"],
        snapshotset=raw["snapshotset"],
        version=raw["version"],
        data=raw["data"],
        created_at=datetime.fromisoformat(raw["created_at"]),
        modified_at=datetime.fromisoformat(raw["modified_at"]),
        hash=raw.get("hash"),
    )


class FlatfileBackend(StorageBackend):
    """JSON files on local disk."""

    name = "flatfile"

    def __init__(self, base_dir: Union[Path, str]):
        self.base_dir = Path(base_dir)
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        await self._run("initialize", self.base_dir.mkdir, parents=True, exist_ok=True)

    async def _run(self, operation: str, func, *args, **kwargs):
        try:
            return await asyncio.to_thread(func, *args, **kwargs)
        except (OSError, ValueError, KeyError) as exc:
            logger.error(
                "Flat-file failure during %s: %s", operation, exc,
                extra={"operation": operation, "base_dir": str(self.base_dir)},
            )
            raise StorageError(f"{operation} failed: {exc}", operation=operation) from exc

    # Paths and blocking helpers

    def _snapshot_dir(self, snapshot_id: str) -> Path:
        return self.base_dir / quote(snapshot_id, safe="")

    def _table_path(self, kind: str, snapshot_id: str) -> Path:
        return self._snapshot_dir(snapshot_id) / f"{quote(kind, safe='')}.json"

    @staticmethod
    def _read_json(path: Path, default: Any) -> Any:
        if not path.exists():
            return default
        with path.open("r", encoding="utf-8") as fh:
            return json.load(fh)

    @staticmethod
    def _write_json(path: Path, content: Any) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(content, fh, ensure_ascii=False)
            os.replace(tmp, path)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise

    def _load_index(self) -> Dict[str, Dict[str, str]]:
        return self._read_json(self.base_dir / INDEX_FILE, {})

    def _save_index(self, index: Dict[str, Dict[str, str]]) -> None:
        self._write_json(self.base_dir / INDEX_FILE, index)

    def _load_table(self, kind: str, snapshot_id: str) -> List[RawRow]:
        return [_row_from_json(r) for r in self._read_json(self._table_path(kind, snapshot_id), [])]

    def _save_table(self, kind: str, snapshot_id: str, rows: List[RawRow]) -> None:
        self._write_json(self._table_path(kind, snapshot_id), [_row_to_json(r) for r in rows])

    def _snapshot_ids(self, snapshot: Optional[str]) -> List[str]:
        if snapshot is not None:
            return [snapshot]
        return list(self._load_index().keys())

    def _kinds_in(self, snapshot_id: str) -> List[str]:
        directory = self._snapshot_dir(snapshot_id)
        if not directory.is_dir():
            return []
        return [unquote(p.stem) for p in directory.glob("*.json")]

    def _scan(self, kind: str, snapshot: Optional[str]) -> List[RawRow]:
        rows: List[RawRow] = []
        for snapshot_id in self._snapshot_ids(snapshot):
            rows.extend(self._load_table(kind, snapshot_id))
        return rows

    # Snapshot index

    async def ensure_snapshot(self, snapshot_id: str, when: datetime) -> bool:
        def _ensure() -> bool:
            index = self._load_index()
            if snapshot_id in index:
                return False
            index[snapshot_id] = {"created_at": when.isoformat(), "modified_at": when.isoformat()}
            self._save_index(index)
            return True

        async with self._lock:
            return await self._run("ensure_snapshot", _ensure)

    async def touch_snapshot(self, snapshot_id: str, when: datetime) -> None:
        def _touch() -> None:
            index = self._load_index()
            if snapshot_id in index:
                index[snapshot_id]["modified_at"] = when.isoformat()
                self._save_index(index)

        async with self._lock:
            await self._run("touch_snapshot", _touch)

    async def get_snapshot(self, snapshot_id: str) -> Optional[SnapshotRow]:
        index = await self._run("get_snapshot", self._load_index)
        entry = index.get(snapshot_id)
        if entry is None:
            return None
        return SnapshotRow(
            snapshot_id,
            datetime.fromisoformat(entry["created_at"]),
            datetime.fromisoformat(entry["modified_at"]),
        )

    async def list_snapshots(self) -> List[SnapshotRow]:
        index = await self._run("list_snapshots", self._load_index)
        return [
            SnapshotRow(
                snapshot_id,
                datetime.fromisoformat(entry["created_at"]),
                datetime.fromisoformat(entry["modified_at"]),
            )
            for snapshot_id, entry in index.items()
        ]

    async def delete_snapshot_row(self, snapshot_id: str) -> bool:
        def _delete() -> bool:
            index = self._load_index()
            if snapshot_id not in index:
                return False
            del index[snapshot_id]
            self._save_index(index)
            directory = self._snapshot_dir(snapshot_id)
            if directory.is_dir() and not any(directory.iterdir()):
                shutil.rmtree(directory)
            return True

        async with self._lock:
            return await self._run("delete_snapshot", _delete)

    # Rows

    async def insert_row(self, row: RawRow) -> None:
        def _insert() -> None:
            rows = self._load_table(row.kind, row.snapshotset)
            if any(r.id == row.id and r.version == row.version for r in rows):
                raise ValueError(f"Duplicate version {row.version} for {row.kind}:{row.id}")
            rows.append(row)
            self._save_table(row.kind, row.snapshotset, rows)

        async with self._lock:
            await self._run("insert_row", _insert)

    async def upsert_rows(self, rows: Iterable[RawRow]) -> int:
        incoming = list(rows)

        def _upsert() -> int:
            grouped: Dict[tuple, List[RawRow]] = {}
            for row in incoming:
                grouped.setdefault((row.kind, row.snapshotset), []).append(row)
            for (kind, snapshot_id), batch in grouped.items():
                existing = {(r.id, r.version): r for r in self._load_table(kind, snapshot_id)}
                for row in batch:
                    existing[(row.id, row.version)] = row
                self._save_table(kind, snapshot_id, list(existing.values()))
            return len(incoming)

        async with self._lock:
            return await self._run("upsert_rows", _upsert)

    async def fetch_versions(
        self,
        kind: str,
        record_id: str,
        snapshot: Optional[str] = None,
    ) -> List[RawRow]:
        rows = await self._run("fetch_versions", self._scan, kind, snapshot)
        return [r for r in rows if r.id == record_id]

    async def fetch_many(
        self,
        kind: str,
        record_ids: List[str],
        snapshot: Optional[str] = None,
    ) -> List[RawRow]:
        wanted = set(record_ids)
        rows = await self._run("fetch_many", self._scan, kind, snapshot)
        return [r for r in rows if r.id in wanted]

    async def find_rows(
        self,
        kind: str,
        pattern: str,
        mode: MatchMode = MatchMode.PREFIX,
        snapshot: Optional[str] = None,
    ) -> List[RawRow]:
        rows = await self._run("find_rows", self._scan, kind, snapshot)
        return [r for r in rows if id_matches(r.id, pattern, mode)]

    async def find_by_field(
        self,
        kind: str,
        field: str,
        value: Any,
        snapshot: Optional[str] = None,
    ) -> List[RawRow]:
        rows = await self._run("find_by_field", self._scan, kind, snapshot)
        return [r for r in rows if row_field_equals(r, field, value)]

    async def rows_for_snapshot(
self, kind: str, snapshot: str) -> List[RawRow]:
        return await self._run("rows_for_snapshot", self._load_table, kind, snapshot)

    async def list_kinds(self, snapshot: Optional[str] = None) -> List[str]:
        def _kinds() -> List[str]:
            kinds = set()
            for snapshot_id in self._snapshot_ids(snapshot):
                kinds.update(self._kinds_in(snapshot_id))
            return sorted(kinds)

        return await self._run("list_kinds", _kinds)

    async def delete_rows(self, kind: str, snapshot: str) -> int:
        def _delete() -> int:
            path = self._table_path(kind, snapshot)
            if not path.exists():
                return 0
            count = len(self._read_json(path, []))
            # Single unlink: the whole kind goes or none of it does
            path.unlink()
            return count

        async with self._lock:
            return await self._run("delete_rows", _delete)
