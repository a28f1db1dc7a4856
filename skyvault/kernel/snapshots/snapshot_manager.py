"""
Snapshot Manager - lifecycle, portable export/import and structural diffs.

Built entirely on the record store's snapshot scoping: a snapshot is the set
of rows (of every kind) carrying its id, plus one index row.
"""

import json
import uuid
from collections import defaultdict
from typing import Any, Dict, List, Optional, Set, Tuple, Union

from pydantic import ValidationError

from skyvault.kernel.errors import DataInconsistency, SnapshotNotFound
from skyvault.kernel.hashing import canonical_json, compute_content_hash
from skyvault.kernel.models.base import generate_version_id, utcnow
from skyvault.kernel.storage.backend import RawRow
from skyvault.kernel.store.record_store import VersionedRecordStore
from skyvault.logging_config import get_logger
from skyvault.schemas.snapshot import (
    ExportedRow,
    SnapshotComparison,
    SnapshotExport,
    SnapshotInfo,
    TableDiff,
)

logger = get_logger(__name__)


def _short_id() -> str:
    return uuid.uuid4().hex[:12]


def _export_row(raw: RawRow) -> ExportedRow:
    try:
        data: Any = json.loads(raw.data)
    except (TypeError, ValueError):
        # Exported verbatim so the row survives a round trip
        logger.warning(
            "%s", DataInconsistency(f"Unparseable payload exported raw: {raw.kind}:{raw.id}"),
            extra={"record_id": raw.id, "snapshot": raw.snapshotset},
        )
        data = raw.data
    return ExportedRow(
        id=raw.id,
        snapshotset=raw.snapshotset,
        version=raw.version,
        data=data,
        created_at=raw.created_at,
        modified_at=raw.modified_at,
        hash=raw.hash,
    )


class SnapshotManager:
    """
    Creates, lists, deletes, exports, imports, duplicates and diffs snapshots.

    Usage:
        manager = SnapshotManager(store)
        snapshot_id = await manager.create("before-migration")
        exported = await manager.export(snapshot_id)
    """

    def __init__(self, store: VersionedRecordStore):
        self.store = store
        self.backend = store.backend

    async def create(self, name: Optional[str] = None) -> str:
        """Create a snapshot. Creating an existing id is a no-op success."""
        snapshot_id = name or _short_id()
        created = await self.backend.ensure_snapshot(snapshot_id, utcnow())
        if created:
            logger.info("Created snapshot %s", snapshot_id, extra={"snapshot": snapshot_id})
        return snapshot_id

    async def get(self, snapshot_id: str) -> Optional[SnapshotInfo]:
        row = await self.backend.get_snapshot(snapshot_id)
        if row is None:
            return None
        return SnapshotInfo(id=row.snapshotset, created_at=row.created_at)

    async def list(self) -> List[SnapshotInfo]:
        """All snapshots, newest first."""
        rows = sorted(
            await self.backend.list_snapshots(),
            key=lambda s: (s.created_at, s.snapshotset),
            reverse=True,
        )
        return [SnapshotInfo(id=s.snapshotset, created_at=s.created_at) for s in rows]

    async def delete(self, snapshot_id: str) -> bool:
        """
        Remove every row of the snapshot, kind by kind, then its index row.

        Each kind is deleted all-or-nothing. A failure part way through leaves
        the index row in place so the snapshot is still visible and the caller
        can retry the whole delete.
        """
        if await self.backend.get_snapshot(snapshot_id) is None:
            return False

        removed: Dict[str, int] = {}
        for kind in await self.backend.list_kinds(snapshot_id):
            removed[kind] = await self.backend.delete_rows(kind, snapshot_id)

        deleted = await self.backend.delete_snapshot_row(snapshot_id)
        logger.info(
            "Deleted snapshot %s (%d rows)", snapshot_id, sum(removed.values()),
            extra={"snapshot": snapshot_id, "rows_by_kind": removed},
        )
        return deleted

    async def export(self, snapshot_id: str) -> Optional[SnapshotExport]:
        """Portable form: {id, createdAt, tables: {kind: [rows]}}."""
        snapshot = await self.backend.get_snapshot(snapshot_id)
        if snapshot is None:
            return None

        tables: Dict[str, List[ExportedRow]] = {}
        for kind in await self.backend.list_kinds(snapshot_id):
            rows = await self.backend.rows_for_snapshot(kind, snapshot_id)
            if rows:
                ordered = sorted(rows, key=lambda r: (r.id, r.modified_at, r.version))
                tables[kind] = [_export_row(r) for r in ordered]

        return SnapshotExport(id=snapshot_id, created_at=snapshot.created_at, tables=tables)

    async def import_(
        self,
        snapshot_id: str,
        exported: Union[SnapshotExport, Dict[str, Any]],
    ) -> bool:
        """
        Load exported rows into `snapshot_id`.

        Rows are upserted by (id, version) inside the target snapshot. Missing
        ids become `import-<random>`, missing versions are generated and
        missing hashes are recomputed from the payload.
        """
        if not isinstance(exported, SnapshotExport):
            try:
                exported = SnapshotExport.model_validate(exported)
            except ValidationError as exc:
                logger.warning(
                    "Invalid snapshot data for %s: %s", snapshot_id, exc.errors()[:1],
                    extra={"snapshot": snapshot_id},
                )
                return False

        now = utcnow()
        await self.backend.ensure_snapshot(snapshot_id, exported.created_at or now)

        rows: List[RawRow] = []
        for kind, exported_rows in exported.tables.items():
            for item in exported_rows:
                # Only an absent payload defaults; an explicit null is kept
                payload = item.data if "data" in item.model_fields_set else {}
                rows.append(
                    RawRow(
                        kind=kind,
                        id=item.id or f"import-{_short_id()}",
                        snapshotset=snapshot_id,
                        version=item.version or generate_version_id(),
                        data=canonical_json(payload),
                        created_at=item.created_at or now,
                        modified_at=item.modified_at or now,
                        hash=item.hash or compute_content_hash(payload),
                    )
                )

        written = await self.backend.upsert_rows(rows)
        await self.backend.touch_snapshot(snapshot_id, now)
        logger.info(
            "Imported %d rows into snapshot %s", written, snapshot_id,
            extra={"snapshot": snapshot_id, "kinds": sorted(exported.tables)},
        )
        return True

    async def duplicate(
        self,
        source_id: str,
        target_id: Optional[str] = None,
    ) -> Optional[str]:
        """Copy a snapshot via export + import. None if the source is missing."""
        exported = await self.export(source_id)
        if exported is None:
            return None
        new_id = target_id or f"copy-{source_id}-{_short_id()}"
        if not await self.import_(new_id, exported):
            return None
        return new_id

    @staticmethod
    def _fingerprints(rows: List[ExportedRow]) -> Dict[str, Set[Tuple[Optional[str], str]]]:
        by_id: Dict[str, Set[Tuple[Optional[str], str]]] = defaultdict(set)
        for row in rows:
            by_id[row.id or ""].add((row.version, canonical_json(row.data)))
        return by_id

    async def compare(self, snapshot_id1: str, snapshot_id2: str) -> SnapshotComparison:
        """
        Structural diff by id and full payload equality.

        Only kinds with differences appear in `tables`. Raises
        SnapshotNotFound when either side does not exist.
        """
        first = await self.export(snapshot_id1)
        if first is None:
            raise SnapshotNotFound(snapshot_id1)
        second = await self.export(snapshot_id2)
        if second is None:
            raise SnapshotNotFound(snapshot_id2)

        tables: Dict[str, TableDiff] = {}
        for kind in sorted(set(first.tables) | set(second.tables)):
            left = self._fingerprints(first.tables.get(kind, []))
            right = self._fingerprints(second.tables.get(kind, []))

            diff = TableDiff(
                only_in_1=sorted(set(left) - set(right)),
                only_in_2=sorted(set(right) - set(left)),
                differing_ids=sorted(
                    record_id for record_id in set(left) & set(right)
                    if left[record_id] != right[record_id]
                ),
            )
            if not diff.is_empty:
                tables[kind] = diff

        return SnapshotComparison(
            snapshot1=SnapshotInfo(id=first.id, created_at=first.created_at),
            snapshot2=SnapshotInfo(id=second.id, created_at=second.created_at),
            tables=tables,
        )
