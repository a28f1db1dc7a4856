"""
Provenance Entry Ledger.

A parallel stream of records (kind "entry") saying who captured what, when,
and what it links to. Entries share the logical id and snapshot of the record
they describe and are joined back to it on read. A record without a ledger
entry gets a SyntheticProvenance built from its own row, never an error.
"""

from collections import defaultdict
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional

from pydantic import ValidationError

from skyvault.kernel.errors import DataInconsistency
from skyvault.logging_config import get_logger
from skyvault.schemas.entry import Entry, Provenance, ProvenanceEntry, SyntheticProvenance, now_ms
from skyvault.schemas.record import RecordKind, RecordRow

if TYPE_CHECKING:
    from skyvault.kernel.store.record_store import VersionedRecordStore

logger = get_logger(__name__)

ENTRY_KIND = RecordKind.ENTRY.value


class ProvenanceLedger:
    """Writes and joins provenance entries through the record store."""

    def __init__(
        self,
        store: "VersionedRecordStore",
        *,
        recorder: str = "unknown",
        project: str = "",
    ):
        self.store = store
        self.recorder = recorder
        self.project = project

    async def record(
        self,
        identity: str,
        record_type: str,
        snapshot: Optional[str] = None,
        record_version: Optional[str] = None,
        linked_to: Optional[List[str]] = None,
        recorder: Optional[str] = None,
        recorded_at: Optional[int] = None,
    ) -> ProvenanceEntry:
        """Append one provenance entry for a primary record."""
        entry = ProvenanceEntry(
            identity=identity,
            record_type=record_type,
            record_version=record_version,
            recorded_at=recorded_at if recorded_at is not None else now_ms(),
            recorder=recorder or self.recorder,
            linked_to=list(linked_to or []),
            project=self.project,
        )
        await self.store.put(
            ENTRY_KIND,
            identity,
            entry.model_dump(mode="json", exclude={"source"}),
            snapshot,
        )
        return entry

    def _decode_entry(self, row: RecordRow) -> Optional[ProvenanceEntry]:
        try:
            return ProvenanceEntry.model_validate(row.data)
        except ValidationError as exc:
            issue = DataInconsistency(
                f"Malformed provenance entry for {row.id}",
                record_id=row.id,
                snapshot=row.snapshotset,
            )
            logger.warning("%s: %s", issue, exc.errors()[:1])
            return None

    @staticmethod
    def _select(
        candidates: List[ProvenanceEntry],
        record_type: str,
        record_version: Optional[str],
    ) -> Optional[ProvenanceEntry]:
        # Candidates arrive newest first
        typed = [c for c in candidates if c.record_type == record_type]
        for entry in typed:
            if entry.record_version is None or entry.record_version == record_version:
                return entry
        return typed[0] if typed else None

    async def lookup(
        self,
        identity: str,
        snapshot: str,
        record_type: str,
        record_version: Optional[str] = None,
    ) -> Optional[ProvenanceEntry]:
        """Ledger entry for a record, or None when nothing was recorded."""
        rows = await self.store.versions(ENTRY_KIND, identity, snapshot)
        candidates = [e for e in (self._decode_entry(r) for r in rows) if e is not None]
        return self._select(candidates, record_type, record_version)

    def synthesize(self, row: RecordRow, reason: str) -> SyntheticProvenance:
        """Stand-in provenance from the record row's own metadata."""
        return SyntheticProvenance(
            reason=reason,
            identity=row.id,
            record_type=row.kind,
            record_version=row.version,
            recorded_at=int(row.modified_at.timestamp() * 1000),
            recorder="unknown",
            linked_to=[],
            project=self.project,
        )

    def _fallback(self, row: RecordRow) -> SyntheticProvenance:
        issue = DataInconsistency(
            f"No provenance entry for {row.kind}:{row.id}",
            record_id=row.id,
            snapshot=row.snapshotset,
        )
        logger.info(
            "%s; using row metadata", issue,
            extra={"record_id": row.id, "snapshot": row.snapshotset},
        )
        return self.synthesize(row, reason="no ledger entry")

    async def resolve(self, row: RecordRow) -> Provenance:
        entry = await self.lookup(row.id, row.snapshotset, row.kind, row.version)
        return entry if entry is not None else self._fallback(row)

    @staticmethod
    def to_entry(row: RecordRow, provenance: Provenance) -> Entry:
        return Entry(
            record=row.data,
            identity=row.id,
            record_type=row.kind,
            record_version=row.version,
            snapshotset=row.snapshotset,
            hash=row.hash,
            provenance=provenance,
        )

    async def join(self, rows: Iterable[RecordRow]) -> List[Entry]:
        """
        Join many rows with their provenance, preserving order. One ledger
        query per snapshot present in the rows.
        """
        rows = list(rows)
        by_snapshot: Dict[str, List[str]] = defaultdict(list)
        for row in rows:
            by_snapshot[row.snapshotset].append(row.id)

        candidates: Dict[tuple, List[ProvenanceEntry]] = defaultdict(list)
        for snapshot, ids in by_snapshot.items():
            for entry_row in await self.store.versions_many(ENTRY_KIND, ids, snapshot):
                entry = self._decode_entry(entry_row)
                if entry is not None:
                    candidates[(snapshot, entry_row.id)].append(entry)

        entries = []
        for row in rows:
            chosen = self._select(candidates.get((row.snapshotset, row.id), []), row.kind, row.version)
            entries.append(self.to_entry(row, chosen if chosen is not None else self._fallback(row)))
        return entries
