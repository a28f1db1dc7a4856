"""
Storage backend contract.

Backends implement raw keyed row operations only. Hash chaining, snapshot
scoping rules, latest-version resolution and payload field filters all live
in VersionedRecordStore, so every adapter behaves identically above this line.

Payloads cross this boundary as raw JSON text; decoding (and deciding what to
do with a malformed payload) is the store's job.
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Iterable, List, Optional

from skyvault.schemas.record import MatchMode, field_value


@dataclass
class RawRow:
    """One stored version exactly as the backend keeps it."""

    kind: str
    id: str
    snapshotset: str
    version: str
    data: str
    created_at: datetime
    modified_at: datetime
    hash: Optional[str] = None

    @property
    def key(self) -> tuple:
        return (self.kind, self.snapshotset, self.id, self.version)

    def copy(self, **changes) -> "RawRow":
        return replace(self, **changes)


@dataclass
class SnapshotRow:
    """Snapshot index entry."""

    snapshotset: str
    created_at: datetime
    modified_at: datetime


def row_field_equals(row: RawRow, field: str, value: Any) -> bool:
    """Decode a row's payload and compare one dotted field."""
    try:
        payload = json.loads(row.data)
    except (TypeError, ValueError):
        return False
    found, current = field_value(payload, field)
    return found and current == value


class StorageBackend(ABC):
    """Abstract raw storage for versioned record rows."""

    name: str = "abstract"

    async def initialize(self) -> None:
        """Prepare the backing engine (tables, directories). Idempotent."""

    async def close(self) -> None:
        """Release backend resources."""

    # Snapshot index

    @abstractmethod
    async def ensure_snapshot(self, snapshot_id: str, when: datetime) -> bool:
        """Create the snapshot if missing. Returns True when it was created."""

    @abstractmethod
    async def touch_snapshot(self, snapshot_id: str, when: datetime) -> None:
        """Bump the snapshot's modification timestamp."""

    @abstractmethod
    async def get_snapshot(self, snapshot_id: str) -> Optional[SnapshotRow]:
        ...

    @abstractmethod
    async def list_snapshots(self) -> List[SnapshotRow]:
        ...

    @abstractmethod
    async def delete_snapshot_row(self, snapshot_id: str) -> bool:
        """Remove only the index row. Returns False if it did not exist."""

    # Rows

    @abstractmethod
    async def insert_row(self, row: RawRow) -> None:
        """Insert a new version. The (kind, snapshot, id, version) key must be new."""

    @abstractmethod
    async def upsert_rows(self, rows: Iterable[RawRow]) -> int:
        """Insert or replace versions by key. Returns the number of rows written."""

    @abstractmethod
    async def fetch_versions(
        self,
        kind: str,
        record_id: str,
        snapshot: Optional[str] = None,
    ) -> List[RawRow]:
        """All versions of one logical id, optionally limited to a snapshot."""

    @abstractmethod
    async def fetch_many(
        self,
        kind: str,
        record_ids: List[str],
        snapshot: Optional[str] = None,
    ) -> List[RawRow]:
        """All versions of several logical ids in one round trip."""

    @abstractmethod
    async def find_rows(
        self,
        kind: str,
        pattern: str,
        mode: MatchMode = MatchMode.PREFIX,
        snapshot: Optional[str] = None,
    ) -> List[RawRow]:
        """All versions of every id matching the pattern."""

    @abstractmethod
    async def find_by_field(
        self,
        kind: str,
        field: str,
        value: Any,
        snapshot: Optional[str] = None,
    ) -> List[RawRow]:
        """
        All versions whose JSON payload holds `value` at the dotted `field`.

        Rows with an unparseable payload never match.
        """

    @abstractmethod
    async def rows_for_snapshot(
self, kind: str, snapshot: str) -> List[RawRow]:
        ...

    @abstractmethod
    async def list_kinds(self, snapshot: Optional[str] = None) -> List[str]:
        """Kinds that hold at least one row (in the snapshot, if given)."""

    @abstractmethod
    async def delete_rows(self, kind: str, snapshot: str) -> int:
        """
        Delete every row of a kind in a snapshot.

        All-or-nothing: on failure no row of that kind is removed.
        """
