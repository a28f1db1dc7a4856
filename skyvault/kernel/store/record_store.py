"""
Versioned Record Store.

Stores opaque JSON payloads keyed by (kind, logical id, version) inside a
snapshot, chains a content hash across the versions of each logical id, and
resolves "latest version" by modification time. Backends only move raw rows;
everything in this module is backend-neutral.

Usage:
    store = VersionedRecordStore(MemoryBackend())
    await store.put("post", "at://did:abc/post/1", {"text": "hi"}, snapshot="s1")
    latest = await store.get("post", "at://did:abc/post/1", snapshot="s1")
"""

import asyncio
import json
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional, Tuple, Union

from pydantic import ValidationError

from skyvault.kernel.errors import DataInconsistency
from skyvault.kernel.hashing import canonical_json, compute_content_hash, first_broken_link
from skyvault.kernel.models.base import generate_version_id, utcnow
from skyvault.kernel.storage.backend import RawRow, StorageBackend
from skyvault.kernel.store.provenance import ProvenanceLedger
from skyvault.logging_config import get_logger
from skyvault.schemas.entry import Entry
from skyvault.schemas.record import (
    ChainVerification,
    FieldFilter,
    MatchMode,
    PutResult,
    RecordKind,
    RecordRow,
)
from skyvault.schemas.thread import AnomalyKind, ThreadAnomaly, ThreadNodeRecord

logger = get_logger(__name__)

KindLike = Union[RecordKind, str]

# Versions of one id must have strictly increasing modification times
_MIN_STEP = timedelta(microseconds=1)


def kind_name(kind: KindLike) -> str:
    return kind.value if isinstance(kind, RecordKind) else str(kind)


def _order_key(row: Union[RawRow, RecordRow]) -> Tuple:
    return (row.modified_at, row.version)


def decode_row(raw: RawRow) -> Optional[RecordRow]:
    """Decode a raw row; malformed payloads are logged and treated as absent."""
    try:
        data = json.loads(raw.data)
    except (TypeError, ValueError) as exc:
        issue = DataInconsistency(
            f"Unparseable payload for {raw.kind}:{raw.id}@{raw.version}",
            record_id=raw.id,
            kind=raw.kind,
            snapshot=raw.snapshotset,
        )
        logger.warning(
            "%s (%s)", issue, exc,
            extra={"record_id": raw.id, "kind": raw.kind, "snapshot": raw.snapshotset},
        )
        return None
    return RecordRow(
        kind=raw.kind,
        id=raw.id,
        snapshotset=raw.snapshotset,
        version=raw.version,
        data=data,
        created_at=raw.created_at,
        modified_at=raw.modified_at,
        hash=raw.hash,
    )


def latest_per_id(rows: Iterable[RawRow]) -> Dict[str, RecordRow]:
    """Latest decodable version of every id (max modified_at, then version)."""
    best: Dict[str, RecordRow] = {}
    for raw in sorted(rows, key=_order_key, reverse=True):
        if raw.id in best:
            continue
        decoded = decode_row(raw)
        if decoded is not None:
            best[raw.id] = decoded
    return best


def newest_first(rows: Iterable[RecordRow]) -> List[RecordRow]:
    """Order by modification time descending, ties broken by id ascending."""
    by_id = sorted(rows, key=lambda r: r.id)
    return sorted(by_id, key=lambda r: r.modified_at, reverse=True)


@dataclass
class _KeyLock:
    """A writer lock plus the number of tasks holding or waiting on it."""

    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


@dataclass
class ThreadSet:
    """Flat node set of one conversation, fetched in bulk."""

    root_uri: str
    nodes: Dict[str, ThreadNodeRecord] = field(default_factory=dict)
    posts: Dict[str, Entry] = field(default_factory=dict)
    anomalies: List[ThreadAnomaly] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.nodes)


class VersionedRecordStore:
    """
    Snapshot-scoped, versioned storage for opaque records.

    A `snapshot` of None on reads means "every snapshot": the latest version
    across all of them wins. Writes always land in one snapshot (the default
    one when none is given).
    """

    def __init__(
        self,
        backend: StorageBackend,
        *,
        default_snapshot: str = "default",
        recorder: str = "unknown",
        project: str = "",
    ):
        self.backend = backend
        self.default_snapshot = default_snapshot
        self._locks: Dict[Tuple[str, str, str], _KeyLock] = {}
        self.ledger = ProvenanceLedger(self, recorder=recorder, project=project)

    async def initialize(self) -> None:
        await self.backend.initialize()

    async def close(self) -> None:
        await self.backend.close()

    @asynccontextmanager
    async def _lock_for(self, kind: str, record_id: str, snapshot: str) -> AsyncIterator[None]:
        """Serialize writers of one key; the entry is dropped once nobody uses it."""
        key = (kind, record_id, snapshot)
        entry = self._locks.get(key)
        if entry is None:
            entry = self._locks[key] = _KeyLock()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._locks[key]

    # Writes

    async def put(
        self,
        kind: KindLike,
        record_id: str,
        payload: Any,
        snapshot: Optional[str] = None,
        version: Optional[str] = None,
    ) -> PutResult:
        """
        Store a new version and return its identity.

        The previous-hash read, hash computation and insert run under a lock
        scoped to (kind, id, snapshot) so concurrent writers cannot chain
        against the same stale hash.
        """
        kind = kind_name(kind)
        snapshot = snapshot or self.default_snapshot
        version = version or generate_version_id()
        serialized = canonical_json(payload)

        async with self._lock_for(kind, record_id, snapshot):
            now = utcnow()
            await self.backend.ensure_snapshot(snapshot, now)

            existing = await self.backend.fetch_versions(kind, record_id, snapshot)
            previous = max(existing, key=_order_key) if existing else None

            modified_at = now
            if previous is not None and modified_at <= previous.modified_at:
                modified_at = previous.modified_at + _MIN_STEP

            content_hash = compute_content_hash(
                payload,
                previous.hash if previous is not None else None,
            )
            await self.backend.insert_row(
                RawRow(
                    kind=kind,
                    id=record_id,
                    snapshotset=snapshot,
                    version=version,
                    data=serialized,
                    created_at=now,
                    modified_at=modified_at,
                    hash=content_hash,
                )
            )
            await self.backend.touch_snapshot(snapshot, modified_at)

        logger.debug(
            "Stored %s:%s@%s in %s", kind, record_id, version, snapshot,
            extra={"kind": kind, "record_id": record_id, "snapshot": snapshot},
        )
        return PutResult(id=record_id, version=version, hash=content_hash)

    async def put_with_provenance(
        self,
        kind: KindLike,
        record_id: str,
        payload: Any,
        snapshot: Optional[str] = None,
        *,
        linked_to: Optional[List[str]] = None,
        recorder: Optional[str] = None,
    ) -> PutResult:
        """Store a record and pair it with one ledger entry in the same snapshot."""
        result = await self.put(kind, record_id, payload, snapshot)
        await self.ledger.record(
            identity=record_id,
            record_type=kind_name(kind),
            snapshot=snapshot,
            record_version=result.version,
            linked_to=linked_to,
            recorder=recorder,
        )
        return result

    # Reads

    async def versions(
        self,
        kind: KindLike,
        record_id: str,
        snapshot: Optional[str] = None,
    ) -> List[RecordRow]:
        """Every decodable version of an id, newest first."""
        raw = await self.backend.fetch_versions(kind_name(kind), record_id, snapshot)
        decoded = (decode_row(r) for r in sorted(raw, key=_order_key, reverse=True))
        return [r for r in decoded if r is not None]

    async def versions_many(
        self,
        kind: KindLike,
        record_ids: List[str],
        snapshot: Optional[str] = None,
    ) -> List[RecordRow]:
        """Every decodable version of several ids, newest first."""
        if not record_ids:
            return []
        raw = await self.backend.fetch_many(kind_name(kind), record_ids, snapshot)
        decoded = (decode_row(r) for r in sorted(raw, key=_order_key, reverse=True))
        return [r for r in decoded if r is not None]

    async def get_row(
        self,
        kind: KindLike,
        record_id: str,
        version: Optional[str] = None,
        snapshot: Optional[str] = None,
    ) -> Optional[RecordRow]:
        """Resolve one stored row: the given version, else the latest one."""
        rows = await self.versions(kind, record_id, snapshot)
        if version is not None:
            # Newest first, so an imported duplicate in another snapshot loses
            return next((r for r in rows if r.version == version), None)
        return rows[0] if rows else None

    async def get(
        self,
        kind: KindLike,
        record_id: str,
        version: Optional[str] = None,
        snapshot: Optional[str] = None,
    ) -> Optional[Any]:
        row = await self.get_row(kind, record_id, version, snapshot)
        return row.data if row is not None else None

    async def get_entry(
        self,
        kind: KindLike,
        record_id: str,
        version: Optional[str] = None,
        snapshot: Optional[str] = None,
    ) -> Optional[Entry]:
        """Record joined with its provenance on (id, snapshot) of the resolved row."""
        row = await self.get_row(kind, record_id, version, snapshot)
        if row is None:
            return None
        provenance = await self.ledger.resolve(row)
        return self.ledger.to_entry(row, provenance)

    async def rows_for_ids(
        self,
        kind: KindLike,
        record_ids: List[str],
        snapshot: Optional[str] = None,
    ) -> Dict[str, RecordRow]:
        """Latest version of each requested id, in one backend round trip."""
        if not record_ids:
            return {}
        raw = await self.backend.fetch_many(kind_name(kind), record_ids, snapshot)
        return latest_per_id(raw)

    async def search(
        self,
        kind: KindLike,
        id_pattern: str,
        field_filter: Optional[FieldFilter] = None,
        match: MatchMode = MatchMode.PREFIX,
        snapshot: Optional[str] = None,
    ) -> List[RecordRow]:
        """
        Latest version of every id matching the pattern.

        Ordered newest-modified first; ties broken by id so repeated calls
        return the same order.
        """
        raw = await self.backend.find_rows(kind_name(kind), id_pattern, match, snapshot)
        rows = latest_per_id(raw).values()
        if field_filter is not None:
            rows = [r for r in rows if field_filter.matches(r.data)]
        return newest_first(rows)

    async def find_by_field(
        self,
        kind: KindLike,
        field_path: str,
        value: Any,
        snapshot: Optional[str] = None,
    ) -> List[RecordRow]:
        """Latest version of every id whose latest payload holds `value` at `field_path`."""
        kind = kind_name(kind)
        matched = await self.backend.find_by_field(kind, field_path, value, snapshot)
        if not matched:
            return []
        latest = await self.rows_for_ids(kind, sorted({r.id for r in matched}), snapshot)
        field_filter = FieldFilter(field=field_path, value=value)
        return newest_first(r for r in latest.values() if field_filter.matches(r.data))

    async def latest_for_owner(
        self,
        kind: KindLike,
        owner_id: str,
        as_path_prefix: bool = True,
        snapshot: Optional[str] = None,
    ) -> List[Entry]:
        """Latest version of every record owned by `owner_id`, with provenance."""
        if as_path_prefix:
            rows = await self.search(kind, f"at://{owner_id}/", snapshot=snapshot)
        else:
            rows = await self.search(kind, owner_id, match=MatchMode.EXACT, snapshot=snapshot)
        return await self.ledger.join(rows)

    async def latest_for_thread(
        self,
        root_uri: str,
        snapshot: Optional[str] = None,
    ) -> ThreadSet:
        """
        All thread nodes whose root is `root_uri`, plus the latest post entry
        for each.

        Candidate nodes come from a payload field query; their latest
        versions are then loaded in bulk so a node re-rooted by a newer
        version drops out.
        """
        thread = ThreadSet(root_uri=root_uri)
        kind = RecordKind.THREAD_NODE.value
        matched = await self.backend.find_by_field(kind, "root_uri", root_uri, snapshot)
        candidates = {r.id for r in matched}
        candidates.add(root_uri)
        node_rows = await self.rows_for_ids(kind, sorted(candidates), snapshot)

        for record_id, row in node_rows.items():
            try:
                node = ThreadNodeRecord.model_validate(row.data)
            except ValidationError as exc:
                issue = DataInconsistency(
                    f"Malformed thread node {record_id}",
                    record_id=record_id,
                )
                logger.warning("%s: %s", issue, exc.errors()[:1])
                if isinstance(row.data, dict) and row.data.get("root_uri") == root_uri:
                    thread.anomalies.append(
                        ThreadAnomaly(kind=AnomalyKind.MALFORMED_NODE, uri=record_id, detail=str(issue))
                    )
                continue
            if node.root_uri == root_uri or record_id == root_uri:
                thread.nodes[record_id] = node

        post_rows = await self.rows_for_ids(RecordKind.POST, list(thread.nodes), snapshot)
        for entry in await self.ledger.join(post_rows.values()):
            thread.posts[entry.identity] = entry
        return thread

    # Chain inspection

    async def history(
        self,
        kind: KindLike,
        record_id: str,
        snapshot: Optional[str] = None,
    ) -> List[RecordRow]:
        """Every decodable version of an id in a snapshot, oldest first."""
        rows = await self.versions(kind, record_id, snapshot or self.default_snapshot)
        return list(reversed(rows))

    async def verify_chain(
        self,
        kind: KindLike,
        record_id: str,
        snapshot: Optional[str] = None,
    ) -> ChainVerification:
        """
        Re-derive the hash chain of one id. Advisory only: reads never
        enforce it, this reports where the chain first stops matching.
        """
        kind = kind_name(kind)
        snapshot = snapshot or self.default_snapshot
        raw_rows = sorted(
            await self.backend.fetch_versions(kind, record_id, snapshot),
            key=_order_key,
        )

        # An undecodable version ends the checkable prefix
        links: List[Tuple[Any, Optional[str]]] = []
        broken_at: Optional[str] = None
        for raw in raw_rows:
            decoded = decode_row(raw)
            if decoded is None:
                broken_at = raw.version
                break
            links.append((decoded.data, raw.hash))

        index = first_broken_link(links)
        if index is not None:
            broken_at = raw_rows[index].version

        if broken_at is not None:
            logger.warning(
                "Hash chain broken for %s:%s at version %s", kind, record_id, broken_at,
                extra={"kind": kind, "record_id": record_id, "snapshot": snapshot},
            )
        return ChainVerification(
            kind=kind,
            id=record_id,
            snapshotset=snapshot,
            versions=len(raw_rows),
            intact=broken_at is None,
            broken_at_version=broken_at,
        )
