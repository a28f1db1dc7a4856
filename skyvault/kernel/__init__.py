"""
Kernel Layer

Foundational storage components:
- Versioned Record Store (snapshot-scoped, hash-chained versions)
- Provenance Entry Ledger (who captured what, when)
- Snapshot Manager (lifecycle, export/import, diffs)
- Storage backends (relational, flat-file, in-memory)

Invariants:
- Every record belongs to exactly one snapshot
- Version N's hash is derived from version N-1's hash and N's payload
- Backends never contain business logic
"""

from skyvault.kernel.errors import (
    ConflictRetryExhausted,
    DataInconsistency,
    NotFound,
    SkyvaultError,
    SnapshotNotFound,
    StorageError,
)
from skyvault.kernel.snapshots import SnapshotManager
from skyvault.kernel.storage import (
    FlatfileBackend,
    MemoryBackend,
    SqlAlchemyBackend,
    StorageBackend,
    create_backend,
)
from skyvault.kernel.store import ProvenanceLedger, ThreadSet, VersionedRecordStore

__all__ = [
    "ConflictRetryExhausted",
    "DataInconsistency",
    "NotFound",
    "SkyvaultError",
    "SnapshotNotFound",
    "StorageError",
    "SnapshotManager",
    "FlatfileBackend",
    "MemoryBackend",
    "SqlAlchemyBackend",
    "StorageBackend",
    "create_backend",
    "ProvenanceLedger",
    "ThreadSet",
    "VersionedRecordStore",
]
