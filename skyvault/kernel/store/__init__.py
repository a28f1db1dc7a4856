"""
Versioned record store and provenance ledger.
"""

from skyvault.kernel.store.provenance import ProvenanceLedger
from skyvault.kernel.store.record_store import (
    ThreadSet,
    VersionedRecordStore,
    decode_row,
    kind_name,
    latest_per_id,
)

__all__ = [
    "ProvenanceLedger",
    "ThreadSet",
    "VersionedRecordStore",
    "decode_row",
    "kind_name",
    "latest_per_id",
]
