"""
Storage backends for the versioned record store.
"""

from skyvault.kernel.storage.backend import RawRow, SnapshotRow, StorageBackend
from skyvault.kernel.storage.factory import create_backend
from skyvault.kernel.storage.flatfile_backend import FlatfileBackend
from skyvault.kernel.storage.memory_backend import MemoryBackend
from skyvault.kernel.storage.sql_backend import SqlAlchemyBackend

__all__ = [
    "RawRow",
    "SnapshotRow",
    "StorageBackend",
    "create_backend",
    "FlatfileBackend",
    "MemoryBackend",
    "SqlAlchemyBackend",
]
