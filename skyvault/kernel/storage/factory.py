"""
Backend selection from settings.
"""

from typing import Optional

from skyvault.config import Settings, get_settings
from skyvault.kernel.storage.backend import StorageBackend
from skyvault.kernel.storage.flatfile_backend import FlatfileBackend
from skyvault.kernel.storage.memory_backend import MemoryBackend
from skyvault.kernel.storage.sql_backend import SqlAlchemyBackend


def create_backend(settings: Optional[Settings] = None) -> StorageBackend:
    """Build the storage backend named by `storage_backend`."""
    settings = settings or get_settings()
    kind = settings.storage_backend.lower()

    if kind == "sql":
        from skyvault.database import engine, async_session_maker

        return SqlAlchemyBackend(engine, async_session_maker)
    if kind == "flatfile":
        return FlatfileBackend(settings.flatfile_base_dir)
    if kind == "memory":
        return MemoryBackend()
    raise ValueError(f"Unknown storage backend: {settings.storage_backend}")
