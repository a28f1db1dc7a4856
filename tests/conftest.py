"""
Pytest fixtures for skyvault tests.
"""

from typing import Any, AsyncGenerator, Callable, Dict, List, Optional

import pytest
import pytest_asyncio

from skyvault.database import build_engine
from skyvault.engines.browser.data_browser import DataBrowser
from skyvault.engines.context.workspace import Workspace
from skyvault.engines.threads.fetcher import OfflineFetcher
from skyvault.kernel.storage.backend import StorageBackend
from skyvault.kernel.storage.flatfile_backend import FlatfileBackend
from skyvault.kernel.storage.memory_backend import MemoryBackend
from skyvault.kernel.storage.sql_backend import SqlAlchemyBackend
from skyvault.kernel.store.record_store import VersionedRecordStore
from skyvault.schemas.record import RecordKind
from skyvault.schemas.thread import ThreadNodeRecord

TEST_RECORDER = "did:web:recorder.test"


@pytest_asyncio.fixture
async def memory_store() -> AsyncGenerator[VersionedRecordStore, None]:
    """Record store on the in-memory backend."""
    store = VersionedRecordStore(MemoryBackend(), recorder=TEST_RECORDER, project="tests")
    await store.initialize()
    yield store
    await store.close()


@pytest_asyncio.fixture
async def sql_backend(tmp_path) -> AsyncGenerator[SqlAlchemyBackend, None]:
    """Relational backend on a temp-file SQLite database."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'records.db'}")
    backend = SqlAlchemyBackend(engine)
    await backend.initialize()
    yield backend
    await backend.close()


@pytest_asyncio.fixture(params=["memory", "flatfile", "sql"])
async def any_store(request, tmp_path) -> AsyncGenerator[VersionedRecordStore, None]:
    """The same store contract over every backend."""
    backend: StorageBackend
    if request.param == "memory":
        backend = MemoryBackend()
    elif request.param == "flatfile":
        backend = FlatfileBackend(tmp_path / "flat")
    else:
        backend = SqlAlchemyBackend(build_engine(f"sqlite+aiosqlite:///{tmp_path / 'store.db'}"))
    store = VersionedRecordStore(backend, recorder=TEST_RECORDER)
    await store.initialize()
    yield store
    await store.close()


@pytest.fixture
def workspace() -> Workspace:
    return Workspace(name="test")


@pytest.fixture
def browser(memory_store: VersionedRecordStore) -> DataBrowser:
    return DataBrowser(memory_store, OfflineFetcher())


@pytest.fixture
def seed_thread(memory_store: VersionedRecordStore) -> Callable:
    """
    Store posts and thread nodes directly.

    Each spec is (uri, parent_uri, created_at); the first one whose parent is
    None is the root unless `root_uri` is given.
    """

    async def _seed(
        specs: List[tuple],
        root_uri: Optional[str] = None,
        snapshot: Optional[str] = None,
    ) -> Dict[str, Any]:
        root = root_uri or next(uri for uri, parent, _ in specs if parent is None)
        stored: Dict[str, Any] = {}
        for uri, parent, created in specs:
            record: Dict[str, Any] = {"text": f"post {uri.rsplit('/', 1)[-1]}", "createdAt": created}
            if parent is not None:
                record["reply"] = {"parent": {"uri": parent}, "root": {"uri": root}}
            await memory_store.put_with_provenance(RecordKind.POST, uri, record, snapshot)
            node = ThreadNodeRecord(post=uri, parent=parent, is_root=(uri == root), root_uri=root)
            await memory_store.put(RecordKind.THREAD_NODE, uri, node.model_dump(), snapshot)
            stored[uri] = record
        return stored

    return _seed
