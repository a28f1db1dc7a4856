"""Unit tests for workspaces, their persistence adapters and the service."""

import json

import pytest
import pytest_asyncio

from skyvault.config import Settings
from skyvault.database import build_engine, build_session_maker
from skyvault.engines.context.persistence import (
    FileWorkspaceHandler,
    InMemoryWorkspaceHandler,
    SqlWorkspaceHandler,
)
from skyvault.engines.context.workspace import Workspace
from skyvault.engines.context.workspace_service import WorkspaceService, create_workspace_service
from skyvault.schemas.thread import AuthorView, FocusView, PostView, ThreadViewNode

URI = "at://did:plc:frank/app.bsky.feed.post/1"
PARENT = "at://did:plc:frank/app.bsky.feed.post/0"


def _post(uri: str = URI) -> PostView:
    return PostView(uri=uri, record={"text": "hello"}, author=AuthorView(did="did:plc:frank", handle="frank.test"))


def _focus() -> FocusView:
    node = ThreadViewNode(post=_post(), record={"text": "hello"})
    node.parent = ThreadViewNode(post=_post(PARENT), record={"text": "parent"})
    return FocusView(focus_uri=URI, root_uri=PARENT, thread=node)


@pytest_asyncio.fixture(params=["memory", "file", "sql"])
async def persistence(request, tmp_path):
    if request.param == "memory":
        handler = InMemoryWorkspaceHandler()
    elif request.param == "file":
        handler = FileWorkspaceHandler(tmp_path / "workspaces")
    else:
        engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'ws.db'}")
        handler = SqlWorkspaceHandler(engine, build_session_maker(engine))
    await handler.initialize()
    yield handler
    if request.param == "sql":
        await handler.engine.dispose()


class TestWorkspace:
    """The in-memory context itself."""

    def test_cache_and_clear(self):
        workspace = Workspace(name="w")
        workspace.cache_post(_post())
        workspace.cache_focus(_focus())
        workspace.loaded_owner = "did:plc:frank"

        workspace.clear()
        assert workspace.posts == {}
        assert workspace.thread_focus == {}
        assert workspace.loaded_owner is None

    def test_dict_round_trip_keeps_focus_shape(self):
        workspace = Workspace(name="w", labelers=["did:plc:labeler"])
        workspace.cache_post(_post())
        workspace.cache_focus(_focus())

        restored = Workspace.from_dict(json.loads(json.dumps(workspace.to_dict())))
        assert restored.labelers == ["did:plc:labeler"]
        assert restored.posts[URI].author.handle == "frank.test"
        assert restored.thread_focus[URI].thread.parent.uri == PARENT

    def test_unreadable_items_are_dropped(self):
        restored = Workspace.from_dict({
            "name": "w",
            "posts": {URI: {"uri": URI}},
            "thread_focus": {URI: {"focus_uri": URI}},
        })
        assert restored.posts == {}
        assert restored.thread_focus == {}


class TestPersistence:
    """Every adapter honors the same contract."""

    @pytest.mark.asyncio
    async def test_save_load_list_delete(self, persistence):
        workspace = Workspace(name="research/2024", loaded_owner="did:plc:frank")
        workspace.cache_post(_post())
        workspace.cache_focus(_focus())
        await persistence.save(workspace)

        loaded = await persistence.load("research/2024")
        assert loaded.loaded_owner == "did:plc:frank"
        assert set(loaded.posts) == {URI}
        assert loaded.thread_focus[URI].root_uri == PARENT
        assert await persistence.list() == ["research/2024"]

        assert await persistence.delete("research/2024") is True
        assert await persistence.delete("research/2024") is False
        assert await persistence.load("research/2024") is None

    @pytest.mark.asyncio
    async def test_save_replaces_items(self, persistence):
        workspace = Workspace(name="w")
        workspace.cache_post(_post())
        await persistence.save(workspace)
        workspace.clear()
        await persistence.save(workspace)

        assert (await persistence.load("w")).posts == {}


    @pytest.mark.asyncio
    async def test_corrupt_file_is_moved_aside(self, tmp_path):
        handler = FileWorkspaceHandler(tmp_path)
        await handler.initialize()
        (tmp_path / "main.json").write_text("{not json", encoding="utf-8")

        service = WorkspaceService(handler, default_name="main")
        workspace = await service.get()

        assert workspace.posts == {}
        assert await handler.list() == ["main"]
        (aside,) = tmp_path.glob("main.json.corrupt-*")
        assert aside.read_text(encoding="utf-8") == "{not json"


class TestWorkspaceService:

    """Selecting, switching and flushing."""

    @pytest.mark.asyncio
    async def test_get_creates_and_persists(self):
        handler = InMemoryWorkspaceHandler()
        service = WorkspaceService(handler, default_name="main")

        workspace = await service.get()
        assert workspace.name == "main"
        assert service.current is workspace
        assert await handler.list() == ["main"]
        assert await service.get("main") is workspace

    @pytest.mark.asyncio
    async def test_switch_flushes_current(self):
        handler = InMemoryWorkspaceHandler()
        service = WorkspaceService(handler)
        first = await service.get("one")
        first.cache_post(_post())

        await service.switch("two")
        assert service.current.name == "two"
        assert set((await handler.load("one")).posts) == {URI}

    @pytest.mark.asyncio
    async def test_get_other_name_flushes_current(self):
        handler = InMemoryWorkspaceHandler()
        service = WorkspaceService(handler)
        (await service.get("one")).cache_post(_post())

        await service.get("two")
        assert set((await handler.load("one")).posts) == {URI}

    @pytest.mark.asyncio
    async def test_delete_current_resets_selection(self):
        service = WorkspaceService(InMemoryWorkspaceHandler(), default_name="main")
        await service.switch("temp")

        assert await service.delete("temp") is True
        assert service.current is None
        assert (await service.get()).name == "main"

    def test_factory_selects_adapter(self, tmp_path):
        service = create_workspace_service(
            Settings(workspace_backend="file", workspace_dir=str(tmp_path), default_workspace="x")
        )
        assert isinstance(service.persistence, FileWorkspaceHandler)
        assert service.default_name == "x"

        with pytest.raises(ValueError):
            create_workspace_service(Settings(workspace_backend="cloud"))
