"""Unit tests for thread reconstruction from stored nodes."""

from typing import Awaitable, Callable, List, Optional

import pytest
import pytest_asyncio

from skyvault.engines.browser.data_browser import DataBrowser
from skyvault.engines.threads.fetcher import OfflineFetcher
from skyvault.engines.threads.reconstructor import ThreadReconstructor
from skyvault.schemas.record import RecordKind
from skyvault.schemas.request_params import RequestParams
from skyvault.schemas.thread import AnomalyKind, ThreadNodeRecord


def uri(name: str) -> str:
    return f"at://did:plc:thread/app.bsky.feed.post/{name}"


def name(node) -> str:
    return node.uri.rsplit("/", 1)[-1]


class CountingFetcher(OfflineFetcher):
    """Offline fetcher that counts thread fetches and can run a hook."""

    def __init__(self, on_fetch: Optional[Callable[[str], Awaitable[None]]] = None):
        self.thread_calls: List[str] = []
        self.on_fetch = on_fetch

    async def fetch_thread(self, focus_id: str, params: RequestParams) -> None:
        self.thread_calls.append(focus_id)
        if self.on_fetch is not None:
            await self.on_fetch(focus_id)


def build(store, fetcher=None) -> ThreadReconstructor:
    fetcher = fetcher or CountingFetcher()
    return ThreadReconstructor(store, DataBrowser(store, fetcher), fetcher)


class TestTreeShape:
    """A(root) -> B -> C and B -> D."""

    @pytest_asyncio.fixture
    async def seeded(self, seed_thread):
        await seed_thread([
            (uri("A"), None, "2024-01-01T00:00:00Z"),
            (uri("B"), uri("A"), "2024-01-01T00:01:00Z"),
            (uri("D"), uri("B"), "2024-01-01T00:03:00Z"),
            (uri("C"), uri("B"), "2024-01-01T00:02:00Z"),
        ])

    @pytest.mark.asyncio
    async def test_focus_on_leaf(self, memory_store, workspace, seeded):
        view = await build(memory_store).get_thread(uri("D"), workspace)

        assert view.focus_uri == uri("D")
        assert view.root_uri == uri("A")
        assert view.thread.replies == []
        assert [name(n) for n in view.ancestors()] == ["B", "A"]
        assert view.complete
        assert view.anomalies == []

    @pytest.mark.asyncio
    async def test_focus_on_root_orders_replies(self, memory_store, workspace, seeded):
        view = await build(memory_store).get_thread(uri("A"), workspace)

        assert view.thread.parent is None
        (b,) = view.thread.replies
        assert name(b) == "B"
        assert [name(r) for r in b.replies] == ["C", "D"]

    @pytest.mark.asyncio
    async def test_result_is_cached_in_workspace(self, memory_store, workspace, seeded):
        reconstructor = build(memory_store)
        first = await reconstructor.get_thread(uri("C"), workspace)

        assert workspace.thread_focus[uri("C")] is first
        cached = await reconstructor.get_thread(uri("C"), workspace, RequestParams(use_context=True))
        assert cached is first
        rebuilt = await reconstructor.get_thread(uri("C"), workspace)
        assert rebuilt is not first

    @pytest.mark.asyncio
    async def test_serializes_both_directions(self, memory_store, workspace, seeded):
        view = await build(memory_store).get_thread(uri("B"), workspace)
        data = view.to_dict()

        assert data["thread"]["parent"]["post"]["uri"] == uri("A")
        assert [r["post"]["uri"] for r in data["thread"]["replies"]] == [uri("C"), uri("D")]
        assert data["complete"] is True


class TestAnomalies:
    """Corrupt links are reported, never followed forever."""

    @pytest.mark.asyncio
    async def test_parent_cycle_terminates(self, memory_store, workspace):
        root = uri("X")
        for post, parent, created in ((uri("X"), uri("Y"), "1"), (uri("Y"), uri("X"), "2")):
            await memory_store.put(RecordKind.POST, post, {"createdAt": created})
            node = ThreadNodeRecord(post=post, parent=parent, is_root=False, root_uri=root)
            await memory_store.put(RecordKind.THREAD_NODE, post, node.model_dump())

        view = await build(memory_store).get_thread(uri("X"), workspace)

        assert [a.kind for a in view.anomalies] == [AnomalyKind.CYCLE]
        assert [name(n) for n in view.ancestors()] == ["Y"]

    @pytest.mark.asyncio
    async def test_self_parent(self, memory_store, workspace):
        post = uri("S")
        await memory_store.put(RecordKind.POST, post, {"text": "me"})
        node = ThreadNodeRecord(post=post, parent=post, root_uri=post)
        await memory_store.put(RecordKind.THREAD_NODE, post, node.model_dump())

        view = await build(memory_store).get_thread(post, workspace)
        assert [a.kind for a in view.anomalies] == [AnomalyKind.SELF_PARENT]
        assert view.thread.parent is None

    @pytest.mark.asyncio
    async def test_root_with_parent_keeps_root(self, memory_store, workspace):
        post = uri("R")
        await memory_store.put(RecordKind.POST, post, {"text": "root"})
        node = ThreadNodeRecord(post=post, parent=uri("elsewhere"), is_root=True, root_uri=post)
        await memory_store.put(RecordKind.THREAD_NODE, post, node.model_dump())

        view = await build(memory_store).get_thread(post, workspace)
        assert [a.kind for a in view.anomalies] == [AnomalyKind.ROOT_WITH_PARENT]
        assert view.complete


class TestRefetch:
    """Fetching: once for a focus not stored as a root, once more for missing parents."""

    @pytest.mark.asyncio
    async def test_stored_root_focus_is_not_fetched(self, memory_store, workspace, seed_thread):
        await seed_thread([(uri("A"), None, "1"), (uri("B"), uri("A"), "2")])
        fetcher = CountingFetcher()

        view = await build(memory_store, fetcher).get_thread(uri("A"), workspace)

        assert fetcher.thread_calls == []
        assert view.complete

    @pytest.mark.asyncio
    async def test_reply_focus_fetches_once_then_uses_stored_node(self, memory_store, workspace, seed_thread):
        await seed_thread([(uri("A"), None, "1"), (uri("B"), uri("A"), "2")])
        fetcher = CountingFetcher()

        view = await build(memory_store, fetcher).get_thread(uri("B"), workspace)

        assert fetcher.thread_calls == [uri("B")]
        assert view.root_uri == uri("A")
        assert [name(n) for n in view.ancestors()] == ["A"]
        assert view.complete
        assert not view.retried

    @pytest.mark.asyncio
    async def test_fetch_for_reply_focus_counts_as_the_retry(self, memory_store, workspace, seed_thread):
        await seed_thread([(uri("A"), None, "1"), (uri("B"), uri("A"), "2")])
        await seed_thread([(uri("C"), uri("gone"), "3")], root_uri=uri("A"))
        fetcher = CountingFetcher()

        view = await build(memory_store, fetcher).get_thread(uri("C"), workspace)

        assert fetcher.thread_calls == [uri("C")]
        assert not view.retried
        assert view.unwired == [uri("gone")]
        assert not view.complete

    @pytest.mark.asyncio
    async def test_missing_parent_retries_once(self, memory_store, workspace, seed_thread):
        await seed_thread([(uri("A"), None, "1"), (uri("B"), uri("A"), "2")])
        await seed_thread([(uri("C"), uri("gone"), "3")], root_uri=uri("A"))
        fetcher = CountingFetcher()

        view = await build(memory_store, fetcher).get_thread(uri("A"), workspace)

        assert fetcher.thread_calls == [uri("A")]
        assert view.retried
        assert view.unwired == [uri("gone")]
        assert not view.complete
        assert AnomalyKind.MISSING_PARENT in [a.kind for a in view.anomalies]


    @pytest.mark.asyncio
    async def test_refetch_that_finds_parent_completes(self, memory_store, workspace, seed_thread):
        await seed_thread([(uri("A"), None, "1")])
        await seed_thread([(uri("C"), uri("B"), "3")], root_uri=uri("A"))

        async def deliver_parent(_focus: str) -> None:
            await seed_thread([(uri("B"), uri("A"), "2")], root_uri=uri("A"))

        fetcher = CountingFetcher(deliver_parent)
        view = await build(memory_store, fetcher).get_thread(uri("C"), workspace)

        assert len(fetcher.thread_calls) == 1
        assert view.complete
        assert [name(n) for n in view.ancestors()] == ["B", "A"]

    @pytest.mark.asyncio
    async def test_unknown_focus_fetches_then_gives_up(self, memory_store, workspace):
        fetcher = CountingFetcher()
        view = await build(memory_store, fetcher).get_thread(uri("nothing"), workspace)

        assert view is None
        assert fetcher.thread_calls == [uri("nothing")]
        assert workspace.thread_focus == {}

    @pytest.mark.asyncio
    async def test_force_refetches_known_thread(self, memory_store, workspace, seed_thread):
        await seed_thread([(uri("A"), None, "1")])
        fetcher = CountingFetcher()

        await build(memory_store, fetcher).get_thread(uri("A"), workspace, RequestParams(force=True))
        assert fetcher.thread_calls == [uri("A")]
