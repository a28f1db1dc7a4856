"""Unit tests for fetch collaborators and thread capture."""

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from skyvault.engines.threads.capture import ThreadCapture
from skyvault.engines.threads.fetcher import (
    AppViewFetcher,
    FetchCollaborator,
    OfflineFetcher,
    create_fetcher,
)
from skyvault.config import Settings
from skyvault.kernel.storage.memory_backend import MemoryBackend
from skyvault.kernel.store.record_store import VersionedRecordStore
from skyvault.schemas.record import RecordKind
from skyvault.schemas.request_params import RequestParams

DID = "did:plc:erin"


def _post(rkey: str, parent: str = None, root: str = None) -> dict:
    record = {"text": rkey, "createdAt": f"2024-01-01T00:00:0{rkey[-1]}Z"}
    if parent:
        record["reply"] = {"parent": {"uri": parent}, "root": {"uri": root or parent}}
    return {
        "uri": f"at://{DID}/app.bsky.feed.post/{rkey}",
        "cid": f"cid{rkey}",
        "author": {"did": DID, "handle": "erin.test", "displayName": "Erin"},
        "record": record,
    }


def _uri(rkey: str) -> str:
    return f"at://{DID}/app.bsky.feed.post/{rkey}"


def _thread_view() -> dict:
    """getPostThread view focused on p2: parent p1, reply p3."""
    return {
        "post": _post("p2", _uri("p1")),
        "parent": {"post": _post("p1")},
        "replies": [{"post": _post("p3", _uri("p2"), _uri("p1"))}],
    }


class TestThreadCapture:
    """Storing fetched thread views."""

    @pytest.mark.asyncio
    async def test_store_thread_writes_posts_nodes_and_profiles(self, memory_store):
        nodes = await ThreadCapture(memory_store).store_thread(_thread_view(), RequestParams())

        assert {n.post for n in nodes} == {_uri("p1"), _uri("p2"), _uri("p3")}
        assert all(n.root_uri == _uri("p1") for n in nodes)
        assert [n.post for n in nodes if n.is_root] == [_uri("p1")]

        node = await memory_store.get(RecordKind.THREAD_NODE, _uri("p2"))
        assert node["parent"] == _uri("p1")
        assert node["replies"] == [_uri("p3")]
        assert (await memory_store.get_entry(RecordKind.POST, _uri("p3"))).trusted
        assert (await memory_store.get(RecordKind.PROFILE, DID))["handle"] == "erin.test"

    @pytest.mark.asyncio
    async def test_dry_run_stores_nothing(self, memory_store):
        nodes = await ThreadCapture(memory_store).store_thread(_thread_view(), RequestParams(dry_run=True))

        assert len(nodes) == 3
        assert await memory_store.get(RecordKind.POST, _uri("p1")) is None

    @pytest.mark.asyncio
    async def test_snapshot_set_is_honored(self, memory_store):
        await ThreadCapture(memory_store).store_thread(_thread_view(), RequestParams(snapshot_set="cap"))
        assert await memory_store.get(RecordKind.POST, _uri("p1"), snapshot="cap") is not None
        assert await memory_store.get(RecordKind.POST, _uri("p1"), snapshot="default") is None

    @pytest.mark.asyncio
    async def test_not_found_view_is_ignored(self, memory_store):
        nodes = await ThreadCapture(memory_store).store_thread(
            {"$type": "app.bsky.feed.defs#notFoundPost", "uri": _uri("x")}, RequestParams(),
        )
        assert nodes == []


class TestAppViewFetcher:
    """XRPC fetching over a mocked transport."""

    def _fetcher(self, store, handler) -> AppViewFetcher:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return AppViewFetcher(ThreadCapture(store), "https://appview.test", client=client)

    @pytest.mark.asyncio
    async def test_fetch_thread_captures(self, memory_store):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.url.path)
            assert request.url.params["uri"] == _uri("p2")
            return httpx.Response(200, json={"thread": _thread_view()})

        fetcher = self._fetcher(memory_store, handler)
        await fetcher.fetch_thread(_uri("p2"), RequestParams())

        assert seen == ["/xrpc/app.bsky.feed.getPostThread"]
        assert await memory_store.get(RecordKind.THREAD_NODE, _uri("p3")) is not None

    @pytest.mark.asyncio
    async def test_fetch_profile_stores_profile(self, memory_store):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"did": DID, "handle": "erin.test", "avatar": "https://cdn/a.jpg"})

        profile = await self._fetcher(memory_store, handler).fetch_profile(DID, RequestParams())
        assert profile["handle"] == "erin.test"
        assert (await memory_store.get(RecordKind.PROFILE, DID))["avatar"] == "https://cdn/a.jpg"

    @pytest.mark.asyncio
    async def test_not_found_returns_none(self, memory_store):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, json={"error": "InvalidRequest"})

        fetcher = self._fetcher(memory_store, handler)
        assert await fetcher.fetch_profile(DID, RequestParams()) is None
        assert await fetcher.fetch_post(_uri("p1"), RequestParams()) is None

    @pytest.mark.asyncio
    async def test_server_errors_are_retried(self, memory_store):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(1)
            if len(calls) < 3:
                return httpx.Response(503)
            return httpx.Response(200, json={"did": DID, "handle": "erin.test"})

        fetcher = self._fetcher(memory_store, handler)
        with patch("skyvault.engines.threads.fetcher.asyncio.sleep", new_callable=AsyncMock):
            profile = await fetcher.fetch_profile(DID, RequestParams())

        assert len(calls) == 3
        assert profile["did"] == DID

    @pytest.mark.asyncio
    async def test_connect_errors_give_up_after_last_attempt(self, memory_store):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(1)
            raise httpx.ConnectError("refused", request=request)

        fetcher = self._fetcher(memory_store, handler)
        with patch("skyvault.engines.threads.fetcher.asyncio.sleep", new_callable=AsyncMock) as sleep:
            assert await fetcher.fetch_profile(DID, RequestParams()) is None

        assert len(calls) == 3
        assert sleep.await_count == 2
        assert await memory_store.get(RecordKind.PROFILE, DID) is None

    @pytest.mark.asyncio
    async def test_invalid_json_returns_none(self, memory_store):

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=b"<html>")

        assert await self._fetcher(memory_store, handler).fetch_repo_description(DID, RequestParams()) is None


class TestFactory:
    """Fetcher selection from settings."""

    @pytest.fixture
    def capture(self) -> ThreadCapture:
        return ThreadCapture(VersionedRecordStore(MemoryBackend()))

    def test_offline_by_default(self, capture):
        fetcher = create_fetcher(capture, Settings(fetcher="offline"))
        assert isinstance(fetcher, OfflineFetcher)
        assert isinstance(fetcher, FetchCollaborator)

    def test_appview(self, capture):
        fetcher = create_fetcher(capture, Settings(fetcher="appview"))
        assert isinstance(fetcher, AppViewFetcher)

    def test_unknown(self, capture):
        with pytest.raises(ValueError):
            create_fetcher(capture, Settings(fetcher="carrier-pigeon"))
