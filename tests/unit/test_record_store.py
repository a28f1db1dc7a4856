"""Unit tests for the versioned record store, run against every backend."""

import asyncio
from datetime import datetime, timezone

import pytest

from skyvault.kernel.hashing import compute_content_hash
from skyvault.kernel.storage.backend import RawRow
from skyvault.schemas.record import FieldFilter, MatchMode, RecordKind
from skyvault.schemas.thread import ThreadNodeRecord

ALICE = "did:plc:alice"
BOB = "did:plc:bob"


def post_uri(did: str, rkey: str) -> str:
    return f"at://{did}/app.bsky.feed.post/{rkey}"


class TestPutAndGet:
    """Writing versions and resolving the latest one."""

    @pytest.mark.asyncio
    async def test_get_returns_latest_version(self, any_store):
        uri = post_uri(ALICE, "1")
        await any_store.put(RecordKind.POST, uri, {"text": "v1"})
        second = await any_store.put(RecordKind.POST, uri, {"text": "v2"})

        assert await any_store.get(RecordKind.POST, uri) == {"text": "v2"}
        row = await any_store.get_row(RecordKind.POST, uri)
        assert row.version == second.version
        assert row.snapshotset == "default"

    @pytest.mark.asyncio
    async def test_get_specific_version(self, any_store):
        uri = post_uri(ALICE, "1")
        first = await any_store.put(RecordKind.POST, uri, {"text": "v1"})
        await any_store.put(RecordKind.POST, uri, {"text": "v2"})

        assert await any_store.get(RecordKind.POST, uri, version=first.version) == {"text": "v1"}
        assert await any_store.get(RecordKind.POST, uri, version="missing") is None

    @pytest.mark.asyncio
    async def test_missing_record_is_none(self, any_store):
        assert await any_store.get(RecordKind.POST, "at://nobody/x") is None
        assert await any_store.get_entry(RecordKind.POST, "at://nobody/x") is None

    @pytest.mark.asyncio
    async def test_hash_chain_per_id(self, any_store):
        uri = post_uri(ALICE, "1")
        first = await any_store.put(RecordKind.POST, uri, {"text": "v1"})
        second = await any_store.put(RecordKind.POST, uri, {"text": "v2"})

        assert first.hash == compute_content_hash({"text": "v1"})
        assert second.hash == compute_content_hash({"text": "v2"}, first.hash)

    @pytest.mark.asyncio
    async def test_chains_are_independent_per_snapshot(self, any_store):
        uri = post_uri(ALICE, "1")
        await any_store.put(RecordKind.POST, uri, {"text": "a"}, snapshot="s1")
        other = await any_store.put(RecordKind.POST, uri, {"text": "b"}, snapshot="s2")
        assert other.hash == compute_content_hash({"text": "b"})

    @pytest.mark.asyncio
    async def test_modified_at_strictly_increases(self, any_store):
        uri = post_uri(ALICE, "1")
        for i in range(5):
            await any_store.put(RecordKind.POST, uri, {"n": i})
        history = await any_store.history(RecordKind.POST, uri)
        stamps = [r.modified_at for r in history]
        assert stamps == sorted(stamps)
        assert len(set(stamps)) == 5
        assert [r.data["n"] for r in history] == [0, 1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_concurrent_writers_form_one_chain(self, any_store):
        uri = post_uri(ALICE, "1")
        await asyncio.gather(*(any_store.put(RecordKind.POST, uri, {"n": i}) for i in range(8)))

        result = await any_store.verify_chain(RecordKind.POST, uri)
        assert result.intact
        assert result.versions == 8

    @pytest.mark.asyncio
    async def test_write_locks_are_released(self, memory_store):
        await asyncio.gather(*(
            memory_store.put(RecordKind.POST, post_uri(ALICE, str(i % 3)), {"n": i})
            for i in range(9)
        ))
        for i in range(20):
            await memory_store.put(RecordKind.POST, post_uri(BOB, str(i)), {"n": i})

        assert memory_store._locks == {}


class TestSnapshotScoping:
    """Reads scoped to one snapshot or across all of them."""

    @pytest.mark.asyncio
    async def test_scoped_read_ignores_other_snapshots(self, any_store):
        uri = post_uri(ALICE, "1")
        await any_store.put(RecordKind.POST, uri, {"text": "old"}, snapshot="s1")
        await any_store.put(RecordKind.POST, uri, {"text": "new"}, snapshot="s2")

        assert await any_store.get(RecordKind.POST, uri, snapshot="s1") == {"text": "old"}
        assert await any_store.get(RecordKind.POST, uri, snapshot="s2") == {"text": "new"}
        # Unscoped: the latest across every snapshot
        assert await any_store.get(RecordKind.POST, uri) == {"text": "new"}

    @pytest.mark.asyncio
    async def test_put_registers_snapshot(self, any_store):
        await any_store.put(RecordKind.PROFILE, ALICE, {"did": ALICE}, snapshot="fresh")
        assert await any_store.backend.get_snapshot("fresh") is not None


class TestSearch:
    """Id-pattern search with latest-version resolution."""

    @pytest.mark.asyncio
    async def test_prefix_search_returns_latest_newest_first(self, any_store):
        a1, a2 = post_uri(ALICE, "1"), post_uri(ALICE, "2")
        await any_store.put(RecordKind.POST, a1, {"text": "a1 v1"})
        await any_store.put(RecordKind.POST, a2, {"text": "a2"})
        await any_store.put(RecordKind.POST, post_uri(BOB, "1"), {"text": "bob"})
        await any_store.put(RecordKind.POST, a1, {"text": "a1 v2"})

        rows = await any_store.search(RecordKind.POST, f"at://{ALICE}/")
        assert [r.id for r in rows] == [a1, a2]
        assert rows[0].data == {"text": "a1 v2"}

    @pytest.mark.asyncio
    async def test_prefix_does_not_match_longer_did(self, any_store):
        await any_store.put(RecordKind.POST, "at://did:abc/p/1", {"n": 1})
        await any_store.put(RecordKind.POST, "at://did:abcd/p/1", {"n": 2})

        rows = await any_store.search(RecordKind.POST, "at://did:abc/")
        assert [r.id for r in rows] == ["at://did:abc/p/1"]

    @pytest.mark.asyncio
    async def test_like_wildcards_are_literal(self, any_store):
        await any_store.put(RecordKind.POST, "id_1", {"n": 1})
        await any_store.put(RecordKind.POST, "idx1", {"n": 2})

        rows = await any_store.search(RecordKind.POST, "id_", match=MatchMode.PREFIX)
        assert [r.id for r in rows] == ["id_1"]

    @pytest.mark.asyncio
    async def test_field_filter(self, any_store):
        await any_store.put(RecordKind.PROFILE, ALICE, {"did": ALICE, "handle": "alice.test"})
        await any_store.put(RecordKind.PROFILE, BOB, {"did": BOB, "handle": "bob.test"})

        rows = await any_store.search(
            RecordKind.PROFILE, "did:plc:", FieldFilter(field="handle", value="bob.test"),
        )
        assert [r.id for r in rows] == [BOB]

    @pytest.mark.asyncio
    async def test_exact_owner_lookup(self, any_store):
        await any_store.put(RecordKind.PROFILE, ALICE, {"did": ALICE})
        await any_store.put(RecordKind.PROFILE, ALICE + "x", {"did": ALICE + "x"})

        entries = await any_store.latest_for_owner(RecordKind.PROFILE, ALICE, as_path_prefix=False)
        assert [e.identity for e in entries] == [ALICE]


class TestFieldQuery:
    """Backend-side payload field lookups."""

    @pytest.mark.asyncio
    async def test_matches_nested_field_and_types(self, any_store):
        await any_store.put(RecordKind.POST, post_uri(ALICE, "1"), {"reply": {"root": {"uri": "r1"}}, "likes": 3})
        await any_store.put(RecordKind.POST, post_uri(ALICE, "2"), {"reply": {"root": {"uri": "r2"}}, "likes": "3"})
        await any_store.put(RecordKind.POST, post_uri(BOB, "1"), {"text": "no reply"})

        by_root = await any_store.find_by_field(RecordKind.POST, "reply.root.uri", "r1")
        assert [r.id for r in by_root] == [post_uri(ALICE, "1")]
        by_count = await any_store.find_by_field(RecordKind.POST, "likes", 3)
        assert [r.id for r in by_count] == [post_uri(ALICE, "1")]
        assert await any_store.find_by_field(RecordKind.POST, "reply.root.uri", "r3") == []

    @pytest.mark.asyncio
    async def test_only_latest_version_counts(self, any_store):
        uri = post_uri(ALICE, "1")
        await any_store.put(RecordKind.POST, uri, {"tag": "old"})
        await any_store.put(RecordKind.POST, uri, {"tag": "new"})

        assert await any_store.find_by_field(RecordKind.POST, "tag", "old") == []
        assert [r.data for r in await any_store.find_by_field(RecordKind.POST, "tag", "new")] == [{"tag": "new"}]

    @pytest.mark.asyncio
    async def test_malformed_rows_never_match(self, any_store):
        await any_store.put(RecordKind.POST, post_uri(ALICE, "1"), {"tag": "x"})
        now = datetime.now(timezone.utc)
        await any_store.backend.insert_row(RawRow(
            kind=RecordKind.POST.value,
            id=post_uri(ALICE, "2"),
            snapshotset="default",
            version="broken",
            data="{not json",
            created_at=now,
            modified_at=now,
        ))

        rows = await any_store.backend.find_by_field(RecordKind.POST.value, "tag", "x")
        assert [r.id for r in rows] == [post_uri(ALICE, "1")]

    @pytest.mark.asyncio
    async def test_thread_set_drops_rerooted_node(self, any_store):
        root, other = post_uri(ALICE, "root"), post_uri(ALICE, "other")
        for uri, root_uri in ((root, root), (post_uri(ALICE, "a"), root), (post_uri(ALICE, "b"), root)):
            node = ThreadNodeRecord(post=uri, is_root=(uri == root_uri), root_uri=root_uri)
            await any_store.put(RecordKind.THREAD_NODE, uri, node.model_dump())
        moved = ThreadNodeRecord(post=post_uri(ALICE, "b"), root_uri=other)
        await any_store.put(RecordKind.THREAD_NODE, post_uri(ALICE, "b"), moved.model_dump())

        thread = await any_store.latest_for_thread(root)
        assert set(thread.nodes) == {root, post_uri(ALICE, "a")}


class TestMalformedRows:

    """Rows whose payload cannot be decoded are skipped, not raised."""

    @pytest.mark.asyncio
    async def test_malformed_latest_falls_back_to_previous(self, memory_store):
        uri = post_uri(ALICE, "1")
        first = await memory_store.put(RecordKind.POST, uri, {"text": "ok"})
        later = datetime(2100, 1, 1, tzinfo=timezone.utc)
        await memory_store.backend.insert_row(RawRow(
            kind=RecordKind.POST.value,
            id=uri,
            snapshotset="default",
            version="broken",
            data="{not json",
            created_at=later,
            modified_at=later,
            hash=None,
        ))

        row = await memory_store.get_row(RecordKind.POST, uri)
        assert row.version == first.version
        assert await memory_store.search(RecordKind.POST, f"at://{ALICE}/") != []

    @pytest.mark.asyncio
    async def test_verify_chain_reports_tampering(self, memory_store):
        uri = post_uri(ALICE, "1")
        await memory_store.put(RecordKind.POST, uri, {"n": 1})
        second = await memory_store.put(RecordKind.POST, uri, {"n": 2})
        await memory_store.put(RecordKind.POST, uri, {"n": 3})

        stored = await memory_store.backend.fetch_versions(RecordKind.POST.value, uri, "default")
        tampered = next(r for r in stored if r.version == second.version)
        await memory_store.backend.upsert_rows([tampered.copy(data='{"n":99}')])

        result = await memory_store.verify_chain(RecordKind.POST, uri)
        assert not result.intact
        assert result.broken_at_version == second.version
        # Advisory only: reads still serve the tampered payload
        assert await memory_store.get(RecordKind.POST, uri, version=second.version) == {"n": 99}

    @pytest.mark.asyncio
    async def test_verify_chain_stops_at_undecodable_version(self, memory_store):
        uri = post_uri(ALICE, "1")
        await memory_store.put(RecordKind.POST, uri, {"n": 1})
        second = await memory_store.put(RecordKind.POST, uri, {"n": 2})

        stored = await memory_store.backend.fetch_versions(RecordKind.POST.value, uri, "default")
        broken = next(r for r in stored if r.version == second.version)
        await memory_store.backend.upsert_rows([broken.copy(data="{not json")])

        result = await memory_store.verify_chain(RecordKind.POST, uri)
        assert not result.intact
        assert result.broken_at_version == second.version
        assert result.versions == 2
