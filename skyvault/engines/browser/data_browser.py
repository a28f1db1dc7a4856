"""
Data Browser - read-side views over the archive.

Resolves profiles (with an in-process cache), assembles post views, loads an
owner's posts into a workspace and resolves handles to DIDs through stored
repo descriptions. Missing optional data degrades to empty fields.
"""

from typing import Dict, List, Optional, Tuple

from skyvault.engines.context.workspace import Workspace
from skyvault.engines.threads.fetcher import FetchCollaborator
from skyvault.engines.threads.uris import did_from_uri
from skyvault.kernel.store.record_store import VersionedRecordStore
from skyvault.logging_config import get_logger
from skyvault.schemas.entry import Entry
from skyvault.schemas.record import FieldFilter, MatchMode, RecordKind
from skyvault.schemas.request_params import RequestParams
from skyvault.schemas.thread import AuthorView, PostView

logger = get_logger(__name__)


class DataBrowser:
    """
    Profiles, posts and repo descriptions as callers see them.

    Usage:
        browser = DataBrowser(store, fetcher)
        profile = await browser.get_profile("did:plc:abc")
        post = await browser.get_post(uri, workspace)
    """

    def __init__(self, store: VersionedRecordStore, fetcher: FetchCollaborator):
        self.store = store
        self.fetcher = fetcher
        # Keyed by (did, snapshot scope)
        self._profiles: Dict[Tuple[str, Optional[str]], Entry] = {}
        self._repos: Dict[Tuple[str, Optional[str]], Entry] = {}

    def clear_caches(self) -> None:
        self._profiles.clear()
        self._repos.clear()

    async def latest_avatar(self, did: str, snapshot: Optional[str] = None) -> str:
        """Most recent non-empty avatar stored for a DID."""
        for row in await self.store.versions(RecordKind.PROFILE, did, snapshot):
            if isinstance(row.data, dict) and row.data.get("avatar"):
                return row.data["avatar"]
        return ""

    async def assure_avatar(self, profile: Entry, params: Optional[RequestParams] = None) -> Entry:
        """Fill an empty avatar from older stored versions, then from the fetcher."""
        record = profile.record if isinstance(profile.record, dict) else {}
        if record.get("avatar"):
            return profile

        did = record.get("did") or profile.identity
        avatar = await self.latest_avatar(did, params.scope() if params else None)
        if not avatar:
            fetched = await self.fetcher.fetch_profile(did, params or RequestParams())
            avatar = (fetched or {}).get("avatar") or ""
        if avatar:
            record = {**record, "avatar": avatar}
            profile = profile.model_copy(update={"record": record})
        return profile

    async def get_profile(
        self,
        did: str,
        params: Optional[RequestParams] = None,
    ) -> Optional[Entry]:
        """Latest stored profile for a DID, cached for the life of the browser."""
        snapshot = params.scope() if params else None
        cached = self._profiles.get((did, snapshot))
        if cached is not None:
            return await self.assure_avatar(cached, params)

        entries = await self.store.latest_for_owner(
            RecordKind.PROFILE, did, as_path_prefix=False, snapshot=snapshot,
        )
        if not entries:
            return None
        profile = await self.assure_avatar(entries[0], params)
        self._profiles[(did, snapshot)] = profile
        logger.debug("Cached profile %s", did)
        return profile

    async def build_post_view(
        self,
        entry: Entry,
        params: Optional[RequestParams] = None,
    ) -> PostView:
        """Post view with its author card; unknown authors get an empty card."""
        did = did_from_uri(entry.identity)
        author = AuthorView(did=did)

        profile = await self.get_profile(did, params)
        if profile is None:
            await self.fetcher.fetch_profile(did, params or RequestParams())
            profile = await self.get_profile(did, params)
        if profile is not None and isinstance(profile.record, dict):
            author = AuthorView(
                did=did,
                handle=profile.record.get("handle") or "",
                display_name=profile.record.get("displayName") or "",
                avatar=profile.record.get("avatar") or "",
                labels=profile.record.get("labels"),
            )

        return PostView(
            uri=entry.identity,
            cid="",
            record=entry.record if isinstance(entry.record, dict) else {},
            indexed_at="",
            author=author,
        )

    async def get_post(
        self,
        uri: str,
        workspace: Workspace,
        params: Optional[RequestParams] = None,
    ) -> Optional[PostView]:
        """A single post: workspace first, then the store."""
        cached = workspace.posts.get(uri)
        if cached is not None:
            return cached
        snapshot = params.scope() if params else None
        entry = await self.store.get_entry(RecordKind.POST, uri, snapshot=snapshot)
        if entry is None:
            return None
        return await self.build_post_view(entry, params)

    async def get_posts(
        self,
        owner_did: str,
        workspace: Workspace,
        params: Optional[RequestParams] = None,
    ) -> Dict[str, PostView]:
        """
        Load every post of an owner into the workspace. Repeated calls for
        the owner already loaded do not hit the store again.
        """
        if workspace.loaded_owner != owner_did:
            snapshot = params.scope() if params else None
            entries = await self.store.latest_for_owner(RecordKind.POST, owner_did, snapshot=snapshot)
            for entry in entries:
                workspace.cache_post(await self.build_post_view(entry, params))
            workspace.loaded_owner = owner_did
            logger.info(
                "Loaded %d posts for %s into workspace %s", len(entries), owner_did, workspace.name,
                extra={"workspace": workspace.name},
            )
        return workspace.posts

    async def list_posts(self, owner_did: str, workspace: Workspace) -> List[PostView]:
        """Posts of one owner currently held by the workspace."""
        return [
            post for uri, post in workspace.posts.items()
            if did_from_uri(uri) == owner_did
        ]

    async def get_repo_description(
        self,
        did: str,
        populate: bool = True,
        params: Optional[RequestParams] = None,
    ) -> Optional[Entry]:
        """Stored repo description for a DID, fetched when absent and `populate`."""
        snapshot = params.scope() if params else None
        cached = self._repos.get((did, snapshot))
        if cached is not None:
            return cached

        entries = await self.store.latest_for_owner(
            RecordKind.REPO_DESCRIPTION, did, as_path_prefix=False, snapshot=snapshot,
        )
        if not entries and populate:
            await self.fetcher.fetch_repo_description(did, params or RequestParams())
            entries = await self.store.latest_for_owner(
                RecordKind.REPO_DESCRIPTION, did, as_path_prefix=False, snapshot=snapshot,
            )
        if not entries:
            return None
        self._repos[(did, snapshot)] = entries[0]
        return entries[0]

    async def fetch_did(self, handle: str, snapshot: Optional[str] = None) -> Optional[str]:
        """Resolve a handle via stored repo descriptions' didDoc.alsoKnownAs."""
        wanted = f"at://{handle}"
        rows = await self.store.search(
            RecordKind.REPO_DESCRIPTION, "", match=MatchMode.SUBSTRING, snapshot=snapshot,
        )
        for row in rows:
            data = row.data if isinstance(row.data, dict) else {}
            did_doc = data.get("didDoc") or {}
            aliases = did_doc.get("alsoKnownAs") if isinstance(did_doc, dict) else None
            if isinstance(aliases, list) and wanted in aliases:
                return data.get("did") or row.id
        # Fall back to the handle recorded on stored profiles
        profiles = await self.store.search(
            RecordKind.PROFILE, "", FieldFilter(field="handle", value=handle),
            match=MatchMode.SUBSTRING, snapshot=snapshot,
        )
        if profiles:
            return profiles[0].id
        return None
