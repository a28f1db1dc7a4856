"""
Follow graph - follow edges stored as snapshot-scoped records.

Each edge is a `follow_relationship` record keyed by follower and followed
DID, so snapshot delete/export/import/compare cover the graph like any other
record kind.
"""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from skyvault.kernel.errors import DataInconsistency
from skyvault.kernel.store.record_store import VersionedRecordStore
from skyvault.logging_config import get_logger
from skyvault.schemas.entry import Entry
from skyvault.schemas.record import PutResult, RecordKind

logger = get_logger(__name__)


class FollowEdge(BaseModel):
    """One follower -> followed relationship."""

    model_config = ConfigDict(populate_by_name=True)

    follower_did: str = Field(alias="followerDid")
    followed_did: str = Field(alias="followedDid")
    follow_uri: str = Field("", alias="followUri")


def edge_id(follower_did: str, followed_did: str) -> str:
    return f"follow:{follower_did}>{followed_did}"


class FollowService:
    """Stores and queries follow edges."""

    def __init__(self, store: VersionedRecordStore):
        self.store = store

    async def store_follow(
        self,
        follower_did: str,
        followed_did: str,
        follow_uri: str,
        snapshot: Optional[str] = None,
    ) -> PutResult:
        """Record (or refresh) an edge; the newest version wins."""
        edge = FollowEdge(follower_did=follower_did, followed_did=followed_did, follow_uri=follow_uri)
        return await self.store.put_with_provenance(
            RecordKind.FOLLOW,
            edge_id(follower_did, followed_did),
            edge.model_dump(by_alias=True),
            snapshot,
            linked_to=[follower_did, followed_did],
        )

    async def _edges(self, field: str, did: str, snapshot: Optional[str]) -> List[FollowEdge]:
        edges = []
        for row in await self.store.find_by_field(RecordKind.FOLLOW, field, did, snapshot):
            try:
                edges.append(FollowEdge.model_validate(row.data))
            except ValidationError as exc:
                issue = DataInconsistency(
                    f"Malformed follow edge {row.id}",
                    record_id=row.id,
                    kind=row.kind,
                    snapshot=row.snapshotset,
                )
                logger.warning(
                    "%s: %s", issue, exc.errors()[:1],
                    extra={"record_id": row.id, "snapshot": row.snapshotset},
                )
        return edges

    async def followers_of(self, did: str, snapshot: Optional[str] = None) -> List[FollowEdge]:
        return await self._edges("followedDid", did, snapshot)

    async def following_of(self, did: str, snapshot: Optional[str] = None) -> List[FollowEdge]:
        return await self._edges("followerDid", did, snapshot)

    async def follower_profiles(self, did: str, snapshot: Optional[str] = None) -> List[Entry]:
        """Profile entry of every follower that has a stored profile."""
        profiles = []
        for edge in await self.followers_of(did, snapshot):
            entry = await self.store.get_entry(RecordKind.PROFILE, edge.follower_did, snapshot=snapshot)
            if entry is not None:
                profiles.append(entry)
            else:
                logger.debug("No stored profile for follower %s", edge.follower_did)
        return profiles
