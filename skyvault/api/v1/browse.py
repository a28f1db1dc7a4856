"""
Browsing endpoints: profiles, posts, handle resolution and the follow graph.
"""

from typing import List, Optional

from fastapi import APIRouter, HTTPException, Query, status

from skyvault.api.deps import ServicesDep, WorkspaceDep
from skyvault.engines.graph.follow_service import FollowEdge
from skyvault.schemas.common import ListResponse
from skyvault.schemas.entry import Entry
from skyvault.schemas.record import PutResult
from skyvault.schemas.request_params import RequestParams
from skyvault.schemas.thread import PostView

router = APIRouter()


def _params(snapshot: Optional[str]) -> RequestParams:
    return RequestParams(snapshot_set=snapshot or "")


@router.get("/profiles/{did}", response_model=Entry)
async def get_profile(did: str, services: ServicesDep, snapshot: Optional[str] = None):
    profile = await services.browser.get_profile(did, _params(snapshot))
    if profile is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Profile not found: {did}")
    return profile


@router.get("/posts", response_model=ListResponse[PostView])
async def list_posts(
    services: ServicesDep,
    workspace: WorkspaceDep,
    owner: str = Query(..., min_length=1, description="Owner DID"),
    snapshot: Optional[str] = None,
):
    """Load an owner's posts into the workspace and list them."""
    await services.browser.get_posts(owner, workspace, _params(snapshot))
    posts: List[PostView] = await services.browser.list_posts(owner, workspace)
    return ListResponse[PostView].of(posts)


@router.get("/post", response_model=PostView)
async def get_post(
    services: ServicesDep,
    workspace: WorkspaceDep,
    uri: str = Query(..., min_length=1),
    snapshot: Optional[str] = None,
):
    post = await services.browser.get_post(uri, workspace, _params(snapshot))
    if post is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Post not found: {uri}")
    return post


@router.get("/handles/{handle}/did")
async def resolve_handle(handle: str, services: ServicesDep, snapshot: Optional[str] = None):
    did = await services.browser.fetch_did(handle, snapshot)
    if did is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown handle: {handle}")
    return {"handle": handle, "did": did}


@router.get("/repos/{did}", response_model=Entry)
async def get_repo_description(
    did: str,
    services: ServicesDep,
    populate: bool = True,
    snapshot: Optional[str] = None,
):
    description = await services.browser.get_repo_description(did, populate, _params(snapshot))
    if description is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Repo not found: {did}")
    return description


@router.post("/follows", response_model=PutResult, status_code=status.HTTP_201_CREATED)
async def store_follow(body: FollowEdge, services: ServicesDep, snapshot: Optional[str] = None):
    return await services.follows.store_follow(
        body.follower_did, body.followed_did, body.follow_uri, snapshot,
    )


@router.get("/follows/{did}/followers", response_model=ListResponse[FollowEdge])
async def list_followers(did: str, services: ServicesDep, snapshot: Optional[str] = None):
    return ListResponse[FollowEdge].of(await services.follows.followers_of(did, snapshot))


@router.get("/follows/{did}/following", response_model=ListResponse[FollowEdge])
async def list_following(did: str, services: ServicesDep, snapshot: Optional[str] = None):
    return ListResponse[FollowEdge].of(await services.follows.following_of(did, snapshot))


@router.get("/follows/{did}/profiles", response_model=ListResponse[Entry])
async def list_follower_profiles(did: str, services: ServicesDep, snapshot: Optional[str] = None):
    """Stored profiles of everyone following `did`."""
    return ListResponse[Entry].of(await services.follows.follower_profiles(did, snapshot))
