"""
Thread endpoints: focus-centered reconstruction and capture of fetched views.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException, Query, status

from skyvault.api.deps import ServicesDep, WorkspaceDep
from skyvault.schemas.common import SuccessResponse
from skyvault.schemas.request_params import RequestParams
from skyvault.logging_config import get_logger

router = APIRouter()
logger = get_logger(__name__)


@router.get("")
async def get_thread(
    services: ServicesDep,
    workspace: WorkspaceDep,
    uri: str = Query(..., min_length=1, description="Focus post AT-URI"),
    snapshot: Optional[str] = None,
    use_context: bool = False,
    force: bool = False,
) -> Dict[str, Any]:
    """
    The conversation around `uri`, re-rooted on it: ancestors upward through
    `parent`, descendants downward through `replies`.
    """
    params = RequestParams(snapshot_set=snapshot or "", use_context=use_context, force=force)
    view = await services.threads.get_thread(uri, workspace, params)
    if view is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Thread not found: {uri}")
    if not view.complete:
        logger.info(
            "Returning incomplete thread for %s", uri,
            extra={"focus_uri": uri, "unwired": view.unwired},
        )
    return view.to_dict()


@router.post("/capture", response_model=SuccessResponse, status_code=status.HTTP_201_CREATED)
async def capture_thread(
    body: Dict[str, Any],
    services: ServicesDep,
    snapshot: Optional[str] = None,
    dry_run: bool = False,
):
    """Store a getPostThread-shaped view (`{"thread": {...}}` or the bare thread)."""
    params = RequestParams(snapshot_set=snapshot or "", dry_run=dry_run)
    thread = body.get("thread", body)
    nodes = await services.capture.store_thread(thread, params)
    if not nodes:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Body does not contain a thread view",
        )
    return SuccessResponse(
        message=f"Captured {len(nodes)} thread node(s)",
        data={"uris": [n.post for n in nodes], "root_uri": nodes[0].root_uri},
    )
