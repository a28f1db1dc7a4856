"""
Workspace endpoints.
"""

from fastapi import APIRouter, HTTPException, status

from skyvault.api.deps import ServicesDep
from skyvault.engines.context.workspace import Workspace
from skyvault.schemas.common import SuccessResponse
from skyvault.schemas.workspace import WorkspaceList, WorkspaceSelect, WorkspaceSummary

router = APIRouter()


def _summary(workspace: Workspace) -> WorkspaceSummary:
    return WorkspaceSummary(
        name=workspace.name,
        posts=len(workspace.posts),
        threads=len(workspace.thread_focus),
        loaded_owner=workspace.loaded_owner,
        labelers=workspace.labelers,
    )


@router.get("", response_model=WorkspaceList)
async def list_workspaces(services: ServicesDep):
    current = services.workspaces.current
    return WorkspaceList(
        current=current.name if current is not None else None,
        names=sorted(await services.workspaces.list()),
    )


@router.post("", response_model=WorkspaceSummary)
async def select_workspace(body: WorkspaceSelect, services: ServicesDep):
    """Flush the active workspace and switch to (or create) `name`."""
    workspace = await services.workspaces.switch(body.name)
    if body.labelers is not None:
        workspace.labelers = list(body.labelers)
        await services.workspaces.save()
    return _summary(workspace)


@router.get("/{name}", response_model=WorkspaceSummary)
async def get_workspace(name: str, services: ServicesDep):
    if name not in await services.workspaces.list():
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Workspace not found: {name}")
    return _summary(await services.workspaces.get(name))


@router.post("/{name}/clear", response_model=WorkspaceSummary)
async def clear_workspace(name: str, services: ServicesDep):
    workspace = await services.workspaces.get(name)
    workspace.clear()
    await services.workspaces.save()
    return _summary(workspace)


@router.delete("/{name}", response_model=SuccessResponse)
async def delete_workspace(name: str, services: ServicesDep):
    if not await services.workspaces.delete(name):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Workspace not found: {name}")
    return SuccessResponse(message=f"Workspace {name} deleted")
