"""
FastAPI dependencies: the service container and per-request helpers.
"""

from dataclasses import dataclass
from typing import Annotated, Optional

from fastapi import Depends, HTTPException, Query, Request, status

from skyvault.config import Settings, get_settings
from skyvault.engines.browser.data_browser import DataBrowser
from skyvault.engines.context.workspace import Workspace
from skyvault.engines.context.workspace_service import WorkspaceService, create_workspace_service
from skyvault.engines.graph.follow_service import FollowService
from skyvault.engines.threads.capture import ThreadCapture
from skyvault.engines.threads.fetcher import FetchCollaborator, create_fetcher
from skyvault.engines.threads.reconstructor import ThreadReconstructor
from skyvault.kernel.snapshots.snapshot_manager import SnapshotManager
from skyvault.kernel.storage.backend import StorageBackend
from skyvault.kernel.storage.factory import create_backend
from skyvault.kernel.store.record_store import VersionedRecordStore


@dataclass
class Services:
    """Everything the routes need, wired once per application."""

    store: VersionedRecordStore
    snapshots: SnapshotManager
    workspaces: WorkspaceService
    capture: ThreadCapture
    fetcher: FetchCollaborator
    browser: DataBrowser
    threads: ThreadReconstructor
    follows: FollowService
    storage_name: str = "memory"

    async def initialize(self) -> None:
        await self.store.initialize()
        await self.workspaces.initialize()

    async def close(self) -> None:
        await self.workspaces.save()
        await self.store.close()


def build_services(
    settings: Optional[Settings] = None,
    *,
    backend: Optional[StorageBackend] = None,
    workspaces: Optional[WorkspaceService] = None,
    fetcher: Optional[FetchCollaborator] = None,
) -> Services:
    """Wire the store, engines and fetcher from settings, with optional overrides."""
    settings = settings or get_settings()
    store = VersionedRecordStore(
        backend or create_backend(settings),
        default_snapshot=settings.default_snapshot,
        recorder=settings.recorder_did,
        project=settings.project,
    )
    capture = ThreadCapture(store)
    fetcher = fetcher or create_fetcher(capture, settings)
    browser = DataBrowser(store, fetcher)
    return Services(
        store=store,
        snapshots=SnapshotManager(store),
        workspaces=workspaces or create_workspace_service(settings),
        capture=capture,
        fetcher=fetcher,
        browser=browser,
        threads=ThreadReconstructor(store, browser, fetcher),
        follows=FollowService(store),
        storage_name=store.backend.name,
    )


def get_services(request: Request) -> Services:
    """Service container stored on the application by the lifespan hook."""
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Services not initialized",
        )
    return services


ServicesDep = Annotated[Services, Depends(get_services)]


async def get_workspace(
    services: ServicesDep,
    workspace: Annotated[Optional[str], Query(description="Workspace name")] = None,
) -> Workspace:
    """Named workspace, or the currently selected one."""
    return await services.workspaces.get(workspace)


WorkspaceDep = Annotated[Workspace, Depends(get_workspace)]
