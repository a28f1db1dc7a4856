"""
Workspace Service - lifecycle of the selected working context.

One workspace is selected at a time per service instance. The service is
constructed explicitly and passed to whatever needs it; nothing here is
process-global.
"""

from typing import List, Optional

from skyvault.config import Settings, get_settings
from skyvault.engines.context.persistence import (
    FileWorkspaceHandler,
    InMemoryWorkspaceHandler,
    SqlWorkspaceHandler,
    WorkspacePersistence,
)
from skyvault.engines.context.workspace import Workspace
from skyvault.logging_config import get_logger

logger = get_logger(__name__)


class WorkspaceService:
    """
    Selects, loads, creates and flushes workspaces.

    Usage:
        service = WorkspaceService(InMemoryWorkspaceHandler())
        workspace = await service.get("research")
        workspace.labelers.append("did:plc:labeler")
        await service.save()
    """

    def __init__(self, persistence: WorkspacePersistence, default_name: str = "default"):
        self.persistence = persistence
        self.default_name = default_name
        self.selected_name = default_name
        self._current: Optional[Workspace] = None

    async def initialize(self) -> None:
        await self.persistence.initialize()

    @property
    def current(self) -> Optional[Workspace]:
        return self._current

    async def get(self, name: Optional[str] = None) -> Workspace:
        """
        The named workspace: the selected instance if it matches, else the
        persisted one, else a new empty one that is persisted immediately.
        Selecting another name flushes the current workspace first.
        """
        name = name or self.selected_name
        if self._current is not None:
            if self._current.name == name:
                return self._current
            await self.persistence.save(self._current)

        workspace = await self.persistence.load(name)
        if workspace is None:
            workspace = Workspace(name=name)
            await self.persistence.save(workspace)
            logger.info("Created workspace %s", name, extra={"workspace": name})

        self._current = workspace
        self.selected_name = name
        return workspace

    async def switch(self, name: str) -> Workspace:
        """Flush the current workspace, then activate `name`."""
        if self._current is not None and self._current.name == name:
            await self.persistence.save(self._current)
        return await self.get(name)

    async def save(self) -> None:
        if self._current is not None:
            await self.persistence.save(self._current)

    async def list(self) -> List[str]:
        return await self.persistence.list()

    async def delete(self, name: str) -> bool:
        if self._current is not None and self._current.name == name:
            self._current = None
            self.selected_name = self.default_name
        return await self.persistence.delete(name)


def create_workspace_service(settings: Optional[Settings] = None) -> WorkspaceService:
    """Build a service with the persistence adapter named by `workspace_backend`."""
    settings = settings or get_settings()
    kind = settings.workspace_backend.lower()

    if kind == "memory":
        persistence: WorkspacePersistence = InMemoryWorkspaceHandler()
    elif kind == "sql":
        from skyvault.database import async_session_maker, engine

        persistence = SqlWorkspaceHandler(engine, async_session_maker)
    elif kind == "file":
        persistence = FileWorkspaceHandler(settings.workspace_dir)
    else:
        raise ValueError(f"Unknown workspace backend: {settings.workspace_backend}")

    return WorkspaceService(persistence, default_name=settings.default_workspace)
