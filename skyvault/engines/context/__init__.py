"""
Working Context Engine - named, swappable caches of resolved posts and threads.
"""

from skyvault.engines.context.persistence import (
    FileWorkspaceHandler,
    InMemoryWorkspaceHandler,
    SqlWorkspaceHandler,
    WorkspacePersistence,
)
from skyvault.engines.context.workspace import Workspace
from skyvault.engines.context.workspace_service import WorkspaceService, create_workspace_service

__all__ = [
    "FileWorkspaceHandler",
    "InMemoryWorkspaceHandler",
    "SqlWorkspaceHandler",
    "WorkspacePersistence",
    "Workspace",
    "WorkspaceService",
    "create_workspace_service",
]
