"""
Kernel Data Models

SQLAlchemy models for the relational record store and workspace persistence.
"""

from skyvault.kernel.models.base import Base, TimestampMixin, generate_version_id, utcnow
from skyvault.kernel.models.record import SnapshotSet, StoredRecord
from skyvault.kernel.models.workspace import WorkspaceRow, WorkspaceItem

__all__ = [
    # Base
    "Base",
    "TimestampMixin",
    "generate_version_id",
    "utcnow",
    # Records
    "SnapshotSet",
    "StoredRecord",
    # Workspaces
    "WorkspaceRow",
    "WorkspaceItem",
]
