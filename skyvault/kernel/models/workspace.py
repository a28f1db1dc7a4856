"""
Workspace models - SQL persistence for named working contexts.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, DateTime, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from skyvault.kernel.models.base import Base, utcnow


class WorkspaceRow(Base):
    """Persisted working context (named, swappable cache)."""

    __tablename__ = "workspaces"

    name: Mapped[str] = mapped_column(String(255), primary_key=True)
    loaded_owner: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    labelers: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )


class WorkspaceItem(Base):
    """Cached post views and focus views belonging to a workspace."""

    __tablename__ = "workspace_items"

    workspace_name: Mapped[str] = mapped_column(
        String(255),
        ForeignKey("workspaces.name", ondelete="CASCADE"),
        primary_key=True,
    )
    # "post" or "focus"
    item_type: Mapped[str] = mapped_column(String(20), primary_key=True)
    uri: Mapped[str] = mapped_column(String(1024), primary_key=True)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)
