"""
Workspace request and response schemas.
"""

from typing import List, Optional

from pydantic import BaseModel, Field


class WorkspaceSelect(BaseModel):
    """Select (creating if needed) a workspace."""

    name: str = Field(..., min_length=1, max_length=255)
    labelers: Optional[List[str]] = None


class WorkspaceSummary(BaseModel):
    name: str
    posts: int = 0
    threads: int = 0
    loaded_owner: Optional[str] = None
    labelers: List[str] = Field(default_factory=list)


class WorkspaceList(BaseModel):
    current: Optional[str] = None
    names: List[str] = Field(default_factory=list)
