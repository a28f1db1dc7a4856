"""
Common schema types used across the API.
"""

from typing import Any, Generic, List, Optional, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class SuccessResponse(BaseModel):
    """Standard success response."""

    message: str
    data: Optional[Any] = None


class ListResponse(BaseModel, Generic[T]):
    """List response with a total."""

    items: List[T]
    total: int

    @classmethod
    def of(cls, items: List[T]) -> "ListResponse[T]":
        return cls(items=items, total=len(items))


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    version: str
    storage: str
    snapshots: int = 0
