"""
Record schemas shared by the store, the storage backends and the API.
"""

from datetime import datetime
from enum import Enum
from typing import Any, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


class RecordKind(str, Enum):
    """Record kinds written by the capture layer. Any other string is allowed."""

    PROFILE = "profile"
    POST = "post"
    THREAD_NODE = "thread_post_view"
    ENTRY = "entry"
    FOLLOW = "follow_relationship"
    REPO_DESCRIPTION = "repo_description"


class MatchMode(str, Enum):
    """How an id pattern is matched against logical ids."""

    PREFIX = "prefix"
    SUBSTRING = "substring"
    EXACT = "exact"


def id_matches(record_id: str, pattern: str, mode: MatchMode) -> bool:
    """Apply an id pattern in the given mode."""
    if mode == MatchMode.EXACT:
        return record_id == pattern
    if mode == MatchMode.SUBSTRING:
        return pattern in record_id
    return record_id.startswith(pattern)


def field_value(payload: Any, dotted: str) -> Tuple[bool, Any]:
    """Walk a dotted path into a payload. Returns (found, value)."""
    current = payload
    for part in dotted.split("."):
        if isinstance(current, dict) and part in current:
            current = current[part]
        elif isinstance(current, list) and part.isdigit() and int(part) < len(current):
            current = current[int(part)]
        else:
            return False, None
    return True, current


class FieldFilter(BaseModel):
    """Equality filter on one payload field, addressed by dotted path."""

    field: str
    value: Any

    def matches(self, payload: Any) -> bool:
        found, current = field_value(payload, self.field)
        return found and current == self.value


class RecordRow(BaseModel):
    """One stored version of a record, payload already decoded."""

    kind: str
    id: str
    snapshotset: str
    version: str
    data: Any
    created_at: datetime
    modified_at: datetime
    hash: Optional[str] = None


class PutResult(BaseModel):
    """Identity of a freshly stored version."""

    id: str
    version: str
    hash: str


class ChainVerification(BaseModel):
    """Advisory result of re-deriving a logical id's hash chain."""

    model_config = ConfigDict(frozen=True)

    kind: str
    id: str
    snapshotset: str
    versions: int
    intact: bool
    broken_at_version: Optional[str] = None
    checked_at: datetime = Field(default_factory=datetime.now)


class RecordCreate(BaseModel):
    """Request body for storing a new record version."""

    id: str = Field(..., min_length=1)
    data: Any
    snapshot: Optional[str] = None
    version: Optional[str] = None
    linked_to: List[str] = Field(default_factory=list)
