"""
Snapshot schemas - listing, portable export format and structural diffs.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class SnapshotInfo(BaseModel):
    """Snapshot index entry."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    created_at: datetime = Field(alias="createdAt")


class ExportedRow(BaseModel):
    """Raw record row as it appears in an export."""

    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = None
    snapshotset: Optional[str] = None
    version: Optional[str] = None
    data: Any = None
    created_at: Optional[datetime] = Field(None, alias="createdAt")
    modified_at: Optional[datetime] = Field(None, alias="modifiedAt")
    hash: Optional[str] = None


class SnapshotExport(BaseModel):
    """Portable snapshot: {id, createdAt, tables: {kind: [rows]}}."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    created_at: datetime = Field(alias="createdAt")
    tables: Dict[str, List[ExportedRow]] = Field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class SnapshotCreate(BaseModel):
    """Snapshot creation request."""

    name: Optional[str] = Field(None, max_length=255)


class SnapshotDuplicate(BaseModel):
    """Snapshot duplication request."""

    target_id: Optional[str] = Field(None, max_length=255)


class TableDiff(BaseModel):
    """Differences for one record kind."""

    model_config = ConfigDict(populate_by_name=True)

    only_in_1: List[str] = Field(default_factory=list, alias="onlyIn1")
    only_in_2: List[str] = Field(default_factory=list, alias="onlyIn2")
    differing_ids: List[str] = Field(default_factory=list, alias="differingIds")

    @property
    def is_empty(self) -> bool:
        return not (self.only_in_1 or self.only_in_2 or self.differing_ids)


class SnapshotComparison(BaseModel):
    """Structural diff of two snapshots, keyed by record kind."""

    snapshot1: SnapshotInfo
    snapshot2: SnapshotInfo
    tables: Dict[str, TableDiff] = Field(default_factory=dict)

    @property
    def identical(self) -> bool:
        return all(diff.is_empty for diff in self.tables.values())
