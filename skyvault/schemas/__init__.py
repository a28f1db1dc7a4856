"""
Pydantic schemas shared by the store, the engines and the API.
"""

from skyvault.schemas.common import HealthResponse, ListResponse, SuccessResponse
from skyvault.schemas.entry import Entry, Provenance, ProvenanceEntry, SyntheticProvenance
from skyvault.schemas.record import (
    ChainVerification,
    FieldFilter,
    MatchMode,
    PutResult,
    RecordCreate,
    RecordKind,
    RecordRow,
)
from skyvault.schemas.request_params import RequestParams
from skyvault.schemas.snapshot import (
    ExportedRow,
    SnapshotComparison,
    SnapshotCreate,
    SnapshotDuplicate,
    SnapshotExport,
    SnapshotInfo,
    TableDiff,
)
from skyvault.schemas.thread import (
    AnomalyKind,
    AuthorView,
    FocusView,
    PostView,
    ThreadAnomaly,
    ThreadNodeRecord,
    ThreadViewNode,
)
from skyvault.schemas.workspace import WorkspaceList, WorkspaceSelect, WorkspaceSummary

__all__ = [
    "HealthResponse",
    "ListResponse",
    "SuccessResponse",
    "Entry",
    "Provenance",
    "ProvenanceEntry",
    "SyntheticProvenance",
    "ChainVerification",
    "FieldFilter",
    "MatchMode",
    "PutResult",
    "RecordCreate",
    "RecordKind",
    "RecordRow",
    "RequestParams",
    "ExportedRow",
    "SnapshotComparison",
    "SnapshotCreate",
    "SnapshotDuplicate",
    "SnapshotExport",
    "SnapshotInfo",
    "TableDiff",
    "AnomalyKind",
    "AuthorView",
    "FocusView",
    "PostView",
    "ThreadAnomaly",
    "ThreadNodeRecord",
    "ThreadViewNode",
    "WorkspaceList",
    "WorkspaceSelect",
    "WorkspaceSummary",
]
