"""
Error taxonomy for the archive kernel.

StorageError propagates to callers. NotFound is raised only where absence is
not a valid answer; optional lookups return None instead. DataInconsistency
and ConflictRetryExhausted describe degraded results: they are built, logged
and attached to results rather than raised.
"""

from typing import Any, Dict, List, Optional


class SkyvaultError(Exception):
    """Base class for all archive errors."""


class StorageError(SkyvaultError):
    """Backend I/O failure. The operation was aborted."""

    def __init__(self, message: str, *, operation: Optional[str] = None):
        super().__init__(message)
        self.operation = operation


class NotFound(SkyvaultError):
    """A required record or snapshot does not exist."""


class SnapshotNotFound(NotFound):
    def __init__(self, snapshot_id: str):
        super().__init__(f"Snapshot not found: {snapshot_id}")
        self.snapshot_id = snapshot_id


class DataInconsistency(SkyvaultError):
    """
    Stored data that cannot be used as-is.

    Covers malformed payloads, missing provenance entries and broken thread
    references. Callers log these and continue with a best-effort result.
    """

    def __init__(self, message: str, *, record_id: Optional[str] = None, **context: Any):
        super().__init__(message)
        self.record_id = record_id
        self.context: Dict[str, Any] = context


class ConflictRetryExhausted(SkyvaultError):
    """The single forced re-fetch still left thread edges unwired."""

    def __init__(self, focus_id: str, missing_parents: List[str]):
        super().__init__(
            f"Thread for {focus_id} still missing parents after re-fetch: "
            f"{', '.join(missing_parents)}"
        )
        self.focus_id = focus_id
        self.missing_parents = missing_parents
