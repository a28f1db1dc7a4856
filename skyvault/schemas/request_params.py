"""
Per-request options threaded through capture and reconstruction.
"""

from typing import Optional

from pydantic import BaseModel


class RequestParams(BaseModel):
    """Options controlling a capture or read request."""

    snapshot_set: str = ""
    use_context: bool = False
    debug_output: bool = False
    # Do not write to the store, but still return data
    dry_run: bool = False
    # Ignore cached thread nodes and fetch again
    force: bool = False

    def scope(self, default: Optional[str] = None) -> Optional[str]:
        """Snapshot to read from: the explicit set, else the given default."""
        return self.snapshot_set or default
