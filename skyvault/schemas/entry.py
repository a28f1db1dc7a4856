"""
Entry schemas - records joined with their provenance.

Provenance is a tagged union: a ProvenanceEntry read from the ledger, or a
SyntheticProvenance rebuilt from the record row when the ledger has nothing.
"""

import time
from typing import Annotated, Any, List, Literal, Optional, Union

from pydantic import BaseModel, Field


def now_ms() -> int:
    """Capture timestamp in epoch milliseconds."""
    return int(time.time() * 1000)


class ProvenanceEntry(BaseModel):
    """Who captured what, when, linked to what."""

    source: Literal["ledger"] = "ledger"

    identity: str
    record_type: str
    record_version: Optional[str] = None
    recorded_at: int = Field(default_factory=now_ms)
    recorder: str = "unknown"
    linked_to: List[str] = Field(default_factory=list)
    project: str = ""

    @property
    def trusted(self) -> bool:
        return True


class SyntheticProvenance(BaseModel):
    """Stand-in provenance reconstructed from a record row's own metadata."""

    source: Literal["synthetic"] = "synthetic"
    reason: str

    identity: str
    record_type: str
    record_version: Optional[str] = None
    recorded_at: int
    recorder: str = "unknown"
    linked_to: List[str] = Field(default_factory=list)
    project: str = ""

    @property
    def trusted(self) -> bool:
        return False


Provenance = Annotated[
    Union[ProvenanceEntry, SyntheticProvenance],
    Field(discriminator="source"),
]


class Entry(BaseModel):
    """A record payload together with its provenance and storage identity."""

    record: Any
    identity: str
    record_type: str
    record_version: Optional[str] = None
    snapshotset: str
    hash: Optional[str] = None
    provenance: Provenance

    @property
    def recorded_at(self) -> int:
        return self.provenance.recorded_at

    @property
    def recorder(self) -> str:
        return self.provenance.recorder

    @property
    def linked_to(self) -> List[str]:
        return self.provenance.linked_to

    @property
    def trusted(self) -> bool:
        return self.provenance.trusted
