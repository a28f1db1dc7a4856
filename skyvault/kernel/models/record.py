"""
Record models - the relational layout of the versioned record store.

One row per (kind, snapshot, id, version). Payloads are opaque JSON; the
store never looks inside them except for dotted-path field filters.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from skyvault.kernel.models.base import Base, TimestampMixin, utcnow


class SnapshotSet(Base):
    """Snapshot index: one row per isolation domain."""

    __tablename__ = "snapshotsets"

    snapshotset: Mapped[str] = mapped_column(String(255), primary_key=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )
    modified_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<SnapshotSet {self.snapshotset}>"


class StoredRecord(Base, TimestampMixin):
    """A single immutable version of a record."""

    __tablename__ = "records"

    kind: Mapped[str] = mapped_column(String(100), primary_key=True)
    snapshotset: Mapped[str] = mapped_column(
        String(255),
        ForeignKey("snapshotsets.snapshotset"),
        primary_key=True,
    )
    id: Mapped[str] = mapped_column(String(1024), primary_key=True)
    version: Mapped[str] = mapped_column(String(64), primary_key=True)

    # Raw JSON text so malformed payloads can be detected and skipped on read
    data: Mapped[str] = mapped_column(Text, nullable=False)
    hash: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    __table_args__ = (
        Index("ix_records_kind_id", "kind", "id"),
        Index("ix_records_kind_snapshot", "kind", "snapshotset"),
        Index("ix_records_kind_id_modified", "kind", "id", "modified_at"),
    )

    def __repr__(self) -> str:
        return f"<StoredRecord {self.kind}:{self.id}@{self.version} [{self.snapshotset}]>"
