"""
SQLAlchemy models for legacy attendance history.

Legacy rows are an append/update ledger: they are created by an import commit,
mutated by conflict resolution (status) or identity mapping (mapping fields),
and never hard-deleted by the importer.
"""

from __future__ import annotations

import enum
from datetime import date

from sqlalchemy import CheckConstraint, Enum, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..base import BaseModel, db


class AttendanceStatus(str, enum.Enum):
    """Canonical attendance outcomes recognized in legacy matrices."""

    PRESENT = "present"
    ABSENT = "absent"
    NOTED_ABSENCE = "noted_absence"


class LegacyImportRun(BaseModel):
    """Audit row for a single committed legacy import batch."""

    __tablename__ = "legacy_import_runs"

    id: Mapped[int] = mapped_column(primary_key=True)
    source_checksum: Mapped[str] = mapped_column(db.String(64), nullable=False, index=True)
    year: Mapped[int] = mapped_column(db.Integer, nullable=False)
    date_columns: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    processed_cells: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    skipped_cells: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    rows_inserted: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    rows_updated: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    rows_unchanged: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    conflicts_resolved: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    counts_json: Mapped[dict | None] = mapped_column(db.JSON, nullable=True)
    triggered_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)

    triggered_by_user = relationship("User", foreign_keys=[triggered_by_user_id])
    records = relationship("LegacyAttendanceRecord", back_populates="import_run")

    def __repr__(self):
        return f"<LegacyImportRun {self.id} inserted={self.rows_inserted} updated={self.rows_updated}>"


class LegacyAttendanceRecord(BaseModel):
    """
    One historical attendance fact keyed by ``(legacy_identity, event_date)``.

    ``is_mapped`` mirrors whether ``mapped_user_id`` is set; the check
    constraint keeps the two columns from drifting apart.
    """

    __tablename__ = "legacy_attendance_records"

    id: Mapped[int] = mapped_column(db.Integer, primary_key=True, autoincrement=True)
    legacy_identity: Mapped[str] = mapped_column(db.String(255), nullable=False, index=True)
    legacy_user_id: Mapped[str | None] = mapped_column(db.String(64), nullable=True)
    event_date: Mapped[date] = mapped_column(db.Date, nullable=False, index=True)
    status: Mapped[AttendanceStatus] = mapped_column(
        Enum(AttendanceStatus, name="legacy_attendance_status_enum"),
        nullable=False,
    )
    notes: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    is_mapped: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False, index=True)
    mapped_user_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    import_run_id: Mapped[int | None] = mapped_column(
        ForeignKey("legacy_import_runs.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    mapped_user = relationship("User", back_populates="legacy_attendance", foreign_keys=[mapped_user_id])
    import_run = relationship("LegacyImportRun", back_populates="records")

    __table_args__ = (
        UniqueConstraint("legacy_identity", "event_date", name="uq_legacy_attendance_identity_date"),
        CheckConstraint(
            "(is_mapped AND mapped_user_id IS NOT NULL) OR (NOT is_mapped AND mapped_user_id IS NULL)",
            name="ck_legacy_attendance_mapping_consistent",
        ),
        Index("idx_legacy_attendance_mapping", "legacy_identity", "is_mapped"),
    )

    def __repr__(self):
        return f"<LegacyAttendanceRecord {self.legacy_identity} {self.event_date} {self.status.value}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "legacyIdentity": self.legacy_identity,
            "legacyUserId": self.legacy_user_id,
            "eventDate": self.event_date.isoformat(),
            "canonicalStatus": self.status.value,
            "notes": self.notes,
            "isMapped": self.is_mapped,
            "mappedUserId": self.mapped_user_id,
            "importRunId": self.import_run_id,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }
