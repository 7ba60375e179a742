"""
Conflict detection between parsed candidates and stored legacy attendance.

Detection is read-only. Each candidate is classified as:

- importable: no stored row for its ``(legacy_identity, event_date)`` key;
- already present: a stored row with the same status exists;
- conflict: a stored row with a different status exists.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from datetime import date
from typing import Iterable, Sequence

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session

from .matrix import CandidateRecord, RecordKey
from flask_app.models.legacy import AttendanceStatus, LegacyAttendanceRecord

LOOKUP_CHUNK_SIZE = 500


@dataclass(frozen=True)
class ConflictEntry:
    legacy_identity: str
    event_date: date
    existing_status: AttendanceStatus
    proposed_status: AttendanceStatus

    @property
    def key(self) -> RecordKey:
        return RecordKey(self.legacy_identity, self.event_date)

    def to_dict(self) -> dict[str, str]:
        return {
            "key": self.key.as_token(),
            "legacyIdentity": self.legacy_identity,
            "eventDate": self.event_date.isoformat(),
            "existingStatus": self.existing_status.value,
            "proposedStatus": self.proposed_status.value,
        }


@dataclass
class ConflictReport:
    """Outcome of comparing a batch against the store."""

    importable: list[CandidateRecord] = field(default_factory=list)
    already_present: list[CandidateRecord] = field(default_factory=list)
    conflicts: list[ConflictEntry] = field(default_factory=list)
    existing: dict[RecordKey, LegacyAttendanceRecord] = field(default_factory=dict)
    state_token: str = ""

    @property
    def conflict_keys(self) -> set[RecordKey]:
        return {entry.key for entry in self.conflicts}

    def conflict_for(self, key: RecordKey) -> ConflictEntry | None:
        for entry in self.conflicts:
            if entry.key == key:
                return entry
        return None


def compute_checksum(payload: object) -> str:
    """Return a stable checksum for a JSON-serializable payload."""

    serialized = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(serialized.encode("utf-8")).hexdigest()


def compute_state_token(keys: Iterable[RecordKey], existing: dict[RecordKey, LegacyAttendanceRecord]) -> str:
    """Checksum of the observed stored status for every candidate key, absent rows included."""

    observed = []
    for key in sorted(set(keys)):
        row = existing.get(key)
        observed.append([key.as_token(), row.status.value if row is not None else None])
    return compute_checksum(observed)


def _chunks(items: Sequence[RecordKey], size: int) -> Iterable[Sequence[RecordKey]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


def load_existing(
    session: Session,
    keys: Iterable[RecordKey],
    *,
    lock: bool = False,
    chunk_size: int = LOOKUP_CHUNK_SIZE,
) -> dict[RecordKey, LegacyAttendanceRecord]:
    """Fetch stored rows for the given keys, optionally locking them for update."""

    unique_keys = sorted(set(keys))
    existing: dict[RecordKey, LegacyAttendanceRecord] = {}
    for chunk in _chunks(unique_keys, chunk_size):
        clauses = [
            and_(
                LegacyAttendanceRecord.legacy_identity == key.legacy_identity,
                LegacyAttendanceRecord.event_date == key.event_date,
            )
            for key in chunk
        ]
        stmt = select(LegacyAttendanceRecord).where(or_(*clauses))
        if lock:
            stmt = stmt.with_for_update()
        for row in session.scalars(stmt):
            existing[RecordKey(row.legacy_identity, row.event_date)] = row
    return existing


def detect_conflicts(
    session: Session,
    candidates: Sequence[CandidateRecord],
    *,
    lock: bool = False,
) -> ConflictReport:
    """Classify candidates against the store without writing anything."""

    existing = load_existing(session, (candidate.key for candidate in candidates), lock=lock)
    report = ConflictReport(existing=existing)
    for candidate in candidates:
        row = existing.get(candidate.key)
        if row is None:
            report.importable.append(candidate)
        elif row.status == candidate.status:
            report.already_present.append(candidate)
        else:
            report.conflicts.append(
                ConflictEntry(
                    legacy_identity=candidate.legacy_identity,
                    event_date=candidate.event_date,
                    existing_status=row.status,
                    proposed_status=candidate.status,
                )
            )
    report.state_token = compute_state_token((candidate.key for candidate in candidates), existing)
    return report
