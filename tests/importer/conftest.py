from __future__ import annotations

from datetime import date

import pytest
from sqlalchemy import func, select

from flask_app.importer.pipeline import IdentityResolver, LegacyImportService
from flask_app.models import AttendanceStatus, LegacyAttendanceRecord, db

# Smith is absent on 2-Jan in this paste; seeded history says present.
CONFLICT_MATRIX = "YEAR: 2025\nNAME,ID,26-Dec,2-Jan\nSmith,1001,P,A\nJones,1002,A,NA\n"


@pytest.fixture
def service(app):
    return LegacyImportService()


@pytest.fixture
def resolver(app):
    return IdentityResolver()


@pytest.fixture
def conflict_matrix():
    return CONFLICT_MATRIX


@pytest.fixture
def seeded_conflict(legacy_record_factory):
    return legacy_record_factory("Smith", date(2026, 1, 2), AttendanceStatus.PRESENT)


@pytest.fixture
def record_count():
    def _count(legacy_identity: str | None = None) -> int:
        stmt = select(func.count(LegacyAttendanceRecord.id))
        if legacy_identity is not None:
            stmt = stmt.where(LegacyAttendanceRecord.legacy_identity == legacy_identity)
        return db.session.scalar(stmt)

    return _count
