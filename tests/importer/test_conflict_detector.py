from __future__ import annotations

from datetime import date

from flask_app.importer.pipeline import RecordKey, detect_conflicts, parse_matrix
from flask_app.importer.pipeline.conflicts import compute_state_token, load_existing
from flask_app.models import AttendanceStatus, db


def test_conflicting_status_is_reported(conflict_matrix, seeded_conflict, record_count):
    batch = parse_matrix(conflict_matrix)

    report = detect_conflicts(db.session, batch.records)

    assert [entry.to_dict() for entry in report.conflicts] == [
        {
            "key": "Smith|2026-01-02",
            "legacyIdentity": "Smith",
            "eventDate": "2026-01-02",
            "existingStatus": "present",
            "proposedStatus": "absent",
        }
    ]
    assert len(report.importable) == 3
    assert report.already_present == []
    assert record_count() == 1


def test_matching_status_is_already_present(conflict_matrix, legacy_record_factory):
    legacy_record_factory("Jones", date(2026, 1, 2), AttendanceStatus.NOTED_ABSENCE)

    report = detect_conflicts(db.session, parse_matrix(conflict_matrix).records)

    assert report.conflicts == []
    assert [candidate.key for candidate in report.already_present] == [RecordKey("Jones", date(2026, 1, 2))]
    assert len(report.importable) == 3


def test_detection_is_repeatable(conflict_matrix, seeded_conflict):
    records = parse_matrix(conflict_matrix).records

    first = detect_conflicts(db.session, records)
    second = detect_conflicts(db.session, records)

    assert first.conflicts == second.conflicts
    assert first.state_token == second.state_token


def test_state_token_changes_when_stored_status_changes(conflict_matrix, seeded_conflict):
    records = parse_matrix(conflict_matrix).records
    before = detect_conflicts(db.session, records).state_token

    seeded_conflict.status = AttendanceStatus.NOTED_ABSENCE
    db.session.commit()

    assert detect_conflicts(db.session, records).state_token != before


def test_state_token_covers_absent_rows():
    key = RecordKey("Smith", date(2026, 1, 2))
    assert compute_state_token([key], {}) == compute_state_token([key, key], {})
    assert compute_state_token([key], {}) != compute_state_token([], {})


def test_load_existing_chunks_lookups(legacy_record_factory):
    for day in range(1, 8):
        legacy_record_factory("Smith", date(2024, 3, day), AttendanceStatus.PRESENT)
    keys = [RecordKey("Smith", date(2024, 3, day)) for day in range(1, 10)]

    existing = load_existing(db.session, keys, chunk_size=3)

    assert sorted(existing) == keys[:7]


def test_empty_candidate_list():
    report = detect_conflicts(db.session, [])
    assert report.importable == [] and report.conflicts == []
    assert report.state_token
