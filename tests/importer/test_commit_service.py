from __future__ import annotations

from datetime import date

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from flask_app.importer.pipeline import (
    AbortedStaleConflict,
    ConflictResolution,
    ImportState,
    IncompleteResolutionError,
    InvalidImportTransition,
    LegacyImportService,
    LegacyImportSession,
    ParseError,
    PersistenceError,
    RecordKey,
    ResolutionChoice,
    UnverifiedResolutionError,
    parse_resolutions,
)
from flask_app.importer.pipeline import commit_service
from flask_app.models import AttendanceStatus, LegacyAttendanceRecord, LegacyImportRun, db

SMITH_JAN_2 = RecordKey("Smith", date(2026, 1, 2))


def _stored_status(key: RecordKey) -> AttendanceStatus:
    db.session.expire_all()
    return db.session.scalar(
        select(LegacyAttendanceRecord.status).where(
            LegacyAttendanceRecord.legacy_identity == key.legacy_identity,
            LegacyAttendanceRecord.event_date == key.event_date,
        )
    )


def test_preview_does_not_write(service, conflict_matrix, seeded_conflict, record_count):
    preview = service.preview(conflict_matrix)
    payload = preview.to_dict()

    assert payload["imported"] == 3
    assert payload["processedCells"] == 4
    assert payload["skippedCells"] == 0
    assert payload["year"] == 2025
    assert payload["dateColumns"] == 2
    assert payload["duplicates"] == {"same": 0, "different": 1}
    assert payload["conflicts"][0]["key"] == "Smith|2026-01-02"
    assert payload["previewToken"] == preview.report.state_token
    assert {row["legacyIdentity"] for row in payload["preview"]} == {"Smith", "Jones"}
    assert record_count() == 1


def test_commit_without_resolutions_is_rejected(service, conflict_matrix, seeded_conflict, record_count):
    with pytest.raises(IncompleteResolutionError) as excinfo:
        service.commit(conflict_matrix, [])

    assert excinfo.value.missing == (SMITH_JAN_2,)
    assert excinfo.value.extra == ()
    assert record_count() == 1
    assert db.session.scalar(select(LegacyImportRun.id)) is None


def test_extra_resolution_is_rejected(service, conflict_matrix, seeded_conflict, record_count):
    token = service.preview(conflict_matrix).preview_token
    resolutions = [
        ConflictResolution(SMITH_JAN_2, ResolutionChoice.PROPOSED),
        ConflictResolution(RecordKey("Jones", date(2026, 1, 2)), ResolutionChoice.PROPOSED),
    ]

    with pytest.raises(IncompleteResolutionError) as excinfo:
        service.commit(conflict_matrix, resolutions, preview_token=token)

    assert excinfo.value.extra == (RecordKey("Jones", date(2026, 1, 2)),)
    assert record_count() == 1


def test_proposed_resolution_updates_existing_row(service, conflict_matrix, seeded_conflict, record_count):
    result = service.commit(
        conflict_matrix,
        [ConflictResolution(SMITH_JAN_2, ResolutionChoice.coerce("new"), AttendanceStatus.PRESENT)],
    )

    assert result.to_dict()["success"] is True
    assert result.imported == 3
    assert result.updated == 1
    assert _stored_status(SMITH_JAN_2) is AttendanceStatus.ABSENT
    assert record_count("Smith") == 2
    assert record_count() == 4

    run = db.session.get(LegacyImportRun, result.run_id)
    assert run.rows_inserted == 3
    assert run.rows_updated == 1
    assert run.conflicts_resolved == 1
    assert run.year == 2025


def test_existing_resolution_keeps_stored_status(service, conflict_matrix, seeded_conflict):
    result = service.commit(
        conflict_matrix,
        [ConflictResolution(SMITH_JAN_2, ResolutionChoice.EXISTING, AttendanceStatus.PRESENT)],
    )

    assert result.updated == 0
    assert result.unchanged == 1
    assert _stored_status(SMITH_JAN_2) is AttendanceStatus.PRESENT


def test_recommit_is_idempotent(service, conflict_matrix, record_count):
    first = service.commit(conflict_matrix)
    assert first.imported == 4

    preview = service.preview(conflict_matrix)
    assert preview.report.conflicts == []
    assert preview.report.importable == []

    second = service.commit(conflict_matrix)
    assert second.imported == 0
    assert second.already_present == 4
    assert record_count() == 4


def test_stale_observed_status_aborts(service, conflict_matrix, seeded_conflict, record_count):
    seeded_conflict.status = AttendanceStatus.NOTED_ABSENCE
    db.session.commit()

    with pytest.raises(AbortedStaleConflict) as excinfo:
        service.commit(
            conflict_matrix,
            [ConflictResolution(SMITH_JAN_2, ResolutionChoice.PROPOSED, AttendanceStatus.PRESENT)],
        )

    assert excinfo.value.stale == (
        {"key": "Smith|2026-01-02", "expected": "present", "actual": "noted_absence"},
    )
    assert record_count() == 1
    assert _stored_status(SMITH_JAN_2) is AttendanceStatus.NOTED_ABSENCE


def test_stale_preview_token_aborts(service, conflict_matrix, legacy_record_factory, record_count):
    token = service.preview(conflict_matrix).preview_token
    legacy_record_factory("Jones", date(2025, 12, 26), AttendanceStatus.PRESENT)

    with pytest.raises(AbortedStaleConflict) as excinfo:
        service.commit(
            conflict_matrix,
            [ConflictResolution(RecordKey("Jones", date(2025, 12, 26)), ResolutionChoice.PROPOSED)],
            preview_token=token,
        )

    assert excinfo.value.token_mismatch is True
    assert record_count() == 1


def test_resolution_without_token_or_observed_status_is_rejected(
    service, conflict_matrix, seeded_conflict, record_count
):
    seeded_conflict.status = AttendanceStatus.NOTED_ABSENCE
    db.session.commit()

    with pytest.raises(UnverifiedResolutionError) as excinfo:
        service.commit(conflict_matrix, [ConflictResolution(SMITH_JAN_2, ResolutionChoice.PROPOSED)])

    assert excinfo.value.keys == (SMITH_JAN_2,)
    assert record_count() == 1
    assert _stored_status(SMITH_JAN_2) is AttendanceStatus.NOTED_ABSENCE


def test_commit_locks_identity_groups_before_inserting(service, conflict_matrix, monkeypatch):
    locked = []

    def _spy(session, identities):
        locked.append(set(identities))
        return []

    monkeypatch.setattr(commit_service, "lock_identity_groups", _spy)

    service.commit(conflict_matrix)

    assert locked == [{"Smith", "Jones"}]


def test_explicit_zero_cell_limit_is_honoured(app):
    with pytest.raises(ParseError, match="limit is 0"):
        LegacyImportService(max_cells=0).parse("YEAR: 2025\nNAME,5-Jan\nSmith,A\n")


def test_parse_error_on_commit(service):
    with pytest.raises(ParseError):
        service.commit("no header here")


def test_persistence_failure_rolls_back(service, conflict_matrix, seeded_conflict, record_count, monkeypatch):
    def _failing_commit():
        raise OperationalError("COMMIT", {}, Exception("disk I/O error"))

    monkeypatch.setattr(db.session, "commit", _failing_commit)

    with pytest.raises(PersistenceError):
        service.commit(
            conflict_matrix,
            [ConflictResolution(SMITH_JAN_2, ResolutionChoice.PROPOSED, AttendanceStatus.PRESENT)],
        )

    monkeypatch.undo()
    assert record_count() == 1
    assert _stored_status(SMITH_JAN_2) is AttendanceStatus.PRESENT
    assert db.session.scalar(select(LegacyImportRun.id)) is None


def test_imported_rows_inherit_group_mapping(service, admin_user, legacy_record_factory):
    legacy_record_factory("Smith", date(2025, 1, 1), AttendanceStatus.PRESENT, mapped_user_id=admin_user.id)

    service.commit("YEAR: 2025\nNAME,5-Jan\nSmith,A\n")

    db.session.expire_all()
    rows = db.session.scalars(select(LegacyAttendanceRecord).where(LegacyAttendanceRecord.legacy_identity == "Smith"))
    assert {(row.is_mapped, row.mapped_user_id) for row in rows} == {(True, admin_user.id)}


def test_service_reads_limits_from_config(app):
    app.config["LEGACY_IMPORT_MAX_CELLS"] = 1
    with pytest.raises(ParseError, match="limit is 1"):
        LegacyImportService().parse("YEAR: 2025\nNAME,5-Jan,6-Jan\nSmith,A,P\n")


def test_parse_resolutions_accepts_list_and_mapping():
    from_list = parse_resolutions(
        [{"key": "Smith|2026-01-02", "choice": "new", "existingStatus": "present"}]
    )
    from_fields = parse_resolutions(
        [{"legacyIdentity": "Smith", "eventDate": "2026-01-02", "resolution": "existing"}]
    )
    from_mapping = parse_resolutions({"Smith|2026-01-02": "proposed"})

    assert from_list == [ConflictResolution(SMITH_JAN_2, ResolutionChoice.PROPOSED, AttendanceStatus.PRESENT)]
    assert from_fields == [ConflictResolution(SMITH_JAN_2, ResolutionChoice.EXISTING)]
    assert from_mapping == [ConflictResolution(SMITH_JAN_2, ResolutionChoice.PROPOSED)]
    assert parse_resolutions(None) == []

    with pytest.raises(ValueError):
        parse_resolutions([{"key": "Smith|2026-01-02", "choice": "maybe"}])
    with pytest.raises(ValueError):
        parse_resolutions("Smith")


class TestLegacyImportSession:
    def test_happy_path_transitions(self, conflict_matrix, seeded_conflict):
        session = LegacyImportSession(conflict_matrix)
        assert session.state is ImportState.DRAFT

        preview = session.preview()
        assert session.state is ImportState.PREVIEWED
        assert len(preview.report.conflicts) == 1

        resolution = session.resolve("Smith|2026-01-02", "proposed")
        assert resolution.observed_status is AttendanceStatus.PRESENT
        assert session.state is ImportState.RESOLVING

        result = session.commit()
        assert session.state is ImportState.COMMITTED
        assert result.updated == 1

    def test_incomplete_commit_keeps_state(self, conflict_matrix, seeded_conflict):
        session = LegacyImportSession(conflict_matrix)
        session.preview()

        with pytest.raises(IncompleteResolutionError):
            session.commit()
        assert session.state is ImportState.PREVIEWED

        session.resolve(SMITH_JAN_2, ResolutionChoice.EXISTING)
        assert session.commit().unchanged == 1

    def test_stale_commit_aborts_session(self, conflict_matrix, seeded_conflict):
        session = LegacyImportSession(conflict_matrix)
        session.preview()
        session.resolve(SMITH_JAN_2, "proposed")

        seeded_conflict.status = AttendanceStatus.NOTED_ABSENCE
        db.session.commit()

        with pytest.raises(AbortedStaleConflict):
            session.commit()
        assert session.state is ImportState.ABORTED
        with pytest.raises(InvalidImportTransition):
            session.preview()

    def test_invalid_transitions(self, conflict_matrix):
        session = LegacyImportSession(conflict_matrix)
        with pytest.raises(InvalidImportTransition):
            session.commit()
        with pytest.raises(InvalidImportTransition):
            session.resolve(SMITH_JAN_2, "proposed")

        session.abort()
        assert session.state is ImportState.ABORTED
        with pytest.raises(InvalidImportTransition):
            session.abort()

    def test_preview_again_clears_resolutions(self, conflict_matrix, seeded_conflict):
        session = LegacyImportSession(conflict_matrix)
        session.preview()
        session.resolve(SMITH_JAN_2, "existing")

        session.preview()

        assert session.resolutions == {}
        assert session.state is ImportState.PREVIEWED
