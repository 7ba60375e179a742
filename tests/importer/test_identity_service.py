from __future__ import annotations

from datetime import date

import pytest
from sqlalchemy import select
from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import OperationalError

from flask_app.importer.pipeline import IdentityNotFound, MappingGroupNotFound, PersistenceError, identity_service
from flask_app.models import AttendanceStatus, LegacyAttendanceRecord, User, db


@pytest.fixture
def smith_group(legacy_record_factory):
    return [
        legacy_record_factory("Smith", date(2025, 12, 26), AttendanceStatus.PRESENT),
        legacy_record_factory("Smith", date(2026, 1, 2), AttendanceStatus.ABSENT),
        legacy_record_factory("Smith", date(2026, 1, 9), AttendanceStatus.NOTED_ABSENCE),
    ]


@pytest.fixture
def account_42(app):
    user = User(id=42, username="jsmith", email="john.smith@example.com", first_name="John", last_name="Smith")
    db.session.add(user)
    db.session.commit()
    return user


def _smith_rows():
    db.session.expire_all()
    return list(
        db.session.scalars(select(LegacyAttendanceRecord).where(LegacyAttendanceRecord.legacy_identity == "Smith"))
    )


def test_mapping_updates_whole_group(resolver, smith_group, account_42, legacy_record_factory):
    legacy_record_factory("Jones", date(2026, 1, 2), AttendanceStatus.PRESENT)

    result = resolver.propose_mapping("Smith", 42)

    assert result.records_updated == 3
    assert result.to_dict() == {"success": True, "legacyIdentity": "Smith", "mappedUserId": 42, "updated": 3}
    assert {(row.mapped_user_id, row.is_mapped) for row in _smith_rows()} == {(42, True)}
    jones = db.session.scalar(select(LegacyAttendanceRecord).where(LegacyAttendanceRecord.legacy_identity == "Jones"))
    assert jones.is_mapped is False
    assert jones.mapped_user_id is None


def test_mapping_to_unknown_account_changes_nothing(resolver, smith_group):
    with pytest.raises(IdentityNotFound):
        resolver.propose_mapping("Smith", 999)

    assert {row.is_mapped for row in _smith_rows()} == {False}


def test_mapping_unknown_identity(resolver, account_42):
    with pytest.raises(MappingGroupNotFound):
        resolver.propose_mapping("Nobody", 42)


def test_clear_mapping(resolver, smith_group, account_42):
    resolver.propose_mapping("Smith", 42)

    result = resolver.clear_mapping("Smith")

    assert result.mapped_user_id is None
    assert {(row.mapped_user_id, row.is_mapped) for row in _smith_rows()} == {(None, False)}


def test_remapping_moves_group_to_new_account(resolver, smith_group, account_42, admin_user):
    resolver.propose_mapping("Smith", 42)
    resolver.propose_mapping("Smith", admin_user.id)

    assert {row.mapped_user_id for row in _smith_rows()} == {admin_user.id}


def test_grouping_is_exact_string_match(resolver, smith_group, legacy_record_factory, account_42):
    legacy_record_factory("SMITH", date(2026, 1, 2), AttendanceStatus.PRESENT)

    resolver.propose_mapping("Smith", 42)

    groups = {group.legacy_identity: group for group in resolver.list_groups()}
    assert groups["Smith"].status == "mapped"
    assert groups["SMITH"].status == "unmapped"


def test_list_groups_filters(resolver, smith_group, account_42, legacy_record_factory):
    legacy_record_factory("Jones", date(2026, 1, 2), AttendanceStatus.PRESENT)
    resolver.propose_mapping("Smith", 42)

    all_groups = resolver.list_groups()
    assert [group.legacy_identity for group in all_groups] == ["Jones", "Smith"]
    assert [record.event_date for record in all_groups[1].records] == [
        date(2025, 12, 26),
        date(2026, 1, 2),
        date(2026, 1, 9),
    ]

    assert [group.legacy_identity for group in resolver.list_groups(is_mapped=True)] == ["Smith"]
    assert [group.legacy_identity for group in resolver.list_groups(is_mapped=False)] == ["Jones"]
    assert [group.legacy_identity for group in resolver.list_groups(search="smi")] == ["Smith"]

    payload = all_groups[1].to_dict()
    assert payload["status"] == "mapped"
    assert payload["mappedUser"] == {"id": 42, "username": "jsmith", "displayName": "John Smith"}
    assert payload["recordCount"] == 3


def test_partial_group_is_reported(resolver, legacy_record_factory, account_42):
    legacy_record_factory("Smith", date(2026, 1, 2), AttendanceStatus.PRESENT, mapped_user_id=42)
    legacy_record_factory("Smith", date(2026, 1, 9), AttendanceStatus.PRESENT)

    group = resolver.get_group("Smith")

    assert group.status == "partial"
    assert group.mapped_user_id is None
    assert [g.legacy_identity for g in resolver.list_groups(is_mapped=False)] == ["Smith"]


def test_get_group_unknown(resolver):
    with pytest.raises(MappingGroupNotFound):
        resolver.get_group("Nobody")


def test_search_accounts(resolver, account_42, admin_user, app):
    inactive = User(username="jsmith_old", email="old@example.com", is_active=False)
    db.session.add(inactive)
    db.session.commit()

    assert [user.username for user in resolver.search_accounts("smith")] == ["jsmith"]
    assert [user.username for user in resolver.search_accounts("EXAMPLE.COM")] == ["admin", "jsmith"]
    assert len(resolver.search_accounts("", limit=1)) == 1


def _smith_mapping_state():
    return sorted((row.is_mapped, row.mapped_user_id) for row in _smith_rows())


def test_mapping_failure_rolls_back_whole_group(resolver, smith_group, account_42, monkeypatch):
    before = _smith_mapping_state()

    def _failing_commit():
        raise OperationalError("COMMIT", {}, Exception("database is locked"))

    monkeypatch.setattr(db.session, "commit", _failing_commit)

    with pytest.raises(PersistenceError):
        resolver.propose_mapping("Smith", 42)

    monkeypatch.undo()
    assert _smith_mapping_state() == before == [(False, None)] * 3


def test_mapping_locks_the_group_before_updating(resolver, smith_group, account_42, monkeypatch):
    locked = []
    original = identity_service.lock_identity_groups

    def _spy(session, identities):
        locked.append(set(identities))
        return original(session, identities)

    monkeypatch.setattr(identity_service, "lock_identity_groups", _spy)

    resolver.propose_mapping("Smith", 42)

    assert locked == [{"Smith"}]


def test_group_rows_are_selected_for_update():
    compiled = str(identity_service.group_rows_statement({"Smith"}).compile(dialect=postgresql.dialect()))

    assert "FOR UPDATE" in compiled
    assert "legacy_identity IN" in compiled
