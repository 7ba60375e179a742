"""
Identity resolution for legacy attendance.

Legacy rows carry a free-text identity (``"SGT Smith"``). Every row sharing an
identical identity forms a mapping group, and a group is mapped onto one
canonical ``User`` all at once. Grouping is exact string equality, so two
spellings of the same person are two groups.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

from flask import current_app, has_app_context
from sqlalchemy import or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config.monitoring import LegacyImportMonitoring
from flask_app.models import User, db
from flask_app.models.base import utcnow
from flask_app.models.legacy import LegacyAttendanceRecord

from .errors import IdentityNotFound, MappingGroupNotFound, PersistenceError

logger = logging.getLogger(__name__)

DEFAULT_ACCOUNT_SEARCH_LIMIT = 20

GROUP_MAPPED = "mapped"
GROUP_UNMAPPED = "unmapped"
GROUP_PARTIAL = "partial"


def group_rows_statement(identities: Iterable[str]):
    """Select every row of the given identity groups ``FOR UPDATE``, in id order."""

    return (
        select(LegacyAttendanceRecord.legacy_identity, LegacyAttendanceRecord.mapped_user_id)
        .where(LegacyAttendanceRecord.legacy_identity.in_(sorted(set(identities))))
        .order_by(LegacyAttendanceRecord.id)
        .with_for_update()
    )


def lock_identity_groups(session: Session, identities: Iterable[str]) -> list[tuple[str, int | None]]:
    """
    Lock the stored rows of each identity group for the rest of the transaction.

    Group mapping and commit inserts both go through here, so they serialise
    per identity and a group never ends up half-mapped.
    """

    return [tuple(row) for row in session.execute(group_rows_statement(identities)).all()]


@dataclass
class MappingGroup:
    """All legacy records sharing one identity, with their aggregate mapping status."""

    legacy_identity: str
    records: list[LegacyAttendanceRecord] = field(default_factory=list)

    @property
    def mapped_user_ids(self) -> set[int]:
        return {record.mapped_user_id for record in self.records if record.mapped_user_id is not None}

    @property
    def status(self) -> str:
        mapped = sum(1 for record in self.records if record.is_mapped)
        if mapped == 0:
            return GROUP_UNMAPPED
        if mapped == len(self.records) and len(self.mapped_user_ids) == 1:
            return GROUP_MAPPED
        return GROUP_PARTIAL

    @property
    def mapped_user_id(self) -> int | None:
        if self.status != GROUP_MAPPED:
            return None
        return next(iter(self.mapped_user_ids))

    def to_dict(self) -> dict[str, Any]:
        mapped_user = self.records[0].mapped_user if self.mapped_user_id is not None else None
        return {
            "legacyIdentity": self.legacy_identity,
            "status": self.status,
            "isMapped": self.status == GROUP_MAPPED,
            "mappedUserId": self.mapped_user_id,
            "mappedUser": (
                {
                    "id": mapped_user.id,
                    "username": mapped_user.username,
                    "displayName": mapped_user.display_name,
                }
                if mapped_user is not None
                else None
            ),
            "recordCount": len(self.records),
            "records": [record.to_dict() for record in self.records],
        }


@dataclass(frozen=True)
class MappingResult:
    legacy_identity: str
    mapped_user_id: int | None
    records_updated: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": True,
            "legacyIdentity": self.legacy_identity,
            "mappedUserId": self.mapped_user_id,
            "updated": self.records_updated,
        }


class IdentityResolver:
    """Group listing, group-wide mapping and account lookup for legacy identities."""

    def __init__(self, session: Session | None = None) -> None:
        self.session = session or db.session

    def list_groups(self, search: str | None = None, is_mapped: bool | None = None) -> list[MappingGroup]:
        """
        Return every mapping group ordered by identity.

        Args:
            search: Case-insensitive substring filter on the identity.
            is_mapped: ``True`` keeps fully mapped groups; ``False`` keeps groups
                that still need attention (unmapped or partial).
        """

        stmt = select(LegacyAttendanceRecord).order_by(
            LegacyAttendanceRecord.legacy_identity,
            LegacyAttendanceRecord.event_date,
        )
        term = search.strip() if isinstance(search, str) else ""
        if term:
            stmt = stmt.where(LegacyAttendanceRecord.legacy_identity.ilike(f"%{term}%"))

        groups: dict[str, MappingGroup] = {}
        for record in self.session.scalars(stmt):
            group = groups.get(record.legacy_identity)
            if group is None:
                group = groups[record.legacy_identity] = MappingGroup(legacy_identity=record.legacy_identity)
            group.records.append(record)

        result = list(groups.values())
        if is_mapped is True:
            result = [group for group in result if group.status == GROUP_MAPPED]
        elif is_mapped is False:
            result = [group for group in result if group.status != GROUP_MAPPED]
        return result

    def get_group(self, legacy_identity: str) -> MappingGroup:
        records = list(
            self.session.scalars(
                select(LegacyAttendanceRecord)
                .where(LegacyAttendanceRecord.legacy_identity == legacy_identity)
                .order_by(LegacyAttendanceRecord.event_date)
            )
        )
        if not records:
            raise MappingGroupNotFound(legacy_identity)
        return MappingGroup(legacy_identity=legacy_identity, records=records)

    def propose_mapping(self, legacy_identity: str, canonical_user_id: int) -> MappingResult:
        """
        Map every record of a group onto ``canonical_user_id`` in one statement.

        Raises:
            IdentityNotFound: the account does not exist.
            MappingGroupNotFound: no record carries ``legacy_identity``.
            PersistenceError: the update failed and was rolled back.
        """

        user = self.session.get(User, canonical_user_id)
        if user is None:
            LegacyImportMonitoring.record_mapping("identity_not_found")
            raise IdentityNotFound(canonical_user_id)
        return self._apply_mapping(legacy_identity, user.id)

    def clear_mapping(self, legacy_identity: str) -> MappingResult:
        """Unmap every record of a group in one statement."""

        return self._apply_mapping(legacy_identity, None)

    def search_accounts(self, query: str | None, limit: int | None = None) -> list[User]:
        """Case-insensitive substring search over active accounts' username and email."""

        stmt = select(User).where(User.is_active.is_(True))
        term = query.strip() if isinstance(query, str) else ""
        if term:
            pattern = f"%{term}%"
            stmt = stmt.where(or_(User.username.ilike(pattern), User.email.ilike(pattern)))
        stmt = stmt.order_by(User.username).limit(limit or self._default_search_limit())
        return list(self.session.scalars(stmt))

    def _apply_mapping(self, legacy_identity: str, user_id: int | None) -> MappingResult:
        group_size = len(lock_identity_groups(self.session, {legacy_identity}))
        if not group_size:
            LegacyImportMonitoring.record_mapping("group_not_found")
            raise MappingGroupNotFound(legacy_identity)

        stmt = (
            update(LegacyAttendanceRecord)
            .where(LegacyAttendanceRecord.legacy_identity == legacy_identity)
            .values(mapped_user_id=user_id, is_mapped=user_id is not None, updated_at=utcnow())
        )
        try:
            result = self.session.execute(stmt)
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            LegacyImportMonitoring.record_mapping("error")
            logger.exception("Failed to update mapping for legacy identity %s", legacy_identity)
            raise PersistenceError(f"Could not update mapping for '{legacy_identity}'.") from exc

        LegacyImportMonitoring.record_mapping("mapped" if user_id is not None else "cleared")
        logger.info(
            "Legacy identity %s %s (%s records)",
            legacy_identity,
            f"mapped to user {user_id}" if user_id is not None else "unmapped",
            result.rowcount,
        )
        return MappingResult(
            legacy_identity=legacy_identity,
            mapped_user_id=user_id,
            records_updated=result.rowcount,
        )

    @staticmethod
    def _default_search_limit() -> int:
        if has_app_context():
            return current_app.config.get("LEGACY_IMPORT_ACCOUNT_SEARCH_LIMIT", DEFAULT_ACCOUNT_SEARCH_LIMIT)
        return DEFAULT_ACCOUNT_SEARCH_LIMIT
