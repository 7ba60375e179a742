"""
Preview and commit orchestration for legacy attendance imports.

``LegacyImportService`` exposes the stateless operations used by the HTTP and
CLI surfaces: ``preview`` parses and reconciles without writing, ``commit``
re-parses, re-validates against live rows under lock and applies the whole
batch in one transaction.

``LegacyImportSession`` wraps the service in the explicit
``DRAFT -> PREVIEWED -> RESOLVING -> COMMITTED`` lifecycle, with ``ABORTED``
reachable from any non-terminal state.
"""

from __future__ import annotations

import enum
import logging
import time
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from flask import current_app, has_app_context
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config.monitoring import LegacyImportMonitoring
from flask_app.models import db
from flask_app.models.legacy import AttendanceStatus, LegacyAttendanceRecord, LegacyImportRun

from .conflicts import ConflictReport, detect_conflicts
from .errors import (
    AbortedStaleConflict,
    IncompleteResolutionError,
    InvalidImportTransition,
    LegacyImportError,
    ParseError,
    PersistenceError,
    UnverifiedResolutionError,
)
from .identity_service import lock_identity_groups
from .matrix import DEFAULT_HEADER_SCAN_LINES, DEFAULT_MAX_CELLS, ImportBatch, RecordKey, parse_matrix

logger = logging.getLogger(__name__)


class ResolutionChoice(str, enum.Enum):
    EXISTING = "existing"
    PROPOSED = "proposed"

    @classmethod
    def coerce(cls, value: "ResolutionChoice | str") -> "ResolutionChoice":
        if isinstance(value, cls):
            return value
        normalized = str(value or "").strip().lower()
        if normalized == "new":
            return cls.PROPOSED
        try:
            return cls(normalized)
        except ValueError as exc:
            raise ValueError(f"Unsupported resolution choice '{value}'. Use 'existing' or 'proposed'.") from exc


@dataclass(frozen=True)
class ConflictResolution:
    """
    Operator decision for one conflict.

    ``observed_status`` is the stored status the operator saw at preview time.
    When supplied, commit refuses to proceed if the live status differs.
    """

    key: RecordKey
    choice: ResolutionChoice
    observed_status: AttendanceStatus | None = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "ConflictResolution":
        raw_key = payload.get("key")
        if raw_key:
            key = RecordKey.parse(raw_key)
        else:
            key = RecordKey.parse(f"{payload.get('legacyIdentity', '')}|{payload.get('eventDate', '')}")
        choice = ResolutionChoice.coerce(payload.get("choice") or payload.get("resolution"))
        observed = payload.get("existingStatus") or payload.get("observedStatus")
        return cls(key=key, choice=choice, observed_status=_coerce_status(observed))


def _coerce_status(value: object | None) -> AttendanceStatus | None:
    if value in (None, ""):
        return None
    if isinstance(value, AttendanceStatus):
        return value
    try:
        return AttendanceStatus(str(value).strip().lower())
    except ValueError as exc:
        raise ValueError(f"Unknown attendance status '{value}'.") from exc


def parse_resolutions(payload: object | None) -> list[ConflictResolution]:
    """
    Accept resolutions as a list of objects or as a ``{key: choice}`` mapping.

    Raises:
        ValueError: when an entry cannot be interpreted.
    """

    if payload in (None, "", [], {}):
        return []
    if isinstance(payload, Mapping):
        return [
            ConflictResolution(key=RecordKey.parse(key), choice=ResolutionChoice.coerce(choice))
            for key, choice in payload.items()
        ]
    if isinstance(payload, (list, tuple)):
        resolutions = []
        for entry in payload:
            if not isinstance(entry, Mapping):
                raise ValueError("Each resolution must be an object with 'key' and 'choice'.")
            resolutions.append(ConflictResolution.from_payload(entry))
        return resolutions
    raise ValueError("resolutions must be a list or an object.")


@dataclass
class PreviewResult:
    batch: ImportBatch
    report: ConflictReport

    @property
    def preview_token(self) -> str:
        return self.report.state_token

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": True,
            "imported": len(self.report.importable),
            "preview": [candidate.to_dict() for candidate in self.report.importable],
            "conflicts": [entry.to_dict() for entry in self.report.conflicts],
            "processedCells": self.batch.processed_cells,
            "skippedCells": self.batch.skipped_cells,
            "year": self.batch.year,
            "dateColumns": len(self.batch.date_columns),
            "duplicates": {
                "same": len(self.report.already_present),
                "different": len(self.report.conflicts),
            },
            "duplicateCells": self.batch.duplicate_cells,
            "rowsSkipped": self.batch.rows_skipped,
            "skipReasons": dict(self.batch.skip_reasons),
            "previewToken": self.preview_token,
        }


@dataclass
class CommitResult:
    imported: int
    updated: int
    unchanged: int
    already_present: int
    run_id: int | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": True,
            "imported": self.imported,
            "updated": self.updated,
            "unchanged": self.unchanged,
            "alreadyPresent": self.already_present,
            "runId": self.run_id,
        }


class LegacyImportService:
    """Parse, reconcile and persist legacy attendance matrices."""

    def __init__(
        self,
        session: Session | None = None,
        *,
        max_cells: int | None = None,
        header_scan_lines: int | None = None,
    ) -> None:
        self.session = session or db.session
        if max_cells is None:
            max_cells = _config_value("LEGACY_IMPORT_MAX_CELLS", DEFAULT_MAX_CELLS)
        if header_scan_lines is None:
            header_scan_lines = _config_value("LEGACY_IMPORT_HEADER_SCAN_LINES", DEFAULT_HEADER_SCAN_LINES)
        self.max_cells = max_cells
        self.header_scan_lines = header_scan_lines

    def parse(self, text: str) -> ImportBatch:
        return parse_matrix(text, max_cells=self.max_cells, header_scan_lines=self.header_scan_lines)

    def preview(self, text: str) -> PreviewResult:
        """Parse and reconcile against the live store. Never writes."""

        try:
            batch = self.parse(text)
        except ParseError:
            LegacyImportMonitoring.record_preview("parse_error")
            raise
        report = detect_conflicts(self.session, batch.records)
        LegacyImportMonitoring.record_preview(
            "success",
            processed_cells=batch.processed_cells,
            skipped_cells=batch.skipped_cells,
        )
        logger.info(
            "Legacy import preview: %s importable, %s conflicts, %s already present (%s processed, %s skipped)",
            len(report.importable),
            len(report.conflicts),
            len(report.already_present),
            batch.processed_cells,
            batch.skipped_cells,
        )
        return PreviewResult(batch=batch, report=report)

    def commit(
        self,
        text: str,
        resolutions: Iterable[ConflictResolution] = (),
        *,
        user_id: int | None = None,
        preview_token: str | None = None,
    ) -> CommitResult:
        """
        Apply a batch atomically.

        Args:
            text: The same matrix text that was previewed.
            resolutions: Exactly one resolution per detected conflict.
            user_id: Account recorded on the import run.
            preview_token: ``previewToken`` from the preview the operator reviewed.

        Returns:
            CommitResult with insert/update counts and the import run id.

        Raises:
            ParseError: the text no longer parses.
            UnverifiedResolutionError: resolutions carry neither a preview token nor observed statuses.
            AbortedStaleConflict: stored rows changed since the preview.
            IncompleteResolutionError: resolutions do not match the conflict set.
            PersistenceError: the write failed; nothing was applied.
        """

        started = time.perf_counter()
        try:
            batch = self.parse(text)
        except ParseError:
            LegacyImportMonitoring.record_commit("parse_error", time.perf_counter() - started)
            raise

        resolution_map: dict[RecordKey, ConflictResolution] = {}
        for resolution in resolutions:
            resolution_map[resolution.key] = resolution

        try:
            self._ensure_verifiable(resolution_map, preview_token)
            report = detect_conflicts(self.session, batch.records, lock=True)
            self._ensure_fresh(batch, report, resolution_map, preview_token)
            self._ensure_complete(report, resolution_map)
            result = self._apply(batch, report, resolution_map, user_id=user_id)
            self.session.commit()
        except LegacyImportError as exc:
            self.session.rollback()
            LegacyImportMonitoring.record_commit(_failure_status(exc), time.perf_counter() - started)
            raise
        except SQLAlchemyError as exc:
            self.session.rollback()
            LegacyImportMonitoring.record_commit("error", time.perf_counter() - started)
            logger.exception("Legacy import commit failed; transaction rolled back")
            raise PersistenceError("Failed to persist legacy attendance import; no changes were applied.") from exc

        LegacyImportMonitoring.record_commit(
            "success",
            time.perf_counter() - started,
            rows_inserted=result.imported,
            rows_updated=result.updated,
        )
        logger.info(
            "Legacy import run %s committed: %s inserted, %s updated, %s unchanged, %s already present",
            result.run_id,
            result.imported,
            result.updated,
            result.unchanged,
            result.already_present,
        )
        return result

    @staticmethod
    def _ensure_verifiable(
        resolution_map: Mapping[RecordKey, ConflictResolution], preview_token: str | None
    ) -> None:
        if preview_token:
            return
        unverified = [key for key, resolution in resolution_map.items() if resolution.observed_status is None]
        if unverified:
            raise UnverifiedResolutionError(unverified)

    def _ensure_fresh(
        self,
        batch: ImportBatch,
        report: ConflictReport,
        resolution_map: Mapping[RecordKey, ConflictResolution],
        preview_token: str | None,
    ) -> None:
        batch_keys = set(batch.keys())
        stale: list[dict[str, object]] = []
        for key, resolution in sorted(resolution_map.items()):
            if resolution.observed_status is None or key not in batch_keys:
                continue
            row = report.existing.get(key)
            live_status = row.status if row is not None else None
            if live_status != resolution.observed_status:
                stale.append(
                    {
                        "key": key.as_token(),
                        "expected": resolution.observed_status.value,
                        "actual": live_status.value if live_status is not None else None,
                    }
                )
        token_mismatch = bool(preview_token) and preview_token != report.state_token
        if stale or token_mismatch:
            raise AbortedStaleConflict(stale, token_mismatch=token_mismatch)

    @staticmethod
    def _ensure_complete(report: ConflictReport, resolution_map: Mapping[RecordKey, ConflictResolution]) -> None:
        conflict_keys = report.conflict_keys
        resolved_keys = set(resolution_map)
        missing = conflict_keys - resolved_keys
        extra = resolved_keys - conflict_keys
        if missing or extra:
            raise IncompleteResolutionError(missing=missing, extra=extra, conflicts=report.conflicts)

    def _apply(
        self,
        batch: ImportBatch,
        report: ConflictReport,
        resolution_map: Mapping[RecordKey, ConflictResolution],
        *,
        user_id: int | None,
    ) -> CommitResult:
        run = LegacyImportRun(
            source_checksum=batch.source_checksum,
            year=batch.year,
            date_columns=len(batch.date_columns),
            processed_cells=batch.processed_cells,
            skipped_cells=batch.skipped_cells,
            conflicts_resolved=len(report.conflicts),
            triggered_by_user_id=user_id,
            counts_json={
                "skip_reasons": dict(batch.skip_reasons),
                "duplicate_cells": batch.duplicate_cells,
                "rows_skipped": batch.rows_skipped,
                "already_present": len(report.already_present),
            },
        )
        self.session.add(run)
        self.session.flush()

        updated = 0
        unchanged = 0
        for entry in report.conflicts:
            resolution = resolution_map[entry.key]
            if resolution.choice is ResolutionChoice.PROPOSED:
                row = report.existing[entry.key]
                row.status = entry.proposed_status
                row.import_run_id = run.id
                updated += 1
            else:
                unchanged += 1

        # Inserted rows inherit the group's mapping so the mapping invariant holds per identity.
        mappings = self._group_mappings({candidate.legacy_identity for candidate in report.importable})
        for candidate in report.importable:
            mapped_user_id = mappings.get(candidate.legacy_identity)
            self.session.add(
                LegacyAttendanceRecord(
                    legacy_identity=candidate.legacy_identity,
                    legacy_user_id=candidate.legacy_user_id,
                    event_date=candidate.event_date,
                    status=candidate.status,
                    notes=candidate.notes,
                    is_mapped=mapped_user_id is not None,
                    mapped_user_id=mapped_user_id,
                    import_run_id=run.id,
                )
            )

        run.rows_inserted = len(report.importable)
        run.rows_updated = updated
        run.rows_unchanged = unchanged
        self.session.flush()
        return CommitResult(
            imported=len(report.importable),
            updated=updated,
            unchanged=unchanged,
            already_present=len(report.already_present),
            run_id=run.id,
        )

    def _group_mappings(self, identities: set[str]) -> dict[str, int]:
        if not identities:
            return {}
        # Group rows stay locked until commit; propose_mapping takes the same lock.
        rows = lock_identity_groups(self.session, identities)
        mappings: dict[str, set[int]] = {}
        for identity, mapped_user_id in rows:
            if mapped_user_id is None:
                continue
            mappings.setdefault(identity, set()).add(mapped_user_id)
        return {identity: user_ids.pop() for identity, user_ids in mappings.items() if len(user_ids) == 1}


def _failure_status(exc: LegacyImportError) -> str:
    if isinstance(exc, AbortedStaleConflict):
        return "stale"
    if isinstance(exc, IncompleteResolutionError):
        return "incomplete"
    if isinstance(exc, UnverifiedResolutionError):
        return "unverified"
    return "error"


def _config_value(key: str, default: int) -> int:
    if has_app_context():
        return current_app.config.get(key, default)
    return default


class ImportState(str, enum.Enum):
    DRAFT = "draft"
    PREVIEWED = "previewed"
    RESOLVING = "resolving"
    COMMITTED = "committed"
    ABORTED = "aborted"


TERMINAL_STATES = frozenset({ImportState.COMMITTED, ImportState.ABORTED})


class LegacyImportSession:
    """One operator's pass over a pasted matrix, from preview to commit."""

    def __init__(self, source_text: str, service: LegacyImportService | None = None) -> None:
        self.source_text = source_text
        self.service = service or LegacyImportService()
        self.state = ImportState.DRAFT
        self.preview_result: PreviewResult | None = None
        self.resolutions: dict[RecordKey, ConflictResolution] = {}
        self.result: CommitResult | None = None

    def preview(self) -> PreviewResult:
        if self.state in TERMINAL_STATES:
            raise InvalidImportTransition("preview", self.state)
        self.preview_result = self.service.preview(self.source_text)
        self.resolutions.clear()
        self.state = ImportState.PREVIEWED
        return self.preview_result

    def resolve(
        self,
        key: RecordKey | str,
        choice: ResolutionChoice | str,
        observed_status: AttendanceStatus | str | None = None,
    ) -> ConflictResolution:
        if self.state not in (ImportState.PREVIEWED, ImportState.RESOLVING):
            raise InvalidImportTransition("resolve", self.state)
        record_key = key if isinstance(key, RecordKey) else RecordKey.parse(key)
        observed = _coerce_status(observed_status)
        if observed is None:
            entry = self.preview_result.report.conflict_for(record_key)
            observed = entry.existing_status if entry is not None else None
        resolution = ConflictResolution(
            key=record_key,
            choice=ResolutionChoice.coerce(choice),
            observed_status=observed,
        )
        self.resolutions[record_key] = resolution
        self.state = ImportState.RESOLVING
        return resolution

    def commit(self, *, user_id: int | None = None, preview_token: str | None = None) -> CommitResult:
        if self.state not in (ImportState.PREVIEWED, ImportState.RESOLVING):
            raise InvalidImportTransition("commit", self.state)
        token = preview_token or self.preview_result.preview_token
        try:
            self.result = self.service.commit(
                self.source_text,
                self.resolutions.values(),
                user_id=user_id,
                preview_token=token,
            )
        except (AbortedStaleConflict, PersistenceError):
            self.state = ImportState.ABORTED
            raise
        self.state = ImportState.COMMITTED
        return self.result

    def abort(self) -> None:
        if self.state in TERMINAL_STATES:
            raise InvalidImportTransition("abort", self.state)
        self.state = ImportState.ABORTED
