"""Legacy attendance import pipeline."""

from __future__ import annotations

from .cells import AttendanceCell, EmptyCell, SkippedCell, SkipReason, classify_cell, normalize_status
from .commit_service import (
    CommitResult,
    ConflictResolution,
    ImportState,
    LegacyImportService,
    LegacyImportSession,
    PreviewResult,
    ResolutionChoice,
    parse_resolutions,
)
from .conflicts import ConflictEntry, ConflictReport, compute_checksum, detect_conflicts
from .errors import (
    AbortedStaleConflict,
    IdentityNotFound,
    IncompleteResolutionError,
    InvalidImportTransition,
    LegacyImportError,
    MappingGroupNotFound,
    ParseError,
    PersistenceError,
    UnverifiedResolutionError,
)
from .identity_service import IdentityResolver, MappingGroup, MappingResult
from .matrix import (
    CandidateRecord,
    DateColumn,
    ImportBatch,
    RecordKey,
    collapse_duplicate_records,
    infer_column_years,
    parse_matrix,
)

__all__ = [
    "AbortedStaleConflict",
    "AttendanceCell",
    "CandidateRecord",
    "CommitResult",
    "ConflictEntry",
    "ConflictReport",
    "ConflictResolution",
    "DateColumn",
    "EmptyCell",
    "IdentityNotFound",
    "IdentityResolver",
    "ImportBatch",
    "ImportState",
    "IncompleteResolutionError",
    "InvalidImportTransition",
    "LegacyImportError",
    "LegacyImportService",
    "LegacyImportSession",
    "MappingGroup",
    "MappingGroupNotFound",
    "MappingResult",
    "ParseError",
    "PersistenceError",
    "PreviewResult",
    "RecordKey",
    "ResolutionChoice",
    "UnverifiedResolutionError",
    "SkipReason",
    "SkippedCell",
    "classify_cell",
    "collapse_duplicate_records",
    "compute_checksum",
    "detect_conflicts",
    "infer_column_years",
    "normalize_status",
    "parse_matrix",
    "parse_resolutions",
]
