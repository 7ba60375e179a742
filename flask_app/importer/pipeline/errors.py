"""
Exception taxonomy for the legacy attendance importer.

Header-level parse failures and commit-time failures abort the whole call with
no partial effect. Cell-level anomalies never surface here; the parser skips
and counts them instead.
"""

from __future__ import annotations

from typing import Iterable, Sequence


class LegacyImportError(Exception):
    """Base exception for legacy import failures."""


class ParseError(LegacyImportError):
    """Raised when the pasted matrix header is malformed."""

    def __init__(self, message: str, *, line_number: int | None = None) -> None:
        if line_number is not None:
            message = f"Line {line_number}: {message}"
        super().__init__(message)
        self.line_number = line_number


class IdentityNotFound(LegacyImportError):
    """Raised when a mapping targets an account that does not exist."""

    def __init__(self, user_id: object) -> None:
        super().__init__(f"User {user_id} not found.")
        self.user_id = user_id


class MappingGroupNotFound(LegacyImportError):
    """Raised when no legacy record carries the requested identity."""

    def __init__(self, legacy_identity: str) -> None:
        super().__init__(f"No legacy attendance records found for '{legacy_identity}'.")
        self.legacy_identity = legacy_identity


class IncompleteResolutionError(LegacyImportError):
    """
    Raised when the supplied resolutions do not cover exactly the detected conflicts.

    ``missing`` and ``extra`` hold record keys (see ``RecordKey``).
    """

    def __init__(self, *, missing: Iterable = (), extra: Iterable = (), conflicts: Iterable = ()) -> None:
        self.missing = tuple(sorted(missing))
        self.extra = tuple(sorted(extra))
        self.conflicts = tuple(conflicts)
        details: list[str] = []
        if self.missing:
            details.append("unresolved conflicts: " + ", ".join(key.as_token() for key in self.missing))
        if self.extra:
            details.append("resolutions without a conflict: " + ", ".join(key.as_token() for key in self.extra))
        message = "Every conflict requires exactly one resolution before commit"
        if details:
            message = f"{message} ({'; '.join(details)})."
        super().__init__(message)


class UnverifiedResolutionError(LegacyImportError):
    """
    Raised when resolutions arrive without a ``previewToken`` and without the
    existing status the operator saw, so staleness cannot be checked.
    """

    def __init__(self, keys: Iterable = ()) -> None:
        self.keys = tuple(sorted(keys))
        listed = ", ".join(key.as_token() for key in self.keys)
        super().__init__(
            "Resolutions need the previewToken of the reviewed preview or an existingStatus on each entry"
            f" (missing for: {listed})."
        )


class AbortedStaleConflict(LegacyImportError):
    """Raised when the store changed between preview and commit."""

    def __init__(self, stale: Sequence[dict[str, object]] = (), *, token_mismatch: bool = False) -> None:
        self.stale = tuple(stale)
        self.token_mismatch = token_mismatch
        if self.stale:
            keys = ", ".join(str(entry["key"]) for entry in self.stale)
            message = f"Stored attendance changed since preview for: {keys}. Preview again before committing."
        else:
            message = "Stored attendance changed since preview. Preview again before committing."
        super().__init__(message)


class PersistenceError(LegacyImportError):
    """Raised when the store fails mid-write; the transaction is rolled back."""


class InvalidImportTransition(LegacyImportError):
    """Raised when an import session is driven through an illegal state change."""

    def __init__(self, action: str, state: object) -> None:
        state_value = getattr(state, "value", state)
        super().__init__(f"Cannot {action} an import session in state '{state_value}'.")
        self.action = action
        self.state = state
