"""
Cell classification and status normalization for legacy attendance matrices.

Raw grid cells are turned into a small tagged variant so later stages can
switch on the cell kind instead of re-inspecting strings:

- ``EmptyCell``: blank cell.
- ``SkippedCell``: a token that is deliberately ignored (``LOA``, ``NO``,
  ``EO``) or one that is not recognized at all.
- ``AttendanceCell``: a token that maps onto a canonical ``AttendanceStatus``.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Union

from flask_app.models.legacy import AttendanceStatus

STATUS_TOKENS: dict[str, AttendanceStatus] = {
    "P": AttendanceStatus.PRESENT,
    "A": AttendanceStatus.ABSENT,
    "NA": AttendanceStatus.NOTED_ABSENCE,
}

# Leave of absence, not operational, excused operation
SKIP_TOKENS: frozenset[str] = frozenset({"LOA", "NO", "EO"})


class SkipReason(str, enum.Enum):
    EXCLUDED = "excluded"
    UNRECOGNIZED = "unrecognized"


@dataclass(frozen=True)
class EmptyCell:
    pass


@dataclass(frozen=True)
class SkippedCell:
    token: str
    reason: SkipReason


@dataclass(frozen=True)
class AttendanceCell:
    token: str
    status: AttendanceStatus


Cell = Union[EmptyCell, SkippedCell, AttendanceCell]


def normalize_token(raw: object | None) -> str:
    if raw is None:
        return ""
    return str(raw).strip().upper()


def normalize_status(token: object | None) -> AttendanceStatus | None:
    """Map a raw token onto its canonical status, or ``None`` when unrecognized."""

    return STATUS_TOKENS.get(normalize_token(token))


def classify_cell(raw: object | None) -> Cell:
    """Classify a raw grid cell. Never raises; unknown tokens become ``SkippedCell``."""

    token = normalize_token(raw)
    if not token:
        return EmptyCell()
    if token in SKIP_TOKENS:
        return SkippedCell(token=token, reason=SkipReason.EXCLUDED)
    status = STATUS_TOKENS.get(token)
    if status is None:
        return SkippedCell(token=token, reason=SkipReason.UNRECOGNIZED)
    return AttendanceCell(token=token, status=status)


def skip_reason_label(cell: Cell) -> str | None:
    """Return the counter label for a non-attendance cell."""

    if isinstance(cell, EmptyCell):
        return "blank"
    if isinstance(cell, SkippedCell):
        return cell.reason.value
    return None
