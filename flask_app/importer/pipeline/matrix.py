"""
Parser for pasted legacy attendance matrices.

A matrix looks like a spreadsheet export: a ``YEAR: 2024`` marker near the top,
a header row naming the identity columns (``RANK``, ``NAME``, ``ID``) followed
by one column per event date (``26-Dec``, ``2-Jan`` ...), then one row per
person with a status token in each date cell.

Parsing is pure: identical text always yields an identical ``ImportBatch`` and
nothing here touches the database.
"""

from __future__ import annotations

import csv
import hashlib
import re
from dataclasses import dataclass, field
from datetime import date
from typing import Iterable, Sequence

from .cells import AttendanceCell, classify_cell, skip_reason_label
from .errors import ParseError
from flask_app.models.legacy import AttendanceStatus

DEFAULT_MAX_CELLS = 200_000
DEFAULT_HEADER_SCAN_LINES = 10

YEAR_PATTERN = re.compile(r"YEAR:\s*(\d{4})", re.IGNORECASE)
DATE_LABEL_PATTERN = re.compile(r"^(\d{1,2})-([A-Za-z]{3})$")

MONTHS: dict[str, int] = {
    "JAN": 1,
    "FEB": 2,
    "MAR": 3,
    "APR": 4,
    "MAY": 5,
    "JUN": 6,
    "JUL": 7,
    "AUG": 8,
    "SEP": 9,
    "OCT": 10,
    "NOV": 11,
    "DEC": 12,
}

RANK_COLUMN = "RANK"
NAME_COLUMN = "NAME"
ID_COLUMN = "ID"


@dataclass(frozen=True, order=True)
class RecordKey:
    """Natural key of a legacy attendance fact."""

    legacy_identity: str
    event_date: date

    def as_token(self) -> str:
        return f"{self.legacy_identity}|{self.event_date.isoformat()}"

    @classmethod
    def parse(cls, token: str) -> "RecordKey":
        """Parse ``"<identity>|<YYYY-MM-DD>"`` back into a key."""

        if not isinstance(token, str) or "|" not in token:
            raise ValueError(f"Invalid record key '{token}'. Expected '<identity>|<YYYY-MM-DD>'.")
        identity, _, raw_date = token.rpartition("|")
        identity = identity.strip()
        if not identity:
            raise ValueError(f"Invalid record key '{token}': identity is empty.")
        try:
            event_date = date.fromisoformat(raw_date.strip())
        except ValueError as exc:
            raise ValueError(f"Invalid record key '{token}': {exc}") from exc
        return cls(legacy_identity=identity, event_date=event_date)


@dataclass(frozen=True)
class DateColumn:
    index: int
    label: str
    event_date: date


@dataclass(frozen=True)
class CandidateRecord:
    """A recognized attendance cell ready for reconciliation."""

    legacy_identity: str
    legacy_user_id: str | None
    event_date: date
    status: AttendanceStatus
    notes: str
    line_number: int

    @property
    def key(self) -> RecordKey:
        return RecordKey(self.legacy_identity, self.event_date)

    def to_dict(self) -> dict[str, object]:
        return {
            "key": self.key.as_token(),
            "legacyIdentity": self.legacy_identity,
            "legacyUserId": self.legacy_user_id,
            "eventDate": self.event_date.isoformat(),
            "canonicalStatus": self.status.value,
            "notes": self.notes,
        }


@dataclass(frozen=True)
class ImportBatch:
    """Parsed matrix: candidate records plus cell accounting."""

    records: tuple[CandidateRecord, ...]
    processed_cells: int
    skipped_cells: int
    year: int
    date_columns: tuple[DateColumn, ...]
    skip_reasons: dict[str, int] = field(default_factory=dict)
    duplicate_cells: int = 0
    rows_skipped: int = 0
    source_checksum: str = ""

    def keys(self) -> list[RecordKey]:
        return [record.key for record in self.records]


def infer_column_years(start_year: int, months: Sequence[int]) -> list[int]:
    """
    Assign a calendar year to each date column.

    The year starts at ``start_year`` and increments every time a column's
    month is earlier than the previous column's month, so a Dec -> Jan
    sequence crosses into the following year.
    """

    years: list[int] = []
    current_year = start_year
    previous_month: int | None = None
    for month in months:
        if previous_month is not None and month < previous_month:
            current_year += 1
        years.append(current_year)
        previous_month = month
    return years


def collapse_duplicate_records(records: Iterable[CandidateRecord]) -> tuple[tuple[CandidateRecord, ...], int]:
    """
    Keep one candidate per key; the record from the later row wins.

    Returns the surviving records (in first-seen key order) and the number of
    superseded candidates.
    """

    survivors: dict[RecordKey, CandidateRecord] = {}
    superseded = 0
    for record in records:
        if record.key in survivors:
            superseded += 1
        survivors[record.key] = record
    return tuple(survivors.values()), superseded


def compute_source_checksum(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def detect_delimiter(line: str) -> str:
    return "\t" if "\t" in line else ","


def split_line(line: str, delimiter: str) -> list[str]:
    rows = list(csv.reader([line], delimiter=delimiter))
    if not rows:
        return []
    return [cell.strip() for cell in rows[0]]


def find_year(lines: Sequence[str], scan_lines: int) -> tuple[int, int]:
    for index, line in enumerate(lines[:scan_lines]):
        match = YEAR_PATTERN.search(line)
        if match:
            return index, int(match.group(1))
    raise ParseError(f"Missing 'YEAR: <yyyy>' marker in the first {scan_lines} lines.")


def find_header(lines: Sequence[str], start: int) -> tuple[int, str, list[str]]:
    for index in range(start, len(lines)):
        line = lines[index]
        delimiter = detect_delimiter(line)
        cells = split_line(line, delimiter)
        if any(cell.upper() == NAME_COLUMN for cell in cells):
            return index, delimiter, cells
    raise ParseError("Could not find a header row with a NAME column.")


def parse_date_columns(header: Sequence[str], year: int, *, line_number: int) -> tuple[DateColumn, ...]:
    """Read the contiguous run of ``<day>-<Mon>`` labels from the header."""

    labels: list[tuple[int, str, int, int]] = []
    for index, cell in enumerate(header):
        match = DATE_LABEL_PATTERN.match(cell)
        month = MONTHS.get(match.group(2).upper()) if match else None
        if month is None:
            if labels:
                break
            continue
        labels.append((index, cell, int(match.group(1)), month))

    if not labels:
        raise ParseError("Header row has no date columns (expected labels like '26-Dec').", line_number=line_number)

    years = infer_column_years(year, [month for _, _, _, month in labels])
    columns: list[DateColumn] = []
    for (index, label, day, month), column_year in zip(labels, years):
        try:
            event_date = date(column_year, month, day)
        except ValueError as exc:
            raise ParseError(f"Invalid date column '{label}': {exc}.", line_number=line_number) from exc
        columns.append(DateColumn(index=index, label=label, event_date=event_date))
    return tuple(columns)


def _column_index(header: Sequence[str], name: str) -> int | None:
    for index, cell in enumerate(header):
        if cell.upper() == name:
            return index
    return None


def _cell(row: Sequence[str], index: int | None) -> str:
    if index is None or index >= len(row):
        return ""
    return row[index]


def build_identity(rank: str, name: str) -> str:
    return f"{rank} {name}" if rank else name


def parse_matrix(
    text: str,
    *,
    max_cells: int = DEFAULT_MAX_CELLS,
    header_scan_lines: int = DEFAULT_HEADER_SCAN_LINES,
) -> ImportBatch:
    """
    Parse a pasted attendance matrix into an ``ImportBatch``.

    Args:
        text: Raw pasted text (comma or tab separated).
        max_cells: Upper bound on data rows multiplied by date columns.
        header_scan_lines: Number of leading lines searched for the year marker.

    Returns:
        ImportBatch with de-duplicated candidate records and cell counters.

    Raises:
        ParseError: when the year marker, header row or date columns are missing,
            a date label is not a real calendar date, or the grid is too large.
    """

    if not text or not text.strip():
        raise ParseError("No matrix data supplied.")

    lines = text.splitlines()
    year_index, year = find_year(lines, header_scan_lines)
    header_index, delimiter, header = find_header(lines, year_index)
    header_line_number = header_index + 1
    date_columns = parse_date_columns(header, year, line_number=header_line_number)

    name_index = _column_index(header, NAME_COLUMN)
    rank_index = _column_index(header, RANK_COLUMN)
    id_index = _column_index(header, ID_COLUMN)

    data_lines = [(index + 1, line) for index, line in enumerate(lines) if index > header_index and line.strip()]
    total_cells = len(data_lines) * len(date_columns)
    if total_cells > max_cells:
        raise ParseError(
            f"Matrix has {total_cells} cells ({len(data_lines)} rows x {len(date_columns)} dates); "
            f"the limit is {max_cells}."
        )

    candidates: list[CandidateRecord] = []
    skip_reasons: dict[str, int] = {}
    processed_cells = 0
    skipped_cells = 0
    rows_skipped = 0

    for line_number, line in data_lines:
        row = split_line(line, delimiter)
        name = _cell(row, name_index)
        if not name:
            rows_skipped += 1
            continue
        identity = build_identity(_cell(row, rank_index), name)
        legacy_user_id = _cell(row, id_index) or None

        for column in date_columns:
            cell = classify_cell(_cell(row, column.index))
            if isinstance(cell, AttendanceCell):
                processed_cells += 1
                candidates.append(
                    CandidateRecord(
                        legacy_identity=identity,
                        legacy_user_id=legacy_user_id,
                        event_date=column.event_date,
                        status=cell.status,
                        notes=f"Imported from {column.label} attendance",
                        line_number=line_number,
                    )
                )
                continue
            skipped_cells += 1
            reason = skip_reason_label(cell)
            skip_reasons[reason] = skip_reasons.get(reason, 0) + 1

    records, duplicate_cells = collapse_duplicate_records(candidates)
    return ImportBatch(
        records=records,
        processed_cells=processed_cells,
        skipped_cells=skipped_cells,
        year=year,
        date_columns=date_columns,
        skip_reasons=skip_reasons,
        duplicate_cells=duplicate_cells,
        rows_skipped=rows_skipped,
        source_checksum=compute_source_checksum(text),
    )
