import pytest

from flask_app.importer.pipeline.cells import (
    AttendanceCell,
    EmptyCell,
    SkippedCell,
    SkipReason,
    classify_cell,
    normalize_status,
    skip_reason_label,
)
from flask_app.models import AttendanceStatus


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("P", AttendanceStatus.PRESENT),
        ("a", AttendanceStatus.ABSENT),
        (" na ", AttendanceStatus.NOTED_ABSENCE),
    ],
)
def test_classify_recognized_tokens(raw, expected):
    cell = classify_cell(raw)
    assert isinstance(cell, AttendanceCell)
    assert cell.status is expected


@pytest.mark.parametrize("raw", [None, "", "   "])
def test_blank_cells_are_empty(raw):
    cell = classify_cell(raw)
    assert cell == EmptyCell()
    assert skip_reason_label(cell) == "blank"


@pytest.mark.parametrize("raw", ["LOA", "no", "Eo"])
def test_skip_set_tokens_are_excluded(raw):
    cell = classify_cell(raw)
    assert isinstance(cell, SkippedCell)
    assert cell.reason is SkipReason.EXCLUDED
    assert skip_reason_label(cell) == "excluded"


def test_unknown_token_is_skipped_not_raised():
    cell = classify_cell("X?")
    assert cell == SkippedCell(token="X?", reason=SkipReason.UNRECOGNIZED)
    assert skip_reason_label(cell) == "unrecognized"


def test_normalize_status():
    assert normalize_status("p") is AttendanceStatus.PRESENT
    assert normalize_status("LOA") is None
    assert normalize_status(None) is None


def test_attendance_cell_has_no_skip_label():
    assert skip_reason_label(classify_cell("P")) is None
