from datetime import date

import pytest

import review
from conftest import category, gl_account, make_parsed_upload
from errors import InvalidTransitionError, NotFoundError, ValidationError
from lifecycle import cancel_upload
from models import LineStatus, StatementLine

BIZ = "biz-test"
ROWS = [
    (date(2024, 3, 5), 500000, "POS SALE"),
    (date(2024, 3, 6), -2000, "BANK CHARGE"),
    (date(2024, 3, 7), -9000, "DIESEL SUPPLY"),
]


@pytest.fixture()
def upload(db):
    return make_parsed_upload(db, ROWS)


@pytest.fixture()
def duplicate_line(db):
    prior = make_parsed_upload(db, ROWS[:1])
    prior.lines[0].status = LineStatus.IMPORTED
    db.commit()
    later = make_parsed_upload(db, ROWS[:1])
    line = later.lines[0]
    assert line.status == LineStatus.DUPLICATE
    return line


# ── Status moves ──────────────────────────────────────────────────────────────

def test_approve_and_counters(db, upload):
    line = review.update_line(db, BIZ, upload.lines[0].id, status=LineStatus.APPROVED)

    assert line.status == LineStatus.APPROVED
    db.refresh(upload)
    assert (upload.lines_approved, upload.lines_pending) == (1, 2)


def test_skip_then_undo(db, upload):
    line_id = upload.lines[1].id
    review.update_line(db, BIZ, line_id, status=LineStatus.SKIPPED)
    line = review.update_line(db, BIZ, line_id, status=LineStatus.PENDING)

    assert line.status == LineStatus.PENDING
    db.refresh(upload)
    assert upload.lines_skipped == 0
    assert upload.lines_pending == 3


def test_duplicate_override_is_recorded(db, duplicate_line):
    line = review.update_line(db, BIZ, duplicate_line.id, status=LineStatus.APPROVED)

    assert line.status == LineStatus.APPROVED
    assert line.duplicate_override is True
    assert line.is_duplicate is True


def test_undo_on_duplicate_returns_to_duplicate(db, duplicate_line):
    review.update_line(db, BIZ, duplicate_line.id, status=LineStatus.APPROVED)
    line = review.update_line(db, BIZ, duplicate_line.id, status=LineStatus.PENDING)

    assert line.status == LineStatus.DUPLICATE
    assert line.duplicate_override is False


def test_skip_duplicate(db, duplicate_line):
    line = review.update_line(db, BIZ, duplicate_line.id, status=LineStatus.SKIPPED)
    assert line.status == LineStatus.SKIPPED


@pytest.mark.parametrize("status", [LineStatus.IMPORTED, LineStatus.ERROR])
def test_importer_statuses_cannot_be_requested(db, upload, status):
    with pytest.raises(InvalidTransitionError):
        review.update_line(db, BIZ, upload.lines[0].id, status=status)


def test_duplicate_cannot_be_requested_for_clean_line(db, upload):
    with pytest.raises(InvalidTransitionError):
        review.update_line(db, BIZ, upload.lines[0].id, status=LineStatus.DUPLICATE)


def test_approved_to_skipped_needs_undo_first(db, upload):
    line_id = upload.lines[0].id
    review.update_line(db, BIZ, line_id, status=LineStatus.APPROVED)
    with pytest.raises(InvalidTransitionError):
        review.update_line(db, BIZ, line_id, status=LineStatus.SKIPPED)


def test_imported_line_is_frozen(db, upload):
    upload.lines[0].status = LineStatus.IMPORTED
    db.commit()
    with pytest.raises(InvalidTransitionError, match="already imported"):
        review.update_line(db, BIZ, upload.lines[0].id, user_notes="too late")


def test_lines_of_cancelled_upload_cannot_change(db, upload):
    cancel_upload(db, BIZ, upload.id)
    with pytest.raises(InvalidTransitionError):
        review.update_line(db, BIZ, upload.lines[0].id, status=LineStatus.APPROVED)


def test_unknown_and_foreign_lines_are_not_found(db, upload):
    with pytest.raises(NotFoundError):
        review.update_line(db, BIZ, "missing", status=LineStatus.APPROVED)
    with pytest.raises(NotFoundError):
        review.update_line(db, "other-business", upload.lines[0].id, status=LineStatus.APPROVED)


# ── Category & GL selection ───────────────────────────────────────────────────

def test_selecting_category_updates_gl_preview(db, upload):
    utilities = category(db, "UTILITIES")
    line = review.update_line(
        db, BIZ, upload.lines[2].id,
        status=LineStatus.APPROVED, selected_category_id=utilities.id,
    )

    assert line.status == LineStatus.APPROVED
    assert line.selected_category_code == "UTILITIES"
    assert line.suggested_gl_account_code == "6200"
    assert line.suggested_gl_account_flow == "DEBIT"


def test_manual_gl_overrides_category_and_clears(db, upload):
    line_id = upload.lines[1].id
    supplies = gl_account(db, "6800")
    line = review.update_line(
        db, BIZ, line_id,
        selected_category_id=category(db, "BANK_CHARGES").id,
        manual_gl_account_id=supplies.id,
    )
    assert line.manual_gl_account_code == "6800"
    assert line.suggested_gl_account_code == "6800"

    line = review.update_line(db, BIZ, line_id, manual_gl_account_id=None)
    assert line.manual_gl_account_id is None
    assert line.suggested_gl_account_code == "6300"


def test_category_must_fit_direction(db, upload):
    with pytest.raises(ValidationError):
        review.update_line(db, BIZ, upload.lines[1].id, selected_category_id=category(db, "SALES").id)


def test_inactive_manual_gl_is_rejected(db, upload):
    acct = gl_account(db, "6800")
    acct.is_active = False
    db.commit()
    with pytest.raises(ValidationError, match="inactive"):
        review.update_line(db, BIZ, upload.lines[1].id, manual_gl_account_id=acct.id)


def test_rejected_update_changes_nothing(db, upload):
    line_id = upload.lines[1].id
    with pytest.raises(ValidationError):
        review.update_line(db, BIZ, line_id, status=LineStatus.APPROVED, selected_category_id="nope")

    db.expire_all()
    line = db.get(StatementLine, line_id)
    assert line.status == LineStatus.PENDING
    assert line.selected_category_id is None


def test_notes_are_saved(db, upload):
    line = review.update_line(db, BIZ, upload.lines[0].id, user_notes="Paid by Ada")
    assert line.user_notes == "Paid by Ada"


# ── Bulk ──────────────────────────────────────────────────────────────────────

def test_bulk_update_reports_per_line_errors(db, upload):
    upload.lines[2].status = LineStatus.IMPORTED
    db.commit()
    ids = [upload.lines[0].id, upload.lines[1].id, upload.lines[2].id, "missing"]

    result = review.bulk_update(db, BIZ, ids, LineStatus.APPROVED)

    assert [ln.id for ln in result.lines] == ids[:2]
    assert all(ln.status == LineStatus.APPROVED for ln in result.lines)
    assert [e.line_id for e in result.errors] == [ids[2], "missing"]
    assert "already imported" in result.errors[0].message


def test_bulk_update_with_category(db, upload):
    charges = category(db, "BANK_CHARGES")
    result = review.bulk_update(
        db, BIZ, [upload.lines[1].id, upload.lines[2].id], LineStatus.APPROVED, category_id=charges.id,
    )

    assert result.errors == []
    assert {ln.selected_category_code for ln in result.lines} == {"BANK_CHARGES"}
