from datetime import date
from pathlib import Path

import pytest
from sqlalchemy import select

import config
import lifecycle
from conftest import make_parsed_upload, make_upload_in
from database import SessionLocal
from errors import InvalidTransitionError, NotFoundError, ValidationError
from ingest import process_upload
from models import AuditLog, LineStatus, StatementUpload, UploadStatus

CSV = (
    b"Date,Description,Reference,Debit,Credit,Balance\n"
    b"2024-03-05,POS SALE SHOP 12,REF001,,5000.00,15000.00\n"
    b"2024-03-06,BANK CHARGE SMS ALERT,REF002,20.00,,14980.00\n"
    b"2024-03-07,Transfer to JOHN DOE,REF003,1500.50,,13479.50\n"
)


def _start(db, contents=CSV, filename="march.csv", content_type="text/csv", **kw):
    return lifecycle.start_upload(db, "biz-test", filename, content_type, contents, **kw)


# ── start_upload ──────────────────────────────────────────────────────────────

def test_start_upload_stores_file_and_moves_to_parsing(db):
    upload = _start(db)

    assert upload.status == UploadStatus.PARSING
    assert upload.file_size_bytes == len(CSV)
    assert Path(upload.stored_path).read_bytes() == CSV
    actions = db.scalars(
        select(AuditLog.action).where(AuditLog.entity_id == upload.id).order_by(AuditLog.id)
    ).all()
    assert actions == ["create", "status"]


def test_empty_file_is_rejected(db):
    with pytest.raises(ValidationError, match="empty"):
        _start(db, contents=b"")


def test_oversized_file_is_rejected(db, monkeypatch):
    monkeypatch.setattr(config, "MAX_UPLOAD_BYTES", 10)
    with pytest.raises(ValidationError, match="limit"):
        _start(db)


def test_unsupported_type_is_rejected(db):
    with pytest.raises(ValidationError, match="Unsupported"):
        _start(db, filename="notes.txt", content_type="text/plain")


def test_content_type_alone_is_enough(db):
    upload = _start(db, filename="download", content_type="text/csv; charset=utf-8")
    assert upload.stored_path.endswith(".csv")


def test_unknown_bank_account_is_rejected(db):
    with pytest.raises(ValidationError, match="bank account"):
        _start(db, bank_account_id="nope")


# ── State machine ─────────────────────────────────────────────────────────────

@pytest.mark.parametrize("current,new,allowed", [
    (UploadStatus.UPLOADING, UploadStatus.PARSING, True),
    (UploadStatus.PARSING, UploadStatus.PARSED, True),
    (UploadStatus.PARSING, UploadStatus.FAILED, True),
    (UploadStatus.PARSED, UploadStatus.IMPORTING, True),
    (UploadStatus.IMPORTING, UploadStatus.COMPLETED, True),
    (UploadStatus.IMPORTING, UploadStatus.FAILED, True),
    (UploadStatus.PARSED, UploadStatus.COMPLETED, False),
    (UploadStatus.IMPORTING, UploadStatus.CANCELLED, False),
    (UploadStatus.COMPLETED, UploadStatus.PARSED, False),
    (UploadStatus.CANCELLED, UploadStatus.PARSING, False),
    (UploadStatus.FAILED, UploadStatus.PARSING, False),
])
def test_can_transition(current, new, allowed):
    assert lifecycle.can_transition(current, new) is allowed


def test_illegal_transition_raises(db):
    upload = make_upload_in(db, UploadStatus.PARSED)
    with pytest.raises(InvalidTransitionError):
        lifecycle.transition(db, upload, UploadStatus.COMPLETED)


def test_transition_from_stale_state_loses(db):
    upload = make_upload_in(db, UploadStatus.PARSING)
    assert upload.status == UploadStatus.PARSING

    other = SessionLocal()
    try:
        lifecycle.cancel_upload(other, "biz-test", upload.id)
    finally:
        other.close()

    with pytest.raises(InvalidTransitionError, match="concurrently"):
        lifecycle.transition(db, upload, UploadStatus.PARSED)
    assert upload.status == UploadStatus.CANCELLED


def test_failed_transition_keeps_error_message(db):
    upload = make_upload_in(db, UploadStatus.PARSING)
    lifecycle.transition(db, upload, UploadStatus.FAILED, error_message="bad file")
    db.commit()
    db.refresh(upload)
    assert upload.status == UploadStatus.FAILED
    assert upload.error_message == "bad file"


# ── Cancel ────────────────────────────────────────────────────────────────────

@pytest.mark.parametrize("status", [UploadStatus.UPLOADING, UploadStatus.PARSING, UploadStatus.PARSED])
def test_cancel_before_import(db, status):
    upload = make_upload_in(db, status)
    assert lifecycle.cancel_upload(db, "biz-test", upload.id).status == UploadStatus.CANCELLED


def test_cancel_during_import_is_refused(db):
    upload = make_upload_in(db, UploadStatus.IMPORTING)
    with pytest.raises(InvalidTransitionError, match="Import has already started"):
        lifecycle.cancel_upload(db, "biz-test", upload.id)


@pytest.mark.parametrize("status", [UploadStatus.COMPLETED, UploadStatus.FAILED, UploadStatus.CANCELLED])
def test_cancel_terminal_is_refused(db, status):
    upload = make_upload_in(db, status)
    with pytest.raises(InvalidTransitionError):
        lifecycle.cancel_upload(db, "biz-test", upload.id)


def test_cancel_other_business_upload_is_not_found(db):
    upload = make_upload_in(db, UploadStatus.PARSED, business_id="someone-else")
    with pytest.raises(NotFoundError):
        lifecycle.cancel_upload(db, "biz-test", upload.id)


# ── Parsing ───────────────────────────────────────────────────────────────────

def test_mark_parsed_requires_lines(db):
    upload = make_upload_in(db, UploadStatus.PARSING)
    with pytest.raises(ValidationError):
        lifecycle.mark_parsed(db, upload, [])


def test_counters_follow_line_states(db):
    upload = make_parsed_upload(db, [
        (date(2024, 3, 5), 500000, "POS SALE"),
        (date(2024, 3, 6), -2000, "BANK CHARGE"),
        (date(2024, 3, 7), -9000, "DIESEL SUPPLY"),
    ])
    upload.lines[0].status = LineStatus.APPROVED
    upload.lines[1].status = LineStatus.SKIPPED
    lifecycle.recompute_counters(db, upload)

    assert upload.total_lines_parsed == 3
    assert (upload.lines_approved, upload.lines_skipped, upload.lines_pending) == (1, 1, 1)
    assert upload.lines_imported == upload.lines_duplicate == upload.lines_error == 0


def test_process_upload_parses_csv(db):
    upload = _start(db)

    process_upload(db, upload.id)
    db.refresh(upload)

    assert upload.status == UploadStatus.PARSED
    assert upload.total_lines_parsed == 3
    assert upload.lines_pending == 3
    assert upload.statement_start_date == date(2024, 3, 5)
    assert upload.statement_end_date == date(2024, 3, 7)
    amounts = [(ln.line_number, ln.amount_kobo, ln.transaction_type.value) for ln in upload.lines]
    assert amounts == [(1, 500000, "INFLOW"), (2, 2000, "OUTFLOW"), (3, 150050, "OUTFLOW")]
    assert upload.lines[0].suggested_category_code == "SALES"
    assert upload.lines[0].suggested_gl_account_code == "4000"
    assert upload.lines[0].suggested_gl_account_flow == "CREDIT"
    assert upload.lines[1].suggested_gl_account_flow == "DEBIT"
    assert upload.lines[0].selected_category_id is None


def test_process_upload_fails_unparsable_file(db):
    upload = _start(db, contents=b"hello world\nnothing to see here\n")

    process_upload(db, upload.id)
    db.refresh(upload)

    assert upload.status == UploadStatus.FAILED
    assert "No transactions were parsed" in upload.error_message
    assert upload.lines == []


def test_process_upload_leaves_cancelled_upload_alone(db):
    upload = _start(db)
    lifecycle.cancel_upload(db, "biz-test", upload.id)

    process_upload(db, upload.id)
    db.refresh(upload)

    assert upload.status == UploadStatus.CANCELLED
    assert upload.total_lines_parsed == 0


def test_process_upload_links_bank_account_by_number(db):
    from models import BankAccount

    account = BankAccount(business_id="biz-test", bank_name="GTBank", account_number="0123456789")
    db.add(account)
    db.commit()
    contents = b"Account Number: 0123456789,,,,,\n" + CSV

    upload = _start(db, contents=contents)
    process_upload(db, upload.id)
    db.refresh(upload)

    assert upload.status == UploadStatus.PARSED
    assert upload.account_number_extracted == "0123456789"
    assert upload.bank_account_id == account.id
    assert db.get(StatementUpload, upload.id).bank_account_name == "GTBank ••6789"
